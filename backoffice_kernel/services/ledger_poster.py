"""
LedgerPoster -- balanced, idempotent general-ledger posting.

Responsibility:
    Turns a PostingEvent into one GLTransaction plus its journal lines.
    Picks the posting rule, resolves every role to a GL account, checks
    the entry balances, writes it and moves the cached GL balances.

Architecture position:
    Kernel > Services.  Called by TransactionRecorder, the module services
    and FloatAccountService.  Uses AccountResolver for role -> account
    lookups and the posting rule registry for line computation.

Invariants enforced:
    - Idempotency: one journal per (source_module, source_transaction_id,
      source_transaction_type).  A repeat post returns the existing entry.
    - Balance: sum(debit) == sum(credit) within BALANCE_TOLERANCE, else
      UnbalancedEntryError and nothing is written.
    - Atomicity: the header, lines and balance updates run in one savepoint;
      a failure leaves no partial journal behind.
    - GLAccount.balance moves by (debit - credit) for every line written.

Failure modes:
    - PostingRuleNotFoundError: no rule for the module/type.
    - MappingNotFoundError: a role resolves to no GL account.
    - GLAccountNotFoundError: a configured or overridden code is missing.
    - UnbalancedEntryError: rule produced unequal totals.

    LedgerPoster raises; it never swallows.  The best-effort policy (business
    transaction survives a GL failure) lives in TransactionRecorder.
"""

import time
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from backoffice_config.schema import BackofficeConfig
from backoffice_kernel.db.base import SYSTEM_ACTOR_ID
from backoffice_kernel.db.types import BALANCE_TOLERANCE, ZERO
from backoffice_kernel.domain.clock import Clock
from backoffice_kernel.exceptions import (
    GLAccountNotFoundError,
    MappingNotFoundError,
    UnbalancedEntryError,
)
from backoffice_kernel.logging_config import get_logger
from backoffice_kernel.models.branch import Branch
from backoffice_kernel.models.float_account import FloatAccount
from backoffice_kernel.models.ledger import (
    GLAccount,
    GLAccountType,
    GLJournalEntryLine,
    GLMapping,
    GLTransaction,
    GLTransactionStatus,
    MappingType,
)
from backoffice_kernel.posting_rules.base import LineSpec, PostingEvent
from backoffice_kernel.posting_rules.registry import (
    PostingRuleRegistry,
    build_default_registry,
)
from backoffice_kernel.services.base import BaseService

logger = get_logger("services.ledger_poster")

REVERSAL_PREFIX = "reversal_"


class PostingStatus(str, Enum):
    POSTED = "posted"
    ALREADY_POSTED = "already_posted"
    # Every computed line was zero
    NOTHING_TO_POST = "nothing_to_post"


@dataclass(frozen=True)
class PostedLine:
    account_code: str
    role: str
    debit: Decimal
    credit: Decimal


@dataclass(frozen=True)
class PostingResult:
    status: PostingStatus
    source_ref: str
    gl_transaction_id: UUID | None = None
    lines: tuple[PostedLine, ...] = ()

    @classmethod
    def posted(cls, source_ref: str, txn_id: UUID, lines: tuple[PostedLine, ...]) -> "PostingResult":
        return cls(PostingStatus.POSTED, source_ref, txn_id, lines)

    @classmethod
    def already_posted(cls, source_ref: str, txn_id: UUID) -> "PostingResult":
        return cls(PostingStatus.ALREADY_POSTED, source_ref, txn_id)

    @classmethod
    def nothing_to_post(cls, source_ref: str) -> "PostingResult":
        return cls(PostingStatus.NOTHING_TO_POST, source_ref)

    @property
    def is_success(self) -> bool:
        return self.status in (PostingStatus.POSTED, PostingStatus.ALREADY_POSTED)


def _json_safe(value: Any) -> Any:
    if isinstance(value, dict):
        return {str(k): _json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_json_safe(v) for v in value]
    if isinstance(value, (Decimal, UUID, datetime)):
        return str(value)
    return value


class AccountResolver:
    """
    Resolves a posting role to a GL account.

    Lookup order for (event, mapping_key, role):
        1. event.account_overrides[role] (a GL code)
        2. a mapping pinned to the float account behind the role
        3. the branch's unpinned mapping for (mapping_key, role)
        4. the main branch's mapping for (mapping_key, role)
        5. for main/payment roles with a known float: the float type's
           control account code
        6. the configured default code for (mapping_key, role)
    """

    def __init__(self, session: Session, config: BackofficeConfig):
        self.session = session
        self.config = config
        self._main_branch_id: UUID | None = None

    def by_code(self, code: str) -> GLAccount:
        account = self.session.scalar(
            select(GLAccount).where(GLAccount.code == code)
        )
        if account is None:
            raise GLAccountNotFoundError(code)
        return account

    def first_by_codes(
        self, codes: tuple[str, ...] | list[str], account_type: GLAccountType
    ) -> GLAccount | None:
        """First active account whose code is in ``codes`` (in order) and type matches."""
        accounts = {
            a.code: a
            for a in self.session.scalars(
                select(GLAccount).where(
                    GLAccount.code.in_(list(codes)),
                    GLAccount.account_type == account_type.value,
                    GLAccount.is_active.is_(True),
                )
            )
        }
        for code in codes:
            if code in accounts:
                return accounts[code]
        return None

    def main_branch_id(self) -> UUID | None:
        if self._main_branch_id is None:
            self._main_branch_id = self.session.scalar(
                select(Branch.id).where(Branch.is_main.is_(True)).limit(1)
            )
        return self._main_branch_id

    def resolve(self, event: PostingEvent, mapping_key: str, role: MappingType) -> GLAccount:
        role = MappingType(role)

        override = event.account_overrides.get(role.value)
        if override:
            return self.by_code(override)

        float_id = (
            event.payment_float_account_id
            if role == MappingType.PAYMENT
            else event.float_account_id
        )
        if float_id is not None:
            # The payment float's own control account is its "main" mapping
            pinned_role = MappingType.MAIN if role == MappingType.PAYMENT else role
            pinned = self._mapping(float_account_id=float_id, mapping_type=pinned_role)
            if pinned is not None:
                return pinned

        for branch_id in self._branch_chain(event.branch_id):
            mapped = self._mapping(
                branch_id=branch_id,
                transaction_type=mapping_key,
                mapping_type=role,
            )
            if mapped is not None:
                return mapped

        if float_id is not None and role in (MappingType.MAIN, MappingType.PAYMENT):
            account_type = self.session.scalar(
                select(FloatAccount.account_type).where(FloatAccount.id == float_id)
            )
            code = self.config.float_account_codes.get(str(account_type))
            if code:
                return self.by_code(code)

        code = self.config.default_code(mapping_key, role.value)
        if code:
            return self.by_code(code)

        raise MappingNotFoundError(
            mapping_key, role.value, str(event.branch_id) if event.branch_id else None
        )

    def _branch_chain(self, branch_id: UUID | None) -> list[UUID]:
        chain = [branch_id] if branch_id is not None else []
        main_id = self.main_branch_id()
        if main_id is not None and main_id not in chain:
            chain.append(main_id)
        return chain

    def _mapping(
        self,
        *,
        mapping_type: MappingType,
        branch_id: UUID | None = None,
        transaction_type: str | None = None,
        float_account_id: UUID | None = None,
    ) -> GLAccount | None:
        stmt = (
            select(GLAccount)
            .join(GLMapping, GLMapping.gl_account_id == GLAccount.id)
            .where(
                GLMapping.mapping_type == mapping_type.value,
                GLMapping.is_active.is_(True),
                GLAccount.is_active.is_(True),
            )
        )
        if float_account_id is not None:
            stmt = stmt.where(GLMapping.float_account_id == float_account_id)
        else:
            stmt = stmt.where(
                GLMapping.branch_id == branch_id,
                GLMapping.transaction_type == transaction_type,
                GLMapping.float_account_id.is_(None),
            )
        return self.session.scalars(stmt.order_by(GLMapping.created_at).limit(1)).first()


class LedgerPoster(BaseService[GLTransaction]):
    """
    Writes balanced journals for business events.

    Contract:
        post() returns a PostingResult or raises a PostingError subclass.
        Nothing is committed; the caller's transaction owns the outcome.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock,
        config: BackofficeConfig,
        registry: PostingRuleRegistry | None = None,
        resolver: AccountResolver | None = None,
    ):
        super().__init__(session)
        self.clock = clock
        self.config = config
        self.registry = registry or build_default_registry()
        self.resolver = resolver or AccountResolver(session, config)

    # ------------------------------------------------------------------
    # Posting
    # ------------------------------------------------------------------

    def post(self, event: PostingEvent) -> PostingResult:
        t0 = time.monotonic()
        source_ref = event.source_ref

        existing = self.find_entry(
            event.source_module, event.source_transaction_id, event.transaction_type
        )
        if existing is not None:
            logger.info(
                "gl_posting_idempotent",
                extra={"source_ref": source_ref, "gl_transaction_id": str(existing.id)},
            )
            return PostingResult.already_posted(source_ref, existing.id)

        rule = self.registry.require_rule(event.source_module, event.transaction_type)
        specs = rule.compute_lines(event)
        if not specs:
            logger.info("gl_posting_skipped_zero_amount", extra={"source_ref": source_ref})
            return PostingResult.nothing_to_post(source_ref)

        with self.session.begin_nested():
            resolved = [
                (spec, self.resolver.resolve(event, rule.mapping_key, spec.role))
                for spec in specs
            ]
            self._check_balanced(specs, source_ref)

            metadata = dict(event.metadata, amount=event.amount, fee=event.fee)
            if event.reference:
                metadata["reference"] = event.reference

            txn = GLTransaction(
                entry_date=event.entry_date or self.clock.today(),
                source_module=event.source_module,
                source_transaction_id=event.source_transaction_id,
                source_transaction_type=event.transaction_type,
                description=event.description or f"{event.source_module} {event.transaction_type}",
                status=GLTransactionStatus.POSTED.value,
                created_by=event.created_by,
                branch_id=event.branch_id,
                entry_metadata=_json_safe(metadata),
                created_by_id=self._actor_uuid(event.created_by),
            )
            posted_lines = self._write_lines(txn, [
                (account, spec.debit, spec.credit, spec.description, spec.role.value)
                for spec, account in resolved
            ])
            self.session.add(txn)
            self.session.flush()

        logger.info(
            "gl_posting_completed",
            extra={
                "source_ref": source_ref,
                "gl_transaction_id": str(txn.id),
                "line_count": len(posted_lines),
                "total": str(sum((l.debit for l in posted_lines), ZERO)),
                "duration_ms": round((time.monotonic() - t0) * 1000, 2),
            },
        )
        return PostingResult.posted(source_ref, txn.id, posted_lines)

    def post_commission(
        self,
        *,
        source_transaction_id: str,
        amount: Decimal,
        branch_id: UUID | None,
        description: str | None = None,
        created_by: str = "system",
    ) -> PostingResult:
        """Commission expense against the commission asset account."""
        return self.post(
            PostingEvent(
                source_module="commissions",
                transaction_type="commission",
                source_transaction_id=source_transaction_id,
                amount=amount,
                branch_id=branch_id,
                description=description or "Commission",
                created_by=created_by,
            )
        )

    # ------------------------------------------------------------------
    # Reversal
    # ------------------------------------------------------------------

    def reverse(
        self,
        source_module: str,
        source_transaction_id: str,
        reason: str,
        created_by: str = "system",
        transaction_type: str | None = None,
    ) -> list[PostingResult]:
        """
        Post mirror entries for every non-reversal journal of a source
        transaction (or only ``transaction_type`` when given).

        Each mirror has source_transaction_type "reversal_<type>" and
        description "Reversal: <reference> - <reason>".  Reversing twice
        returns already_posted results.  A transaction that never reached
        the ledger yields an empty list.
        """
        originals = [
            entry
            for entry in self.entries_for(source_module, source_transaction_id)
            if not entry.source_transaction_type.startswith(REVERSAL_PREFIX)
            and (transaction_type is None or entry.source_transaction_type == transaction_type)
        ]
        return [self._reverse_entry(entry, reason, created_by) for entry in originals]

    def _reverse_entry(self, original: GLTransaction, reason: str, created_by: str) -> PostingResult:
        reversal_type = f"{REVERSAL_PREFIX}{original.source_transaction_type}"
        source_ref = (
            f"{original.source_module}/{reversal_type}/{original.source_transaction_id}"
        )
        existing = self.find_entry(
            original.source_module, original.source_transaction_id, reversal_type
        )
        if existing is not None:
            return PostingResult.already_posted(source_ref, existing.id)

        reference = (original.entry_metadata or {}).get(
            "reference", original.source_transaction_id
        )
        with self.session.begin_nested():
            mirror = GLTransaction(
                entry_date=self.clock.today(),
                source_module=original.source_module,
                source_transaction_id=original.source_transaction_id,
                source_transaction_type=reversal_type,
                description=f"Reversal: {reference} - {reason}",
                status=GLTransactionStatus.POSTED.value,
                created_by=created_by,
                branch_id=original.branch_id,
                entry_metadata={"reversal_of": str(original.id), "reason": reason},
                reversal_of_id=original.id,
                created_by_id=self._actor_uuid(created_by),
            )
            posted_lines = self._write_lines(mirror, [
                (line.account, line.credit, line.debit, line.description, "reversal")
                for line in original.lines
            ])
            original.status = GLTransactionStatus.REVERSED.value
            self.session.add(mirror)
            self.session.flush()

        logger.info(
            "gl_reversal_posted",
            extra={
                "source_ref": source_ref,
                "original_id": str(original.id),
                "gl_transaction_id": str(mirror.id),
                "reason": reason,
            },
        )
        return PostingResult.posted(source_ref, mirror.id, posted_lines)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def find_entry(
        self,
        source_module: str,
        source_transaction_id: str,
        transaction_type: str | None = None,
    ) -> GLTransaction | None:
        stmt = select(GLTransaction).where(
            GLTransaction.source_module == source_module,
            GLTransaction.source_transaction_id == source_transaction_id,
        )
        if transaction_type is not None:
            stmt = stmt.where(GLTransaction.source_transaction_type == transaction_type)
        return self.session.scalars(stmt.order_by(GLTransaction.created_at).limit(1)).first()

    def entries_for(self, source_module: str, source_transaction_id: str) -> list[GLTransaction]:
        return list(
            self.session.scalars(
                select(GLTransaction)
                .where(
                    GLTransaction.source_module == source_module,
                    GLTransaction.source_transaction_id == source_transaction_id,
                )
                .order_by(GLTransaction.created_at)
            )
        )

    def expense_account_code(self, category: str | None) -> str:
        """
        GL code for an expense category.

        Unknown categories degrade to the fallback category with a warning
        instead of failing.

        Raises:
            GLAccountNotFoundError: None of the category's codes exist.
        """
        effective, codes = self.config.expense_codes_for(category)
        if effective != (category or "").strip().lower():
            logger.warning(
                "expense_category_fallback",
                extra={"category": category, "posted_as": effective},
            )
        account = self.resolver.first_by_codes(codes, GLAccountType.EXPENSE)
        if account is None:
            raise GLAccountNotFoundError(f"expense:{effective}")
        return account.code

    def payable_account_code(self) -> str:
        account = self.resolver.first_by_codes(
            self.config.accounts_payable_codes, GLAccountType.LIABILITY
        )
        if account is None:
            raise GLAccountNotFoundError("accounts_payable")
        return account.code

    def cash_account_code(self) -> str:
        account = self.resolver.first_by_codes(self.config.cash_codes, GLAccountType.ASSET)
        if account is None:
            raise GLAccountNotFoundError("cash")
        return account.code

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _check_balanced(self, specs: list[LineSpec], source_ref: str) -> None:
        debits = sum((s.debit for s in specs), ZERO)
        credits = sum((s.credit for s in specs), ZERO)
        logger.debug(
            "balance_validated",
            extra={"source_ref": source_ref, "sum_debit": str(debits), "sum_credit": str(credits)},
        )
        if abs(debits - credits) > BALANCE_TOLERANCE:
            logger.warning(
                "unbalanced_entry",
                extra={"source_ref": source_ref, "imbalance": str(debits - credits)},
            )
            raise UnbalancedEntryError(debits, credits, source_ref)

    def _write_lines(
        self,
        txn: GLTransaction,
        rows: list[tuple[GLAccount, Decimal, Decimal, str | None, str]],
    ) -> tuple[PostedLine, ...]:
        posted: list[PostedLine] = []
        deltas: dict[UUID, Decimal] = {}
        for seq, (account, debit, credit, description, role) in enumerate(rows, start=1):
            txn.lines.append(
                GLJournalEntryLine(
                    account_id=account.id,
                    account_code=account.code,
                    debit=debit,
                    credit=credit,
                    description=description,
                    line_seq=seq,
                    created_by_id=txn.created_by_id,
                )
            )
            deltas[account.id] = deltas.get(account.id, ZERO) + debit - credit
            posted.append(PostedLine(account.code, role, debit, credit))

        for account_id, delta in deltas.items():
            if delta == 0:
                continue
            self.session.execute(
                update(GLAccount)
                .where(GLAccount.id == account_id)
                .values(balance=GLAccount.balance + delta)
                .execution_options(synchronize_session="fetch")
            )
        return tuple(posted)

    @staticmethod
    def _actor_uuid(created_by: str) -> UUID:
        try:
            return UUID(str(created_by))
        except ValueError:
            return SYSTEM_ACTOR_ID
