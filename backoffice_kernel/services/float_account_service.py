"""
FloatAccountService -- branch float accounts and their balance movements.

Responsibility:
    CRUD for float accounts, every change to a float balance, and the
    guarded hard delete.

Architecture position:
    Kernel > Services.  Used by TransactionRecorder and the module services
    for every money movement.  Optionally posts float operations to the
    ledger (best-effort) when given a LedgerPoster.

Invariants enforced:
    - A debit never takes current_balance below zero
      (InsufficientFloatBalanceError, nothing written).
    - Each change writes a FloatTransaction with balance_before/after and a
      per-account sequence, under a row lock on the float account.
    - delete() only removes accounts no domain transaction references, and
      removes the account's GL mappings (and GL sub-accounts nobody else
      uses) in the same savepoint.
"""

from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from backoffice_kernel.db.types import ZERO, to_money
from backoffice_kernel.domain.clock import Clock
from backoffice_kernel.domain.security import require_role, verify_password
from backoffice_kernel.exceptions import (
    BranchNotFoundError,
    FloatAccountNotFoundError,
    FloatAccountReferencedError,
    IncorrectPasswordError,
    InsufficientFloatBalanceError,
    InvalidAmountError,
    InvalidThresholdError,
    MissingFieldError,
    OperatorNotFoundError,
    ValidationError,
)
from backoffice_kernel.logging_config import get_logger
from backoffice_kernel.models.audit import AuditSeverity
from backoffice_kernel.models.branch import Branch, Operator, OperatorRole
from backoffice_kernel.models.float_account import (
    FloatAccount,
    FloatAccountType,
    FloatTransaction,
    MovementType,
)
from backoffice_kernel.models.ledger import GLAccount, GLJournalEntryLine, GLMapping
from backoffice_kernel.models.transactions import (
    AgencyBankingTransaction,
    Expense,
    EzwichCardIssuance,
    EzwichWithdrawal,
    JumiaTransaction,
    MomoTransaction,
    PowerTransaction,
)
from backoffice_kernel.posting_rules.base import PostingEvent
from backoffice_kernel.services.audit_service import AuditService
from backoffice_kernel.services.base import BaseService
from backoffice_kernel.services.best_effort import post_best_effort
from backoffice_kernel.services.ledger_poster import LedgerPoster

logger = get_logger("services.float_accounts")


@dataclass(frozen=True)
class FloatAccountInfo:
    id: UUID
    branch_id: UUID
    account_type: str
    provider: str | None
    account_number: str | None
    current_balance: Decimal
    min_threshold: Decimal
    max_threshold: Decimal
    is_active: bool

    @property
    def threshold_status(self) -> str:
        if self.current_balance < self.min_threshold:
            return "low"
        if self.max_threshold > 0 and self.current_balance > self.max_threshold:
            return "high"
        return "ok"


@dataclass(frozen=True)
class FloatMovementInfo:
    id: UUID
    float_account_id: UUID
    movement_type: str
    amount: Decimal
    balance_before: Decimal
    balance_after: Decimal
    sequence: int
    reference: str | None


class FloatAccountService(BaseService[FloatAccount]):
    """
    Contract:
        Every public method flushes but never commits.  Methods return
        frozen DTOs, not ORM rows.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock,
        ledger: LedgerPoster | None = None,
        auditor: AuditService | None = None,
    ):
        super().__init__(session)
        self.clock = clock
        self.ledger = ledger
        self.auditor = auditor

    def _to_dto(self, account: FloatAccount) -> FloatAccountInfo:
        return FloatAccountInfo(
            id=account.id,
            branch_id=account.branch_id,
            account_type=str(FloatAccountType(account.account_type).value),
            provider=account.provider,
            account_number=account.account_number,
            current_balance=to_money(account.current_balance),
            min_threshold=to_money(account.min_threshold),
            max_threshold=to_money(account.max_threshold),
            is_active=account.is_active,
        )

    @staticmethod
    def _movement_dto(movement: FloatTransaction) -> FloatMovementInfo:
        return FloatMovementInfo(
            id=movement.id,
            float_account_id=movement.float_account_id,
            movement_type=str(MovementType(movement.movement_type).value),
            amount=to_money(movement.amount),
            balance_before=to_money(movement.balance_before),
            balance_after=to_money(movement.balance_after),
            sequence=movement.sequence,
            reference=movement.reference,
        )

    def _get_by_id(self, account_id: UUID) -> FloatAccount:
        account = self.session.get(FloatAccount, account_id)
        if account is None:
            raise FloatAccountNotFoundError(str(account_id))
        return account

    def _lock(self, account_id: UUID) -> FloatAccount:
        account = self.session.scalars(
            select(FloatAccount)
            .where(FloatAccount.id == account_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).first()
        if account is None:
            raise FloatAccountNotFoundError(str(account_id))
        return account

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, account_id: UUID) -> FloatAccountInfo:
        """Raises FloatAccountNotFoundError if the account does not exist."""
        return self._to_dto(self._get_by_id(account_id))

    def list_for_branch(
        self,
        branch_id: UUID,
        account_type: FloatAccountType | str | None = None,
        active_only: bool = True,
    ) -> list[FloatAccountInfo]:
        stmt = select(FloatAccount).where(FloatAccount.branch_id == branch_id)
        if account_type is not None:
            stmt = stmt.where(FloatAccount.account_type == FloatAccountType(account_type).value)
        if active_only:
            stmt = stmt.where(FloatAccount.is_active.is_(True))
        stmt = stmt.order_by(FloatAccount.account_type, FloatAccount.provider)
        return [self._to_dto(a) for a in self.session.scalars(stmt)]

    def find_active(
        self,
        branch_id: UUID,
        account_type: FloatAccountType | str,
        provider: str | None = None,
    ) -> FloatAccountInfo:
        """
        The branch's active float of a type (and provider, case-insensitive).

        Raises:
            FloatAccountNotFoundError: None is active.
        """
        account_type = FloatAccountType(account_type)
        stmt = select(FloatAccount).where(
            FloatAccount.branch_id == branch_id,
            FloatAccount.account_type == account_type.value,
            FloatAccount.is_active.is_(True),
        )
        if provider:
            stmt = stmt.where(func.lower(FloatAccount.provider) == provider.lower())
        account = self.session.scalars(stmt.order_by(FloatAccount.created_at).limit(1)).first()
        if account is None:
            label = f"{provider} {account_type.value}" if provider else account_type.value
            raise FloatAccountNotFoundError(
                f"{branch_id}:{label}",
                message=f"No active {label} float account found for this branch",
            )
        return self._to_dto(account)

    def movements(self, account_id: UUID) -> list[FloatMovementInfo]:
        self._get_by_id(account_id)
        rows = self.session.scalars(
            select(FloatTransaction)
            .where(FloatTransaction.float_account_id == account_id)
            .order_by(FloatTransaction.sequence)
        )
        return [self._movement_dto(m) for m in rows]

    def count_references(self, account_id: UUID) -> int:
        """
        Domain transactions tied to the account, across every module: rows
        naming it directly plus rows that moved money through it.
        """
        sources = [
            (MomoTransaction, select(MomoTransaction.id).where(
                or_(
                    MomoTransaction.float_account_id == account_id,
                    MomoTransaction.cash_till_account_id == account_id,
                )
            )),
            (AgencyBankingTransaction, select(AgencyBankingTransaction.id).where(
                or_(
                    AgencyBankingTransaction.partner_bank_id == account_id,
                    AgencyBankingTransaction.cash_till_account_id == account_id,
                )
            )),
            (PowerTransaction, select(PowerTransaction.id).where(
                or_(
                    PowerTransaction.float_account_id == account_id,
                    PowerTransaction.payment_account_id == account_id,
                )
            )),
            (JumiaTransaction, select(JumiaTransaction.id).where(
                JumiaTransaction.float_account_id == account_id
            )),
            (EzwichCardIssuance, select(EzwichCardIssuance.id).where(
                EzwichCardIssuance.partner_account_id == account_id
            )),
            (EzwichWithdrawal, select(EzwichWithdrawal.id).where(
                or_(
                    EzwichWithdrawal.settlement_account_id == account_id,
                    EzwichWithdrawal.cash_till_account_id == account_id,
                )
            )),
            (Expense, select(Expense.id).where(Expense.payment_source == str(account_id))),
        ]
        referenced = {
            (model.source_module, str(txn_id))
            for model, stmt in sources
            for txn_id in self.session.scalars(stmt)
        }
        referenced.update(
            self.session.execute(
                select(FloatTransaction.source_module, FloatTransaction.source_transaction_id)
                .where(
                    FloatTransaction.float_account_id == account_id,
                    FloatTransaction.source_module.is_not(None),
                )
                .distinct()
            ).tuples()
        )
        return len(referenced)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def create_account(
        self,
        branch_id: UUID,
        account_type: FloatAccountType | str,
        actor_id: UUID,
        provider: str | None = None,
        account_number: str | None = None,
        opening_balance: Decimal | int | str = ZERO,
        min_threshold: Decimal | int | str = ZERO,
        max_threshold: Decimal | int | str = ZERO,
    ) -> FloatAccountInfo:
        """
        Open a float account.  A non-zero opening balance is recorded as an
        initial_balance movement and posted to the ledger when possible.

        Raises:
            BranchNotFoundError, InvalidThresholdError, InvalidAmountError
        """
        if self.session.get(Branch, branch_id) is None:
            raise BranchNotFoundError(str(branch_id))
        opening = to_money(opening_balance)
        low, high = to_money(min_threshold), to_money(max_threshold)
        if opening < 0:
            raise InvalidAmountError("opening_balance", opening)
        if high > 0 and low > high:
            raise InvalidThresholdError(low, high)

        account = FloatAccount(
            branch_id=branch_id,
            account_type=FloatAccountType(account_type).value,
            provider=provider,
            account_number=account_number,
            current_balance=ZERO,
            min_threshold=low,
            max_threshold=high,
            is_active=True,
            created_by_id=actor_id,
        )
        self.session.add(account)
        self.session.flush()

        logger.info(
            "float_account_created",
            extra={
                "float_account_id": str(account.id),
                "account_type": account.account_type,
                "provider": provider,
            },
        )

        if opening > 0:
            movement = self.adjust_balance(
                account.id,
                opening,
                actor_id=actor_id,
                movement_type=MovementType.INITIAL_BALANCE,
                description="Opening balance",
            )
            self._post_float_operation("initial_balance", movement, account.branch_id, actor_id)

        return self._to_dto(account)

    def update_thresholds(
        self,
        account_id: UUID,
        min_threshold: Decimal | int | str,
        max_threshold: Decimal | int | str,
        actor_id: UUID,
    ) -> FloatAccountInfo:
        low, high = to_money(min_threshold), to_money(max_threshold)
        if high > 0 and low > high:
            raise InvalidThresholdError(low, high)
        account = self._get_by_id(account_id)
        account.min_threshold = low
        account.max_threshold = high
        account.updated_by_id = actor_id
        self.session.flush()
        return self._to_dto(account)

    def deactivate(self, account_id: UUID, actor_id: UUID) -> FloatAccountInfo:
        return self._set_active(account_id, False, actor_id)

    def activate(self, account_id: UUID, actor_id: UUID) -> FloatAccountInfo:
        return self._set_active(account_id, True, actor_id)

    def _set_active(self, account_id: UUID, active: bool, actor_id: UUID) -> FloatAccountInfo:
        account = self._get_by_id(account_id)
        account.is_active = active
        account.updated_by_id = actor_id
        self.session.flush()
        logger.info(
            "float_account_activated" if active else "float_account_deactivated",
            extra={"float_account_id": str(account_id)},
        )
        return self._to_dto(account)

    # ------------------------------------------------------------------
    # Balance movements
    # ------------------------------------------------------------------

    def adjust_balance(
        self,
        account_id: UUID,
        delta: Decimal | int | str,
        *,
        actor_id: UUID,
        movement_type: MovementType | None = None,
        reference: str | None = None,
        description: str | None = None,
        source_module: str | None = None,
        source_transaction_id: str | None = None,
    ) -> FloatMovementInfo:
        """
        Apply a signed change to a float balance.

        Raises:
            InvalidAmountError: delta is zero.
            InsufficientFloatBalanceError: a debit would go below zero.
        """
        delta = to_money(delta)
        if delta == 0:
            raise InvalidAmountError("delta", delta)

        account = self._lock(account_id)
        before = to_money(account.current_balance)
        after = before + delta
        if delta < 0 and after < 0:
            logger.warning(
                "float_debit_refused",
                extra={
                    "float_account_id": str(account_id),
                    "balance": str(before),
                    "requested": str(-delta),
                },
            )
            raise InsufficientFloatBalanceError(str(account_id), before, -delta)

        last_seq = self.session.scalar(
            select(func.max(FloatTransaction.sequence)).where(
                FloatTransaction.float_account_id == account_id
            )
        )
        movement = FloatTransaction(
            float_account_id=account.id,
            branch_id=account.branch_id,
            movement_type=(movement_type or (MovementType.CREDIT if delta > 0 else MovementType.DEBIT)).value,
            amount=delta,
            balance_before=before,
            balance_after=after,
            sequence=(last_seq or 0) + 1,
            reference=reference,
            description=description,
            source_module=source_module,
            source_transaction_id=source_transaction_id,
            created_by_id=actor_id,
        )
        account.current_balance = after
        account.updated_by_id = actor_id
        self.session.add(movement)
        self.session.flush()

        logger.info(
            "float_balance_adjusted",
            extra={
                "float_account_id": str(account_id),
                "movement_type": movement.movement_type,
                "delta": str(delta),
                "balance_after": str(after),
            },
        )
        return self._movement_dto(movement)

    def debit(self, account_id: UUID, amount: Decimal | int | str, **kwargs) -> FloatMovementInfo:
        amount = self._positive(amount)
        return self.adjust_balance(account_id, -amount, **kwargs)

    def credit(self, account_id: UUID, amount: Decimal | int | str, **kwargs) -> FloatMovementInfo:
        amount = self._positive(amount)
        return self.adjust_balance(account_id, amount, **kwargs)

    def recharge(
        self,
        account_id: UUID,
        amount: Decimal | int | str,
        actor_id: UUID,
        source_account_id: UUID | None = None,
        reference: str | None = None,
    ) -> FloatMovementInfo:
        """
        Top up a float.  With a source account the money comes out of that
        float in the same unit of work; otherwise it comes from the bank.
        """
        amount = self._positive(amount)
        if source_account_id is not None:
            self.debit(
                source_account_id,
                amount,
                actor_id=actor_id,
                movement_type=MovementType.WITHDRAWAL,
                reference=reference,
                description="Recharge of another float",
            )
        movement = self.credit(
            account_id,
            amount,
            actor_id=actor_id,
            movement_type=MovementType.RECHARGE,
            reference=reference,
            description="Float recharge",
        )
        account = self._get_by_id(account_id)
        self._post_float_operation(
            "recharge", movement, account.branch_id, actor_id, payment_float=source_account_id
        )
        return movement

    def withdraw(
        self,
        account_id: UUID,
        amount: Decimal | int | str,
        actor_id: UUID,
        reason: str | None = None,
    ) -> FloatMovementInfo:
        movement = self.debit(
            account_id,
            amount,
            actor_id=actor_id,
            movement_type=MovementType.WITHDRAWAL,
            description=reason or "Float withdrawal",
        )
        account = self._get_by_id(account_id)
        self._post_float_operation("withdrawal", movement, account.branch_id, actor_id)
        return movement

    def transfer(
        self,
        source_id: UUID,
        destination_id: UUID,
        amount: Decimal | int | str,
        actor_id: UUID,
        reference: str | None = None,
    ) -> tuple[FloatMovementInfo, FloatMovementInfo]:
        """Move funds between two floats; both legs or neither."""
        if source_id == destination_id:
            raise ValidationError("Cannot transfer a float account to itself")
        amount = self._positive(amount)
        out_leg = self.debit(
            source_id,
            amount,
            actor_id=actor_id,
            movement_type=MovementType.TRANSFER_OUT,
            reference=reference,
            description="Transfer out",
        )
        in_leg = self.credit(
            destination_id,
            amount,
            actor_id=actor_id,
            movement_type=MovementType.TRANSFER_IN,
            reference=reference,
            description="Transfer in",
        )
        if self.ledger is not None:
            destination = self._get_by_id(destination_id)
            post_best_effort(
                self.ledger,
                PostingEvent(
                    source_module="float_transfers",
                    transaction_type="transfer",
                    source_transaction_id=str(in_leg.id),
                    amount=amount,
                    branch_id=destination.branch_id,
                    reference=reference,
                    created_by=str(actor_id),
                    float_account_id=destination_id,
                    payment_float_account_id=source_id,
                ),
                self.auditor,
            )
        return out_leg, in_leg

    # ------------------------------------------------------------------
    # Deletion
    # ------------------------------------------------------------------

    def delete(self, account_id: UUID, requester_id: UUID, password: str | None) -> None:
        """
        Hard-delete a float account.

        Checks, in order: the requester exists (401) and is an admin (403),
        a password was given (400) and matches (401), the account exists
        (404), and no domain transaction references it (400).

        The account's GL mappings, the GL accounts only those mappings used
        (and that carry no journal lines), its movement rows and the
        account itself are removed in one savepoint.
        """
        operator = self.session.get(Operator, requester_id)
        if operator is None or not operator.is_active:
            raise OperatorNotFoundError(str(requester_id))
        require_role(operator, [OperatorRole.ADMIN], "delete float accounts")
        if not password:
            raise MissingFieldError("password", "Password is required to delete a float account")
        if not verify_password(password, operator.password_hash):
            logger.warning("float_delete_bad_password", extra={"operator_id": str(requester_id)})
            raise IncorrectPasswordError(str(requester_id))

        account = self._get_by_id(account_id)
        references = self.count_references(account_id)
        if references > 0:
            raise FloatAccountReferencedError(str(account_id), references)

        with self.session.begin_nested():
            mappings = list(
                self.session.scalars(
                    select(GLMapping).where(GLMapping.float_account_id == account_id)
                )
            )
            candidate_ids = {m.gl_account_id for m in mappings}
            for mapping in mappings:
                self.session.delete(mapping)
            self.session.flush()

            removed_gl = []
            for gl_id in candidate_ids:
                still_mapped = self.session.scalar(
                    select(func.count()).select_from(GLMapping).where(GLMapping.gl_account_id == gl_id)
                )
                has_lines = self.session.scalar(
                    select(func.count())
                    .select_from(GLJournalEntryLine)
                    .where(GLJournalEntryLine.account_id == gl_id)
                )
                if still_mapped or has_lines:
                    continue
                gl_account = self.session.get(GLAccount, gl_id)
                if gl_account is not None:
                    removed_gl.append(gl_account.code)
                    self.session.delete(gl_account)

            self.session.delete(account)
            self.session.flush()

        logger.info(
            "float_account_deleted",
            extra={
                "float_account_id": str(account_id),
                "mappings_removed": len(mappings),
                "gl_accounts_removed": removed_gl,
            },
        )
        if self.auditor is not None:
            self.auditor.record(
                "float_account_delete",
                "float_account",
                account_id,
                f"Deleted {account.account_type} float account",
                actor_id=requester_id,
                details={"gl_accounts_removed": removed_gl},
                severity=AuditSeverity.HIGH,
                branch_id=account.branch_id,
            )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _positive(amount: Decimal | int | str) -> Decimal:
        value = to_money(amount)
        if value <= 0:
            raise InvalidAmountError("amount", value)
        return value

    def _post_float_operation(
        self,
        transaction_type: str,
        movement: FloatMovementInfo,
        branch_id: UUID,
        actor_id: UUID,
        payment_float: UUID | None = None,
    ) -> None:
        if self.ledger is None:
            return
        post_best_effort(
            self.ledger,
            PostingEvent(
                source_module="float_operations",
                transaction_type=transaction_type,
                source_transaction_id=str(movement.id),
                amount=abs(movement.amount),
                branch_id=branch_id,
                reference=movement.reference,
                created_by=str(actor_id),
                float_account_id=movement.float_account_id,
                payment_float_account_id=payment_float,
            ),
            self.auditor,
        )
