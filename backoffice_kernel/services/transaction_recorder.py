"""
TransactionRecorder -- the one path every domain transaction takes.

Responsibility:
    Persist a module transaction, apply its float movements, move it through
    the status table, and run the best-effort side effects (GL posting,
    notifications, audit) in a fixed order.

Architecture position:
    Kernel > Services.  Called by the module services (momo, agency
    banking, power, e-zwich, jumia, expenses).  Depends on
    FloatAccountService for money and on LedgerPoster for the journal.

Invariants enforced:
    - Status only changes through transition(), which checks
      VALID_TRANSITIONS.
    - Float movements are business effects: a failure propagates and the
      caller's transaction rolls back the row as well.
    - GL posting, notifications and audit never fail a recorded transaction.
"""

from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, TypeVar
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from backoffice_kernel.db.types import to_money
from backoffice_kernel.domain.clock import Clock
from backoffice_kernel.exceptions import (
    BackofficeError,
    InvalidStatusTransitionError,
    TransactionNotFoundError,
    ValidationError,
)
from backoffice_kernel.logging_config import LogContext, get_logger
from backoffice_kernel.models.audit import AuditSeverity
from backoffice_kernel.models.float_account import FloatTransaction, MovementType
from backoffice_kernel.models.transactions import (
    TERMINAL_STATUSES,
    VALID_TRANSITIONS,
    DomainTransactionMixin,
    TransactionStatus,
)
from backoffice_kernel.posting_rules.base import PostingEvent
from backoffice_kernel.services.audit_service import AuditService
from backoffice_kernel.services.best_effort import post_best_effort, reverse_best_effort
from backoffice_kernel.services.float_account_service import (
    FloatAccountService,
    FloatMovementInfo,
)
from backoffice_kernel.services.ledger_poster import LedgerPoster
from backoffice_kernel.services.notification_service import NotificationService

logger = get_logger("services.recorder")

TxnModel = TypeVar("TxnModel", bound=DomainTransactionMixin)

# Columns update_transaction() never touches
PROTECTED_FIELDS = frozenset({
    "id",
    "amount",
    "fee",
    "status",
    "branch_id",
    "reference",
    "transaction_date",
    "processed_by",
    "gl_transaction_id",
    "float_account_id",
    "payment_account_id",
    "payment_method",
    "payment_source",
    "partner_account_id",
    "partner_bank_id",
    "settlement_account_id",
    "cash_till_account_id",
    "transaction_type",
    "batch_id",
    "created_at",
    "created_by_id",
})


@dataclass(frozen=True)
class MovementSpec:
    """A signed change to one float account."""

    float_account_id: UUID
    delta: Decimal
    movement_type: MovementType | None = None
    description: str | None = None


@dataclass(frozen=True)
class NotificationSpec:
    message: str
    phone: str | None = None
    operator_id: UUID | None = None
    kind: str = "customer_receipt"


@dataclass(frozen=True)
class TransactionInfo:
    id: UUID
    source_module: str
    reference: str
    branch_id: UUID
    amount: Decimal
    fee: Decimal
    status: str
    transaction_date: datetime
    gl_transaction_id: UUID | None
    movements: tuple[FloatMovementInfo, ...] = ()


class TransactionRecorder:
    """
    Contract:
        record() returns once the row is completed (or left pending) and
        flushed.  The caller's session_scope() commits.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock,
        float_service: FloatAccountService,
        ledger: LedgerPoster | None = None,
        notifications: NotificationService | None = None,
        auditor: AuditService | None = None,
    ):
        self.session = session
        self.clock = clock
        self.float_service = float_service
        self.ledger = ledger
        self.notifications = notifications
        self.auditor = auditor
        self._undo_hooks: dict[type, list[Callable[[DomainTransactionMixin, UUID], None]]] = {}

    @staticmethod
    def to_info(
        row: DomainTransactionMixin, movements: Iterable[FloatMovementInfo] = ()
    ) -> TransactionInfo:
        return TransactionInfo(
            id=row.id,
            source_module=row.source_module,
            reference=row.reference,
            branch_id=row.branch_id,
            amount=to_money(row.amount),
            fee=to_money(row.fee),
            status=str(TransactionStatus(row.status).value),
            transaction_date=row.transaction_date,
            gl_transaction_id=row.gl_transaction_id,
            movements=tuple(movements),
        )

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    def record(
        self,
        row: TxnModel,
        movements: Iterable[MovementSpec] = (),
        *,
        actor_id: UUID,
        posting_event: Callable[[TxnModel], PostingEvent | None] | None = None,
        notifications: Iterable[NotificationSpec] = (),
        complete: bool = True,
        audit_details: dict[str, Any] | None = None,
    ) -> TransactionInfo:
        """
        Record a domain transaction.

        Order: insert pending, apply movements, mark completed (unless
        ``complete`` is False), post to GL, link gl_transaction_id, notify,
        audit.  Only the first three can raise.
        """
        row.status = TransactionStatus.PENDING.value
        row.processed_by = actor_id
        row.created_by_id = actor_id
        if row.transaction_date is None:
            row.transaction_date = self.clock.now()
        self.session.add(row)
        self.session.flush()

        with LogContext.bind(
            source_module=row.source_module,
            transaction_id=str(row.id),
            branch_id=str(row.branch_id),
        ):
            applied = self.apply_movements(row, movements, actor_id)

            if complete:
                self.transition(row, TransactionStatus.COMPLETED, actor_id)

            if posting_event is not None:
                self.post_to_ledger(row, posting_event)

            for spec in notifications:
                self._notify(spec)

            self._warn_low_floats(applied, actor_id)

            logger.info(
                "transaction_recorded",
                extra={
                    "reference": row.reference,
                    "status": row.status,
                    "amount": str(row.amount),
                    "movement_count": len(applied),
                    "gl_linked": row.gl_transaction_id is not None,
                },
            )
            self.audit(
                row,
                f"{row.source_module}_transaction_create",
                f"Recorded {row.source_module} transaction {row.reference}",
                actor_id,
                {"amount": str(row.amount), "fee": str(row.fee), **(audit_details or {})},
            )
        return self.to_info(row, applied)

    def apply_movements(
        self,
        row: DomainTransactionMixin,
        movements: Iterable[MovementSpec],
        actor_id: UUID,
    ) -> list[FloatMovementInfo]:
        # Zero legs (cash-out where the fee equals the amount) move nothing
        return [
            self.float_service.adjust_balance(
                spec.float_account_id,
                spec.delta,
                actor_id=actor_id,
                movement_type=spec.movement_type,
                reference=row.reference,
                description=spec.description,
                source_module=row.source_module,
                source_transaction_id=str(row.id),
            )
            for spec in movements
            if spec.delta
        ]

    def post_to_ledger(
        self,
        row: TxnModel,
        posting_event: Callable[[TxnModel], PostingEvent | None],
    ) -> UUID | None:
        """Best-effort post; links gl_transaction_id when it worked."""
        if self.ledger is None:
            return None
        try:
            event = posting_event(row)
        except BackofficeError:
            # Expense and payable code lookups can raise here
            logger.error("gl_posting_failed", extra={"reference": row.reference}, exc_info=True)
            return None
        if event is None:
            return None
        result = post_best_effort(self.ledger, event, self.auditor)
        if result is None or result.gl_transaction_id is None:
            return None
        if row.gl_transaction_id is None:
            row.gl_transaction_id = result.gl_transaction_id
            self.session.flush()
        return result.gl_transaction_id

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def transition(
        self,
        row: DomainTransactionMixin,
        to_status: TransactionStatus,
        actor_id: UUID | None = None,
    ) -> None:
        """
        Raises:
            InvalidStatusTransitionError: not allowed from the current status.
        """
        current = TransactionStatus(row.status)
        to_status = TransactionStatus(to_status)
        if to_status not in VALID_TRANSITIONS[current]:
            raise InvalidStatusTransitionError(str(row.id), current.value, to_status.value)
        row.status = to_status.value
        if actor_id is not None:
            row.updated_by_id = actor_id
        self.session.flush()
        logger.debug(
            "transaction_status_changed",
            extra={"from_status": current.value, "to_status": to_status.value},
        )

    def get_transaction(self, model: type[TxnModel], transaction_id: UUID) -> TxnModel:
        row = self.session.get(model, transaction_id)
        if row is None:
            raise TransactionNotFoundError(model.source_module, str(transaction_id))
        return row

    # ------------------------------------------------------------------
    # Corrections
    # ------------------------------------------------------------------

    def reverse_transaction(
        self,
        model: type[TxnModel],
        transaction_id: UUID,
        reason: str,
        actor_id: UUID,
    ) -> TransactionInfo:
        """Undo the float effects, post the GL reversal, mark reversed."""
        row = self.get_transaction(model, transaction_id)
        self._check_transition(row, TransactionStatus.REVERSED)
        self._run_undo_hooks(row, actor_id)
        applied = self._compensate(row, reason, actor_id)
        self.transition(row, TransactionStatus.REVERSED, actor_id)
        self.reverse_ledger(row, reason, actor_id)
        self.audit(
            row,
            f"{row.source_module}_transaction_reverse",
            f"Reversed {row.reference}: {reason}",
            actor_id,
            {"reason": reason},
            severity=AuditSeverity.MEDIUM,
        )
        return self.to_info(row, applied)

    def delete_transaction(
        self,
        model: type[TxnModel],
        transaction_id: UUID,
        actor_id: UUID,
        reason: str = "Transaction deleted",
    ) -> TransactionInfo:
        """
        Soft delete.  Effects that are still live (completed rows, or GL
        entries of pending rows) are undone before the status change.
        """
        row = self.get_transaction(model, transaction_id)
        self._check_transition(row, TransactionStatus.DELETED)
        self._run_undo_hooks(row, actor_id)
        applied = self._compensate(row, reason, actor_id)
        self.transition(row, TransactionStatus.DELETED, actor_id)
        self.reverse_ledger(row, reason, actor_id)
        self.audit(
            row,
            f"{row.source_module}_transaction_delete",
            f"Deleted {row.reference}",
            actor_id,
            {"reason": reason},
            severity=AuditSeverity.HIGH,
        )
        return self.to_info(row, applied)

    def update_transaction(
        self,
        model: type[TxnModel],
        transaction_id: UUID,
        changes: dict[str, Any],
        actor_id: UUID,
    ) -> TransactionInfo:
        """
        Update descriptive fields (names, phones, notes).

        Raises:
            InvalidStatusTransitionError: the row is reversed or deleted.
            ValidationError: a monetary or linking field was given.
        """
        row = self.get_transaction(model, transaction_id)
        status = TransactionStatus(row.status)
        if status in TERMINAL_STATUSES:
            raise InvalidStatusTransitionError(str(row.id), status.value, status.value)
        for name in changes:
            if name in PROTECTED_FIELDS:
                raise ValidationError(f"Field cannot be updated: {name}")
            if not hasattr(model, name):
                raise ValidationError(f"Unknown field: {name}")
        for name, value in changes.items():
            setattr(row, name, value)
        row.updated_by_id = actor_id
        self.session.flush()
        self.audit(
            row,
            f"{row.source_module}_transaction_update",
            f"Updated {row.reference}",
            actor_id,
            {"fields": sorted(changes)},
        )
        return self.to_info(row)

    def on_undo(
        self,
        model: type[TxnModel],
        hook: Callable[[DomainTransactionMixin, UUID], None],
    ) -> None:
        """
        Register a callback run before a row of ``model`` is reversed or
        deleted, ahead of any float compensation.  Hooks restore state the
        recording service changed outside the row itself (package status,
        card stock) and may raise to veto the undo.
        """
        self._undo_hooks.setdefault(model, []).append(hook)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _run_undo_hooks(self, row: DomainTransactionMixin, actor_id: UUID) -> None:
        for hook in self._undo_hooks.get(type(row), ()):
            hook(row, actor_id)

    @staticmethod
    def _check_transition(row: DomainTransactionMixin, to_status: TransactionStatus) -> None:
        current = TransactionStatus(row.status)
        if to_status not in VALID_TRANSITIONS[current]:
            raise InvalidStatusTransitionError(str(row.id), current.value, to_status.value)

    def _compensate(
        self, row: DomainTransactionMixin, reason: str, actor_id: UUID
    ) -> list[FloatMovementInfo]:
        """Apply the negation of the row's net movement on each float."""
        rows = self.session.scalars(
            select(FloatTransaction)
            .where(
                FloatTransaction.source_module == row.source_module,
                FloatTransaction.source_transaction_id == str(row.id),
            )
            .order_by(FloatTransaction.created_at, FloatTransaction.sequence)
        )
        net: dict[UUID, Decimal] = {}
        for movement in rows:
            net[movement.float_account_id] = (
                net.get(movement.float_account_id, Decimal("0")) + movement.amount
            )
        # Credits first, so a float that paid out gets its money back before
        # another is debited.
        specs = [
            MovementSpec(account_id, -delta, MovementType.ADJUSTMENT, f"Reversal: {reason}")
            for account_id, delta in sorted(net.items(), key=lambda item: item[1])
            if delta != 0
        ]
        return self.apply_movements(row, specs, actor_id)

    def reverse_ledger(self, row: DomainTransactionMixin, reason: str, actor_id: UUID) -> None:
        if self.ledger is None:
            return
        reverse_best_effort(self.ledger, row.source_module, str(row.id), reason, str(actor_id))

    def _notify(self, spec: NotificationSpec) -> None:
        if self.notifications is None:
            return
        if spec.operator_id is not None:
            self.notifications.notify_operator(spec.operator_id, spec.message)
        if spec.phone:
            self.notifications.send(spec.phone, spec.message, kind=spec.kind)

    def _warn_low_floats(self, applied: list[FloatMovementInfo], actor_id: UUID) -> None:
        for account_id in {m.float_account_id for m in applied}:
            info = self.float_service.get(account_id)
            if info.threshold_status != "low":
                continue
            logger.warning(
                "float_below_threshold",
                extra={
                    "float_account_id": str(account_id),
                    "balance": str(info.current_balance),
                    "min_threshold": str(info.min_threshold),
                },
            )
            if self.notifications is not None:
                self.notifications.notify_operator(
                    actor_id,
                    f"Low float alert: {info.account_type} balance {info.current_balance}",
                )

    def audit(
        self,
        row: DomainTransactionMixin,
        action_type: str,
        description: str,
        actor_id: UUID,
        details: dict[str, Any],
        severity: AuditSeverity = AuditSeverity.LOW,
    ) -> None:
        if self.auditor is None:
            return
        self.auditor.record(
            action_type,
            row.source_module,
            row.id,
            description,
            actor_id=actor_id,
            details={"reference": row.reference, **details},
            severity=severity,
            branch_id=row.branch_id,
        )
