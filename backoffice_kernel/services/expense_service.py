"""
ExpenseService -- expense heads and the expense approval workflow.

An expense is accrued when it is raised (pending, GL: expense against
accounts payable) and paid when approved (completed, float debited, GL:
accounts payable against the paying float).  Rejection fails the claim and
reverses the accrual.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from backoffice_kernel.db.types import to_money
from backoffice_kernel.domain.clock import Clock
from backoffice_kernel.domain.security import require_role
from backoffice_kernel.exceptions import (
    ExpenseHeadNotFoundError,
    InsufficientFloatBalanceError,
    InvalidAmountError,
    InvalidStatusTransitionError,
    MissingFieldError,
    OperatorNotFoundError,
    PaymentSourceNotAllowedError,
    ValidationError,
)
from backoffice_kernel.logging_config import get_logger
from backoffice_kernel.models.audit import AuditSeverity
from backoffice_kernel.models.branch import Operator, OperatorRole
from backoffice_kernel.models.float_account import FloatAccountType, MovementType
from backoffice_kernel.models.transactions import (
    VALID_TRANSITIONS,
    Expense,
    ExpenseHead,
    TransactionStatus,
)
from backoffice_kernel.posting_rules.base import PostingEvent
from backoffice_kernel.services.base import BaseService
from backoffice_kernel.services.float_account_service import FloatAccountInfo
from backoffice_kernel.services.transaction_recorder import (
    MovementSpec,
    TransactionInfo,
    TransactionRecorder,
)

logger = get_logger("services.expenses")

CASH = "cash"

# Floats that hold third-party money and never pay branch expenses
DISALLOWED_PAYMENT_TYPES = frozenset({
    FloatAccountType.POWER.value,
    FloatAccountType.E_ZWICH.value,
    FloatAccountType.JUMIA.value,
})

APPROVER_ROLES = (OperatorRole.ADMIN, OperatorRole.FINANCE, OperatorRole.MANAGER)


@dataclass(frozen=True)
class ExpenseHeadInfo:
    id: UUID
    name: str
    category: str
    gl_account_code: str | None
    is_active: bool


class ExpenseService(BaseService[Expense]):
    def __init__(self, session: Session, clock: Clock, recorder: TransactionRecorder):
        super().__init__(session)
        self.clock = clock
        self.recorder = recorder
        self.floats = recorder.float_service

    # ------------------------------------------------------------------
    # Expense heads
    # ------------------------------------------------------------------

    def create_head(
        self,
        name: str,
        category: str,
        actor_id: UUID,
        gl_account_code: str | None = None,
    ) -> ExpenseHeadInfo:
        if not name:
            raise MissingFieldError("name")
        if not category:
            raise MissingFieldError("category")
        head = ExpenseHead(
            name=name,
            category=category.strip().lower(),
            gl_account_code=gl_account_code,
            is_active=True,
            created_by_id=actor_id,
        )
        self.session.add(head)
        self.session.flush()
        return self._head_dto(head)

    def list_heads(self, active_only: bool = True) -> list[ExpenseHeadInfo]:
        stmt = select(ExpenseHead).order_by(ExpenseHead.name)
        if active_only:
            stmt = stmt.where(ExpenseHead.is_active.is_(True))
        return [self._head_dto(h) for h in self.session.scalars(stmt)]

    @staticmethod
    def _head_dto(head: ExpenseHead) -> ExpenseHeadInfo:
        return ExpenseHeadInfo(
            id=head.id,
            name=head.name,
            category=head.category,
            gl_account_code=head.gl_account_code,
            is_active=head.is_active,
        )

    # ------------------------------------------------------------------
    # Workflow
    # ------------------------------------------------------------------

    def create_expense(
        self,
        branch_id: UUID,
        expense_head_id: UUID,
        amount: Decimal | int | str,
        payment_source: str,
        actor_id: UUID,
        expense_date: date | None = None,
        description: str | None = None,
    ) -> TransactionInfo:
        """
        Raise an expense claim (pending).

        Raises:
            ExpenseHeadNotFoundError, InvalidAmountError,
            PaymentSourceNotAllowedError
        """
        head = self.session.get(ExpenseHead, expense_head_id)
        if head is None or not head.is_active:
            raise ExpenseHeadNotFoundError(str(expense_head_id))
        amount = to_money(amount)
        if amount <= 0:
            raise InvalidAmountError("amount", amount)
        if not payment_source:
            raise MissingFieldError("payment_source")
        if payment_source.strip().lower() != CASH:
            self._payment_float(payment_source)
        source = CASH if payment_source.strip().lower() == CASH else payment_source.strip()

        now = self.clock.now()
        row = Expense(
            branch_id=branch_id,
            reference=f"EXP-{now.year}-{str(self.clock.epoch_millis())[-6:]}",
            amount=amount,
            fee=Decimal("0"),
            expense_head_id=head.id,
            description=description,
            expense_date=expense_date or now.date(),
            payment_source=source,
            transaction_date=now,
        )
        ledger = self.recorder.ledger
        return self.recorder.record(
            row,
            actor_id=actor_id,
            complete=False,
            posting_event=lambda expense: PostingEvent(
                source_module="expenses",
                transaction_type="pending",
                source_transaction_id=str(expense.id),
                amount=amount,
                branch_id=branch_id,
                reference=expense.reference,
                description=description or f"Expense: {head.name}",
                created_by=str(actor_id),
                entry_date=expense.expense_date,
                account_overrides={
                    "expense": head.gl_account_code or ledger.expense_account_code(head.category),
                    "liability": ledger.payable_account_code(),
                },
                metadata={"expense_head": head.name, "category": head.category},
            ),
            audit_details={"expense_head": head.name, "payment_source": source},
        )

    def approve(
        self,
        expense_id: UUID,
        approver_id: UUID,
        comments: str | None = None,
    ) -> TransactionInfo:
        """
        Approve and pay a pending expense from its payment source.

        Raises:
            PermissionDeniedError: approver is not admin, finance or manager.
            InvalidStatusTransitionError: the expense is not pending.
            InsufficientFloatBalanceError: the float cannot cover it.
        """
        self._require_approver(approver_id, "approve expenses")
        expense = self.recorder.get_transaction(Expense, expense_id)
        self._check_can(expense, TransactionStatus.COMPLETED)

        paying = self._paying_float(expense)
        amount = to_money(expense.amount)
        if paying.current_balance < amount:
            raise InsufficientFloatBalanceError(
                str(paying.id),
                paying.current_balance,
                amount,
                message="Insufficient float account balance for this expense.",
            )

        applied = self.recorder.apply_movements(
            expense,
            [MovementSpec(paying.id, -amount, MovementType.DEBIT, f"Expense {expense.reference}")],
            approver_id,
        )
        self.recorder.transition(expense, TransactionStatus.COMPLETED, approver_id)
        expense.approved_by = approver_id
        expense.approved_at = self.clock.now()
        if comments:
            expense.comments = comments
        self.session.flush()

        ledger = self.recorder.ledger
        self.recorder.post_to_ledger(
            expense,
            lambda row: PostingEvent(
                source_module="expenses",
                transaction_type="payment",
                source_transaction_id=str(row.id),
                amount=amount,
                branch_id=row.branch_id,
                reference=row.reference,
                description=f"Expense payment {row.reference}",
                created_by=str(approver_id),
                payment_float_account_id=paying.id,
                account_overrides={"liability": ledger.payable_account_code()},
            ),
        )
        if self.recorder.notifications is not None:
            self.recorder.notifications.notify_operator(
                expense.processed_by, f"Expense {expense.reference} approved"
            )
        self.recorder.audit(
            expense,
            "expense_approve",
            f"Approved expense {expense.reference}",
            approver_id,
            {"paid_from": str(paying.id)},
            severity=AuditSeverity.MEDIUM,
        )
        logger.info("expense_approved", extra={"reference": expense.reference})
        return self.recorder.to_info(expense, applied)

    def reject(self, expense_id: UUID, approver_id: UUID, comments: str | None = None) -> TransactionInfo:
        """Fail a pending expense and reverse its accrual."""
        self._require_approver(approver_id, "reject expenses")
        expense = self.recorder.get_transaction(Expense, expense_id)
        self.recorder.transition(expense, TransactionStatus.FAILED, approver_id)
        expense.comments = comments
        self.session.flush()
        self.recorder.reverse_ledger(expense, comments or "Expense rejected", approver_id)
        if self.recorder.notifications is not None:
            self.recorder.notifications.notify_operator(
                expense.processed_by, f"Expense {expense.reference} rejected"
            )
        self.recorder.audit(
            expense,
            "expense_reject",
            f"Rejected expense {expense.reference}",
            approver_id,
            {"comments": comments},
        )
        return self.recorder.to_info(expense)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require_approver(self, operator_id: UUID, action: str) -> Operator:
        operator = self.session.get(Operator, operator_id)
        if operator is None or not operator.is_active:
            raise OperatorNotFoundError(str(operator_id))
        require_role(operator, APPROVER_ROLES, action)
        return operator

    @staticmethod
    def _check_can(expense: Expense, to_status: TransactionStatus) -> None:
        current = TransactionStatus(expense.status)
        if to_status not in VALID_TRANSITIONS[current] or current != TransactionStatus.PENDING:
            raise InvalidStatusTransitionError(str(expense.id), current.value, to_status.value)

    def _payment_float(self, payment_source: str) -> FloatAccountInfo:
        try:
            account_id = UUID(payment_source.strip())
        except ValueError as exc:
            raise ValidationError(f"Invalid payment source: {payment_source}") from exc
        account = self.floats.get(account_id)
        if account.account_type in DISALLOWED_PAYMENT_TYPES:
            raise PaymentSourceNotAllowedError(account.account_type)
        return account

    def _paying_float(self, expense: Expense) -> FloatAccountInfo:
        if expense.payment_source == CASH:
            return self.floats.find_active(expense.branch_id, FloatAccountType.CASH_IN_TILL)
        return self._payment_float(expense.payment_source)
