"""
Module: backoffice_kernel.models.transactions
Responsibility: Domain transaction records (mobile money, agency banking,
    power sales, E-Zwich card issuance and withdrawals, Jumia collections
    and settlements, expenses) plus the stock they draw on (card batches,
    Jumia packages) and the status table that governs every domain
    transaction.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - Status changes follow VALID_TRANSITIONS; REVERSED and DELETED are
      terminal.  TransactionRecorder is the only writer of status.
    - gl_transaction_id is a soft link: it stays NULL when best-effort GL
      posting failed, and the business row is kept regardless.
    - EzwichCardBatch.quantity_received >= quantity_issued.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import Date, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from backoffice_kernel.db.base import TrackedBase, UUIDString


class TransactionStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REVERSED = "reversed"
    DELETED = "deleted"


VALID_TRANSITIONS: dict[TransactionStatus, frozenset[TransactionStatus]] = {
    TransactionStatus.PENDING: frozenset({
        TransactionStatus.COMPLETED,
        TransactionStatus.FAILED,
        TransactionStatus.REVERSED,
        TransactionStatus.DELETED,
    }),
    TransactionStatus.COMPLETED: frozenset({
        TransactionStatus.REVERSED,
        TransactionStatus.DELETED,
    }),
    TransactionStatus.FAILED: frozenset({TransactionStatus.DELETED}),
    # Terminal states
    TransactionStatus.REVERSED: frozenset(),
    TransactionStatus.DELETED: frozenset(),
}

TERMINAL_STATUSES = frozenset(
    status for status, targets in VALID_TRANSITIONS.items() if not targets
)


class DomainTransactionMixin:
    """Columns shared by every money-moving domain record."""

    branch_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False, index=True)

    reference: Mapped[str] = mapped_column(String(100), nullable=False)

    amount: Mapped[Decimal] = mapped_column(nullable=False)

    fee: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)

    status: Mapped[TransactionStatus] = mapped_column(
        String(20), default=TransactionStatus.PENDING.value, nullable=False
    )

    # Business time, taken from the injected clock
    transaction_date: Mapped[datetime] = mapped_column(nullable=False, index=True)

    processed_by: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    # Soft link to the journal this transaction produced
    gl_transaction_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    notes: Mapped[str | None] = mapped_column(String(1000), nullable=True)


class PowerTransaction(DomainTransactionMixin, TrackedBase):
    __tablename__ = "power_transactions"

    source_module = "power"

    meter_number: Mapped[str] = mapped_column(String(50), nullable=False)

    # ECG, NEDCo, ...
    provider: Mapped[str] = mapped_column(String(50), nullable=False)

    customer_name: Mapped[str] = mapped_column(String(255), nullable=False)

    customer_phone: Mapped[str | None] = mapped_column(String(20), nullable=True)

    # "cash" or a float account id rendered as a string
    payment_method: Mapped[str] = mapped_column(String(64), nullable=False)

    payment_account_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    float_account_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)


class MomoTransactionType(str, Enum):
    CASH_IN = "cash-in"
    CASH_OUT = "cash-out"


class MomoTransaction(DomainTransactionMixin, TrackedBase):
    """Mobile money cash-in or cash-out against a provider float."""

    __tablename__ = "momo_transactions"

    source_module = "momo"

    transaction_type: Mapped[MomoTransactionType] = mapped_column(String(20), nullable=False)

    # MTN, Vodafone, AirtelTigo, ...
    provider: Mapped[str] = mapped_column(String(50), nullable=False)

    customer_name: Mapped[str] = mapped_column(String(255), nullable=False)

    phone_number: Mapped[str] = mapped_column(String(20), nullable=False)

    float_account_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    cash_till_account_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)


class AgencyBankingTransactionType(str, Enum):
    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"
    INTERBANK = "interbank"


class AgencyBankingTransaction(DomainTransactionMixin, TrackedBase):
    __tablename__ = "agency_banking_transactions"

    source_module = "agency_banking"

    transaction_type: Mapped[AgencyBankingTransactionType] = mapped_column(
        String(20), nullable=False
    )

    # Agency-banking float of the partner bank
    partner_bank_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    partner_bank: Mapped[str] = mapped_column(String(100), nullable=False)

    customer_name: Mapped[str] = mapped_column(String(255), nullable=False)

    account_number: Mapped[str] = mapped_column(String(15), nullable=False)

    customer_phone: Mapped[str | None] = mapped_column(String(20), nullable=True)

    cash_till_account_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)


class EzwichCardBatch(TrackedBase):
    __tablename__ = "ezwich_card_batches"

    __table_args__ = (UniqueConstraint("batch_code", name="uq_ezwich_batch_code"),)

    batch_code: Mapped[str] = mapped_column(String(50), nullable=False)

    branch_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False, index=True)

    card_type: Mapped[str] = mapped_column(String(30), nullable=False)

    quantity_received: Mapped[int] = mapped_column(nullable=False)

    quantity_issued: Mapped[int] = mapped_column(default=0, nullable=False)

    unit_cost: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)

    expiry_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    # received | depleted
    status: Mapped[str] = mapped_column(String(20), default="received", nullable=False)

    notes: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    @property
    def quantity_available(self) -> int:
        return self.quantity_received - self.quantity_issued


class EzwichCardIssuance(DomainTransactionMixin, TrackedBase):
    """Card sold to a customer.  amount is the card fee charged."""

    __tablename__ = "ezwich_card_issuance"

    __table_args__ = (UniqueConstraint("card_number", name="uq_ezwich_card_number"),)

    source_module = "e_zwich"

    card_number: Mapped[str] = mapped_column(String(50), nullable=False)

    batch_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("ezwich_card_batches.id"), nullable=False
    )

    card_type: Mapped[str] = mapped_column(String(30), nullable=False)

    customer_name: Mapped[str] = mapped_column(String(255), nullable=False)

    customer_phone: Mapped[str | None] = mapped_column(String(20), nullable=True)

    # Float credited with the fee; cash-in-till when not given
    partner_account_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)


class EzwichWithdrawal(DomainTransactionMixin, TrackedBase):
    """
    Cash paid out against an E-Zwich card.  amount leaves the settlement
    float; fee lands in the cash-in-till.
    """

    __tablename__ = "ezwich_withdrawals"

    source_module = "e_zwich"

    card_number: Mapped[str] = mapped_column(String(50), nullable=False)

    customer_name: Mapped[str] = mapped_column(String(255), nullable=False)

    customer_phone: Mapped[str | None] = mapped_column(String(20), nullable=True)

    settlement_account_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    cash_till_account_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)


class JumiaPackageStatus(str, Enum):
    RECEIVED = "received"
    DELIVERED = "delivered"
    SETTLED = "settled"


class JumiaPackage(TrackedBase):
    __tablename__ = "jumia_packages"

    __table_args__ = (UniqueConstraint("tracking_id", name="uq_jumia_tracking_id"),)

    tracking_id: Mapped[str] = mapped_column(String(100), nullable=False)

    branch_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False, index=True)

    customer_name: Mapped[str] = mapped_column(String(255), nullable=False)

    customer_phone: Mapped[str | None] = mapped_column(String(20), nullable=True)

    # Cash to collect on delivery
    amount: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)

    status: Mapped[JumiaPackageStatus] = mapped_column(
        String(20), default=JumiaPackageStatus.RECEIVED.value, nullable=False
    )

    delivered_at: Mapped[datetime | None] = mapped_column(nullable=True)

    settlement_reference: Mapped[str | None] = mapped_column(String(100), nullable=True)


class JumiaTransactionType(str, Enum):
    POD_COLLECTION = "pod_collection"
    SETTLEMENT = "settlement"


class JumiaTransaction(DomainTransactionMixin, TrackedBase):
    __tablename__ = "jumia_transactions"

    __table_args__ = (Index("idx_jumia_tracking", "tracking_id"),)

    source_module = "jumia"

    transaction_type: Mapped[JumiaTransactionType] = mapped_column(
        String(30), nullable=False
    )

    tracking_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    customer_name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    customer_phone: Mapped[str | None] = mapped_column(String(20), nullable=True)

    settlement_reference: Mapped[str | None] = mapped_column(String(100), nullable=True)

    float_account_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)


class ExpenseHead(TrackedBase):
    __tablename__ = "expense_heads"

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    # Free text; unknown categories post to the operational accounts
    category: Mapped[str] = mapped_column(String(50), nullable=False)

    # Overrides the category lookup when set
    gl_account_code: Mapped[str | None] = mapped_column(String(50), nullable=True)

    is_active: Mapped[bool] = mapped_column(default=True, nullable=False)


class Expense(DomainTransactionMixin, TrackedBase):
    """
    An expense claim.  pending until approved (completed) or rejected
    (failed).  Money leaves the payment source only on approval.
    """

    __tablename__ = "expenses"

    source_module = "expenses"

    expense_head_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("expense_heads.id"), nullable=False
    )

    description: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    expense_date: Mapped[date] = mapped_column(Date, nullable=False)

    # "cash" or a float account id rendered as a string
    payment_source: Mapped[str] = mapped_column(String(64), nullable=False)

    approved_by: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    approved_at: Mapped[datetime | None] = mapped_column(nullable=True)

    comments: Mapped[str | None] = mapped_column(String(1000), nullable=True)
