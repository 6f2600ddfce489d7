"""
Module: backoffice_kernel.models.float_account
Responsibility: Branch-scoped float accounts and the movement rows written
    for every change to their balance.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - current_balance never goes negative through a posted movement
      (FloatAccountService.adjust_balance refuses the debit).
    - Every balance change has a FloatTransaction whose balance_after equals
      the next movement's balance_before.

Failure modes:
    - FloatAccountNotFoundError on lookup of an unknown id.
    - FloatAccountReferencedError on delete while domain transactions point
      at the account.
"""

from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import Boolean, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backoffice_kernel.db.base import TrackedBase, UUIDString


class FloatAccountType(str, Enum):
    """Payment rail a float account funds."""

    CASH_IN_TILL = "cash-in-till"
    MOMO = "momo"
    AGENCY_BANKING = "agency-banking"
    POWER = "power"
    E_ZWICH = "e-zwich"
    JUMIA = "jumia"


class MovementType(str, Enum):
    INITIAL_BALANCE = "initial_balance"
    RECHARGE = "recharge"
    WITHDRAWAL = "withdrawal"
    DEBIT = "debit"
    CREDIT = "credit"
    TRANSFER_IN = "transfer_in"
    TRANSFER_OUT = "transfer_out"
    ADJUSTMENT = "adjustment"


class FloatAccount(TrackedBase):
    """
    Funds available at one branch for one payment rail (and provider).

    Threshold status is derived: balance below min_threshold is "low",
    above a non-zero max_threshold is "high".
    """

    __tablename__ = "float_accounts"

    __table_args__ = (
        Index("idx_float_branch_type", "branch_id", "account_type"),
        Index("idx_float_active", "is_active"),
    )

    branch_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("branches.id"), nullable=False
    )

    account_type: Mapped[FloatAccountType] = mapped_column(String(30), nullable=False)

    # e.g. MTN, ECG, NEDCo, GCB
    provider: Mapped[str | None] = mapped_column(String(100), nullable=True)

    account_number: Mapped[str | None] = mapped_column(String(100), nullable=True)

    current_balance: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)

    min_threshold: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)

    max_threshold: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    movements: Mapped[list["FloatTransaction"]] = relationship(
        back_populates="float_account",
        cascade="all, delete-orphan",
        order_by="FloatTransaction.sequence",
    )

    def __repr__(self) -> str:
        return f"<FloatAccount {self.account_type}/{self.provider} {self.current_balance}>"

    @property
    def threshold_status(self) -> str:
        if self.current_balance < self.min_threshold:
            return "low"
        if self.max_threshold > 0 and self.current_balance > self.max_threshold:
            return "high"
        return "ok"


class FloatTransaction(TrackedBase):
    """One signed change to a float balance."""

    __tablename__ = "float_transactions"

    __table_args__ = (
        Index("idx_float_txn_account", "float_account_id"),
        Index("idx_float_txn_source", "source_module", "source_transaction_id"),
    )

    float_account_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("float_accounts.id"), nullable=False
    )

    branch_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    movement_type: Mapped[MovementType] = mapped_column(String(30), nullable=False)

    # Positive credits the float, negative debits it
    amount: Mapped[Decimal] = mapped_column(nullable=False)

    balance_before: Mapped[Decimal] = mapped_column(nullable=False)

    balance_after: Mapped[Decimal] = mapped_column(nullable=False)

    # Monotonic per-account ordering; created_at has only second precision on some backends
    sequence: Mapped[int] = mapped_column(nullable=False, default=0)

    reference: Mapped[str | None] = mapped_column(String(100), nullable=True)

    description: Mapped[str | None] = mapped_column(String(500), nullable=True)

    source_module: Mapped[str | None] = mapped_column(String(50), nullable=True)

    source_transaction_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    float_account: Mapped[FloatAccount] = relationship(back_populates="movements")
