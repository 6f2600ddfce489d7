"""
Module: backoffice_kernel.models.ledger
Responsibility: General-ledger persistence: chart of accounts, per-branch GL
    mappings, journal headers (GLTransaction) and journal lines.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - GLAccount.code is unique.
    - (source_module, source_transaction_id, source_transaction_type) is
      unique on gl_transactions; posting the same business event twice
      returns the first journal instead of writing a second one.
    - sum(debit) == sum(credit) per GLTransaction.  Checked by LedgerPoster
      before insert; is_balanced is the read-side view of the same rule.
    - GLAccount.balance is a cache of sum(debit - credit) over its lines.
      ReportAggregator can recompute it and report drift.

Audit relevance:
    Reversals never delete lines.  They post a mirror journal whose
    source_transaction_type is "reversal_<type>" and flag the original.
"""

from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backoffice_kernel.db.base import TrackedBase, UUIDString


class GLAccountType(str, Enum):
    ASSET = "Asset"
    LIABILITY = "Liability"
    EQUITY = "Equity"
    REVENUE = "Revenue"
    EXPENSE = "Expense"


DEBIT_NORMAL_TYPES = frozenset({GLAccountType.ASSET, GLAccountType.EXPENSE})


class MappingType(str, Enum):
    """Account slot a posting rule debits or credits."""

    MAIN = "main"
    LIABILITY = "liability"
    FEE = "fee"
    REVENUE = "revenue"
    EXPENSE = "expense"
    ASSET = "asset"
    EQUITY = "equity"
    PAYMENT = "payment"


class GLTransactionStatus(str, Enum):
    POSTED = "posted"
    REVERSED = "reversed"


class GLAccount(TrackedBase):
    __tablename__ = "gl_accounts"

    __table_args__ = (
        UniqueConstraint("code", name="uq_gl_account_code"),
        Index("idx_gl_account_type", "account_type"),
    )

    code: Mapped[str] = mapped_column(String(50), nullable=False)

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    account_type: Mapped[GLAccountType] = mapped_column(String(20), nullable=False)

    # Cached sum(debit - credit) of posted lines
    balance: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)

    parent_code: Mapped[str | None] = mapped_column(String(50), nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def __repr__(self) -> str:
        return f"<GLAccount {self.code}: {self.name}>"

    @property
    def is_debit_normal(self) -> bool:
        return self.account_type in DEBIT_NORMAL_TYPES

    @property
    def natural_balance(self) -> Decimal:
        """Balance signed so that the account's normal side is positive."""
        return self.balance if self.is_debit_normal else -self.balance


class GLMapping(TrackedBase):
    """
    Binds (branch, transaction type, mapping type) to a GL account.

    transaction_type is the module's float transaction type (power_float,
    momo_float, ...) or a module name for non-float modules (expenses,
    commissions, float_operations).  A mapping may be pinned to a single
    float account; such mappings win over unpinned ones.
    """

    __tablename__ = "gl_mappings"

    __table_args__ = (
        Index("idx_gl_mapping_lookup", "branch_id", "transaction_type", "mapping_type"),
        Index("idx_gl_mapping_float", "float_account_id"),
    )

    branch_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    transaction_type: Mapped[str] = mapped_column(String(50), nullable=False)

    mapping_type: Mapped[MappingType] = mapped_column(String(20), nullable=False)

    gl_account_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("gl_accounts.id"), nullable=False
    )

    float_account_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    gl_account: Mapped[GLAccount] = relationship()


class GLTransaction(TrackedBase):
    """Journal entry header.  One per business event."""

    __tablename__ = "gl_transactions"

    __table_args__ = (
        UniqueConstraint(
            "source_module",
            "source_transaction_id",
            "source_transaction_type",
            name="uq_gl_transaction_source",
        ),
        Index("idx_gl_transaction_date", "entry_date"),
        Index("idx_gl_transaction_branch", "branch_id"),
    )

    entry_date: Mapped[date] = mapped_column(Date, nullable=False)

    source_module: Mapped[str] = mapped_column(String(50), nullable=False)

    source_transaction_id: Mapped[str] = mapped_column(String(64), nullable=False)

    source_transaction_type: Mapped[str] = mapped_column(String(60), nullable=False)

    description: Mapped[str] = mapped_column(String(500), nullable=False)

    status: Mapped[GLTransactionStatus] = mapped_column(
        String(20), default=GLTransactionStatus.POSTED.value, nullable=False
    )

    # Operator id or "system"
    created_by: Mapped[str] = mapped_column(String(64), nullable=False)

    branch_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    entry_metadata: Mapped[dict[str, Any] | None] = mapped_column(
        "metadata", JSON, nullable=True
    )

    reversal_of_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("gl_transactions.id"), nullable=True
    )

    lines: Mapped[list["GLJournalEntryLine"]] = relationship(
        back_populates="transaction",
        cascade="all, delete-orphan",
        order_by="GLJournalEntryLine.line_seq",
    )

    def __repr__(self) -> str:
        return (
            f"<GLTransaction {self.source_module}/{self.source_transaction_type} "
            f"{self.source_transaction_id}>"
        )

    @property
    def total_debits(self) -> Decimal:
        return sum((line.debit for line in self.lines), Decimal("0"))

    @property
    def total_credits(self) -> Decimal:
        return sum((line.credit for line in self.lines), Decimal("0"))

    @property
    def is_balanced(self) -> bool:
        return self.total_debits == self.total_credits


class GLJournalEntryLine(TrackedBase):
    __tablename__ = "gl_journal_entries"

    __table_args__ = (
        Index("idx_gl_line_transaction", "transaction_id"),
        Index("idx_gl_line_account", "account_id"),
    )

    transaction_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("gl_transactions.id"), nullable=False
    )

    account_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("gl_accounts.id"), nullable=False
    )

    # Denormalized for reports
    account_code: Mapped[str] = mapped_column(String(50), nullable=False)

    debit: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)

    credit: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)

    description: Mapped[str | None] = mapped_column(String(500), nullable=True)

    line_seq: Mapped[int] = mapped_column(Integer, nullable=False)

    transaction: Mapped[GLTransaction] = relationship(back_populates="lines")

    account: Mapped[GLAccount] = relationship()
