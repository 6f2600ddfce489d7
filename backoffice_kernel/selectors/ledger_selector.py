"""
Module: backoffice_kernel.selectors.ledger_selector
Responsibility: Read-only general-ledger queries: trial balance, profit and
    loss, the journal, and a drift check between each GL account's cached
    balance and the sum of its journal lines.
Architecture position: Kernel > Selectors.  May import from models/ and
    selectors/base.py.  MUST NOT import from services/.

Invariants enforced:
    - Balances are computed from journal lines at query time.  Reversed
      entries stay in the sums together with their mirrors, so they net to
      zero.
    - The sum of all debits equals the sum of all credits whenever every
      posted entry is balanced.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload

from backoffice_kernel.db.types import ZERO
from backoffice_kernel.models.ledger import (
    DEBIT_NORMAL_TYPES,
    GLAccount,
    GLAccountType,
    GLJournalEntryLine,
    GLTransaction,
)
from backoffice_kernel.selectors.base import BaseSelector, as_money


@dataclass(frozen=True)
class TrialBalanceRow:
    account_code: str
    account_name: str
    account_type: str
    debit_total: Decimal
    credit_total: Decimal

    @property
    def balance(self) -> Decimal:
        """Net balance (debits - credits)."""
        return self.debit_total - self.credit_total

    @property
    def natural_balance(self) -> Decimal:
        """Balance on the account's normal side (credits - debits for liabilities, equity, revenue)."""
        if GLAccountType(self.account_type) in DEBIT_NORMAL_TYPES:
            return self.balance
        return -self.balance


@dataclass(frozen=True)
class ProfitAndLoss:
    start: date
    end: date
    revenue: tuple[TrialBalanceRow, ...]
    expenses: tuple[TrialBalanceRow, ...]

    @property
    def total_revenue(self) -> Decimal:
        return sum((r.natural_balance for r in self.revenue), ZERO)

    @property
    def total_expenses(self) -> Decimal:
        return sum((r.natural_balance for r in self.expenses), ZERO)

    @property
    def net_income(self) -> Decimal:
        return self.total_revenue - self.total_expenses


@dataclass(frozen=True)
class BalanceDrift:
    account_code: str
    cached_balance: Decimal
    computed_balance: Decimal

    @property
    def difference(self) -> Decimal:
        return self.cached_balance - self.computed_balance


@dataclass(frozen=True)
class JournalLineView:
    account_code: str
    debit: Decimal
    credit: Decimal
    description: str | None


@dataclass(frozen=True)
class JournalEntryView:
    id: UUID
    entry_date: date
    source_module: str
    source_transaction_id: str
    source_transaction_type: str
    description: str
    status: str
    branch_id: UUID | None
    lines: tuple[JournalLineView, ...]

    @property
    def total_debits(self) -> Decimal:
        return sum((l.debit for l in self.lines), ZERO)

    @property
    def total_credits(self) -> Decimal:
        return sum((l.credit for l in self.lines), ZERO)


class LedgerSelector(BaseSelector[GLJournalEntryLine]):
    def __init__(self, session: Session):
        super().__init__(session)

    def trial_balance(
        self,
        as_of_date: date | None = None,
        branch_id: UUID | None = None,
        start_date: date | None = None,
    ) -> list[TrialBalanceRow]:
        """
        Debit and credit totals per GL account, ordered by code.

        Accounts with no lines in the window are omitted.
        """
        stmt = (
            select(
                GLAccount.code,
                GLAccount.name,
                GLAccount.account_type,
                func.sum(GLJournalEntryLine.debit),
                func.sum(GLJournalEntryLine.credit),
            )
            .join(GLJournalEntryLine, GLJournalEntryLine.account_id == GLAccount.id)
            .join(GLTransaction, GLJournalEntryLine.transaction_id == GLTransaction.id)
            .group_by(GLAccount.code, GLAccount.name, GLAccount.account_type)
            .order_by(GLAccount.code)
        )
        if as_of_date is not None:
            stmt = stmt.where(GLTransaction.entry_date <= as_of_date)
        if start_date is not None:
            stmt = stmt.where(GLTransaction.entry_date >= start_date)
        if branch_id is not None:
            stmt = stmt.where(GLTransaction.branch_id == branch_id)

        return [
            TrialBalanceRow(
                account_code=code,
                account_name=name,
                account_type=str(GLAccountType(account_type).value),
                debit_total=as_money(debits),
                credit_total=as_money(credits),
            )
            for code, name, account_type, debits, credits in self.session.execute(stmt)
        ]

    def total_debits_credits(self, as_of_date: date | None = None) -> tuple[Decimal, Decimal]:
        rows = self.trial_balance(as_of_date)
        return (
            sum((r.debit_total for r in rows), ZERO),
            sum((r.credit_total for r in rows), ZERO),
        )

    def profit_and_loss(
        self, start: date, end: date, branch_id: UUID | None = None
    ) -> ProfitAndLoss:
        rows = self.trial_balance(as_of_date=end, branch_id=branch_id, start_date=start)
        return ProfitAndLoss(
            start=start,
            end=end,
            revenue=tuple(r for r in rows if r.account_type == GLAccountType.REVENUE.value),
            expenses=tuple(r for r in rows if r.account_type == GLAccountType.EXPENSE.value),
        )

    def cached_balance_drift(self) -> list[BalanceDrift]:
        """GL accounts whose stored balance differs from debits - credits of their lines."""
        computed = {
            account_id: as_money(debits) - as_money(credits)
            for account_id, debits, credits in self.session.execute(
                select(
                    GLJournalEntryLine.account_id,
                    func.sum(GLJournalEntryLine.debit),
                    func.sum(GLJournalEntryLine.credit),
                ).group_by(GLJournalEntryLine.account_id)
            )
        }
        drift = []
        for account in self.session.scalars(select(GLAccount).order_by(GLAccount.code)):
            cached = as_money(account.balance)
            actual = computed.get(account.id, as_money(None))
            if cached != actual:
                drift.append(BalanceDrift(account.code, cached, actual))
        return drift

    def journal(
        self,
        source_module: str | None = None,
        source_transaction_id: str | None = None,
        limit: int | None = None,
    ) -> list[JournalEntryView]:
        stmt = select(GLTransaction).options(selectinload(GLTransaction.lines))
        if source_module is not None:
            stmt = stmt.where(GLTransaction.source_module == source_module)
        if source_transaction_id is not None:
            stmt = stmt.where(GLTransaction.source_transaction_id == source_transaction_id)
        stmt = stmt.order_by(GLTransaction.entry_date, GLTransaction.created_at)
        if limit is not None:
            stmt = stmt.limit(limit)

        return [
            JournalEntryView(
                id=txn.id,
                entry_date=txn.entry_date,
                source_module=txn.source_module,
                source_transaction_id=txn.source_transaction_id,
                source_transaction_type=txn.source_transaction_type,
                description=txn.description,
                status=str(txn.status),
                branch_id=txn.branch_id,
                lines=tuple(
                    JournalLineView(
                        account_code=line.account_code,
                        debit=as_money(line.debit),
                        credit=as_money(line.credit),
                        description=line.description,
                    )
                    for line in txn.lines
                ),
            )
            for txn in self.session.scalars(stmt)
        ]
