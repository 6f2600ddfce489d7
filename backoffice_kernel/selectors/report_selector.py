"""
Module: backoffice_kernel.selectors.report_selector
Responsibility: Branch reporting.  SUM/COUNT aggregation over the module
    transaction tables, float balance snapshots and the expense breakdown.
Architecture position: Kernel > Selectors.  May import from models/ and
    selectors/base.py.  MUST NOT import from services/.

Every query runs live; nothing is cached.  Module totals count completed
rows only; the expense breakdown also counts claims awaiting approval.
Date windows are inclusive and read in UTC.
"""

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from backoffice_kernel.db.types import ZERO
from backoffice_kernel.models.branch import Branch
from backoffice_kernel.models.float_account import FloatAccount
from backoffice_kernel.models.transactions import (
    AgencyBankingTransaction,
    Expense,
    ExpenseHead,
    EzwichCardIssuance,
    EzwichWithdrawal,
    JumiaTransaction,
    MomoTransaction,
    PowerTransaction,
    TransactionStatus,
)
from backoffice_kernel.selectors.base import BaseSelector, as_money

# Report order.  Models sharing a source_module are summed into one row.
MODULE_MODELS = (
    MomoTransaction,
    AgencyBankingTransaction,
    EzwichCardIssuance,
    EzwichWithdrawal,
    PowerTransaction,
    JumiaTransaction,
    Expense,
)


@dataclass(frozen=True)
class ModuleSummaryRow:
    module: str
    count: int
    amount: Decimal
    fee: Decimal


@dataclass(frozen=True)
class FloatBalanceRow:
    float_account_id: UUID
    branch_id: UUID
    account_type: str
    provider: str | None
    current_balance: Decimal
    min_threshold: Decimal
    max_threshold: Decimal
    threshold_status: str


@dataclass(frozen=True)
class DailyTotal:
    day: date
    count: int
    amount: Decimal
    fee: Decimal


@dataclass(frozen=True)
class DailySummary:
    branch_id: UUID | None
    day: date
    modules: tuple[ModuleSummaryRow, ...]
    floats: tuple[FloatBalanceRow, ...]

    @property
    def total_count(self) -> int:
        return sum(m.count for m in self.modules)

    @property
    def total_amount(self) -> Decimal:
        return sum((m.amount for m in self.modules), ZERO)

    @property
    def total_fees(self) -> Decimal:
        return sum((m.fee for m in self.modules), ZERO)


@dataclass(frozen=True)
class BranchTotals:
    branch_id: UUID
    branch_code: str
    branch_name: str
    count: int
    amount: Decimal
    fee: Decimal


@dataclass(frozen=True)
class ExpenseCategoryRow:
    category: str
    count: int
    amount: Decimal


def _window(start: date, end: date) -> tuple[datetime, datetime]:
    """[start 00:00, end+1 00:00) in UTC."""
    return (
        datetime.combine(start, time.min, tzinfo=timezone.utc),
        datetime.combine(end + timedelta(days=1), time.min, tzinfo=timezone.utc),
    )


def _threshold_status(balance: Decimal, low: Decimal, high: Decimal) -> str:
    if balance < low:
        return "low"
    if high > 0 and balance > high:
        return "high"
    return "ok"


class ReportAggregator(BaseSelector[Branch]):
    def __init__(self, session: Session):
        super().__init__(session)

    def module_summary(
        self, branch_id: UUID | None, start: date, end: date
    ) -> list[ModuleSummaryRow]:
        """Count, amount and fee of completed transactions per module in the window."""
        low, high = _window(start, end)
        totals: dict[str, tuple[int, Decimal, Decimal]] = {}
        for model in MODULE_MODELS:
            stmt = select(
                func.count(model.id), func.sum(model.amount), func.sum(model.fee)
            ).where(
                model.transaction_date >= low,
                model.transaction_date < high,
                model.status == TransactionStatus.COMPLETED.value,
            )
            if branch_id is not None:
                stmt = stmt.where(model.branch_id == branch_id)
            count, amount, fee = self.session.execute(stmt).one()
            seen_count, seen_amount, seen_fee = totals.get(model.source_module, (0, ZERO, ZERO))
            totals[model.source_module] = (
                seen_count + int(count or 0),
                seen_amount + as_money(amount),
                seen_fee + as_money(fee),
            )
        return [
            ModuleSummaryRow(module, count, amount, fee)
            for module, (count, amount, fee) in totals.items()
        ]

    def daily_summary(self, branch_id: UUID | None, day: date) -> DailySummary:
        return DailySummary(
            branch_id=branch_id,
            day=day,
            modules=tuple(self.module_summary(branch_id, day, day)),
            floats=tuple(self.float_balances(branch_id)),
        )

    def weekly_performance(self, branch_id: UUID | None, week_start: date) -> list[DailyTotal]:
        """Seven daily totals starting at week_start."""
        totals = []
        for offset in range(7):
            day = week_start + timedelta(days=offset)
            modules = self.module_summary(branch_id, day, day)
            totals.append(
                DailyTotal(
                    day=day,
                    count=sum(m.count for m in modules),
                    amount=sum((m.amount for m in modules), ZERO),
                    fee=sum((m.fee for m in modules), ZERO),
                )
            )
        return totals

    def branch_comparison(self, start: date, end: date) -> list[BranchTotals]:
        branches = self.session.scalars(
            select(Branch).where(Branch.is_active.is_(True)).order_by(Branch.code)
        )
        comparison = []
        for branch in branches:
            modules = self.module_summary(branch.id, start, end)
            comparison.append(
                BranchTotals(
                    branch_id=branch.id,
                    branch_code=branch.code,
                    branch_name=branch.name,
                    count=sum(m.count for m in modules),
                    amount=sum((m.amount for m in modules), ZERO),
                    fee=sum((m.fee for m in modules), ZERO),
                )
            )
        return comparison

    def float_balances(self, branch_id: UUID | None = None) -> list[FloatBalanceRow]:
        stmt = select(FloatAccount).where(FloatAccount.is_active.is_(True))
        if branch_id is not None:
            stmt = stmt.where(FloatAccount.branch_id == branch_id)
        stmt = stmt.order_by(FloatAccount.branch_id, FloatAccount.account_type, FloatAccount.provider)
        rows = []
        for account in self.session.scalars(stmt):
            balance = as_money(account.current_balance)
            low = as_money(account.min_threshold)
            high = as_money(account.max_threshold)
            rows.append(
                FloatBalanceRow(
                    float_account_id=account.id,
                    branch_id=account.branch_id,
                    account_type=str(account.account_type),
                    provider=account.provider,
                    current_balance=balance,
                    min_threshold=low,
                    max_threshold=high,
                    threshold_status=_threshold_status(balance, low, high),
                )
            )
        return rows

    def low_balance_accounts(self, branch_id: UUID | None = None) -> list[FloatBalanceRow]:
        return [r for r in self.float_balances(branch_id) if r.threshold_status == "low"]

    def expense_breakdown(
        self, branch_id: UUID | None, start: date, end: date
    ) -> list[ExpenseCategoryRow]:
        """Expense totals per head category by expense date.  Rejected claims are left out."""
        stmt = (
            select(ExpenseHead.category, func.count(Expense.id), func.sum(Expense.amount))
            .join(ExpenseHead, Expense.expense_head_id == ExpenseHead.id)
            .where(
                Expense.expense_date >= start,
                Expense.expense_date <= end,
                Expense.status.not_in(
                    [TransactionStatus.DELETED.value, TransactionStatus.FAILED.value]
                ),
            )
            .group_by(ExpenseHead.category)
            .order_by(ExpenseHead.category)
        )
        if branch_id is not None:
            stmt = stmt.where(Expense.branch_id == branch_id)
        return [
            ExpenseCategoryRow(category, int(count), as_money(amount))
            for category, count, amount in self.session.execute(stmt)
        ]
