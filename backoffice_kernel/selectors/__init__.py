"""Selectors for the back-office kernel (read side)."""

from backoffice_kernel.selectors.ledger_selector import (
    BalanceDrift,
    JournalEntryView,
    LedgerSelector,
    ProfitAndLoss,
    TrialBalanceRow,
)
from backoffice_kernel.selectors.report_selector import (
    BranchTotals,
    DailySummary,
    DailyTotal,
    ExpenseCategoryRow,
    FloatBalanceRow,
    ModuleSummaryRow,
    ReportAggregator,
)

__all__ = [
    "BalanceDrift",
    "BranchTotals",
    "DailySummary",
    "DailyTotal",
    "ExpenseCategoryRow",
    "FloatBalanceRow",
    "JournalEntryView",
    "LedgerSelector",
    "ModuleSummaryRow",
    "ProfitAndLoss",
    "ReportAggregator",
    "TrialBalanceRow",
]
