"""ORM models for the back-office kernel."""

from backoffice_kernel.models.audit import AuditLogEntry, AuditSeverity
from backoffice_kernel.models.branch import Branch, Operator, OperatorRole
from backoffice_kernel.models.float_account import (
    FloatAccount,
    FloatAccountType,
    FloatTransaction,
    MovementType,
)
from backoffice_kernel.models.ledger import (
    GLAccount,
    GLAccountType,
    GLJournalEntryLine,
    GLMapping,
    GLTransaction,
    GLTransactionStatus,
    MappingType,
)
from backoffice_kernel.models.transactions import (
    TERMINAL_STATUSES,
    VALID_TRANSITIONS,
    AgencyBankingTransaction,
    AgencyBankingTransactionType,
    DomainTransactionMixin,
    Expense,
    ExpenseHead,
    EzwichCardBatch,
    EzwichCardIssuance,
    EzwichWithdrawal,
    JumiaPackage,
    JumiaPackageStatus,
    JumiaTransaction,
    JumiaTransactionType,
    MomoTransaction,
    MomoTransactionType,
    PowerTransaction,
    TransactionStatus,
)

__all__ = [
    "AuditLogEntry",
    "AuditSeverity",
    "Branch",
    "Operator",
    "OperatorRole",
    "FloatAccount",
    "FloatAccountType",
    "FloatTransaction",
    "MovementType",
    "GLAccount",
    "GLAccountType",
    "GLJournalEntryLine",
    "GLMapping",
    "GLTransaction",
    "GLTransactionStatus",
    "MappingType",
    "AgencyBankingTransaction",
    "AgencyBankingTransactionType",
    "DomainTransactionMixin",
    "Expense",
    "ExpenseHead",
    "EzwichCardBatch",
    "EzwichCardIssuance",
    "EzwichWithdrawal",
    "JumiaPackage",
    "JumiaPackageStatus",
    "JumiaTransaction",
    "JumiaTransactionType",
    "MomoTransaction",
    "MomoTransactionType",
    "PowerTransaction",
    "TransactionStatus",
    "TERMINAL_STATUSES",
    "VALID_TRANSITIONS",
]
