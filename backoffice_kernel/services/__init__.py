"""Services for the back-office kernel (write side)."""

from backoffice_kernel.services.agency_banking_service import (
    AgencyBankingRequest,
    AgencyBankingService,
)
from backoffice_kernel.services.audit_service import AuditService
from backoffice_kernel.services.expense_service import ExpenseHeadInfo, ExpenseService
from backoffice_kernel.services.ezwich_service import CardBatchInfo, EzwichService
from backoffice_kernel.services.float_account_service import (
    FloatAccountInfo,
    FloatAccountService,
    FloatMovementInfo,
)
from backoffice_kernel.services.jumia_service import JumiaService, PackageInfo
from backoffice_kernel.services.ledger_poster import (
    AccountResolver,
    LedgerPoster,
    PostingResult,
    PostingStatus,
)
from backoffice_kernel.services.momo_service import MomoService, MomoTransactionRequest
from backoffice_kernel.services.notification_service import (
    LoggingNotifier,
    NotificationService,
    Notifier,
)
from backoffice_kernel.services.power_service import PowerSaleRequest, PowerService
from backoffice_kernel.services.setup_service import BranchInfo, MappingInfo, SetupService
from backoffice_kernel.services.transaction_recorder import (
    MovementSpec,
    NotificationSpec,
    TransactionInfo,
    TransactionRecorder,
)

__all__ = [
    "AccountResolver",
    "AgencyBankingRequest",
    "AgencyBankingService",
    "AuditService",
    "BranchInfo",
    "CardBatchInfo",
    "ExpenseHeadInfo",
    "ExpenseService",
    "EzwichService",
    "FloatAccountInfo",
    "FloatAccountService",
    "FloatMovementInfo",
    "JumiaService",
    "LedgerPoster",
    "LoggingNotifier",
    "MappingInfo",
    "MomoService",
    "MomoTransactionRequest",
    "MovementSpec",
    "NotificationService",
    "NotificationSpec",
    "Notifier",
    "PackageInfo",
    "PostingResult",
    "PostingStatus",
    "PowerSaleRequest",
    "PowerService",
    "SetupService",
    "TransactionInfo",
    "TransactionRecorder",
]
