"""
AgencyBankingService -- deposits and withdrawals on behalf of partner banks.

Each partner bank is an agency-banking float of the branch.  A deposit (or
interbank transfer) takes cash into the till and spends bank float; a
withdrawal pays cash from the till and earns bank float back.  The fee
always stays in the till.
"""

from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from sqlalchemy.orm import Session

from backoffice_kernel.db.types import ZERO, to_money
from backoffice_kernel.domain.clock import Clock
from backoffice_kernel.exceptions import (
    FloatAccountNotFoundError,
    InsufficientFloatBalanceError,
    InvalidAmountError,
    MissingFieldError,
    ValidationError,
)
from backoffice_kernel.logging_config import get_logger
from backoffice_kernel.models.float_account import FloatAccountType, MovementType
from backoffice_kernel.models.transactions import (
    AgencyBankingTransaction,
    AgencyBankingTransactionType,
)
from backoffice_kernel.posting_rules.base import PostingEvent
from backoffice_kernel.services.base import BaseService
from backoffice_kernel.services.float_account_service import FloatAccountInfo
from backoffice_kernel.services.transaction_recorder import (
    MovementSpec,
    NotificationSpec,
    TransactionInfo,
    TransactionRecorder,
)

logger = get_logger("services.agency_banking")

MAX_ACCOUNT_NUMBER_LENGTH = 15

_TYPE_ALIASES = {"interbank_transfer": AgencyBankingTransactionType.INTERBANK.value}


@dataclass(frozen=True)
class AgencyBankingRequest:
    branch_id: UUID
    transaction_type: str
    # Agency-banking float of the partner bank
    partner_bank_id: UUID | None
    amount: Decimal
    customer_name: str
    account_number: str
    customer_phone: str | None = None
    fee: Decimal = ZERO
    notes: str | None = None


class AgencyBankingService(BaseService[AgencyBankingTransaction]):
    def __init__(self, session: Session, clock: Clock, recorder: TransactionRecorder):
        super().__init__(session)
        self.clock = clock
        self.recorder = recorder
        self.floats = recorder.float_service

    def record_transaction(self, request: AgencyBankingRequest, actor_id: UUID) -> TransactionInfo:
        """
        Raises:
            ValidationError: bad input, no cash-in-till, or a partner bank
                that is not an active agency-banking float of the branch.
            InsufficientFloatBalanceError: bank float (deposit) or till
                (withdrawal) cannot cover the amount.
        """
        txn_type, amount, fee = self._validate(request)
        till = self._cash_in_till(request.branch_id)
        bank = self._partner_bank(request.branch_id, request.partner_bank_id)

        if txn_type is AgencyBankingTransactionType.WITHDRAWAL:
            self._require(till, amount - fee, "Insufficient cash in till balance")
            movements = [
                MovementSpec(till.id, fee - amount, MovementType.DEBIT, "Agency withdrawal paid"),
                MovementSpec(bank.id, amount, MovementType.CREDIT, f"{bank.provider} withdrawal"),
            ]
        else:
            self._require(bank, amount, "Insufficient bank float balance")
            movements = [
                MovementSpec(till.id, amount + fee, MovementType.CREDIT, f"Agency {txn_type.value} received"),
                MovementSpec(bank.id, -amount, MovementType.DEBIT, f"{bank.provider} {txn_type.value}"),
            ]

        row = AgencyBankingTransaction(
            branch_id=request.branch_id,
            reference=f"AGENCY-{self.clock.epoch_millis()}",
            amount=amount,
            fee=fee,
            transaction_type=txn_type.value,
            partner_bank_id=bank.id,
            partner_bank=bank.provider or "",
            customer_name=request.customer_name.strip(),
            account_number=request.account_number.strip(),
            customer_phone=request.customer_phone,
            cash_till_account_id=till.id,
            transaction_date=self.clock.now(),
            notes=request.notes,
        )

        info = self.recorder.record(
            row,
            movements,
            actor_id=actor_id,
            posting_event=lambda txn: PostingEvent(
                source_module="agency_banking",
                transaction_type=txn_type.value,
                source_transaction_id=str(txn.id),
                amount=amount,
                fee=fee,
                branch_id=txn.branch_id,
                reference=txn.reference,
                description=f"Agency banking {txn_type.value} {txn.partner_bank} {txn.account_number}",
                created_by=str(actor_id),
                float_account_id=bank.id,
                payment_float_account_id=till.id,
                metadata={"partner_bank": txn.partner_bank, "account_number": txn.account_number},
            ),
            notifications=[
                NotificationSpec(
                    f"Your {txn_type.value} of GHS {amount} to {row.partner_bank} "
                    f"account {row.account_number} was successful. Reference: {row.reference}",
                    phone=request.customer_phone,
                ),
            ],
            audit_details={"partner_bank": row.partner_bank, "type": txn_type.value},
        )
        logger.info(
            "agency_banking_transaction_recorded",
            extra={"reference": info.reference, "partner_bank": row.partner_bank, "type": txn_type.value},
        )
        return info

    @staticmethod
    def _validate(request: AgencyBankingRequest) -> tuple[AgencyBankingTransactionType, Decimal, Decimal]:
        raw_type = _TYPE_ALIASES.get(request.transaction_type, request.transaction_type)
        try:
            txn_type = AgencyBankingTransactionType(raw_type)
        except ValueError as exc:
            raise ValidationError("Invalid transaction type") from exc
        if not request.customer_name or not request.customer_name.strip():
            raise MissingFieldError("customer_name")
        if not request.account_number or not request.account_number.strip():
            raise MissingFieldError("account_number")
        if len(request.account_number.strip()) > MAX_ACCOUNT_NUMBER_LENGTH:
            raise ValidationError("Account number cannot be more than 15 characters")
        if request.partner_bank_id is None:
            raise MissingFieldError("partner_bank_id")
        amount = to_money(request.amount)
        if amount <= 0:
            raise InvalidAmountError("amount", amount)
        fee = to_money(request.fee)
        if fee < 0:
            raise InvalidAmountError("fee", fee)
        return txn_type, amount, fee

    def _cash_in_till(self, branch_id: UUID) -> FloatAccountInfo:
        try:
            return self.floats.find_active(branch_id, FloatAccountType.CASH_IN_TILL)
        except FloatAccountNotFoundError as exc:
            raise ValidationError(
                "No active cash-in-till account found for this branch. "
                "Please contact your administrator."
            ) from exc

    def _partner_bank(self, branch_id: UUID, partner_bank_id: UUID) -> FloatAccountInfo:
        try:
            bank = self.floats.get(partner_bank_id)
        except FloatAccountNotFoundError as exc:
            raise ValidationError("Selected partner bank not found for this branch.") from exc
        if (
            bank.branch_id != branch_id
            or not bank.is_active
            or bank.account_type != FloatAccountType.AGENCY_BANKING.value
        ):
            raise ValidationError("Selected partner bank not found for this branch.")
        return bank

    @staticmethod
    def _require(account: FloatAccountInfo, required: Decimal, label: str) -> None:
        if required > 0 and account.current_balance < required:
            raise InsufficientFloatBalanceError(
                str(account.id),
                account.current_balance,
                required,
                message=f"{label}. Required: {required}, Available: {account.current_balance}",
            )
