"""
MomoService -- mobile money cash-in and cash-out.

Cash-in: the customer hands over cash plus the fee and the provider float
sends the amount to their wallet.  Cash-out: the till pays the amount
(keeping the fee) and the wallet amount lands on the provider float.
"""

import re
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
from backoffice_kernel.models.transactions import MomoTransaction, MomoTransactionType
from backoffice_kernel.posting_rules.base import PostingEvent
from backoffice_kernel.services.base import BaseService
from backoffice_kernel.services.float_account_service import FloatAccountInfo
from backoffice_kernel.services.transaction_recorder import (
    MovementSpec,
    NotificationSpec,
    TransactionInfo,
    TransactionRecorder,
)

logger = get_logger("services.momo")

PHONE_PATTERN = re.compile(r"^\d{10}$")


@dataclass(frozen=True)
class MomoTransactionRequest:
    branch_id: UUID
    transaction_type: str
    provider: str
    amount: Decimal
    customer_name: str
    phone_number: str
    fee: Decimal = ZERO
    notes: str | None = None


class MomoService(BaseService[MomoTransaction]):
    def __init__(self, session: Session, clock: Clock, recorder: TransactionRecorder):
        super().__init__(session)
        self.clock = clock
        self.recorder = recorder
        self.floats = recorder.float_service

    def record_transaction(self, request: MomoTransactionRequest, actor_id: UUID) -> TransactionInfo:
        """
        Record a cash-in or cash-out.

        Raises:
            ValidationError: bad input, or no active cash-in-till.
            FloatAccountNotFoundError: no active momo float for the provider.
            InsufficientFloatBalanceError: the debited account cannot cover it.
        """
        txn_type, amount, fee = self._validate(request)
        try:
            momo_float = self.floats.find_active(
                request.branch_id, FloatAccountType.MOMO, request.provider
            )
        except FloatAccountNotFoundError as exc:
            raise FloatAccountNotFoundError(
                exc.account_id,
                message=f"No active MoMo float account found for provider: {request.provider}",
            ) from exc
        till = self._cash_in_till(request.branch_id)

        if txn_type is MomoTransactionType.CASH_IN:
            self._require(momo_float, amount)
            movements = [
                MovementSpec(till.id, amount + fee, MovementType.CREDIT, "MoMo cash-in received"),
                MovementSpec(momo_float.id, -amount, MovementType.DEBIT, "MoMo cash-in sent"),
            ]
        else:
            self._require(till, amount - fee)
            movements = [
                MovementSpec(till.id, fee - amount, MovementType.DEBIT, "MoMo cash-out paid"),
                MovementSpec(momo_float.id, amount, MovementType.CREDIT, "MoMo cash-out received"),
            ]

        row = MomoTransaction(
            branch_id=request.branch_id,
            reference=f"MOMO-{self.clock.epoch_millis()}",
            amount=amount,
            fee=fee,
            transaction_type=txn_type.value,
            provider=momo_float.provider or request.provider,
            customer_name=request.customer_name.strip(),
            phone_number=request.phone_number,
            float_account_id=momo_float.id,
            cash_till_account_id=till.id,
            transaction_date=self.clock.now(),
            notes=request.notes,
        )

        info = self.recorder.record(
            row,
            movements,
            actor_id=actor_id,
            posting_event=lambda txn: PostingEvent(
                source_module="momo",
                transaction_type=txn_type.value,
                source_transaction_id=str(txn.id),
                amount=amount,
                fee=fee,
                branch_id=txn.branch_id,
                reference=txn.reference,
                description=f"MoMo {txn_type.value} {txn.reference}",
                created_by=str(actor_id),
                float_account_id=momo_float.id,
                payment_float_account_id=till.id,
                metadata={"provider": txn.provider, "phone_number": txn.phone_number},
            ),
            notifications=[
                NotificationSpec(
                    f"Thank you for using our service! Your MoMo {txn_type.value} transaction "
                    f"of GHS {amount} was successful. Reference: {row.reference}",
                    phone=request.phone_number,
                ),
            ],
            audit_details={"provider": row.provider, "type": txn_type.value},
        )
        logger.info(
            "momo_transaction_recorded",
            extra={"reference": info.reference, "provider": row.provider, "type": txn_type.value},
        )
        return info

    @staticmethod
    def _validate(request: MomoTransactionRequest) -> tuple[MomoTransactionType, Decimal, Decimal]:
        if not request.customer_name or not request.customer_name.strip():
            raise MissingFieldError("customer_name")
        if not request.phone_number or not PHONE_PATTERN.match(request.phone_number):
            raise ValidationError("Phone number must be exactly 10 digits")
        if not request.provider:
            raise MissingFieldError("provider")
        try:
            txn_type = MomoTransactionType(request.transaction_type)
        except ValueError as exc:
            raise ValidationError(
                f"Invalid transaction type: {request.transaction_type}"
            ) from exc
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
                "No active cash-in-till account found for this branch"
            ) from exc

    @staticmethod
    def _require(account: FloatAccountInfo, required: Decimal) -> None:
        if required > 0 and account.current_balance < required:
            raise InsufficientFloatBalanceError(
                str(account.id),
                account.current_balance,
                required,
                message="Insufficient float balance for this transaction",
            )
