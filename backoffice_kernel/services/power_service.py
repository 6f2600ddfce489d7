"""
PowerService -- prepaid electricity sales.

A sale draws units from the provider's power float and takes the customer's
money into cash-in-till or a payment float.  All three movements and the
sale row are one unit of work; the GL entry is best-effort.
"""

from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from sqlalchemy.orm import Session

from backoffice_kernel.db.types import ZERO, to_money
from backoffice_kernel.domain.clock import Clock
from backoffice_kernel.exceptions import (
    FloatAccountNotFoundError,
    InvalidAmountError,
    MissingFieldError,
    ValidationError,
)
from backoffice_kernel.logging_config import get_logger
from backoffice_kernel.models.float_account import FloatAccountType, MovementType
from backoffice_kernel.models.transactions import PowerTransaction
from backoffice_kernel.posting_rules.base import PostingEvent
from backoffice_kernel.services.base import BaseService
from backoffice_kernel.services.float_account_service import FloatAccountInfo
from backoffice_kernel.services.transaction_recorder import (
    MovementSpec,
    NotificationSpec,
    TransactionInfo,
    TransactionRecorder,
)

logger = get_logger("services.power")

CASH = "cash"


@dataclass(frozen=True)
class PowerSaleRequest:
    branch_id: UUID
    meter_number: str
    provider: str
    amount: Decimal
    customer_name: str
    customer_phone: str | None = None
    fee: Decimal = ZERO
    # "cash" or the id of the float the customer paid through
    payment_method: str = CASH
    notes: str | None = None


class PowerService(BaseService[PowerTransaction]):
    def __init__(self, session: Session, clock: Clock, recorder: TransactionRecorder):
        super().__init__(session)
        self.clock = clock
        self.recorder = recorder
        self.floats = recorder.float_service

    def record_sale(self, request: PowerSaleRequest, actor_id: UUID) -> TransactionInfo:
        """
        Record a power sale.

        Raises:
            ValidationError: bad input, or no cash-in-till for a cash sale.
            FloatAccountNotFoundError: no active power float for the provider.
            InsufficientFloatBalanceError: the power float cannot cover it.
        """
        amount, fee = self._validate(request)
        power_float = self.floats.find_active(
            request.branch_id, FloatAccountType.POWER, request.provider
        )
        payment = request.payment_method.strip() if request.payment_method else CASH

        till: FloatAccountInfo | None = None
        if payment.lower() == CASH or fee > 0:
            till = self._cash_in_till(request.branch_id)

        movements = [
            MovementSpec(power_float.id, -amount, MovementType.DEBIT, "Power units sold"),
        ]
        if payment.lower() == CASH:
            payment_account_id = till.id
            movements.append(
                MovementSpec(till.id, amount + fee, MovementType.CREDIT, "Power sale cash received")
            )
        else:
            payment_account_id = self._payment_float(payment).id
            movements.append(
                MovementSpec(payment_account_id, amount, MovementType.CREDIT, "Power sale payment")
            )
            if fee > 0:
                movements.append(
                    MovementSpec(till.id, fee, MovementType.CREDIT, "Power sale fee")
                )

        row = PowerTransaction(
            branch_id=request.branch_id,
            reference=f"POWER-{self.clock.epoch_millis()}",
            amount=amount,
            fee=fee,
            meter_number=request.meter_number.strip(),
            provider=request.provider,
            customer_name=request.customer_name.strip(),
            customer_phone=request.customer_phone,
            payment_method=CASH if payment.lower() == CASH else payment,
            payment_account_id=payment_account_id,
            float_account_id=power_float.id,
            transaction_date=self.clock.now(),
            notes=request.notes,
        )

        info = self.recorder.record(
            row,
            movements,
            actor_id=actor_id,
            posting_event=lambda sale: PostingEvent(
                source_module="power",
                transaction_type="sale",
                source_transaction_id=str(sale.id),
                amount=amount,
                fee=fee,
                branch_id=sale.branch_id,
                reference=sale.reference,
                description=f"Power sale {sale.reference} meter {sale.meter_number}",
                created_by=str(actor_id),
                float_account_id=power_float.id,
                payment_float_account_id=payment_account_id,
                metadata={"meter_number": sale.meter_number, "provider": sale.provider},
            ),
            notifications=[
                NotificationSpec(
                    f"Power purchase of {amount} for meter {row.meter_number} "
                    f"successful. Ref: {row.reference}",
                    phone=request.customer_phone,
                ),
            ],
            audit_details={"meter_number": row.meter_number, "provider": row.provider},
        )
        logger.info(
            "power_sale_recorded",
            extra={"reference": info.reference, "provider": request.provider},
        )
        return info

    @staticmethod
    def _validate(request: PowerSaleRequest) -> tuple[Decimal, Decimal]:
        if not request.meter_number or len(request.meter_number.strip()) < 5:
            raise ValidationError("Meter number must be at least 5 characters")
        if not request.provider:
            raise MissingFieldError("provider")
        if not request.customer_name or len(request.customer_name.strip()) < 3:
            raise ValidationError("Customer name must be at least 3 characters")
        if request.customer_phone and len(request.customer_phone.strip()) < 10:
            raise ValidationError("Phone number must be at least 10 digits")
        amount = to_money(request.amount)
        if amount <= 0:
            raise InvalidAmountError("amount", amount)
        fee = to_money(request.fee)
        if fee < 0:
            raise InvalidAmountError("fee", fee)
        return amount, fee

    def _cash_in_till(self, branch_id: UUID) -> FloatAccountInfo:
        try:
            return self.floats.find_active(branch_id, FloatAccountType.CASH_IN_TILL)
        except FloatAccountNotFoundError as exc:
            raise ValidationError(
                "No active cash-in-till account found for this branch"
            ) from exc

    def _payment_float(self, payment_method: str) -> FloatAccountInfo:
        try:
            account_id = UUID(payment_method)
        except ValueError as exc:
            raise ValidationError(f"Invalid payment method: {payment_method}") from exc
        account = self.floats.get(account_id)
        if not account.is_active:
            raise FloatAccountNotFoundError(
                str(account_id), message="Payment float account is not active"
            )
        return account
