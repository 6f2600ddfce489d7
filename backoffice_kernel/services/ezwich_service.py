"""
EzwichService -- E-Zwich card stock and issuance, plus cash withdrawals.

Batches are stock, not money: receiving, adjusting or removing a batch
posts an inventory entry (quantity x unit cost) but moves no float.
Issuing a card takes one card from the oldest batch with stock and credits
the card fee to the partner float or cash-in-till.
Withdrawals pay cash out of the settlement float.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session

from backoffice_kernel.db.types import ZERO, to_money
from backoffice_kernel.domain.clock import Clock
from backoffice_kernel.exceptions import (
    BatchHasIssuedCardsError,
    BatchNotFoundError,
    BatchQuantityBelowIssuedError,
    DuplicateBatchCodeError,
    DuplicateCardNumberError,
    FloatAccountNotFoundError,
    InsufficientFloatBalanceError,
    InvalidAmountError,
    MissingFieldError,
    NoAvailableBatchError,
    ValidationError,
)
from backoffice_kernel.logging_config import get_logger
from backoffice_kernel.models.audit import AuditSeverity
from backoffice_kernel.models.float_account import FloatAccountType, MovementType
from backoffice_kernel.models.transactions import (
    EzwichCardBatch,
    EzwichCardIssuance,
    EzwichWithdrawal,
)
from backoffice_kernel.posting_rules.base import PostingEvent
from backoffice_kernel.services.audit_service import AuditService
from backoffice_kernel.services.base import BaseService
from backoffice_kernel.services.best_effort import post_best_effort
from backoffice_kernel.services.float_account_service import FloatAccountInfo
from backoffice_kernel.services.transaction_recorder import (
    MovementSpec,
    NotificationSpec,
    TransactionInfo,
    TransactionRecorder,
)
from backoffice_config import BackofficeConfig

logger = get_logger("services.ezwich")

ISSUANCE_FEE_KEY = "e_zwich_card_issuance"


@dataclass(frozen=True)
class CardBatchInfo:
    id: UUID
    batch_code: str
    branch_id: UUID
    card_type: str
    quantity_received: int
    quantity_issued: int
    quantity_available: int
    unit_cost: Decimal
    expiry_date: date | None
    status: str


class EzwichService(BaseService[EzwichCardBatch]):
    def __init__(
        self,
        session: Session,
        clock: Clock,
        config: BackofficeConfig,
        recorder: TransactionRecorder,
        auditor: AuditService | None = None,
    ):
        super().__init__(session)
        self.clock = clock
        self.config = config
        self.recorder = recorder
        self.auditor = auditor

    def _to_dto(self, batch: EzwichCardBatch) -> CardBatchInfo:
        return CardBatchInfo(
            id=batch.id,
            batch_code=batch.batch_code,
            branch_id=batch.branch_id,
            card_type=batch.card_type,
            quantity_received=batch.quantity_received,
            quantity_issued=batch.quantity_issued,
            quantity_available=batch.quantity_available,
            unit_cost=to_money(batch.unit_cost),
            expiry_date=batch.expiry_date,
            status=batch.status,
        )

    # ------------------------------------------------------------------
    # Batches
    # ------------------------------------------------------------------

    def get_batch(self, batch_id: UUID) -> CardBatchInfo:
        return self._to_dto(self._get_batch(batch_id))

    def list_batches(self, branch_id: UUID) -> list[CardBatchInfo]:
        rows = self.session.scalars(
            select(EzwichCardBatch)
            .where(EzwichCardBatch.branch_id == branch_id)
            .order_by(EzwichCardBatch.created_at)
        )
        return [self._to_dto(b) for b in rows]

    def receive_batch(
        self,
        branch_id: UUID,
        batch_code: str,
        card_type: str,
        quantity_received: int,
        actor_id: UUID,
        unit_cost: Decimal | int | str = ZERO,
        expiry_date: date | None = None,
        notes: str | None = None,
    ) -> CardBatchInfo:
        """
        Raises:
            DuplicateBatchCodeError: batch_code is taken.
        """
        if not batch_code:
            raise MissingFieldError("batch_code")
        if not card_type:
            raise MissingFieldError("card_type")
        if quantity_received is None or quantity_received <= 0:
            raise ValidationError("quantity_received must be greater than zero")
        cost = to_money(unit_cost)
        if cost < 0:
            raise InvalidAmountError("unit_cost", cost)
        self._check_code_free(batch_code)

        batch = EzwichCardBatch(
            batch_code=batch_code,
            branch_id=branch_id,
            card_type=card_type,
            quantity_received=quantity_received,
            quantity_issued=0,
            unit_cost=cost,
            expiry_date=expiry_date,
            status="received",
            notes=notes,
            created_by_id=actor_id,
        )
        self.session.add(batch)
        self.session.flush()

        self._post_inventory(batch, "batch_receipt", str(batch.id), self._stock_value(batch), actor_id)
        self._audit(batch, "ezwich_batch_create", f"Received card batch {batch_code}", actor_id, {
            "quantity_received": quantity_received,
            "unit_cost": str(cost),
        })
        logger.info(
            "ezwich_batch_received",
            extra={"batch_code": batch_code, "quantity_received": quantity_received},
        )
        return self._to_dto(batch)

    def update_batch(
        self,
        batch_id: UUID,
        *,
        batch_code: str | None,
        quantity_received: int | None,
        card_type: str | None,
        actor_id: UUID,
        unit_cost: Decimal | int | str | None = None,
        expiry_date: date | None = None,
        notes: str | None = None,
    ) -> CardBatchInfo:
        """
        Edit a batch.  A change in stock value (quantity x unit cost) posts
        the inventory difference, each edit under its own source id.

        Raises:
            MissingFieldError, BatchNotFoundError,
            BatchQuantityBelowIssuedError, DuplicateBatchCodeError
        """
        if not batch_code:
            raise MissingFieldError("batch_code", "Batch code, quantity received, and card type are required")
        if quantity_received is None:
            raise MissingFieldError("quantity_received", "Batch code, quantity received, and card type are required")
        if not card_type:
            raise MissingFieldError("card_type", "Batch code, quantity received, and card type are required")

        batch = self._get_batch(batch_id, lock=True)
        if quantity_received < batch.quantity_issued:
            raise BatchQuantityBelowIssuedError(
                str(batch_id), quantity_received, batch.quantity_issued
            )
        if batch_code != batch.batch_code:
            self._check_code_free(batch_code)

        old_quantity = batch.quantity_received
        old_value = self._stock_value(batch)
        batch.batch_code = batch_code
        batch.card_type = card_type
        batch.quantity_received = quantity_received
        if unit_cost is not None:
            batch.unit_cost = to_money(unit_cost)
        if expiry_date is not None:
            batch.expiry_date = expiry_date
        if notes is not None:
            batch.notes = notes
        batch.status = "depleted" if batch.quantity_available == 0 else "received"
        batch.updated_by_id = actor_id
        self.session.flush()

        # Quantity and cost edits both move the stock value.
        difference = self._stock_value(batch) - old_value
        if difference:
            self._post_inventory(
                batch,
                "batch_increase" if difference > 0 else "batch_decrease",
                str(uuid4()),
                abs(difference),
                actor_id,
            )
        self._audit(batch, "ezwich_batch_update", f"Updated card batch {batch_code}", actor_id, {
            "old_quantity": old_quantity,
            "new_quantity": quantity_received,
            "value_change": str(difference),
        })
        return self._to_dto(batch)

    def delete_batch(self, batch_id: UUID, actor_id: UUID) -> None:
        """
        Raises:
            BatchNotFoundError, BatchHasIssuedCardsError
        """
        batch = self._get_batch(batch_id, lock=True)
        if batch.quantity_issued > 0:
            raise BatchHasIssuedCardsError(str(batch_id), batch.quantity_issued)

        self._post_inventory(batch, "batch_removal", str(batch.id), self._stock_value(batch), actor_id)
        self._audit(
            batch,
            "ezwich_batch_delete",
            f"Deleted card batch {batch.batch_code}",
            actor_id,
            {"quantity_received": batch.quantity_received},
            severity=AuditSeverity.MEDIUM,
        )
        self.session.delete(batch)
        self.session.flush()
        logger.info("ezwich_batch_deleted", extra={"batch_id": str(batch_id)})

    # ------------------------------------------------------------------
    # Issuance
    # ------------------------------------------------------------------

    def issue_card(
        self,
        branch_id: UUID,
        card_number: str,
        customer_name: str,
        actor_id: UUID,
        card_type: str = "standard",
        customer_phone: str | None = None,
        fee: Decimal | int | str | None = None,
        partner_account_id: UUID | None = None,
    ) -> TransactionInfo:
        """
        Issue one card to a customer.

        Raises:
            DuplicateCardNumberError: card_number was already issued.
            NoAvailableBatchError: no batch of card_type has stock.
        """
        if not card_number:
            raise MissingFieldError("card_number")
        if not customer_name:
            raise MissingFieldError("customer_name")
        taken = self.session.scalar(
            select(EzwichCardIssuance.id).where(EzwichCardIssuance.card_number == card_number)
        )
        if taken is not None:
            raise DuplicateCardNumberError(card_number)

        card_fee = self.config.fee(ISSUANCE_FEE_KEY) if fee is None else to_money(fee)
        if card_fee < 0:
            raise InvalidAmountError("fee", card_fee)

        batch = self.session.scalars(
            select(EzwichCardBatch)
            .where(
                EzwichCardBatch.branch_id == branch_id,
                EzwichCardBatch.card_type == card_type,
                EzwichCardBatch.quantity_received > EzwichCardBatch.quantity_issued,
            )
            .order_by(EzwichCardBatch.created_at)
            .limit(1)
            .with_for_update()
        ).first()
        if batch is None:
            raise NoAvailableBatchError(str(branch_id), card_type)

        floats = self.recorder.float_service
        if partner_account_id is not None:
            fee_account_id = floats.get(partner_account_id).id
        else:
            fee_account_id = floats.find_active(branch_id, FloatAccountType.CASH_IN_TILL).id

        batch.quantity_issued += 1
        if batch.quantity_available == 0:
            batch.status = "depleted"
        batch.updated_by_id = actor_id

        row = EzwichCardIssuance(
            branch_id=branch_id,
            reference=f"EZC-{self.clock.epoch_millis()}",
            amount=card_fee,
            fee=ZERO,
            card_number=card_number,
            batch_id=batch.id,
            card_type=card_type,
            customer_name=customer_name,
            customer_phone=customer_phone,
            partner_account_id=partner_account_id,
            transaction_date=self.clock.now(),
        )
        movements = []
        if card_fee > 0:
            movements.append(
                MovementSpec(fee_account_id, card_fee, MovementType.CREDIT, "E-Zwich card fee")
            )

        return self.recorder.record(
            row,
            movements,
            actor_id=actor_id,
            posting_event=lambda card: PostingEvent(
                source_module="e_zwich",
                transaction_type="card_issuance",
                source_transaction_id=str(card.id),
                amount=card_fee,
                branch_id=branch_id,
                reference=card.reference,
                description=f"E-Zwich card {card.card_number} issued",
                created_by=str(actor_id),
                payment_float_account_id=fee_account_id,
                metadata={"card_number": card.card_number, "batch_code": batch.batch_code},
            ),
            notifications=[
                NotificationSpec(
                    f"Your E-Zwich card {card_number} has been issued. Ref: {row.reference}",
                    phone=customer_phone,
                ),
            ],
            audit_details={"card_number": card_number, "batch_id": str(batch.id)},
        )

    # ------------------------------------------------------------------
    # Withdrawals
    # ------------------------------------------------------------------

    def record_withdrawal(
        self,
        branch_id: UUID,
        card_number: str,
        customer_name: str,
        amount: Decimal | int | str,
        settlement_account_id: UUID | None,
        actor_id: UUID,
        fee: Decimal | int | str = ZERO,
        customer_phone: str | None = None,
        notes: str | None = None,
    ) -> TransactionInfo:
        """
        Pay cash out against a card.  The amount comes off the settlement
        float and the fee goes into the cash-in-till.

        Raises:
            MissingFieldError: no settlement account given.
            FloatAccountNotFoundError: settlement account missing or inactive.
            InsufficientFloatBalanceError: settlement float below amount.
        """
        if not card_number:
            raise MissingFieldError("card_number")
        if not customer_name:
            raise MissingFieldError("customer_name")
        if settlement_account_id is None:
            raise MissingFieldError(
                "settlement_account_id", "Missing settlement account ID for withdrawal"
            )
        amount = to_money(amount)
        if amount <= 0:
            raise InvalidAmountError("amount", amount)
        fee = to_money(fee)
        if fee < 0:
            raise InvalidAmountError("fee", fee)

        floats = self.recorder.float_service
        settlement = self._settlement_account(settlement_account_id)
        if settlement.current_balance < amount:
            raise InsufficientFloatBalanceError(
                str(settlement.id),
                settlement.current_balance,
                amount,
                message=(
                    f"Insufficient balance. Available: GHS {settlement.current_balance:.2f}, "
                    f"Required: GHS {amount:.2f}"
                ),
            )

        movements = [
            MovementSpec(settlement.id, -amount, MovementType.WITHDRAWAL, f"E-Zwich withdrawal {card_number}"),
        ]
        till_id = None
        if fee > 0:
            till_id = floats.find_active(branch_id, FloatAccountType.CASH_IN_TILL).id
            movements.append(MovementSpec(till_id, fee, MovementType.CREDIT, "E-Zwich withdrawal fee"))

        row = EzwichWithdrawal(
            branch_id=branch_id,
            reference=f"EZW-{self.clock.epoch_millis()}",
            amount=amount,
            fee=fee,
            card_number=card_number,
            customer_name=customer_name,
            customer_phone=customer_phone,
            settlement_account_id=settlement.id,
            cash_till_account_id=till_id,
            transaction_date=self.clock.now(),
            notes=notes,
        )
        info = self.recorder.record(
            row,
            movements,
            actor_id=actor_id,
            posting_event=lambda txn: PostingEvent(
                source_module="e_zwich",
                transaction_type="withdrawal",
                source_transaction_id=str(txn.id),
                amount=amount,
                fee=fee,
                branch_id=branch_id,
                reference=txn.reference,
                description=f"E-Zwich withdrawal card {card_number}",
                created_by=str(actor_id),
                float_account_id=settlement.id,
                payment_float_account_id=till_id,
                metadata={"card_number": card_number},
            ),
            notifications=[
                NotificationSpec(
                    f"Your E-Zwich withdrawal of GHS {amount} was successful. Card: {card_number}",
                    phone=customer_phone,
                ),
            ],
            audit_details={"card_number": card_number},
        )
        logger.info("ezwich_withdrawal_recorded", extra={"reference": info.reference})
        return info

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _get_batch(self, batch_id: UUID, lock: bool = False) -> EzwichCardBatch:
        stmt = select(EzwichCardBatch).where(EzwichCardBatch.id == batch_id)
        if lock:
            stmt = stmt.with_for_update()
        batch = self.session.scalars(stmt).first()
        if batch is None:
            raise BatchNotFoundError(str(batch_id))
        return batch

    def _settlement_account(self, account_id: UUID) -> FloatAccountInfo:
        message = "Settlement account not found or inactive"
        try:
            account = self.recorder.float_service.get(account_id)
        except FloatAccountNotFoundError as exc:
            raise FloatAccountNotFoundError(str(account_id), message=message) from exc
        if not account.is_active:
            raise FloatAccountNotFoundError(str(account_id), message=message)
        return account

    def _check_code_free(self, batch_code: str) -> None:
        exists = self.session.scalar(
            select(EzwichCardBatch.id).where(EzwichCardBatch.batch_code == batch_code)
        )
        if exists is not None:
            raise DuplicateBatchCodeError(batch_code)

    @staticmethod
    def _stock_value(batch: EzwichCardBatch) -> Decimal:
        return to_money(Decimal(batch.quantity_received) * to_money(batch.unit_cost))

    def _post_inventory(
        self,
        batch: EzwichCardBatch,
        transaction_type: str,
        source_transaction_id: str,
        value: Decimal,
        actor_id: UUID,
    ) -> None:
        ledger = self.recorder.ledger
        if ledger is None:
            return
        post_best_effort(
            ledger,
            PostingEvent(
                source_module="e_zwich",
                transaction_type=transaction_type,
                source_transaction_id=source_transaction_id,
                amount=value,
                branch_id=batch.branch_id,
                reference=batch.batch_code,
                description=f"Card batch {batch.batch_code}: {batch.quantity_received} x {batch.unit_cost}",
                created_by=str(actor_id),
                metadata={"quantity": batch.quantity_received, "unit_cost": str(batch.unit_cost)},
            ),
            self.auditor,
        )

    def _audit(
        self,
        batch: EzwichCardBatch,
        action_type: str,
        description: str,
        actor_id: UUID,
        details: dict,
        severity: AuditSeverity = AuditSeverity.LOW,
    ) -> None:
        if self.auditor is None:
            return
        self.auditor.record(
            action_type,
            "ezwich_card_batch",
            batch.id,
            description,
            actor_id=actor_id,
            details={"batch_code": batch.batch_code, **details},
            severity=severity,
            branch_id=batch.branch_id,
        )
