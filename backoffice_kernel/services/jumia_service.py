"""
JumiaService -- pay-on-delivery packages for the Jumia marketplace.

Collections put cash in the branch (cash-in-till or a payment float) and
raise what the branch owes Jumia on the jumia float.  Settlements pay Jumia
from a float and release that liability.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from backoffice_kernel.db.types import ZERO, to_money
from backoffice_kernel.domain.clock import Clock
from backoffice_kernel.exceptions import (
    ConflictError,
    DuplicatePodCollectionError,
    InvalidAmountError,
    MissingFieldError,
    PackageNotFoundError,
    PackageStateError,
    ValidationError,
)
from backoffice_kernel.logging_config import get_logger
from backoffice_kernel.models.float_account import FloatAccountType, MovementType
from backoffice_kernel.models.transactions import (
    JumiaPackage,
    JumiaPackageStatus,
    JumiaTransaction,
    JumiaTransactionType,
    TransactionStatus,
)
from backoffice_kernel.posting_rules.base import PostingEvent
from backoffice_kernel.services.base import BaseService
from backoffice_kernel.services.transaction_recorder import (
    MovementSpec,
    NotificationSpec,
    TransactionInfo,
    TransactionRecorder,
)

logger = get_logger("services.jumia")


@dataclass(frozen=True)
class PackageInfo:
    id: UUID
    tracking_id: str
    branch_id: UUID
    customer_name: str
    customer_phone: str | None
    amount: Decimal
    status: str
    delivered_at: datetime | None
    settlement_reference: str | None


class JumiaService(BaseService[JumiaPackage]):
    def __init__(self, session: Session, clock: Clock, recorder: TransactionRecorder):
        super().__init__(session)
        self.clock = clock
        self.recorder = recorder
        self.floats = recorder.float_service
        recorder.on_undo(JumiaTransaction, self._release_packages)

    @staticmethod
    def _to_dto(package: JumiaPackage) -> PackageInfo:
        return PackageInfo(
            id=package.id,
            tracking_id=package.tracking_id,
            branch_id=package.branch_id,
            customer_name=package.customer_name,
            customer_phone=package.customer_phone,
            amount=to_money(package.amount),
            status=str(JumiaPackageStatus(package.status).value),
            delivered_at=package.delivered_at,
            settlement_reference=package.settlement_reference,
        )

    def get_package(self, tracking_id: str) -> PackageInfo:
        return self._to_dto(self._package(tracking_id))

    def receive_package(
        self,
        branch_id: UUID,
        tracking_id: str,
        customer_name: str,
        actor_id: UUID,
        amount: Decimal | int | str = ZERO,
        customer_phone: str | None = None,
    ) -> PackageInfo:
        """Register a package waiting for collection at the branch."""
        if not tracking_id:
            raise MissingFieldError("tracking_id")
        if not customer_name:
            raise MissingFieldError("customer_name")
        exists = self.session.scalar(
            select(JumiaPackage.id).where(JumiaPackage.tracking_id == tracking_id)
        )
        if exists is not None:
            raise ConflictError(f"Package {tracking_id} has already been received")

        package = JumiaPackage(
            tracking_id=tracking_id,
            branch_id=branch_id,
            customer_name=customer_name,
            customer_phone=customer_phone,
            amount=to_money(amount),
            status=JumiaPackageStatus.RECEIVED.value,
            created_by_id=actor_id,
        )
        self.session.add(package)
        self.session.flush()
        logger.info("jumia_package_received", extra={"tracking_id": tracking_id})
        return self._to_dto(package)

    def record_pod_collection(
        self,
        branch_id: UUID,
        tracking_id: str,
        customer_name: str,
        amount: Decimal | int | str,
        actor_id: UUID,
        customer_phone: str | None = None,
        fee: Decimal | int | str = ZERO,
        payment_account_id: UUID | None = None,
    ) -> TransactionInfo:
        """
        Collect payment for a received package.

        Raises:
            DuplicatePodCollectionError: a live collection already exists.
            PackageNotFoundError, PackageStateError
            FloatAccountNotFoundError: no active jumia float (or till).
        """
        if not tracking_id:
            raise MissingFieldError("tracking_id")
        if not customer_name:
            raise MissingFieldError("customer_name")
        amount = to_money(amount)
        if amount <= 0:
            raise InvalidAmountError("amount", amount)
        fee = to_money(fee)
        if fee < 0:
            raise InvalidAmountError("fee", fee)

        existing = self.session.scalar(
            select(JumiaTransaction.id).where(
                JumiaTransaction.tracking_id == tracking_id,
                JumiaTransaction.branch_id == branch_id,
                JumiaTransaction.transaction_type == JumiaTransactionType.POD_COLLECTION.value,
                JumiaTransaction.status.not_in(
                    (TransactionStatus.DELETED.value, TransactionStatus.REVERSED.value)
                ),
            )
        )
        if existing is not None:
            raise DuplicatePodCollectionError(tracking_id)

        package = self._package(tracking_id, branch_id)
        if package.status != JumiaPackageStatus.RECEIVED.value:
            raise PackageStateError(tracking_id, package.status, JumiaPackageStatus.RECEIVED.value)

        jumia_float = self.floats.find_active(branch_id, FloatAccountType.JUMIA)
        if payment_account_id is None:
            payment_account_id = self.floats.find_active(
                branch_id, FloatAccountType.CASH_IN_TILL
            ).id
        else:
            payment_account_id = self.floats.get(payment_account_id).id

        package.status = JumiaPackageStatus.DELIVERED.value
        package.delivered_at = self.clock.now()
        package.updated_by_id = actor_id

        row = JumiaTransaction(
            branch_id=branch_id,
            reference=f"POD-{self.clock.epoch_millis()}",
            amount=amount,
            fee=fee,
            transaction_type=JumiaTransactionType.POD_COLLECTION.value,
            tracking_id=tracking_id,
            customer_name=customer_name,
            customer_phone=customer_phone,
            float_account_id=payment_account_id,
            transaction_date=self.clock.now(),
        )
        movements = [
            MovementSpec(payment_account_id, amount + fee, MovementType.CREDIT, f"Jumia POD {tracking_id}"),
            MovementSpec(jumia_float.id, amount, MovementType.CREDIT, f"Jumia POD liability {tracking_id}"),
        ]
        return self.recorder.record(
            row,
            movements,
            actor_id=actor_id,
            posting_event=lambda txn: PostingEvent(
                source_module="jumia",
                transaction_type="pod_collection",
                source_transaction_id=str(txn.id),
                amount=amount,
                fee=fee,
                branch_id=branch_id,
                reference=txn.reference,
                description=f"Jumia POD collection {tracking_id}",
                created_by=str(actor_id),
                float_account_id=jumia_float.id,
                payment_float_account_id=payment_account_id,
                metadata={"tracking_id": tracking_id},
            ),
            notifications=[
                NotificationSpec(
                    f"Payment of {amount} received for Jumia package {tracking_id}.",
                    phone=customer_phone,
                ),
            ],
            audit_details={"tracking_id": tracking_id},
        )

    def record_settlement(
        self,
        branch_id: UUID,
        amount: Decimal | int | str | None,
        settlement_reference: str | None,
        float_account_id: UUID | None,
        actor_id: UUID,
        tracking_id: str | None = None,
    ) -> TransactionInfo:
        """
        Pay collected funds over to Jumia from ``float_account_id``.

        Marks the given package (or every delivered package of the branch)
        settled.
        """
        if not amount or not settlement_reference or not float_account_id:
            raise ValidationError(
                "Settlement requires amount, settlement_reference, and float_account_id"
            )
        amount = to_money(amount)
        if amount <= 0:
            raise InvalidAmountError("amount", amount)

        jumia_float = self.floats.find_active(branch_id, FloatAccountType.JUMIA)
        paying = self.floats.get(float_account_id)
        if paying.id == jumia_float.id:
            raise ValidationError("Settlement must be paid from a float other than the Jumia float")

        stmt = select(JumiaPackage).where(
            JumiaPackage.branch_id == branch_id,
            JumiaPackage.status == JumiaPackageStatus.DELIVERED.value,
        )
        if tracking_id:
            stmt = stmt.where(JumiaPackage.tracking_id == tracking_id)
        packages = list(self.session.scalars(stmt))
        for package in packages:
            package.status = JumiaPackageStatus.SETTLED.value
            package.settlement_reference = settlement_reference
            package.updated_by_id = actor_id

        row = JumiaTransaction(
            branch_id=branch_id,
            reference=settlement_reference,
            amount=amount,
            fee=ZERO,
            transaction_type=JumiaTransactionType.SETTLEMENT.value,
            tracking_id=tracking_id,
            settlement_reference=settlement_reference,
            float_account_id=paying.id,
            transaction_date=self.clock.now(),
        )
        movements = [
            MovementSpec(jumia_float.id, -amount, MovementType.DEBIT, "Jumia settlement"),
            MovementSpec(paying.id, -amount, MovementType.DEBIT, f"Jumia settlement {settlement_reference}"),
        ]
        info = self.recorder.record(
            row,
            movements,
            actor_id=actor_id,
            posting_event=lambda txn: PostingEvent(
                source_module="jumia",
                transaction_type="settlement",
                source_transaction_id=str(txn.id),
                amount=amount,
                branch_id=branch_id,
                reference=settlement_reference,
                description=f"Jumia settlement {settlement_reference}",
                created_by=str(actor_id),
                float_account_id=jumia_float.id,
                payment_float_account_id=paying.id,
            ),
            audit_details={"packages_settled": len(packages)},
        )
        logger.info(
            "jumia_settlement_recorded",
            extra={"settlement_reference": settlement_reference, "packages_settled": len(packages)},
        )
        return info

    def _package(self, tracking_id: str, branch_id: UUID | None = None) -> JumiaPackage:
        stmt = select(JumiaPackage).where(JumiaPackage.tracking_id == tracking_id)
        if branch_id is not None:
            stmt = stmt.where(JumiaPackage.branch_id == branch_id)
        package = self.session.scalars(stmt).first()
        if package is None:
            raise PackageNotFoundError(tracking_id)
        return package

    def _release_packages(self, row: JumiaTransaction, actor_id: UUID) -> None:
        """
        Put packages back where they were before ``row`` was recorded.

        An undone collection returns its package to ``received`` so it can be
        collected again; an undone settlement returns its packages to
        ``delivered``.  A collection whose package has since been settled
        cannot be undone until the settlement is.
        """
        if row.transaction_type == JumiaTransactionType.POD_COLLECTION.value:
            package = self.session.scalars(
                select(JumiaPackage).where(
                    JumiaPackage.tracking_id == row.tracking_id,
                    JumiaPackage.branch_id == row.branch_id,
                )
            ).first()
            if package is None or package.status == JumiaPackageStatus.RECEIVED.value:
                return
            if package.status != JumiaPackageStatus.DELIVERED.value:
                raise PackageStateError(
                    package.tracking_id, package.status, JumiaPackageStatus.DELIVERED.value
                )
            package.status = JumiaPackageStatus.RECEIVED.value
            package.delivered_at = None
            package.updated_by_id = actor_id
            released = [package.tracking_id]
        else:
            packages = self.session.scalars(
                select(JumiaPackage).where(
                    JumiaPackage.branch_id == row.branch_id,
                    JumiaPackage.status == JumiaPackageStatus.SETTLED.value,
                    JumiaPackage.settlement_reference == row.settlement_reference,
                )
            )
            released = []
            for package in packages:
                package.status = JumiaPackageStatus.DELIVERED.value
                package.settlement_reference = None
                package.updated_by_id = actor_id
                released.append(package.tracking_id)
        logger.info(
            "jumia_packages_released",
            extra={"transaction_id": row.id, "tracking_ids": released},
        )
