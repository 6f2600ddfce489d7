"""
Posting rule protocol and the event/line value objects rules work with.

A rule turns one PostingEvent into role-tagged LineSpecs.  Rules never see
GL accounts: LedgerPoster resolves each role (main, fee, liability, ...)
to an account afterwards, so the same rule serves every branch.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any, Protocol, runtime_checkable
from uuid import UUID

from backoffice_kernel.models.ledger import MappingType


class LineSide(str, Enum):
    DEBIT = "debit"
    CREDIT = "credit"


@dataclass(frozen=True)
class PostingEvent:
    """
    A business event to be journaled.

    (source_module, source_transaction_id, transaction_type) identifies the
    journal; posting the same triple twice is a no-op.

    float_account_id is the float the "main" role refers to;
    payment_float_account_id is the float behind the "payment" role.
    account_overrides pins a role to a GL code (e.g. the expense account
    chosen from the expense category).
    """

    source_module: str
    transaction_type: str
    source_transaction_id: str
    amount: Decimal
    fee: Decimal = Decimal("0")
    branch_id: UUID | None = None
    reference: str | None = None
    description: str | None = None
    created_by: str = "system"
    entry_date: date | None = None
    float_account_id: UUID | None = None
    payment_float_account_id: UUID | None = None
    account_overrides: dict[str, str] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def source_ref(self) -> str:
        return f"{self.source_module}/{self.transaction_type}/{self.source_transaction_id}"


@dataclass(frozen=True)
class LineSpec:
    role: MappingType
    side: LineSide
    amount: Decimal
    description: str | None = None

    @property
    def debit(self) -> Decimal:
        return self.amount if self.side == LineSide.DEBIT else Decimal("0")

    @property
    def credit(self) -> Decimal:
        return self.amount if self.side == LineSide.CREDIT else Decimal("0")


@runtime_checkable
class PostingRule(Protocol):
    """
    Deterministic, stateless: the same event always yields the same lines.
    """

    @property
    def source_module(self) -> str:
        ...

    @property
    def transaction_types(self) -> tuple[str, ...]:
        ...

    @property
    def mapping_key(self) -> str:
        """GL mapping transaction type the rule's roles are looked up under."""
        ...

    @property
    def version(self) -> int:
        ...

    def compute_lines(self, event: PostingEvent) -> list[LineSpec]:
        ...


class BasePostingRule(ABC):
    """Shared plumbing: event validation and balanced debit/credit pairs."""

    version: int = 1

    def __init__(
        self,
        source_module: str,
        transaction_types: tuple[str, ...],
        mapping_key: str,
    ):
        self.source_module = source_module
        self.transaction_types = transaction_types
        self.mapping_key = mapping_key

    @abstractmethod
    def lines_for(self, event: PostingEvent) -> list[LineSpec]:
        ...

    def compute_lines(self, event: PostingEvent) -> list[LineSpec]:
        self.validate_event(event)
        return [line for line in self.lines_for(event) if line.amount != 0]

    def validate_event(self, event: PostingEvent) -> None:
        """
        Raises:
            ValueError: Wrong module/type, or a negative amount or fee.
        """
        if event.source_module != self.source_module:
            raise ValueError(
                f"Module mismatch: expected {self.source_module}, got {event.source_module}"
            )
        if event.transaction_type not in self.transaction_types:
            raise ValueError(
                f"{type(self).__name__} does not handle {event.transaction_type}"
            )
        if event.amount < 0 or event.fee < 0:
            raise ValueError(
                f"Negative amounts are not postable: amount={event.amount}, fee={event.fee}"
            )

    @staticmethod
    def pair(
        debit_role: MappingType,
        credit_role: MappingType,
        amount: Decimal,
        description: str | None = None,
    ) -> list[LineSpec]:
        return [
            LineSpec(debit_role, LineSide.DEBIT, amount, description),
            LineSpec(credit_role, LineSide.CREDIT, amount, description),
        ]

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.source_module}/{','.join(self.transaction_types)}>"
