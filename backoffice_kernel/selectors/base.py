"""
Module: backoffice_kernel.selectors.base
Responsibility: Base class for read-only selectors (the query side of the
    service/selector split).

Selectors never add, delete or flush.  They return frozen dataclasses, not
ORM instances, and re-run their queries on every call; there is no cache.
"""

from abc import ABC
from decimal import Decimal
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from backoffice_kernel.db.base import Base
from backoffice_kernel.db.types import to_money

ModelType = TypeVar("ModelType", bound=Base)


class BaseSelector(ABC, Generic[ModelType]):
    def __init__(self, session: Session):
        self.session = session


def as_money(value: object) -> Decimal:
    """Aggregate result to a rounded Decimal (SUM over no rows is NULL)."""
    if value is None:
        return to_money(None)
    if isinstance(value, float):
        value = str(value)
    return to_money(value)
