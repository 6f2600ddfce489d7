"""
Module: backoffice_kernel.db.base
Responsibility: Declarative base classes shared by every ORM model.  Fixes the
    primary key convention, the column type map, and the TrackedBase mixin
    carrying creation/update metadata.
Architecture position: Kernel > DB.  Lowest import target in the kernel; MUST
    NOT import from models/, services/, selectors/ or domain/.

Invariants enforced:
    - Every row has a uuid4 primary key stored as a 36-character string, so
      the schema runs unchanged on PostgreSQL and SQLite.
    - Decimal always maps to Numeric(38, 9).  Money is never a float.
    - datetime always maps to a timezone-aware DateTime.
"""

from datetime import datetime
from decimal import Decimal
from typing import ClassVar
from uuid import UUID as PyUUID, uuid4

from sqlalchemy import BigInteger, DateTime, Numeric, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


class UUIDString(TypeDecorator):
    """UUID stored as String(36); converted back to uuid.UUID on load."""

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return str(value)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return PyUUID(value)


class Base(DeclarativeBase):
    """
    Declarative base for all back-office models.

    Guarantees:
        - id is a uuid4 generated client side, so it is known before flush.
        - Decimal -> Numeric(38, 9), datetime -> DateTime(timezone=True),
          UUID -> UUIDString, int -> BigInteger.
    """

    type_annotation_map: ClassVar[dict] = {
        Decimal: Numeric(38, 9),
        datetime: DateTime(timezone=True),
        PyUUID: UUIDString(),
        int: BigInteger,
    }

    id: Mapped[PyUUID] = mapped_column(
        UUIDString(),
        primary_key=True,
        default=uuid4,
    )


class TrackedBase(Base):
    """
    Abstract base recording who created a row and when it last changed.

    created_by_id is mandatory; seed data and scheduled jobs use
    SYSTEM_ACTOR_ID rather than leaving it empty.
    """

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    created_by_id: Mapped[PyUUID] = mapped_column(UUIDString(), nullable=False)

    updated_by_id: Mapped[PyUUID | None] = mapped_column(UUIDString(), nullable=True)


# Actor recorded on rows written by setup and seeding code
SYSTEM_ACTOR_ID = PyUUID("00000000-0000-0000-0000-000000000001")
