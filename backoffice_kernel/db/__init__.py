"""Database layer - engine, base classes and column types."""

from backoffice_kernel.db.base import Base, TrackedBase, UUIDString
from backoffice_kernel.db.engine import (
    create_tables,
    get_engine,
    get_session,
    session_scope,
)
from backoffice_kernel.db.types import round_money, to_money

__all__ = [
    "get_engine",
    "get_session",
    "session_scope",
    "create_tables",
    "Base",
    "TrackedBase",
    "UUIDString",
    "round_money",
    "to_money",
]
