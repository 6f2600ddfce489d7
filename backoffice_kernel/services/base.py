"""
BaseService -- common constructor for write-side services.

Services receive the caller's Session and only ever flush().  Commit and
rollback belong to the caller (session_scope() or the test harness), which
is what makes a power sale's three balance movements atomic.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from backoffice_kernel.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC, Generic[ModelType]):
    """Holds the session.  Subclasses MUST NOT commit or roll back."""

    def __init__(self, session: Session):
        self.session = session
