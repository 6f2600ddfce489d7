"""
Module: backoffice_kernel.models.branch
Responsibility: Branches and the operators who work in them.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - Branch.code and Operator.username are unique.
    - Exactly one branch should carry is_main; GL mapping resolution falls
      back to it when a branch has no mapping of its own.
"""

from enum import Enum
from uuid import UUID

from sqlalchemy import Boolean, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from backoffice_kernel.db.base import TrackedBase, UUIDString


class OperatorRole(str, Enum):
    ADMIN = "admin"
    MANAGER = "manager"
    FINANCE = "finance"
    OPERATIONS = "operations"
    CASHIER = "cashier"


class Branch(TrackedBase):
    __tablename__ = "branches"

    __table_args__ = (UniqueConstraint("code", name="uq_branch_code"),)

    code: Mapped[str] = mapped_column(String(20), nullable=False)

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    # Default branch for GL mapping fallback
    is_main: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def __repr__(self) -> str:
        return f"<Branch {self.code}>"


class Operator(TrackedBase):
    """A back-office user.  Only the password hash is stored."""

    __tablename__ = "operators"

    __table_args__ = (
        UniqueConstraint("username", name="uq_operator_username"),
        Index("idx_operator_branch", "branch_id"),
    )

    username: Mapped[str] = mapped_column(String(100), nullable=False)

    full_name: Mapped[str] = mapped_column(String(255), nullable=False)

    role: Mapped[OperatorRole] = mapped_column(String(20), nullable=False)

    branch_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    # passlib hash string
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)

    phone: Mapped[str | None] = mapped_column(String(20), nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def __repr__(self) -> str:
        return f"<Operator {self.username} ({self.role})>"
