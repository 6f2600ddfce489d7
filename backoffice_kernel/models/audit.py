"""
Module: backoffice_kernel.models.audit
Responsibility: Operator-facing audit log rows written for sensitive actions
    (batch edits, float deletion, approvals, failed GL postings).
Architecture position: Kernel > Models.  May import from db/ only.

Rows are append-only from the application's point of view.  Writes are
best-effort (AuditService) so an audit failure never blocks the action.
"""

from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from backoffice_kernel.db.base import TrackedBase, UUIDString


class AuditSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class AuditLogEntry(TrackedBase):
    __tablename__ = "audit_logs"

    __table_args__ = (
        Index("idx_audit_entity", "entity_type", "entity_id"),
        Index("idx_audit_action", "action_type"),
    )

    actor_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    # e.g. ezwich_batch_update, float_account_delete, gl_posting_failed
    action_type: Mapped[str] = mapped_column(String(60), nullable=False)

    entity_type: Mapped[str] = mapped_column(String(60), nullable=False)

    entity_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    description: Mapped[str] = mapped_column(String(1000), nullable=False)

    details: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    severity: Mapped[AuditSeverity] = mapped_column(
        String(20), default=AuditSeverity.LOW.value, nullable=False
    )

    # success | failure
    status: Mapped[str] = mapped_column(String(20), default="success", nullable=False)

    branch_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    error_message: Mapped[str | None] = mapped_column(String(1000), nullable=True)
