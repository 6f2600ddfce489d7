"""
AuditService -- best-effort audit trail for operator actions.

Each write runs in its own savepoint.  A failed audit insert is logged and
dropped; it never fails or rolls back the action being audited.
"""

from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from backoffice_kernel.db.base import SYSTEM_ACTOR_ID
from backoffice_kernel.domain.clock import Clock
from backoffice_kernel.logging_config import get_logger
from backoffice_kernel.models.audit import AuditLogEntry, AuditSeverity
from backoffice_kernel.services.base import BaseService

logger = get_logger("services.audit")


class AuditService(BaseService[AuditLogEntry]):
    def __init__(self, session: Session, clock: Clock):
        super().__init__(session)
        self.clock = clock

    def record(
        self,
        action_type: str,
        entity_type: str,
        entity_id: Any,
        description: str,
        *,
        actor_id: UUID | None = None,
        details: dict[str, Any] | None = None,
        severity: AuditSeverity = AuditSeverity.LOW,
        status: str = "success",
        branch_id: UUID | None = None,
        error_message: str | None = None,
    ) -> AuditLogEntry | None:
        """Write one audit row.  Returns None when the write failed."""
        entry = AuditLogEntry(
            actor_id=actor_id,
            action_type=action_type,
            entity_type=entity_type,
            entity_id=str(entity_id) if entity_id is not None else None,
            description=description,
            details={**(details or {}), "recorded_at": self.clock.now().isoformat()},
            severity=AuditSeverity(severity).value,
            status=status,
            branch_id=branch_id,
            error_message=error_message,
            created_by_id=actor_id or SYSTEM_ACTOR_ID,
        )
        try:
            with self.session.begin_nested():
                self.session.add(entry)
                self.session.flush()
        except Exception:
            logger.warning(
                "audit_write_failed",
                extra={"action_type": action_type, "entity_id": str(entity_id)},
                exc_info=True,
            )
            return None
        return entry
