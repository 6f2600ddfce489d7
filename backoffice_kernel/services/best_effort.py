"""
Best-effort GL posting.

Business operations call post_best_effort() after their own writes.  Any
failure in the ledger (missing mapping, unbalanced rule, database error) is
logged as gl_posting_failed, audited, and swallowed: the business row and
its float movements stay, and the caller gets None instead of a result.
"""

from uuid import UUID

from backoffice_kernel.logging_config import get_logger
from backoffice_kernel.models.audit import AuditSeverity
from backoffice_kernel.posting_rules.base import PostingEvent
from backoffice_kernel.services.audit_service import AuditService
from backoffice_kernel.services.ledger_poster import LedgerPoster, PostingResult

logger = get_logger("services.best_effort")


def post_best_effort(
    poster: LedgerPoster,
    event: PostingEvent,
    auditor: AuditService | None = None,
) -> PostingResult | None:
    try:
        return poster.post(event)
    except Exception as exc:
        logger.error(
            "gl_posting_failed",
            extra={"source_ref": event.source_ref},
            exc_info=True,
        )
        if auditor is not None:
            auditor.record(
                "gl_posting_failed",
                event.source_module,
                event.source_transaction_id,
                f"GL posting failed for {event.source_ref}",
                actor_id=_as_uuid(event.created_by),
                details={"transaction_type": event.transaction_type, "amount": str(event.amount)},
                severity=AuditSeverity.HIGH,
                status="failure",
                branch_id=event.branch_id,
                error_message=str(exc),
            )
        return None


def reverse_best_effort(
    poster: LedgerPoster,
    source_module: str,
    source_transaction_id: str,
    reason: str,
    created_by: str = "system",
) -> list[PostingResult]:
    try:
        return poster.reverse(source_module, source_transaction_id, reason, created_by)
    except Exception:
        logger.error(
            "gl_reversal_failed",
            extra={"source_module": source_module, "source_transaction_id": source_transaction_id},
            exc_info=True,
        )
        return []


def _as_uuid(value: str) -> UUID | None:
    try:
        return UUID(str(value))
    except ValueError:
        return None
