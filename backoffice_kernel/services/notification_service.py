"""
Customer and operator notifications.

Delivery goes through a Notifier (SMS gateway adapter).  Every send is
best-effort: a failing gateway is logged and the caller carries on.
"""

from typing import Protocol, runtime_checkable
from uuid import UUID

from sqlalchemy.orm import Session

from backoffice_kernel.logging_config import get_logger
from backoffice_kernel.models.branch import Operator

logger = get_logger("services.notifications")


@runtime_checkable
class Notifier(Protocol):
    def send_sms(self, phone: str, message: str) -> None:
        ...


class LoggingNotifier:
    """Notifier that only logs; the default when no gateway is configured."""

    def send_sms(self, phone: str, message: str) -> None:
        logger.info("sms_logged", extra={"phone": phone, "sms_message": message})


class NotificationService:
    def __init__(self, session: Session, notifier: Notifier | None = None):
        self.session = session
        self.notifier = notifier or LoggingNotifier()

    def send(self, phone: str | None, message: str, *, kind: str) -> bool:
        """Send one SMS.  Returns False (never raises) when it could not be sent."""
        if not phone:
            return False
        try:
            self.notifier.send_sms(phone, message)
        except Exception:
            logger.warning("notification_failed", extra={"kind": kind}, exc_info=True)
            return False
        logger.debug("notification_sent", extra={"kind": kind})
        return True

    def notify_operator(self, operator_id: UUID | None, message: str) -> bool:
        if operator_id is None:
            return False
        operator = self.session.get(Operator, operator_id)
        return self.send(operator.phone if operator else None, message, kind="operator_alert")
