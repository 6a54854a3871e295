"""Tenant notifications: persisted and logged, never shown to the end customer."""
import logging
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.models.notification import Notification

logger = logging.getLogger(__name__)

CREDITS_EXHAUSTED = "credits_exhausted"
SETTLEMENT_SKIPPED = "settlement_skipped"
RATE_LIMITED = "rate_limited"
TOOL_DISABLED = "tool_disabled"
SESSION_HANDED_OFF = "session_handed_off"
PROVIDER_FAILED = "provider_failed"


def notify_tenant(
    db: Session,
    tenant_id: int,
    kind: str,
    message: str,
    payload: Optional[dict] = None,
) -> Optional[Notification]:
    """
    Record a notification for the tenant's operators.

    Best effort: a failure to record is logged and swallowed so a
    notification can never abort a customer turn.
    """
    logger.warning(f"[Notify] tenant={tenant_id} kind={kind}: {message}")
    try:
        notification = Notification(tenant_id=tenant_id, kind=kind, message=message, payload=payload or {})
        db.add(notification)
        db.commit()
        return notification
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"[Notify] Could not persist notification for tenant {tenant_id}: {e}")
        return None


def list_notifications(db: Session, tenant_id: int, limit: int = 50) -> list[Notification]:
    return (
        db.query(Notification)
        .filter(Notification.tenant_id == tenant_id)
        .order_by(Notification.created_at.desc(), Notification.id.desc())
        .limit(limit)
        .all()
    )
