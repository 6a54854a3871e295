"""
Tool failure escalation.

Consecutive failures of one tool in one session are counted. At the
threshold the tool is disabled for that session, a system note is added
to the history and the tenant is notified. If the agent is configured to
escalate, the session is handed off to a human as well.
"""
import logging

from sqlalchemy.orm import Session

from app.core.audit import AuditLog
from app.core.messages import localized
from app.models.session import AgentSession
from app.services import session_manager
from app.services.config_store import AgentConfigSnapshot
from app.services.notification_service import SESSION_HANDED_OFF, TOOL_DISABLED, notify_tenant

logger = logging.getLogger(__name__)


def track_tool_outcome(
    db: Session,
    session: AgentSession,
    config: AgentConfigSnapshot,
    tool_name: str,
    success: bool,
    threshold: int,
) -> bool:
    """Returns True when this outcome disabled the tool for the session."""
    newly_disabled = session_manager.record_tool_outcome(db, session, tool_name, success, threshold)
    if not newly_disabled:
        return False

    logger.warning(f"[Escalation] Tool {tool_name} disabled for session {session.id} after {threshold} failures")
    session_manager.append_message(db, session, "system", localized("tool_disabled", config.language, tool=tool_name))
    AuditLog.log_session_event(
        "tool_disabled", session.tenant_id, session.id, details=f"{tool_name} failed {threshold} times"
    )
    notify_tenant(
        db,
        session.tenant_id,
        TOOL_DISABLED,
        f"'{tool_name}' kept failing and was paused for conversation {session.id}.",
        payload={"session_id": session.id, "tool": tool_name},
    )

    if config.escalate_on_tool_failure and session.status == "active":
        session_manager.set_status(db, session, "handed_off")
        notify_tenant(
            db,
            session.tenant_id,
            SESSION_HANDED_OFF,
            f"Conversation {session.id} was handed off to your team after repeated tool failures.",
            payload={"session_id": session.id, "tool": tool_name},
        )
    return True
