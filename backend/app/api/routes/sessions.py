"""
Sessions: list, inspect, and take over conversations.

Handoff puts a human in charge: the agent stops replying but keeps
recording inbound messages. Resume gives the conversation back to the
agent. Close ends it; a later inbound message reopens the same session.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.api.deps import Operator, get_db, get_operator
from app.core.exceptions import BusinessError
from app.core.permissions import require_session, require_tenant
from app.models.session import AgentSession
from app.schemas.session import MessageResponse, SessionDetailResponse, SessionResponse
from app.services import session_manager

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/{tenant_id}/sessions", response_model=list[SessionResponse])
def list_sessions(
    tenant_id: int,
    status: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=500),
    db: Session = Depends(get_db),
    operator: Operator = Depends(get_operator),
):
    require_tenant(db, tenant_id)
    query = db.query(AgentSession).filter(AgentSession.tenant_id == tenant_id)
    if status is not None:
        if status not in session_manager.SESSION_STATUSES:
            raise BusinessError.bad_request(f"status must be one of {', '.join(session_manager.SESSION_STATUSES)}")
        query = query.filter(AgentSession.status == status)
    return query.order_by(AgentSession.last_message_at.desc(), AgentSession.id.desc()).limit(limit).all()


@router.get("/{tenant_id}/sessions/{session_id}", response_model=SessionDetailResponse)
def get_session(
    tenant_id: int,
    session_id: int,
    history: int = Query(100, ge=1, le=1000),
    db: Session = Depends(get_db),
    operator: Operator = Depends(get_operator),
):
    """Session with its most recent messages, oldest first."""
    session = require_session(db, tenant_id, session_id)
    detail = SessionResponse.model_validate(session).model_dump()
    messages = session_manager.get_history(db, session_id, limit=history)
    return SessionDetailResponse(**detail, messages=[MessageResponse.model_validate(m) for m in messages])


def _set_status(db: Session, tenant_id: int, session_id: int, status: str, operator: Operator) -> AgentSession:
    session = require_session(db, tenant_id, session_id)
    if session.status == status:
        return session
    session_manager.set_status(db, session, status, actor=operator.actor_id)
    db.refresh(session)
    return session


@router.post("/{tenant_id}/sessions/{session_id}/handoff", response_model=SessionResponse)
def hand_off(tenant_id: int, session_id: int, db: Session = Depends(get_db), operator: Operator = Depends(get_operator)):
    return _set_status(db, tenant_id, session_id, "handed_off", operator)


@router.post("/{tenant_id}/sessions/{session_id}/resume", response_model=SessionResponse)
def resume(tenant_id: int, session_id: int, db: Session = Depends(get_db), operator: Operator = Depends(get_operator)):
    return _set_status(db, tenant_id, session_id, "active", operator)


@router.post("/{tenant_id}/sessions/{session_id}/close", response_model=SessionResponse)
def close(tenant_id: int, session_id: int, db: Session = Depends(get_db), operator: Operator = Depends(get_operator)):
    return _set_status(db, tenant_id, session_id, "closed", operator)
