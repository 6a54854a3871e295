"""
Tenant scoping for operator APIs.
Trust: every route resolves its tenant first; unknown tenants and records
belonging to another tenant both answer with the same generic 404.
"""
from sqlalchemy.orm import Session

from app.core.exceptions import BusinessError
from app.models.session import AgentSession
from app.models.tenant import Tenant


def require_tenant(db: Session, tenant_id: int) -> Tenant:
    tenant = db.query(Tenant).filter(Tenant.id == tenant_id).first()
    if not tenant:
        raise BusinessError.not_found("Tenant", f"tenant {tenant_id} does not exist")
    return tenant


def require_session(db: Session, tenant_id: int, session_id: int) -> AgentSession:
    session = (
        db.query(AgentSession)
        .filter(AgentSession.id == session_id, AgentSession.tenant_id == tenant_id)
        .first()
    )
    if not session:
        raise BusinessError.not_found("Session", f"session {session_id} not in tenant {tenant_id}")
    return session
