"""FastAPI dependencies: application context, DB session and operator identity.

SECURITY: Operator endpoints require the operator API key as a bearer
token. The human behind the call identifies themselves in X-Actor-Id;
that id is what approvals record as decided_by.
"""
import secrets
from dataclasses import dataclass
from typing import Generator, Optional

from fastapi import Depends, Header, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from app.agent.context import AppContext
from app.core.config import settings
from app.core.exceptions import BusinessError

security = HTTPBearer(auto_error=False)


@dataclass
class Operator:
    actor_id: str


def get_context(request: Request) -> AppContext:
    return request.app.state.context


def get_db(context: AppContext = Depends(get_context)) -> Generator[Session, None, None]:
    """Get database session."""
    db = context.session_factory()
    try:
        yield db
    finally:
        db.close()


def get_operator(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    x_actor_id: Optional[str] = Header(None, alias="X-Actor-Id"),
) -> Operator:
    if not credentials or not credentials.credentials:
        raise BusinessError.unauthorized("missing bearer token")
    if not secrets.compare_digest(credentials.credentials, settings.OPERATOR_API_KEY):
        raise BusinessError.unauthorized("bad operator key")
    actor = (x_actor_id or "").strip()
    if not actor:
        raise BusinessError.bad_request("X-Actor-Id header is required")
    return Operator(actor_id=actor[:255])
