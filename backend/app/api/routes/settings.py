"""Agent configuration: identity, guardrails, autonomy and spend caps."""
import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.api.deps import Operator, get_db, get_operator
from app.core.audit import AuditLog
from app.core.exceptions import BusinessError
from app.core.permissions import require_tenant
from app.models.agent_config import AgentConfig
from app.schemas.settings import AgentConfigResponse, AgentConfigUpdate

logger = logging.getLogger(__name__)
router = APIRouter()


def _get_config(db: Session, tenant_id: int) -> AgentConfig:
    require_tenant(db, tenant_id)
    config = db.query(AgentConfig).filter(AgentConfig.tenant_id == tenant_id).first()
    if not config:
        raise BusinessError.not_found("AgentConfig", f"tenant {tenant_id} has no agent")
    return config


@router.get("/{tenant_id}/agent-config", response_model=AgentConfigResponse)
def get_agent_config(tenant_id: int, db: Session = Depends(get_db), operator: Operator = Depends(get_operator)):
    return _get_config(db, tenant_id)


@router.patch("/{tenant_id}/agent-config", response_model=AgentConfigResponse)
def update_agent_config(
    tenant_id: int,
    data: AgentConfigUpdate,
    db: Session = Depends(get_db),
    operator: Operator = Depends(get_operator),
):
    """Changes apply from the next turn; a turn in flight keeps the snapshot it started with."""
    config = _get_config(db, tenant_id)
    changes = data.model_dump(exclude_unset=True)
    logger.info(f"[SETTINGS] Update request for tenant {tenant_id} by {operator.actor_id}: {sorted(changes)}")

    for field_name, value in changes.items():
        if value is None:
            continue
        if field_name in ("enabled_tools", "disabled_tools", "require_approval_for"):
            value = sorted(set(value))
        setattr(config, field_name, value)
    db.commit()
    db.refresh(config)

    AuditLog.log_config_change(tenant_id, operator.actor_id, sorted(changes))
    return config
