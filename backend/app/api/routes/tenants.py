"""Tenants: provision an organization with a default agent and ledger; read notifications."""
import logging

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from app.api.deps import Operator, get_db, get_operator
from app.core.permissions import require_tenant
from app.models.agent_config import AgentConfig
from app.models.tenant import Tenant
from app.schemas.inbound import NotificationResponse
from app.schemas.tenant import TenantResponse, TenantSetup
from app.services import ledger_service
from app.services.notification_service import list_notifications

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("", response_model=TenantResponse, status_code=status.HTTP_201_CREATED)
def create_tenant(data: TenantSetup, db: Session = Depends(get_db), operator: Operator = Depends(get_operator)):
    """
    New tenants start safe: supervised autonomy and no tools enabled.
    The ledger is provisioned with the default allocations.
    """
    tenant = Tenant(
        name=data.name,
        preferred_language=data.preferred_language,
        billing_anchor_day=data.billing_anchor_day,
    )
    db.add(tenant)
    db.flush()
    db.add(
        AgentConfig(
            tenant_id=tenant.id,
            display_name=data.agent_display_name,
            language=data.preferred_language,
            autonomy_level="supervised",
            enabled_tools=[],
            disabled_tools=[],
            require_approval_for=[],
            faq_entries=[],
        )
    )
    db.commit()
    ledger_service.get_or_create_ledger(db, tenant.id)
    ledger_service.grant_daily_credits(db, tenant.id)
    ledger_service.grant_monthly_credits(db, tenant.id, anchor_day=tenant.billing_anchor_day)
    logger.info(f"Tenant {tenant.id} ({tenant.name}) provisioned by {operator.actor_id}")
    return tenant


@router.get("/{tenant_id}", response_model=TenantResponse)
def get_tenant(tenant_id: int, db: Session = Depends(get_db), operator: Operator = Depends(get_operator)):
    return require_tenant(db, tenant_id)


@router.get("/{tenant_id}/notifications", response_model=list[NotificationResponse])
def get_notifications(
    tenant_id: int,
    limit: int = Query(50, ge=1, le=500),
    db: Session = Depends(get_db),
    operator: Operator = Depends(get_operator),
):
    require_tenant(db, tenant_id)
    return list_notifications(db, tenant_id, limit=limit)
