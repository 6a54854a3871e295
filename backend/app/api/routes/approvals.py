"""
Approvals: list pending/all and approve/reject.
Trust: a tool queued for approval runs ONLY after an operator approves it,
and at most once however many times approve is called.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.agent.approvals import APPROVAL_STATUSES, get_approval, list_approvals
from app.agent.context import AppContext
from app.api.deps import Operator, get_context, get_db, get_operator
from app.core.exceptions import BusinessError, ConfigStoreUnavailable
from app.core.permissions import require_tenant
from app.schemas.approval import ApprovalDecisionResponse, ApprovalResponse, RejectRequest

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/{tenant_id}/approvals", response_model=list[ApprovalResponse])
def list_tenant_approvals(
    tenant_id: int,
    status: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=500),
    db: Session = Depends(get_db),
    operator: Operator = Depends(get_operator),
):
    """Approval queue for the operator dashboard. status=pending shows only what needs a decision."""
    require_tenant(db, tenant_id)
    if status is not None and status not in APPROVAL_STATUSES:
        raise BusinessError.bad_request(f"status must be one of {', '.join(APPROVAL_STATUSES)}")
    return list_approvals(db, tenant_id, status=status, limit=limit)


@router.get("/{tenant_id}/approvals/{approval_id}", response_model=ApprovalResponse)
def get_tenant_approval(
    tenant_id: int,
    approval_id: int,
    db: Session = Depends(get_db),
    operator: Operator = Depends(get_operator),
):
    approval = get_approval(db, approval_id, tenant_id)
    if not approval:
        raise BusinessError.not_found("Approval", f"approval {approval_id} not in tenant {tenant_id}")
    return approval


def _decision_response(outcome, wanted_status: str) -> ApprovalDecisionResponse:
    if not outcome.changed and outcome.approval.status != wanted_status:
        raise BusinessError.conflict(f"Approval already {outcome.approval.status}")
    return ApprovalDecisionResponse(
        changed=outcome.changed,
        approval=ApprovalResponse.model_validate(outcome.approval),
    )


@router.post("/{tenant_id}/approvals/{approval_id}/approve", response_model=ApprovalDecisionResponse)
def approve(
    tenant_id: int,
    approval_id: int,
    context: AppContext = Depends(get_context),
    operator: Operator = Depends(get_operator),
):
    """Approve and execute. Repeating the call returns the first result without executing again."""
    try:
        outcome = context.approvals.approve(approval_id, operator.actor_id, tenant_id=tenant_id)
    except ConfigStoreUnavailable as e:
        raise BusinessError.service_unavailable(str(e))
    if outcome is None:
        raise BusinessError.not_found("Approval", f"approval {approval_id} not in tenant {tenant_id}")
    logger.info(
        f"Approval {approval_id} approve by {operator.actor_id}: changed={outcome.changed} "
        f"execution={outcome.approval.execution_status}"
    )
    return _decision_response(outcome, "approved")


@router.post("/{tenant_id}/approvals/{approval_id}/reject", response_model=ApprovalDecisionResponse)
def reject(
    tenant_id: int,
    approval_id: int,
    body: Optional[RejectRequest] = None,
    context: AppContext = Depends(get_context),
    operator: Operator = Depends(get_operator),
):
    """Reject. No execution, no cost."""
    reason = body.reason if body else None
    try:
        outcome = context.approvals.reject(approval_id, operator.actor_id, reason=reason, tenant_id=tenant_id)
    except ConfigStoreUnavailable as e:
        raise BusinessError.service_unavailable(str(e))
    if outcome is None:
        raise BusinessError.not_found("Approval", f"approval {approval_id} not in tenant {tenant_id}")
    logger.info(f"Approval {approval_id} reject by {operator.actor_id}: changed={outcome.changed}")
    return _decision_response(outcome, "rejected")
