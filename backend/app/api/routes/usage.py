"""
Usage API: dashboard aggregates.

Provides:
- Credits debited per action (agent_message, tool_<name>) in a window
- Credits granted/purchased in the same window
- Customer messages in the window; tokens over the sessions' lifetime
"""
from datetime import datetime
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import func
from sqlalchemy.orm import Session

from app.api.deps import Operator, get_db, get_operator
from app.core.permissions import require_tenant
from app.core.timeutil import to_naive_utc
from app.models.ledger import CreditTransaction
from app.models.session import AgentSession, SessionMessage
from app.schemas.credits import UsageLine, UsageSummary
from app.services.ledger_service import to_credits

router = APIRouter()


@router.get("/{tenant_id}/usage", response_model=UsageSummary)
def get_usage_summary(
    tenant_id: int,
    start: Optional[datetime] = Query(None),
    end: Optional[datetime] = Query(None),
    session_id: Optional[int] = Query(None),
    db: Session = Depends(get_db),
    operator: Operator = Depends(get_operator),
):
    require_tenant(db, tenant_id)
    start, end = to_naive_utc(start), to_naive_utc(end)

    tx_filters = [CreditTransaction.tenant_id == tenant_id]
    if start is not None:
        tx_filters.append(CreditTransaction.created_at >= start)
    if end is not None:
        tx_filters.append(CreditTransaction.created_at < end)
    if session_id is not None:
        tx_filters.append(CreditTransaction.session_id == session_id)

    # Debits are negative; report them as positive spend
    rows = (
        db.query(
            CreditTransaction.action,
            func.count(CreditTransaction.id),
            func.coalesce(func.sum(-CreditTransaction.amount), 0),
        )
        .filter(*tx_filters, CreditTransaction.amount < 0)
        .group_by(CreditTransaction.action)
        .order_by(CreditTransaction.action)
        .all()
    )
    by_action = [
        UsageLine(action=action, count=count, credits=to_credits(credits))
        for action, count, credits in rows
    ]

    total_granted = (
        db.query(func.coalesce(func.sum(CreditTransaction.amount), 0))
        .filter(*tx_filters, CreditTransaction.amount > 0)
        .scalar()
    )

    msg_filters = [AgentSession.tenant_id == tenant_id, SessionMessage.role == "user"]
    if start is not None:
        msg_filters.append(SessionMessage.created_at >= start)
    if end is not None:
        msg_filters.append(SessionMessage.created_at < end)
    if session_id is not None:
        msg_filters.append(AgentSession.id == session_id)
    messages = (
        db.query(func.count(SessionMessage.id))
        .join(AgentSession, SessionMessage.session_id == AgentSession.id)
        .filter(*msg_filters)
        .scalar()
        or 0
    )

    token_query = db.query(func.coalesce(func.sum(AgentSession.tokens_used), 0)).filter(
        AgentSession.tenant_id == tenant_id
    )
    if session_id is not None:
        token_query = token_query.filter(AgentSession.id == session_id)
    tokens = token_query.scalar() or 0

    return UsageSummary(
        tenant_id=tenant_id,
        start=start,
        end=end,
        total_debited=to_credits(sum((line.credits for line in by_action), Decimal("0"))),
        total_granted=to_credits(total_granted or 0),
        by_action=by_action,
        messages=int(messages),
        tokens=int(tokens),
    )
