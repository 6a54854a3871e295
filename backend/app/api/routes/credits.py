"""Credits: balance, top-ups, grant sizes and transaction history."""
import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from app.api.deps import Operator, get_db, get_operator
from app.core.exceptions import BusinessError
from app.core.permissions import require_tenant
from app.core.timeutil import to_naive_utc
from app.models.ledger import CreditLedger
from app.schemas.credits import AllocationUpdate, BalanceResponse, TopUpRequest, TransactionResponse
from app.services import ledger_service

logger = logging.getLogger(__name__)
router = APIRouter()


def _balance_response(ledger: CreditLedger) -> BalanceResponse:
    daily = ledger_service.to_credits(ledger.daily)
    monthly = ledger_service.to_credits(ledger.monthly)
    purchased = ledger_service.to_credits(ledger.purchased)
    return BalanceResponse(
        tenant_id=ledger.tenant_id,
        daily=daily,
        monthly=monthly,
        purchased=purchased,
        total=daily + monthly + purchased,
        daily_allocation=ledger_service.to_credits(ledger.daily_allocation),
        monthly_allocation=ledger_service.to_credits(ledger.monthly_allocation),
        daily_last_reset=ledger.daily_last_reset,
        monthly_period_start=ledger.monthly_period_start,
    )


def _current_ledger(db: Session, tenant_id: int) -> CreditLedger:
    ledger = ledger_service.get_or_create_ledger(db, tenant_id)
    db.refresh(ledger)
    return ledger


@router.get("/{tenant_id}/credits", response_model=BalanceResponse)
def get_balance(tenant_id: int, db: Session = Depends(get_db), operator: Operator = Depends(get_operator)):
    require_tenant(db, tenant_id)
    return _balance_response(_current_ledger(db, tenant_id))


@router.post("/{tenant_id}/credits/top-up", response_model=TransactionResponse, status_code=status.HTTP_201_CREATED)
def top_up(
    tenant_id: int,
    data: TopUpRequest,
    db: Session = Depends(get_db),
    operator: Operator = Depends(get_operator),
):
    """Add purchased credits. The purchased pool only grows through here."""
    require_tenant(db, tenant_id)
    reference = data.reference or f"operator:{operator.actor_id}"
    try:
        tx = ledger_service.add_purchased_credits(db, tenant_id, data.amount, reference=reference)
    except RuntimeError as e:
        raise BusinessError.server_error(e)
    logger.info(f"Tenant {tenant_id} topped up {data.amount} credits by {operator.actor_id}")
    return tx


@router.patch("/{tenant_id}/credits/allocations", response_model=BalanceResponse)
def update_allocations(
    tenant_id: int,
    data: AllocationUpdate,
    db: Session = Depends(get_db),
    operator: Operator = Depends(get_operator),
):
    """Change grant sizes. Balances are untouched until the next reset."""
    require_tenant(db, tenant_id)
    ledger = _current_ledger(db, tenant_id)
    if data.daily_allocation is not None:
        ledger.daily_allocation = ledger_service.to_credits(data.daily_allocation)
    if data.monthly_allocation is not None:
        ledger.monthly_allocation = ledger_service.to_credits(data.monthly_allocation)
    db.commit()
    logger.info(f"Tenant {tenant_id} allocations updated by {operator.actor_id}")
    return _balance_response(_current_ledger(db, tenant_id))


@router.get("/{tenant_id}/credits/transactions", response_model=list[TransactionResponse])
def list_transactions(
    tenant_id: int,
    start: Optional[datetime] = Query(None),
    end: Optional[datetime] = Query(None),
    session_id: Optional[int] = Query(None),
    limit: int = Query(500, ge=1, le=5000),
    db: Session = Depends(get_db),
    operator: Operator = Depends(get_operator),
):
    """Usage read model: transactions in [start, end), optionally for one session."""
    require_tenant(db, tenant_id)
    start, end = to_naive_utc(start), to_naive_utc(end)
    if start and end and start >= end:
        raise BusinessError.bad_request("start must be before end")
    return ledger_service.list_transactions(db, tenant_id, start=start, end=end, session_id=session_id, limit=limit)
