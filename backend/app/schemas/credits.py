from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime, date
from decimal import Decimal


class BalanceResponse(BaseModel):
    tenant_id: int
    daily: Decimal
    monthly: Decimal
    purchased: Decimal
    total: Decimal
    daily_allocation: Decimal
    monthly_allocation: Decimal
    daily_last_reset: Optional[date] = None
    monthly_period_start: Optional[date] = None


class TopUpRequest(BaseModel):
    amount: Decimal = Field(..., gt=0, le=Decimal("1000000"))
    reference: Optional[str] = Field(None, max_length=255)


class AllocationUpdate(BaseModel):
    """Grant sizes applied at the next daily reset / billing period."""
    daily_allocation: Optional[Decimal] = Field(None, ge=0)
    monthly_allocation: Optional[Decimal] = Field(None, ge=0)


class TransactionResponse(BaseModel):
    id: int
    tenant_id: int
    amount: Decimal
    action: str
    session_id: Optional[int] = None
    reference: Optional[str] = None
    daily_used: Decimal
    monthly_used: Decimal
    purchased_used: Decimal
    balance_after: Decimal
    created_at: datetime

    class Config:
        from_attributes = True


class UsageLine(BaseModel):
    action: str
    count: int
    credits: Decimal


class UsageSummary(BaseModel):
    tenant_id: int
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    total_debited: Decimal
    total_granted: Decimal
    by_action: list[UsageLine]
    messages: int
    tokens: int
