from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime


class ApprovalResponse(BaseModel):
    id: int
    tenant_id: int
    session_id: int
    tool_name: str
    arguments: Optional[dict] = None
    status: str
    created_at: datetime
    decided_at: Optional[datetime] = None
    decided_by: Optional[str] = None
    rejection_reason: Optional[str] = None
    execution_status: Optional[str] = None
    execution_result: Optional[str] = None
    executed_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ApprovalDecisionResponse(BaseModel):
    """changed is False when the request had already been decided (repeat clicks are no-ops)."""
    changed: bool
    approval: ApprovalResponse


class RejectRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=1000)
