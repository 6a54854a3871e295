from pydantic import BaseModel, Field
from typing import Optional, Any
from datetime import datetime


class InboundMessage(BaseModel):
    """Webhook body posted by a channel collaborator."""
    tenant_id: int = Field(..., ge=1)
    channel: str = Field(..., min_length=1, max_length=32)
    external_contact_id: str = Field(..., min_length=1, max_length=255)
    text: str = Field(..., min_length=1, max_length=8000)
    timestamp: Optional[datetime] = None


class InboundAccepted(BaseModel):
    queued: bool = True


class NotificationResponse(BaseModel):
    id: int
    tenant_id: int
    kind: str
    message: str
    payload: Optional[Any] = None
    created_at: datetime

    class Config:
        from_attributes = True
