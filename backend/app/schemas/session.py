from pydantic import BaseModel
from typing import Optional, Any
from datetime import datetime
from decimal import Decimal


class MessageResponse(BaseModel):
    id: int
    role: str
    content: str
    tool_calls: Optional[Any] = None
    created_at: datetime

    class Config:
        from_attributes = True


class SessionResponse(BaseModel):
    id: int
    tenant_id: int
    channel: str
    external_contact_id: str
    status: str
    contact_id: Optional[int] = None
    message_count: int
    tokens_used: int
    cost_incurred: Decimal
    disabled_tools: Optional[list] = None
    created_at: datetime
    last_message_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class SessionDetailResponse(SessionResponse):
    messages: list[MessageResponse] = []
