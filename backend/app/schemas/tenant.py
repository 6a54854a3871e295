from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime


class TenantSetup(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    preferred_language: str = "en"
    billing_anchor_day: int = Field(1, ge=1, le=31)
    agent_display_name: str = "Assistant"


class TenantResponse(BaseModel):
    id: int
    name: str
    preferred_language: Optional[str] = "en"
    billing_anchor_day: int
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True
