from pydantic import BaseModel, Field, field_validator
from typing import Literal, Optional
from decimal import Decimal
from datetime import datetime


class FaqEntrySchema(BaseModel):
    question: str = Field(..., min_length=1, max_length=500)
    answer: str = Field(..., min_length=1, max_length=4000)


AutonomyLevel = Literal["draft_only", "supervised", "autonomous"]


class AgentConfigResponse(BaseModel):
    tenant_id: int
    display_name: str
    language: str
    personality: Optional[str] = None
    brand_voice: Optional[str] = None
    system_prompt: Optional[str] = None
    faq_entries: list[FaqEntrySchema] = []
    enabled_tools: list[str] = []
    disabled_tools: list[str] = []
    autonomy_level: AutonomyLevel
    require_approval_for: list[str] = []
    escalate_on_tool_failure: bool
    max_messages_per_day: int
    max_cost_per_day: Decimal
    provider_id: str
    model_id: str
    temperature: float
    max_tokens: int
    updated_at: Optional[datetime] = None

    @field_validator("faq_entries", "enabled_tools", "disabled_tools", "require_approval_for", mode="before")
    @classmethod
    def none_to_empty(cls, v):
        return v or []

    class Config:
        from_attributes = True


class AgentConfigUpdate(BaseModel):
    display_name: Optional[str] = Field(None, min_length=1, max_length=255)
    language: Optional[str] = Field(None, min_length=2, max_length=16)
    personality: Optional[str] = Field(None, max_length=4000)
    brand_voice: Optional[str] = Field(None, max_length=4000)
    system_prompt: Optional[str] = Field(None, max_length=8000)
    faq_entries: Optional[list[FaqEntrySchema]] = None
    enabled_tools: Optional[list[str]] = None
    disabled_tools: Optional[list[str]] = None
    autonomy_level: Optional[AutonomyLevel] = None
    require_approval_for: Optional[list[str]] = None
    escalate_on_tool_failure: Optional[bool] = None
    max_messages_per_day: Optional[int] = Field(None, ge=0)
    max_cost_per_day: Optional[Decimal] = Field(None, ge=0)
    provider_id: Optional[str] = Field(None, max_length=64)
    model_id: Optional[str] = Field(None, max_length=128)
    temperature: Optional[float] = Field(None, ge=0, le=2)
    max_tokens: Optional[int] = Field(None, ge=1, le=32768)
