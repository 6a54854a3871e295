"""
AgentConfig: tenant-owned agent identity, guardrails and spend caps.

Edited by the tenant through the settings API; the message pipeline only
ever reads it, through ConfigStore, as an immutable snapshot.
"""
from sqlalchemy import Column, Integer, String, ForeignKey, Numeric, Float, Boolean, Text, DateTime
from sqlalchemy.orm import relationship
from sqlalchemy.types import JSON

from app.core.timeutil import utcnow
from app.db.base import Base


class AgentConfig(Base):
    __tablename__ = "agent_configs"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, unique=True)

    # Identity
    display_name = Column(String(255), nullable=False, default="Assistant")
    language = Column(String(16), nullable=False, default="en")
    personality = Column(Text, nullable=True)
    brand_voice = Column(Text, nullable=True)
    system_prompt = Column(Text, nullable=True)
    faq_entries = Column(JSON, nullable=True, default=list)  # [{"question": ..., "answer": ...}]

    # Tool guardrails
    enabled_tools = Column(JSON, nullable=True, default=list)
    disabled_tools = Column(JSON, nullable=True, default=list)
    autonomy_level = Column(String(32), nullable=False, default="supervised")  # draft_only | supervised | autonomous
    require_approval_for = Column(JSON, nullable=True, default=list)
    escalate_on_tool_failure = Column(Boolean, nullable=False, default=False)

    # Spend caps (per tenant per day)
    max_messages_per_day = Column(Integer, nullable=False, default=100)
    max_cost_per_day = Column(Numeric(12, 2), nullable=False, default=500)

    # Model selection
    provider_id = Column(String(64), nullable=False, default="groq")
    model_id = Column(String(128), nullable=False, default="llama-3.3-70b-versatile")
    temperature = Column(Float, nullable=False, default=0.7)
    max_tokens = Column(Integer, nullable=False, default=1024)

    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    tenant = relationship("Tenant", backref="agent_config")
