"""
AgentSession: one ongoing conversation, keyed by (tenant, channel, external contact).

The key carries a uniqueness constraint; it is the serialization point that
guarantees concurrent resolvers never create two sessions for one contact.
Sessions are never deleted: closing or handing off is a status change.
"""
from sqlalchemy import (
    Column, Integer, String, ForeignKey, Numeric, DateTime, Date, Text, UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.types import JSON

from app.core.timeutil import utcnow
from app.db.base import Base


class AgentSession(Base):
    __tablename__ = "agent_sessions"
    __table_args__ = (
        UniqueConstraint("tenant_id", "channel", "external_contact_id", name="uq_session_key"),
    )

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    channel = Column(String(32), nullable=False)
    external_contact_id = Column(String(255), nullable=False)
    status = Column(String(32), nullable=False, default="active")  # active | closed | handed_off

    # Best-effort CRM match; never blocks a turn
    contact_id = Column(Integer, ForeignKey("contacts.id", ondelete="SET NULL"), nullable=True)

    # Lifetime counters
    message_count = Column(Integer, nullable=False, default=0)
    tokens_used = Column(Integer, nullable=False, default=0)
    cost_incurred = Column(Numeric(12, 2), nullable=False, default=0)

    # Counters for the current UTC day (rate limiting)
    usage_day = Column(Date, nullable=True)
    day_message_count = Column(Integer, nullable=False, default=0)
    day_cost = Column(Numeric(12, 2), nullable=False, default=0)

    # Tool failure tracking: {"tool_name": consecutive_failures}, ["tool_name", ...]
    tool_failures = Column(JSON, nullable=True, default=dict)
    disabled_tools = Column(JSON, nullable=True, default=list)

    created_at = Column(DateTime, default=utcnow)
    last_message_at = Column(DateTime, nullable=True)

    contact = relationship("Contact")
    messages = relationship(
        "SessionMessage",
        back_populates="session",
        order_by="SessionMessage.id",
    )

    def __repr__(self):
        return f"<AgentSession id={self.id} key=({self.tenant_id}, {self.channel}, {self.external_contact_id}) status={self.status}>"


class SessionMessage(Base):
    """Append-only conversation history. Insertion order (id) is arrival order."""
    __tablename__ = "session_messages"

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(Integer, ForeignKey("agent_sessions.id", ondelete="CASCADE"), nullable=False, index=True)
    role = Column(String(16), nullable=False)  # user | assistant | tool | system
    content = Column(Text, nullable=False, default="")
    tool_calls = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=utcnow)

    session = relationship("AgentSession", back_populates="messages")
