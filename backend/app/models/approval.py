"""
ApprovalRequest: a governed tool call waiting for a human decision.

Status flow: pending -> approved | rejected | expired. Exactly one terminal
transition; `expired` is the only one the system makes on its own (sweep).
An approved request additionally records how its single execution went.
"""
from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Text
from sqlalchemy.orm import relationship
from sqlalchemy.types import JSON

from app.core.timeutil import utcnow
from app.db.base import Base


class ApprovalRequest(Base):
    __tablename__ = "approval_requests"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    session_id = Column(Integer, ForeignKey("agent_sessions.id", ondelete="CASCADE"), nullable=False, index=True)
    tool_name = Column(String(128), nullable=False)
    arguments = Column(JSON, nullable=True)
    status = Column(String(32), nullable=False, default="pending", index=True)
    created_at = Column(DateTime, default=utcnow, index=True)

    decided_at = Column(DateTime, nullable=True)
    decided_by = Column(String(255), nullable=True)
    rejection_reason = Column(Text, nullable=True)

    execution_status = Column(String(32), nullable=True)  # succeeded | failed | skipped
    execution_result = Column(Text, nullable=True)
    executed_at = Column(DateTime, nullable=True)

    session = relationship("AgentSession", backref="approval_requests")
