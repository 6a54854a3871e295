from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Text
from sqlalchemy.types import JSON

from app.core.timeutil import utcnow
from app.db.base import Base


class Notification(Base):
    """Tenant-facing operational notice (low credits, disabled tool, handoff)."""
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    kind = Column(String(64), nullable=False)
    message = Column(Text, nullable=False)
    payload = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=utcnow)
