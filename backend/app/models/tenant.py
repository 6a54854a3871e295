from sqlalchemy import Column, Integer, String, DateTime

from app.core.timeutil import utcnow
from app.db.base import Base


class Tenant(Base):
    """An isolated customer organization. All pipeline state is partitioned by tenant."""
    __tablename__ = "tenants"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    preferred_language = Column(String(16), default="en")
    # Day of month the monthly credit pool renews (clamped to month length)
    billing_anchor_day = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime, default=utcnow)
