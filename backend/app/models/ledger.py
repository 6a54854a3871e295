from sqlalchemy import Column, Integer, ForeignKey, Numeric, DateTime, Date, String
from sqlalchemy.orm import relationship

from app.core.timeutil import utcnow
from app.db.base import Base


class CreditLedger(Base):
    """
    Tiered credit balance for one tenant.

    Pools are drawn daily -> monthly -> purchased. Every write goes through
    ledger_service, which bumps `version` in a compare-and-swap UPDATE so
    concurrent debits can never both pass the same balance.
    """
    __tablename__ = "credit_ledgers"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, unique=True)
    daily = Column(Numeric(12, 2), nullable=False, default=0)
    monthly = Column(Numeric(12, 2), nullable=False, default=0)
    purchased = Column(Numeric(12, 2), nullable=False, default=0)

    daily_allocation = Column(Numeric(12, 2), nullable=False, default=0)
    monthly_allocation = Column(Numeric(12, 2), nullable=False, default=0)
    daily_last_reset = Column(Date, nullable=True)
    monthly_period_start = Column(Date, nullable=True)

    version = Column(Integer, nullable=False, default=0)

    tenant = relationship("Tenant", backref="credit_ledger")

    @property
    def total(self):
        return self.daily + self.monthly + self.purchased


class CreditTransaction(Base):
    """Immutable audit row. One row per debit or grant, never one per pool."""
    __tablename__ = "credit_transactions"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    amount = Column(Numeric(12, 2), nullable=False)  # negative = debit
    action = Column(String(128), nullable=False)  # agent_message, tool_<name>, daily_grant, ...
    session_id = Column(Integer, ForeignKey("agent_sessions.id", ondelete="SET NULL"), nullable=True, index=True)
    reference = Column(String(255), nullable=True)  # turn / approval reference
    daily_used = Column(Numeric(12, 2), nullable=False, default=0)
    monthly_used = Column(Numeric(12, 2), nullable=False, default=0)
    purchased_used = Column(Numeric(12, 2), nullable=False, default=0)
    balance_after = Column(Numeric(12, 2), nullable=False, default=0)
    created_at = Column(DateTime, default=utcnow, index=True)
