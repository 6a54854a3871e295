"""
Periodic governance jobs: run alongside FastAPI in the same process.

JOBS:
1. Approval expiry sweep: pending requests older than the timeout -> expired
2. Daily credit grant: reset each tenant's daily pool once per UTC day
3. Monthly credit grant: reset the monthly pool on each tenant's billing
   anniversary

All three are idempotent, so the loop simply runs them every interval;
running late or twice never double-applies anything.
"""
import asyncio
import logging
from datetime import date
from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.models.ledger import CreditLedger
from app.models.tenant import Tenant
from app.services import ledger_service

logger = logging.getLogger(__name__)


def run_daily_grants(session_factory: Callable[[], Session], today: Optional[date] = None) -> int:
    """Returns how many tenants received today's grant in this run."""
    db = session_factory()
    granted = 0
    try:
        tenant_ids = [row.tenant_id for row in db.query(CreditLedger.tenant_id).all()]
        for tenant_id in tenant_ids:
            try:
                if ledger_service.grant_daily_credits(db, tenant_id, today=today):
                    granted += 1
            except SQLAlchemyError as e:
                db.rollback()
                logger.error(f"[Scheduler] Daily grant failed for tenant {tenant_id}: {e}")
    finally:
        db.close()
    return granted


def run_monthly_grants(session_factory: Callable[[], Session], today: Optional[date] = None) -> int:
    """Returns how many tenants started a new billing period in this run."""
    db = session_factory()
    granted = 0
    try:
        tenants = db.query(Tenant.id, Tenant.billing_anchor_day).all()
        for tenant_id, anchor_day in tenants:
            try:
                if ledger_service.grant_monthly_credits(db, tenant_id, anchor_day=anchor_day or 1, today=today):
                    granted += 1
            except SQLAlchemyError as e:
                db.rollback()
                logger.error(f"[Scheduler] Monthly grant failed for tenant {tenant_id}: {e}")
    finally:
        db.close()
    return granted


class GovernanceScheduler:
    def __init__(self, context, interval_seconds: int = 3600, initial_delay: float = 10):
        self.context = context
        self.interval_seconds = interval_seconds
        self.initial_delay = initial_delay
        self._task: Optional[asyncio.Task] = None
        self._running = False

    def run_once(self) -> dict:
        expired = self.context.approvals.expire_stale()
        daily = run_daily_grants(self.context.session_factory)
        monthly = run_monthly_grants(self.context.session_factory)
        if expired or daily or monthly:
            logger.info(f"[Scheduler] expired={expired} daily_grants={daily} monthly_grants={monthly}")
        return {"expired": expired, "daily_grants": daily, "monthly_grants": monthly}

    async def _loop(self):
        logger.info(f"[Scheduler] Started. Interval: {self.interval_seconds}s")
        # Let the server finish starting
        await asyncio.sleep(self.initial_delay)
        while self._running:
            try:
                # Blocking DB work runs in the thread pool, not on the event loop
                await asyncio.get_running_loop().run_in_executor(None, self.run_once)
            except Exception as e:
                logger.error(f"[Scheduler] Run failed: {e}", exc_info=True)
            await asyncio.sleep(self.interval_seconds)

    def start(self) -> None:
        """Called from the FastAPI lifespan (inside the running loop)."""
        self._running = True
        self._task = asyncio.create_task(self._loop())

    async def stop(self) -> None:
        self._running = False
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        logger.info("[Scheduler] Stopped")
