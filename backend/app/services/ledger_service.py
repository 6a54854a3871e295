"""
Credit ledger: tiered balances with atomic check-and-deduct.

Every write is a compare-and-swap on CreditLedger.version performed in the
same DB transaction as the CreditTransaction insert, so a debit and its
audit row commit together or not at all, and two concurrent debits can
never both spend the same credits.
"""
import calendar
import logging
import time
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from app.core.audit import AuditLog
from app.core.config import settings
from app.core.timeutil import to_naive_utc, utctoday
from app.models.ledger import CreditLedger, CreditTransaction

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
MAX_CAS_ATTEMPTS = 20


def to_credits(value) -> Decimal:
    return Decimal(str(value)).quantize(Decimal("0.01"))


@dataclass
class LedgerBalance:
    daily: Decimal
    monthly: Decimal
    purchased: Decimal

    @property
    def total(self) -> Decimal:
        return self.daily + self.monthly + self.purchased


@dataclass
class DebitResult:
    success: bool
    amount: Decimal
    available: Decimal
    daily_used: Decimal = ZERO
    monthly_used: Decimal = ZERO
    purchased_used: Decimal = ZERO
    balance_after: Optional[Decimal] = None
    transaction_id: Optional[int] = None
    error: Optional[str] = None

    @property
    def shortfall(self) -> Decimal:
        return max(self.amount - self.available, ZERO)


def split_debit(balance: LedgerBalance, amount: Decimal):
    """
    Draw amount from daily, then monthly, then purchased.

    Returns (daily_used, monthly_used, purchased_used), or None when the
    three pools together cannot cover amount (nothing is drawn then).
    """
    if amount > balance.total:
        return None
    remaining = amount
    daily_used = min(remaining, balance.daily)
    remaining -= daily_used
    monthly_used = min(remaining, balance.monthly)
    remaining -= monthly_used
    purchased_used = min(remaining, balance.purchased)
    return daily_used, monthly_used, purchased_used


def get_or_create_ledger(db: Session, tenant_id: int) -> CreditLedger:
    ledger = db.query(CreditLedger).filter(CreditLedger.tenant_id == tenant_id).first()
    if ledger:
        return ledger
    ledger = CreditLedger(
        tenant_id=tenant_id,
        daily=ZERO,
        monthly=ZERO,
        purchased=ZERO,
        daily_allocation=to_credits(settings.DEFAULT_DAILY_CREDITS),
        monthly_allocation=to_credits(settings.DEFAULT_MONTHLY_CREDITS),
        version=0,
    )
    db.add(ledger)
    try:
        db.commit()
        logger.info(f"[Ledger] Provisioned ledger for tenant {tenant_id}")
        return ledger
    except IntegrityError:
        # Another worker provisioned it first
        db.rollback()
        return db.query(CreditLedger).filter(CreditLedger.tenant_id == tenant_id).one()


def _read_state(db: Session, tenant_id: int):
    get_or_create_ledger(db, tenant_id)
    return db.execute(
        select(
            CreditLedger.daily,
            CreditLedger.monthly,
            CreditLedger.purchased,
            CreditLedger.daily_allocation,
            CreditLedger.monthly_allocation,
            CreditLedger.daily_last_reset,
            CreditLedger.monthly_period_start,
            CreditLedger.version,
        ).where(CreditLedger.tenant_id == tenant_id)
    ).one()


def get_balance(db: Session, tenant_id: int) -> LedgerBalance:
    state = _read_state(db, tenant_id)
    return LedgerBalance(
        daily=to_credits(state.daily),
        monthly=to_credits(state.monthly),
        purchased=to_credits(state.purchased),
    )


def _compare_and_swap(db: Session, tenant_id: int, version: int, **values) -> bool:
    result = db.execute(
        update(CreditLedger)
        .where(CreditLedger.tenant_id == tenant_id, CreditLedger.version == version)
        .values(version=version + 1, **values)
    )
    return result.rowcount == 1


def _backoff(attempt: int) -> None:
    time.sleep(min(0.005 * (2 ** attempt), 0.25))


def debit(
    db: Session,
    tenant_id: int,
    amount,
    action: str,
    session_id: Optional[int] = None,
    reference: Optional[str] = None,
) -> DebitResult:
    """
    Atomically deduct amount across pools and record one transaction.

    An unaffordable amount is refused whole: no pool changes, no row written.
    """
    amount = to_credits(amount)
    if amount < ZERO:
        raise ValueError("Debit amount must be non-negative")

    for attempt in range(MAX_CAS_ATTEMPTS):
        state = _read_state(db, tenant_id)
        balance = LedgerBalance(to_credits(state.daily), to_credits(state.monthly), to_credits(state.purchased))

        if amount == ZERO:
            return DebitResult(success=True, amount=amount, available=balance.total, balance_after=balance.total)

        split = split_debit(balance, amount)
        if split is None:
            AuditLog.log_credit("debit_refused", tenant_id, str(amount), action, reference, str(balance.total))
            return DebitResult(
                success=False,
                amount=amount,
                available=balance.total,
                error="insufficient_credits",
            )

        daily_used, monthly_used, purchased_used = split
        balance_after = balance.total - amount
        try:
            swapped = _compare_and_swap(
                db,
                tenant_id,
                state.version,
                daily=balance.daily - daily_used,
                monthly=balance.monthly - monthly_used,
                purchased=balance.purchased - purchased_used,
            )
            if not swapped:
                db.rollback()
                _backoff(attempt)
                continue

            tx = CreditTransaction(
                tenant_id=tenant_id,
                amount=-amount,
                action=action,
                session_id=session_id,
                reference=reference,
                daily_used=daily_used,
                monthly_used=monthly_used,
                purchased_used=purchased_used,
                balance_after=balance_after,
            )
            db.add(tx)
            db.commit()
        except OperationalError as e:
            # SQLite "database is locked" under write contention
            db.rollback()
            logger.debug(f"[Ledger] Debit retry for tenant {tenant_id} after lock contention: {e}")
            _backoff(attempt)
            continue

        AuditLog.log_credit("debit", tenant_id, str(-amount), action, reference, str(balance_after))
        return DebitResult(
            success=True,
            amount=amount,
            available=balance.total,
            daily_used=daily_used,
            monthly_used=monthly_used,
            purchased_used=purchased_used,
            balance_after=balance_after,
            transaction_id=tx.id,
        )

    logger.error(f"[Ledger] Debit for tenant {tenant_id} abandoned after {MAX_CAS_ATTEMPTS} contended attempts")
    return DebitResult(success=False, amount=amount, available=ZERO, error="contention")


def _credit_pool(
    db: Session,
    tenant_id: int,
    action: str,
    compute,
    reference: Optional[str] = None,
) -> Optional[CreditTransaction]:
    """
    CAS loop shared by grants and top-ups.

    compute(state) returns (values_to_set, signed_amount), or None for a no-op.
    """
    for attempt in range(MAX_CAS_ATTEMPTS):
        state = _read_state(db, tenant_id)
        change = compute(state)
        if change is None:
            return None
        values, signed_amount = change
        try:
            if not _compare_and_swap(db, tenant_id, state.version, **values):
                db.rollback()
                _backoff(attempt)
                continue
            new_total = (
                to_credits(values.get("daily", state.daily))
                + to_credits(values.get("monthly", state.monthly))
                + to_credits(values.get("purchased", state.purchased))
            )
            tx = CreditTransaction(
                tenant_id=tenant_id,
                amount=to_credits(signed_amount),
                action=action,
                reference=reference,
                balance_after=new_total,
            )
            db.add(tx)
            db.commit()
        except OperationalError as e:
            db.rollback()
            logger.debug(f"[Ledger] {action} retry for tenant {tenant_id}: {e}")
            _backoff(attempt)
            continue
        AuditLog.log_credit(action, tenant_id, str(tx.amount), action, reference, str(new_total))
        return tx

    logger.error(f"[Ledger] {action} for tenant {tenant_id} abandoned after {MAX_CAS_ATTEMPTS} attempts")
    return None


def grant_daily_credits(db: Session, tenant_id: int, today: Optional[date] = None) -> bool:
    """
    Reset the daily pool to its allocation once per calendar day.

    Returns True if this call performed today's reset, False if it had
    already happened.
    """
    today = today or utctoday()

    def compute(state):
        if state.daily_last_reset == today:
            return None
        allocation = to_credits(state.daily_allocation)
        return {"daily": allocation, "daily_last_reset": today}, allocation - to_credits(state.daily)

    tx = _credit_pool(db, tenant_id, "daily_grant", compute, reference=f"day:{today.isoformat()}")
    if tx is not None:
        logger.info(f"[Ledger] Daily credits reset for tenant {tenant_id}")
        return True
    return False


def billing_period_start(today: date, anchor_day: int) -> date:
    """Most recent billing anniversary on or before today."""
    anchor_day = max(1, min(anchor_day or 1, 31))
    day = min(anchor_day, calendar.monthrange(today.year, today.month)[1])
    if today.day >= day:
        return date(today.year, today.month, day)
    year, month = (today.year - 1, 12) if today.month == 1 else (today.year, today.month - 1)
    return date(year, month, min(anchor_day, calendar.monthrange(year, month)[1]))


def grant_monthly_credits(
    db: Session,
    tenant_id: int,
    anchor_day: int = 1,
    today: Optional[date] = None,
) -> bool:
    """Reset the monthly pool once per billing cycle, on the tenant's anniversary."""
    period_start = billing_period_start(today or utctoday(), anchor_day)

    def compute(state):
        if state.monthly_period_start == period_start:
            return None
        allocation = to_credits(state.monthly_allocation)
        return (
            {"monthly": allocation, "monthly_period_start": period_start},
            allocation - to_credits(state.monthly),
        )

    tx = _credit_pool(db, tenant_id, "monthly_grant", compute, reference=f"period:{period_start.isoformat()}")
    if tx is not None:
        logger.info(f"[Ledger] Monthly credits reset for tenant {tenant_id} (period {period_start})")
        return True
    return False


def add_purchased_credits(db: Session, tenant_id: int, amount, reference: Optional[str] = None) -> CreditTransaction:
    """Top up the purchased pool. The only way that pool grows."""
    amount = to_credits(amount)
    if amount <= ZERO:
        raise ValueError("Top-up amount must be positive")

    def compute(state):
        return {"purchased": to_credits(state.purchased) + amount}, amount

    tx = _credit_pool(db, tenant_id, "purchase", compute, reference=reference)
    if tx is None:
        raise RuntimeError(f"Top-up for tenant {tenant_id} could not be applied")
    return tx


def list_transactions(
    db: Session,
    tenant_id: int,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    session_id: Optional[int] = None,
    limit: int = 500,
) -> list[CreditTransaction]:
    """Usage read model: transactions for a tenant (optionally one session) in a window."""
    start, end = to_naive_utc(start), to_naive_utc(end)
    query = db.query(CreditTransaction).filter(CreditTransaction.tenant_id == tenant_id)
    if session_id is not None:
        query = query.filter(CreditTransaction.session_id == session_id)
    if start is not None:
        query = query.filter(CreditTransaction.created_at >= start)
    if end is not None:
        query = query.filter(CreditTransaction.created_at < end)
    return query.order_by(CreditTransaction.created_at, CreditTransaction.id).limit(limit).all()
