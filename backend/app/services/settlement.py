"""
Settlement: apply a turn's costs to the credit ledger.

Items are settled independently and in order. Each item is one atomic
debit + transaction (ledger_service.debit). An item the ledger can no
longer cover is skipped, not retried, and the tenant is notified; items
already settled stay settled.
"""
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional

from sqlalchemy.orm import Session

from app.services import ledger_service
from app.services.notification_service import SETTLEMENT_SKIPPED, notify_tenant

logger = logging.getLogger(__name__)


@dataclass
class SettlementItem:
    amount: Decimal
    action: str
    reference: Optional[str] = None
    session_id: Optional[int] = None


@dataclass
class SettlementReport:
    settled: List[SettlementItem] = field(default_factory=list)
    skipped: List[SettlementItem] = field(default_factory=list)

    @property
    def total_settled(self) -> Decimal:
        return sum((item.amount for item in self.settled), Decimal("0"))


def settle(db: Session, tenant_id: int, items: List[SettlementItem]) -> SettlementReport:
    report = SettlementReport()
    for item in items:
        result = ledger_service.debit(
            db,
            tenant_id,
            item.amount,
            item.action,
            session_id=item.session_id,
            reference=item.reference,
        )
        if result.success:
            report.settled.append(item)
            continue

        report.skipped.append(item)
        logger.warning(
            f"[Settlement] Skipped {item.action} ({item.amount} credits) for tenant {tenant_id}: "
            f"{result.error}, available={result.available}"
        )
        notify_tenant(
            db,
            tenant_id,
            SETTLEMENT_SKIPPED,
            f"Credits ran out while settling '{item.action}'. Top up credits to keep your agent running.",
            payload={
                "action": item.action,
                "amount": str(item.amount),
                "available": str(result.available),
                "reference": item.reference,
            },
        )
    return report
