"""
Admission Controller: the credit gate in front of every LLM call.

The system must never incur a cost it cannot account for, so this runs
before the provider is contacted. The estimate is a static per-model
weight (see credit_costs); the check is a plain read of the three pools.
"""
import logging
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy.orm import Session

from app.services.ledger_service import ZERO, get_balance, to_credits

logger = logging.getLogger(__name__)


@dataclass
class AdmissionDecision:
    allowed: bool
    estimated_cost: Decimal
    available: Decimal

    @property
    def shortfall(self) -> Decimal:
        return max(self.estimated_cost - self.available, ZERO)


def preflight_check(db: Session, tenant_id: int, estimated_cost) -> AdmissionDecision:
    estimated_cost = to_credits(estimated_cost)
    balance = get_balance(db, tenant_id)
    decision = AdmissionDecision(
        allowed=balance.total >= estimated_cost,
        estimated_cost=estimated_cost,
        available=balance.total,
    )
    if not decision.allowed:
        logger.info(
            f"[Admission] Denied tenant {tenant_id}: need {estimated_cost}, "
            f"have {balance.total} (shortfall {decision.shortfall})"
        )
    return decision
