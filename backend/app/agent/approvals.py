"""
Approval workflow: queued tool calls waiting for a human.

SAFETY MODEL:
- A queued call becomes an ApprovalRequest in status pending
- Exactly one terminal transition: approved | rejected | expired
- Every transition is a conditional UPDATE ... WHERE status = 'pending';
  whoever changes the row wins, everyone else is a no-op
- Only the winner of an approve executes the tool, so a request is
  executed at most once no matter how many operators click approve
- expired is the only transition the system makes on its own (sweep)

Execution after approval is pre-flight checked against the credit ledger
and settled like any other tool cost.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from ai.tool_calls import ToolCall
from app.agent.escalation import track_tool_outcome
from app.agent.governor import run_tool
from app.agent.tools import ToolContext, ToolRegistry
from app.channels.router import ChannelRouter
from app.core.audit import AuditLog
from app.core.exceptions import ConfigStoreUnavailable
from app.core.messages import localized
from app.core.timeutil import utcnow
from app.models.approval import ApprovalRequest
from app.models.session import AgentSession
from app.services import session_manager
from app.services.admission import preflight_check
from app.services.config_store import ConfigStore
from app.services.credit_costs import get_tool_credit_cost
from app.services.notification_service import CREDITS_EXHAUSTED, notify_tenant
from app.services.settlement import SettlementItem, settle

logger = logging.getLogger(__name__)

APPROVAL_STATUSES = ("pending", "approved", "rejected", "expired")


@dataclass
class ApprovalOutcome:
    approval: ApprovalRequest
    changed: bool


def create_approval(db: Session, tenant_id: int, session_id: int, call: ToolCall) -> ApprovalRequest:
    approval = ApprovalRequest(
        tenant_id=tenant_id,
        session_id=session_id,
        tool_name=call.name,
        arguments=call.arguments,
        status="pending",
        created_at=utcnow(),
    )
    db.add(approval)
    db.commit()
    AuditLog.log_approval("requested", approval.id, tenant_id, call.name, details={"session_id": session_id})
    logger.info(f"[Approvals] Queued {call.name} as approval {approval.id} (session {session_id})")
    return approval


def list_approvals(
    db: Session,
    tenant_id: int,
    status: Optional[str] = None,
    limit: int = 50,
) -> List[ApprovalRequest]:
    query = db.query(ApprovalRequest).filter(ApprovalRequest.tenant_id == tenant_id)
    if status:
        query = query.filter(ApprovalRequest.status == status)
    return query.order_by(ApprovalRequest.created_at.desc(), ApprovalRequest.id.desc()).limit(limit).all()


def get_approval(db: Session, approval_id: int, tenant_id: Optional[int] = None) -> Optional[ApprovalRequest]:
    query = db.query(ApprovalRequest).filter(ApprovalRequest.id == approval_id)
    if tenant_id is not None:
        query = query.filter(ApprovalRequest.tenant_id == tenant_id)
    return query.first()


def _transition(db: Session, approval_id: int, status: str, **values) -> bool:
    """pending -> status. Returns True only for the caller that changed the row."""
    changed = db.execute(
        update(ApprovalRequest)
        .where(ApprovalRequest.id == approval_id, ApprovalRequest.status == "pending")
        .values(status=status, **values)
    ).rowcount
    db.commit()
    return changed == 1


class ApprovalService:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        config_store: ConfigStore,
        registry: ToolRegistry,
        channel_router: ChannelRouter,
        timeout_hours: int = 24,
        failure_threshold: int = 3,
    ):
        self._session_factory = session_factory
        self.config_store = config_store
        self.registry = registry
        self.channel_router = channel_router
        self.timeout = timedelta(hours=timeout_hours)
        self.failure_threshold = failure_threshold

    def approve(self, approval_id: int, actor: str, tenant_id: Optional[int] = None) -> Optional[ApprovalOutcome]:
        """
        Approve and execute. None if the request does not exist (for this tenant).

        Raises:
            ConfigStoreUnavailable: before any state change.
        """
        db = self._session_factory()
        try:
            approval = get_approval(db, approval_id, tenant_id)
            if approval is None:
                return None
            config = self.config_store.get(approval.tenant_id)

            won = _transition(db, approval_id, "approved", decided_at=utcnow(), decided_by=actor)
            db.refresh(approval)
            if not won:
                logger.info(f"[Approvals] Approve of {approval_id} by {actor} was a no-op (status={approval.status})")
                return ApprovalOutcome(approval=approval, changed=False)

            AuditLog.log_approval("approved", approval.id, approval.tenant_id, approval.tool_name, actor=actor)
            self._execute(db, approval, config)
            db.refresh(approval)
            return ApprovalOutcome(approval=approval, changed=True)
        finally:
            db.close()

    def reject(
        self,
        approval_id: int,
        actor: str,
        reason: Optional[str] = None,
        tenant_id: Optional[int] = None,
    ) -> Optional[ApprovalOutcome]:
        db = self._session_factory()
        try:
            approval = get_approval(db, approval_id, tenant_id)
            if approval is None:
                return None
            config = self.config_store.get(approval.tenant_id)

            won = _transition(
                db, approval_id, "rejected", decided_at=utcnow(), decided_by=actor, rejection_reason=reason
            )
            db.refresh(approval)
            if not won:
                return ApprovalOutcome(approval=approval, changed=False)

            language = config.language if config else None
            if reason:
                note = localized("approval_rejected_reason", language, tool=approval.tool_name, reason=reason)
            else:
                note = localized("approval_rejected", language, tool=approval.tool_name)
            session = db.get(AgentSession, approval.session_id)
            session_manager.append_message(db, session, "system", note)
            AuditLog.log_approval(
                "rejected", approval.id, approval.tenant_id, approval.tool_name, actor=actor, details={"reason": reason}
            )
            return ApprovalOutcome(approval=approval, changed=True)
        finally:
            db.close()

    def expire_stale(self, now: Optional[datetime] = None) -> int:
        """
        Expire every request pending longer than the timeout. Safe to run
        concurrently and repeatedly: each request expires exactly once.
        """
        now = now or utcnow()
        cutoff = now - self.timeout
        db = self._session_factory()
        expired = 0
        try:
            stale = (
                db.query(ApprovalRequest.id)
                .filter(ApprovalRequest.status == "pending", ApprovalRequest.created_at < cutoff)
                .order_by(ApprovalRequest.id)
                .all()
            )
            for (approval_id,) in stale:
                if not _transition(db, approval_id, "expired", decided_at=now, decided_by="system"):
                    continue
                approval = db.get(ApprovalRequest, approval_id)
                db.refresh(approval)
                session = db.get(AgentSession, approval.session_id)
                session_manager.append_message(
                    db, session, "system", localized("approval_expired", self._language(approval.tenant_id), tool=approval.tool_name)
                )
                AuditLog.log_approval("expired", approval.id, approval.tenant_id, approval.tool_name, actor="system")
                expired += 1
        finally:
            db.close()

        if expired:
            logger.info(f"[Approvals] Expired {expired} stale approval(s)")
        return expired

    def _language(self, tenant_id: int) -> Optional[str]:
        # The sweep still expires requests when the config store is down;
        # the note then falls back to English.
        try:
            config = self.config_store.get(tenant_id)
        except ConfigStoreUnavailable:
            return None
        return config.language if config else None

    def _execute(self, db: Session, approval: ApprovalRequest, config) -> None:
        session = db.get(AgentSession, approval.session_id)
        language = config.language if config else None
        tool_name = approval.tool_name
        cost = get_tool_credit_cost(tool_name)

        admission = preflight_check(db, approval.tenant_id, cost)
        if not admission.allowed:
            self._record_execution(db, approval, "skipped", f"insufficient credits (shortfall {admission.shortfall})")
            session_manager.append_message(db, session, "system", localized("approval_skipped", language, tool=tool_name))
            notify_tenant(
                db,
                approval.tenant_id,
                CREDITS_EXHAUSTED,
                f"Approved action '{tool_name}' was skipped: not enough credits.",
                payload={"approval_id": approval.id, "shortfall": str(admission.shortfall)},
            )
            return

        ctx = ToolContext(
            db=db, tenant_id=approval.tenant_id, session_id=approval.session_id, channel_router=self.channel_router
        )
        result = run_tool(self.registry, ctx, ToolCall(name=tool_name, arguments=approval.arguments or {}))

        if result.success:
            report = settle(
                db,
                approval.tenant_id,
                [SettlementItem(cost, f"tool_{tool_name}", reference=f"approval:{approval.id}", session_id=session.id)],
            )
            session_manager.record_usage(db, session, 0, report.total_settled)
            self._record_execution(db, approval, "succeeded", result.summary)
            session_manager.append_message(
                db, session, "system", localized("approval_executed", language, tool=tool_name, result=result.summary)
            )
        else:
            self._record_execution(db, approval, "failed", result.summary)
            session_manager.append_message(db, session, "system", localized("approval_failed", language, tool=tool_name))

        AuditLog.log_approval(
            "executed",
            approval.id,
            approval.tenant_id,
            tool_name,
            details={"success": result.success, "summary": result.summary},
        )
        if config is not None:
            track_tool_outcome(db, session, config, tool_name, result.success, self.failure_threshold)

    def _record_execution(self, db: Session, approval: ApprovalRequest, status: str, result: str) -> None:
        db.execute(
            update(ApprovalRequest)
            .where(ApprovalRequest.id == approval.id)
            .values(execution_status=status, execution_result=result, executed_at=utcnow())
        )
        db.commit()
        logger.info(f"[Approvals] Approval {approval.id} execution {status}: {result}")
