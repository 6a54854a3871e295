"""
Agent message pipeline: one inbound customer message -> one governed turn.

================================================================================
TURN FLOW
================================================================================

  config lookup        fatal if unreachable: abort before touching the session
  session resolve      find-or-create on (tenant, channel, contact)
  append user message  handed_off sessions stop here, a human is answering
  rate limit           advisory daily caps
  daily grant          idempotent, failure does not stop the turn
  admission            static per-model estimate vs. ledger balance
  assemble + invoke    one retry on provider failure, no cost on failure
  govern tool calls    execute | queue for approval | reject
  settle               LLM cost + executed tool costs, one debit per item
  reply                appended to history, then handed to the channel router

Every stage returns a value; the turn decides whether to continue. Nothing
below process_inbound_message raises for a customer-visible failure.
================================================================================
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Callable, List, Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ai.prompts import assemble
from app.agent.approvals import create_approval
from app.agent.escalation import track_tool_outcome
from app.agent.governor import Decision, govern, offered_tools, run_tool
from app.agent.invoker import ModelInvoker
from app.agent.tools import ToolContext, ToolRegistry
from app.channels.router import ChannelRouter
from app.core.audit import AuditLog
from app.core.exceptions import ConfigStoreUnavailable, FailureKind
from app.core.messages import localized
from app.core.timeutil import to_naive_utc
from app.models.session import AgentSession
from app.services import ledger_service, session_manager
from app.services.admission import preflight_check
from app.services.config_store import AgentConfigSnapshot, ConfigStore
from app.services.credit_costs import get_agent_message_cost
from app.services.notification_service import (
    CREDITS_EXHAUSTED,
    PROVIDER_FAILED,
    RATE_LIMITED,
    notify_tenant,
)
from app.services.settlement import SettlementItem, settle

logger = logging.getLogger(__name__)

KnowledgeRetriever = Callable[[AgentConfigSnapshot, str], Sequence[str]]


@dataclass
class TurnOutcome:
    """What one turn did. failure is None for a normal reply."""
    session_id: Optional[int] = None
    reply: Optional[str] = None
    delivered: bool = False
    failure: Optional[FailureKind] = None
    executed: List[str] = field(default_factory=list)
    queued: List[int] = field(default_factory=list)
    rejected: List[str] = field(default_factory=list)
    settled: Decimal = Decimal("0")
    skipped_items: int = 0


class MessagePipeline:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        config_store: ConfigStore,
        invoker: ModelInvoker,
        registry: ToolRegistry,
        channel_router: ChannelRouter,
        history_window: int = 20,
        failure_threshold: int = 3,
        knowledge_retriever: Optional[KnowledgeRetriever] = None,
    ):
        self._session_factory = session_factory
        self.config_store = config_store
        self.invoker = invoker
        self.registry = registry
        self.channel_router = channel_router
        self.history_window = history_window
        self.failure_threshold = failure_threshold
        self.knowledge_retriever = knowledge_retriever

    def process_inbound_message(
        self,
        tenant_id: int,
        channel: str,
        external_contact_id: str,
        text: str,
        timestamp: Optional[datetime] = None,
    ) -> TurnOutcome:
        """Inbound boundary: errors are logged here and never thrown back to the channel."""
        try:
            return self._process(tenant_id, channel, external_contact_id, text, timestamp)
        except ConfigStoreUnavailable as e:
            logger.error(f"[Pipeline] Turn aborted for tenant {tenant_id}: config store unavailable ({e})")
            return TurnOutcome(failure=FailureKind.CONFIG_UNAVAILABLE)
        except Exception as e:
            logger.exception(f"[Pipeline] Turn failed for ({tenant_id}, {channel}, {external_contact_id}): {e}")
            return TurnOutcome(failure=FailureKind.INTERNAL_ERROR)

    def _process(self, tenant_id, channel, external_contact_id, text, timestamp) -> TurnOutcome:
        config = self.config_store.get(tenant_id)
        if config is None:
            logger.error(f"[Pipeline] Tenant {tenant_id} has no agent configured; message dropped")
            return TurnOutcome(failure=FailureKind.CONFIG_UNAVAILABLE)

        db = self._session_factory()
        try:
            return self._run_turn(db, config, channel, external_contact_id, text, timestamp)
        finally:
            db.close()

    def _run_turn(
        self,
        db: Session,
        config: AgentConfigSnapshot,
        channel: str,
        external_contact_id: str,
        text: str,
        timestamp: Optional[datetime],
    ) -> TurnOutcome:
        tenant_id = config.tenant_id
        session = session_manager.resolve_session(db, tenant_id, channel, external_contact_id)
        outcome = TurnOutcome(session_id=session.id)

        rate = session_manager.check_rate_limit(db, session, config)
        user_message = session_manager.append_message(
            db, session, "user", text, counts_as_turn=True, created_at=to_naive_utc(timestamp)
        )

        if session.status == "handed_off":
            logger.info(f"[Pipeline] Session {session.id} is handed off; agent stays silent")
            return outcome

        if not rate.allowed:
            logger.info(f"[Pipeline] Rate limit for tenant {tenant_id}: {rate.reason}")
            notify_tenant(db, tenant_id, RATE_LIMITED, f"Your agent paused replies: {rate.reason}.")
            outcome.failure = FailureKind.RATE_LIMITED
            return self._reply(db, session, config, outcome, localized("unavailable", config.language))

        try:
            ledger_service.grant_daily_credits(db, tenant_id)
        except SQLAlchemyError as e:
            db.rollback()
            logger.warning(f"[Pipeline] Daily grant failed for tenant {tenant_id}, continuing: {e}")

        estimate = get_agent_message_cost(config.model_id)
        admission = preflight_check(db, tenant_id, estimate)
        if not admission.allowed:
            notify_tenant(
                db,
                tenant_id,
                CREDITS_EXHAUSTED,
                "Your agent is out of credits and could not answer a customer. Top up to resume replies.",
                payload={"estimated_cost": str(estimate), "available": str(admission.available)},
            )
            outcome.failure = FailureKind.ADMISSION_DENIED
            return self._reply(db, session, config, outcome, localized("unavailable", config.language))

        knowledge = self.knowledge_retriever(config, text) if self.knowledge_retriever else None
        history = session_manager.get_history(db, session.id, limit=self.history_window)
        payload = assemble(config, history, knowledge, window=self.history_window)

        session_disabled = list(session.disabled_tools or [])
        tool_names = offered_tools(config, self.registry, session_disabled)
        invocation = self.invoker.invoke(
            config.provider_id,
            payload,
            self.registry.declarations(tool_names),
            self.registry.argument_models(),
        )
        if not invocation.ok:
            notify_tenant(
                db,
                tenant_id,
                PROVIDER_FAILED,
                "The AI provider failed to answer a customer message. No credits were used.",
                payload={"session_id": session.id, "error": invocation.error},
            )
            outcome.failure = FailureKind.PROVIDER_UNAVAILABLE
            return self._reply(db, session, config, outcome, localized("failure", config.language))

        if invocation.anomalies:
            outcome.failure = FailureKind.MALFORMED_TOOL_CALL
            logger.warning(f"[Pipeline] Session {session.id}: dropped tool calls {invocation.anomalies}")

        turn_ref = f"turn:{user_message.id}"
        items = [SettlementItem(invocation.cost_credits, "agent_message", reference=turn_ref, session_id=session.id)]
        if invocation.cost_credits > estimate:
            logger.info(
                f"[Pipeline] Session {session.id}: actual cost {invocation.cost_credits} exceeds estimate {estimate}"
            )

        reply_parts = [invocation.text] if invocation.text else []
        for call in invocation.tool_calls:
            decision = govern(call, config, session_disabled)

            if decision.decision == Decision.REJECT:
                AuditLog.log_policy_rejection(tenant_id, session.id, call.name, decision.reason)
                session_manager.append_message(
                    db, session, "system", localized("action_blocked", config.language, tool=call.name)
                )
                outcome.rejected.append(call.name)
                if outcome.failure is None:
                    outcome.failure = FailureKind.POLICY_VIOLATION

            elif decision.decision == Decision.QUEUE:
                approval = create_approval(db, tenant_id, session.id, call)
                outcome.queued.append(approval.id)
                reply_parts.append(localized("pending_approval", config.language, tool=call.name))

            else:
                summary = self._execute_now(db, session, config, call, items, outcome, turn_ref)
                if summary:
                    reply_parts.append(summary)

        report = settle(db, tenant_id, items)
        session_manager.record_usage(db, session, invocation.tokens, report.total_settled)
        outcome.settled = report.total_settled
        outcome.skipped_items = len(report.skipped)
        if report.skipped and outcome.failure is None:
            outcome.failure = FailureKind.INSUFFICIENT_FUNDS

        reply = "\n\n".join(part for part in reply_parts if part) or localized("fallback", config.language)
        return self._reply(db, session, config, outcome, reply)

    def _execute_now(self, db, session, config, call, items, outcome, turn_ref) -> Optional[str]:
        tool = self.registry.get(call.name)
        cost = tool.credit_cost if tool else Decimal("0")
        if cost > 0:
            committed = sum((item.amount for item in items), Decimal("0"))
            if not preflight_check(db, config.tenant_id, committed + cost).allowed:
                logger.info(f"[Pipeline] Session {session.id}: skipping {call.name}, credits would not cover it")
                session_manager.append_message(
                    db, session, "system", localized("approval_skipped", config.language, tool=call.name)
                )
                return None

        ctx = ToolContext(db=db, tenant_id=config.tenant_id, session_id=session.id, channel_router=self.channel_router)
        result = run_tool(self.registry, ctx, call)
        session_manager.append_message(
            db,
            session,
            "tool",
            result.summary,
            tool_calls=[{"name": call.name, "arguments": call.arguments, "success": result.success}],
        )
        track_tool_outcome(db, session, config, call.name, result.success, self.failure_threshold)

        if not result.success:
            return None
        outcome.executed.append(call.name)
        if cost > 0:
            items.append(SettlementItem(cost, f"tool_{call.name}", reference=turn_ref, session_id=session.id))
        return result.summary

    def _reply(self, db: Session, session: AgentSession, config, outcome: TurnOutcome, text: str) -> TurnOutcome:
        session_manager.append_message(db, session, "assistant", text)
        outcome.reply = text
        delivery = self.channel_router.send(config.tenant_id, session.channel, session.external_contact_id, text)
        outcome.delivered = delivery.ok
        logger.info(
            f"[Pipeline] Session {session.id} turn done: executed={outcome.executed} queued={outcome.queued} "
            f"rejected={outcome.rejected} settled={outcome.settled} delivered={delivery.ok}"
        )
        return outcome
