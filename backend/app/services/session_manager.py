"""
Session Manager: conversation sessions keyed by (tenant, channel, contact).

WHY THE UNIQUE CONSTRAINT MATTERS:
- Two inbound messages for a brand-new contact can arrive at the same time
- Both resolvers see "no session" and both try to insert
- The database rejects the second insert; the loser re-reads the winner's row
- Result: exactly one session per key, without any process-wide lock

Counters are updated with SQL expressions (column + n) so an approval
resolving in parallel with a customer turn can never lose an increment.
"""
import logging
import re
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import case, func, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.audit import AuditLog
from app.core.timeutil import utcnow, utctoday
from app.models.contact import Contact
from app.models.session import AgentSession, SessionMessage
from app.services.config_store import AgentConfigSnapshot

logger = logging.getLogger(__name__)

SESSION_STATUSES = ("active", "closed", "handed_off")
PHONE_CHANNELS = {"sms", "whatsapp", "telegram", "voice", "phone"}
EMAIL_CHANNELS = {"email"}


@dataclass
class RateLimitDecision:
    allowed: bool
    reason: Optional[str] = None


def _find_session(db: Session, tenant_id: int, channel: str, external_contact_id: str) -> Optional[AgentSession]:
    return (
        db.query(AgentSession)
        .filter(
            AgentSession.tenant_id == tenant_id,
            AgentSession.channel == channel,
            AgentSession.external_contact_id == external_contact_id,
        )
        .first()
    )


def resolve_session(db: Session, tenant_id: int, channel: str, external_contact_id: str) -> AgentSession:
    """
    Idempotent find-or-create.

    A closed session is reopened rather than duplicated: the key maps to one
    row for the life of the tenant.
    """
    session = _find_session(db, tenant_id, channel, external_contact_id)
    if session is None:
        session = AgentSession(
            tenant_id=tenant_id,
            channel=channel,
            external_contact_id=external_contact_id,
            status="active",
            tool_failures={},
            disabled_tools=[],
        )
        db.add(session)
        try:
            db.commit()
            logger.info(f"[Sessions] Created session {session.id} for ({tenant_id}, {channel}, {external_contact_id})")
        except IntegrityError:
            db.rollback()
            session = _find_session(db, tenant_id, channel, external_contact_id)
            if session is None:
                raise
            logger.info(f"[Sessions] Concurrent create lost the race; using session {session.id}")

    if session.status == "closed":
        reopened = db.execute(
            update(AgentSession)
            .where(AgentSession.id == session.id, AgentSession.status == "closed")
            .values(status="active")
        ).rowcount
        db.commit()
        db.refresh(session)
        if reopened:
            AuditLog.log_session_event("reopened", tenant_id, session.id)

    if session.contact_id is None:
        match_contact(db, session)
    return session


def _normalize_phone(raw: str) -> str:
    digits = re.sub(r"\D", "", raw or "")
    return f"+{digits}" if digits else ""


def match_contact(db: Session, session: AgentSession) -> Optional[Contact]:
    """
    Attach a CRM contact by phone or email. Best effort: never raises.
    """
    try:
        contact = None
        if session.channel in PHONE_CHANNELS:
            candidates = {session.external_contact_id, _normalize_phone(session.external_contact_id)}
            contact = (
                db.query(Contact)
                .filter(Contact.tenant_id == session.tenant_id, Contact.phone.in_([c for c in candidates if c]))
                .order_by(Contact.id)
                .first()
            )
        elif session.channel in EMAIL_CHANNELS:
            contact = (
                db.query(Contact)
                .filter(
                    Contact.tenant_id == session.tenant_id,
                    func.lower(Contact.email) == session.external_contact_id.strip().lower(),
                )
                .order_by(Contact.id)
                .first()
            )
        if contact:
            session.contact_id = contact.id
            db.commit()
            logger.info(f"[Sessions] Session {session.id} matched to contact {contact.id}")
        return contact
    except SQLAlchemyError as e:
        db.rollback()
        logger.warning(f"[Sessions] Contact match failed for session {session.id}: {e}")
        return None


def _day_increment(column, amount, today):
    return case((AgentSession.usage_day == today, column + amount), else_=amount)


def append_message(
    db: Session,
    session: AgentSession,
    role: str,
    content: str,
    tool_calls: Optional[list] = None,
    counts_as_turn: bool = False,
    created_at: Optional[datetime] = None,
) -> SessionMessage:
    """
    Append to the session's history. Message ids give the arrival order.

    counts_as_turn marks inbound customer messages, which drive the
    message counters used for rate limiting. created_at is the channel's
    timestamp when it has one; counters always use the current UTC day.
    """
    now = utcnow()
    today = now.date()
    message = SessionMessage(
        session_id=session.id,
        role=role,
        content=content or "",
        tool_calls=tool_calls,
        created_at=created_at or now,
    )
    db.add(message)

    values = {"last_message_at": now}
    if counts_as_turn:
        values.update(
            message_count=AgentSession.message_count + 1,
            day_message_count=_day_increment(AgentSession.day_message_count, 1, today),
            day_cost=case((AgentSession.usage_day == today, AgentSession.day_cost), else_=0),
            usage_day=today,
        )
    db.execute(update(AgentSession).where(AgentSession.id == session.id).values(**values))
    db.commit()
    return message


def record_usage(db: Session, session: AgentSession, tokens: int, cost: Decimal) -> None:
    """Add a turn's token count and settled credit cost to the session counters."""
    today = utctoday()
    db.execute(
        update(AgentSession)
        .where(AgentSession.id == session.id)
        .values(
            tokens_used=AgentSession.tokens_used + int(tokens or 0),
            cost_incurred=AgentSession.cost_incurred + cost,
            day_cost=_day_increment(AgentSession.day_cost, cost, today),
            day_message_count=case(
                (AgentSession.usage_day == today, AgentSession.day_message_count), else_=0
            ),
            usage_day=today,
        )
    )
    db.commit()


def get_history(db: Session, session_id: int, limit: Optional[int] = None) -> List[SessionMessage]:
    """Messages in arrival order; with limit, only the most recent ones."""
    query = db.query(SessionMessage).filter(SessionMessage.session_id == session_id)
    if limit is None:
        return query.order_by(SessionMessage.id).all()
    recent = query.order_by(SessionMessage.id.desc()).limit(limit).all()
    return list(reversed(recent))


def check_rate_limit(db: Session, session: AgentSession, config: AgentConfigSnapshot) -> RateLimitDecision:
    """
    Advisory daily caps, summed over all of the tenant's sessions for today.
    """
    today = utctoday()
    messages_today, cost_today = (
        db.query(
            func.coalesce(func.sum(AgentSession.day_message_count), 0),
            func.coalesce(func.sum(AgentSession.day_cost), 0),
        )
        .filter(AgentSession.tenant_id == session.tenant_id, AgentSession.usage_day == today)
        .one()
    )
    if int(messages_today) >= config.max_messages_per_day:
        return RateLimitDecision(False, f"daily message cap reached ({messages_today}/{config.max_messages_per_day})")
    if Decimal(str(cost_today)) >= config.max_cost_per_day:
        return RateLimitDecision(False, f"daily cost cap reached ({cost_today}/{config.max_cost_per_day})")
    return RateLimitDecision(True)


def set_status(db: Session, session: AgentSession, status: str, actor: Optional[str] = None) -> AgentSession:
    if status not in SESSION_STATUSES:
        raise ValueError(f"Unknown session status: {status}")
    previous = session.status
    session.status = status
    db.commit()
    event = {"handed_off": "handed_off", "closed": "closed", "active": "resumed"}[status]
    AuditLog.log_session_event(event, session.tenant_id, session.id, actor=actor, details=f"from {previous}")
    logger.info(f"[Sessions] Session {session.id}: {previous} -> {status} (actor={actor or 'system'})")
    return session


def record_tool_outcome(db: Session, session: AgentSession, tool_name: str, success: bool, threshold: int) -> bool:
    """
    Track consecutive failures per tool. Returns True when this failure
    disables the tool for the rest of the session.
    """
    db.refresh(session)
    failures = dict(session.tool_failures or {})
    disabled = list(session.disabled_tools or [])
    if success:
        if failures.pop(tool_name, None) is None:
            return False
        session.tool_failures = failures
        db.commit()
        return False

    failures[tool_name] = failures.get(tool_name, 0) + 1
    newly_disabled = failures[tool_name] >= threshold and tool_name not in disabled
    if newly_disabled:
        disabled.append(tool_name)
    session.tool_failures = failures
    session.disabled_tools = disabled
    db.commit()
    return newly_disabled
