"""Approval state machine: exactly-once execution, rejection, expiry and funding."""
import threading
from datetime import timedelta
from decimal import Decimal

from ai.tool_calls import ToolCall
from app.agent.approvals import create_approval
from app.core.messages import localized
from app.core.timeutil import utcnow
from app.models.approval import ApprovalRequest
from app.models.booking import Booking
from app.models.ledger import CreditTransaction
from app.models.notification import Notification
from app.models.session import SessionMessage
from app.services import session_manager

BOOKING = ToolCall(name="create_booking", arguments={"title": "Cleaning", "starts_at": "2031-05-01T09:00:00"})
EMAIL = ToolCall(name="send_email", arguments={"to": "pat@example.com", "subject": "Reminder", "body": "See you soon"})


def _pending(db, tenant, call, contact="visitor"):
    session = session_manager.resolve_session(db, tenant.id, "web", contact)
    return session, create_approval(db, tenant.id, session.id, call)


def _system_notes(db, session_id):
    db.expire_all()
    rows = (
        db.query(SessionMessage)
        .filter(SessionMessage.session_id == session_id, SessionMessage.role == "system")
        .order_by(SessionMessage.id)
    )
    return [m.content for m in rows]


def test_approve_executes_once_and_settles(db, context, make_tenant):
    tenant = make_tenant(autonomy="supervised", enabled_tools=["create_booking"], daily="5")
    session, approval = _pending(db, tenant, BOOKING)

    first = context.approvals.approve(approval.id, "ops@acme")
    second = context.approvals.approve(approval.id, "ops@acme")

    assert first.changed is True
    assert second.changed is False
    assert first.approval.status == "approved"
    assert first.approval.decided_by == "ops@acme"
    assert first.approval.execution_status == "succeeded"
    assert db.query(Booking).count() == 1

    txs = db.query(CreditTransaction).all()
    assert [(tx.action, tx.amount, tx.reference) for tx in txs] == [
        ("tool_create_booking", Decimal("-1"), f"approval:{approval.id}")
    ]
    assert _system_notes(db, session.id) == [
        localized("approval_executed", "en", tool="create_booking", result=first.approval.execution_result)
    ]


def test_concurrent_approvals_execute_once(db, session_factory, context, make_tenant):
    tenant = make_tenant(autonomy="supervised", enabled_tools=["create_booking"])
    _, approval = _pending(db, tenant, BOOKING)
    outcomes = []
    lock = threading.Lock()
    barrier = threading.Barrier(5)

    def click():
        barrier.wait()
        outcome = context.approvals.approve(approval.id, "ops@acme")
        with lock:
            outcomes.append(outcome.changed)

    threads = [threading.Thread(target=click) for _ in range(5)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert outcomes.count(True) == 1
    check = session_factory()
    try:
        assert check.query(Booking).count() == 1
    finally:
        check.close()


def test_reject_records_reason_and_never_executes(db, context, channels, make_tenant):
    tenant = make_tenant(autonomy="supervised", enabled_tools=["send_email"])
    session, approval = _pending(db, tenant, EMAIL)

    outcome = context.approvals.reject(approval.id, "ops@acme", reason="wrong address")

    assert outcome.changed
    assert outcome.approval.status == "rejected"
    assert outcome.approval.rejection_reason == "wrong address"
    assert channels["email"].sent == []
    assert _system_notes(db, session.id) == [
        localized("approval_rejected_reason", "en", tool="send_email", reason="wrong address")
    ]

    late = context.approvals.approve(approval.id, "ops@acme")
    assert late.changed is False
    assert late.approval.status == "rejected"
    assert channels["email"].sent == []


def test_approved_email_is_sent_through_the_router(context, channels, db, make_tenant):
    tenant = make_tenant(autonomy="supervised", enabled_tools=["send_email"])
    _, approval = _pending(db, tenant, EMAIL)

    outcome = context.approvals.approve(approval.id, "ops@acme")

    assert outcome.approval.execution_status == "succeeded"
    assert channels["email"].sent == [(tenant.id, "pat@example.com", "Subject: Reminder\n\nSee you soon")]


def test_approval_without_credits_is_skipped(db, context, make_tenant):
    tenant = make_tenant(autonomy="supervised", enabled_tools=["create_booking"], daily="0")
    session, approval = _pending(db, tenant, BOOKING)

    outcome = context.approvals.approve(approval.id, "ops@acme")

    assert outcome.changed
    assert outcome.approval.status == "approved"
    assert outcome.approval.execution_status == "skipped"
    assert db.query(Booking).count() == 0
    assert db.query(CreditTransaction).count() == 0
    assert _system_notes(db, session.id) == [localized("approval_skipped", "en", tool="create_booking")]
    kinds = [n.kind for n in db.query(Notification).filter(Notification.tenant_id == tenant.id)]
    assert kinds == ["credits_exhausted"]


def test_failed_execution_is_recorded(db, context, channels, make_tenant):
    tenant = make_tenant(autonomy="supervised", enabled_tools=["send_email"])
    channels["email"].ok = False
    session, approval = _pending(db, tenant, EMAIL)

    outcome = context.approvals.approve(approval.id, "ops@acme")

    assert outcome.approval.execution_status == "failed"
    assert db.query(CreditTransaction).count() == 0
    assert _system_notes(db, session.id) == [localized("approval_failed", "en", tool="send_email")]


def test_expired_request_cannot_be_approved(db, context, make_tenant):
    tenant = make_tenant(autonomy="supervised", enabled_tools=["create_booking"])
    _, approval = _pending(db, tenant, BOOKING)

    assert context.approvals.expire_stale(now=utcnow() + timedelta(hours=25)) == 1
    outcome = context.approvals.approve(approval.id, "ops@acme")

    assert outcome.changed is False
    assert outcome.approval.status == "expired"
    assert db.query(Booking).count() == 0


def test_approval_lookup_is_tenant_scoped(db, context, make_tenant):
    owner = make_tenant(autonomy="supervised", enabled_tools=["create_booking"])
    other = make_tenant()
    _, approval = _pending(db, owner, BOOKING)

    assert context.approvals.approve(approval.id, "ops@acme", tenant_id=other.id) is None
    db.expire_all()
    assert db.get(ApprovalRequest, approval.id).status == "pending"


def test_concurrent_sweeps_expire_each_request_once(db, context, make_tenant):
    tenant = make_tenant(autonomy="supervised", enabled_tools=["create_booking"])
    sessions = [_pending(db, tenant, BOOKING, contact=f"visitor-{i}")[0] for i in range(3)]
    later = utcnow() + timedelta(hours=25)
    totals = []
    lock = threading.Lock()
    barrier = threading.Barrier(4)

    def sweep():
        barrier.wait()
        expired = context.approvals.expire_stale(now=later)
        with lock:
            totals.append(expired)

    threads = [threading.Thread(target=sweep) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert sum(totals) == 3, f"each request expires exactly once, got {totals}"
    for session in sessions:
        assert _system_notes(db, session.id) == [localized("approval_expired", "en", tool="create_booking")]
    assert {a.status for a in db.query(ApprovalRequest)} == {"expired"}
