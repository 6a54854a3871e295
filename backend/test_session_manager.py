"""Session resolution, history, counters and rate caps."""
import threading
from decimal import Decimal

from app.models.contact import Contact
from app.models.session import AgentSession
from app.services import session_manager
from app.services.config_store import ConfigStore


def test_concurrent_resolvers_create_one_session(session_factory, make_tenant):
    tenant = make_tenant()
    ids = []
    lock = threading.Lock()
    barrier = threading.Barrier(6)

    def resolve():
        db = session_factory()
        try:
            barrier.wait()
            session = session_manager.resolve_session(db, tenant.id, "web", "visitor-1")
            with lock:
                ids.append(session.id)
        finally:
            db.close()

    threads = [threading.Thread(target=resolve) for _ in range(6)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    db = session_factory()
    try:
        count = db.query(AgentSession).filter(AgentSession.tenant_id == tenant.id).count()
    finally:
        db.close()
    assert count == 1
    assert len(set(ids)) == 1 and len(ids) == 6


def test_same_contact_on_other_channel_is_a_new_session(db, make_tenant):
    tenant = make_tenant()
    web = session_manager.resolve_session(db, tenant.id, "web", "alice")
    email = session_manager.resolve_session(db, tenant.id, "email", "alice")
    assert web.id != email.id
    assert session_manager.resolve_session(db, tenant.id, "web", "alice").id == web.id


def test_closed_session_reopens_on_resolve(db, make_tenant):
    tenant = make_tenant()
    session = session_manager.resolve_session(db, tenant.id, "web", "bob")
    session_manager.set_status(db, session, "closed", actor="ops")

    again = session_manager.resolve_session(db, tenant.id, "web", "bob")

    assert again.id == session.id
    assert again.status == "active"


def test_handed_off_session_stays_handed_off(db, make_tenant):
    tenant = make_tenant()
    session = session_manager.resolve_session(db, tenant.id, "web", "carol")
    session_manager.set_status(db, session, "handed_off", actor="ops")
    assert session_manager.resolve_session(db, tenant.id, "web", "carol").status == "handed_off"


def test_contact_matched_by_phone_and_email(db, make_tenant):
    tenant = make_tenant()
    db.add_all(
        [
            Contact(tenant_id=tenant.id, name="Dana", phone="+15550001111"),
            Contact(tenant_id=tenant.id, name="Eli", email="eli@example.com"),
        ]
    )
    db.commit()

    sms = session_manager.resolve_session(db, tenant.id, "sms", "1 (555) 000-1111")
    email = session_manager.resolve_session(db, tenant.id, "email", "ELI@example.com ")
    web = session_manager.resolve_session(db, tenant.id, "web", "eli@example.com")

    assert sms.contact.name == "Dana"
    assert email.contact.name == "Eli"
    assert web.contact_id is None


def test_history_window_keeps_most_recent_in_order(db, make_tenant):
    tenant = make_tenant()
    session = session_manager.resolve_session(db, tenant.id, "web", "frank")
    for i in range(5):
        session_manager.append_message(db, session, "user", f"m{i}", counts_as_turn=True)

    assert [m.content for m in session_manager.get_history(db, session.id)] == ["m0", "m1", "m2", "m3", "m4"]
    assert [m.content for m in session_manager.get_history(db, session.id, limit=2)] == ["m3", "m4"]
    db.refresh(session)
    assert session.message_count == 5
    assert session.day_message_count == 5


def test_usage_counters_accumulate(db, make_tenant):
    tenant = make_tenant()
    session = session_manager.resolve_session(db, tenant.id, "web", "gina")
    session_manager.record_usage(db, session, 120, Decimal("1.50"))
    session_manager.record_usage(db, session, 30, Decimal("0.50"))
    db.refresh(session)
    assert session.tokens_used == 150
    assert session.cost_incurred == Decimal("2.00")
    assert session.day_cost == Decimal("2.00")


def test_daily_message_cap_is_per_tenant(session_factory, db, make_tenant):
    tenant = make_tenant(max_messages_per_day=2)
    config = ConfigStore(session_factory).get(tenant.id)
    first = session_manager.resolve_session(db, tenant.id, "web", "h1")
    second = session_manager.resolve_session(db, tenant.id, "web", "h2")

    session_manager.append_message(db, first, "user", "hi", counts_as_turn=True)
    assert session_manager.check_rate_limit(db, second, config).allowed
    session_manager.append_message(db, second, "user", "hello", counts_as_turn=True)

    decision = session_manager.check_rate_limit(db, second, config)
    assert not decision.allowed
    assert "message cap" in decision.reason


def test_daily_cost_cap(session_factory, db, make_tenant):
    tenant = make_tenant(max_cost_per_day=3)
    config = ConfigStore(session_factory).get(tenant.id)
    session = session_manager.resolve_session(db, tenant.id, "web", "ian")
    session_manager.record_usage(db, session, 10, Decimal("3"))
    assert not session_manager.check_rate_limit(db, session, config).allowed


def test_tool_disabled_after_consecutive_failures(db, make_tenant):
    tenant = make_tenant()
    session = session_manager.resolve_session(db, tenant.id, "web", "jo")

    assert session_manager.record_tool_outcome(db, session, "send_email", False, 2) is False
    assert session_manager.record_tool_outcome(db, session, "send_email", True, 2) is False
    assert session_manager.record_tool_outcome(db, session, "send_email", False, 2) is False
    assert session_manager.record_tool_outcome(db, session, "send_email", False, 2) is True
    assert session_manager.record_tool_outcome(db, session, "send_email", False, 2) is False
    db.refresh(session)
    assert session.disabled_tools == ["send_email"]
