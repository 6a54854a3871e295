"""Credit ledger: tiered debits, grants, top-ups, admission and settlement."""
import threading
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest

from app.models.ledger import CreditLedger, CreditTransaction
from app.models.notification import Notification
from app.services import ledger_service
from app.services.admission import preflight_check
from app.services.settlement import SettlementItem, settle


def _ledger(db, tenant_id):
    db.expire_all()
    return db.query(CreditLedger).filter(CreditLedger.tenant_id == tenant_id).one()


def test_debit_draws_daily_then_monthly_in_one_transaction(db, make_tenant):
    tenant = make_tenant(daily="1", monthly="5", purchased="0")

    result = ledger_service.debit(db, tenant.id, 3, "agent_message", reference="turn:1")

    assert result.success
    assert (result.daily_used, result.monthly_used, result.purchased_used) == (Decimal("1"), Decimal("2"), Decimal("0"))
    ledger = _ledger(db, tenant.id)
    assert ledger.daily == Decimal("0")
    assert ledger.monthly == Decimal("3")
    assert ledger.purchased == Decimal("0")

    txs = db.query(CreditTransaction).filter(CreditTransaction.tenant_id == tenant.id).all()
    assert len(txs) == 1, "one debit must produce exactly one transaction"
    assert txs[0].amount == Decimal("-3")
    assert txs[0].balance_after == Decimal("3")


def test_debit_reaches_purchased_last(db, make_tenant):
    tenant = make_tenant(daily="1", monthly="1", purchased="5")

    result = ledger_service.debit(db, tenant.id, 4, "tool_send_email")

    assert (result.daily_used, result.monthly_used, result.purchased_used) == (Decimal("1"), Decimal("1"), Decimal("2"))
    assert _ledger(db, tenant.id).purchased == Decimal("3")


def test_unaffordable_debit_changes_nothing(db, make_tenant):
    tenant = make_tenant(daily="1", monthly="1", purchased="0")

    result = ledger_service.debit(db, tenant.id, 3, "agent_message")

    assert not result.success
    assert result.shortfall == Decimal("1")
    ledger = _ledger(db, tenant.id)
    assert (ledger.daily, ledger.monthly, ledger.purchased) == (Decimal("1"), Decimal("1"), Decimal("0"))
    assert db.query(CreditTransaction).count() == 0


def test_zero_debit_writes_no_transaction(db, make_tenant):
    tenant = make_tenant(daily="1")
    assert ledger_service.debit(db, tenant.id, 0, "tool_search_contacts").success
    assert db.query(CreditTransaction).count() == 0


def test_negative_debit_is_refused(db, make_tenant):
    tenant = make_tenant()
    with pytest.raises(ValueError):
        ledger_service.debit(db, tenant.id, -1, "agent_message")


def test_concurrent_debits_never_overdraw(session_factory, make_tenant):
    tenant = make_tenant(daily="5", monthly="0", purchased="0")
    results = []
    lock = threading.Lock()

    def spend():
        db = session_factory()
        try:
            outcome = ledger_service.debit(db, tenant.id, 1, "agent_message")
            with lock:
                results.append(outcome.success)
        finally:
            db.close()

    threads = [threading.Thread(target=spend) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    db = session_factory()
    try:
        ledger = db.query(CreditLedger).filter(CreditLedger.tenant_id == tenant.id).one()
        debits = db.query(CreditTransaction).filter(CreditTransaction.amount < 0).count()
    finally:
        db.close()
    assert results.count(True) == 5
    assert ledger.daily == Decimal("0")
    assert debits == 5


def test_daily_grant_resets_once_per_day(db, make_tenant):
    tenant = make_tenant(daily="2")
    ledger_service.debit(db, tenant.id, 2, "agent_message")
    tomorrow = date(2031, 1, 1)

    assert ledger_service.grant_daily_credits(db, tenant.id, today=tomorrow) is True
    assert ledger_service.grant_daily_credits(db, tenant.id, today=tomorrow) is False
    assert _ledger(db, tenant.id).daily == Decimal("2")
    grants = db.query(CreditTransaction).filter(CreditTransaction.action == "daily_grant").all()
    assert len(grants) == 1
    assert grants[0].amount == Decimal("2")


def test_daily_grant_does_not_accumulate(db, make_tenant):
    tenant = make_tenant(daily="2")
    ledger_service.grant_daily_credits(db, tenant.id, today=date(2031, 1, 1))
    ledger_service.grant_daily_credits(db, tenant.id, today=date(2031, 1, 2))
    assert _ledger(db, tenant.id).daily == Decimal("2")


def test_monthly_grant_follows_billing_anchor(db, make_tenant):
    tenant = make_tenant(monthly="50")
    ledger_service.debit(db, tenant.id, 10, "agent_message")  # daily 10 covers it
    ledger_service.debit(db, tenant.id, 20, "agent_message")  # monthly 50 -> 30

    # Anchor 31 clamps to Feb 28 in a non-leap year
    assert ledger_service.grant_monthly_credits(db, tenant.id, anchor_day=31, today=date(2031, 2, 28)) is True
    assert ledger_service.grant_monthly_credits(db, tenant.id, anchor_day=31, today=date(2031, 3, 15)) is False
    assert _ledger(db, tenant.id).monthly == Decimal("50")


@pytest.mark.parametrize(
    "today, anchor, expected",
    [
        (date(2031, 3, 15), 10, date(2031, 3, 10)),
        (date(2031, 3, 5), 10, date(2031, 2, 10)),
        (date(2031, 1, 5), 10, date(2030, 12, 10)),
        (date(2031, 2, 28), 31, date(2031, 2, 28)),
        (date(2032, 2, 29), 30, date(2032, 2, 29)),
    ],
)
def test_billing_period_start(today, anchor, expected):
    assert ledger_service.billing_period_start(today, anchor) == expected


def test_top_up_only_grows_purchased(db, make_tenant):
    tenant = make_tenant(daily="1", monthly="2", purchased="0")

    tx = ledger_service.add_purchased_credits(db, tenant.id, "25.50", reference="invoice-17")

    assert tx.amount == Decimal("25.50")
    assert tx.action == "purchase"
    ledger = _ledger(db, tenant.id)
    assert (ledger.daily, ledger.monthly, ledger.purchased) == (Decimal("1"), Decimal("2"), Decimal("25.50"))
    with pytest.raises(ValueError):
        ledger_service.add_purchased_credits(db, tenant.id, 0)


def test_preflight_reports_shortfall(db, make_tenant):
    tenant = make_tenant(daily="2", monthly="0", purchased="0")

    decision = preflight_check(db, tenant.id, 3)

    assert not decision.allowed
    assert decision.shortfall == Decimal("1")
    assert preflight_check(db, tenant.id, 2).allowed


def test_settlement_skips_unaffordable_item_and_keeps_earlier_ones(db, make_tenant):
    tenant = make_tenant(daily="2", monthly="0", purchased="0")
    items = [
        SettlementItem(Decimal("1"), "agent_message", reference="turn:9"),
        SettlementItem(Decimal("5"), "tool_send_email", reference="turn:9"),
        SettlementItem(Decimal("1"), "tool_create_contact", reference="turn:9"),
    ]

    report = settle(db, tenant.id, items)

    assert [i.action for i in report.settled] == ["agent_message", "tool_create_contact"]
    assert [i.action for i in report.skipped] == ["tool_send_email"]
    assert report.total_settled == Decimal("2")
    assert _ledger(db, tenant.id).daily == Decimal("0")
    notes = db.query(Notification).filter(Notification.tenant_id == tenant.id).all()
    assert [n.kind for n in notes] == ["settlement_skipped"]


def test_list_transactions_filters_by_session(db, make_tenant):
    tenant = make_tenant(daily="10")
    ledger_service.debit(db, tenant.id, 1, "agent_message")
    ledger_service.debit(db, tenant.id, 2, "agent_message", reference="other")

    all_txs = ledger_service.list_transactions(db, tenant.id)
    assert [tx.amount for tx in all_txs] == [Decimal("-1"), Decimal("-2")]
    assert ledger_service.list_transactions(db, tenant.id, session_id=999) == []


def test_list_transactions_window_converts_aware_bounds(db, make_tenant):
    tenant = make_tenant(daily="10")
    ledger_service.debit(db, tenant.id, 1, "agent_message")
    pacific = timezone(timedelta(hours=-8))
    now_pacific = datetime.now(timezone.utc).astimezone(pacific)

    inside = ledger_service.list_transactions(
        db, tenant.id, start=now_pacific - timedelta(minutes=30), end=now_pacific + timedelta(minutes=30)
    )
    assert [tx.action for tx in inside] == ["agent_message"]
    assert ledger_service.list_transactions(db, tenant.id, end=now_pacific - timedelta(minutes=30)) == []
