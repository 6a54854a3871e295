"""Operator HTTP API, exercised through FastAPI's TestClient against a test context."""
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from ai.tool_calls import ToolCall
from app.agent.approvals import create_approval
from app.core.config import settings
from app.main import create_app
from app.services import ledger_service, session_manager
from app.services.notification_service import notify_tenant

HEADERS = {"Authorization": f"Bearer {settings.OPERATOR_API_KEY}", "X-Actor-Id": "ops@acme"}


@pytest.fixture
def client(context):
    app = create_app(context=context, allowed_hosts=["testserver"])
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def pending_booking(db, make_tenant):
    tenant = make_tenant(autonomy="supervised", enabled_tools=["create_booking"], daily="5")
    session = session_manager.resolve_session(db, tenant.id, "web", "visitor")
    call = ToolCall(name="create_booking", arguments={"title": "Cleaning", "starts_at": "2031-05-01T09:00:00"})
    return tenant, create_approval(db, tenant.id, session.id, call)


def test_health_is_open(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"
    assert response.headers["X-Frame-Options"] == "DENY"


def test_operator_key_required(client, make_tenant):
    tenant = make_tenant()
    assert client.get(f"/tenants/{tenant.id}/credits").status_code == 401
    bad = {"Authorization": "Bearer nope", "X-Actor-Id": "ops@acme"}
    assert client.get(f"/tenants/{tenant.id}/credits", headers=bad).status_code == 401
    no_actor = {"Authorization": HEADERS["Authorization"]}
    assert client.get(f"/tenants/{tenant.id}/credits", headers=no_actor).status_code == 400


def test_unknown_tenant_is_generic_404(client):
    response = client.get("/tenants/4242/credits", headers=HEADERS)
    assert response.status_code == 404
    assert response.json()["detail"] == "Resource not found"


def test_provision_tenant_starts_supervised_with_a_ledger(client):
    response = client.post("/tenants", json={"name": "Bright Smiles", "billing_anchor_day": 15}, headers=HEADERS)
    assert response.status_code == 201
    tenant_id = response.json()["id"]

    config = client.get(f"/tenants/{tenant_id}/agent-config", headers=HEADERS).json()
    assert config["autonomy_level"] == "supervised"
    assert config["enabled_tools"] == []

    balance = client.get(f"/tenants/{tenant_id}/credits", headers=HEADERS).json()
    assert balance["daily"] == balance["daily_allocation"]
    assert balance["purchased"] == "0.00"


def test_update_agent_config(client, make_tenant):
    tenant = make_tenant()
    response = client.patch(
        f"/tenants/{tenant.id}/agent-config",
        json={"autonomy_level": "autonomous", "enabled_tools": ["send_email", "search_contacts", "send_email"]},
        headers=HEADERS,
    )
    assert response.status_code == 200
    body = response.json()
    assert body["autonomy_level"] == "autonomous"
    assert body["enabled_tools"] == ["search_contacts", "send_email"]

    bad = client.patch(f"/tenants/{tenant.id}/agent-config", json={"autonomy_level": "yolo"}, headers=HEADERS)
    assert bad.status_code == 422


def test_top_up_and_transactions(client, make_tenant):
    tenant = make_tenant(daily="1", monthly="0", purchased="0")

    response = client.post(f"/tenants/{tenant.id}/credits/top-up", json={"amount": "20"}, headers=HEADERS)
    assert response.status_code == 201
    assert response.json()["action"] == "purchase"
    assert response.json()["reference"] == "operator:ops@acme"

    balance = client.get(f"/tenants/{tenant.id}/credits", headers=HEADERS).json()
    assert balance["purchased"] == "20.00"
    assert balance["total"] == "21.00"

    txs = client.get(f"/tenants/{tenant.id}/credits/transactions", headers=HEADERS).json()
    assert [tx["action"] for tx in txs] == ["purchase"]

    assert client.post(f"/tenants/{tenant.id}/credits/top-up", json={"amount": "-5"}, headers=HEADERS).status_code == 422


def test_approve_endpoint_is_idempotent(client, pending_booking):
    tenant, approval = pending_booking
    url = f"/tenants/{tenant.id}/approvals/{approval.id}/approve"

    first = client.post(url, headers=HEADERS)
    second = client.post(url, headers=HEADERS)

    assert first.status_code == 200
    assert first.json()["changed"] is True
    assert first.json()["approval"]["execution_status"] == "succeeded"
    assert second.status_code == 200
    assert second.json()["changed"] is False

    conflict = client.post(f"/tenants/{tenant.id}/approvals/{approval.id}/reject", headers=HEADERS)
    assert conflict.status_code == 409


def test_reject_endpoint_and_pending_filter(client, pending_booking):
    tenant, approval = pending_booking

    pending = client.get(f"/tenants/{tenant.id}/approvals?status=pending", headers=HEADERS).json()
    assert [a["id"] for a in pending] == [approval.id]

    response = client.post(
        f"/tenants/{tenant.id}/approvals/{approval.id}/reject", json={"reason": "not today"}, headers=HEADERS
    )
    assert response.status_code == 200
    assert response.json()["approval"]["rejection_reason"] == "not today"
    assert client.get(f"/tenants/{tenant.id}/approvals?status=pending", headers=HEADERS).json() == []


def test_approval_from_another_tenant_is_hidden(client, make_tenant, pending_booking):
    _, approval = pending_booking
    other = make_tenant()
    response = client.post(f"/tenants/{other.id}/approvals/{approval.id}/approve", headers=HEADERS)
    assert response.status_code == 404


def test_inbound_webhook_queues_a_turn(client, context, provider, channels, make_tenant):
    tenant = make_tenant()
    provider.reply("Welcome!")

    response = client.post(
        "/inbound",
        json={"tenant_id": tenant.id, "channel": "web", "external_contact_id": "visitor-1", "text": "hi"},
        headers=HEADERS,
    )
    assert response.status_code == 202
    context.dispatcher.shutdown(wait=True)

    assert channels["web"].sent == [(tenant.id, "visitor-1", "Welcome!")]
    sessions = client.get(f"/tenants/{tenant.id}/sessions", headers=HEADERS).json()
    assert len(sessions) == 1
    detail = client.get(f"/tenants/{tenant.id}/sessions/{sessions[0]['id']}", headers=HEADERS).json()
    assert [m["role"] for m in detail["messages"]] == ["user", "assistant"]


def test_handoff_and_resume(client, db, make_tenant):
    tenant = make_tenant()
    session = session_manager.resolve_session(db, tenant.id, "web", "visitor")
    base = f"/tenants/{tenant.id}/sessions/{session.id}"

    assert client.post(f"{base}/handoff", headers=HEADERS).json()["status"] == "handed_off"
    assert client.post(f"{base}/resume", headers=HEADERS).json()["status"] == "active"
    assert client.post(f"{base}/close", headers=HEADERS).json()["status"] == "closed"


def test_usage_summary_groups_by_action(client, db, make_tenant):
    tenant = make_tenant(daily="10")
    session = session_manager.resolve_session(db, tenant.id, "web", "visitor")
    session_manager.append_message(db, session, "user", "hello", counts_as_turn=True)
    ledger_service.debit(db, tenant.id, 2, "agent_message", session_id=session.id)
    ledger_service.debit(db, tenant.id, 1, "agent_message", session_id=session.id)
    ledger_service.debit(db, tenant.id, 1, "tool_send_email", session_id=session.id)

    usage = client.get(f"/tenants/{tenant.id}/usage", headers=HEADERS).json()

    assert usage["total_debited"] == "4.00"
    assert usage["messages"] == 1
    assert {line["action"]: (line["count"], line["credits"]) for line in usage["by_action"]} == {
        "agent_message": (2, "3.00"),
        "tool_send_email": (1, "1.00"),
    }


def test_notifications_listed_newest_first(client, db, make_tenant):
    tenant = make_tenant()
    notify_tenant(db, tenant.id, "credits_exhausted", "out of credits")
    notify_tenant(db, tenant.id, "tool_disabled", "tool paused")

    kinds = [n["kind"] for n in client.get(f"/tenants/{tenant.id}/notifications", headers=HEADERS).json()]
    assert kinds == ["tool_disabled", "credits_exhausted"]


def test_time_window_filters_accept_offsets(client, db, make_tenant):
    tenant = make_tenant(daily="10")
    ledger_service.debit(db, tenant.id, 1, "agent_message")
    plus_five = timezone(timedelta(hours=5))
    an_hour_ago = (datetime.now(timezone.utc) - timedelta(hours=1)).astimezone(plus_five).isoformat()
    in_an_hour = (datetime.now(timezone.utc) + timedelta(hours=1)).astimezone(plus_five).isoformat()

    txs = client.get(
        f"/tenants/{tenant.id}/credits/transactions", params={"start": an_hour_ago}, headers=HEADERS
    ).json()
    assert [tx["action"] for tx in txs] == ["agent_message"], "offset start must be read as UTC"

    later = client.get(
        f"/tenants/{tenant.id}/credits/transactions", params={"start": in_an_hour}, headers=HEADERS
    ).json()
    assert later == []

    usage = client.get(
        f"/tenants/{tenant.id}/usage", params={"start": an_hour_ago, "end": in_an_hour}, headers=HEADERS
    ).json()
    assert usage["total_debited"] == "1.00"
