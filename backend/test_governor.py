"""Tool governance rules and tool-call validation (no database needed)."""
import pytest

from ai.provider import RawToolCall
from ai.tool_calls import validate_tool_calls
from app.agent.governor import Decision, classify, offered_tools
from app.agent.tools import build_default_registry, is_read_only
from app.services.config_store import AgentConfigSnapshot

ALL_TOOLS = frozenset(build_default_registry().names())


def _config(autonomy, enabled=ALL_TOOLS, disabled=(), require=()):
    return AgentConfigSnapshot(
        tenant_id=1,
        display_name="Ava",
        language="en",
        autonomy_level=autonomy,
        enabled_tools=frozenset(enabled),
        disabled_tools=frozenset(disabled),
        require_approval_for=frozenset(require),
    )


@pytest.mark.parametrize("name", ["list_bookings", "get_contact", "search_contacts", "query_org_data"])
def test_read_only_prefixes(name):
    assert is_read_only(name)


@pytest.mark.parametrize("name", ["send_email", "create_booking", "update_contact", "listing_delete", ""])
def test_state_changing_names(name):
    assert not is_read_only(name)


def test_draft_only_never_queues_or_runs_state_changing_tools():
    config = _config("draft_only")
    for name in ALL_TOOLS:
        decision, _ = classify(name, config)
        if is_read_only(name):
            assert decision == Decision.EXECUTE
        else:
            assert decision == Decision.REJECT, f"{name} must be rejected in draft_only"


def test_draft_only_read_only_tool_still_needs_enabling():
    config = _config("draft_only", enabled={"search_contacts"})
    assert classify("search_contacts", config)[0] == Decision.EXECUTE
    assert classify("list_bookings", config)[0] == Decision.REJECT


def test_supervised_queues_every_permitted_call():
    config = _config("supervised")
    for name in ALL_TOOLS:
        assert classify(name, config)[0] == Decision.QUEUE, f"{name} must wait for approval"


def test_supervised_still_rejects_tools_that_are_not_enabled():
    config = _config("supervised", enabled={"send_email"})
    assert classify("create_booking", config)[0] == Decision.REJECT


def test_autonomous_executes_unless_approval_required():
    config = _config("autonomous", require={"send_email"})
    assert classify("search_contacts", config)[0] == Decision.EXECUTE
    assert classify("create_booking", config)[0] == Decision.EXECUTE
    assert classify("send_email", config)[0] == Decision.QUEUE


def test_explicit_disable_wins_over_enable():
    config = _config("autonomous", disabled={"create_booking"})
    decision, reason = classify("create_booking", config)
    assert decision == Decision.REJECT
    assert "not enabled" in reason


def test_session_disabled_tool_is_rejected():
    config = _config("autonomous")
    decision, reason = classify("send_email", config, session_disabled=["send_email"])
    assert decision == Decision.REJECT
    assert "repeated failures" in reason


def test_unknown_tool_is_rejected():
    assert classify("wire_money", _config("autonomous"))[0] == Decision.REJECT


def test_offered_tools_excludes_rejected_ones():
    registry = build_default_registry()
    config = _config("draft_only")
    assert offered_tools(config, registry) == sorted(n for n in ALL_TOOLS if is_read_only(n))
    assert offered_tools(_config("supervised", enabled=set()), registry) == []


def test_validation_drops_malformed_calls():
    models = build_default_registry().argument_models()
    raw = [
        RawToolCall(name="search_contacts", arguments='{"query": "smith"}'),
        RawToolCall(name="search_contacts", arguments="not json"),
        RawToolCall(name="send_email", arguments='{"to": "nobody", "subject": "x", "body": "y"}'),
        RawToolCall(name="create_contact", arguments='{"name": "Zoe", "favourite_colour": "red"}'),
        RawToolCall(name="", arguments="{}"),
        RawToolCall(name="get_contact", arguments="[1, 2]"),
    ]

    valid, anomalies = validate_tool_calls(raw, models)

    assert [(c.name, c.arguments) for c in valid] == [("search_contacts", {"query": "smith", "limit": 5})]
    assert len(anomalies) == 5


def test_validation_accepts_fenced_json_and_keeps_unknown_tools_for_the_governor():
    models = build_default_registry().argument_models()
    raw = [
        RawToolCall(name="create_booking", arguments='```json\n{"title": "Cleaning", "starts_at": "2031-05-01T09:00:00Z"}\n```'),
        RawToolCall(name="wire_money", arguments='{"amount": 100}'),
    ]

    valid, anomalies = validate_tool_calls(raw, models)

    assert anomalies == []
    assert valid[0].arguments["starts_at"].startswith("2031-05-01T09:00:00")
    assert valid[1].name == "wire_money"
