"""Shared fixtures: a throwaway SQLite database per test, a scripted model and a recording channel."""
import threading
from decimal import Decimal
from types import SimpleNamespace

import pytest

from ai.provider import ProviderError, ProviderResponse, RawToolCall
from app.agent.context import build_context
from app.channels.router import ChannelRouter, DeliveryResult
from app.core.timeutil import utctoday
from app.db.init_db import init_db
from app.db.session import build_engine, build_session_factory
from app.models.agent_config import AgentConfig
from app.models.ledger import CreditLedger
from app.models.tenant import Tenant
from app.services.ledger_service import billing_period_start

# Cheap model: estimate 1 credit per message
TEST_MODEL = "llama-3.1-8b-instant"


class ScriptedProvider:
    """Returns queued responses in order; a queued ProviderError is raised instead."""

    provider_id = "scripted"

    def __init__(self):
        self.script = []
        self.calls = []
        self._lock = threading.Lock()

    def reply(self, text="", tool_calls=(), cost_usd="0.01", tokens=(10, 5)):
        self.script.append(
            ProviderResponse(
                text=text,
                tool_calls=[RawToolCall(name=name, arguments=args) for name, args in tool_calls],
                prompt_tokens=tokens[0],
                completion_tokens=tokens[1],
                cost_usd=Decimal(cost_usd),
            )
        )
        return self

    def fail(self, message="upstream timeout", retryable=True):
        self.script.append(ProviderError(message, retryable=retryable))
        return self

    def complete(self, payload, tools):
        with self._lock:
            self.calls.append((payload, tools))
            item = self.script.pop(0) if self.script else ProviderResponse(text="ok", cost_usd=Decimal("0.01"))
        if isinstance(item, Exception):
            raise item
        return item


class RecordingChannel:
    def __init__(self, ok=True):
        self.ok = ok
        self.sent = []

    def send(self, tenant_id, external_contact_id, text):
        self.sent.append((tenant_id, external_contact_id, text))
        return DeliveryResult(ok=True) if self.ok else DeliveryResult(ok=False, error="channel down")


@pytest.fixture
def engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'test.db'}")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def provider():
    return ScriptedProvider()


@pytest.fixture
def channels():
    return {"web": RecordingChannel(), "email": RecordingChannel()}


@pytest.fixture
def test_settings():
    return SimpleNamespace(
        CREDITS_PER_USD=100,
        LLM_RETRY_BACKOFF_SECONDS=0,
        HISTORY_WINDOW=20,
        TOOL_FAILURE_THRESHOLD=3,
        APPROVAL_TIMEOUT_HOURS=24,
        PIPELINE_WORKERS=4,
    )


@pytest.fixture
def context(session_factory, provider, channels, test_settings):
    router = ChannelRouter()
    for name, channel in channels.items():
        router.register(name, channel)
    ctx = build_context(
        session_factory,
        {"scripted": provider},
        test_settings,
        channel_router=router,
        sleep=lambda seconds: None,
    )
    yield ctx
    ctx.shutdown()


@pytest.fixture
def make_tenant(db):
    """
    Create a tenant with an agent and a funded ledger. Today's grants are
    marked as already applied so balances stay exactly as given.
    """

    def _make(
        autonomy="autonomous",
        enabled_tools=(),
        require_approval_for=(),
        disabled_tools=(),
        daily="10",
        monthly="0",
        purchased="0",
        language="en",
        model_id=TEST_MODEL,
        **config_overrides,
    ):
        tenant = Tenant(name="Acme Dental", preferred_language=language, billing_anchor_day=1)
        db.add(tenant)
        db.flush()
        db.add(
            AgentConfig(
                tenant_id=tenant.id,
                display_name="Ava",
                language=language,
                autonomy_level=autonomy,
                enabled_tools=list(enabled_tools),
                disabled_tools=list(disabled_tools),
                require_approval_for=list(require_approval_for),
                faq_entries=[],
                provider_id="scripted",
                model_id=model_id,
                **config_overrides,
            )
        )
        today = utctoday()
        db.add(
            CreditLedger(
                tenant_id=tenant.id,
                daily=Decimal(daily),
                monthly=Decimal(monthly),
                purchased=Decimal(purchased),
                daily_allocation=Decimal(daily),
                monthly_allocation=Decimal(monthly),
                daily_last_reset=today,
                monthly_period_start=billing_period_start(today, 1),
                version=0,
            )
        )
        db.commit()
        return tenant

    return _make
