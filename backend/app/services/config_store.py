"""
Configuration Store: read-only view of a tenant's agent configuration.

The pipeline never holds an ORM row for configuration. Each read returns an
AgentConfigSnapshot, a frozen value, so a tenant editing settings mid-turn
cannot change the rules a turn is being governed by.
"""
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Callable, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.exceptions import ConfigStoreUnavailable
from app.models.agent_config import AgentConfig
from app.models.tenant import Tenant

logger = logging.getLogger(__name__)

AUTONOMY_LEVELS = ("draft_only", "supervised", "autonomous")


@dataclass(frozen=True)
class FaqEntry:
    question: str
    answer: str


@dataclass(frozen=True)
class AgentConfigSnapshot:
    tenant_id: int
    display_name: str
    language: str
    personality: str = ""
    brand_voice: str = ""
    system_prompt: str = ""
    faq_entries: Tuple[FaqEntry, ...] = ()
    enabled_tools: frozenset = field(default_factory=frozenset)
    disabled_tools: frozenset = field(default_factory=frozenset)
    autonomy_level: str = "supervised"
    require_approval_for: frozenset = field(default_factory=frozenset)
    escalate_on_tool_failure: bool = False
    max_messages_per_day: int = 100
    max_cost_per_day: Decimal = Decimal("500")
    provider_id: str = "groq"
    model_id: str = "llama-3.3-70b-versatile"
    temperature: float = 0.7
    max_tokens: int = 1024


def snapshot_from_row(row: AgentConfig, tenant_language: Optional[str] = None) -> AgentConfigSnapshot:
    autonomy = row.autonomy_level if row.autonomy_level in AUTONOMY_LEVELS else "supervised"
    if autonomy != row.autonomy_level:
        logger.warning(
            f"[ConfigStore] Tenant {row.tenant_id} has unknown autonomy level "
            f"'{row.autonomy_level}', treating as supervised"
        )
    faqs = tuple(
        FaqEntry(question=str(e.get("question", "")), answer=str(e.get("answer", "")))
        for e in (row.faq_entries or [])
        if isinstance(e, dict)
    )
    return AgentConfigSnapshot(
        tenant_id=row.tenant_id,
        display_name=row.display_name,
        language=row.language or tenant_language or "en",
        personality=row.personality or "",
        brand_voice=row.brand_voice or "",
        system_prompt=row.system_prompt or "",
        faq_entries=faqs,
        enabled_tools=frozenset(row.enabled_tools or []),
        disabled_tools=frozenset(row.disabled_tools or []),
        autonomy_level=autonomy,
        require_approval_for=frozenset(row.require_approval_for or []),
        escalate_on_tool_failure=bool(row.escalate_on_tool_failure),
        max_messages_per_day=int(row.max_messages_per_day),
        max_cost_per_day=Decimal(str(row.max_cost_per_day)),
        provider_id=row.provider_id,
        model_id=row.model_id,
        temperature=float(row.temperature),
        max_tokens=int(row.max_tokens),
    )


class ConfigStore:
    """Loads AgentConfigSnapshot values keyed by tenant."""

    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    def get(self, tenant_id: int) -> Optional[AgentConfigSnapshot]:
        """
        Returns the tenant's snapshot, or None if the tenant has no agent.

        Raises:
            ConfigStoreUnavailable: the store could not be read at all.
        """
        db = self._session_factory()
        try:
            row = db.query(AgentConfig).filter(AgentConfig.tenant_id == tenant_id).first()
            if not row:
                return None
            tenant = db.query(Tenant).filter(Tenant.id == tenant_id).first()
            return snapshot_from_row(row, tenant.preferred_language if tenant else None)
        except SQLAlchemyError as e:
            logger.error(f"[ConfigStore] Failed to read config for tenant {tenant_id}: {e}")
            raise ConfigStoreUnavailable(str(e)) from e
        finally:
            db.close()
