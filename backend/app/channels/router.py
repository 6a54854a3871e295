"""
Channel Router: delivers outbound text to a (tenant, channel, contact).

Providers are registered per channel name at startup. Delivery failure is
reported as a DeliveryResult, never raised: the pipeline logs it and the
turn still completes (the reply is already in the session history).
"""
import logging
import threading
from dataclasses import dataclass
from typing import Dict, List, Optional, Protocol

logger = logging.getLogger(__name__)


@dataclass
class DeliveryResult:
    ok: bool
    error: Optional[str] = None


class ChannelProvider(Protocol):
    def send(self, tenant_id: int, external_contact_id: str, text: str) -> DeliveryResult:
        ...


class ChannelRouter:
    def __init__(self):
        self._providers: Dict[str, ChannelProvider] = {}
        self._lock = threading.Lock()

    def register(self, channel: str, provider: ChannelProvider) -> None:
        with self._lock:
            self._providers[channel] = provider
        logger.info(f"[Channels] Registered provider for '{channel}'")

    def channels(self) -> List[str]:
        with self._lock:
            return sorted(self._providers)

    def send(self, tenant_id: int, channel: str, external_contact_id: str, text: str) -> DeliveryResult:
        with self._lock:
            provider = self._providers.get(channel)
        if provider is None:
            logger.warning(f"[Channels] No provider for channel '{channel}' (tenant {tenant_id})")
            return DeliveryResult(ok=False, error=f"no provider for channel '{channel}'")

        try:
            result = provider.send(tenant_id, external_contact_id, text)
        except Exception as e:  # provider bugs must not break the turn
            logger.error(f"[Channels] {channel} delivery to {external_contact_id} raised: {e}")
            return DeliveryResult(ok=False, error=str(e))

        if not result.ok:
            logger.warning(f"[Channels] {channel} delivery to {external_contact_id} failed: {result.error}")
        return result


class LoggingChannel:
    """Writes outbound messages to the log. Used for web and email in development."""

    def __init__(self, name: str):
        self.name = name

    def send(self, tenant_id: int, external_contact_id: str, text: str) -> DeliveryResult:
        logger.info(f"[Channels:{self.name}] tenant={tenant_id} to={external_contact_id}: {text[:200]}")
        return DeliveryResult(ok=True)
