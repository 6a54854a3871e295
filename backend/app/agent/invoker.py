"""
Model Invoker: one LLM call with a single retry.

Retryable failures (timeout, 5xx, connection, rate limit) are retried once
after a backoff. A second failure, or any non-retryable one, comes back as
an InvocationResult with failure=PROVIDER_UNAVAILABLE; nothing is raised
to the pipeline. Tool calls are validated here so the pipeline only ever
sees well-formed calls plus a list of what was dropped.
"""
import logging
import time
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Callable, Dict, List, Optional

from ai.prompts import PromptPayload
from ai.provider import LLMProvider, ProviderError, ProviderResponse
from ai.tool_calls import ToolCall, validate_tool_calls
from app.core.exceptions import FailureKind
from app.services.ledger_service import to_credits

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 2


@dataclass
class InvocationResult:
    ok: bool
    text: str = ""
    tool_calls: List[ToolCall] = field(default_factory=list)
    anomalies: List[str] = field(default_factory=list)
    tokens: int = 0
    cost_credits: Decimal = Decimal("0")
    attempts: int = 0
    failure: Optional[FailureKind] = None
    error: Optional[str] = None


class ModelInvoker:
    def __init__(
        self,
        providers: Dict[str, LLMProvider],
        credits_per_usd: float,
        retry_backoff_seconds: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.providers = providers
        self.credits_per_usd = Decimal(str(credits_per_usd))
        self.retry_backoff_seconds = retry_backoff_seconds
        self._sleep = sleep

    def invoke(
        self,
        provider_id: str,
        payload: PromptPayload,
        tools: List[dict],
        argument_models: Dict[str, type],
    ) -> InvocationResult:
        provider = self.providers.get(provider_id)
        if provider is None:
            logger.error(f"[Invoker] No provider registered as '{provider_id}'")
            return InvocationResult(
                ok=False, failure=FailureKind.PROVIDER_UNAVAILABLE, error=f"unknown provider '{provider_id}'"
            )

        last_error = None
        for attempt in range(1, MAX_ATTEMPTS + 1):
            try:
                response = provider.complete(payload, tools)
            except ProviderError as e:
                last_error = str(e)
                if e.retryable and attempt < MAX_ATTEMPTS:
                    logger.warning(
                        f"[Invoker] {provider_id} failed (attempt {attempt}/{MAX_ATTEMPTS}): {e}. "
                        f"Retrying in {self.retry_backoff_seconds}s..."
                    )
                    self._sleep(self.retry_backoff_seconds)
                    continue
                logger.error(f"[Invoker] {provider_id} failed after {attempt} attempt(s): {e}")
                return InvocationResult(
                    ok=False, attempts=attempt, failure=FailureKind.PROVIDER_UNAVAILABLE, error=last_error
                )
            return self._to_result(response, argument_models, attempt)

        return InvocationResult(
            ok=False, attempts=MAX_ATTEMPTS, failure=FailureKind.PROVIDER_UNAVAILABLE, error=last_error
        )

    def _to_result(self, response: ProviderResponse, argument_models: Dict[str, type], attempts: int) -> InvocationResult:
        calls, anomalies = validate_tool_calls(response.tool_calls, argument_models)
        return InvocationResult(
            ok=True,
            text=(response.text or "").strip(),
            tool_calls=calls,
            anomalies=anomalies,
            tokens=response.total_tokens,
            cost_credits=to_credits(Decimal(str(response.cost_usd)) * self.credits_per_usd),
            attempts=attempts,
            failure=FailureKind.MALFORMED_TOOL_CALL if anomalies else None,
        )
