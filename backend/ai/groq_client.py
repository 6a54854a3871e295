"""
Groq API Client: LLM provider for agent turns.

================================================================================
CRITICAL: THE MODEL PROPOSES, THE GOVERNOR DISPOSES
================================================================================

This client sends an assembled prompt plus tool declarations to Groq and
returns what the model said: reply text and/or tool-call REQUESTS.

THIS CLIENT DOES NOT:
- Execute tools
- Touch the credit ledger
- Retry (the model invoker owns retry policy)
- Send anything to customers

Every tool call it returns is validated and classified by the Tool
Execution Governor before anything runs.
================================================================================
"""

import logging
from decimal import Decimal
from typing import List, Optional

from groq import (
    APIConnectionError,
    APIError,
    APIStatusError,
    APITimeoutError,
    Groq,
    RateLimitError,
)

from app.core.config import settings

from .prompts import PromptPayload
from .provider import ProviderError, ProviderResponse, RawToolCall

# NEVER log API keys
logger = logging.getLogger(__name__)

# USD per million tokens (input, output)
MODEL_PRICING = {
    "llama-3.3-70b-versatile": (Decimal("0.59"), Decimal("0.79")),
    "llama-3.1-70b-versatile": (Decimal("0.59"), Decimal("0.79")),
    "llama-3.1-8b-instant": (Decimal("0.05"), Decimal("0.08")),
    "llama3-8b-8192": (Decimal("0.05"), Decimal("0.08")),
    "mixtral-8x7b-32768": (Decimal("0.24"), Decimal("0.24")),
    "gemma2-9b-it": (Decimal("0.20"), Decimal("0.20")),
}
DEFAULT_PRICING = (Decimal("0.59"), Decimal("0.79"))
_PER_MILLION = Decimal("1000000")


def estimate_usd(model_id: str, prompt_tokens: int, completion_tokens: int) -> Decimal:
    input_price, output_price = MODEL_PRICING.get(model_id, DEFAULT_PRICING)
    return (Decimal(prompt_tokens) * input_price + Decimal(completion_tokens) * output_price) / _PER_MILLION


class GroqProvider:
    """
    Groq chat-completions with tool calling.

    A missing API key leaves the provider constructed but unavailable;
    complete() then raises a non-retryable ProviderError so the turn
    fails cleanly instead of at import time.
    """

    provider_id = "groq"

    def __init__(self, api_key: Optional[str] = None, timeout: Optional[float] = None):
        api_key = api_key if api_key is not None else settings.GROQ_API_KEY
        self.timeout = timeout if timeout is not None else settings.LLM_TIMEOUT_SECONDS

        if not api_key:
            logger.warning(
                "⚠️ GROQ_API_KEY not found in environment. "
                "Agent turns using the groq provider will fail until it is set."
            )
            self.client = None
        else:
            # max_retries=0: one retry is applied by the invoker, not the SDK
            self.client = Groq(api_key=api_key, timeout=self.timeout, max_retries=0)
            logger.info("✅ Groq provider initialized")

    def is_available(self) -> bool:
        return self.client is not None

    def complete(self, payload: PromptPayload, tools: List[dict]) -> ProviderResponse:
        if not self.is_available():
            raise ProviderError("Groq client not configured", retryable=False)

        request = {
            "model": payload.model_id,
            "messages": payload.to_chat_messages(),
            "temperature": payload.temperature,
            "max_tokens": payload.max_tokens,
            "stream": False,
        }
        if tools:
            request["tools"] = tools
            request["tool_choice"] = "auto"

        try:
            response = self.client.chat.completions.create(**request)
        except APITimeoutError as e:
            logger.warning(f"Groq API timeout after {self.timeout}s")
            raise ProviderError(f"timeout: {e}", retryable=True) from e
        except RateLimitError as e:
            logger.warning("Groq rate limit hit")
            raise ProviderError(f"rate limited: {e}", retryable=True) from e
        except APIConnectionError as e:
            logger.warning(f"Groq connection error: {e}")
            raise ProviderError(f"connection error: {e}", retryable=True) from e
        except APIStatusError as e:
            retryable = e.status_code >= 500
            logger.error(f"Groq API status {e.status_code}")
            raise ProviderError(f"status {e.status_code}: {e}", retryable=retryable) from e
        except APIError as e:
            logger.error(f"Groq API error: {e}")
            raise ProviderError(str(e), retryable=False) from e

        if not response.choices:
            logger.warning("LLM returned empty response")
            return ProviderResponse()

        message = response.choices[0].message
        tool_calls = [
            RawToolCall(
                name=call.function.name,
                arguments=call.function.arguments or "",
                call_id=call.id,
            )
            for call in (message.tool_calls or [])
        ]

        prompt_tokens = completion_tokens = 0
        if response.usage is not None:
            prompt_tokens = response.usage.prompt_tokens or 0
            completion_tokens = response.usage.completion_tokens or 0

        logger.debug(
            f"LLM response: {len(message.content or '')} chars, {len(tool_calls)} tool calls, "
            f"{prompt_tokens + completion_tokens} tokens"
        )
        return ProviderResponse(
            text=message.content or "",
            tool_calls=tool_calls,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            cost_usd=estimate_usd(payload.model_id, prompt_tokens, completion_tokens),
        )
