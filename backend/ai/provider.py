"""
LLM provider contract.

A provider turns a prompt payload plus tool declarations into text and/or
raw tool-call requests. It knows nothing about tenants, credits or
approvals; the model invoker owns retry policy and the pipeline owns
everything else.
"""
from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional, Protocol

from .prompts import PromptPayload


@dataclass
class RawToolCall:
    """A tool call exactly as the provider returned it (arguments unparsed)."""
    name: str
    arguments: str
    call_id: Optional[str] = None


@dataclass
class ProviderResponse:
    text: str = ""
    tool_calls: List[RawToolCall] = field(default_factory=list)
    prompt_tokens: int = 0
    completion_tokens: int = 0
    cost_usd: Decimal = Decimal("0")

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


class ProviderError(Exception):
    """Provider call failed. retryable marks timeouts, 5xx and connection errors."""

    def __init__(self, message: str, retryable: bool = False):
        super().__init__(message)
        self.retryable = retryable


class LLMProvider(Protocol):
    provider_id: str

    def complete(self, payload: PromptPayload, tools: List[dict]) -> ProviderResponse:
        ...
