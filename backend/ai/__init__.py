"""AI module: LLM providers, prompt assembly and tool-call validation.

Nothing in here executes tools or touches credits. Providers only propose;
the agent pipeline decides what happens.
"""

from .prompts import PromptPayload, assemble
from .provider import LLMProvider, ProviderError, ProviderResponse, RawToolCall
from .tool_calls import ToolCall, validate_tool_calls

__all__ = [
    "PromptPayload",
    "assemble",
    "LLMProvider",
    "ProviderError",
    "ProviderResponse",
    "RawToolCall",
    "ToolCall",
    "validate_tool_calls",
]
