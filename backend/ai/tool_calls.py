"""Tool-call validation - raw provider output -> typed, validated calls.

The LLM may only request tools by name with a JSON object of arguments.
Arguments are validated against the tool's pydantic model. Anything that
does not validate is dropped here and reported as an anomaly; it never
reaches the governor.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ValidationError

from .provider import RawToolCall

logger = logging.getLogger(__name__)


@dataclass
class ToolCall:
    """A validated tool-call request."""
    name: str
    arguments: Dict[str, Any] = field(default_factory=dict)
    call_id: Optional[str] = None


def _parse_arguments(raw: str) -> Optional[dict]:
    """Decode the argument payload; models sometimes wrap it in ```json fences."""
    if raw is None:
        return None
    text = raw.strip()
    if not text:
        return {}
    if text.startswith("```"):
        text = text.strip("`")
        if text.lower().startswith("json"):
            text = text[4:]
        text = text.strip()
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        return None
    return data if isinstance(data, dict) else None


def validate_tool_calls(
    raw_calls: List[RawToolCall],
    argument_models: Dict[str, type],
) -> Tuple[List[ToolCall], List[str]]:
    """
    Args:
        raw_calls: tool calls as the provider returned them
        argument_models: tool name -> pydantic model for its arguments

    Returns:
        (valid calls, anomaly descriptions)

    A call naming a tool with no argument model is passed through with its
    decoded arguments so the governor can reject it as a policy matter.
    """
    valid: List[ToolCall] = []
    anomalies: List[str] = []

    for raw in raw_calls:
        if not raw.name or not isinstance(raw.name, str):
            anomalies.append("tool call without a name")
            continue

        arguments = _parse_arguments(raw.arguments)
        if arguments is None:
            anomalies.append(f"{raw.name}: arguments are not a JSON object")
            continue

        model = argument_models.get(raw.name)
        if model is not None:
            try:
                parsed: BaseModel = model.model_validate(arguments)
            except ValidationError as e:
                anomalies.append(f"{raw.name}: {e.error_count()} invalid argument(s)")
                logger.debug(f"Tool call {raw.name} failed validation: {e}")
                continue
            arguments = parsed.model_dump(mode="json", exclude_none=True)

        valid.append(ToolCall(name=raw.name, arguments=arguments, call_id=raw.call_id))

    if anomalies:
        logger.warning(f"Dropped {len(anomalies)} malformed tool call(s): {anomalies}")
    return valid, anomalies
