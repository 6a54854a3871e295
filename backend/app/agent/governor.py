"""
Tool Execution Governor: decides what happens to each proposed tool call.

SAFETY MODEL:
- The LLM only PROPOSES tool calls
- This module classifies every call as EXECUTE, QUEUE (human approval) or REJECT
- Rules are evaluated in a fixed order; the first match wins:

  1. draft_only autonomy: read-only tools execute, everything else is rejected
  2. tool not enabled, explicitly disabled, or disabled for this session: rejected
  3. supervised autonomy: queued, read-only tools included
  4. autonomous autonomy: executes, unless listed in require_approval_for (queued)

Classification is pure. Running an allowed tool is separate (run_tool) so
approval execution uses exactly the same path.
"""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Iterable

from pydantic import ValidationError

from ai.tool_calls import ToolCall
from app.agent.tools import ToolContext, ToolRegistry, ToolResult, is_read_only
from app.services.config_store import AgentConfigSnapshot

logger = logging.getLogger(__name__)


class Decision(str, Enum):
    EXECUTE = "execute"
    QUEUE = "queue"
    REJECT = "reject"


@dataclass
class GovernanceDecision:
    call: ToolCall
    decision: Decision
    reason: str


def classify(
    tool_name: str,
    config: AgentConfigSnapshot,
    session_disabled: Iterable[str] = (),
) -> tuple:
    """Returns (Decision, reason) for one tool name under one configuration."""
    read_only = is_read_only(tool_name)

    if config.autonomy_level == "draft_only":
        if read_only and _is_permitted(tool_name, config, session_disabled):
            return Decision.EXECUTE, "read-only tool in draft_only mode"
        if read_only:
            return Decision.REJECT, "tool not enabled for this agent"
        return Decision.REJECT, "draft_only mode blocks state-changing tools"

    if not _is_permitted(tool_name, config, session_disabled):
        if tool_name in set(session_disabled):
            return Decision.REJECT, "tool disabled for this session after repeated failures"
        return Decision.REJECT, "tool not enabled for this agent"

    if config.autonomy_level == "supervised":
        return Decision.QUEUE, "supervised mode"

    if tool_name in config.require_approval_for:
        return Decision.QUEUE, "tool requires approval"

    return Decision.EXECUTE, "autonomous mode"


def _is_permitted(tool_name: str, config: AgentConfigSnapshot, session_disabled: Iterable[str]) -> bool:
    return (
        tool_name in config.enabled_tools
        and tool_name not in config.disabled_tools
        and tool_name not in set(session_disabled)
    )


def govern(call: ToolCall, config: AgentConfigSnapshot, session_disabled: Iterable[str] = ()) -> GovernanceDecision:
    decision, reason = classify(call.name, config, session_disabled)
    logger.info(f"[Governor] tenant={config.tenant_id} tool={call.name} -> {decision.value} ({reason})")
    return GovernanceDecision(call=call, decision=decision, reason=reason)


def offered_tools(config: AgentConfigSnapshot, registry: ToolRegistry, session_disabled: Iterable[str] = ()) -> list:
    """Tool names worth declaring to the model for this turn."""
    names = []
    for name in registry.names():
        decision, _ = classify(name, config, session_disabled)
        if decision != Decision.REJECT:
            names.append(name)
    return names


def run_tool(registry: ToolRegistry, ctx: ToolContext, call: ToolCall) -> ToolResult:
    """
    Execute one allowed call. Never raises: unknown tools, bad arguments
    and tool exceptions all come back as a failed ToolResult.
    """
    tool = registry.get(call.name)
    if tool is None:
        return ToolResult(success=False, summary=f"Unknown tool '{call.name}'")

    try:
        args = tool.parse_arguments(call.arguments)
    except ValidationError as e:
        return ToolResult(success=False, summary=f"Invalid arguments for {call.name}: {e.error_count()} error(s)")

    try:
        result = tool.execute(ctx, args)
    except Exception as e:  # tool faults are reported, not propagated
        ctx.db.rollback()
        logger.error(f"[Governor] Tool {call.name} raised for tenant {ctx.tenant_id}: {e}", exc_info=True)
        return ToolResult(success=False, summary=f"{call.name} failed: {e}")

    logger.info(f"[Governor] Tool {call.name} -> {'ok' if result.success else 'failed'}: {result.summary}")
    return result
