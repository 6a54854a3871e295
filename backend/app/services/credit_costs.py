"""
Static credit weights.

The admission gate uses these instead of token counts so the pre-flight
check is cheap and conservative. Read-only tools are free.
"""
from decimal import Decimal

CREDIT_COSTS = {
    # Agent messages
    "agent_message_simple": 1,     # Small model call (Llama 8B / Mixtral / GPT-4o-mini)
    "agent_message_complex": 3,    # Large model call (70B class / Claude / GPT-4o)
    "agent_message_default": 2,    # Unknown model complexity

    # Tools
    "tool_query_org_data": 0,
    "tool_search_contacts": 0,
    "tool_get_contact": 0,
    "tool_list_bookings": 0,
    "tool_create_contact": 1,
    "tool_update_contact": 1,
    "tool_create_booking": 1,
    "tool_send_email": 1,
    "tool_send_ai_email": 2,
    "tool_default": 1,
}

COMPLEX_MODELS = (
    "llama-3.3-70b-versatile",
    "llama-3.1-70b",
    "claude-sonnet",
    "claude-3-5-sonnet",
    "gpt-4o",
    "gemini-pro",
)

SIMPLE_MODELS = (
    "llama-3.1-8b-instant",
    "gpt-4o-mini",
    "mixtral-8x7b",
    "gemma2-9b-it",
)


def get_agent_message_cost(model_id: str) -> Decimal:
    """Estimated credits for one agent message on model_id."""
    model = (model_id or "").lower()
    # Simple list first: "gpt-4o-mini" also contains "gpt-4o"
    if any(m in model for m in SIMPLE_MODELS):
        return Decimal(CREDIT_COSTS["agent_message_simple"])
    if any(m in model for m in COMPLEX_MODELS):
        return Decimal(CREDIT_COSTS["agent_message_complex"])
    return Decimal(CREDIT_COSTS["agent_message_default"])


def get_tool_credit_cost(tool_name: str) -> Decimal:
    return Decimal(CREDIT_COSTS.get(f"tool_{tool_name}", CREDIT_COSTS["tool_default"]))
