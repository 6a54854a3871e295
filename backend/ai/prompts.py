"""
Prompt Assembler: configuration + recent history + knowledge -> payload.

Pure function, no I/O: identical inputs always give an identical payload,
which is what lets the pipeline be tested without a model. History is cut
to the most recent window, oldest messages dropped first, order kept.
"""
from dataclasses import dataclass
from typing import Any, Optional, Sequence, Tuple

DEFAULT_HISTORY_WINDOW = 20

# Providers only understand user/assistant/system. Tool results and
# governance notices are replayed as labelled system lines.
_ROLE_MAP = {
    "user": ("user", ""),
    "assistant": ("assistant", ""),
    "tool": ("system", "[Tool result] "),
    "system": ("system", "[Note] "),
}


@dataclass(frozen=True)
class PromptMessage:
    role: str
    content: str

    def to_dict(self) -> dict:
        return {"role": self.role, "content": self.content}


@dataclass(frozen=True)
class PromptPayload:
    system_prompt: str
    messages: Tuple[PromptMessage, ...]
    model_id: str
    temperature: float
    max_tokens: int

    def to_chat_messages(self) -> list:
        """OpenAI-style message list (system first)."""
        return [{"role": "system", "content": self.system_prompt}] + [m.to_dict() for m in self.messages]


def _field(entry: Any, name: str) -> Any:
    if isinstance(entry, dict):
        return entry.get(name)
    return getattr(entry, name, None)


def build_system_prompt(config, retrieved_knowledge: Optional[Sequence[str]] = None) -> str:
    sections = [f"You are {config.display_name}, a customer assistant."]
    sections.append(f"Always reply in the language with code '{config.language}'.")
    if config.personality:
        sections.append(f"Personality: {config.personality}")
    if config.brand_voice:
        sections.append(f"Brand voice: {config.brand_voice}")
    if config.system_prompt:
        sections.append(config.system_prompt.strip())

    if config.faq_entries:
        faq_lines = ["Frequently asked questions:"]
        for entry in config.faq_entries:
            faq_lines.append(f"Q: {entry.question}\nA: {entry.answer}")
        sections.append("\n".join(faq_lines))

    if retrieved_knowledge:
        knowledge_lines = ["Relevant knowledge:"]
        knowledge_lines.extend(f"- {item}" for item in retrieved_knowledge if item)
        sections.append("\n".join(knowledge_lines))

    sections.append(
        "Only use the tools you are given. Never mention credits, billing, "
        "approvals or internal identifiers to the customer."
    )
    return "\n\n".join(sections)


def assemble(
    config,
    history: Sequence[Any],
    retrieved_knowledge: Optional[Sequence[str]] = None,
    window: int = DEFAULT_HISTORY_WINDOW,
) -> PromptPayload:
    """
    Args:
        config: AgentConfigSnapshot (or anything with the same attributes)
        history: messages in arrival order; dicts or objects with role/content
        retrieved_knowledge: optional snippets to ground the answer
        window: how many of the most recent messages to keep
    """
    recent = list(history)[-window:] if window > 0 else []
    messages = []
    for entry in recent:
        role, prefix = _ROLE_MAP.get(_field(entry, "role"), ("system", "[Note] "))
        messages.append(PromptMessage(role=role, content=f"{prefix}{_field(entry, 'content') or ''}"))

    return PromptPayload(
        system_prompt=build_system_prompt(config, retrieved_knowledge),
        messages=tuple(messages),
        model_id=config.model_id,
        temperature=config.temperature,
        max_tokens=config.max_tokens,
    )
