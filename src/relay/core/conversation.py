"""Conversation normalization and initial agent selection."""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from typing import Any

from relay.core.types import AgentIdentity, ConversationMessage, Role
from relay.errors import ConversationError

TEXT_PART_TYPE = "text"


def normalize_conversation(
    raw_messages: Iterable[Mapping[str, Any] | ConversationMessage],
) -> list[ConversationMessage]:
    """Convert heterogeneous inbound messages into canonical ordered messages.

    Already-normalized messages pass through unchanged, so applying this twice is a no-op.
    """
    messages = [_normalize_one(index, raw) for index, raw in enumerate(raw_messages)]
    if not messages:
        raise ConversationError("conversation must contain at least one message")
    return messages


def select_initial_agent(messages: Sequence[ConversationMessage], default: AgentIdentity) -> AgentIdentity:
    """Return the tag of the most recent tagged assistant message, else ``default``."""
    for message in reversed(messages):
        if message.role is Role.ASSISTANT and message.agent_tag is not None:
            return message.agent_tag
    return default


def last_user_text(messages: Sequence[ConversationMessage]) -> str:
    for message in reversed(messages):
        if message.role is Role.USER:
            return message.text
    return ""


def _normalize_one(index: int, raw: Mapping[str, Any] | ConversationMessage) -> ConversationMessage:
    if isinstance(raw, ConversationMessage):
        return raw
    if not isinstance(raw, Mapping):
        raise ConversationError(f"message {index}: expected a mapping, got {type(raw).__name__}")

    try:
        role = Role(raw.get("role"))
    except ValueError:
        raise ConversationError(f"message {index}: unsupported role {raw.get('role')!r}") from None

    if "content" not in raw and "text" not in raw and "parts" not in raw:
        raise ConversationError(f"message {index}: message must have either content or parts")

    return ConversationMessage(role=role, text=_message_text(index, raw), agent_tag=_agent_tag(index, raw))


def _message_text(index: int, raw: Mapping[str, Any]) -> str:
    flat = raw.get("content", raw.get("text"))
    if flat is not None and not isinstance(flat, str):
        raise ConversationError(f"message {index}: content must be a string")
    if flat:
        return flat

    parts = raw.get("parts") or []
    if not isinstance(parts, list):
        raise ConversationError(f"message {index}: parts must be a list")
    texts = [
        str(part.get("text", ""))
        for part in parts
        if isinstance(part, Mapping) and part.get("type") == TEXT_PART_TYPE
    ]
    return "\n".join(texts)


def _agent_tag(index: int, raw: Mapping[str, Any]) -> AgentIdentity | None:
    tag = raw.get("agent_tag")
    metadata = raw.get("metadata")
    if tag is None and isinstance(metadata, Mapping):
        tag = metadata.get("agentType", metadata.get("agent_type"))
    if tag is None:
        return None
    try:
        return AgentIdentity(tag)
    except ValueError:
        raise ConversationError(f"message {index}: unknown agent tag {tag!r}") from None
