"""Republic integration helpers."""

from __future__ import annotations

from pathlib import Path

from republic import LLM

from relay.config import Settings
from relay.core.session import RepublicSessionFactory

MAX_CONTEXT_CHARS = 12_000


def build_llm(settings: Settings) -> LLM:
    """Build Republic LLM client configured for Relay sessions."""

    return LLM(
        settings.model,
        api_key=settings.api_key,
        api_base=settings.api_base,
    )


def build_session_factory(settings: Settings, llm: LLM | None = None) -> RepublicSessionFactory:
    return RepublicSessionFactory(
        llm if llm is not None else build_llm(settings),
        max_tokens=settings.max_tokens,
        timeout_seconds=settings.model_timeout_seconds,
    )


def read_context_file(path: Path) -> str:
    """Read a domain context file, trimming the middle when it is too long."""

    if not path.is_file():
        return ""
    try:
        content = path.read_text(encoding="utf-8").strip()
    except OSError:
        return ""

    if len(content) <= MAX_CONTEXT_CHARS:
        return content

    marker = "\n\n[context truncated: middle content removed]\n\n"
    head_len = (MAX_CONTEXT_CHARS - len(marker)) // 2
    tail_len = MAX_CONTEXT_CHARS - len(marker) - head_len
    if head_len <= 0 or tail_len <= 0:
        return content[:MAX_CONTEXT_CHARS]
    return f"{content[:head_len]}{marker}{content[-tail_len:]}"
