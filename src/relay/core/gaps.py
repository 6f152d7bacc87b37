"""Post-loop gap telemetry: turns that ended without any capability use."""

from __future__ import annotations

import asyncio
import inspect
import json
import threading
from collections.abc import Awaitable, Iterable, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Protocol

from loguru import logger

from relay.core.types import AgentIdentity, TenantContext


@dataclass(frozen=True)
class GapRecord:
    """One unmet-intent signal."""

    tenant_id: str
    user_id: str | None
    agent: AgentIdentity
    description: str
    capabilities_invoked: tuple[str, ...]

    def to_dict(self) -> dict[str, Any]:
        return {
            "tenant_id": self.tenant_id,
            "user_id": self.user_id,
            "agent": self.agent.value,
            "description": self.description,
            "capabilities_invoked": list(self.capabilities_invoked),
        }


class TelemetrySink(Protocol):
    def record_gap(self, record: GapRecord) -> Awaitable[None] | None: ...


class LoggingTelemetrySink:
    def record_gap(self, record: GapRecord) -> None:
        logger.info(
            "relay.gap tenant={} agent={} capabilities={} description={!r}",
            record.tenant_id,
            record.agent,
            list(record.capabilities_invoked),
            record.description,
        )


class JsonlTelemetrySink:
    """Appends gap records to a JSON-lines file."""

    def __init__(self, path: Path) -> None:
        self.path = path
        self._lock = threading.Lock()

    def record_gap(self, record: GapRecord) -> None:
        payload = {"date": datetime.now(UTC).isoformat(), **record.to_dict()}
        line = json.dumps(payload, ensure_ascii=False)
        with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a", encoding="utf-8") as handle:
                handle.write(line + "\n")


class GapTelemetryRecorder:
    """Flags loops whose final agent never used a non-read-only capability."""

    def __init__(
        self,
        sink: TelemetrySink,
        *,
        agents: Iterable[AgentIdentity],
        read_only: Iterable[str],
        min_message_chars: int = 20,
        description_max_chars: int = 500,
    ) -> None:
        self._sink = sink
        self._agents = frozenset(agents)
        self._read_only = frozenset(read_only)
        self._min_message_chars = min_message_chars
        self._description_max_chars = description_max_chars

    def is_gap(self, agent: AgentIdentity, invoked: Sequence[str]) -> bool:
        if agent not in self._agents:
            return False
        return not any(name not in self._read_only for name in invoked)

    async def record(
        self,
        *,
        tenant: TenantContext,
        agent: AgentIdentity,
        invoked: Sequence[str],
        user_message: str,
    ) -> GapRecord | None:
        """Record a gap if one occurred. Never raises."""
        try:
            if not self.is_gap(agent, invoked) or len(user_message) <= self._min_message_chars:
                return None
            record = GapRecord(
                tenant_id=tenant.tenant_id,
                user_id=tenant.user_id,
                agent=agent,
                description=user_message[: self._description_max_chars],
                capabilities_invoked=tuple(invoked),
            )
            if inspect.iscoroutinefunction(self._sink.record_gap):
                await self._sink.record_gap(record)
            else:
                # Sync sinks may block on file or network I/O.
                result = await asyncio.to_thread(self._sink.record_gap, record)
                if inspect.isawaitable(result):
                    await result
        except Exception:
            logger.exception("relay.gap.record_failed tenant={} agent={}", tenant.tenant_id, agent)
            return None
        logger.info("relay.gap.recorded tenant={} agent={} invoked={}", tenant.tenant_id, agent, len(invoked))
        return record
