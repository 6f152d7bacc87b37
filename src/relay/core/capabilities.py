"""Capability catalog and per-iteration capability sets."""

from __future__ import annotations

import inspect
import json
import time
from collections.abc import Callable, Iterator, Mapping
from dataclasses import dataclass
from functools import partial
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

from loguru import logger
from pydantic import BaseModel, Field, ValidationError
from republic import Tool

from relay.core.types import AgentIdentity, CapabilityOutcome, HandoffPayload, TenantContext
from relay.errors import ConfigurationError

if TYPE_CHECKING:
    from relay.agents.registry import AgentRegistry

HANDOFF_CAPABILITY = "handoff"

CapabilityHandler = Callable[[BaseModel], Any]
DomainToolHandler = Callable[[TenantContext, BaseModel], Any]


def _shorten_text(text: str, width: int = 30, placeholder: str = "...") -> str:
    if len(text) <= width:
        return text
    available = width - len(placeholder)
    if available <= 0:
        return placeholder
    return text[:available] + placeholder


class EmptyInput(BaseModel):
    """Empty input payload."""


class HandoffInput(BaseModel):
    reason: str = Field(..., description="Brief explanation of why the handoff is needed")
    summary: str = Field(..., description="Summary of the conversation so far relevant to the next agent")
    pending_request: str = Field(
        ..., description="The specific user request that needs to be fulfilled by the other agent"
    )


@dataclass(frozen=True)
class Capability:
    """A callable operation exposed to a generation session."""

    name: str
    description: str
    params: type[BaseModel]
    handler: CapabilityHandler

    async def invoke(self, **kwargs: Any) -> CapabilityOutcome:
        self._log_call(kwargs)
        start = time.monotonic()
        try:
            params = self.params.model_validate(kwargs)
            result = self.handler(params)
            if inspect.isawaitable(result):
                result = await result
        except ValidationError as exc:
            logger.warning("capability.call.invalid name={} errors={}", self.name, exc.error_count())
            return CapabilityOutcome.error(f"invalid arguments for {self.name}: {exc}")
        except Exception as exc:
            logger.exception("capability.call.error name={}", self.name)
            return CapabilityOutcome.error(f"{type(exc).__name__}: {exc!s}")
        finally:
            duration = time.monotonic() - start
            logger.info("capability.call.end name={} duration={:.3f}ms", self.name, duration * 1000)

        if isinstance(result, CapabilityOutcome):
            return result
        return CapabilityOutcome.ok(result)

    def to_tool(self, handler: Callable[..., Any] | None = None) -> Tool:
        return Tool(
            name=self.name,
            description=self.description,
            parameters=self.params.model_json_schema(),
            handler=handler or self.invoke,
        )

    def _log_call(self, kwargs: dict[str, Any]) -> None:
        params: list[str] = []
        for key, value in kwargs.items():
            try:
                rendered = json.dumps(value, ensure_ascii=False)
            except TypeError:
                rendered = repr(value)
            params.append(f"{key}={_shorten_text(rendered)}")
        logger.info("capability.call.start name={} {{ {} }}", self.name, ", ".join(params))


class CapabilitySet(Mapping[str, Capability]):
    """Ordered, read-only mapping of capability name to capability."""

    def __init__(self, capabilities: list[Capability]) -> None:
        ordered: dict[str, Capability] = {}
        for capability in capabilities:
            if capability.name in ordered:
                raise ConfigurationError(f"Duplicate capability name: {capability.name}")
            ordered[capability.name] = capability
        self._capabilities = MappingProxyType(ordered)

    def __getitem__(self, name: str) -> Capability:
        return self._capabilities[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._capabilities)

    def __len__(self) -> int:
        return len(self._capabilities)

    @property
    def allows_handoff(self) -> bool:
        return HANDOFF_CAPABILITY in self._capabilities


@dataclass(frozen=True)
class CatalogEntry:
    """A domain tool waiting to be bound to a tenant."""

    name: str
    description: str
    params: type[BaseModel]
    handler: DomainToolHandler

    def bind(self, tenant: TenantContext) -> Capability:
        return Capability(
            name=self.name,
            description=self.description,
            params=self.params,
            handler=partial(self.handler, tenant),
        )


class ToolCatalog:
    """Domain tools per agent identity."""

    def __init__(self) -> None:
        self._entries: dict[AgentIdentity, dict[str, CatalogEntry]] = {agent: {} for agent in AgentIdentity}

    def register(
        self,
        agent: AgentIdentity,
        *,
        name: str,
        description: str,
        params: type[BaseModel] = EmptyInput,
    ) -> Callable[[DomainToolHandler], DomainToolHandler]:
        def decorator(handler: DomainToolHandler) -> DomainToolHandler:
            self.add(agent, CatalogEntry(name=name, description=description, params=params, handler=handler))
            return handler

        return decorator

    def add(self, agent: AgentIdentity, entry: CatalogEntry) -> None:
        if entry.name == HANDOFF_CAPABILITY:
            raise ConfigurationError(f"'{HANDOFF_CAPABILITY}' is reserved for agent handoff")
        if entry.name in self._entries[agent]:
            raise ConfigurationError(f"Duplicate tool '{entry.name}' for agent {agent}")
        for other, entries in self._entries.items():
            shared = entries.get(entry.name)
            if other is not agent and shared is not None and shared.handler is not entry.handler:
                raise ConfigurationError(f"Tool '{entry.name}' is bound to different handlers for {other} and {agent}")
        self._entries[agent][entry.name] = entry

    def entries(self, agent: AgentIdentity) -> list[CatalogEntry]:
        return list(self._entries[agent].values())

    def names(self, agent: AgentIdentity) -> list[str]:
        return list(self._entries[agent])


def build_handoff_capability(
    *,
    agent: AgentIdentity,
    target: AgentIdentity,
    target_label: str,
    previous_agent: AgentIdentity | None = None,
) -> Capability:
    """Create the capability whose execution produces a handoff payload."""
    description = (
        f"Transfer the conversation to the {target_label} Agent. "
        "Use this ONLY when the user's request clearly requires the other agent's tools and capabilities. "
        "Do NOT hand off for general questions you can partially address."
    )
    if previous_agent is target:
        description += (
            f" WARNING: The {target_label} Agent just transferred to you. "
            "Do NOT hand back unless the user explicitly changed topics."
        )
    from_agent = previous_agent if previous_agent is not None else agent

    def _handler(params: HandoffInput) -> CapabilityOutcome:
        logger.info(
            "relay.handoff.execute from={} to={} reason={!r}",
            agent,
            target,
            params.reason,
        )
        return CapabilityOutcome.handoff(
            HandoffPayload(
                target_agent=target,
                reason=params.reason,
                summary=params.summary,
                pending_request=params.pending_request,
                from_agent=from_agent,
            )
        )

    return Capability(name=HANDOFF_CAPABILITY, description=description, params=HandoffInput, handler=_handler)


class CapabilitySetBuilder:
    """Builds a fresh capability set for one loop iteration."""

    def __init__(self, registry: AgentRegistry) -> None:
        self._registry = registry

    def build(
        self,
        agent: AgentIdentity,
        tenant: TenantContext,
        *,
        handoff_allowed: bool,
        previous_agent: AgentIdentity | None = None,
    ) -> CapabilitySet:
        capabilities = [entry.bind(tenant) for entry in self._registry.catalog.entries(agent)]
        if handoff_allowed:
            target = self._registry.counterpart(agent)
            capabilities.append(
                build_handoff_capability(
                    agent=agent,
                    target=target,
                    target_label=self._registry.profile(target).label,
                    previous_agent=previous_agent,
                )
            )
        return CapabilitySet(capabilities)
