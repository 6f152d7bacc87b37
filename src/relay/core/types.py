"""Shared core dataclasses."""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from enum import StrEnum
from typing import Any, Literal


class AgentIdentity(StrEnum):
    """The two agent roles a deployment routes between."""

    CUSTOMER_MGMT = "customer_mgmt"
    PRODUCT_MGMT = "product_mgmt"


class Role(StrEnum):
    USER = "user"
    ASSISTANT = "assistant"


@dataclass(frozen=True)
class ConversationMessage:
    """One canonical conversation turn."""

    role: Role
    text: str
    agent_tag: AgentIdentity | None = None

    def to_model_message(self) -> dict[str, str]:
        return {"role": self.role.value, "content": self.text}


@dataclass(frozen=True)
class TenantContext:
    """Request-scoped collaborators bound into capabilities."""

    tenant_id: str
    user_id: str | None = None
    store: Any = None


@dataclass(frozen=True)
class HandoffPayload:
    """Structured context carried from one agent to the next."""

    target_agent: AgentIdentity
    reason: str
    summary: str
    pending_request: str
    from_agent: AgentIdentity | None = None

    def to_dict(self) -> dict[str, str | None]:
        data = asdict(self)
        data["target_agent"] = self.target_agent.value
        data["from_agent"] = self.from_agent.value if self.from_agent is not None else None
        return data


class OutcomeKind(StrEnum):
    VALUE = "value"
    ERROR = "error"
    HANDOFF = "handoff"


@dataclass(frozen=True)
class CapabilityOutcome:
    """Tagged result of one capability execution."""

    kind: OutcomeKind
    value: Any = None

    @classmethod
    def ok(cls, value: Any) -> CapabilityOutcome:
        return cls(kind=OutcomeKind.VALUE, value=value)

    @classmethod
    def error(cls, message: str) -> CapabilityOutcome:
        return cls(kind=OutcomeKind.ERROR, value={"error": message})

    @classmethod
    def handoff(cls, payload: HandoffPayload) -> CapabilityOutcome:
        return cls(kind=OutcomeKind.HANDOFF, value=payload)

    def render(self) -> str:
        """Render the outcome as tool-message content for the model."""
        value = self.value.to_dict() if isinstance(self.value, HandoffPayload) else self.value
        if isinstance(value, str):
            return value
        try:
            return json.dumps(value, ensure_ascii=False, default=str)
        except (TypeError, ValueError):
            return repr(value)


@dataclass(frozen=True)
class TextDelta:
    text: str
    kind: Literal["text-delta"] = field(default="text-delta", init=False)


@dataclass(frozen=True)
class CapabilityInvocation:
    call_id: str
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)
    kind: Literal["capability-invocation"] = field(default="capability-invocation", init=False)


@dataclass(frozen=True)
class CapabilityResult:
    call_id: str
    name: str
    outcome: CapabilityOutcome
    kind: Literal["capability-result"] = field(default="capability-result", init=False)


@dataclass(frozen=True)
class StepFinished:
    step: int
    capability_names: tuple[str, ...] = ()
    kind: Literal["step-finished"] = field(default="step-finished", init=False)


@dataclass(frozen=True)
class StreamFinished:
    reason: str  # stop|max_steps
    steps: int = 0
    kind: Literal["stream-finished"] = field(default="stream-finished", init=False)


OutputEvent = TextDelta | CapabilityInvocation | CapabilityResult | StepFinished | StreamFinished


@dataclass
class LoopState:
    """Mutable state threaded through handoff loop iterations."""

    current_agent: AgentIdentity
    handoff_count: int = 0
    previous_agent: AgentIdentity | None = None
    pending_handoff: HandoffPayload | None = None
