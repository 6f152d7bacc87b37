"""Handoff detection and outbound stream composition."""

from __future__ import annotations

from dataclasses import dataclass

from relay.core.types import CapabilityResult, HandoffPayload, OutcomeKind, OutputEvent


@dataclass(frozen=True)
class Detection:
    """Classification of one output event."""

    payload: HandoffPayload | None = None

    @property
    def is_handoff(self) -> bool:
        return self.payload is not None

    @property
    def suppress(self) -> bool:
        return self.payload is not None


NO_HANDOFF = Detection()


class HandoffDetector:
    """Classifies capability results tagged as handoffs. Pure; never acts on them."""

    def inspect(self, event: OutputEvent) -> Detection:
        if not isinstance(event, CapabilityResult):
            return NO_HANDOFF
        outcome = event.outcome
        if outcome.kind is OutcomeKind.HANDOFF and isinstance(outcome.value, HandoffPayload):
            return Detection(payload=outcome.value)
        return NO_HANDOFF


class StreamComposer:
    """Pass-through filter joining several sessions into one outbound stream."""

    def __init__(self) -> None:
        self.forwarded = 0
        self.suppressed = 0

    @property
    def started(self) -> bool:
        return self.forwarded > 0

    def admit(self, event: OutputEvent, detection: Detection) -> bool:
        if detection.suppress:
            self.suppressed += 1
            return False
        self.forwarded += 1
        return True
