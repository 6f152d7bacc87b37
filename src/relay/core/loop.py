"""Bounded handoff loop composing several agent sessions into one stream."""

from __future__ import annotations

import inspect
from collections.abc import AsyncGenerator, Awaitable, Callable, Iterable, Mapping
from contextlib import aclosing
from dataclasses import dataclass
from typing import Any

from loguru import logger

from relay.agents.registry import AgentRegistry
from relay.config import Settings
from relay.core.cancellation import CancellationToken
from relay.core.capabilities import CapabilitySetBuilder
from relay.core.conversation import last_user_text, normalize_conversation, select_initial_agent
from relay.core.gaps import GapRecord, GapTelemetryRecorder, JsonlTelemetrySink, LoggingTelemetrySink, TelemetrySink
from relay.core.handoff import HandoffDetector, StreamComposer
from relay.core.prompt import PromptComposer
from relay.core.session import SessionFactory, SessionRequest
from relay.core.types import (
    AgentIdentity,
    CapabilityInvocation,
    ConversationMessage,
    HandoffPayload,
    LoopState,
    OutputEvent,
    TenantContext,
)
from relay.errors import ConfigurationError, GenerationError

ContextProvider = Callable[[str], str | Awaitable[str]]


@dataclass(frozen=True)
class IterationRecord:
    """What one Generating state ran with and how it ended."""

    agent: AgentIdentity
    handoff_allowed: bool
    capability_names: tuple[str, ...]
    handoff: HandoffPayload | None = None


class HandoffRun:
    """Single-use stream of output events for one request, plus its final state."""

    def __init__(
        self,
        controller: HandoffLoopController,
        messages: list[ConversationMessage],
        tenant: TenantContext,
        initial_agent: AgentIdentity,
    ) -> None:
        self.messages = messages
        self.tenant = tenant
        self.initial_agent = initial_agent
        self.state = LoopState(current_agent=initial_agent)
        self.iterations: list[IterationRecord] = []
        self.capabilities_invoked: list[str] = []
        self.composer = StreamComposer()
        self.gap: GapRecord | None = None
        self.completed = False
        self._controller = controller
        self._started = False

    def __aiter__(self) -> AsyncGenerator[OutputEvent, None]:
        if self._started:
            raise RuntimeError("handoff runs cannot be restarted")
        self._started = True
        return self._controller._drive(self)


class HandoffLoopController:
    """Runs one agent session per iteration until no handoff is pending."""

    def __init__(
        self,
        registry: AgentRegistry,
        sessions: SessionFactory,
        *,
        max_handoffs: int = 2,
        max_steps_per_session: int = 10,
        default_agent: AgentIdentity = AgentIdentity.CUSTOMER_MGMT,
        context_provider: ContextProvider | None = None,
        gap_recorder: GapTelemetryRecorder | None = None,
    ) -> None:
        if max_handoffs < 0:
            raise ConfigurationError("max_handoffs must be non-negative")
        if max_steps_per_session < 1:
            raise ConfigurationError("max_steps_per_session must be positive")
        registry.profile(default_agent)
        self._registry = registry
        self._sessions = sessions
        self._max_handoffs = max_handoffs
        self._max_steps = max_steps_per_session
        self._default_agent = default_agent
        self._context_provider = context_provider
        self._gap_recorder = gap_recorder
        self._capabilities = CapabilitySetBuilder(registry)
        self._prompts = PromptComposer(registry)
        self._detector = HandoffDetector()

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        sessions: SessionFactory,
        *,
        registry: AgentRegistry | None = None,
        context_provider: ContextProvider | None = None,
        telemetry_sink: TelemetrySink | None = None,
    ) -> HandoffLoopController:
        if telemetry_sink is None:
            telemetry_sink = (
                JsonlTelemetrySink(settings.telemetry_path)
                if settings.telemetry_path is not None
                else LoggingTelemetrySink()
            )
        recorder = GapTelemetryRecorder(
            telemetry_sink,
            agents=settings.gap_detection_agents,
            read_only=settings.read_only_capabilities,
            min_message_chars=settings.gap_min_message_chars,
            description_max_chars=settings.gap_description_max_chars,
        )
        return cls(
            registry if registry is not None else AgentRegistry(),
            sessions,
            max_handoffs=settings.max_handoffs,
            max_steps_per_session=settings.max_steps_per_session,
            default_agent=settings.default_agent,
            context_provider=context_provider,
            gap_recorder=recorder,
        )

    def run_handoff_loop(
        self,
        conversation: Iterable[Mapping[str, Any] | ConversationMessage],
        tenant: TenantContext,
    ) -> HandoffRun:
        """Validate the conversation and return the stream for one request.

        Input errors raise here, before any generation session starts.
        """
        messages = normalize_conversation(conversation)
        initial_agent = select_initial_agent(messages, self._default_agent)
        logger.info(
            "relay.request.start tenant={} initial_agent={} messages={}",
            tenant.tenant_id,
            initial_agent,
            len(messages),
        )
        return HandoffRun(self, messages, tenant, initial_agent)

    async def _drive(self, run: HandoffRun) -> AsyncGenerator[OutputEvent, None]:
        state = run.state
        history = tuple(run.messages)
        try:
            domain_context = await self._domain_context(run.tenant)
        except Exception as exc:
            logger.exception("relay.request.context_failed tenant={}", run.tenant.tenant_id)
            raise GenerationError(f"domain context unavailable: {exc!s}", output_started=False) from exc
        logger.debug("relay.request.context tenant={} chars={}", run.tenant.tenant_id, len(domain_context))

        while True:
            agent = state.current_agent
            handoff_allowed = state.handoff_count < self._max_handoffs
            pending, state.pending_handoff = state.pending_handoff, None
            capabilities = self._capabilities.build(
                agent,
                run.tenant,
                handoff_allowed=handoff_allowed,
                previous_agent=state.previous_agent,
            )
            prompt = self._prompts.compose(agent, domain_context, pending)
            logger.info(
                "relay.loop.iteration agent={} handoffs={} handoff_allowed={} pending_handoff={}",
                agent,
                state.handoff_count,
                handoff_allowed,
                pending is not None,
            )

            token = CancellationToken()
            request = SessionRequest(
                agent=agent,
                prompt=prompt,
                history=history,
                capabilities=capabilities,
                token=token,
                max_steps=self._max_steps,
            )
            detected: HandoffPayload | None = None
            invoked: list[str] = []
            try:
                session = self._sessions(request)
                async with aclosing(session.stream()) as events:
                    async for event in events:
                        detection = self._detector.inspect(event)
                        if detection.is_handoff:
                            token.cancel("handoff")
                            run.composer.admit(event, detection)
                            detected = detection.payload
                            break
                        if isinstance(event, CapabilityInvocation):
                            invoked.append(event.name)
                        if run.composer.admit(event, detection):
                            yield event
            except GenerationError as exc:
                exc.output_started = run.composer.started
                logger.error("relay.loop.session_failed agent={} error={}", agent, exc)
                raise
            except Exception as exc:
                logger.exception("relay.loop.session_failed agent={}", agent)
                raise GenerationError(
                    f"generation failed: {exc!s}", agent=agent, output_started=run.composer.started
                ) from exc
            finally:
                run.capabilities_invoked.extend(invoked)

            run.iterations.append(
                IterationRecord(
                    agent=agent,
                    handoff_allowed=handoff_allowed,
                    capability_names=tuple(invoked),
                    handoff=detected,
                )
            )
            if detected is None:
                break

            logger.info(
                "relay.handoff.detected from={} to={} reason={!r} pending_request={!r}",
                agent,
                detected.target_agent,
                detected.reason,
                detected.pending_request,
            )
            if state.handoff_count >= self._max_handoffs:
                logger.warning(
                    "relay.loop.handoff_limit rejected_to={} handoffs={} max={}",
                    detected.target_agent,
                    state.handoff_count,
                    self._max_handoffs,
                )
                break
            state.previous_agent = agent
            state.current_agent = detected.target_agent
            state.pending_handoff = detected
            state.handoff_count += 1

        run.completed = True
        logger.info(
            "relay.request.finish tenant={} agent={} handoffs={} iterations={} forwarded={}",
            run.tenant.tenant_id,
            state.current_agent,
            state.handoff_count,
            len(run.iterations),
            run.composer.forwarded,
        )
        if self._gap_recorder is not None:
            run.gap = await self._gap_recorder.record(
                tenant=run.tenant,
                agent=state.current_agent,
                invoked=tuple(run.capabilities_invoked),
                user_message=last_user_text(run.messages),
            )

    async def _domain_context(self, tenant: TenantContext) -> str:
        if self._context_provider is None:
            return ""
        context = self._context_provider(tenant.tenant_id)
        if inspect.isawaitable(context):
            context = await context
        return context or ""
