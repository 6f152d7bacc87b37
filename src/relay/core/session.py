"""Generation sessions: one cancellable model run per loop iteration."""

from __future__ import annotations

import asyncio
import json
from collections import defaultdict, deque
from collections.abc import AsyncGenerator, Callable
from dataclasses import dataclass
from typing import Any, Protocol

from loguru import logger
from republic import Tool

from relay.core.cancellation import CancellationToken
from relay.core.capabilities import Capability, CapabilitySet
from relay.core.types import (
    AgentIdentity,
    CapabilityInvocation,
    CapabilityOutcome,
    CapabilityResult,
    ConversationMessage,
    OutputEvent,
    StepFinished,
    StreamFinished,
    TextDelta,
)
from relay.errors import GenerationError


@dataclass(frozen=True)
class SessionRequest:
    """Everything one generation session runs against."""

    agent: AgentIdentity
    prompt: str
    history: tuple[ConversationMessage, ...]
    capabilities: CapabilitySet
    token: CancellationToken
    max_steps: int


class GenerationSession(Protocol):
    def stream(self) -> AsyncGenerator[OutputEvent, None]:
        """Yield output events until finished, cancelled, or closed."""
        ...


SessionFactory = Callable[[SessionRequest], GenerationSession]


class RepublicGenerationSession:
    """Drives a republic LLM step by step, translating its stream events."""

    def __init__(
        self,
        request: SessionRequest,
        *,
        llm: Any,
        max_tokens: int,
        timeout_seconds: float | None = None,
    ) -> None:
        self._request = request
        self._llm = llm
        self._max_tokens = max_tokens
        self._timeout_seconds = timeout_seconds
        self._recorded: defaultdict[str, deque[CapabilityOutcome]] = defaultdict(deque)
        self._tools = [self._recording_tool(capability) for capability in request.capabilities.values()]
        self._consumed = False

    async def stream(self) -> AsyncGenerator[OutputEvent, None]:
        if self._consumed:
            raise RuntimeError("generation session streams cannot be restarted")
        self._consumed = True

        request = self._request
        token = request.token
        messages: list[dict[str, Any]] = [message.to_model_message() for message in request.history]
        upstream: Any = None
        step = 0
        try:
            while step < request.max_steps:
                if token.cancelled:
                    return
                step += 1
                logger.info("relay.session.step agent={} step={}", request.agent, step)
                upstream = await self._open(messages)
                calls: list[dict[str, Any]] = []
                invocations: list[CapabilityInvocation] = []
                results: list[CapabilityResult] = []
                text_parts: list[str] = []

                async for event in upstream:
                    if token.cancelled:
                        return
                    kind = getattr(event, "kind", None)
                    data = getattr(event, "data", None)
                    if not isinstance(data, dict):
                        continue
                    if kind == "text":
                        delta = data.get("delta")
                        if isinstance(delta, str) and delta:
                            text_parts.append(delta)
                            yield TextDelta(delta)
                    elif kind == "tool_call":
                        call = data.get("call")
                        invocation = _invocation_from_call(call, len(invocations))
                        calls.append(call if isinstance(call, dict) else {})
                        invocations.append(invocation)
                        yield invocation
                    elif kind == "tool_result":
                        result = self._result_event(data, invocations)
                        results.append(result)
                        yield result
                    elif kind == "error":
                        raise GenerationError(_format_error_event(data), agent=request.agent)
                    elif kind == "final" and data.get("ok") is False:
                        raise GenerationError(_format_error_event(data.get("error")), agent=request.agent)

                stream_error = getattr(upstream, "error", None)
                if stream_error is not None:
                    raise GenerationError(_format_stream_error(stream_error), agent=request.agent)
                await _release(upstream)
                upstream = None

                if token.cancelled:
                    return
                yield StepFinished(step=step, capability_names=tuple(item.name for item in invocations))
                if not invocations:
                    yield StreamFinished(reason="stop", steps=step)
                    return
                messages.extend(_followup_messages("".join(text_parts), calls, results))

            logger.info("relay.session.max_steps agent={} max_steps={}", request.agent, request.max_steps)
            yield StreamFinished(reason="max_steps", steps=step)
        finally:
            if upstream is not None:
                await _release(upstream)
            logger.debug("relay.session.closed agent={} steps={} cancelled={}", request.agent, step, token.cancelled)

    async def _open(self, messages: list[dict[str, Any]]) -> Any:
        try:
            async with asyncio.timeout(self._timeout_seconds):
                return await self._llm.stream_events_async(
                    messages=list(messages),
                    system_prompt=self._request.prompt,
                    tools=self._tools,
                    max_tokens=self._max_tokens,
                )
        except TimeoutError:
            raise GenerationError(
                f"model_timeout: no response within {self._timeout_seconds}s", agent=self._request.agent
            ) from None

    def _recording_tool(self, capability: Capability) -> Tool:
        async def _handler(**kwargs: Any) -> CapabilityOutcome:
            outcome = await capability.invoke(**kwargs)
            self._recorded[capability.name].append(outcome)
            return outcome

        return capability.to_tool(handler=_handler)

    def _result_event(self, data: dict[str, Any], invocations: list[CapabilityInvocation]) -> CapabilityResult:
        index = data.get("index")
        if isinstance(index, int) and 0 <= index < len(invocations):
            invocation = invocations[index]
        else:
            invocation = CapabilityInvocation(call_id=str(index), name=str(data.get("name", "")))

        raw = data.get("result")
        recorded = self._recorded.get(invocation.name)
        if isinstance(raw, CapabilityOutcome):
            outcome = raw
            if recorded and recorded[0] is raw:
                recorded.popleft()
        elif recorded:
            outcome = recorded.popleft()
        else:
            outcome = _untracked_outcome(raw)
        return CapabilityResult(call_id=invocation.call_id, name=invocation.name, outcome=outcome)


class RepublicSessionFactory:
    """Creates republic-backed sessions sharing one LLM client."""

    def __init__(self, llm: Any, *, max_tokens: int, timeout_seconds: float | None = None) -> None:
        self._llm = llm
        self._max_tokens = max_tokens
        self._timeout_seconds = timeout_seconds

    def __call__(self, request: SessionRequest) -> RepublicGenerationSession:
        return RepublicGenerationSession(
            request,
            llm=self._llm,
            max_tokens=self._max_tokens,
            timeout_seconds=self._timeout_seconds,
        )


async def _release(upstream: Any) -> None:
    aclose = getattr(upstream, "aclose", None)
    if aclose is not None:
        await aclose()


def _invocation_from_call(call: Any, index: int) -> CapabilityInvocation:
    if not isinstance(call, dict):
        return CapabilityInvocation(call_id=str(index), name="")
    function = call.get("function") if isinstance(call.get("function"), dict) else call
    arguments = function.get("arguments", {})
    if isinstance(arguments, str):
        try:
            arguments = json.loads(arguments) if arguments.strip() else {}
        except json.JSONDecodeError:
            arguments = {"raw": arguments}
    if not isinstance(arguments, dict):
        arguments = {"value": arguments}
    return CapabilityInvocation(
        call_id=str(call.get("id") or index),
        name=str(function.get("name", "")),
        arguments=arguments,
    )


def _followup_messages(
    text: str, calls: list[dict[str, Any]], results: list[CapabilityResult]
) -> list[dict[str, Any]]:
    followups: list[dict[str, Any]] = [{"role": "assistant", "content": text, "tool_calls": calls}]
    followups.extend(
        {"role": "tool", "tool_call_id": result.call_id, "content": result.outcome.render()} for result in results
    )
    return followups


def _untracked_outcome(raw: Any) -> CapabilityOutcome:
    # Results no capability recorded were produced by republic itself, e.g. an unknown tool name.
    if isinstance(raw, dict) and isinstance(raw.get("kind"), str) and isinstance(raw.get("message"), str):
        return CapabilityOutcome.error(_format_error_event(raw))
    return CapabilityOutcome.ok(raw)


def _format_stream_error(error: object) -> str:
    kind = getattr(error, "kind", None)
    message = getattr(error, "message", None)
    kind_value = getattr(kind, "value", kind)
    if isinstance(kind_value, str) and isinstance(message, str):
        return f"{kind_value}: {message}"
    if isinstance(message, str):
        return message
    return str(error)


def _format_error_event(error_event: Any) -> str:
    if not isinstance(error_event, dict):
        return "stream_error: unknown"
    kind = error_event.get("kind")
    message = error_event.get("message")
    if isinstance(kind, str) and isinstance(message, str):
        return f"{kind}: {message}"
    if isinstance(message, str):
        return message
    return "stream_error: unknown"
