"""System prompt composition for the active agent."""

from __future__ import annotations

from typing import TYPE_CHECKING

from relay.core.types import AgentIdentity, HandoffPayload

if TYPE_CHECKING:
    from relay.agents.registry import AgentRegistry


class PromptComposer:
    """Builds agent instructions, injecting handoff context when present."""

    def __init__(self, registry: AgentRegistry) -> None:
        self._registry = registry

    def compose(self, agent: AgentIdentity, domain_context: str, handoff: HandoffPayload | None = None) -> str:
        blocks = [self._registry.profile(agent).base_prompt.strip()]
        if domain_context.strip():
            blocks.append(f"<domain_context>\n{domain_context.strip()}\n</domain_context>")
        if handoff is not None:
            blocks.append(self._handoff_block(agent, handoff))
        return "\n\n".join(block for block in blocks if block)

    def _handoff_block(self, agent: AgentIdentity, handoff: HandoffPayload) -> str:
        source = self._registry.profile(self._registry.counterpart(agent)).label
        return (
            "<handoff_context>\n"
            f"You received this conversation from the {source} Agent.\n"
            f"Reason for transfer: {handoff.reason}\n"
            f"Conversation summary: {handoff.summary}\n"
            f"User's pending request: {handoff.pending_request}\n"
            "</handoff_context>\n"
            "Address the user's pending request directly. "
            "Do not mention the handoff or the other agent to the user."
        )
