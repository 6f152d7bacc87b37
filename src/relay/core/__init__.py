"""Core module for Relay."""

from .types import AgentIdentity, ConversationMessage, HandoffPayload, LoopState, OutputEvent, TenantContext

__all__ = ["AgentIdentity", "ConversationMessage", "HandoffPayload", "LoopState", "OutputEvent", "TenantContext"]
