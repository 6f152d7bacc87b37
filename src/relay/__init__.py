"""Relay - two agents, one seamless stream."""

from .agents import AgentProfile, AgentRegistry
from .config import Settings, get_settings
from .core.capabilities import CapabilitySet, CapabilitySetBuilder, ToolCatalog
from .core.loop import HandoffLoopController, HandoffRun
from .core.types import AgentIdentity, ConversationMessage, HandoffPayload, TenantContext

__version__ = "0.1.0"

__all__ = [
    "AgentIdentity",
    "AgentProfile",
    "AgentRegistry",
    "CapabilitySet",
    "CapabilitySetBuilder",
    "ConversationMessage",
    "HandoffLoopController",
    "HandoffPayload",
    "HandoffRun",
    "Settings",
    "TenantContext",
    "ToolCatalog",
    "get_settings",
]
