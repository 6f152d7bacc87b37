"""Agent profiles and registry."""

from .registry import AgentProfile, AgentRegistry, default_profiles

__all__ = ["AgentProfile", "AgentRegistry", "default_profiles"]
