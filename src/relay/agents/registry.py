"""Agent profiles and the explicit per-deployment agent registry."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from relay.agents.prompts import CUSTOMER_MGMT_PROMPT, PRODUCT_MGMT_PROMPT
from relay.core.capabilities import ToolCatalog
from relay.core.types import AgentIdentity
from relay.errors import ConfigurationError


@dataclass(frozen=True)
class AgentProfile:
    """Prompt and display metadata for one agent role."""

    identity: AgentIdentity
    label: str
    base_prompt: str


def default_profiles() -> list[AgentProfile]:
    return [
        AgentProfile(AgentIdentity.CUSTOMER_MGMT, "Customer Management", CUSTOMER_MGMT_PROMPT),
        AgentProfile(AgentIdentity.PRODUCT_MGMT, "Product Management", PRODUCT_MGMT_PROMPT),
    ]


class AgentRegistry:
    """Exactly two agent profiles plus their domain tool catalog."""

    def __init__(self, profiles: Iterable[AgentProfile] | None = None, catalog: ToolCatalog | None = None) -> None:
        resolved = list(default_profiles() if profiles is None else profiles)
        by_identity = {profile.identity: profile for profile in resolved}
        if len(resolved) != 2 or len(by_identity) != 2:
            raise ConfigurationError("Agent registry requires exactly two distinct agent profiles")
        self._profiles = by_identity
        self.catalog = catalog if catalog is not None else ToolCatalog()

    @property
    def identities(self) -> list[AgentIdentity]:
        return list(self._profiles)

    def profile(self, agent: AgentIdentity) -> AgentProfile:
        try:
            return self._profiles[agent]
        except KeyError:
            raise ConfigurationError(f"Unknown agent: {agent}") from None

    def counterpart(self, agent: AgentIdentity) -> AgentIdentity:
        self.profile(agent)
        return next(identity for identity in self._profiles if identity is not agent)
