"""Application-level exception types for Relay."""

from __future__ import annotations


class RelayError(Exception):
    """Base exception for Relay."""


class ConfigurationError(RelayError):
    """Raised when agent profiles or capability catalogs are set up inconsistently."""


class ConversationError(RelayError):
    """Raised when an inbound conversation cannot be normalized."""


class GenerationError(RelayError):
    """Raised when a generation session fails upstream."""

    def __init__(self, message: str, *, agent: str | None = None, output_started: bool = False) -> None:
        super().__init__(message)
        self.agent = agent
        self.output_started = output_started
