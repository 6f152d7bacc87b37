"""Relay CLI entry point."""

from __future__ import annotations

from relay.cli import app

if __name__ == "__main__":
    app()
