"""Relay command line: run one handoff loop against a conversation file."""

from __future__ import annotations

import asyncio
import importlib
import json
import uuid
from pathlib import Path
from typing import Any, Optional

import typer
from rich.console import Console
from rich.markup import escape

from relay.agents import AgentRegistry
from relay.config import get_settings
from relay.core.capabilities import CapabilitySetBuilder, ToolCatalog
from relay.core.loop import HandoffLoopController
from relay.core.types import CapabilityInvocation, CapabilityResult, OutcomeKind, OutputEvent, TenantContext, TextDelta
from relay.errors import ConversationError, GenerationError, RelayError
from relay.integrations.republic_client import build_session_factory, read_context_file
from relay.logging_utils import configure_logging, request_scope

app = typer.Typer(name="relay", help="Two agents, one seamless stream.", add_completion=False)
console = Console()
err_console = Console(stderr=True)


def load_catalog(reference: str | None) -> ToolCatalog:
    """Resolve ``module:attribute`` to a ToolCatalog."""
    if not reference:
        return ToolCatalog()
    module_name, separator, attribute = reference.partition(":")
    if not separator or not module_name or not attribute:
        raise typer.BadParameter(f"expected module:attribute, got {reference!r}", param_hint="--catalog")
    try:
        catalog = getattr(importlib.import_module(module_name), attribute)
    except (ImportError, AttributeError) as exc:
        raise typer.BadParameter(f"cannot load {reference!r}: {exc}", param_hint="--catalog") from exc
    if not isinstance(catalog, ToolCatalog):
        raise typer.BadParameter(f"{reference!r} is not a ToolCatalog", param_hint="--catalog")
    return catalog


def _read_conversation(path: Path) -> list[Any]:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise typer.BadParameter(f"cannot read conversation: {exc}", param_hint="CONVERSATION") from exc
    if isinstance(data, dict):
        data = data.get("messages")
    if not isinstance(data, list):
        raise typer.BadParameter("conversation must be a list of messages", param_hint="CONVERSATION")
    return data


def _render(event: OutputEvent, *, show_capabilities: bool) -> None:
    if isinstance(event, TextDelta):
        console.print(event.text, end="", markup=False, highlight=False)
    elif show_capabilities and isinstance(event, CapabilityInvocation):
        console.print(f"\n[dim]-> {event.name}[/dim]")
    elif show_capabilities and isinstance(event, CapabilityResult):
        style = "red" if event.outcome.kind is OutcomeKind.ERROR else "dim"
        console.print(f"[{style}]<- {event.name}: {escape(event.outcome.render()[:200])}[/{style}]", highlight=False)


def _print_error(error: str, details: str) -> None:
    err_console.print_json(json.dumps({"error": error, "details": details}))


async def _stream(
    controller: HandoffLoopController,
    conversation: list[Any],
    tenant: TenantContext,
    *,
    show_capabilities: bool,
) -> int:
    with request_scope(uuid.uuid4().hex[:12]):
        try:
            run = controller.run_handoff_loop(conversation, tenant)
        except ConversationError as exc:
            _print_error("Invalid request", str(exc))
            return 1

        try:
            async for event in run:
                _render(event, show_capabilities=show_capabilities)
        except GenerationError as exc:
            if not exc.output_started:
                _print_error("Failed to process chat", str(exc))
            else:
                console.print()
            return 1
        console.print()
        return 0


@app.command("run")
def run(
    conversation: Path = typer.Argument(..., help="JSON file with the conversation messages"),
    tenant: str = typer.Option(..., "--tenant", "-t", help="Tenant identifier"),
    user: Optional[str] = typer.Option(None, "--user", "-u", help="User identifier"),
    catalog: Optional[str] = typer.Option(None, "--catalog", help="Domain tool catalog as module:attribute"),
    context_file: Optional[Path] = typer.Option(None, "--context-file", help="Domain context injected into prompts"),
    show_capabilities: bool = typer.Option(False, "--show-capabilities", help="Print capability calls"),
) -> None:
    """Stream one handoff loop to the terminal."""
    settings = get_settings()
    configure_logging(sink="rich" if err_console.is_terminal else "plain", level=settings.log_level)
    messages = _read_conversation(conversation)
    registry = AgentRegistry(catalog=load_catalog(catalog))
    context = read_context_file(context_file) if context_file is not None else ""

    try:
        controller = HandoffLoopController.from_settings(
            settings,
            build_session_factory(settings),
            registry=registry,
            context_provider=lambda _tenant_id: context,
        )
    except RelayError as exc:
        _print_error("Invalid configuration", str(exc))
        raise typer.Exit(1) from exc

    code = asyncio.run(
        _stream(
            controller,
            messages,
            TenantContext(tenant_id=tenant, user_id=user),
            show_capabilities=show_capabilities,
        )
    )
    if code:
        raise typer.Exit(code)


@app.command("agents")
def agents(
    catalog: Optional[str] = typer.Option(None, "--catalog", help="Domain tool catalog as module:attribute"),
) -> None:
    """List agent profiles and the capabilities each would receive."""
    registry = AgentRegistry(catalog=load_catalog(catalog))
    builder = CapabilitySetBuilder(registry)
    probe = TenantContext(tenant_id="-")
    for identity in registry.identities:
        profile = registry.profile(identity)
        names = list(builder.build(identity, probe, handoff_allowed=True))
        console.print(f"[bold]{identity.value}[/bold] ({profile.label}): {', '.join(names)}")
