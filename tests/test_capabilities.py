from __future__ import annotations

import asyncio

import pytest
from fakes import CUSTOMER, PRODUCT
from pydantic import BaseModel

from relay.agents import AgentRegistry
from relay.core.capabilities import (
    HANDOFF_CAPABILITY,
    Capability,
    CapabilitySet,
    CapabilitySetBuilder,
    CatalogEntry,
    EmptyInput,
    ToolCatalog,
    build_handoff_capability,
)
from relay.core.types import CapabilityOutcome, HandoffPayload, OutcomeKind, TenantContext
from relay.errors import ConfigurationError


class EchoInput(BaseModel):
    message: str


def test_handoff_capability_present_only_when_allowed(registry: AgentRegistry, tenant: TenantContext) -> None:
    builder = CapabilitySetBuilder(registry)

    allowed = builder.build(PRODUCT, tenant, handoff_allowed=True)
    exhausted = builder.build(PRODUCT, tenant, handoff_allowed=False)

    assert list(allowed) == ["list_projects", "create_artifact", HANDOFF_CAPABILITY]
    assert allowed.allows_handoff is True
    assert list(exhausted) == ["list_projects", "create_artifact"]
    assert exhausted.allows_handoff is False


def test_each_agent_receives_only_its_own_domain_tools(registry: AgentRegistry, tenant: TenantContext) -> None:
    builder = CapabilitySetBuilder(registry)

    assert list(builder.build(CUSTOMER, tenant, handoff_allowed=False)) == ["update_customer_status"]
    assert "update_customer_status" not in builder.build(PRODUCT, tenant, handoff_allowed=True)


def test_builder_returns_fresh_sets(registry: AgentRegistry, tenant: TenantContext) -> None:
    builder = CapabilitySetBuilder(registry)

    first = builder.build(CUSTOMER, tenant, handoff_allowed=True)
    second = builder.build(CUSTOMER, tenant, handoff_allowed=True)

    assert first is not second
    assert first[HANDOFF_CAPABILITY] is not second[HANDOFF_CAPABILITY]


@pytest.mark.asyncio
async def test_domain_capability_is_bound_to_tenant(registry: AgentRegistry, tenant: TenantContext) -> None:
    capabilities = CapabilitySetBuilder(registry).build(CUSTOMER, tenant, handoff_allowed=False)

    outcome = await capabilities["update_customer_status"].invoke()

    assert outcome == CapabilityOutcome.ok({"tenant": "cust-1", "status": "updated"})


@pytest.mark.asyncio
async def test_handoff_capability_produces_tagged_payload() -> None:
    capability = build_handoff_capability(agent=CUSTOMER, target=PRODUCT, target_label="Product Management")

    outcome = await capability.invoke(reason="needs a PRD", summary="user wants a doc", pending_request="write a PRD")

    assert outcome.kind is OutcomeKind.HANDOFF
    assert outcome.value == HandoffPayload(
        target_agent=PRODUCT,
        reason="needs a PRD",
        summary="user wants a doc",
        pending_request="write a PRD",
        from_agent=CUSTOMER,
    )


@pytest.mark.asyncio
async def test_handoff_from_agent_carries_previous_agent() -> None:
    capability = build_handoff_capability(
        agent=CUSTOMER, target=PRODUCT, target_label="Product Management", previous_agent=PRODUCT
    )

    outcome = await capability.invoke(reason="r", summary="s", pending_request="p")

    assert outcome.value.from_agent is PRODUCT


def test_handoff_description_warns_against_handing_straight_back() -> None:
    fresh = build_handoff_capability(agent=CUSTOMER, target=PRODUCT, target_label="Product Management")
    returned = build_handoff_capability(
        agent=CUSTOMER, target=PRODUCT, target_label="Product Management", previous_agent=PRODUCT
    )

    assert "Product Management Agent" in fresh.description
    assert "WARNING" not in fresh.description
    assert "WARNING" in returned.description


@pytest.mark.asyncio
async def test_handoff_with_missing_arguments_is_an_error_outcome() -> None:
    capability = build_handoff_capability(agent=CUSTOMER, target=PRODUCT, target_label="Product Management")

    outcome = await capability.invoke(reason="only a reason")

    assert outcome.kind is OutcomeKind.ERROR
    assert "invalid arguments for handoff" in outcome.value["error"]


@pytest.mark.asyncio
async def test_failing_handler_becomes_error_outcome() -> None:
    def boom(params: EmptyInput) -> None:
        raise RuntimeError("store offline")

    capability = Capability(name="boom", description="fails", params=EmptyInput, handler=boom)

    outcome = await capability.invoke()

    assert outcome == CapabilityOutcome.error("RuntimeError: store offline")


@pytest.mark.asyncio
async def test_async_handler_is_awaited() -> None:
    async def echo(params: EchoInput) -> str:
        await asyncio.sleep(0)
        return params.message.upper()

    capability = Capability(name="echo", description="echo", params=EchoInput, handler=echo)

    assert await capability.invoke(message="hi") == CapabilityOutcome.ok("HI")


def test_capability_exports_republic_tool() -> None:
    capability = Capability(name="echo", description="Echo back", params=EchoInput, handler=lambda params: None)

    tool = capability.to_tool()

    assert tool.name == "echo"
    assert tool.description == "Echo back"
    assert "message" in tool.parameters["properties"]


def test_capability_set_rejects_duplicate_names() -> None:
    capability = Capability(name="echo", description="", params=EmptyInput, handler=lambda params: None)

    with pytest.raises(ConfigurationError, match="Duplicate capability name"):
        CapabilitySet([capability, capability])


def test_catalog_reserves_handoff_name() -> None:
    catalog = ToolCatalog()

    with pytest.raises(ConfigurationError, match="reserved"):
        catalog.register(CUSTOMER, name=HANDOFF_CAPABILITY, description="nope")(lambda tenant, params: None)


def test_catalog_rejects_duplicate_tool_for_same_agent() -> None:
    catalog = ToolCatalog()
    catalog.register(PRODUCT, name="list_projects", description="")(lambda tenant, params: [])

    with pytest.raises(ConfigurationError, match="Duplicate tool"):
        catalog.register(PRODUCT, name="list_projects", description="")(lambda tenant, params: [])


def test_catalog_allows_shared_name_only_with_same_handler() -> None:
    def lookup(tenant: TenantContext, params: EmptyInput) -> str:
        return "ok"

    catalog = ToolCatalog()
    catalog.add(CUSTOMER, CatalogEntry(name="lookup", description="", params=EmptyInput, handler=lookup))
    catalog.add(PRODUCT, CatalogEntry(name="lookup", description="", params=EmptyInput, handler=lookup))

    assert catalog.names(CUSTOMER) == catalog.names(PRODUCT) == ["lookup"]

    catalog.add(PRODUCT, CatalogEntry(name="other", description="", params=EmptyInput, handler=lookup))
    with pytest.raises(ConfigurationError, match="different handlers"):
        catalog.add(
            CUSTOMER,
            CatalogEntry(name="other", description="", params=EmptyInput, handler=lambda tenant, params: None),
        )
