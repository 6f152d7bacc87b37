from __future__ import annotations

from typing import Any

import pytest
from fakes import CUSTOMER, PRODUCT, RecordingSink

from relay.agents import AgentRegistry
from relay.core.capabilities import ToolCatalog
from relay.core.types import TenantContext


@pytest.fixture
def tenant() -> TenantContext:
    return TenantContext(tenant_id="cust-1", user_id="user-1", store={"projects": []})


@pytest.fixture
def catalog() -> ToolCatalog:
    catalog = ToolCatalog()

    @catalog.register(CUSTOMER, name="update_customer_status", description="Update lifecycle status")
    def update_customer_status(tenant: TenantContext, params: Any) -> dict[str, str]:
        return {"tenant": tenant.tenant_id, "status": "updated"}

    @catalog.register(PRODUCT, name="list_projects", description="List projects")
    def list_projects(tenant: TenantContext, params: Any) -> list[str]:
        return list(tenant.store["projects"]) if tenant.store else []

    @catalog.register(PRODUCT, name="create_artifact", description="Create an artifact")
    def create_artifact(tenant: TenantContext, params: Any) -> dict[str, str]:
        return {"id": "artifact-1"}

    return catalog


@pytest.fixture
def registry(catalog: ToolCatalog) -> AgentRegistry:
    return AgentRegistry(catalog=catalog)


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()
