from __future__ import annotations

import json
import threading
from pathlib import Path

import pytest
from fakes import CUSTOMER, PRODUCT, RecordingSink

from relay.core.gaps import GapRecord, GapTelemetryRecorder, JsonlTelemetrySink
from relay.core.types import TenantContext

READ_ONLY = {"list_projects", "list_artifacts", "handoff"}


def _recorder(sink: object) -> GapTelemetryRecorder:
    return GapTelemetryRecorder(sink, agents={PRODUCT}, read_only=READ_ONLY)  # type: ignore[arg-type]


@pytest.mark.asyncio
async def test_read_only_turn_on_long_message_is_a_gap(tenant: TenantContext, sink: RecordingSink) -> None:
    record = await _recorder(sink).record(
        tenant=tenant, agent=PRODUCT, invoked=["list_projects"], user_message="x" * 25
    )

    assert sink.records == [record]
    assert record == GapRecord(
        tenant_id="cust-1",
        user_id="user-1",
        agent=PRODUCT,
        description="x" * 25,
        capabilities_invoked=("list_projects",),
    )


@pytest.mark.asyncio
async def test_short_message_is_not_a_gap(tenant: TenantContext, sink: RecordingSink) -> None:
    record = await _recorder(sink).record(
        tenant=tenant, agent=PRODUCT, invoked=["list_projects"], user_message="x" * 10
    )

    assert record is None
    assert sink.records == []


@pytest.mark.asyncio
async def test_threshold_is_strictly_greater_than(tenant: TenantContext, sink: RecordingSink) -> None:
    recorder = _recorder(sink)

    assert await recorder.record(tenant=tenant, agent=PRODUCT, invoked=[], user_message="x" * 20) is None
    assert await recorder.record(tenant=tenant, agent=PRODUCT, invoked=[], user_message="x" * 21) is not None


@pytest.mark.asyncio
async def test_description_is_truncated(tenant: TenantContext, sink: RecordingSink) -> None:
    record = await _recorder(sink).record(tenant=tenant, agent=PRODUCT, invoked=[], user_message="y" * 800)

    assert record is not None
    assert len(record.description) == 500


@pytest.mark.asyncio
async def test_acting_capability_is_not_a_gap(tenant: TenantContext, sink: RecordingSink) -> None:
    record = await _recorder(sink).record(
        tenant=tenant, agent=PRODUCT, invoked=["list_projects", "create_artifact"], user_message="x" * 40
    )

    assert record is None


@pytest.mark.asyncio
async def test_unchecked_agent_is_not_a_gap(tenant: TenantContext, sink: RecordingSink) -> None:
    record = await _recorder(sink).record(tenant=tenant, agent=CUSTOMER, invoked=[], user_message="x" * 40)

    assert record is None


@pytest.mark.asyncio
async def test_sink_failure_is_swallowed(tenant: TenantContext) -> None:
    class BrokenSink:
        def record_gap(self, record: GapRecord) -> None:
            raise OSError("disk full")

    record = await _recorder(BrokenSink()).record(tenant=tenant, agent=PRODUCT, invoked=[], user_message="x" * 40)

    assert record is None


@pytest.mark.asyncio
async def test_async_sink_is_awaited(tenant: TenantContext) -> None:
    class AsyncSink:
        def __init__(self) -> None:
            self.records: list[GapRecord] = []

        async def record_gap(self, record: GapRecord) -> None:
            self.records.append(record)

    sink = AsyncSink()
    record = await _recorder(sink).record(tenant=tenant, agent=PRODUCT, invoked=[], user_message="x" * 40)

    assert sink.records == [record]


@pytest.mark.asyncio
async def test_jsonl_sink_appends_records(tmp_path: Path, tenant: TenantContext) -> None:
    path = tmp_path / "telemetry" / "gaps.jsonl"
    recorder = _recorder(JsonlTelemetrySink(path))

    await recorder.record(
        tenant=tenant, agent=PRODUCT, invoked=["list_artifacts"], user_message="please plan a product launch"
    )
    await recorder.record(tenant=tenant, agent=PRODUCT, invoked=[], user_message="please plan a bigger launch")

    lines = [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]
    assert [line["description"] for line in lines] == ["please plan a product launch", "please plan a bigger launch"]
    assert lines[0]["agent"] == "product_mgmt"
    assert lines[0]["capabilities_invoked"] == ["list_artifacts"]
    assert "date" in lines[1]


@pytest.mark.asyncio
async def test_sync_sink_runs_off_the_event_loop_thread(tenant: TenantContext) -> None:
    class ThreadRecordingSink:
        def __init__(self) -> None:
            self.threads: list[int] = []

        def record_gap(self, record: GapRecord) -> None:
            self.threads.append(threading.get_ident())

    sink = ThreadRecordingSink()
    await _recorder(sink).record(tenant=tenant, agent=PRODUCT, invoked=[], user_message="x" * 40)

    assert len(sink.threads) == 1
    assert sink.threads[0] != threading.get_ident()
