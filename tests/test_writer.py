"""Test Writer node: slice fan-out, failure isolation and merging."""

import asyncio
import json

import pytest

from qa_pipeline.models import PlanItem
from qa_pipeline.nodes.parser import RequestParser
from qa_pipeline.nodes.writer import Writer
from qa_pipeline.runtime import MockLLMRuntime

from conftest import WRITER_KEY, detailed_case, make_request, writer_by_plan


def make_plan(count):
    return [PlanItem(id=f"PLAN-{n}", title=f"Slice {n}", area=f"Area {n}") for n in range(1, count + 1)]


def build_writer(kit, cancel_event=None):
    return Writer(kit["invoker"], kit["context"], kit["cases"], kit["telemetry"], kit["events"], cancel_event)


def parsed():
    return RequestParser.process(make_request())


class TestSequentialWriter:
    """Test writer_concurrency == 1."""

    @pytest.mark.asyncio
    async def test_slices_run_in_plan_order(self, stage_kit):
        runtime = MockLLMRuntime({WRITER_KEY: writer_by_plan()})
        kit = stage_kit(runtime)

        await build_writer(kit).run(parsed(), make_plan(3))

        prompt_plan_ids = [prompt.split("Plan item: ")[1].split(" ")[0] for prompt, _ in runtime.calls]
        assert prompt_plan_ids == ["PLAN-1", "PLAN-2", "PLAN-3"]
        assert kit["cases"].ids() == ["TC-P1-1", "TC-P1-2", "TC-P2-1", "TC-P2-2", "TC-P3-1", "TC-P3-2"]

    @pytest.mark.asyncio
    async def test_later_slices_see_existing_cases(self, stage_kit):
        runtime = MockLLMRuntime({WRITER_KEY: writer_by_plan()})
        kit = stage_kit(runtime)

        await build_writer(kit).run(parsed(), make_plan(2))

        first, second = (prompt for prompt, _ in runtime.calls)
        assert "No cases generated yet" in first
        assert "Existing cases (avoid duplicates)" in second
        assert "TC-P1-1" in second

    @pytest.mark.asyncio
    async def test_slice_telemetry_and_events(self, stage_kit):
        kit = stage_kit(MockLLMRuntime({WRITER_KEY: writer_by_plan(count=3)}))

        await build_writer(kit).run(parsed(), make_plan(2))

        slices = kit["telemetry"].writer_slices
        assert [(s.plan_id, s.case_count) for s in slices] == [("PLAN-1", 3), ("PLAN-2", 3)]
        assert kit["telemetry"].writer_concurrency == 1
        assert kit["observer"].types() == ["slice_start", "slice_complete"] * 2

    @pytest.mark.asyncio
    async def test_cancel_stops_remaining_slices(self, stage_kit):
        cancel = asyncio.Event()
        kit = stage_kit(MockLLMRuntime({WRITER_KEY: writer_by_plan()}))

        def cancel_after_first(event):
            if event.type == "slice_complete":
                cancel.set()

        kit["events"].observer.on_event = cancel_after_first
        await build_writer(kit, cancel).run(parsed(), make_plan(3))

        assert len(kit["telemetry"].writer_slices) == 1


class TestSliceFailures:
    """Test that one failing slice does not sink the others."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("concurrency", [1, 3])
    async def test_failed_slice_yields_warning_and_no_cases(self, stage_kit, concurrency):
        runtime = MockLLMRuntime({WRITER_KEY: writer_by_plan(fail_for={"PLAN-2"})})
        kit = stage_kit(runtime, request=make_request(writer_concurrency=concurrency))

        await build_writer(kit).run(parsed(), make_plan(3))

        assert set(kit["cases"].ids()) == {"TC-P1-1", "TC-P1-2", "TC-P3-1", "TC-P3-2"}
        warnings = kit["telemetry"].warnings
        assert len(warnings) == 1
        assert warnings[0].startswith("Failed to generate cases for plan PLAN-2: ")

        failed = [s for s in kit["telemetry"].writer_slices if s.plan_id == "PLAN-2"][0]
        assert failed.case_count == 0
        assert failed.warnings == warnings
        assert len(kit["telemetry"].writer_slices) == 3

    @pytest.mark.asyncio
    async def test_duplicate_ids_across_slices_warn_once(self, stage_kit):
        same_cases = json.dumps([detailed_case("TC-001", title="Shared")])
        kit = stage_kit(MockLLMRuntime({WRITER_KEY: same_cases}))

        await build_writer(kit).run(parsed(), make_plan(3))

        assert kit["cases"].ids() == ["TC-001"]
        assert kit["telemetry"].warnings == [
            "Duplicate case id TC-001 detected. Latest slice overwrote the previous version."
        ]

    @pytest.mark.asyncio
    async def test_missing_ids_get_fallbacks(self, stage_kit):
        no_ids = json.dumps([detailed_case(None, title="Anonymous")])
        kit = stage_kit(MockLLMRuntime({WRITER_KEY: no_ids}))

        await build_writer(kit).run(parsed(), make_plan(2))

        assert kit["cases"].ids() == ["TC-001", "TC-002"]
        assert kit["telemetry"].warnings == []


class TestConcurrentWriter:
    """Test writer_concurrency > 1."""

    @pytest.mark.asyncio
    async def test_pool_runs_slices_in_parallel(self, stage_kit):
        runtime = MockLLMRuntime({WRITER_KEY: writer_by_plan()}, delay=0.02)
        kit = stage_kit(runtime, request=make_request(writer_concurrency=3))

        workers = await build_writer(kit).run(parsed(), make_plan(6))

        assert workers == 3
        assert runtime.max_in_flight == 3
        assert len(kit["cases"]) == 12

    @pytest.mark.asyncio
    async def test_concurrency_bounded_by_plan_size(self, stage_kit):
        runtime = MockLLMRuntime({WRITER_KEY: writer_by_plan()}, delay=0.01)
        kit = stage_kit(runtime, request=make_request(writer_concurrency=8))

        workers = await build_writer(kit).run(parsed(), make_plan(2))

        assert workers == 2
        assert kit["telemetry"].writer_concurrency == 2

    @pytest.mark.asyncio
    async def test_concurrent_slices_share_no_history(self, stage_kit):
        runtime = MockLLMRuntime({WRITER_KEY: writer_by_plan()})
        kit = stage_kit(runtime, request=make_request(writer_concurrency=2))

        await build_writer(kit).run(parsed(), make_plan(4))

        assert all("Existing cases" not in prompt for prompt, _ in runtime.calls)

    @pytest.mark.asyncio
    async def test_same_ids_as_sequential(self, stage_kit):
        sequential = stage_kit(MockLLMRuntime({WRITER_KEY: writer_by_plan()}))
        concurrent = stage_kit(
            MockLLMRuntime({WRITER_KEY: writer_by_plan()}, delay=0.01),
            request=make_request(writer_concurrency=4),
        )

        await build_writer(sequential).run(parsed(), make_plan(5))
        await build_writer(concurrent).run(parsed(), make_plan(5))

        assert set(sequential["cases"].ids()) == set(concurrent["cases"].ids())
