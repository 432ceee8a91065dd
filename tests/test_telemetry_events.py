"""Test telemetry collection, progress events and interaction logging."""

import io
import json

import pytest

from qa_pipeline.config import StageTarget
from qa_pipeline.events import (
    CallbackObserver,
    CollectingObserver,
    EventEmitter,
    ProgressEvent,
    StreamObserver,
)
from qa_pipeline.interaction_log import MAX_FIELD_LENGTH, JsonlInteractionLog, truncate
from qa_pipeline.models import ReviewPassTelemetry, WriterSliceTelemetry
from qa_pipeline.telemetry import TelemetryCollector


class TestTelemetryCollector:
    """Test stage timing and the assembled telemetry record."""

    def test_stage_record_kept_when_stage_raises(self):
        telemetry = TelemetryCollector()

        with pytest.raises(RuntimeError):
            with telemetry.stage("planner", StageTarget("openai", "gpt-4o-mini")):
                raise RuntimeError("boom")

        record = telemetry.stage_record("planner")
        assert record.provider == "openai"
        assert record.model == "gpt-4o-mini"
        assert record.duration_ms >= 0

    def test_build_without_warnings(self):
        telemetry = TelemetryCollector()
        with telemetry.stage("writer", StageTarget("openai", "m")):
            pass

        built = telemetry.build(case_count=4)

        assert built.case_count == 4
        assert built.warnings is None
        assert built.planner is None
        assert built.writer.model == "m"

    def test_build_collects_records_and_warnings(self):
        telemetry = TelemetryCollector()
        telemetry.writer_concurrency = 2
        telemetry.record_slice(WriterSliceTelemetry(plan_id="PLAN-1", duration_ms=3.0, case_count=2))
        telemetry.record_pass(ReviewPassTelemetry(pass_number=1, duration_ms=5.0, feedback_count=1, blocking_count=0))
        telemetry.warn("first")
        telemetry.extend_warnings(["second", "third"])

        wire = telemetry.build(case_count=2).model_dump(by_alias=True, exclude_none=True)

        assert wire["writerConcurrency"] == 2
        assert wire["writerSlices"][0]["planId"] == "PLAN-1"
        assert wire["reviewPasses"][0]["pass"] == 1
        assert wire["warnings"] == ["first", "second", "third"]


class TestProgressEvents:
    """Test events, observers and the emitter."""

    def test_event_wire_uses_pass_alias(self):
        event = ProgressEvent(type="pass_start", stage="reviewer", pass_number=2)
        assert event.to_wire() == {"type": "pass_start", "stage": "reviewer", "pass": 2}

    def test_unknown_event_type_rejected(self):
        with pytest.raises(ValueError):
            ProgressEvent(type="progress")

    def test_emitter_forwards_fields(self):
        observer = CollectingObserver()
        EventEmitter(observer).emit("slice_complete", plan_id="PLAN-3", case_count=4, success=True)

        event = observer.events[0]
        assert (event.type, event.plan_id, event.case_count, event.success) == (
            "slice_complete", "PLAN-3", 4, True,
        )

    def test_emitter_swallows_observer_errors(self, caplog):
        def explode(event):
            raise RuntimeError("observer down")

        emitter = EventEmitter(CallbackObserver(explode))
        emitter.emit("stage_start", stage="planner")

        assert "observer down" in caplog.text

    def test_emitter_without_observer(self):
        EventEmitter().emit("final", case_count=0)

    def test_stream_observer_writes_ndjson(self):
        stream = io.StringIO()
        emitter = EventEmitter(StreamObserver(stream))

        emitter.emit("stage_start", stage="writer")
        emitter.emit("chunk_complete", stage="reviewer", pass_number=1, chunk_index=2, success=False)

        lines = [json.loads(line) for line in stream.getvalue().splitlines()]
        assert lines == [
            {"type": "stage_start", "stage": "writer"},
            {"type": "chunk_complete", "stage": "reviewer", "pass": 1, "chunkIndex": 2, "success": False},
        ]


class TestInteractionLog:
    """Test the JSON-lines interaction sink."""

    def test_appends_one_line_per_exchange(self, tmp_path):
        path = tmp_path / "nested" / "ai-interactions.log"
        log = JsonlInteractionLog(path)

        log.record("openai", "gpt-4o-mini", "prompt one", "response one", {"stage": "planner"})
        log.record("openai", None, "prompt two", "response two")

        entries = [json.loads(line) for line in path.read_text().splitlines()]
        assert [e["prompt"] for e in entries] == ["prompt one", "prompt two"]
        assert entries[0]["context"] == {"stage": "planner"}
        assert entries[1]["context"] == {}
        assert "timestamp" in entries[0]

    def test_long_fields_are_truncated(self):
        value = "x" * (MAX_FIELD_LENGTH + 10)
        assert truncate(value).endswith("... [truncated 10 chars]")
        assert truncate("short") == "short"

    def test_unwritable_path_does_not_raise(self, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("not a directory")
        log = JsonlInteractionLog(blocker / "ai-interactions.log")

        log.record("openai", "m", "p", "r")
