"""Telemetry collection for one pipeline run."""

from __future__ import annotations
import time
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional

from .config import StageTarget
from .models import (
    PipelineTelemetry,
    ReviewPassTelemetry,
    StageTelemetry,
    WriterSliceTelemetry,
)


def elapsed_ms(started: float) -> float:
    """Milliseconds since a ``time.perf_counter()`` reading."""
    return round((time.perf_counter() - started) * 1000, 3)


class TelemetryCollector:
    """
    Accumulates durations and counts per stage and per unit of work.

    Records are append-only; ``build()`` reads them once when the response
    is assembled.
    """

    def __init__(self):
        self._started = time.perf_counter()
        self._stages: Dict[str, StageTelemetry] = {}
        self.writer_slices: List[WriterSliceTelemetry] = []
        self.review_passes: List[ReviewPassTelemetry] = []
        self.warnings: List[str] = []
        self.writer_concurrency: Optional[int] = None

    @contextmanager
    def stage(self, name: str, target: StageTarget) -> Iterator[None]:
        """Time a stage; the record is kept even when the stage raises."""
        started = time.perf_counter()
        try:
            yield
        finally:
            self._stages[name] = StageTelemetry(
                provider=target.provider,
                model=target.model,
                duration_ms=elapsed_ms(started),
            )

    def stage_record(self, name: str) -> Optional[StageTelemetry]:
        return self._stages.get(name)

    def record_slice(self, record: WriterSliceTelemetry) -> None:
        self.writer_slices.append(record)

    def record_pass(self, record: ReviewPassTelemetry) -> None:
        self.review_passes.append(record)

    def warn(self, message: str) -> None:
        self.warnings.append(message)

    def extend_warnings(self, messages: List[str]) -> None:
        for message in messages:
            self.warn(message)

    def build(self, case_count: int) -> PipelineTelemetry:
        return PipelineTelemetry(
            total_duration_ms=elapsed_ms(self._started),
            case_count=case_count,
            writer_concurrency=self.writer_concurrency,
            planner=self._stages.get("planner"),
            writer=self._stages.get("writer"),
            reviewer=self._stages.get("reviewer"),
            writer_slices=list(self.writer_slices),
            review_passes=list(self.review_passes),
            warnings=list(self.warnings) or None,
        )
