"""
Writer Node (LLM-based)

Drafts test cases for each plan item ("slice") and merges them into the
CaseRegistry. Slices run in plan order when concurrency is 1, each seeing the
cases drafted so far; with more workers, a fixed pool pulls plan items from a
shared queue and slices see no history.

A failing slice contributes zero cases and one warning; its siblings carry on.
"""

from __future__ import annotations
import asyncio
import logging
import time
from typing import List, Optional

from ..concurrency import pool_size, run_worker_pool
from ..config import PipelineContext
from ..events import EventEmitter
from ..exceptions import WriterSliceFailure
from ..models import CaseDraft, PlanItem, WriterSliceTelemetry, case_response_for
from ..registry import CaseRegistry
from ..telemetry import TelemetryCollector, elapsed_ms
from ..validation import DEFAULT_RETRY_INSTRUCTION, StructuredInvoker
from .parser import ParsedRequest, to_prompt_json

logger = logging.getLogger(__name__)


class Writer:
    """
    Node 3: Fan plan items out to the writer model and merge the drafts.

    Merges happen on the event loop once a slice's model call returns, so the
    registry needs no locking.
    """

    def __init__(
        self,
        invoker: StructuredInvoker,
        context: PipelineContext,
        registry: CaseRegistry,
        telemetry: TelemetryCollector,
        events: EventEmitter,
        cancel_event: Optional[asyncio.Event] = None,
    ):
        self.invoker = invoker
        self.context = context
        self.registry = registry
        self.telemetry = telemetry
        self.events = events
        self.cancel_event = cancel_event

    def concurrency_for(self, plan: List[PlanItem]) -> int:
        return pool_size(self.context.writer_concurrency, len(plan))

    async def run(self, parsed: ParsedRequest, plan: List[PlanItem]) -> int:
        """
        Draft every plan item and merge the results.

        Args:
            parsed: Shared prompt material
            plan: Plan items with ids assigned

        Returns:
            Number of workers used
        """
        self.registry.begin_stage("writer")
        workers = self.concurrency_for(plan)
        self.telemetry.writer_concurrency = workers

        if not plan:
            logger.info("Writer: empty plan, nothing to draft")
            return workers

        logger.info(f"Writer: drafting {len(plan)} slices with {workers} worker(s)")

        if workers == 1:
            for index, item in enumerate(plan):
                if self._cancelled():
                    logger.info("Writer: cancelled before remaining slices")
                    break
                await self._run_slice(parsed, index, item, self.registry.cases())
        else:
            async def worker(index: int, item: PlanItem) -> None:
                await self._run_slice(parsed, index, item, None)

            await run_worker_pool(plan, worker, workers, cancel_event=self.cancel_event)

        logger.info(f"Writer: {len(self.registry)} cases after merge")
        return workers

    async def _run_slice(
        self,
        parsed: ParsedRequest,
        index: int,
        item: PlanItem,
        existing: Optional[List[CaseDraft]],
    ) -> None:
        self.events.emit("slice_start", stage="writer", plan_id=item.id)
        started = time.perf_counter()
        slice_warnings: List[str] = []
        drafted: List[CaseDraft] = []
        failed = False

        try:
            drafted = await self.draft_slice(parsed, item, existing)
        except Exception as e:
            failed = True
            failure = WriterSliceFailure(item.id, e)
            logger.warning(str(failure))
            slice_warnings.append(str(failure))
        else:
            before = len(self.registry.warnings)
            self.registry.merge(drafted)
            slice_warnings.extend(self.registry.warnings[before:])

        self.telemetry.extend_warnings(slice_warnings)
        duration = elapsed_ms(started)
        self.telemetry.record_slice(WriterSliceTelemetry(
            plan_id=item.id,
            duration_ms=duration,
            case_count=len(drafted),
            warnings=slice_warnings or None,
        ))
        self.events.emit(
            "slice_complete",
            stage="writer",
            plan_id=item.id,
            case_count=len(drafted),
            duration_ms=duration,
            success=not failed,
        )
        logger.debug(f"Writer slice {index + 1} ({item.id}): {len(drafted)} cases in {duration:.0f}ms")

    async def draft_slice(
        self,
        parsed: ParsedRequest,
        item: PlanItem,
        existing: Optional[List[CaseDraft]],
    ) -> List[CaseDraft]:
        """One structured invocation for a plan item."""
        prompt = self.build_prompt(parsed, item, existing)
        response = await self.invoker.invoke(
            self.context.writer,
            case_response_for(self.context.mode),
            prompt,
            DEFAULT_RETRY_INSTRUCTION,
            stage="writer",
            tags={"planId": item.id},
        )
        return list(response.items)

    def build_prompt(
        self,
        parsed: ParsedRequest,
        item: PlanItem,
        existing: Optional[List[CaseDraft]],
    ) -> str:
        """
        Build the drafting prompt for one plan item.

        ``existing`` is None in concurrent runs, where slices share no history.
        """
        if existing:
            history = f"Existing cases (avoid duplicates):\n{to_prompt_json(existing)}"
        else:
            history = "No cases generated yet. Begin fresh coverage for this plan item."

        sections = [
            "You are a senior QA engineer. Generate additional test cases for the provided plan item.",
            f"Plan item: {item.id} - {item.title} ({item.area}). Focus: {item.focus or 'General coverage'}",
            f"Mode: {parsed.mode}. Priority: {parsed.priority_mode}.",
            f"Requirements:\n{parsed.requirements}" if parsed.requirements else "",
            f"Reference documents:\n{parsed.files_summary}" if parsed.files_summary else "",
            parsed.scenario_summary,
            history,
            "Return a JSON array where each object matches the required schema for the "
            "requested mode. Do not include markdown.",
        ]
        return "\n\n".join(section for section in sections if section)

    def _cancelled(self) -> bool:
        return self.cancel_event is not None and self.cancel_event.is_set()
