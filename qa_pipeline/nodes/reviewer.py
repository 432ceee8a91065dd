"""
Reviewer Node (LLM-based)

Runs up to ``max_review_passes`` review passes over the drafted cases. Each
pass asks the reviewer model for feedback; when any of it is blocking (major
or critical) the blocking feedback is chunked and revised by the writer model,
and the revised cases overwrite the registry entries before the next pass.

Pass flow:

    PASS_START -> REVIEW_INVOKED -> NO_BLOCKING -> DONE
                                 -> BLOCKING -> CHUNK -> REVISE -> PASS_START
                                                                -> DONE (budget spent / fail-fast)

A failed review call ends the loop without counting the pass. The first
failed revision chunk stops new chunks from being claimed; chunks already in
flight finish and are merged.
"""

from __future__ import annotations
import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import List, Optional

from ..chunker import chunk_feedback
from ..concurrency import pool_size, run_worker_pool
from ..config import PipelineContext
from ..events import EventEmitter
from ..exceptions import ReviewPassFailure, RevisionChunkFailure
from ..models import (
    PlanItem,
    ReviewFeedbackItem,
    ReviewPassTelemetry,
    ReviewResult,
    RevisionChunk,
    case_response_for,
)
from ..registry import CaseRegistry
from ..telemetry import TelemetryCollector, elapsed_ms
from ..validation import DEFAULT_RETRY_INSTRUCTION, StructuredInvoker
from .parser import to_prompt_json

logger = logging.getLogger(__name__)

# Upper bound on concurrent revision calls, whatever the settings ask for.
REVISION_CONCURRENCY_CAP = 3

REVIEW_RETRY_INSTRUCTION = """IMPORTANT: The previous response did not match the review schema.
Return ONLY a JSON object of the form {"feedback": [...], "summary": "..."}.
Each feedback entry has "caseId", "severity" (info, minor, major or critical), "summary" and "suggestion".
No markdown, no commentary."""


@dataclass
class ReviewOutcome:
    """What the review loop produced."""
    feedback: List[ReviewFeedbackItem] = field(default_factory=list)
    passes_executed: int = 0


class Reviewer:
    """
    Node 4: Review, chunk blocking feedback, and revise until clean or out of passes.
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

    async def run(self, plan: List[PlanItem]) -> ReviewOutcome:
        """
        Execute the review loop against the current registry contents.

        Args:
            plan: The run's plan, shown to the reviewer for alignment checks

        Returns:
            ReviewOutcome with every feedback item received and the passes counted
        """
        outcome = ReviewOutcome()
        max_passes = self.context.max_review_passes

        if max_passes <= 0:
            logger.info("Reviewer: review disabled")
            return outcome
        if len(self.registry) == 0:
            logger.info("Reviewer: no cases to review")
            return outcome

        self.registry.begin_stage("reviewer")

        for pass_number in range(1, max_passes + 1):
            if self._cancelled():
                logger.info(f"Reviewer: cancelled before pass {pass_number}")
                break

            self.events.emit("pass_start", stage="reviewer", pass_number=pass_number)
            started = time.perf_counter()

            try:
                result = await self.review(plan, pass_number)
            except Exception as e:
                failure = ReviewPassFailure(pass_number, e)
                logger.warning(str(failure))
                self.telemetry.warn(str(failure))
                self.events.emit(
                    "pass_complete",
                    stage="reviewer",
                    pass_number=pass_number,
                    duration_ms=elapsed_ms(started),
                    success=False,
                    message=str(failure),
                )
                break

            feedback = result.feedback
            blocking = [item for item in feedback if item.is_blocking]
            outcome.feedback.extend(feedback)
            outcome.passes_executed = pass_number
            logger.info(
                f"Reviewer pass {pass_number}: {len(feedback)} feedback items, {len(blocking)} blocking"
            )

            chunks: List[RevisionChunk] = []
            revision_failed = False
            if blocking:
                chunks = chunk_feedback(
                    blocking,
                    self.context.revision_soft_limit,
                    self.context.revision_hard_limit,
                )
                revision_failed = await self.revise(chunks, pass_number)

            duration = elapsed_ms(started)
            self.telemetry.record_pass(ReviewPassTelemetry(
                pass_number=pass_number,
                duration_ms=duration,
                feedback_count=len(feedback),
                blocking_count=len(blocking),
                chunk_count=len(chunks),
            ))
            self.events.emit(
                "pass_complete",
                stage="reviewer",
                pass_number=pass_number,
                feedback_count=len(feedback),
                blocking_count=len(blocking),
                duration_ms=duration,
                success=not revision_failed,
            )

            if not blocking:
                logger.info(f"Reviewer: no blocking feedback in pass {pass_number}, stopping")
                break
            if revision_failed:
                logger.info(f"Reviewer: stopping after revision failure in pass {pass_number}")
                break

        return outcome

    async def review(self, plan: List[PlanItem], pass_number: int) -> ReviewResult:
        """One review call over the full plan and current case set."""
        prompt = self.build_review_prompt(plan, pass_number)
        return await self.invoker.invoke(
            self.context.reviewer,
            ReviewResult,
            prompt,
            REVIEW_RETRY_INSTRUCTION,
            stage="reviewer",
            tags={"pass": pass_number},
        )

    async def revise(self, chunks: List[RevisionChunk], pass_number: int) -> bool:
        """
        Run revision chunks on a small worker pool with fail-fast.

        Returns:
            True if any chunk failed
        """
        if not chunks:
            return False

        stop = asyncio.Event()
        workers = pool_size(
            self.context.writer_concurrency, len(chunks), cap=REVISION_CONCURRENCY_CAP
        )
        logger.info(f"Reviewer pass {pass_number}: revising {len(chunks)} chunk(s) with {workers} worker(s)")

        async def worker(index: int, chunk: RevisionChunk) -> None:
            chunk_number = index + 1
            self.events.emit(
                "chunk_start", stage="reviewer", pass_number=pass_number, chunk_index=chunk_number
            )
            started = time.perf_counter()
            try:
                revised = await self.revise_chunk(chunk, pass_number)
            except Exception as e:
                stop.set()
                failure = RevisionChunkFailure(chunk_number, pass_number, e)
                logger.warning(str(failure))
                self.telemetry.warn(str(failure))
                self.events.emit(
                    "chunk_complete",
                    stage="reviewer",
                    pass_number=pass_number,
                    chunk_index=chunk_number,
                    duration_ms=elapsed_ms(started),
                    success=False,
                    message=str(failure),
                )
                return

            merged = sum(1 for case in revised if self.registry.revise(case))
            self.events.emit(
                "chunk_complete",
                stage="reviewer",
                pass_number=pass_number,
                chunk_index=chunk_number,
                case_count=merged,
                duration_ms=elapsed_ms(started),
                success=True,
            )

        await run_worker_pool(chunks, worker, workers, stop_event=stop, cancel_event=self.cancel_event)
        return stop.is_set()

    async def revise_chunk(self, chunk: RevisionChunk, pass_number: int):
        """Ask the writer model to rewrite the chunk's cases against its feedback."""
        # a chunk with only general feedback applies to every case
        case_ids = chunk.case_ids or self.registry.ids()
        cases = [self.registry.get(case_id) for case_id in case_ids if case_id in self.registry]
        if not cases:
            logger.debug(f"Revision chunk for {case_ids} references no known cases; skipping")
            return []

        prompt = self.build_revision_prompt(cases, chunk.feedback, pass_number)
        response = await self.invoker.invoke(
            self.context.writer,
            case_response_for(self.context.mode),
            prompt,
            DEFAULT_RETRY_INSTRUCTION,
            stage="writer-revision",
            tags={"pass": pass_number, "caseIds": case_ids},
        )
        return list(response.items)

    def build_review_prompt(self, plan: List[PlanItem], pass_number: int) -> str:
        sections = [
            f"You are reviewing generated {self.context.mode} test cases. Pass number: {pass_number}.",
            "Assess coverage completeness, edge cases, and alignment with the plan. "
            "Identify missing or incorrect validations.",
            f"Plan:\n{to_prompt_json(plan)}",
            f"Current test cases:\n{to_prompt_json(self.registry.cases())}",
            'Return JSON with a "feedback" array of issues (caseId, severity, summary, suggestion). '
            "Severity must be one of info, minor, major, critical.",
        ]
        return "\n\n".join(sections)

    def build_revision_prompt(self, cases, feedback: List[ReviewFeedbackItem], pass_number: int) -> str:
        sections = [
            "Revise the following test cases to resolve the reviewer feedback. Only return cases that change.",
            f"Pass number: {pass_number}. Mode: {self.context.mode}.",
            f"Current cases:\n{to_prompt_json(cases)}",
            f"Feedback to address:\n{to_prompt_json(feedback)}",
            "Return a JSON array of updated cases adhering to the required schema. "
            "Include all referenced caseIds exactly once.",
        ]
        return "\n\n".join(sections)

    def _cancelled(self) -> bool:
        return self.cancel_event is not None and self.cancel_event.is_set()
