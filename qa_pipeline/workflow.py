"""
Agentic QA Pipeline Workflow

Orchestrates the fixed pipeline:
1. RequestParser → 2. Planner → 3. Writer → 4. Reviewer → response assembly

or, when agentic mode is off, a single SingleShotGenerator call. Planner
failures abort the run; failures in later stages are downgraded to warnings
on the response.
"""

from __future__ import annotations
import asyncio
import logging
import time
from typing import Any, Dict, List, Optional, Union

from .config import PipelineContext, PipelineSettings, StageTarget, build_context, merged_settings
from .events import EventEmitter, LoggingObserver, ProgressObserver
from .interaction_log import InteractionSink, JsonlInteractionLog, NullInteractionLog
from .models import GenerationRequest, GenerationResponse, PipelineTelemetry, PlanItem
from .nodes import ParsedRequest, Planner, RequestParser, Reviewer, ReviewOutcome, SingleShotGenerator, Writer
from .registry import CaseRegistry
from .runtime import ProviderRegistry
from .telemetry import TelemetryCollector, elapsed_ms
from .validation import StructuredInvoker

logger = logging.getLogger(__name__)

CANCELLED_WARNING = "Pipeline cancelled"


class PipelineOrchestrator:
    """
    Main orchestrator for agentic test case generation.

    Each ``run`` builds its own context, case registry and telemetry, so one
    orchestrator can serve any number of sequential or concurrent runs.
    """

    def __init__(
        self,
        registry: Optional[ProviderRegistry] = None,
        settings: Optional[PipelineSettings] = None,
        observer: Optional[ProgressObserver] = None,
        sink: Optional[InteractionSink] = None,
    ):
        """
        Args:
            registry: Provider registry (reads credentials from the environment if None)
            settings: Pipeline settings (merged from config files and env if None)
            observer: Receives progress events (logged when the request asks for
                streamProgress, otherwise discarded, if None)
            sink: Interaction log (JSONL file per settings if None)
        """
        self.registry = registry or ProviderRegistry()
        self.settings = settings or merged_settings()
        self.observer = observer
        if sink is None:
            sink = (
                JsonlInteractionLog(self.settings.log_file)
                if self.settings.interaction_logging else NullInteractionLog()
            )
        self.sink = sink

    async def run(
        self,
        request: GenerationRequest,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> GenerationResponse:
        """
        Execute one generation request.

        Args:
            request: The generation request
            cancel_event: When set, no new slices, chunks or passes are started

        Returns:
            GenerationResponse

        Raises:
            RequestValidationError: nothing to generate from
            ConfigurationError: a required provider has no credentials
            PlannerFailure: the planner stage failed
        """
        parsed = RequestParser.process(request)
        observer = self.observer
        if observer is None and request.agentic_options and request.agentic_options.stream_progress:
            observer = LoggingObserver()
        events = EventEmitter(observer)

        agentic = bool(request.agentic_options and request.agentic_options.enable_agentic)
        if not agentic:
            return await self._run_single_shot(request, parsed, events)

        context = build_context(request, self.settings, self.registry)
        providers = [context.planner.provider, context.writer.provider]
        if context.max_review_passes > 0:
            providers.append(context.reviewer.provider)
        self.registry.ensure_configured(providers)

        logger.info(
            f"Starting agentic run: mode={context.mode}, planner={context.planner.model}, "
            f"writer={context.writer.model}, reviewer={context.reviewer.model}"
        )

        try:
            return await self._run_agentic(context, parsed, events, cancel_event)
        except Exception as e:
            logger.error(f"Pipeline failed: {e}")
            events.emit("error", message=str(e))
            raise

    async def _run_agentic(
        self,
        context: PipelineContext,
        parsed: ParsedRequest,
        events: EventEmitter,
        cancel_event: Optional[asyncio.Event],
    ) -> GenerationResponse:
        telemetry = TelemetryCollector()
        cases = CaseRegistry(context.mode)
        invoker = StructuredInvoker(
            self.registry,
            sink=self.sink,
            timeout=context.invocation_timeout,
            temperature=context.temperature,
            max_tokens=context.max_tokens,
        )

        # Stage 1: Planner (fatal on failure)
        events.emit("stage_start", stage="planner")
        with telemetry.stage("planner", context.planner):
            plan = await Planner(invoker, context).plan(parsed)
        events.emit("stage_complete", stage="planner", case_count=len(plan))

        # Stage 2: Writer
        events.emit("stage_start", stage="writer")
        with telemetry.stage("writer", context.writer):
            await Writer(invoker, context, cases, telemetry, events, cancel_event).run(parsed, plan)
        events.emit("stage_complete", stage="writer", case_count=len(cases))

        # Stage 3: Reviewer
        outcome = ReviewOutcome()
        if context.max_review_passes > 0 and len(cases) > 0:
            events.emit("stage_start", stage="reviewer")
            with telemetry.stage("reviewer", context.reviewer):
                outcome = await Reviewer(invoker, context, cases, telemetry, events, cancel_event).run(plan)
            events.emit("stage_complete", stage="reviewer", case_count=len(cases))

        if cancel_event is not None and cancel_event.is_set():
            logger.warning(CANCELLED_WARNING)
            telemetry.warn(CANCELLED_WARNING)

        response = self._assemble(cases, plan, outcome, telemetry)
        events.emit("final", case_count=len(response.test_cases), success=True)
        self._log_summary(response)
        return response

    async def _run_single_shot(
        self,
        request: GenerationRequest,
        parsed: ParsedRequest,
        events: EventEmitter,
    ) -> GenerationResponse:
        started = time.perf_counter()
        provider = request.provider or self.settings.provider
        target = StageTarget(provider, request.model or self.registry.default_model(provider))
        self.registry.ensure_configured([provider])

        generator = SingleShotGenerator(
            self.registry,
            sink=self.sink,
            temperature=self.settings.temperature,
            max_tokens=self.settings.max_tokens,
            timeout=self.settings.invocation_timeout,
        )

        events.emit("stage_start", stage="single-shot")
        try:
            response = await generator.generate(parsed, target)
        except Exception as e:
            logger.error(f"Single-shot generation failed: {e}")
            events.emit("error", message=str(e))
            raise
        events.emit("stage_complete", stage="single-shot", case_count=len(response.test_cases))

        response.telemetry = PipelineTelemetry(
            total_duration_ms=elapsed_ms(started),
            case_count=len(response.test_cases),
        )
        events.emit("final", case_count=len(response.test_cases), success=response.error is None)
        return response

    @staticmethod
    def _assemble(
        cases: CaseRegistry,
        plan: List[PlanItem],
        outcome: ReviewOutcome,
        telemetry: TelemetryCollector,
    ) -> GenerationResponse:
        final_cases = cases.cases()
        return GenerationResponse(
            test_cases=final_cases,
            plan=plan,
            review_feedback=outcome.feedback,
            passes_executed=outcome.passes_executed,
            warnings=list(telemetry.warnings) or None,
            telemetry=telemetry.build(len(final_cases)),
        )

    def _log_summary(self, response: GenerationResponse) -> None:
        summary_lines = [
            "Agentic generation complete",
            f"  • Plan items: {len(response.plan or [])}",
            f"  • Test cases: {len(response.test_cases)}",
            f"  • Review passes: {response.passes_executed or 0}",
            f"  • Feedback items: {len(response.review_feedback or [])}",
            f"  • Warnings: {len(response.warnings or [])}",
        ]
        if response.telemetry is not None:
            summary_lines.append(f"  • Duration: {response.telemetry.total_duration_ms:.0f}ms")
        logger.info("\n".join(summary_lines))


# Convenience function

def generate_test_cases(
    request: Union[GenerationRequest, Dict[str, Any]],
    registry: Optional[ProviderRegistry] = None,
    settings: Optional[PipelineSettings] = None,
    observer: Optional[ProgressObserver] = None,
    sink: Optional[InteractionSink] = None,
) -> GenerationResponse:
    """Run one request to completion from synchronous code."""
    if not isinstance(request, GenerationRequest):
        request = GenerationRequest.model_validate(request)
    orchestrator = PipelineOrchestrator(registry, settings, observer, sink)
    return asyncio.run(orchestrator.run(request))
