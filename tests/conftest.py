"""Pytest configuration and fixtures for QA pipeline tests."""

import json
import re
from dataclasses import replace
from typing import Any, Dict, List, Optional

import pytest

from qa_pipeline.config import PipelineSettings, build_context
from qa_pipeline.events import CollectingObserver, EventEmitter
from qa_pipeline.interaction_log import MemoryInteractionLog
from qa_pipeline.models import AgenticOptions, DetailedCase, GenerationRequest
from qa_pipeline.registry import CaseRegistry
from qa_pipeline.runtime import MockLLMRuntime, ProviderRegistry
from qa_pipeline.telemetry import TelemetryCollector
from qa_pipeline.validation import StructuredInvoker

# Distinctive phrases from each stage's prompt, used as mock keywords.
PLANNER_KEY = "expert QA strategist"
WRITER_KEY = "senior QA engineer"
REVIEWER_KEY = "reviewing generated"
REVISION_KEY = "Feedback to address"

PLAN_ID_RE = re.compile(r"Plan item: (\S+) - ")


# ==================== Response builders ====================

def plan_json(count: int, with_ids: bool = True) -> str:
    items = []
    for n in range(1, count + 1):
        item = {"title": f"Slice {n}", "area": f"Area {n}", "focus": f"Focus {n}", "estimatedCases": 2}
        if with_ids:
            item["id"] = f"PLAN-{n}"
        items.append(item)
    return json.dumps({"items": items})


def detailed_case(case_id: Optional[str], title: str = "Case", area: str = "General") -> Dict[str, Any]:
    case = {
        "title": title,
        "area": area,
        "description": f"{title} description",
        "preconditions": ["User is signed in"],
        "testData": ["email=user@example.com"],
        "steps": [{"number": 1, "description": "Open the page"}, {"number": 2, "description": "Submit"}],
        "expectedResult": "Request succeeds",
    }
    if case_id is not None:
        case["id"] = case_id
    return case


def cases_for_plan(plan_id: str, count: int = 2) -> List[Dict[str, Any]]:
    slug = plan_id.replace("PLAN-", "P")
    return [detailed_case(f"TC-{slug}-{n}", title=f"{plan_id} case {n}") for n in range(1, count + 1)]


def writer_by_plan(count: int = 2, fail_for: Optional[set] = None):
    """Writer response callable: cases derived from the plan id in the prompt."""
    fail_for = fail_for or set()

    def respond(prompt: str) -> str:
        plan_id = PLAN_ID_RE.search(prompt).group(1)
        if plan_id in fail_for:
            return "I cannot help with that."
        return json.dumps(cases_for_plan(plan_id, count))

    return respond


def review_json(feedback: List[Dict[str, Any]], summary: str = "Reviewed") -> str:
    return json.dumps({"feedback": feedback, "summary": summary})


def feedback_item(case_id: Optional[str], severity: str = "major", summary: str = "Missing check") -> Dict[str, Any]:
    item = {"severity": severity, "summary": summary, "suggestion": "Add the check"}
    if case_id is not None:
        item["caseId"] = case_id
    return item


def revision_echo(prompt: str) -> str:
    """Revision response callable: returns every current case with a revised title."""
    section = prompt.split("Current cases:\n", 1)[1].split("\n\nFeedback to address:", 1)[0]
    cases = json.loads(section)
    for case in cases:
        case["title"] = f"{case['title']} (revised)"
    return json.dumps(cases)


# ==================== Fixtures ====================

@pytest.fixture
def settings():
    """Settings with interaction logging off and fast timeouts."""
    return PipelineSettings(interaction_logging=False, invocation_timeout=5.0)


@pytest.fixture
def sink():
    return MemoryInteractionLog()


@pytest.fixture
def observer():
    return CollectingObserver()


def make_registry(runtime: MockLLMRuntime) -> ProviderRegistry:
    registry = ProviderRegistry(env={})
    registry.register_runtime("openai", runtime)
    return registry


def make_request(
    agentic: bool = True,
    mode: str = "detailed",
    requirements: str = "Users can reset their password by email.",
    **options,
) -> GenerationRequest:
    agentic_options = AgenticOptions(enable_agentic=True, **options) if agentic else None
    return GenerationRequest(
        requirements=requirements,
        mode=mode,
        provider="openai",
        agentic_options=agentic_options,
    )


@pytest.fixture
def stage_kit(settings, sink, observer):
    """Factory wiring a mock runtime into everything a single stage needs."""

    def build(runtime: MockLLMRuntime, request: Optional[GenerationRequest] = None, **setting_overrides):
        stage_settings = replace(settings, **setting_overrides)
        registry = make_registry(runtime)
        request = request or make_request()
        context = build_context(request, stage_settings, registry)
        return {
            "registry": registry,
            "context": context,
            "invoker": StructuredInvoker(registry, sink=sink, timeout=context.invocation_timeout),
            "cases": CaseRegistry(context.mode),
            "telemetry": TelemetryCollector(),
            "events": EventEmitter(observer),
            "observer": observer,
            "sink": sink,
        }

    return build


def seed_cases(registry: CaseRegistry, count: int) -> List[str]:
    ids = [f"TC-{n:03d}" for n in range(1, count + 1)]
    for case_id in ids:
        registry.insert(DetailedCase.model_validate(detailed_case(case_id, title=f"Seed {case_id}")))
    return ids
