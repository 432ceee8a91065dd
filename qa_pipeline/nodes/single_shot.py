"""
SingleShotGenerator Node (LLM-based)

The non-agentic path: one prompt, one model call, lenient mapping of whatever
array comes back. Bad model output is reported on the response (``error`` and
``debug``) instead of being raised.
"""

from __future__ import annotations
import asyncio
import json
import logging
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from ..config import StageTarget
from ..exceptions import InvocationTimeoutError
from ..interaction_log import InteractionSink, NullInteractionLog
from ..models import CaseDraft, DebugInfo, DetailedCase, GenerationResponse, HighLevelCase
from ..runtime import ProviderRegistry
from .parser import ParsedRequest, describe_priority

logger = logging.getLogger(__name__)

EMPTY_RESPONSE_ERROR = "Received an empty response from the model"
PARSE_ERROR = "Failed to parse JSON response"
NOT_ARRAY_ERROR = "Model response was not an array"


def build_test_case_prompt(parsed: ParsedRequest) -> str:
    """Build the single-shot prompt for the requested mode and priority."""
    high_level = parsed.mode == "high-level"
    priority = describe_priority(parsed.priority_mode, high_level)

    if high_level:
        mode_instructions = (
            "Return high-level test scenarios. Focus on what to test, group scenarios by "
            f"functional area, and avoid implementation specifics. Prioritize {priority}."
        )
        response_shape = "Each array element must include: id, title, area, scenario."
    else:
        mode_instructions = (
            "Return detailed executable test cases. Include steps, test data, preconditions, "
            f"and expected results. Prioritize {priority}."
        )
        response_shape = (
            "Each array element must include: id, title, area, description, preconditions (array), "
            "testData (array), steps (array of { number, description }), expectedResult."
        )

    sections = [
        "You must produce a JSON array that matches the required schema.",
        mode_instructions,
        response_shape,
        f"Project requirements:\n{parsed.requirements}"
        if parsed.requirements else "No additional written requirements were supplied.",
        f"Reference material extracted from uploaded files:\n{parsed.files_summary}"
        if parsed.files_summary else "",
        parsed.scenario_summary,
        "Ensure the JSON is parseable and do not wrap it in markdown fences.",
    ]
    return "\n\n".join(section for section in sections if section)


def _string_list(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [str(entry) for entry in value]


def _map_steps(value: Any) -> List[Dict[str, Any]]:
    if not isinstance(value, list):
        return []
    steps = []
    for position, step in enumerate(value, 1):
        if isinstance(step, str):
            steps.append({"number": position, "description": step})
            continue
        step = step if isinstance(step, dict) else {}
        number = step.get("number")
        steps.append({
            "number": number if isinstance(number, int) and number > 0 else position,
            "description": step.get("description") or "",
        })
    return [step for step in steps if step["description"]]


def map_model_response_to_test_cases(parsed: List[Any], mode: str) -> List[CaseDraft]:
    """
    Leniently map a parsed model array onto case models.

    Missing ids become TS-/TC-NNN by position, missing titles get a numbered
    placeholder, and the area defaults to "General". Entries that still
    cannot be validated are skipped with a warning.
    """
    cases: List[CaseDraft] = []
    for position, item in enumerate(parsed, 1):
        item = item if isinstance(item, dict) else {}
        try:
            if mode == "high-level":
                cases.append(HighLevelCase(
                    id=str(item.get("id") or f"TS-{position:03d}"),
                    title=item.get("title") or f"Scenario {position}",
                    area=item.get("area") or "General",
                    scenario=item.get("scenario") or item.get("description") or "Scenario details not provided",
                    description="",
                ))
            else:
                cases.append(DetailedCase(
                    id=str(item.get("id") or f"TC-{position:03d}"),
                    title=item.get("title") or f"Test Case {position}",
                    area=item.get("area") or "General",
                    description=item.get("description") or "",
                    preconditions=_string_list(item.get("preconditions")),
                    test_data=_string_list(item.get("testData")),
                    steps=_map_steps(item.get("steps")),
                    expected_result=item.get("expectedResult") or "",
                ))
        except ValidationError as e:
            logger.warning(f"Skipping unmappable case at position {position}: {e}")
    return cases


class SingleShotGenerator:
    """
    Node 5: Non-agentic generation with a single model call.
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        sink: Optional[InteractionSink] = None,
        temperature: float = 0.1,
        max_tokens: int = 4096,
        timeout: float = 120.0,
    ):
        self.registry = registry
        self.sink = sink or NullInteractionLog()
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout = timeout

    async def generate(self, parsed: ParsedRequest, target: StageTarget) -> GenerationResponse:
        """
        Generate cases in one call.

        Returns:
            GenerationResponse with test cases, or with ``error``/``debug`` set
            when the model output was unusable

        Raises:
            LLMRuntimeError: transport failure or timeout
        """
        prompt = build_test_case_prompt(parsed)
        runtime = self.registry.resolve(target.provider)
        try:
            raw = await asyncio.wait_for(
                runtime.generate(
                    prompt,
                    model=target.model,
                    temperature=self.temperature,
                    max_tokens=self.max_tokens,
                ),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            raise InvocationTimeoutError(self.timeout, "single-shot") from e
        raw_output = (raw or "").strip()
        await self._record(target, prompt, raw_output)

        if not raw_output:
            logger.warning("Single-shot generation returned an empty response")
            return GenerationResponse(error=EMPTY_RESPONSE_ERROR)

        try:
            data = json.loads(raw_output)
        except json.JSONDecodeError as e:
            logger.warning(f"Single-shot response is not valid JSON: {e}")
            return GenerationResponse(
                error=PARSE_ERROR,
                debug=DebugInfo(raw_response=raw_output, parse_error=str(e)),
            )

        if not isinstance(data, list):
            return GenerationResponse(
                error=NOT_ARRAY_ERROR,
                debug=DebugInfo(raw_response=raw_output, parsed_type=type(data).__name__),
            )

        cases = map_model_response_to_test_cases(data, parsed.mode)
        logger.info(f"Single-shot generation produced {len(cases)} cases")
        return GenerationResponse(test_cases=cases)

    async def _record(self, target: StageTarget, prompt: str, raw: str) -> None:
        context = {"type": "test-case-generation", "stage": "single-shot"}
        try:
            await asyncio.to_thread(self.sink.record, target.provider, target.model, prompt, raw, context)
        except Exception as e:
            logger.warning(f"Interaction log sink failed: {e}")
