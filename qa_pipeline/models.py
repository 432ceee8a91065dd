"""
Data models and schemas for the agentic QA pipeline.

These Pydantic models define the structure for requests, responses, and the
intermediate artifacts passed between the planner, writer, and reviewer stages.
Wire names are camelCase (what the model emits and what the response
serialises to); Python attributes are snake_case.
"""

from __future__ import annotations
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Type, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


TestCaseMode = Literal["high-level", "detailed"]
PriorityMode = Literal["comprehensive", "core-functionality"]
Provider = Literal["openai", "gemini", "openrouter", "local"]


class WireModel(BaseModel):
    """Base model that reads and writes camelCase wire names."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class FrozenWireModel(WireModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str) and not value.strip():
        return None
    return value


# ==================== Enums ====================

class Severity(str, Enum):
    INFO = "info"
    MINOR = "minor"
    MAJOR = "major"
    CRITICAL = "critical"


SEVERITY_RANK: Dict[Severity, int] = {
    Severity.INFO: 0,
    Severity.MINOR: 1,
    Severity.MAJOR: 2,
    Severity.CRITICAL: 3,
}

BLOCKING_SEVERITIES = frozenset({Severity.MAJOR, Severity.CRITICAL})


# ==================== Input Models ====================

class UploadedFile(WireModel):
    """Pre-extracted file reference. Only the bounded preview is used in prompts."""
    name: str = Field(..., description="Original file name")
    type: str = Field("", description="MIME type or extension")
    size_bytes: Optional[int] = Field(None, description="File size in bytes")
    preview_text: str = Field("", description="Extracted text preview")


class AgenticOptions(WireModel):
    """Per-request switches for the plan → draft → review pipeline."""
    enable_agentic: bool = Field(False, description="Run the multi-stage pipeline")
    planner_provider: Optional[Provider] = None
    planner_model: Optional[str] = None
    writer_provider: Optional[Provider] = None
    writer_model: Optional[str] = None
    reviewer_provider: Optional[Provider] = None
    reviewer_model: Optional[str] = None
    max_review_passes: Optional[int] = Field(None, ge=0, description="0 disables review")
    writer_concurrency: Optional[int] = Field(None, description="Concurrent writer slices, clamped to at least 1")
    stream_progress: bool = Field(False, description="Emit progress events while running")


# ==================== Case Models ====================

class TestStep(WireModel):
    """One numbered step of a detailed test case."""
    number: int = Field(..., gt=0)
    description: str = Field(..., min_length=1)


class HighLevelCase(WireModel):
    """High-level test scenario: what to test, grouped by functional area."""
    id: Optional[str] = Field(None, description="Scenario ID (TS-001, ...)")
    title: str = Field(..., min_length=1)
    area: str = Field(..., min_length=1)
    scenario: str = Field(..., min_length=1)
    description: str = Field("")

    @field_validator("id", mode="before")
    @classmethod
    def normalize_id(cls, v):
        return _blank_to_none(v)

    @field_validator("description", mode="before")
    @classmethod
    def default_description(cls, v):
        return "" if v is None else v


class DetailedCase(WireModel):
    """Executable test case with preconditions, data, steps, and expected result."""
    id: Optional[str] = Field(None, description="Test case ID (TC-001, ...)")
    title: str = Field(..., min_length=1)
    area: str = Field(..., min_length=1)
    description: str = Field("")
    preconditions: List[str] = Field(default_factory=list)
    test_data: List[str] = Field(default_factory=list)
    steps: List[TestStep] = Field(default_factory=list)
    expected_result: str = Field("")

    @field_validator("id", mode="before")
    @classmethod
    def normalize_id(cls, v):
        return _blank_to_none(v)

    @field_validator("description", "expected_result", mode="before")
    @classmethod
    def default_text(cls, v):
        return "" if v is None else v

    @field_validator("preconditions", "test_data", mode="before")
    @classmethod
    def default_list(cls, v):
        return [] if v is None else v

    @field_validator("steps", mode="before")
    @classmethod
    def coerce_steps(cls, v):
        if v is None:
            return []
        if not isinstance(v, list):
            return v
        steps = []
        for position, step in enumerate(v, 1):
            if isinstance(step, str):
                steps.append({"number": position, "description": step})
            else:
                steps.append(step)
        return steps


CaseDraft = Union[HighLevelCase, DetailedCase]


# ==================== Plan & Review Models ====================

class PlanItem(FrozenWireModel):
    """One unit of planned coverage produced by the planner."""
    id: Optional[str] = Field(None, description="Plan item ID (PLAN-1, ...)")
    title: str = Field(..., min_length=1)
    area: str = Field(..., min_length=1)
    focus: Optional[str] = None
    estimated_cases: Optional[int] = Field(None, gt=0)
    chunk_refs: Optional[List[str]] = None
    notes: Optional[str] = None

    @field_validator("id", mode="before")
    @classmethod
    def normalize_id(cls, v):
        return _blank_to_none(v)


class ReviewFeedbackItem(FrozenWireModel):
    """A single reviewer finding. Feedback without a case id is general."""
    case_id: Optional[str] = None
    issue_type: Optional[str] = None
    severity: Severity = Severity.INFO
    summary: str = Field(..., min_length=1)
    suggestion: Optional[str] = None

    @field_validator("case_id", mode="before")
    @classmethod
    def normalize_case_id(cls, v):
        return _blank_to_none(v)

    @field_validator("severity", mode="before")
    @classmethod
    def normalize_severity(cls, v):
        if v is None:
            return Severity.INFO
        if isinstance(v, str):
            return v.strip().lower() or Severity.INFO
        return v

    @property
    def is_blocking(self) -> bool:
        return self.severity in BLOCKING_SEVERITIES


class RevisionChunk(FrozenWireModel):
    """Work unit for one revision call."""
    feedback: List[ReviewFeedbackItem] = Field(default_factory=list)
    case_ids: List[str] = Field(default_factory=list)


# ==================== LLM Response Schemas ====================

class ItemListResponse(WireModel):
    """Accepts either a bare JSON array or an object with an ``items`` array."""

    @model_validator(mode="before")
    @classmethod
    def wrap_bare_list(cls, data):
        if isinstance(data, list):
            return {"items": data}
        return data


class PlanResponse(ItemListResponse):
    items: List[PlanItem]


class HighLevelCaseResponse(ItemListResponse):
    items: List[HighLevelCase]


class DetailedCaseResponse(ItemListResponse):
    items: List[DetailedCase]


class ReviewResult(WireModel):
    """Expected JSON schema for a review pass."""
    feedback: List[ReviewFeedbackItem] = Field(default_factory=list)
    summary: Optional[str] = None

    @field_validator("feedback", mode="before")
    @classmethod
    def default_feedback(cls, v):
        return [] if v is None else v


# ==================== Telemetry Models ====================

class WriterSliceTelemetry(FrozenWireModel):
    plan_id: str
    duration_ms: float
    case_count: int
    warnings: Optional[List[str]] = None


class ReviewPassTelemetry(FrozenWireModel):
    pass_number: int = Field(..., alias="pass")
    duration_ms: float
    feedback_count: int
    blocking_count: int
    chunk_count: int = 0


class StageTelemetry(FrozenWireModel):
    provider: str
    model: str
    duration_ms: float


class PipelineTelemetry(WireModel):
    """Timing and count records describing how a run executed."""
    total_duration_ms: float
    case_count: int = 0
    writer_concurrency: Optional[int] = None
    planner: Optional[StageTelemetry] = None
    writer: Optional[StageTelemetry] = None
    reviewer: Optional[StageTelemetry] = None
    writer_slices: Optional[List[WriterSliceTelemetry]] = None
    review_passes: Optional[List[ReviewPassTelemetry]] = None
    warnings: Optional[List[str]] = None


# ==================== Request / Response ====================

class GenerationRequest(WireModel):
    """Complete input for one generation call."""
    requirements: str = Field("", description="Free-text requirements")
    files: List[UploadedFile] = Field(default_factory=list)
    selected_scenarios: List[HighLevelCase] = Field(
        default_factory=list, description="High-level scenarios to expand"
    )
    mode: TestCaseMode = Field(..., description="'high-level' or 'detailed'")
    priority_mode: PriorityMode = Field("comprehensive")
    provider: Optional[Provider] = None
    model: Optional[str] = None
    agentic_options: Optional[AgenticOptions] = None

    @field_validator("priority_mode", mode="before")
    @classmethod
    def default_priority(cls, v):
        return "comprehensive" if v is None else v


class DebugInfo(WireModel):
    raw_response: Optional[str] = None
    parse_error: Optional[str] = None
    parsed_type: Optional[str] = None


class GenerationResponse(WireModel):
    """Result of one generation call."""
    test_cases: List[CaseDraft] = Field(default_factory=list)
    plan: Optional[List[PlanItem]] = None
    review_feedback: Optional[List[ReviewFeedbackItem]] = None
    passes_executed: Optional[int] = None
    warnings: Optional[List[str]] = None
    telemetry: Optional[PipelineTelemetry] = None
    error: Optional[str] = None
    debug: Optional[DebugInfo] = None

    def to_wire(self) -> Dict[str, Any]:
        """Serialise with camelCase keys, omitting absent fields."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# ==================== Schema Helpers ====================

def case_model_for(mode: str) -> Type[BaseModel]:
    return HighLevelCase if mode == "high-level" else DetailedCase


def case_response_for(mode: str) -> Type[ItemListResponse]:
    """Get the response schema for case drafting in the given mode."""
    return HighLevelCaseResponse if mode == "high-level" else DetailedCaseResponse


def get_response_json_schema(model_class: Type[BaseModel]) -> Dict[str, Any]:
    """Get the JSON schema attached to structured prompts."""
    return model_class.model_json_schema(by_alias=True)
