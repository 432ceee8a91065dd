"""Test Pydantic models and wire-format handling."""

import pytest
from pydantic import ValidationError

from qa_pipeline.models import (
    DetailedCase,
    DetailedCaseResponse,
    GenerationRequest,
    GenerationResponse,
    HighLevelCase,
    PipelineTelemetry,
    PlanItem,
    ReviewFeedbackItem,
    ReviewPassTelemetry,
    ReviewResult,
    Severity,
    case_model_for,
    case_response_for,
    get_response_json_schema,
)


class TestReviewFeedbackItem:
    """Test severity normalisation and blocking classification."""

    def test_missing_severity_defaults_to_info(self):
        item = ReviewFeedbackItem.model_validate({"caseId": "TC-1", "summary": "Typo"})
        assert item.severity is Severity.INFO
        assert not item.is_blocking

    def test_null_severity_defaults_to_info(self):
        item = ReviewFeedbackItem.model_validate({"summary": "Typo", "severity": None})
        assert item.severity is Severity.INFO

    def test_severity_is_case_normalised(self):
        item = ReviewFeedbackItem.model_validate({"summary": "Broken", "severity": " MAJOR "})
        assert item.severity is Severity.MAJOR

    @pytest.mark.parametrize("severity,blocking", [
        ("info", False), ("minor", False), ("major", True), ("critical", True),
    ])
    def test_blocking(self, severity, blocking):
        item = ReviewFeedbackItem(summary="x", severity=severity)
        assert item.is_blocking is blocking

    def test_unknown_severity_rejected(self):
        with pytest.raises(ValidationError):
            ReviewFeedbackItem(summary="x", severity="blocker")

    def test_blank_case_id_is_general(self):
        item = ReviewFeedbackItem.model_validate({"caseId": "  ", "summary": "Overall"})
        assert item.case_id is None

    def test_frozen(self):
        item = ReviewFeedbackItem(summary="x")
        with pytest.raises(ValidationError):
            item.summary = "y"


class TestCaseModels:
    """Test case draft models."""

    def test_detailed_case_from_wire_names(self):
        case = DetailedCase.model_validate({
            "id": "TC-001",
            "title": "Reset password",
            "area": "Auth",
            "testData": ["email=a@b.c"],
            "expectedResult": "Email sent",
            "steps": [{"number": "1", "description": "Open form"}],
        })
        assert case.test_data == ["email=a@b.c"]
        assert case.expected_result == "Email sent"
        assert case.steps[0].number == 1

    def test_string_steps_are_numbered(self):
        case = DetailedCase(title="t", area="a", steps=["Open form", "Submit"])
        assert [(s.number, s.description) for s in case.steps] == [(1, "Open form"), (2, "Submit")]

    def test_null_lists_become_empty(self):
        case = DetailedCase.model_validate({"title": "t", "area": "a", "preconditions": None, "steps": None})
        assert case.preconditions == []
        assert case.steps == []

    def test_blank_id_becomes_none(self):
        case = HighLevelCase.model_validate({"id": "", "title": "t", "area": "a", "scenario": "s"})
        assert case.id is None

    def test_title_required(self):
        with pytest.raises(ValidationError):
            HighLevelCase(title="", area="a", scenario="s")

    def test_schema_helpers_by_mode(self):
        assert case_model_for("high-level") is HighLevelCase
        assert case_model_for("detailed") is DetailedCase
        assert case_response_for("detailed") is DetailedCaseResponse


class TestResponseSchemas:
    """Test LLM response schemas."""

    def test_bare_list_is_wrapped(self):
        response = DetailedCaseResponse.model_validate([{"title": "t", "area": "a"}])
        assert len(response.items) == 1

    def test_items_object_accepted(self):
        response = DetailedCaseResponse.model_validate({"items": [{"title": "t", "area": "a"}]})
        assert len(response.items) == 1

    def test_plan_item_estimated_cases_positive(self):
        with pytest.raises(ValidationError):
            PlanItem(title="t", area="a", estimated_cases=0)

    def test_review_result_null_feedback(self):
        assert ReviewResult.model_validate({"feedback": None}).feedback == []

    def test_json_schema_uses_wire_names(self):
        schema = get_response_json_schema(DetailedCaseResponse)
        assert "expectedResult" in str(schema)


class TestRequestResponse:
    """Test request defaults and response serialisation."""

    def test_priority_defaults_to_comprehensive(self):
        request = GenerationRequest.model_validate({"mode": "detailed", "priorityMode": None})
        assert request.priority_mode == "comprehensive"

    def test_agentic_options_from_wire(self):
        request = GenerationRequest.model_validate({
            "requirements": "r",
            "mode": "high-level",
            "agenticOptions": {"enableAgentic": True, "maxReviewPasses": 2, "writerConcurrency": 4},
        })
        assert request.agentic_options.enable_agentic
        assert request.agentic_options.max_review_passes == 2
        assert request.agentic_options.writer_concurrency == 4

    def test_low_writer_concurrency_accepted(self):
        request = GenerationRequest.model_validate({
            "mode": "detailed", "agenticOptions": {"writerConcurrency": 0},
        })
        assert request.agentic_options.writer_concurrency == 0

    def test_negative_review_passes_rejected(self):
        with pytest.raises(ValidationError):
            GenerationRequest.model_validate({
                "mode": "detailed", "agenticOptions": {"maxReviewPasses": -1},
            })

    def test_to_wire_omits_absent_fields(self):
        response = GenerationResponse(
            test_cases=[HighLevelCase(id="TS-001", title="t", area="a", scenario="s")],
            telemetry=PipelineTelemetry(total_duration_ms=12.5, case_count=1),
        )
        wire = response.to_wire()

        assert set(wire) == {"testCases", "telemetry"}
        assert wire["telemetry"] == {"totalDurationMs": 12.5, "caseCount": 1}

    def test_review_pass_telemetry_serialises_pass(self):
        record = ReviewPassTelemetry(pass_number=2, duration_ms=1.0, feedback_count=3, blocking_count=1)
        assert record.model_dump(by_alias=True)["pass"] == 2
