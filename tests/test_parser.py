"""Test RequestParser node and prompt material helpers."""

import pytest

from qa_pipeline.exceptions import RequestValidationError
from qa_pipeline.models import GenerationRequest, HighLevelCase, UploadedFile
from qa_pipeline.nodes.parser import (
    MAX_FILE_SUMMARY_LENGTH,
    RequestParser,
    describe_priority,
    format_file_size,
    summarize_files,
    summarize_scenarios,
)


class TestSummarizeFiles:
    """Test bounded file summaries."""

    def test_no_files(self):
        assert summarize_files([]) == ""
        assert summarize_files(None) == ""

    def test_preview_is_truncated_with_ellipsis(self):
        file = UploadedFile(name="prd.md", type="md", size_bytes=9000, preview_text="x" * 5000)
        summary = summarize_files([file])

        assert "x" * MAX_FILE_SUMMARY_LENGTH + "..." in summary
        assert "x" * (MAX_FILE_SUMMARY_LENGTH + 1) not in summary

    def test_file_details(self):
        file = UploadedFile(name="spec.txt", type="", size_bytes=2048, preview_text="Login rules")
        summary = summarize_files([file])

        assert "File: spec.txt" in summary
        assert "Type: unknown" in summary
        assert "Size: 2.0 KB" in summary
        assert "Preview:\nLogin rules" in summary

    def test_missing_preview(self):
        summary = summarize_files([UploadedFile(name="scan.pdf")])
        assert "Preview: [No readable text extracted]" in summary

    def test_files_are_separated(self):
        files = [UploadedFile(name="a.txt", preview_text="a"), UploadedFile(name="b.txt", preview_text="b")]
        assert summarize_files(files).count("\n\n---\n\n") == 1

    @pytest.mark.parametrize("size,expected", [
        (None, "unknown"), (0, "unknown"), (512, "512 B"), (1536, "1.5 KB"), (3 * 1024 * 1024, "3.0 MB"),
    ])
    def test_format_file_size(self, size, expected):
        assert format_file_size(size) == expected


class TestScenarioSummaryAndPriority:
    """Test scenario summaries and priority descriptions."""

    def test_scenarios_summary(self):
        scenarios = [HighLevelCase(id="TS-001", title="Login", area="Auth", scenario="Valid credentials")]
        summary = summarize_scenarios(scenarios)

        assert summary.startswith("Previously generated high-level scenarios to expand:")
        assert "ID: TS-001" in summary
        assert "Scenario: Valid credentials" in summary

    def test_no_scenarios(self):
        assert summarize_scenarios([]) == ""

    def test_describe_priority(self):
        assert describe_priority("core-functionality", True) == "core business workflows and critical paths"
        assert describe_priority("core-functionality", False) == "core user journeys and essential validations"
        assert describe_priority("comprehensive", True) == "broad coverage including edge cases"
        assert describe_priority("comprehensive", False) == "wide coverage including negative cases"


class TestRequestParser:
    """Test request validation and parsing."""

    def test_missing_everything_is_rejected(self):
        with pytest.raises(RequestValidationError, match="Missing requirements or scenarios"):
            RequestParser.process(GenerationRequest(requirements="   ", mode="detailed"))

    def test_files_alone_are_enough(self):
        request = GenerationRequest(mode="detailed", files=[UploadedFile(name="a.txt", preview_text="a")])
        parsed = RequestParser.process(request)

        assert parsed.requirements == ""
        assert "File: a.txt" in parsed.files_summary

    def test_scenarios_alone_are_enough(self):
        request = GenerationRequest(
            mode="detailed",
            selected_scenarios=[HighLevelCase(id="TS-001", title="t", area="a", scenario="s")],
        )
        assert RequestParser.process(request).scenario_summary

    def test_parsed_request_is_deterministic(self):
        request = GenerationRequest(requirements="  Reset password  ", mode="high-level")
        first = RequestParser.process(request)
        second = RequestParser.process(request)

        assert first == second
        assert first.requirements == "Reset password"
        assert first.priority_mode == "comprehensive"
