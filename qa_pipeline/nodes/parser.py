"""
RequestParser Node (Deterministic)

Validates a generation request and renders the prompt material shared by
every stage: requirements text, bounded file summaries, selected scenarios
and the priority description. No LLM calls are made here.
"""

from __future__ import annotations
import json
from dataclasses import dataclass
from typing import List, Optional

from ..exceptions import RequestValidationError
from ..models import GenerationRequest, HighLevelCase, UploadedFile

MAX_FILE_SUMMARY_LENGTH = 4000


@dataclass(frozen=True)
class ParsedRequest:
    """Prompt material derived from a request, computed once per run."""
    requirements: str
    files_summary: str
    scenario_summary: str
    mode: str
    priority_mode: str


def format_file_size(size: Optional[int]) -> str:
    """Human readable size: B below 1 KiB, then KB and MB with one decimal."""
    if not size:
        return "unknown"
    if size < 1024:
        return f"{size} B"
    if size < 1024 * 1024:
        return f"{size / 1024:.1f} KB"
    return f"{size / (1024 * 1024):.1f} MB"


def summarize_files(files: Optional[List[UploadedFile]]) -> str:
    """
    Summarize uploaded files for a prompt.

    Each preview is cut at MAX_FILE_SUMMARY_LENGTH characters with a trailing
    ellipsis; files are separated by a horizontal rule.
    """
    if not files:
        return ""

    blocks = []
    for file in files:
        preview = file.preview_text or ""
        if len(preview) > MAX_FILE_SUMMARY_LENGTH:
            preview = preview[:MAX_FILE_SUMMARY_LENGTH] + "..."

        details = [
            f"File: {file.name}",
            f"Type: {file.type or 'unknown'}",
            f"Size: {format_file_size(file.size_bytes)}",
            f"Preview:\n{preview}" if preview else "Preview: [No readable text extracted]",
        ]
        blocks.append("\n".join(details))

    return "\n\n---\n\n".join(blocks)


def summarize_scenarios(scenarios: Optional[List[HighLevelCase]]) -> str:
    if not scenarios:
        return ""

    formatted = "\n\n".join(
        "\n".join([
            f"ID: {scenario.id}",
            f"Title: {scenario.title}",
            f"Area: {scenario.area or 'General'}",
            f"Scenario: {scenario.scenario}",
        ])
        for scenario in scenarios
    )
    return f"Previously generated high-level scenarios to expand:\n{formatted}"


def describe_priority(priority_mode: str, high_level: bool) -> str:
    """What the model should prioritize for a priority mode."""
    if priority_mode == "core-functionality":
        if high_level:
            return "core business workflows and critical paths"
        return "core user journeys and essential validations"

    if high_level:
        return "broad coverage including edge cases"
    return "wide coverage including negative cases"


class RequestParser:
    """
    Node 1: Validate the request and compute shared prompt material.

    Given the same request it always produces the same output.
    """

    @staticmethod
    def validate(request: GenerationRequest) -> None:
        """
        Raises:
            RequestValidationError: when there is nothing to generate from
        """
        has_requirements = bool(request.requirements and request.requirements.strip())
        if not (has_requirements or request.files or request.selected_scenarios):
            raise RequestValidationError("Missing requirements or scenarios")

    @staticmethod
    def process(request: GenerationRequest) -> ParsedRequest:
        """
        Validate a request and render its prompt material.

        Args:
            request: Incoming generation request

        Returns:
            ParsedRequest shared by the planner, writer and single-shot prompts
        """
        RequestParser.validate(request)

        return ParsedRequest(
            requirements=(request.requirements or "").strip(),
            files_summary=summarize_files(request.files),
            scenario_summary=summarize_scenarios(request.selected_scenarios),
            mode=request.mode,
            priority_mode=request.priority_mode,
        )


def to_prompt_json(records) -> str:
    """Pretty JSON of pydantic records with wire names, for embedding in prompts."""
    return json.dumps(
        [record.model_dump(mode="json", by_alias=True, exclude_none=True) for record in records],
        indent=2,
    )
