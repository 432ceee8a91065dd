"""
Pipeline nodes for the agentic QA pipeline.

1. RequestParser - Deterministic request validation and prompt material
2. Planner - LLM-based execution plan
3. Writer - LLM-based case drafting, one slice per plan item
4. Reviewer - LLM-based review passes with chunked revisions
5. SingleShotGenerator - Non-agentic one-call generation
"""

from .parser import ParsedRequest, RequestParser
from .planner import Planner
from .writer import Writer
from .reviewer import Reviewer, ReviewOutcome
from .single_shot import SingleShotGenerator, map_model_response_to_test_cases

__all__ = [
    "ParsedRequest",
    "RequestParser",
    "Planner",
    "Writer",
    "Reviewer",
    "ReviewOutcome",
    "SingleShotGenerator",
    "map_model_response_to_test_cases",
]
