"""
Agentic QA Pipeline

Turns free-text requirements into vetted test cases by orchestrating an LLM
through a fixed plan → draft → review/revise pipeline, with a single-shot
fallback. Works with any OpenAI-compatible provider, including a local
mlx-llm-server.
"""

__version__ = "0.2.0"
__all__ = [
    "PipelineOrchestrator",
    "generate_test_cases",
    "GenerationRequest",
    "GenerationResponse",
    "QAPipelineError",
    "PlannerFailure",
]

from .models import GenerationRequest, GenerationResponse
from .workflow import PipelineOrchestrator, generate_test_cases
from .exceptions import PlannerFailure, QAPipelineError
