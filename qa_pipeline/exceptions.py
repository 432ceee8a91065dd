"""Custom exceptions for the QA pipeline."""

from typing import Any, List, Optional


class QAPipelineError(Exception):
    """Base exception for QA pipeline errors."""
    pass


class ConfigurationError(QAPipelineError):
    """Raised when configuration is invalid or provider credentials are missing."""
    pass


class RequestValidationError(QAPipelineError):
    """Raised when a generation request carries nothing to generate from."""
    pass


class LLMRuntimeError(QAPipelineError):
    """Raised when LLM runtime encounters an error."""
    pass


class InvocationTimeoutError(LLMRuntimeError):
    """Raised when a single model call exceeds the configured timeout."""

    def __init__(self, timeout: float, stage: str = ""):
        self.timeout = timeout
        self.stage = stage
        where = f" during {stage}" if stage else ""
        super().__init__(f"Model call timed out after {timeout:g}s{where}")


class SchemaValidationError(QAPipelineError):
    """
    Raised when a model response does not parse or validate against the schema.

    Attributes:
        raw_text: The raw model output, kept so recovery can attempt cleanup
        errors: Parse or validation error messages
    """

    def __init__(self, raw_text: str, errors: Optional[List[str]] = None):
        self.raw_text = raw_text
        self.errors = errors or []
        summary = "; ".join(self.errors[:3]) if self.errors else "response did not match schema"
        super().__init__(f"Schema validation failed: {summary}")


class EmptyResponseError(QAPipelineError):
    """Raised when the model returns no content."""

    def __init__(self, message: str = "Received an empty response from the model"):
        super().__init__(message)


class PlannerFailure(QAPipelineError):
    """Raised when the planner stage fails. Fatal: nothing can be drafted without a plan."""

    def __init__(self, cause: Exception):
        self.cause = cause
        super().__init__(f"Planner failed: {cause}")


class WriterSliceFailure(QAPipelineError):
    """A single writer slice failed; recovered as a warning."""

    def __init__(self, plan_id: str, cause: Any):
        self.plan_id = plan_id
        self.cause = cause
        super().__init__(f"Failed to generate cases for plan {plan_id}: {cause}")


class ReviewPassFailure(QAPipelineError):
    """The review call of a pass failed; remaining passes are skipped."""

    def __init__(self, pass_number: int, cause: Any):
        self.pass_number = pass_number
        self.cause = cause
        super().__init__(f"Review pass {pass_number} failed: {cause}")


class RevisionChunkFailure(QAPipelineError):
    """A revision chunk failed; stops new chunk dispatch in the current pass."""

    def __init__(self, chunk_index: int, pass_number: int, cause: Any):
        self.chunk_index = chunk_index
        self.pass_number = pass_number
        self.cause = cause
        super().__init__(
            f"Revision chunk {chunk_index} failed in review pass {pass_number}: {cause}"
        )
