"""
Structured model invocation with schema validation and bounded recovery.

Handles common LLM output issues: markdown wrapping, chatter around the JSON,
missing fields. Recovery is an explicit state machine:

    DIRECT -> CLEANUP -> RETRY -> RETRY_CLEANUP -> FAILED

so a single invocation never makes more than two model calls.
"""

from __future__ import annotations
import asyncio
import json
import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Generic, List, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError

from .config import StageTarget
from .exceptions import EmptyResponseError, InvocationTimeoutError, SchemaValidationError
from .interaction_log import InteractionSink, NullInteractionLog
from .models import get_response_json_schema
from .runtime import ProviderRegistry

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)

DEFAULT_RETRY_INSTRUCTION = """IMPORTANT: The previous response was not valid JSON for the required schema. Common issues to avoid:
- Wrapping JSON in markdown code blocks (```json)
- Including explanatory text before/after JSON
- Missing required fields or empty strings for required fields
- Trailing commas or single quotes

Return ONLY valid JSON matching the schema."""

_FENCE_RE = re.compile(r"```(?:json|JSON)?\s*(.*?)```", re.DOTALL)


# ==================== Pure helpers ====================

@dataclass(frozen=True)
class ValidationResult(Generic[T]):
    """Outcome of validating text against a schema, without any I/O."""
    value: Optional[T] = None
    errors: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.value is not None and not self.errors


def _find_balanced(text: str, start: int) -> Optional[int]:
    """Index of the bracket closing the one at ``start``, skipping string literals."""
    pairs = {"{": "}", "[": "]"}
    stack = [pairs[text[start]]]
    in_string = False
    escaped = False
    for i in range(start + 1, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch in pairs:
            stack.append(pairs[ch])
        elif ch in "}]":
            if not stack or ch != stack[-1]:
                return None
            stack.pop()
            if not stack:
                return i
    return None


def clean_response(text: str) -> str:
    """
    Strip markdown fences and surrounding chatter, keeping the outermost JSON value.

    Returns the stripped input when no balanced object or array can be found.
    """
    cleaned = text.lstrip("\ufeff").strip()

    fenced = _FENCE_RE.search(cleaned)
    if fenced:
        cleaned = fenced.group(1).strip()

    for i, ch in enumerate(cleaned):
        if ch in "{[":
            end = _find_balanced(cleaned, i)
            if end is not None:
                return cleaned[i:end + 1]
    return cleaned


def _format_validation_errors(error: ValidationError) -> List[str]:
    messages = []
    for err in error.errors():
        location = ".".join(str(part) for part in err.get("loc", ())) or "<root>"
        messages.append(f"{location}: {err.get('msg', 'invalid')}")
    return messages


def validate_payload(text: str, schema: Type[T]) -> ValidationResult[T]:
    """Parse ``text`` as JSON and validate it against ``schema``."""
    if not text or not text.strip():
        return ValidationResult(errors=["empty response"])
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        return ValidationResult(errors=[f"Invalid JSON: {e}"])
    try:
        return ValidationResult(value=schema.model_validate(data))
    except ValidationError as e:
        return ValidationResult(errors=_format_validation_errors(e))


# ==================== Recovery state machine ====================

class RecoveryState(str, Enum):
    DIRECT = "direct"
    CLEANUP = "cleanup"
    RETRY = "retry"
    RETRY_CLEANUP = "retry_cleanup"
    FAILED = "failed"


def next_action(state: RecoveryState, error: Exception, retry_available: bool) -> RecoveryState:
    """
    Decide the next recovery step after ``error`` occurred in ``state``.

    Only schema failures carrying raw text are worth a cleanup pass; an empty
    response can only be helped by asking again. Anything else fails.
    """
    schema_error = isinstance(error, SchemaValidationError)
    empty = isinstance(error, EmptyResponseError)

    if state is RecoveryState.DIRECT:
        if schema_error:
            return RecoveryState.CLEANUP
        if empty and retry_available:
            return RecoveryState.RETRY
    elif state is RecoveryState.CLEANUP:
        if (schema_error or empty) and retry_available:
            return RecoveryState.RETRY
    elif state is RecoveryState.RETRY:
        if schema_error:
            return RecoveryState.RETRY_CLEANUP
    return RecoveryState.FAILED


# ==================== Invoker ====================

class StructuredInvoker:
    """Calls the model for a schema-shaped answer and recovers from malformed output."""

    def __init__(
        self,
        registry: ProviderRegistry,
        sink: Optional[InteractionSink] = None,
        timeout: float = 120.0,
        temperature: float = 0.1,
        max_tokens: int = 4096,
    ):
        self.registry = registry
        self.sink = sink or NullInteractionLog()
        self.timeout = timeout
        self.temperature = temperature
        self.max_tokens = max_tokens

    async def invoke(
        self,
        target: StageTarget,
        schema: Type[T],
        prompt: str,
        retry_instruction: Optional[str] = None,
        *,
        stage: str = "",
        tags: Optional[Dict[str, Any]] = None,
    ) -> T:
        """
        Invoke the model and return a validated ``schema`` instance.

        Raises:
            SchemaValidationError: output never matched the schema
            EmptyResponseError: the model returned nothing usable
            LLMRuntimeError: transport failure or timeout (never retried)
        """
        runtime = self.registry.resolve(target.provider)
        schema_prompt = self._attach_schema(prompt, schema)
        retry_available = retry_instruction is not None

        state = RecoveryState.DIRECT
        last_error: Optional[Exception] = None

        while True:
            try:
                if state is RecoveryState.DIRECT:
                    raw = await self._call(runtime, target, schema_prompt, stage, tags)
                    return self._parse_strict(raw, schema)
                if state is RecoveryState.RETRY:
                    retry_prompt = f"{schema_prompt}\n\n{retry_instruction}"
                    raw = await self._call(runtime, target, retry_prompt, stage, {**(tags or {}), "retry": True})
                    return self._parse_strict(raw, schema)
                # CLEANUP / RETRY_CLEANUP work on the text of the failure that got us here
                raw_text = getattr(last_error, "raw_text", "")
                return self._parse_cleaned(raw_text, schema)
            except (SchemaValidationError, EmptyResponseError) as e:
                following = next_action(state, e, retry_available)
                if following is RecoveryState.FAILED:
                    logger.warning(f"Structured invocation failed for {stage or schema.__name__} in state {state.value}: {e}")
                    raise
                logger.info(f"{stage or schema.__name__}: {state.value} failed ({e}); trying {following.value}")
                last_error = e
                state = following

    def _attach_schema(self, prompt: str, schema: Type[BaseModel]) -> str:
        schema_json = json.dumps(get_response_json_schema(schema), indent=2)
        return f"""{prompt}

Respond with JSON matching this schema:
{schema_json}

CRITICAL: Return ONLY valid JSON. No explanatory text, no markdown."""

    async def _call(self, runtime, target: StageTarget, prompt: str, stage: str, tags) -> str:
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
            raise InvocationTimeoutError(self.timeout, stage) from e

        logger.debug(f"Raw {stage or 'model'} response ({len(raw)} chars): {raw[:500]}")
        await self._record(target, prompt, raw, stage, tags)
        return raw

    async def _record(self, target: StageTarget, prompt: str, raw: str, stage: str, tags) -> None:
        context = {"type": "test-case-generation", "stage": stage, **(tags or {})}
        try:
            await asyncio.to_thread(self.sink.record, target.provider, target.model, prompt, raw, context)
        except Exception as e:
            logger.warning(f"Interaction log sink failed: {e}")

    @staticmethod
    def _parse_strict(raw: str, schema: Type[T]) -> T:
        if not raw or not raw.strip():
            raise EmptyResponseError()
        result = validate_payload(raw, schema)
        if result.ok:
            return result.value
        raise SchemaValidationError(raw, result.errors)

    @staticmethod
    def _parse_cleaned(raw: str, schema: Type[T]) -> T:
        result = validate_payload(clean_response(raw), schema)
        if result.ok:
            return result.value
        raise SchemaValidationError(raw, result.errors)
