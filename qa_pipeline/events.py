"""
Progress events and observers.

Events form a closed set of immutable records pushed to a single observer
while a run executes. Observers are best-effort: an exception raised by an
observer is logged and never changes the outcome of the run.
"""

from __future__ import annotations
import json
import logging
import sys
from typing import Any, Callable, Dict, Literal, Optional, Protocol, TextIO

from pydantic import Field

from .models import FrozenWireModel

logger = logging.getLogger(__name__)

EventType = Literal[
    "stage_start",
    "stage_complete",
    "slice_start",
    "slice_complete",
    "pass_start",
    "pass_complete",
    "chunk_start",
    "chunk_complete",
    "final",
    "error",
]


class ProgressEvent(FrozenWireModel):
    """One progress notification. Only the fields relevant to ``type`` are set."""
    type: EventType
    stage: Optional[str] = None
    plan_id: Optional[str] = None
    pass_number: Optional[int] = Field(None, alias="pass")
    chunk_index: Optional[int] = None
    case_count: Optional[int] = None
    feedback_count: Optional[int] = None
    blocking_count: Optional[int] = None
    duration_ms: Optional[float] = None
    success: Optional[bool] = None
    message: Optional[str] = None

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class ProgressObserver(Protocol):
    def on_event(self, event: ProgressEvent) -> None:
        ...


class NullObserver:
    """Discards every event."""

    def on_event(self, event: ProgressEvent) -> None:
        pass


class LoggingObserver:
    """Writes events to the module logger at INFO."""

    def on_event(self, event: ProgressEvent) -> None:
        logger.info(f"[progress] {json.dumps(event.to_wire())}")


class CallbackObserver:
    """Adapts a plain callable into an observer."""

    def __init__(self, callback: Callable[[ProgressEvent], None]):
        self.callback = callback

    def on_event(self, event: ProgressEvent) -> None:
        self.callback(event)


class StreamObserver:
    """Writes each event as one JSON line (NDJSON) to a text stream."""

    def __init__(self, stream: Optional[TextIO] = None):
        self.stream = stream or sys.stderr

    def on_event(self, event: ProgressEvent) -> None:
        self.stream.write(json.dumps(event.to_wire()) + "\n")
        self.stream.flush()


class CollectingObserver:
    """Keeps every event in order, for inspection after a run."""

    def __init__(self):
        self.events = []

    def on_event(self, event: ProgressEvent) -> None:
        self.events.append(event)

    def types(self):
        return [event.type for event in self.events]


class EventEmitter:
    """Builds events and forwards them to an observer, shielding the run from observer errors."""

    def __init__(self, observer: Optional[ProgressObserver] = None):
        self.observer = observer or NullObserver()

    def emit(self, event_type: EventType, **fields) -> None:
        event = ProgressEvent(type=event_type, **fields)
        try:
            self.observer.on_event(event)
        except Exception as e:
            logger.warning(f"Progress observer failed on {event_type} event: {e}")
