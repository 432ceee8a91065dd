"""
Interaction log sink.

Appends one JSON line per model exchange for later inspection. Recording is
fire-and-forget: a failing sink never changes the pipeline outcome. Sinks are
plain blocking callables; the invoker calls them through asyncio.to_thread.
"""

from __future__ import annotations
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol

logger = logging.getLogger(__name__)

MAX_FIELD_LENGTH = 8000


class InteractionSink(Protocol):
    def record(
        self,
        provider: str,
        model: Optional[str],
        prompt: str,
        response: str,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        ...


def truncate(value: str, limit: int = MAX_FIELD_LENGTH) -> str:
    if len(value) <= limit:
        return value
    return f"{value[:limit]}... [truncated {len(value) - limit} chars]"


class JsonlInteractionLog:
    """Writes interactions to a JSON-lines file, creating its directory on demand."""

    def __init__(self, path: Path | str = Path("logs") / "ai-interactions.log"):
        self.path = Path(path)

    def record(
        self,
        provider: str,
        model: Optional[str],
        prompt: str,
        response: str,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "provider": provider,
            "model": model,
            "prompt": truncate(prompt),
            "response": truncate(response),
            "context": context or {},
        }
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a", encoding="utf-8") as f:
                f.write(json.dumps(entry, default=str) + "\n")
        except OSError as e:
            logger.warning(f"Failed to write interaction log entry: {e}")


class MemoryInteractionLog:
    """Keeps entries in memory for inspection after a run."""

    def __init__(self):
        self.entries: List[Dict[str, Any]] = []

    def record(self, provider, model, prompt, response, context=None) -> None:
        self.entries.append({
            "provider": provider,
            "model": model,
            "prompt": prompt,
            "response": response,
            "context": context or {},
        })


class NullInteractionLog:
    def record(self, provider, model, prompt, response, context=None) -> None:
        return None
