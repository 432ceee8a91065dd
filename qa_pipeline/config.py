"""
Pipeline settings and per-run context resolution.

Settings merge defaults -> user config -> project config -> environment.
The PipelineContext is resolved once per request and never mutated.
"""

from __future__ import annotations
import os
import sys
import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Mapping, Optional

from .exceptions import ConfigurationError
from .models import GenerationRequest
from .runtime import ProviderRegistry

USER_CFG = Path.home() / ".config" / "qa-pipeline" / "config.toml"
PROJECT_CFG = Path.cwd() / "qa-pipeline.toml"

DEFAULTS: Dict[str, object] = {
    "provider": "openai",
    "temperature": 0.1,
    "max_tokens": 4096,
    "writer_concurrency": 1,
    "max_review_passes": 0,
    "revision_soft_limit": 12,
    "revision_hard_limit": 16,
    "invocation_timeout": 120.0,
    "interaction_logging": True,
    "log_file": "logs/ai-interactions.log",
}

_ENV_PREFIX = "QA_PIPELINE_"

_FLOATS = {"temperature", "invocation_timeout"}
_INTS = {
    "max_tokens", "writer_concurrency", "max_review_passes",
    "revision_soft_limit", "revision_hard_limit",
}
_BOOLS = {"interaction_logging"}


@dataclass(frozen=True)
class PipelineSettings:
    """Process-level defaults. Requests may override the agentic knobs."""
    provider: str = "openai"
    temperature: float = 0.1
    max_tokens: int = 4096
    writer_concurrency: int = 1
    max_review_passes: int = 0
    revision_soft_limit: int = 12
    revision_hard_limit: int = 16
    invocation_timeout: float = 120.0
    interaction_logging: bool = True
    log_file: str = "logs/ai-interactions.log"

    def __post_init__(self):
        if self.revision_soft_limit < 1 or self.revision_hard_limit < 1:
            raise ConfigurationError("Revision chunk limits must be at least 1")
        if self.revision_soft_limit > self.revision_hard_limit:
            raise ConfigurationError("revision_soft_limit cannot exceed revision_hard_limit")
        if self.writer_concurrency < 1:
            raise ConfigurationError("writer_concurrency must be at least 1")
        if self.invocation_timeout <= 0:
            raise ConfigurationError("invocation_timeout must be positive")


def _read_toml(path: Path) -> Dict:
    if not path.exists():
        return {}
    try:
        with path.open("rb") as f:
            return tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        print(f"Warning: ignoring malformed config {path}: {e}", file=sys.stderr)
        return {}


def _coerce(name: str, v):
    if v is None:
        return None
    try:
        if name in _FLOATS:
            return float(v)
        if name in _INTS:
            return int(v)
        if name in _BOOLS:
            if isinstance(v, bool):
                return v
            return str(v).lower() in {"1", "true", "t", "yes", "y"}
    except (TypeError, ValueError):
        return None
    return v


def merged_settings(
    env: Optional[Mapping[str, str]] = None,
    user_cfg: Path = USER_CFG,
    project_cfg: Path = PROJECT_CFG,
) -> PipelineSettings:
    """Build settings from defaults, user and project TOML, then QA_PIPELINE_* env vars."""
    env = os.environ if env is None else env

    settings = DEFAULTS.copy()

    def overlay(d: Mapping):
        if not isinstance(d, Mapping):
            return
        for k in settings.keys():
            if k in d and d[k] is not None:
                value = _coerce(k, d[k])
                if value is not None:
                    settings[k] = value

    overlay(_read_toml(user_cfg))
    overlay(_read_toml(project_cfg))
    overlay({k: env.get(_ENV_PREFIX + k.upper()) for k in settings})

    return PipelineSettings(**settings)


# ==================== Per-run context ====================

@dataclass(frozen=True)
class StageTarget:
    """Resolved provider + model for one stage."""
    provider: str
    model: str


@dataclass(frozen=True)
class PipelineContext:
    """Everything a run needs to know about where and how to call the model."""
    mode: str
    priority_mode: str
    planner: StageTarget
    writer: StageTarget
    reviewer: StageTarget
    writer_concurrency: int
    max_review_passes: int
    revision_soft_limit: int
    revision_hard_limit: int
    invocation_timeout: float
    temperature: float
    max_tokens: int


def build_context(
    request: GenerationRequest,
    settings: PipelineSettings,
    registry: ProviderRegistry,
) -> PipelineContext:
    """
    Resolve per-stage providers and models for a request.

    The reviewer inherits the writer's provider and model unless told otherwise.
    """
    options = request.agentic_options
    base_provider = request.provider or settings.provider

    planner_provider = (options.planner_provider if options else None) or base_provider
    writer_provider = (options.writer_provider if options else None) or base_provider
    reviewer_provider = (options.reviewer_provider if options else None) or writer_provider

    planner_model = (options.planner_model if options else None) or registry.default_model(planner_provider)
    writer_model = (
        (options.writer_model if options else None)
        or request.model
        or registry.default_model(writer_provider)
    )
    reviewer_model = (options.reviewer_model if options else None) or writer_model

    writer_concurrency = settings.writer_concurrency
    max_review_passes = settings.max_review_passes
    if options is not None:
        if options.writer_concurrency is not None:
            writer_concurrency = options.writer_concurrency
        if options.max_review_passes is not None:
            max_review_passes = options.max_review_passes

    return PipelineContext(
        mode=request.mode,
        priority_mode=request.priority_mode,
        planner=StageTarget(planner_provider, planner_model),
        writer=StageTarget(writer_provider, writer_model),
        reviewer=StageTarget(reviewer_provider, reviewer_model),
        writer_concurrency=max(1, writer_concurrency),
        max_review_passes=max(0, max_review_passes),
        revision_soft_limit=settings.revision_soft_limit,
        revision_hard_limit=settings.revision_hard_limit,
        invocation_timeout=settings.invocation_timeout,
        temperature=settings.temperature,
        max_tokens=settings.max_tokens,
    )
