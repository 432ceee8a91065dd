"""
Pluggable LLM runtime abstraction for the QA pipeline.

Provides a unified async interface over OpenAI-compatible APIs (OpenAI,
Gemini, OpenRouter, a local mlx-llm-server) and resolves providers to
runtimes with credential checks. Each pipeline run builds its own registry;
nothing here is a process-wide singleton.
"""

from __future__ import annotations
import asyncio
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol, Tuple, Union

import requests
from openai import AsyncOpenAI

from .exceptions import ConfigurationError, LLMRuntimeError

logger = logging.getLogger(__name__)


class LLMRuntime(Protocol):
    """Protocol for all LLM runtime implementations."""

    async def generate(
        self,
        prompt: str,
        *,
        model: str,
        temperature: float = 0.1,
        max_tokens: int = 4096,
        **kwargs
    ) -> str:
        """Generate text response from prompt."""
        ...

    def is_available(self) -> bool:
        """Check if this runtime is currently available."""
        ...

    def get_model_info(self) -> Dict[str, Any]:
        """Get information about the runtime."""
        ...


SYSTEM_PROMPT = (
    "You are a QA test case generator. Return JSON only matching the provided schema. "
    "No markdown formatting, no explanations, just valid JSON."
)


class OpenAICompatibleRuntime:
    """
    Unified async runtime for OpenAI-compatible APIs.
    Works with OpenAI, Gemini's OpenAI endpoint, OpenRouter and a local mlx-llm-server.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str = "no-key",
        name: str = "openai-compatible",
        default_headers: Optional[Dict[str, str]] = None,
    ):
        self.base_url = base_url
        self.api_key = api_key
        self.name = name
        self.client = AsyncOpenAI(base_url=base_url, api_key=api_key, default_headers=default_headers)

    async def generate(
        self,
        prompt: str,
        *,
        model: str,
        temperature: float = 0.1,
        max_tokens: int = 4096,
        **kwargs
    ) -> str:
        """Generate response using an OpenAI-compatible chat completion."""
        try:
            response = await self.client.chat.completions.create(
                model=model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": prompt}
                ],
                temperature=temperature,
                max_tokens=max_tokens,
                **kwargs
            )
        except Exception as e:
            raise LLMRuntimeError(f"Failed to generate response from {self.name}: {e}") from e

        content = response.choices[0].message.content if response.choices else None
        return (content or "").strip()

    def is_available(self) -> bool:
        """Check if the service is reachable."""
        try:
            models_url = f"{self.base_url.rstrip('/')}/models"
            response = requests.get(
                models_url,
                headers={"Authorization": f"Bearer {self.api_key}"},
                timeout=5
            )
            return response.status_code == 200
        except requests.RequestException:
            return False

    def get_model_info(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "base_url": self.base_url,
            "type": "openai-compatible"
        }


@dataclass(frozen=True)
class ProviderSpec:
    """How to reach one provider and where its credentials live."""
    name: str
    default_base_url: str
    default_model: str
    base_url_env: str
    model_env: str
    key_env: Optional[str] = None
    headers: Dict[str, str] = field(default_factory=dict)


PROVIDERS: Dict[str, ProviderSpec] = {
    "openai": ProviderSpec(
        name="openai",
        default_base_url="https://api.openai.com/v1",
        default_model="gpt-4.1-mini",
        base_url_env="OPENAI_BASE_URL",
        model_env="OPENAI_MODEL",
        key_env="OPENAI_API_KEY",
    ),
    "gemini": ProviderSpec(
        name="gemini",
        default_base_url="https://generativelanguage.googleapis.com/v1beta/openai/",
        default_model="models/gemini-1.5-pro-latest",
        base_url_env="GEMINI_BASE_URL",
        model_env="GEMINI_MODEL",
        key_env="GEMINI_API_KEY",
    ),
    "openrouter": ProviderSpec(
        name="openrouter",
        default_base_url="https://openrouter.ai/api/v1",
        default_model="openrouter/auto",
        base_url_env="OPENROUTER_BASE_URL",
        model_env="OPENROUTER_MODEL",
        key_env="OPENROUTER_API_KEY",
        headers={"X-Title": "QA Pipeline"},
    ),
    "local": ProviderSpec(
        name="local",
        default_base_url="http://localhost:8080/v1",
        default_model="local-model",
        base_url_env="QA_PIPELINE_LOCAL_URL",
        model_env="QA_PIPELINE_LOCAL_MODEL",
    ),
}


class ProviderRegistry:
    """Resolves provider names to runtimes, reading credentials from the environment."""

    def __init__(self, env: Optional[Mapping[str, str]] = None):
        self._env = dict(os.environ if env is None else env)
        self._runtimes: Dict[str, LLMRuntime] = {}

    def register_runtime(self, provider: str, runtime: LLMRuntime) -> None:
        """Register a custom runtime (e.g. a mock) for a provider name."""
        self._runtimes[provider] = runtime

    def _spec(self, provider: str) -> ProviderSpec:
        spec = PROVIDERS.get(provider)
        if spec is None:
            raise ConfigurationError(f"Unknown provider: {provider}")
        return spec

    def default_model(self, provider: str) -> str:
        """Default model for a provider, overridable through its model env var."""
        if provider in self._runtimes and provider not in PROVIDERS:
            return "default"
        spec = self._spec(provider)
        return self._env.get(spec.model_env) or spec.default_model

    def is_configured(self, provider: str) -> bool:
        if provider in self._runtimes:
            return True
        spec = PROVIDERS.get(provider)
        if spec is None:
            return False
        return spec.key_env is None or bool(self._env.get(spec.key_env))

    def ensure_configured(self, providers: List[str]) -> None:
        """Raise ConfigurationError for the first provider lacking credentials."""
        for provider in providers:
            if not self.is_configured(provider):
                spec = self._spec(provider)
                raise ConfigurationError(f"{spec.key_env} is not configured")

    def resolve(self, provider: str) -> LLMRuntime:
        """Return the runtime for a provider, creating it on first use."""
        if provider in self._runtimes:
            return self._runtimes[provider]

        self.ensure_configured([provider])
        spec = self._spec(provider)
        api_key = self._env.get(spec.key_env, "") if spec.key_env else "no-key"
        runtime = OpenAICompatibleRuntime(
            base_url=self._env.get(spec.base_url_env) or spec.default_base_url,
            api_key=api_key,
            name=spec.name,
            default_headers=spec.headers or None,
        )
        logger.debug(f"Created runtime for provider {provider} at {runtime.base_url}")
        self._runtimes[provider] = runtime
        return runtime

    def list_providers(self, check_reachable: bool = False) -> List[Dict[str, Any]]:
        """Describe every known provider with its configuration status."""
        providers = []
        for name, spec in PROVIDERS.items():
            info: Dict[str, Any] = {
                "name": name,
                "default_model": self.default_model(name),
                "configured": self.is_configured(name),
            }
            if check_reachable and info["configured"]:
                info["available"] = self.resolve(name).is_available()
            providers.append(info)
        return providers


MockResponse = Union[str, Exception, Callable[[str], str]]


class MockLLMRuntime:
    """Mock runtime for testing - returns predefined responses."""

    def __init__(self, responses: Dict[str, MockResponse], default: str = "[]", delay: float = 0.0):
        """
        Args:
            responses: Map from prompt keywords to mock responses. A value may be a
                string, an exception to raise, or a callable taking the prompt.
            default: Response when no keyword matches
            delay: Seconds to sleep per call, so concurrent callers interleave
        """
        self.responses = responses
        self.default = default
        self.delay = delay
        self.calls: List[Tuple[str, str]] = []
        self.in_flight = 0
        self.max_in_flight = 0

    @property
    def call_count(self) -> int:
        return len(self.calls)

    @property
    def last_prompt(self) -> str:
        return self.calls[-1][0] if self.calls else ""

    async def generate(
        self,
        prompt: str,
        *,
        model: str = "mock",
        temperature: float = 0.1,
        max_tokens: int = 4096,
        **kwargs
    ) -> str:
        """Return mock response based on prompt content."""
        self.calls.append((prompt, model))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delay)
        finally:
            self.in_flight -= 1

        for keyword, response in self.responses.items():
            if keyword.lower() in prompt.lower():
                if isinstance(response, Exception):
                    raise response
                if callable(response):
                    return response(prompt)
                return response

        return self.default

    def is_available(self) -> bool:
        return True

    def get_model_info(self) -> Dict[str, Any]:
        return {
            "name": "mock",
            "type": "mock",
            "responses_count": len(self.responses)
        }
