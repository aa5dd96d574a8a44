"""Model provider abstraction with Anthropic and OpenAI backends.

Providers translate a ``ModelRequest`` into one SDK call and normalise the
reply. Every failure leaves a provider as a ``ModelProviderError`` whose
``retryable`` flag is decided here, at the provider boundary.
"""

from __future__ import annotations

import asyncio
import fnmatch
import socket
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Optional

import anthropic
import httpx
import openai

from sitepilot.config import AnthropicConfig, OpenAIConfig
from sitepilot.errors import ModelProviderError
from sitepilot.log import get_logger

logger = get_logger(__name__)

RETRYABLE_STATUS_CODES = frozenset({408, 409, 429, 500, 502, 503, 504, 529})


@dataclass(frozen=True)
class ModelRequest:
    prompt: str
    system_prompt: Optional[str] = None
    model: str = ""
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    json_mode: bool = False


@dataclass(frozen=True)
class TokenUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


@dataclass
class ModelResponse:
    """Unified response from any provider."""

    content: str
    model: str
    response_time_ms: int
    usage: Optional[TokenUsage] = None


def classify_error(exc: BaseException, provider: str) -> ModelProviderError:
    """Map an arbitrary exception raised by an SDK call to a ModelProviderError."""
    if isinstance(exc, ModelProviderError):
        return exc

    retryable = False
    details: dict[str, Any] = {"error_type": type(exc).__name__}

    if isinstance(exc, (asyncio.TimeoutError, TimeoutError, ConnectionError, socket.gaierror)):
        retryable = True
    elif isinstance(exc, (anthropic.APIConnectionError, openai.APIConnectionError)):
        # Includes the SDK timeout subclasses.
        retryable = True
    elif isinstance(exc, (anthropic.APIStatusError, openai.APIStatusError)):
        details["status_code"] = exc.status_code
        retryable = exc.status_code in RETRYABLE_STATUS_CODES
    elif isinstance(exc, (httpx.TimeoutException, httpx.NetworkError)):
        retryable = True
    elif isinstance(exc, OSError):
        # ECONNRESET / ENOTFOUND style failures surface as plain OSError.
        retryable = True

    return ModelProviderError(f"{provider} call failed: {exc}", retryable=retryable, provider=provider, details=details)


class ModelProvider(ABC):
    """Abstract base class for model backends."""

    def __init__(self, model_patterns: list[str], cost_per_1k_tokens: float = 0.0):
        self._model_patterns = list(model_patterns)
        self._cost_per_1k_tokens = cost_per_1k_tokens

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider identifier used in usage accounting and logs."""
        ...

    @abstractmethod
    async def is_available(self) -> bool:
        """Whether the provider can currently serve calls. Must not raise."""
        ...

    @abstractmethod
    async def _complete(self, request: ModelRequest) -> tuple[str, Optional[TokenUsage]]:
        """Perform the SDK call and return (text, usage)."""
        ...

    def owns(self, model: str) -> bool:
        return any(fnmatch.fnmatch(model, pattern) for pattern in self._model_patterns)

    def estimate_cost(self, usage: TokenUsage) -> float:
        return usage.total_tokens / 1000 * self._cost_per_1k_tokens

    async def close(self) -> None:
        return None

    async def call(self, request: ModelRequest) -> ModelResponse:
        """Send a request and return a normalised response."""
        started = time.perf_counter()
        logger.debug("model_request", provider=self.name, model=request.model, json_mode=request.json_mode)
        try:
            text, usage = await self._complete(request)
        except ModelProviderError as e:
            logger.warning("model_call_failed", provider=self.name, model=request.model, retryable=e.retryable, error=str(e))
            raise
        except Exception as e:
            error = classify_error(e, self.name)
            logger.warning(
                "model_call_failed",
                provider=self.name,
                model=request.model,
                retryable=error.retryable,
                error=str(e),
            )
            raise error from e

        if not text or not text.strip():
            raise ModelProviderError(
                f"Empty response from {self.name}", retryable=False, provider=self.name
            )

        elapsed_ms = int((time.perf_counter() - started) * 1000)
        logger.debug(
            "model_response",
            provider=self.name,
            model=request.model,
            total_tokens=usage.total_tokens if usage else None,
            response_time_ms=elapsed_ms,
        )
        return ModelResponse(
            content=text,
            model=request.model,
            response_time_ms=elapsed_ms,
            usage=usage,
        )


class AnthropicProvider(ModelProvider):
    """Anthropic API backend using the official SDK."""

    def __init__(self, config: AnthropicConfig):
        super().__init__(config.model_patterns, config.cost_per_1k_tokens)
        self._client = anthropic.AsyncAnthropic(
            api_key=config.api_key,
            base_url=config.base_url,
            max_retries=config.max_retries,
            timeout=config.timeout,
        )

    @property
    def name(self) -> str:
        return "anthropic"

    async def close(self) -> None:
        await self._client.close()

    async def is_available(self) -> bool:
        try:
            await self._client.models.list(limit=1)
            return True
        except Exception as e:
            logger.warning("provider_unavailable", provider=self.name, error=str(e))
            return False

    async def _complete(self, request: ModelRequest) -> tuple[str, Optional[TokenUsage]]:
        kwargs: dict[str, Any] = {
            "model": request.model,
            "max_tokens": request.max_tokens or 4096,
            "messages": [{"role": "user", "content": request.prompt}],
        }
        system = request.system_prompt or ""
        if request.json_mode:
            system = f"{system}\n\nRespond with a single JSON object only.".strip()
        if system:
            kwargs["system"] = system
        if request.temperature is not None:
            kwargs["temperature"] = request.temperature

        response = await self._client.messages.create(**kwargs)

        try:
            text = "\n".join(block.text for block in response.content if block.type == "text")
            usage = TokenUsage(
                prompt_tokens=response.usage.input_tokens,
                completion_tokens=response.usage.output_tokens,
                total_tokens=response.usage.input_tokens + response.usage.output_tokens,
            )
        except AttributeError as e:
            raise ModelProviderError(
                "Malformed response from anthropic", retryable=False, provider=self.name
            ) from e
        return text, usage


class OpenAIProvider(ModelProvider):
    """OpenAI Chat Completions backend using the official SDK."""

    def __init__(self, config: OpenAIConfig):
        super().__init__(config.model_patterns, config.cost_per_1k_tokens)
        self._client = openai.AsyncOpenAI(
            api_key=config.api_key,
            base_url=config.base_url,
            organization=config.organization,
            max_retries=config.max_retries,
            timeout=config.timeout,
        )

    @property
    def name(self) -> str:
        return "openai"

    async def close(self) -> None:
        await self._client.close()

    async def is_available(self) -> bool:
        try:
            await self._client.models.list()
            return True
        except Exception as e:
            logger.warning("provider_unavailable", provider=self.name, error=str(e))
            return False

    async def _complete(self, request: ModelRequest) -> tuple[str, Optional[TokenUsage]]:
        messages: list[dict[str, str]] = []
        if request.system_prompt:
            messages.append({"role": "system", "content": request.system_prompt})
        messages.append({"role": "user", "content": request.prompt})

        kwargs: dict[str, Any] = {"model": request.model, "messages": messages}
        if request.temperature is not None:
            kwargs["temperature"] = request.temperature
        if request.max_tokens:
            kwargs["max_completion_tokens"] = request.max_tokens
        if request.json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        response = await self._client.chat.completions.create(**kwargs)

        try:
            text = response.choices[0].message.content or ""
        except (IndexError, AttributeError) as e:
            raise ModelProviderError(
                "Malformed response from openai", retryable=False, provider=self.name
            ) from e

        usage = None
        if response.usage is not None:
            usage = TokenUsage(
                prompt_tokens=response.usage.prompt_tokens,
                completion_tokens=response.usage.completion_tokens,
                total_tokens=response.usage.total_tokens,
            )
        return text, usage
