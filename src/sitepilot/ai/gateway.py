"""Model gateway: provider routing, single-hop fallback, and usage accounting."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, replace
from typing import Optional

from sitepilot.ai.client import ModelProvider, ModelRequest, ModelResponse, TokenUsage
from sitepilot.config import ModelConfig
from sitepilot.core.registry import ProviderRegistry
from sitepilot.errors import ModelProviderError, NoProviderAvailable
from sitepilot.log import get_logger

logger = get_logger(__name__)


@dataclass
class ModelUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    cost: float = 0.0
    calls: int = 0


class UsageTracker:
    """Cumulative token usage per provider for the life of the process.

    ``record`` performs no awaits, so concurrent coroutines never interleave
    inside an update.
    """

    def __init__(self) -> None:
        self._usage: dict[str, ModelUsage] = {}

    def record(self, provider: str, usage: TokenUsage, cost: float = 0.0) -> ModelUsage:
        entry = self._usage.setdefault(provider, ModelUsage())
        entry.prompt_tokens += max(usage.prompt_tokens, 0)
        entry.completion_tokens += max(usage.completion_tokens, 0)
        entry.total_tokens += max(usage.total_tokens, 0)
        entry.cost += max(cost, 0.0)
        entry.calls += 1
        return entry

    def get(self, provider: str) -> ModelUsage:
        entry = self._usage.get(provider)
        return replace(entry) if entry else ModelUsage()

    def snapshot(self) -> dict[str, ModelUsage]:
        return {name: replace(entry) for name, entry in self._usage.items()}

    def reset(self, provider: Optional[str] = None) -> None:
        """Operator action: clear one provider's counters, or all of them."""
        if provider is None:
            self._usage.clear()
        else:
            self._usage.pop(provider, None)
        logger.info("usage_reset", provider=provider or "all")


class ModelGateway:
    """Uniform entry point for language-model calls.

    The primary model is tried first; if its provider is unavailable or the
    call fails, the configured fallback model gets exactly one attempt. Callers
    that want more attempts wrap the gateway themselves.
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        config: ModelConfig,
        usage: UsageTracker | None = None,
    ):
        self._registry = registry
        self._config = config
        self.usage = usage or UsageTracker()

    @property
    def default_model(self) -> str:
        return self._config.name

    def _attempts(self, request: ModelRequest) -> list[ModelRequest]:
        primary = replace(
            request,
            model=request.model or self._config.name,
            temperature=request.temperature if request.temperature is not None else self._config.temperature,
            max_tokens=request.max_tokens or self._config.max_tokens,
        )
        attempts = [primary]
        fallback = self._config.fallback
        if fallback is not None and fallback.name != primary.model:
            attempts.append(replace(primary, model=fallback.name, temperature=fallback.temperature))
        return attempts

    async def call(self, request: ModelRequest) -> ModelResponse:
        last_error: ModelProviderError | None = None
        tried: list[str] = []

        for attempt in self._attempts(request):
            tried.append(attempt.model)
            provider = self._registry.resolve(attempt.model)
            if provider is None:
                logger.warning("model_unroutable", model=attempt.model)
                continue
            if not await provider.is_available():
                logger.warning("provider_skipped_unavailable", provider=provider.name, model=attempt.model)
                continue
            try:
                response = await self._call_with_timeout(provider, attempt)
            except ModelProviderError as e:
                last_error = e
                continue

            if response.usage is not None:
                self.usage.record(provider.name, response.usage, provider.estimate_cost(response.usage))
            if len(tried) > 1:
                logger.info("model_fallback_used", primary=tried[0], fallback=attempt.model, provider=provider.name)
            return response

        logger.error("no_provider_available", models=tried, last_error=str(last_error) if last_error else None)
        raise NoProviderAvailable(
            "No model provider could serve the request",
            retryable=last_error.retryable if last_error else False,
            details={"models": tried},
        )

    async def _call_with_timeout(self, provider: ModelProvider, request: ModelRequest) -> ModelResponse:
        try:
            return await asyncio.wait_for(provider.call(request), timeout=self._config.timeout)
        except asyncio.TimeoutError as e:
            logger.warning("model_call_timeout", provider=provider.name, model=request.model, timeout=self._config.timeout)
            raise ModelProviderError(
                f"{provider.name} call timed out after {self._config.timeout}s",
                retryable=True,
                provider=provider.name,
            ) from e
