"""Exception hierarchy. All SitePilot errors inherit from SitePilotError."""

from __future__ import annotations

from typing import Any


class SitePilotError(Exception):
    """Base exception for all SitePilot errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class ConfigError(SitePilotError):
    """Raised when configuration is invalid or missing."""


# Model gateway
class ModelProviderError(SitePilotError):
    """A single provider call failed.

    Only ``retryable`` is meaningful to callers; the provider-specific cause
    is kept in ``details`` for logging.
    """

    def __init__(
        self,
        message: str,
        retryable: bool,
        provider: str = "",
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, details)
        self.retryable = retryable
        self.provider = provider


class ProviderUnavailable(SitePilotError):
    """No model provider could serve a request."""

    def __init__(self, message: str, retryable: bool = False, details: dict[str, Any] | None = None):
        super().__init__(message, details)
        self.retryable = retryable


class NoProviderAvailable(ProviderUnavailable):
    """Raised by the gateway after the primary and fallback hops both failed."""


# Orchestration
class ClassificationFailure(SitePilotError):
    """The model reply could not be turned into a usable intent label."""


class PlanningInvariantViolation(SitePilotError):
    """A task plan has a cycle, a duplicate id, or a dangling dependency."""


class InvalidTransition(SitePilotError):
    """A state machine was asked to make a transition it does not allow."""


class TaskExecutionFailure(SitePilotError):
    """A worker failed to carry out one task."""

    def __init__(self, task_id: str, message: str, details: dict[str, Any] | None = None):
        super().__init__(message, {"task_id": task_id, **(details or {})})
        self.task_id = task_id


class DeploymentFailure(SitePilotError):
    """The deployment provider reported an error or polling timed out."""


# Storage
class ConversationNotFound(SitePilotError):
    """Raised when a conversation id does not exist."""
