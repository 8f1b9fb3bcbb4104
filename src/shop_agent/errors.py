"""Error taxonomy shared by the model client, registry, channel and flow."""

from __future__ import annotations

from typing import Any


class ShopAgentError(Exception):
    """Base class for domain errors.

    `code` is the stable identifier surfaced on a FAILED flow. `retryable`
    marks transient errors the retry engine may repeat by default, and
    `permanent` marks errors that must never be retried, whatever the call
    site allows.
    """

    code = "INTERNAL_ERROR"
    retryable = False
    permanent = False


class IntentParseError(ShopAgentError):
    code = "INTENT_PARSE_ERROR"


class ModelRequestError(ShopAgentError):
    """The model endpoint answered with a non-success status."""

    code = "MODEL_REQUEST_ERROR"

    def __init__(self, status_code: int, model: str, reason: str) -> None:
        super().__init__(f"Model API error {status_code} on {model}: {reason}")
        self.status_code = status_code
        self.model = model
        self.reason = reason


class ModelUnavailableError(ShopAgentError):
    code = "MODEL_UNAVAILABLE"

    def __init__(self, message: str, attempts: list[Any] | None = None) -> None:
        super().__init__(message)
        self.attempts = list(attempts or [])


class PlatformNotFoundError(ShopAgentError):
    code = "PLATFORM_NOT_FOUND"
    permanent = True

    def __init__(self, platform_id: str) -> None:
        super().__init__(f"Platform not found: {platform_id}")
        self.platform_id = platform_id


class UnsupportedOperationError(ShopAgentError):
    code = "UNSUPPORTED_OPERATION"
    permanent = True

    def __init__(self, platform_id: str, operation: str) -> None:
        super().__init__(f"{operation}() is not supported on {platform_id}")
        self.platform_id = platform_id
        self.operation = operation


class NoResultsError(ShopAgentError):
    code = "NO_RESULTS"


class ConditionTimeoutError(ShopAgentError):
    code = "CONDITION_TIMEOUT"

    def __init__(self, description: str, timeout_ms: float) -> None:
        super().__init__(f"Condition not met within {timeout_ms:.0f}ms: {description}")
        self.description = description
        self.timeout_ms = timeout_ms


class AgentUnreachableError(ShopAgentError):
    """The page agent did not answer: channel closed or round trip timed out."""

    code = "AGENT_UNREACHABLE"
    retryable = True


class AgentActionError(ShopAgentError):
    """The page agent answered with `success: false`."""

    code = "AGENT_ACTION_FAILED"

    def __init__(self, action: str, message: str, *, retryable: bool = False) -> None:
        super().__init__(f"{action} failed: {message}")
        self.action = action
        self.retryable = retryable


class MissingCredentialError(ShopAgentError):
    code = "MISSING_API_KEY"
