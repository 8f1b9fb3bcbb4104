"""Exponential backoff with jitter, retryability rules and condition polling."""

from __future__ import annotations

import asyncio
import inspect
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, TypeVar

import httpx

from shop_agent.errors import ConditionTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")

JITTER_RATIO = 0.3


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Per call-site retry settings.

    `max_retries` counts retries after the first attempt. `retry_on` and
    `retryable` form the call site's allow-list on top of the default
    transient classification.
    """

    max_retries: int = 3
    initial_delay_ms: float = 1000.0
    max_delay_ms: float = 30000.0
    multiplier: float = 2.0
    retry_on: tuple[type[BaseException], ...] = ()
    retryable: Callable[[BaseException], bool] | None = None


def compute_delay_ms(
    attempt: int, policy: RetryPolicy, rng: random.Random | None = None
) -> float:
    """Delay before retry `attempt` (0-based): capped exponential plus up to 30% jitter."""
    base = min(policy.initial_delay_ms * (policy.multiplier**attempt), policy.max_delay_ms)
    roll = (rng or random).random()
    return base + roll * JITTER_RATIO * base


def is_transient(exc: BaseException) -> bool:
    """Default classification: network-class failures and 5xx/429 statuses."""
    if getattr(exc, "retryable", False) is True:
        return True
    if isinstance(exc, (httpx.TransportError, ConnectionError, TimeoutError)):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
    else:
        status = getattr(exc, "status_code", None)
    if isinstance(status, int):
        return status >= 500 or status == 429
    return False


def is_retryable(exc: BaseException, policy: RetryPolicy) -> bool:
    if getattr(exc, "permanent", False):
        return False
    if policy.retry_on and isinstance(exc, policy.retry_on):
        return True
    if policy.retryable is not None and policy.retryable(exc):
        return True
    return is_transient(exc)


async def run_with_retry(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    before_attempt: Callable[[], None] | None = None,
    on_retry: Callable[[int, BaseException, float], None] | None = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    rng: random.Random | None = None,
    label: str = "operation",
) -> T:
    """Run `operation` until it succeeds, fails permanently or runs out of retries.

    The last error is re-raised unchanged. `before_attempt` runs before every
    attempt and may raise to abandon the loop (used to stop a superseded
    flow). `on_retry` receives `(retry_number, error, delay_ms)`.
    """

    attempt = 0
    while True:
        if before_attempt is not None:
            before_attempt()
        try:
            result = await operation()
        except Exception as exc:
            if not is_retryable(exc, policy):
                logger.debug("%s failed with non-retryable %s", label, type(exc).__name__)
                raise
            if attempt >= policy.max_retries:
                logger.warning(
                    "%s failed after %d retries: %s", label, policy.max_retries, exc
                )
                raise
            delay_ms = compute_delay_ms(attempt, policy, rng)
            attempt += 1
            logger.info(
                "Retrying %s (%d/%d) in %.0fms: %s",
                label,
                attempt,
                policy.max_retries,
                delay_ms,
                exc,
            )
            if on_retry is not None:
                on_retry(attempt, exc, delay_ms)
            await sleep(delay_ms / 1000.0)
            continue

        if attempt > 0:
            logger.info("%s succeeded after %d retries", label, attempt)
        return result


async def wait_for_condition(
    predicate: Callable[[], Any],
    timeout_ms: float,
    poll_interval_ms: float = 500.0,
    *,
    description: str = "condition",
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> Any:
    """Poll `predicate` (sync or async) until it returns a truthy value.

    Transient errors raised by the predicate count as "not yet"; any other
    error propagates. Raises `ConditionTimeoutError` when `timeout_ms`
    elapses first.
    """

    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout_ms / 1000.0
    while True:
        try:
            value = predicate()
            if inspect.isawaitable(value):
                value = await value
        except Exception as exc:
            if not is_transient(exc):
                raise
            logger.debug("Transient error while polling %s: %s", description, exc)
            value = None
        if value:
            return value
        remaining = deadline - loop.time()
        if remaining <= 0:
            raise ConditionTimeoutError(description, timeout_ms)
        await sleep(min(poll_interval_ms / 1000.0, remaining))
