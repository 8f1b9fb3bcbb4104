import random

import httpx
import pytest

from shop_agent.errors import (
    AgentUnreachableError,
    ConditionTimeoutError,
    IntentParseError,
    UnsupportedOperationError,
)
from shop_agent.retry import RetryPolicy, compute_delay_ms, is_retryable, run_with_retry, wait_for_condition


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds * 1000.0)


class FlakyOperation:
    def __init__(self, errors: list[Exception], result: str = "ok") -> None:
        self.errors = list(errors)
        self.result = result
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.result


@pytest.mark.asyncio
async def test_backoff_delays_and_reraise_after_max_retries() -> None:
    policy = RetryPolicy(max_retries=3, initial_delay_ms=1000, multiplier=2)
    errors = [AgentUnreachableError(f"attempt {n}") for n in range(4)]
    last = errors[-1]
    operation = FlakyOperation(errors)
    sleep = RecordingSleep()

    with pytest.raises(AgentUnreachableError) as excinfo:
        await run_with_retry(operation, policy, sleep=sleep, rng=random.Random(7))

    assert excinfo.value is last
    assert operation.calls == 4
    assert len(sleep.delays) == 3
    for delay, base in zip(sleep.delays, [1000, 2000, 4000]):
        assert base <= delay <= base * 1.3


def test_delay_is_capped_before_jitter() -> None:
    policy = RetryPolicy(initial_delay_ms=1000, max_delay_ms=5000, multiplier=2)
    delay = compute_delay_ms(10, policy, random.Random(1))
    assert 5000 <= delay <= 6500


@pytest.mark.asyncio
async def test_succeeds_after_transient_failures() -> None:
    operation = FlakyOperation([httpx.ConnectError("refused"), TimeoutError()])
    sleep = RecordingSleep()

    result = await run_with_retry(operation, RetryPolicy(max_retries=3), sleep=sleep)

    assert result == "ok"
    assert operation.calls == 3


@pytest.mark.asyncio
async def test_permanent_errors_are_never_retried() -> None:
    operation = FlakyOperation([UnsupportedOperationError("ebay", "add_to_cart")])
    policy = RetryPolicy(retry_on=(UnsupportedOperationError,))

    with pytest.raises(UnsupportedOperationError):
        await run_with_retry(operation, policy, sleep=RecordingSleep())

    assert operation.calls == 1


@pytest.mark.asyncio
async def test_parse_errors_retry_only_when_allow_listed() -> None:
    plain = FlakyOperation([IntentParseError("bad json")])
    with pytest.raises(IntentParseError):
        await run_with_retry(plain, RetryPolicy(), sleep=RecordingSleep())
    assert plain.calls == 1

    allowed = FlakyOperation([IntentParseError("bad json")])
    result = await run_with_retry(
        allowed, RetryPolicy(retry_on=(IntentParseError,)), sleep=RecordingSleep()
    )
    assert result == "ok"
    assert allowed.calls == 2


def test_status_code_classification() -> None:
    class StatusError(Exception):
        def __init__(self, status_code: int) -> None:
            super().__init__(status_code)
            self.status_code = status_code

    policy = RetryPolicy()
    assert is_retryable(StatusError(503), policy)
    assert is_retryable(StatusError(429), policy)
    assert not is_retryable(StatusError(404), policy)
    assert not is_retryable(ValueError("nope"), policy)
    assert is_retryable(ValueError("nope"), RetryPolicy(retryable=lambda exc: "nope" in str(exc)))


@pytest.mark.asyncio
async def test_before_attempt_can_abandon_the_loop() -> None:
    class Stop(Exception):
        pass

    operation = FlakyOperation([AgentUnreachableError("down")] * 5)
    state = {"attempts": 0}

    def before_attempt() -> None:
        state["attempts"] += 1
        if state["attempts"] > 2:
            raise Stop()

    with pytest.raises(Stop):
        await run_with_retry(
            operation, RetryPolicy(max_retries=5), before_attempt=before_attempt, sleep=RecordingSleep()
        )

    assert operation.calls == 2


@pytest.mark.asyncio
async def test_wait_for_condition_returns_truthy_value() -> None:
    polls = {"count": 0}

    def predicate() -> str | None:
        polls["count"] += 1
        if polls["count"] == 2:
            raise AgentUnreachableError("page busy")
        return "ready" if polls["count"] >= 3 else None

    assert await wait_for_condition(predicate, 1000, 1) == "ready"
    assert polls["count"] == 3


@pytest.mark.asyncio
async def test_wait_for_condition_accepts_async_predicates() -> None:
    async def predicate() -> bool:
        return True

    assert await wait_for_condition(predicate, 100, 1) is True


@pytest.mark.asyncio
async def test_wait_for_condition_times_out() -> None:
    with pytest.raises(ConditionTimeoutError) as excinfo:
        await wait_for_condition(lambda: False, 30, 5, description="confirmation page")

    assert excinfo.value.code == "CONDITION_TIMEOUT"
    assert "confirmation page" in str(excinfo.value)


@pytest.mark.asyncio
async def test_wait_for_condition_propagates_non_transient_errors() -> None:
    def predicate() -> bool:
        raise KeyError("broken")

    with pytest.raises(KeyError):
        await wait_for_condition(predicate, 100, 1)
