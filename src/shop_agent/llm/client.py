"""Gemini REST client with model cascade, response caching and attempt logging."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

import httpx

from shop_agent.config import ModelClientConfig
from shop_agent.credentials import credential_fingerprint
from shop_agent.errors import IntentParseError, ModelRequestError, ModelUnavailableError
from shop_agent.llm.cache import TTLCache, WorkingModelCache
from shop_agent.obs.tracing import Timer, TraceStore
from shop_agent.retry import RetryPolicy, run_with_retry
from shop_agent.types import AttemptOutcome, GenerationResult, ModelAttempt

logger = logging.getLogger(__name__)

# Quota and per-key rate conditions: the next candidate may still work.
FALLBACK_STATUS_CODES = frozenset({403, 429})


class GeminiModelClient:
    """Calls `generateContent` across an ordered list of candidate models.

    The cascade stops at the first success. 429/403 move on to the next
    candidate; any other non-success status is raised immediately because a
    different model will not fix a malformed request or a bad endpoint.
    Transport errors and 5xx responses are retried on the same model.
    """

    def __init__(
        self,
        *,
        working_models: WorkingModelCache,
        config: ModelClientConfig | None = None,
        http_client: httpx.AsyncClient | None = None,
        response_cache: TTLCache | None = None,
        models_cache: TTLCache | None = None,
        trace_store: TraceStore | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.config = config or ModelClientConfig()
        self.working_models = working_models
        self.response_cache = response_cache or TTLCache(
            self.config.response_cache_ttl_seconds,
            max_entries=self.config.response_cache_max_entries,
        )
        self.models_cache = models_cache or TTLCache(self.config.models_cache_ttl_seconds)
        self.trace_store = trace_store
        self._http = http_client or httpx.AsyncClient(
            timeout=self.config.request_timeout_seconds
        )
        self._sleep = sleep
        self._transport_policy = RetryPolicy(
            max_retries=self.config.max_transport_retries,
            initial_delay_ms=500.0,
            max_delay_ms=4000.0,
        )

    async def aclose(self) -> None:
        await self._http.aclose()

    async def list_models(self, api_key: str) -> list[dict[str, Any]]:
        """Raw model descriptors visible to this credential."""

        async def _fetch() -> list[dict[str, Any]]:
            response = await self._http.get(
                f"{self.config.base_url}/models",
                params={"key": api_key, "pageSize": 1000},
            )
            if not response.is_success:
                raise ModelRequestError(response.status_code, "models.list", _error_reason(response))
            models = response.json().get("models", [])
            return [model for model in models if isinstance(model, dict)]

        return await run_with_retry(
            _fetch, self._transport_policy, sleep=self._sleep, label="models.list"
        )

    async def available_models(self, api_key: str) -> list[str]:
        """Generation-capable model ids for this credential, cached per credential.

        Falls back to the configured candidates when the listing call fails.
        """
        cache_key = ("models", credential_fingerprint(api_key))
        cached = self.models_cache.get(cache_key)
        if cached is not None:
            return list(cached)

        try:
            names = await self.check_models(api_key)
        except (ModelRequestError, httpx.HTTPError) as exc:
            logger.warning("Listing models failed, using configured candidates: %s", exc)
            return list(self.config.candidate_models)

        self.models_cache.set(cache_key, names)
        return list(names)

    async def check_models(self, api_key: str) -> list[str]:
        """Uncached listing of generation-capable models; errors propagate."""
        names = generation_model_names(await self.list_models(api_key))
        logger.info("Found %d available models", len(names))
        return names

    async def candidate_order(self, api_key: str) -> list[str]:
        available = await self.available_models(api_key)
        ordered = order_candidates(self.config.candidate_models, available)
        working = self.working_models.get(api_key)
        if working:
            logger.info("Using cached working model: %s", working)
            ordered = [working, *[model for model in ordered if model != working]]
        return ordered

    def response_key(self, prompt: str, api_key: str, model_id: str) -> tuple[str, str, str]:
        return (credential_fingerprint(api_key), prompt, model_id)

    def invalidate(self, prompt: str, api_key: str, model_id: str) -> None:
        """Drop a cached response, e.g. after it turned out to be unparseable."""
        self.response_cache.delete(self.response_key(prompt, api_key, model_id))

    async def generate(
        self,
        prompt: str,
        api_key: str,
        *,
        model: str | None = None,
    ) -> GenerationResult:
        candidates = [model] if model else await self.candidate_order(api_key)
        attempts: list[ModelAttempt] = []
        last_error: ModelRequestError | None = None

        for model_id in candidates:
            key = self.response_key(prompt, api_key, model_id)
            cached = self.response_cache.get(key)
            if cached is not None:
                logger.debug("Response cache hit for %s", model_id)
                return GenerationResult(
                    text=extract_text(cached), model_id=model_id, cached=True, attempts=attempts
                )

            logger.info("Trying model %d/%d: %s", candidates.index(model_id) + 1, len(candidates), model_id)
            try:
                data = await run_with_retry(
                    lambda: self._generate_once(model_id, prompt, api_key, attempts),
                    self._transport_policy,
                    sleep=self._sleep,
                    label=f"generateContent[{model_id}]",
                )
            except (ModelRequestError, httpx.HTTPError):
                self._emit_attempts(attempts, failed=True)
                raise

            if data is None:
                last = attempts[-1]
                last_error = ModelRequestError(last.status_code or 0, model_id, last.reason or "")
                continue

            self.working_models.remember(api_key, model_id)
            self._emit_attempts(attempts, failed=False)
            text = extract_text(data)
            self.response_cache.set(key, data)
            return GenerationResult(text=text, model_id=model_id, cached=False, attempts=attempts)

        self._emit_attempts(attempts, failed=True)
        message = f"All {len(candidates)} candidate models were rejected"
        if last_error is not None:
            message = f"{message}; last error: {last_error}"
        raise ModelUnavailableError(message, attempts)

    async def _generate_once(
        self,
        model_id: str,
        prompt: str,
        api_key: str,
        attempts: list[ModelAttempt],
    ) -> dict[str, Any] | None:
        """One HTTP call. Returns None when the status says "try another model"."""
        index = len(attempts) + 1
        timer = Timer()
        try:
            with timer:
                response = await self._http.post(
                    f"{self.config.base_url}/models/{model_id}:generateContent",
                    params={"key": api_key},
                    json={"contents": [{"role": "user", "parts": [{"text": prompt}]}]},
                )
        except httpx.TransportError as exc:
            attempts.append(
                ModelAttempt(
                    model_id=model_id,
                    attempt_index=index,
                    outcome=AttemptOutcome.FAILED,
                    duration_ms=timer.elapsed_ms,
                    reason=f"{type(exc).__name__}: {exc}",
                )
            )
            raise

        if response.is_success:
            attempts.append(
                ModelAttempt(
                    model_id=model_id,
                    attempt_index=index,
                    outcome=AttemptOutcome.SUCCESS,
                    duration_ms=timer.elapsed_ms,
                    status_code=response.status_code,
                )
            )
            logger.info("Model %s succeeded (%.0fms)", model_id, timer.elapsed_ms)
            return response.json()

        reason = _error_reason(response)
        attempts.append(
            ModelAttempt(
                model_id=model_id,
                attempt_index=index,
                outcome=AttemptOutcome.FAILED,
                duration_ms=timer.elapsed_ms,
                status_code=response.status_code,
                reason=reason,
            )
        )
        logger.warning("Model %s failed (%d): %s", model_id, response.status_code, reason[:100])
        if response.status_code in FALLBACK_STATUS_CODES:
            return None
        raise ModelRequestError(response.status_code, model_id, reason)

    def _emit_attempts(self, attempts: list[ModelAttempt], *, failed: bool) -> None:
        level = logging.ERROR if failed else logging.INFO
        logger.log(
            level,
            "Model cascade finished after %d attempts",
            len(attempts),
            extra={
                "model_attempts": [
                    {
                        "model": a.model_id,
                        "attempt": a.attempt_index,
                        "status": a.outcome.value,
                        "status_code": a.status_code,
                        "duration_ms": round(a.duration_ms, 1),
                    }
                    for a in attempts
                ]
            },
        )
        if self.trace_store is not None:
            self.trace_store.record_model_call(attempts)


def generation_model_names(descriptors: list[dict[str, Any]]) -> list[str]:
    return [
        str(model["name"]).removeprefix("models/")
        for model in descriptors
        if model.get("name")
        and "generateContent" in (model.get("supportedGenerationMethods") or [])
    ]


def order_candidates(preferred: list[str], available: list[str]) -> list[str]:
    """Preferred models that are available (preferred order), then the rest."""
    if not available:
        return list(preferred)
    available_set = set(available)
    ordered = [model for model in preferred if model in available_set]
    ordered.extend(model for model in available if model not in ordered)
    return ordered


def extract_text(data: dict[str, Any]) -> str:
    try:
        return str(data["candidates"][0]["content"]["parts"][0]["text"])
    except (KeyError, IndexError, TypeError) as exc:
        raise IntentParseError(f"Model response carried no text: {exc!r}") from exc


def _error_reason(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
    return response.text[:200]
