from collections.abc import Callable
from datetime import date

import httpx
import pytest

from shop_agent.config import ModelClientConfig
from shop_agent.errors import IntentParseError, ModelRequestError, ModelUnavailableError
from shop_agent.llm.cache import WorkingModelCache
from shop_agent.llm.client import GeminiModelClient
from shop_agent.llm.intent import IntentResolver
from shop_agent.obs.tracing import TraceStore
from shop_agent.store.kv import InMemoryKeyValueStore
from shop_agent.types import AttemptOutcome

MODELS = ["model-a", "model-b", "model-c"]


async def _no_sleep(_: float) -> None:
    return None


def _gemini(text: str) -> dict:
    return {"candidates": [{"content": {"parts": [{"text": text}]}}]}


def _listing(names: list[str]) -> dict:
    return {
        "models": [
            {"name": f"models/{name}", "supportedGenerationMethods": ["generateContent"]}
            for name in names
        ]
        + [{"name": "models/embedding-001", "supportedGenerationMethods": ["embedContent"]}]
    }


class ScriptedEndpoint:
    def __init__(self, statuses: dict[str, list[int]], text: str = '{"product": "phone"}') -> None:
        self.statuses = statuses
        self.text = text
        self.calls: list[str] = []
        self.list_status = 200

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/models"):
            if self.list_status != 200:
                return httpx.Response(self.list_status, json={"error": {"message": "listing down"}})
            return httpx.Response(200, json=_listing(MODELS))
        model = request.url.path.rsplit("/", 1)[-1].split(":", 1)[0]
        self.calls.append(model)
        script = self.statuses.get(model, [200])
        status = script.pop(0) if len(script) > 1 else script[0]
        if status == 200:
            return httpx.Response(200, json=_gemini(self.text))
        return httpx.Response(status, json={"error": {"message": f"status {status} from {model}"}})


def _client(
    endpoint: ScriptedEndpoint,
    *,
    store: InMemoryKeyValueStore | None = None,
    trace_store: TraceStore | None = None,
    today: Callable[[], date] = date.today,
) -> GeminiModelClient:
    return GeminiModelClient(
        working_models=WorkingModelCache(store or InMemoryKeyValueStore(), today=today),
        config=ModelClientConfig(candidate_models=list(MODELS)),
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(endpoint)),
        trace_store=trace_store,
        sleep=_no_sleep,
    )


@pytest.mark.asyncio
async def test_quota_errors_fall_through_to_next_model() -> None:
    endpoint = ScriptedEndpoint({"model-a": [429], "model-b": [429], "model-c": [200]})
    trace_store = TraceStore()
    client = _client(endpoint, trace_store=trace_store)

    result = await client.generate("prompt", "key-1")
    await client.aclose()

    assert result.model_id == "model-c"
    assert result.cached is False
    assert [(a.model_id, a.outcome) for a in result.attempts] == [
        ("model-a", AttemptOutcome.FAILED),
        ("model-b", AttemptOutcome.FAILED),
        ("model-c", AttemptOutcome.SUCCESS),
    ]
    assert [a.attempt_index for a in result.attempts] == [1, 2, 3]
    assert result.attempts[0].status_code == 429
    assert endpoint.calls == MODELS
    assert trace_store.summary()["failed_model_attempts"] == 2


@pytest.mark.asyncio
async def test_forbidden_is_treated_like_quota() -> None:
    endpoint = ScriptedEndpoint({"model-a": [403]})
    client = _client(endpoint)

    result = await client.generate("prompt", "key-1")
    await client.aclose()

    assert result.model_id == "model-b"
    assert len(result.attempts) == 2


@pytest.mark.asyncio
async def test_other_client_errors_stop_the_cascade() -> None:
    endpoint = ScriptedEndpoint({"model-a": [400]})
    client = _client(endpoint)

    with pytest.raises(ModelRequestError) as excinfo:
        await client.generate("prompt", "key-1")
    await client.aclose()

    assert excinfo.value.status_code == 400
    assert endpoint.calls == ["model-a"]


@pytest.mark.asyncio
async def test_server_errors_retry_the_same_model() -> None:
    endpoint = ScriptedEndpoint({"model-a": [503, 200]})
    client = _client(endpoint)

    result = await client.generate("prompt", "key-1")
    await client.aclose()

    assert result.model_id == "model-a"
    assert endpoint.calls == ["model-a", "model-a"]
    assert [a.outcome for a in result.attempts] == [AttemptOutcome.FAILED, AttemptOutcome.SUCCESS]


@pytest.mark.asyncio
async def test_every_candidate_rejected_raises_model_unavailable() -> None:
    endpoint = ScriptedEndpoint({name: [429] for name in MODELS})
    client = _client(endpoint)

    with pytest.raises(ModelUnavailableError) as excinfo:
        await client.generate("prompt", "key-1")
    await client.aclose()

    assert len(excinfo.value.attempts) == 3
    assert all(a.outcome is AttemptOutcome.FAILED for a in excinfo.value.attempts)


@pytest.mark.asyncio
async def test_working_model_is_promoted_for_the_rest_of_the_day() -> None:
    store = InMemoryKeyValueStore()
    endpoint = ScriptedEndpoint({"model-a": [429], "model-b": [429]})
    client = _client(endpoint, store=store, today=lambda: date(2024, 5, 1))

    await client.generate("first prompt", "key-1")
    endpoint.calls.clear()
    second = await client.generate("second prompt", "key-1")

    assert endpoint.calls == ["model-c"]
    assert len(second.attempts) == 1

    tomorrow = _client(endpoint, store=store, today=lambda: date(2024, 5, 2))
    assert await tomorrow.candidate_order("key-1") == MODELS
    await client.aclose()
    await tomorrow.aclose()


@pytest.mark.asyncio
async def test_repeat_prompt_is_served_from_response_cache() -> None:
    endpoint = ScriptedEndpoint({})
    client = _client(endpoint)

    first = await client.generate("prompt", "key-1")
    second = await client.generate("prompt", "key-1")
    await client.aclose()

    assert first.cached is False
    assert second.cached is True
    assert second.text == first.text
    assert endpoint.calls == ["model-a"]


@pytest.mark.asyncio
async def test_listing_failure_degrades_to_configured_candidates() -> None:
    endpoint = ScriptedEndpoint({})
    endpoint.list_status = 500
    client = _client(endpoint)

    assert await client.available_models("key-1") == MODELS
    with pytest.raises(ModelRequestError):
        await client.check_models("key-1")
    await client.aclose()


@pytest.mark.asyncio
async def test_check_models_filters_to_generation_capable() -> None:
    client = _client(ScriptedEndpoint({}))
    assert await client.check_models("key-1") == MODELS
    await client.aclose()


@pytest.mark.asyncio
async def test_unparseable_answer_is_evicted_from_cache() -> None:
    endpoint = ScriptedEndpoint({}, text="Sure! I can help you shop.")
    client = _client(endpoint)
    resolver = IntentResolver(client)

    with pytest.raises(IntentParseError):
        await resolver.resolve_intent("buy a phone", "key-1")
    with pytest.raises(IntentParseError):
        await resolver.resolve_intent("buy a phone", "key-1")
    await client.aclose()

    assert len(client.response_cache) == 0
    assert endpoint.calls == ["model-a", "model-a"]


@pytest.mark.asyncio
async def test_resolver_reads_fenced_json() -> None:
    endpoint = ScriptedEndpoint(
        {}, text='```json\n{"product": "Samsung phone", "filters": {"price_max": 50000}}\n```'
    )
    client = _client(endpoint)

    intent = await IntentResolver(client).resolve_intent("Buy a Samsung phone under 50000", "key-1")
    await client.aclose()

    assert intent.product == "Samsung phone"
    assert intent.filters == {"price_max": 50000}
    assert intent.platform is None
