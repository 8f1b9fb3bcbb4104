import json
from typing import Any

import httpx
import pytest
from fastapi.testclient import TestClient

from shop_agent.api.main import create_app
from shop_agent.config import AppSettings, FlowConfig
from shop_agent.store.kv import InMemoryKeyValueStore

INTENT = {"product": "Samsung phone", "filters": {"price_max": 50000}}


def _model_endpoint(request: httpx.Request) -> httpx.Response:
    if request.url.path.endswith("/models"):
        return httpx.Response(
            200,
            json={
                "models": [
                    {"name": "models/gemini-1.5-flash", "supportedGenerationMethods": ["generateContent"]}
                ]
            },
        )
    text = json.dumps(INTENT)
    return httpx.Response(200, json={"candidates": [{"content": {"parts": [{"text": text}]}}]})


def _app():
    settings = AppSettings(
        flow=FlowConfig(page_ready_floor_seconds=0.0, poll_interval_seconds=0.01),
    )
    return create_app(
        settings,
        store=InMemoryKeyValueStore(),
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(_model_endpoint)),
    )


def _page_loaded(context_id: str, url: str) -> dict[str, Any]:
    return {
        "type": "PAGE_LOADED",
        "context_id": context_id,
        "url": url,
        "event_id": f"{context_id}:{url}",
    }


def _answer(item: dict[str, Any]) -> list[dict[str, Any]]:
    """What a page agent on amazon.in would post back for one request."""
    action = item["action"]
    context_id = item["context_id"]
    reply: dict[str, Any] = {"type": "RESPONSE", "request_id": item["request_id"], "success": True}
    follow_up: list[dict[str, Any]] = []
    if action == "SEARCH":
        follow_up.append(_page_loaded(context_id, "https://www.amazon.in/s?k=samsung+phone"))
    elif action == "GET_RESULTS":
        reply["data"] = {
            "items": [
                {"index": 0, "title": "Galaxy S24", "link": "/sspa/click?x", "price": "49,999"},
                {"index": 1, "title": "Galaxy M34", "link": "/dp/B0C7", "price": "16,999"},
            ]
        }
    elif action == "SELECT_PRODUCT":
        follow_up.append(_page_loaded(context_id, "https://www.amazon.in/dp/B0C7"))
    elif action == "BUY_NOW":
        follow_up.append(_page_loaded(context_id, "https://www.amazon.in/gp/buy/thankyou"))
    elif action == "CHECK_LOGIN_STATUS":
        reply["data"] = {"logged_in": True}
    elif action == "GET_ORDER_DETAILS":
        reply["data"] = {"orderId": "171-0000000-1111111"}
    return [reply, *follow_up]


def _drive_page_agent(client: TestClient, *, rounds: int = 60) -> list[str]:
    actions: list[str] = []
    for _ in range(rounds):
        items = client.get("/agent/outbox", params={"wait": 0.5}).json()["items"]
        messages: list[dict[str, Any]] = []
        for item in items:
            if item["type"] == "OPEN_PAGE":
                messages.append(_page_loaded(item["context_id"], item["url"]))
            elif item["type"] == "REQUEST":
                actions.append(item["action"])
                messages.extend(_answer(item))
        if messages:
            assert client.post("/agent/messages", json={"messages": messages}).status_code == 200
        if not client.get("/flow").json()["active"]:
            break
    return actions


def test_api_query_drives_flow_to_completion(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)

    with TestClient(_app()) as client:
        health = client.get("/health").json()
        assert health["status"] == "ok"
        assert health["api_key_configured"] is False
        assert health["platforms"] == ["amazon", "flipkart", "ebay", "walmart"]

        stored = client.put("/credentials", json={"api_key": "test-key"})
        assert stored.status_code == 200
        assert "test-key" not in json.dumps(stored.json())

        ack = client.post("/query", json={"text": "Buy a Samsung phone under 50000"})
        assert ack.status_code == 200
        assert ack.json()["status"] == "processing"

        actions = _drive_page_agent(client)
        assert actions == [
            "SEARCH",
            "GET_RESULTS",
            "SELECT_PRODUCT",
            "BUY_NOW",
            "CHECK_LOGIN_STATUS",
            "GET_ORDER_DETAILS",
        ]

        flow = client.get("/flow").json()
        assert flow["active"] is False
        outcome = flow["last_outcome"]
        assert outcome["flow_id"] == ack.json()["flow_id"]
        assert outcome["status"] == "COMPLETED"
        assert outcome["order"]["order_id"] == "171-0000000-1111111"

        trace = client.get(f"/traces/{outcome['trace_id']}")
        assert trace.status_code == 200
        assert trace.json()["transitions"][-1] == "COMPLETED"

        metrics = client.get("/metrics").json()
        assert metrics["total_flows"] == 1
        assert metrics["completed"] == 1
        assert metrics["model_calls"] == 1


def test_api_models_check_and_error_mapping(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)

    with TestClient(_app()) as client:
        assert client.post("/models/check", json={}).status_code == 400

        checked = client.post("/models/check", json={"api_key": "direct-key"})
        assert checked.status_code == 200
        assert checked.json() == {"models": ["gemini-1.5-flash"]}

        assert client.post("/query", json={"text": ""}).status_code == 422
        assert client.get("/traces/unknown").status_code == 404
        assert client.post("/flow/cancel").json() == {"cancelled": False}

        stale = client.post(
            "/agent/messages",
            json={"messages": [{"type": "RESPONSE", "request_id": "gone", "success": True}]},
        )
        assert stale.json() == {"accepted": 0, "discarded": 1}

        bogus = client.post("/agent/messages", json={"messages": [{"type": "BOGUS"}]})
        assert bogus.status_code == 422
