"""FastAPI entrypoint for the shopping agent command surface and page-agent bridge."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import asdict
from typing import Any

import httpx
from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field, ValidationError

from shop_agent.config import AppSettings
from shop_agent.credentials import CredentialStore, credential_fingerprint
from shop_agent.errors import MissingCredentialError, ModelRequestError
from shop_agent.flow.orchestrator import ShoppingFlowOrchestrator
from shop_agent.flow.session import FlowSnapshotStore
from shop_agent.llm.cache import WorkingModelCache
from shop_agent.llm.client import GeminiModelClient
from shop_agent.llm.intent import IntentResolver
from shop_agent.obs.logging import configure_logging
from shop_agent.obs.tracing import TraceStore
from shop_agent.page.channel import AgentChannel
from shop_agent.page.transport import OutboxTransport
from shop_agent.platforms.registry import PlatformRegistry, register_builtin_platforms
from shop_agent.store.kv import (
    BestEffortStore,
    InMemoryKeyValueStore,
    KeyValueStore,
    SqliteKeyValueStore,
)


class QueryRequest(BaseModel):
    text: str = Field(min_length=1)


class ModelsCheckRequest(BaseModel):
    api_key: str | None = None


class CredentialsRequest(BaseModel):
    api_key: str = Field(min_length=1)


class AgentMessagesRequest(BaseModel):
    messages: list[dict[str, Any]] = Field(default_factory=list)


def _create_store(settings: AppSettings) -> KeyValueStore:
    if not settings.store_path:
        return InMemoryKeyValueStore()
    return BestEffortStore(SqliteKeyValueStore(settings.store_path))


def create_app(
    settings: AppSettings | None = None,
    *,
    store: KeyValueStore | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> FastAPI:
    settings = settings or AppSettings.from_env()
    store = store or _create_store(settings)

    trace_store = TraceStore()
    credentials = CredentialStore(store)
    client = GeminiModelClient(
        working_models=WorkingModelCache(store),
        config=settings.model,
        http_client=http_client,
        trace_store=trace_store,
    )
    registry = PlatformRegistry()
    register_builtin_platforms(registry)
    transport = OutboxTransport()
    channel = AgentChannel(transport, settings.channel)
    orchestrator = ShoppingFlowOrchestrator(
        resolver=IntentResolver(client),
        registry=registry,
        channel=channel,
        credentials=credentials,
        snapshots=FlowSnapshotStore(store),
        trace_store=trace_store,
        config=settings.flow,
    )

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        configure_logging(settings.log_level)
        await orchestrator.restore()
        yield
        await orchestrator.cancel_current_flow()
        await client.aclose()

    app = FastAPI(title="Shop Agent", version="0.1.0", lifespan=lifespan)
    app.state.orchestrator = orchestrator
    app.state.transport = transport
    app.state.trace_store = trace_store

    @app.get("/health")
    def health() -> dict[str, Any]:
        return {
            "status": "ok",
            "api_key_configured": credentials.get_api_key() is not None,
            "platforms": registry.ids(),
            "flow_status": orchestrator.status()["status"],
            "trace_count": len(trace_store.list_recent(limit=1000)),
        }

    @app.post("/query")
    async def query(request: QueryRequest) -> dict[str, Any]:
        return await orchestrator.submit_query(request.text)

    @app.post("/models/check")
    async def check_models(request: ModelsCheckRequest) -> dict[str, Any]:
        try:
            models = await orchestrator.check_available_models(request.api_key)
        except MissingCredentialError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        except ModelRequestError as exc:
            raise HTTPException(status_code=502, detail=str(exc)) from exc
        except httpx.HTTPError as exc:
            raise HTTPException(status_code=502, detail=f"Model endpoint unreachable: {exc}") from exc
        return {"models": models}

    @app.get("/flow")
    def flow_status() -> dict[str, Any]:
        return orchestrator.status()

    @app.post("/flow/cancel")
    async def cancel_flow() -> dict[str, Any]:
        return {"cancelled": await orchestrator.cancel_current_flow()}

    @app.put("/credentials")
    def store_credentials(request: CredentialsRequest) -> dict[str, Any]:
        credentials.set_api_key(request.api_key)
        return {"stored": True, "fingerprint": credential_fingerprint(request.api_key.strip())}

    @app.get("/agent/outbox")
    async def agent_outbox(wait: float = 0.0, limit: int | None = None) -> dict[str, Any]:
        if wait > 0:
            await transport.wait_for_items(min(wait, 30.0))
        return {"items": [item.model_dump(mode="json") for item in transport.drain(limit)]}

    @app.post("/agent/messages")
    async def agent_messages(request: AgentMessagesRequest) -> dict[str, Any]:
        accepted = 0
        discarded = 0
        for message in request.messages:
            try:
                delivered = channel.receive(message)
            except ValidationError as exc:
                raise HTTPException(status_code=422, detail=str(exc)) from exc
            if delivered:
                accepted += 1
            else:
                discarded += 1
        return {"accepted": accepted, "discarded": discarded}

    @app.get("/traces")
    def traces(limit: int = 20) -> dict[str, Any]:
        records = [asdict(record) for record in trace_store.list_recent(limit=limit)]
        return {"items": records}

    @app.get("/traces/{trace_id}")
    def trace_detail(trace_id: str) -> dict[str, Any]:
        try:
            record = trace_store.get(trace_id)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        return asdict(record)

    @app.get("/metrics")
    def metrics() -> dict[str, Any]:
        return trace_store.summary()

    return app


app = create_app()
