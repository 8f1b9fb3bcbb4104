import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import httpx
import pytest

from flow_fakes import FakeModelEndpoint, FakePageAgent
from shop_agent.config import ChannelConfig, FlowConfig, ModelClientConfig
from shop_agent.credentials import CredentialStore
from shop_agent.flow.orchestrator import ShoppingFlowOrchestrator
from shop_agent.flow.session import FlowSnapshotStore
from shop_agent.llm.cache import WorkingModelCache
from shop_agent.llm.client import GeminiModelClient
from shop_agent.llm.intent import IntentResolver
from shop_agent.obs.tracing import TraceStore
from shop_agent.page.channel import AgentChannel
from shop_agent.page.transport import OutboxTransport
from shop_agent.platforms.registry import PlatformRegistry, register_builtin_platforms
from shop_agent.retry import wait_for_condition
from shop_agent.store.kv import InMemoryKeyValueStore


@dataclass
class Harness:
    orchestrator: ShoppingFlowOrchestrator
    agent: FakePageAgent
    endpoint: FakeModelEndpoint
    store: InMemoryKeyValueStore
    trace_store: TraceStore
    transport: OutboxTransport
    channel: AgentChannel
    client: GeminiModelClient
    tasks: list[asyncio.Task[Any]] = field(default_factory=list)

    def start_agent(self) -> None:
        self.tasks.append(asyncio.create_task(self.agent.run()))

    async def wait_until_idle(self, timeout_ms: float = 3000.0) -> None:
        await wait_for_condition(
            lambda: self.orchestrator.current is None,
            timeout_ms,
            10.0,
            description="flow to finish",
        )

    async def close(self) -> None:
        await self.orchestrator.cancel_current_flow()
        self.agent.stop()
        for task in self.tasks:
            task.cancel()
        await asyncio.gather(*self.tasks, return_exceptions=True)
        await self.client.aclose()


async def _no_sleep(_: float) -> None:
    return None


@pytest.fixture
def make_harness() -> Callable[..., Harness]:
    def _make(
        *,
        intent: dict[str, Any] | None = None,
        platform_id: str = "amazon",
        api_key: str | None = "test-key",
        store: InMemoryKeyValueStore | None = None,
    ) -> Harness:
        store = store or InMemoryKeyValueStore()
        endpoint = FakeModelEndpoint(intent)
        trace_store = TraceStore()
        client = GeminiModelClient(
            working_models=WorkingModelCache(store),
            config=ModelClientConfig(candidate_models=["gemini-1.5-flash"]),
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(endpoint)),
            trace_store=trace_store,
            sleep=_no_sleep,
        )
        credentials = CredentialStore(store, env_var="SHOP_AGENT_TEST_UNSET_KEY")
        if api_key:
            credentials.set_api_key(api_key)
        registry = PlatformRegistry()
        register_builtin_platforms(registry)
        transport = OutboxTransport()
        channel = AgentChannel(
            transport,
            ChannelConfig(request_timeout_seconds=0.5, max_retries=1, initial_delay_ms=1, max_delay_ms=5),
        )
        orchestrator = ShoppingFlowOrchestrator(
            resolver=IntentResolver(client),
            registry=registry,
            channel=channel,
            credentials=credentials,
            snapshots=FlowSnapshotStore(store),
            trace_store=trace_store,
            config=FlowConfig(
                page_ready_floor_seconds=0.0,
                page_ready_timeout_seconds=2.0,
                poll_interval_seconds=0.01,
                checkout_timeout_seconds=2.0,
                parse_max_retries=1,
            ),
        )
        return Harness(
            orchestrator=orchestrator,
            agent=FakePageAgent(transport, channel, platform_id),
            endpoint=endpoint,
            store=store,
            trace_store=trace_store,
            transport=transport,
            channel=channel,
            client=client,
        )

    return _make
