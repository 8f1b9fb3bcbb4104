"""Correlated request/response channel to the page-resident agent."""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from shop_agent.config import ChannelConfig
from shop_agent.errors import AgentActionError, AgentUnreachableError
from shop_agent.page.protocol import (
    MUTATING_ACTIONS,
    AgentAction,
    AgentRequest,
    AgentResponse,
    PageLoaded,
    inbound_adapter,
)
from shop_agent.page.transport import PageTransport

logger = logging.getLogger(__name__)

PageListener = Callable[[PageLoaded], None]


class AgentChannel:
    """Matches agent responses to requests by `request_id`.

    The transport may drop, delay or duplicate messages. A request with no
    reply within the timeout raises `AgentUnreachableError`; replies for ids
    that are no longer pending (late or duplicated) are discarded.
    """

    def __init__(self, transport: PageTransport, config: ChannelConfig | None = None) -> None:
        self.transport = transport
        self.config = config or ChannelConfig()
        self._pending: dict[str, asyncio.Future[AgentResponse]] = {}
        self._listeners: list[PageListener] = []

    def add_page_listener(self, listener: PageListener) -> None:
        self._listeners.append(listener)

    async def open_page(self, url: str) -> str:
        return await self.transport.open_page(url)

    async def navigate(self, context_id: str, url: str) -> None:
        await self.transport.navigate(context_id, url)

    async def close_page(self, context_id: str) -> None:
        await self.transport.close_page(context_id)

    def adopt_page(self, context_id: str) -> None:
        self.transport.adopt(context_id)

    async def request(
        self,
        context_id: str,
        action: AgentAction,
        payload: dict[str, Any] | None = None,
        *,
        request_id: str | None = None,
        timeout: float | None = None,
    ) -> AgentResponse:
        request_id = request_id or uuid.uuid4().hex
        wait_seconds = timeout or self.config.request_timeout_seconds
        future: asyncio.Future[AgentResponse] = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        try:
            await self.transport.post(
                AgentRequest(
                    request_id=request_id,
                    context_id=context_id,
                    action=action,
                    payload=payload or {},
                )
            )
            async with asyncio.timeout(wait_seconds):
                return await future
        except TimeoutError as exc:
            raise AgentUnreachableError(
                f"No response to {action.value} within {wait_seconds:.1f}s"
            ) from exc
        finally:
            if self._pending.get(request_id) is future:
                del self._pending[request_id]

    def receive(self, message: AgentResponse | PageLoaded | dict[str, Any]) -> bool:
        """Accept one inbound message. Returns False when it was discarded."""
        if isinstance(message, dict):
            message = inbound_adapter.validate_python(message)

        if isinstance(message, PageLoaded):
            logger.debug("Page loaded in %s: %s", message.context_id, message.url)
            for listener in list(self._listeners):
                listener(message)
            return True

        future = self._pending.get(message.request_id)
        if future is None or future.done():
            logger.debug("Discarding stale response %s", message.request_id)
            return False
        future.set_result(message)
        return True

    @property
    def pending_count(self) -> int:
        return len(self._pending)


@dataclass(slots=True)
class PageContext:
    """A live page context bound to the channel."""

    channel: AgentChannel
    context_id: str

    async def call(self, action: AgentAction, payload: dict[str, Any] | None = None) -> Any:
        """Send `action` and return the reply's data, raising on `success: false`.

        Mutating actions use a request id derived from the context so that a
        retry after a lost reply carries the same id and the agent can
        recognise it as a repeat.
        """
        request_id = None
        if action in MUTATING_ACTIONS:
            request_id = f"{self.context_id}:{action.value}"
        response = await self.channel.request(
            self.context_id, action, payload, request_id=request_id
        )
        if not response.success:
            raise AgentActionError(
                action.value, response.error or "unknown error", retryable=response.retryable
            )
        return response.data
