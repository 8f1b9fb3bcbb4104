"""Outbound transports to the page-resident agent."""

from __future__ import annotations

import asyncio
import logging
import uuid
from abc import ABC, abstractmethod
from collections import deque

from shop_agent.errors import AgentUnreachableError
from shop_agent.page.protocol import AgentRequest, ClosePage, Navigate, OpenPage

logger = logging.getLogger(__name__)

OutboxItem = AgentRequest | OpenPage | Navigate | ClosePage


class PageTransport(ABC):
    """Delivers commands to the page agent. Replies come back via `AgentChannel.receive`."""

    @abstractmethod
    async def open_page(self, url: str) -> str:
        """Open a new page context and return its handle."""

    @abstractmethod
    async def navigate(self, context_id: str, url: str) -> None:
        """Point an existing page context at `url`."""

    @abstractmethod
    async def post(self, request: AgentRequest) -> None:
        """Send one request. Raises AgentUnreachableError if it cannot be delivered."""

    @abstractmethod
    async def close_page(self, context_id: str) -> None:
        """Release a page context."""

    def adopt(self, context_id: str) -> None:
        """Accept a context opened before a restart. No-op for stateless transports."""


class OutboxTransport(PageTransport):
    """Queues commands until the page agent drains them (`GET /agent/outbox`)."""

    def __init__(self, *, max_pending: int = 1000) -> None:
        self._outbox: deque[OutboxItem] = deque()
        self._open_contexts: set[str] = set()
        self._signal = asyncio.Event()
        self.max_pending = max_pending
        self.closed = False

    def is_open(self, context_id: str) -> bool:
        return context_id in self._open_contexts

    async def open_page(self, url: str) -> str:
        self._ensure_accepting()
        context_id = uuid.uuid4().hex
        self._open_contexts.add(context_id)
        self._enqueue(OpenPage(context_id=context_id, url=url))
        return context_id

    async def navigate(self, context_id: str, url: str) -> None:
        self._ensure_context(context_id)
        self._enqueue(Navigate(context_id=context_id, url=url))

    async def post(self, request: AgentRequest) -> None:
        self._ensure_context(request.context_id)
        self._enqueue(request)

    def adopt(self, context_id: str) -> None:
        self._open_contexts.add(context_id)

    async def close_page(self, context_id: str) -> None:
        if context_id in self._open_contexts:
            self._open_contexts.discard(context_id)
            self._enqueue(ClosePage(context_id=context_id))

    def drain(self, limit: int | None = None) -> list[OutboxItem]:
        items: list[OutboxItem] = []
        while self._outbox and (limit is None or len(items) < limit):
            items.append(self._outbox.popleft())
        if not self._outbox:
            self._signal.clear()
        return items

    async def wait_for_items(self, timeout: float) -> bool:
        """Block until something is queued or `timeout` seconds pass."""
        if self._outbox:
            return True
        try:
            async with asyncio.timeout(timeout):
                await self._signal.wait()
        except TimeoutError:
            return False
        return True

    def close(self) -> None:
        self.closed = True
        self._open_contexts.clear()
        self._outbox.clear()

    def _ensure_accepting(self) -> None:
        if self.closed:
            raise AgentUnreachableError("Agent transport is closed")
        if len(self._outbox) >= self.max_pending:
            raise AgentUnreachableError("Agent outbox is full; is the page agent polling?")

    def _ensure_context(self, context_id: str) -> None:
        self._ensure_accepting()
        if context_id not in self._open_contexts:
            raise AgentUnreachableError(f"Page context {context_id} is not open")

    def _enqueue(self, item: OutboxItem) -> None:
        self._outbox.append(item)
        self._signal.set()
        logger.debug("Queued %s for %s", item.type, item.context_id)
