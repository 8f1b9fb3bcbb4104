"""Single-flight shopping state machine driving a storefront through the page agent."""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from shop_agent.config import FlowConfig
from shop_agent.credentials import CredentialStore
from shop_agent.errors import (
    AgentActionError,
    AgentUnreachableError,
    IntentParseError,
    MissingCredentialError,
    ModelUnavailableError,
    ShopAgentError,
    UnsupportedOperationError,
)
from shop_agent.flow.selection import select_first_non_sponsored
from shop_agent.flow.session import FlowSnapshotStore
from shop_agent.flow.state import FlowState, FlowStatus, can_transition
from shop_agent.llm.intent import IntentResolver, SortOption
from shop_agent.obs.tracing import TraceStore
from shop_agent.page.channel import AgentChannel, PageContext
from shop_agent.page.protocol import PageLoaded
from shop_agent.platforms.base import StorefrontPlatform
from shop_agent.platforms.registry import PlatformDescriptor, PlatformRegistry
from shop_agent.retry import RetryPolicy, run_with_retry, wait_for_condition

logger = logging.getLogger(__name__)

T = TypeVar("T")

UpdateCallback = Callable[[dict[str, Any]], None]


class FlowSupersededError(Exception):
    """Raised inside a flow task once a newer request or a cancel replaced it."""


class ShoppingFlowOrchestrator:
    """Owns the one live FlowState and the task advancing it.

    Every step runs sequentially in a single task, so at most one storefront
    call is in flight per flow. A new request cancels the running task before
    the next FlowState is created. Before each attempt and each transition the
    task checks that its FlowState is still the live one, so a stale retry
    can never touch a superseded flow.
    """

    def __init__(
        self,
        *,
        resolver: IntentResolver,
        registry: PlatformRegistry,
        channel: AgentChannel,
        credentials: CredentialStore,
        snapshots: FlowSnapshotStore,
        trace_store: TraceStore,
        config: FlowConfig | None = None,
        on_update: UpdateCallback | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.resolver = resolver
        self.registry = registry
        self.channel = channel
        self.credentials = credentials
        self.snapshots = snapshots
        self.trace_store = trace_store
        self.config = config or FlowConfig()
        self.on_update = on_update
        self._sleep = sleep

        self._current: FlowState | None = None
        self._task: asyncio.Task[None] | None = None
        self.last_outcome: dict[str, Any] | None = None

        channel_config = channel.config
        self._agent_policy = RetryPolicy(
            max_retries=channel_config.max_retries,
            initial_delay_ms=channel_config.initial_delay_ms,
            max_delay_ms=channel_config.max_delay_ms,
        )
        self._parse_policy = RetryPolicy(
            max_retries=self.config.parse_max_retries,
            initial_delay_ms=500.0,
            max_delay_ms=4000.0,
            retry_on=(IntentParseError,),
        )
        self._steps: dict[FlowStatus, Callable[[FlowState], Awaitable[None]]] = {
            FlowStatus.PARSING: self._parse,
            FlowStatus.SEARCHING: self._search,
            FlowStatus.SELECTING: self._select,
            FlowStatus.PRODUCT_PAGE: self._product_page,
            FlowStatus.CHECKOUT_FLOW: self._checkout,
        }
        channel.add_page_listener(self.on_page_loaded)

    @property
    def current(self) -> FlowState | None:
        return self._current

    # Inbound commands

    async def submit_query(self, text: str) -> dict[str, Any]:
        """Start a flow for `text`, superseding any flow in progress."""
        state = FlowState(flow_id=uuid.uuid4().hex, query=text.strip())
        previous, previous_task = self._current, self._task
        # The live slot is claimed before any await, so requests supersede in arrival order.
        self._current, self._task = state, None
        if previous is not None:
            logger.info("New request supersedes flow %s", previous.flow_id)
            await self._stop(previous, previous_task)
        if self._current is not state:
            logger.info("Flow %s superseded before it started", state.flow_id)
            return {"status": "superseded", "flow_id": state.flow_id}

        self._transition(state, FlowStatus.PARSING)
        self._task = asyncio.create_task(self._run(state), name=f"flow-{state.flow_id}")
        return {"status": "processing", "flow_id": state.flow_id}

    async def check_available_models(self, credential: str | None = None) -> list[str]:
        api_key = credential or self.credentials.get_api_key()
        if not api_key:
            raise MissingCredentialError("No model API key configured")
        return await self.resolver.client.check_models(api_key)

    async def cancel_current_flow(self) -> bool:
        """Stop the live flow and reset to IDLE. Returns False when nothing was running."""
        state, task = self._current, self._task
        if state is None:
            return False
        self._current, self._task = None, None
        await self._stop(state, task)
        return True

    async def _stop(self, state: FlowState, task: asyncio.Task[None] | None) -> None:
        state.cancelled = True
        if task is not None and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

        if self._current is None:
            self.snapshots.clear()
        if state.page_context_id:
            try:
                await self.channel.close_page(state.page_context_id)
            except AgentUnreachableError as exc:
                logger.warning("Could not close page for cancelled flow: %s", exc)

        state.messages.append("Cancelled.")
        self.last_outcome = {**state.summary(), "cancelled": True}
        logger.info("Flow %s cancelled in %s", state.flow_id, state.status.value)

    def status(self) -> dict[str, Any]:
        if self._current is not None:
            return {"active": True, **self._current.summary()}
        return {"active": False, "status": FlowStatus.IDLE.value, "last_outcome": self.last_outcome}

    async def restore(self) -> FlowState | None:
        """Resume a flow persisted by a previous process, if one was left running."""
        if self._current is not None:
            return None
        state = self.snapshots.load()
        if state is None:
            return None
        if state.is_terminal:
            self.snapshots.clear()
            return None

        if state.status is FlowStatus.IDLE or state.intent is None:
            state.status = FlowStatus.PARSING
        if state.status in (FlowStatus.PARSING, FlowStatus.SEARCHING):
            # Search starts from a fresh page.
            state.page_context_id = None
        elif state.page_context_id:
            self.channel.adopt_page(state.page_context_id)

        logger.info("Resuming flow %s at %s", state.flow_id, state.status.value)
        self._current = state
        self._say(state, f"Resuming: {state.query}")
        self._task = asyncio.create_task(self._run(state), name=f"flow-{state.flow_id}")
        return state

    # Page lifecycle

    def on_page_loaded(self, event: PageLoaded) -> None:
        state = self._current
        if state is None or event.context_id != state.page_context_id:
            logger.debug("Ignoring PAGE_LOADED for inactive context %s", event.context_id)
            return
        if event.event_id in state.seen_event_ids:
            logger.debug("Ignoring duplicate PAGE_LOADED %s", event.event_id)
            return
        state.seen_event_ids.add(event.event_id)
        state.load_sequence += 1
        state.last_url = event.url

    # Flow task

    async def _run(self, state: FlowState) -> None:
        try:
            while not state.is_terminal:
                self._ensure_live(state)
                await self._steps[state.status](state)
        except FlowSupersededError:
            logger.debug("Flow %s stopped: superseded", state.flow_id)
            return
        except ShopAgentError as exc:
            if not self._is_live(state):
                return
            if isinstance(exc, ModelUnavailableError):
                state.model_attempts.extend(exc.attempts)
            logger.warning("Flow %s failed in %s: %s", state.flow_id, state.status.value, exc)
            self._fail(state, exc.code, str(exc))
        except Exception as exc:
            if not self._is_live(state):
                return
            logger.exception("Flow %s crashed in %s", state.flow_id, state.status.value)
            self._fail(state, "INTERNAL_ERROR", str(exc) or type(exc).__name__)
        self._finish(state)

    async def _parse(self, state: FlowState) -> None:
        api_key = self.credentials.get_api_key()
        if not api_key:
            raise MissingCredentialError(
                "No model API key configured; set one with PUT /credentials or GEMINI_API_KEY"
            )

        self._say(state, f'Analyzing "{state.query}"...')
        intent, attempts = await run_with_retry(
            lambda: self.resolver.resolve_with_attempts(state.query, api_key),
            self._parse_policy,
            before_attempt=lambda: self._ensure_live(state),
            sleep=self._sleep,
            label="resolve_intent",
        )
        self._ensure_live(state)
        state.model_attempts.extend(attempts)
        if not intent.product:
            raise IntentParseError("Could not work out which product to look for")

        platform_id = intent.platform or self.config.default_platform
        self.registry.descriptor(platform_id)
        state.intent = intent
        state.platform_id = platform_id
        self._say(state, f"Looking for {intent.product} on {platform_id}.")
        self._transition(state, FlowStatus.SEARCHING)

    async def _search(self, state: FlowState) -> None:
        descriptor = self._descriptor(state)
        platform = descriptor.capabilities
        intent = state.intent
        if intent is None:
            raise IntentParseError("Cannot search before the request is parsed")

        if state.page_context_id is None:
            mark = state.load_sequence
            state.page_context_id = await run_with_retry(
                lambda: self.channel.open_page(descriptor.home_url),
                self._agent_policy,
                before_attempt=lambda: self._ensure_live(state),
                sleep=self._sleep,
                label="open_page",
            )
            self._persist(state)
            await self._wait_for_page(state, mark, f"{descriptor.id} home page")

        self._say(state, f"Searching for {intent.product}...")
        mark = state.load_sequence
        await self._call(
            state,
            "search",
            lambda page: platform.search(page, intent.product, dict(intent.filters)),
        )
        await self._wait_for_page(state, mark, "search results page")

        sort = intent.sort
        if sort and sort is not SortOption.RELEVANCE and platform.supports("sort_results"):
            mark = state.load_sequence
            option = sort.value
            await self._call(
                state, "sort_results", lambda page: platform.sort_results(page, option)
            )
            await self._wait_for_page(state, mark, "sorted results page")

        self._transition(state, FlowStatus.SELECTING)

    async def _select(self, state: FlowState) -> None:
        platform = self._descriptor(state).capabilities
        results = await self._call(state, "get_search_results", platform.get_search_results)
        product = select_first_non_sponsored(results)
        state.selected_product = product
        self._say(state, f"Selected: {product.title} {product.price}".strip())

        mark = state.load_sequence
        await self._call(
            state, "select_product", lambda page: platform.select_product(page, product.index)
        )
        await self._wait_for_page(state, mark, "product page")
        self._transition(state, FlowStatus.PRODUCT_PAGE)

    async def _product_page(self, state: FlowState) -> None:
        platform = self._descriptor(state).capabilities

        # A resumed flow must not repeat a purchase or cart add that was already sent.
        # A recorded cart add means buy now was already refused.
        if "add_to_cart" in state.issued_mutations:
            self._transition(state, FlowStatus.NEEDS_MANUAL_CHECKOUT)
            return
        if "buy_now" in state.issued_mutations:
            self._transition(state, FlowStatus.CHECKOUT_FLOW)
            return

        try:
            await self._mutate(state, platform, "buy_now")
        except (UnsupportedOperationError, AgentActionError) as exc:
            logger.info(
                "Buy now unavailable on %s, falling back to cart: %s", platform.platform_id, exc
            )
            self._say(state, "Buy Now is not available, adding to cart instead...")
            await self._mutate(state, platform, "add_to_cart")
            self._say(state, "Added to cart. Please complete the checkout manually.")
            self._transition(state, FlowStatus.NEEDS_MANUAL_CHECKOUT)
            return

        self._say(state, "Proceeding to checkout...")
        self._transition(state, FlowStatus.CHECKOUT_FLOW)

    async def _checkout(self, state: FlowState) -> None:
        descriptor = self._descriptor(state)
        platform = descriptor.capabilities

        if platform.supports("check_login_status"):
            logged_in = await self._call(state, "check_login_status", platform.check_login_status)
            if not logged_in:
                self._say(state, "Please sign in on the storefront (OTP if asked); waiting...")

        await wait_for_condition(
            lambda: self._on_confirmation_page(state, descriptor),
            self.config.checkout_timeout_seconds * 1000.0,
            self.config.poll_interval_seconds * 1000.0,
            description=f"{descriptor.id} order confirmation page",
        )

        order = await self._call(state, "get_order_details", platform.get_order_details)
        state.order = order
        self._say(state, f"Order placed! Order ID: {order.order_id}")
        self._transition(state, FlowStatus.COMPLETED)

    # Helpers

    async def _call(
        self,
        state: FlowState,
        label: str,
        operation: Callable[[PageContext], Awaitable[T]],
    ) -> T:
        """Run one capability call against the flow's page, retrying transient failures."""
        if state.page_context_id is None:
            raise AgentUnreachableError(f"No page is open for {label}")
        page = PageContext(self.channel, state.page_context_id)
        return await run_with_retry(
            lambda: operation(page),
            self._agent_policy,
            before_attempt=lambda: self._ensure_live(state),
            sleep=self._sleep,
            label=f"{state.platform_id}.{label}",
        )

    async def _mutate(self, state: FlowState, platform: StorefrontPlatform, operation: str) -> None:
        if not platform.supports(operation):
            raise platform.unsupported(operation)
        self._ensure_live(state)
        state.issued_mutations.add(operation)
        self._persist(state)
        await self._call(state, operation, getattr(platform, operation))

    async def _wait_for_page(self, state: FlowState, mark: int, description: str) -> None:
        """Wait for a PAGE_LOADED newer than `mark`; the floor delay precedes the first poll."""
        if self.config.page_ready_floor_seconds > 0:
            await self._sleep(self.config.page_ready_floor_seconds)
        await wait_for_condition(
            lambda: self._loaded_since(state, mark),
            self.config.page_ready_timeout_seconds * 1000.0,
            self.config.poll_interval_seconds * 1000.0,
            description=description,
        )

    def _loaded_since(self, state: FlowState, mark: int) -> bool:
        self._ensure_live(state)
        return state.load_sequence > mark

    def _on_confirmation_page(self, state: FlowState, descriptor: PlatformDescriptor) -> bool:
        self._ensure_live(state)
        return bool(state.last_url) and descriptor.is_confirmation_url(state.last_url or "")

    def _descriptor(self, state: FlowState) -> PlatformDescriptor:
        return self.registry.descriptor(state.platform_id or self.config.default_platform)

    def _is_live(self, state: FlowState) -> bool:
        return not state.cancelled and self._current is state

    def _ensure_live(self, state: FlowState) -> None:
        if not self._is_live(state):
            raise FlowSupersededError(state.flow_id)

    def _transition(self, state: FlowState, target: FlowStatus) -> None:
        self._ensure_live(state)
        if not can_transition(state.status, target):
            raise RuntimeError(f"Illegal transition {state.status.value} -> {target.value}")
        logger.info("Flow %s: %s -> %s", state.flow_id, state.status.value, target.value)
        state.status = target
        state.transitions.append(target.value)
        self._persist(state)
        self._notify(state)

    def _fail(self, state: FlowState, code: str, message: str) -> None:
        state.error_code = code
        state.error_message = message
        self._say(state, f"Error: {message}")
        self._transition(state, FlowStatus.FAILED)

    def _finish(self, state: FlowState) -> None:
        latency_ms = (time.perf_counter() - state.started_at) * 1000.0
        record = self.trace_store.create_record(
            flow_id=state.flow_id,
            query=state.query,
            status=state.status.value,
            platform_id=state.platform_id,
            order_id=state.order.order_id if state.order else None,
            error_code=state.error_code,
            error_message=state.error_message,
            transitions=state.transitions,
            messages=state.messages,
            model_attempts=state.model_attempts,
            latency_ms=latency_ms,
        )
        self.last_outcome = {**state.summary(), "trace_id": record.trace_id}
        if self._current is state:
            self._current = None
            self._task = None
        self.snapshots.clear()
        logger.info(
            "Flow %s finished: %s",
            state.flow_id,
            state.status.value,
            extra={"trace_id": record.trace_id, "latency_ms": round(latency_ms, 1)},
        )

    def _persist(self, state: FlowState) -> None:
        if not state.is_terminal:
            self.snapshots.save(state)

    def _say(self, state: FlowState, text: str) -> None:
        state.messages.append(text)
        logger.info("[%s] %s", state.flow_id[:8], text)
        self._notify(state)

    def _notify(self, state: FlowState) -> None:
        if self.on_update is not None:
            self.on_update(state.summary())

