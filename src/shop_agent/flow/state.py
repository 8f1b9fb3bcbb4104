"""Flow state model and the legal transition table."""

from __future__ import annotations

import time
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any

from shop_agent.llm.intent import Intent
from shop_agent.types import ModelAttempt, OrderDetails, ProductResult


class FlowStatus(str, Enum):
    IDLE = "IDLE"
    PARSING = "PARSING"
    SEARCHING = "SEARCHING"
    SELECTING = "SELECTING"
    PRODUCT_PAGE = "PRODUCT_PAGE"
    CHECKOUT_FLOW = "CHECKOUT_FLOW"
    COMPLETED = "COMPLETED"
    NEEDS_MANUAL_CHECKOUT = "NEEDS_MANUAL_CHECKOUT"
    FAILED = "FAILED"


TERMINAL_STATUSES = frozenset(
    {FlowStatus.COMPLETED, FlowStatus.NEEDS_MANUAL_CHECKOUT, FlowStatus.FAILED}
)

# FAILED is reachable from every non-terminal status and is not listed here.
_FORWARD_TRANSITIONS: dict[FlowStatus, frozenset[FlowStatus]] = {
    FlowStatus.IDLE: frozenset({FlowStatus.PARSING}),
    FlowStatus.PARSING: frozenset({FlowStatus.SEARCHING}),
    FlowStatus.SEARCHING: frozenset({FlowStatus.SELECTING}),
    FlowStatus.SELECTING: frozenset({FlowStatus.PRODUCT_PAGE}),
    FlowStatus.PRODUCT_PAGE: frozenset(
        {FlowStatus.CHECKOUT_FLOW, FlowStatus.NEEDS_MANUAL_CHECKOUT}
    ),
    FlowStatus.CHECKOUT_FLOW: frozenset({FlowStatus.COMPLETED}),
}


def can_transition(current: FlowStatus, target: FlowStatus) -> bool:
    if current in TERMINAL_STATUSES:
        return False
    if target is FlowStatus.FAILED:
        return True
    return target in _FORWARD_TRANSITIONS.get(current, frozenset())


@dataclass(slots=True)
class FlowState:
    """The single live instance of the shopping state machine."""

    flow_id: str
    query: str
    status: FlowStatus = FlowStatus.IDLE
    intent: Intent | None = None
    platform_id: str | None = None
    page_context_id: str | None = None
    selected_product: ProductResult | None = None
    order: OrderDetails | None = None
    issued_mutations: set[str] = field(default_factory=set)
    transitions: list[str] = field(default_factory=list)
    messages: list[str] = field(default_factory=list)
    model_attempts: list[ModelAttempt] = field(default_factory=list)
    load_sequence: int = 0
    last_url: str | None = None
    seen_event_ids: set[str] = field(default_factory=set)
    error_code: str | None = None
    error_message: str | None = None
    cancelled: bool = False
    started_at: float = field(default_factory=time.perf_counter)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def summary(self) -> dict[str, Any]:
        """Public view for status endpoints."""
        return {
            "flow_id": self.flow_id,
            "query": self.query,
            "status": self.status.value,
            "platform_id": self.platform_id,
            "intent": self.intent.model_dump(mode="json") if self.intent else None,
            "selected_product": asdict(self.selected_product) if self.selected_product else None,
            "order": asdict(self.order) if self.order else None,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "messages": list(self.messages),
        }

    def snapshot(self) -> dict[str, Any]:
        """JSON-safe record used to resume the flow after a restart."""
        return {
            **self.summary(),
            "page_context_id": self.page_context_id,
            "issued_mutations": sorted(self.issued_mutations),
            "transitions": list(self.transitions),
            "load_sequence": self.load_sequence,
            "last_url": self.last_url,
        }

    @classmethod
    def from_snapshot(cls, data: dict[str, Any]) -> "FlowState":
        intent = data.get("intent")
        product = data.get("selected_product")
        order = data.get("order")
        return cls(
            flow_id=str(data["flow_id"]),
            query=str(data.get("query", "")),
            status=FlowStatus(data.get("status", FlowStatus.IDLE.value)),
            intent=Intent.model_validate(intent) if intent else None,
            platform_id=data.get("platform_id"),
            page_context_id=data.get("page_context_id"),
            selected_product=ProductResult(**product) if product else None,
            order=OrderDetails(**order) if order else None,
            issued_mutations=set(data.get("issued_mutations", [])),
            transitions=list(data.get("transitions", [])),
            messages=list(data.get("messages", [])),
            load_sequence=int(data.get("load_sequence", 0)),
            last_url=data.get("last_url"),
        )
