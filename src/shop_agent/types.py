"""Shared domain models."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class AttemptOutcome(str, Enum):
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


@dataclass(slots=True)
class ModelAttempt:
    """One generation call against one model identifier."""

    model_id: str
    attempt_index: int
    outcome: AttemptOutcome
    duration_ms: float
    status_code: int | None = None
    reason: str | None = None


@dataclass(slots=True)
class GenerationResult:
    """Text extracted from a model response plus the attempts that produced it."""

    text: str
    model_id: str
    cached: bool
    attempts: list[ModelAttempt] = field(default_factory=list)


@dataclass(slots=True)
class ProductResult:
    """A search result as reported by the page agent."""

    index: int
    title: str
    link: str
    price: str = ""
    rating: str = ""
    sponsored: bool = False

    @classmethod
    def from_payload(cls, position: int, payload: dict[str, Any]) -> "ProductResult":
        index = payload.get("index")
        return cls(
            index=index if isinstance(index, int) else position,
            title=str(payload.get("title") or ""),
            link=str(payload.get("link") or ""),
            price=str(payload.get("price") or ""),
            rating=str(payload.get("rating") or ""),
            sponsored=bool(payload.get("sponsored", False)),
        )


@dataclass(slots=True)
class OrderDetails:
    """Order confirmation data read from the storefront's thank-you page."""

    order_id: str
    delivery_estimate: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)
