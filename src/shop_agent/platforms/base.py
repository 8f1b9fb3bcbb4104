"""Capability contract every storefront implements."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, ClassVar
from urllib.parse import urlsplit

from shop_agent.errors import UnsupportedOperationError
from shop_agent.page.channel import PageContext
from shop_agent.page.protocol import AgentAction
from shop_agent.types import OrderDetails, ProductResult

OPTIONAL_OPERATIONS = (
    "add_to_cart",
    "buy_now",
    "apply_filters",
    "sort_results",
    "get_product_details",
    "get_order_details",
    "check_login_status",
    "track_order",
    "initiate_return",
    "create_support_ticket",
)


class StorefrontPlatform(ABC):
    """Translates capability calls into page-agent messages for one storefront.

    Storefront DOM work happens in the page agent; implementations send the
    action together with their selectors and interpret the reply. Search,
    result listing and selection are required. The remaining operations
    raise `UnsupportedOperationError` unless the storefront overrides them.
    """

    platform_id: ClassVar[str]
    domains: ClassVar[tuple[str, ...]]
    home_url: ClassVar[str]
    confirmation_markers: ClassVar[tuple[str, ...]] = ()
    selectors: ClassVar[dict[str, dict[str, str]]] = {}

    @abstractmethod
    async def search(self, page: PageContext, query: str, filters: dict[str, Any]) -> None:
        """Submit a search; the agent reports the results page via PAGE_LOADED."""

    @abstractmethod
    async def get_search_results(self, page: PageContext) -> list[ProductResult]:
        """Results in page order, with sponsored entries flagged."""

    @abstractmethod
    async def select_product(self, page: PageContext, index: int) -> None:
        """Open result `index`; the agent reports the product page via PAGE_LOADED."""

    async def add_to_cart(self, page: PageContext) -> None:
        raise self.unsupported("add_to_cart")

    async def buy_now(self, page: PageContext) -> None:
        raise self.unsupported("buy_now")

    async def apply_filters(self, page: PageContext, filters: dict[str, Any]) -> None:
        raise self.unsupported("apply_filters")

    async def sort_results(self, page: PageContext, option: str) -> None:
        raise self.unsupported("sort_results")

    async def get_product_details(self, page: PageContext) -> dict[str, Any]:
        raise self.unsupported("get_product_details")

    async def get_order_details(self, page: PageContext) -> OrderDetails:
        raise self.unsupported("get_order_details")

    async def check_login_status(self, page: PageContext) -> bool:
        raise self.unsupported("check_login_status")

    async def track_order(self, page: PageContext, order_id: str) -> dict[str, Any]:
        raise self.unsupported("track_order")

    async def initiate_return(self, page: PageContext, order_id: str, reason: str) -> dict[str, Any]:
        raise self.unsupported("initiate_return")

    async def create_support_ticket(
        self, page: PageContext, subject: str, body: str
    ) -> dict[str, Any]:
        raise self.unsupported("create_support_ticket")

    def unsupported(self, operation: str) -> UnsupportedOperationError:
        return UnsupportedOperationError(self.platform_id, operation)

    def supports(self, operation: str) -> bool:
        if operation not in OPTIONAL_OPERATIONS:
            return hasattr(StorefrontPlatform, operation)
        return getattr(type(self), operation) is not getattr(StorefrontPlatform, operation)

    def matches(self, url: str) -> bool:
        return host_matches(url, self.domains)

    def _payload(self, group: str, **values: Any) -> dict[str, Any]:
        return {**values, "selectors": dict(self.selectors.get(group, {}))}

    async def _read_results(self, page: PageContext) -> list[ProductResult]:
        data = await page.call(AgentAction.GET_RESULTS, self._payload("results"))
        items = data.get("items", []) if isinstance(data, dict) else data
        if not isinstance(items, list):
            return []
        return [
            ProductResult.from_payload(position, item)
            for position, item in enumerate(items)
            if isinstance(item, dict)
        ]

    async def _read_order_details(self, page: PageContext) -> OrderDetails:
        data = await page.call(AgentAction.GET_ORDER_DETAILS, self._payload("confirmation"))
        data = data if isinstance(data, dict) else {}
        order_id = data.get("order_id") or data.get("orderId") or "Pending/Unknown"
        delivery = data.get("delivery_estimate") or data.get("deliveryDate")
        return OrderDetails(order_id=str(order_id), delivery_estimate=delivery, raw=data)


def host_matches(url: str, domains: tuple[str, ...]) -> bool:
    """True when the URL's host is one of `domains` or a subdomain of one."""
    parts = urlsplit(url if "//" in url else f"//{url}")
    host = (parts.hostname or "").lower()
    if not host:
        return False
    return any(host == domain or host.endswith(f".{domain}") for domain in domains)
