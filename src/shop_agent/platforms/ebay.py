"""eBay storefront. Listings are bought outright; there is no cart flow here."""

from __future__ import annotations

import logging
from typing import Any

from shop_agent.page.channel import PageContext
from shop_agent.page.protocol import AgentAction
from shop_agent.platforms.base import StorefrontPlatform
from shop_agent.types import OrderDetails, ProductResult

logger = logging.getLogger(__name__)

# eBay renders a hidden template card first in every result list.
_PLACEHOLDER_TITLES = frozenset({"shop on ebay"})


class EbayPlatform(StorefrontPlatform):
    platform_id = "ebay"
    domains = ("ebay.com", "ebay.in")
    home_url = "https://www.ebay.com/"
    confirmation_markers = ("purchaseconfirmation", "/vod/", "order-confirmation")
    selectors = {
        "search": {"input": "#gh-ac", "button": "#gh-btn"},
        "results": {
            "container": ".s-item",
            "title": ".s-item__title",
            "link": ".s-item__link",
            "price": ".s-item__price",
            "shipping": ".s-item__shipping",
            "sponsored": ".s-item__sep, .s-item__title--tagblock",
        },
        "product": {
            "buy_now": "#binBtn_btn, .binBtn",
            "title": "#x-item-title-label",
            "price": ".notranslate",
        },
        "confirmation": {"order_id": ".order-number, [data-test-id='orderId']"},
    }

    async def search(self, page: PageContext, query: str, filters: dict[str, Any]) -> None:
        logger.info("eBay: performing search", extra={"query": query})
        await page.call(AgentAction.SEARCH, self._payload("search", query=query, filters=filters))

    async def get_search_results(self, page: PageContext) -> list[ProductResult]:
        products = [
            product
            for product in await self._read_results(page)
            if product.title.strip().lower() not in _PLACEHOLDER_TITLES
        ]
        logger.info("eBay: found %d products", len(products))
        return products

    async def select_product(self, page: PageContext, index: int) -> None:
        await page.call(AgentAction.SELECT_PRODUCT, self._payload("results", index=index))

    async def buy_now(self, page: PageContext) -> None:
        await page.call(AgentAction.BUY_NOW, self._payload("product"))

    async def get_order_details(self, page: PageContext) -> OrderDetails:
        return await self._read_order_details(page)
