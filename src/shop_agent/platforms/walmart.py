"""Walmart storefront. Checkout always goes through the cart."""

from __future__ import annotations

import logging
from typing import Any

from shop_agent.page.channel import PageContext
from shop_agent.page.protocol import AgentAction
from shop_agent.platforms.base import StorefrontPlatform
from shop_agent.types import ProductResult

logger = logging.getLogger(__name__)


class WalmartPlatform(StorefrontPlatform):
    platform_id = "walmart"
    domains = ("walmart.com",)
    home_url = "https://www.walmart.com/"
    confirmation_markers = ("/checkout/thankyou", "order-confirmation")
    selectors = {
        "search": {
            "input": 'input[type="search"], input[name="q"]',
            "button": 'button[type="submit"]',
        },
        "results": {
            "container": '[data-item-id], [data-testid="list-view"]',
            "title": '[data-automation-id="product-title"], span.w_iUH7',
            "link": 'a[link-identifier], a[href*="/ip/"]',
            "price": '[data-automation-id="product-price"]',
            "sponsored": '[data-testid="sponsored-flag"]',
        },
        "product": {
            "add_to_cart": 'button[data-automation-id="atc"], [data-tl-id="ProductPrimaryCTA-cta_add_to_cart_button"]',
            "title": 'h1[itemprop="name"]',
            "price": '[itemprop="price"]',
        },
        "sort": {"dropdown": 'select[aria-label="Sort by"]'},
    }

    async def search(self, page: PageContext, query: str, filters: dict[str, Any]) -> None:
        logger.info("Walmart: performing search", extra={"query": query})
        await page.call(AgentAction.SEARCH, self._payload("search", query=query, filters=filters))

    async def get_search_results(self, page: PageContext) -> list[ProductResult]:
        products = await self._read_results(page)
        logger.info("Walmart: found %d products", len(products))
        return products

    async def select_product(self, page: PageContext, index: int) -> None:
        await page.call(AgentAction.SELECT_PRODUCT, self._payload("results", index=index))

    async def add_to_cart(self, page: PageContext) -> None:
        await page.call(AgentAction.ADD_TO_CART, self._payload("product"))

    async def sort_results(self, page: PageContext, option: str) -> None:
        await page.call(AgentAction.SORT_RESULTS, self._payload("sort", option=option))

    async def get_product_details(self, page: PageContext) -> dict[str, Any]:
        data = await page.call(AgentAction.GET_PRODUCT_DETAILS, self._payload("product"))
        return data if isinstance(data, dict) else {}
