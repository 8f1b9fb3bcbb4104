"""Flipkart storefront."""

from __future__ import annotations

import logging
from typing import Any

from shop_agent.page.channel import PageContext
from shop_agent.page.protocol import AgentAction
from shop_agent.platforms.base import StorefrontPlatform
from shop_agent.types import OrderDetails, ProductResult

logger = logging.getLogger(__name__)


class FlipkartPlatform(StorefrontPlatform):
    platform_id = "flipkart"
    domains = ("flipkart.com",)
    home_url = "https://www.flipkart.com/"
    confirmation_markers = ("orderresponse", "order-confirmation")
    selectors = {
        "search": {
            "input": 'input[name="q"], input[placeholder*="Search"]',
            "button": 'button[type="submit"], .L0Z3Pu',
        },
        "results": {
            "container": "._1AtVbE, ._2kHMtA",
            "title": "._4rR01T, a.IRpwTa",
            "link": "a.IRpwTa, a._1fQZEK",
            "price": "._30jeq3, ._1_WHN1",
            "rating": "._3LWZlK",
            "sponsored": "._4HTuuX, ._2tfzpE",
        },
        "product": {
            "buy_now": "._2KpZ6l._2U9uOA._3v1-ww",
            "add_to_cart": "._2KpZ6l._2U9uOA.ihZ75k._3AWRsL",
            "title": ".B_NuCI",
            "price": "._30jeq3._16Jk6d",
        },
        "login": {"account": "._1_3w1N", "signed_out_text": "Login"},
        "confirmation": {"order_id": "._2Dx3P7, .order-id"},
        "orders": {"url": "https://www.flipkart.com/account/orders"},
    }

    async def search(self, page: PageContext, query: str, filters: dict[str, Any]) -> None:
        logger.info("Flipkart: performing search", extra={"query": query})
        await page.call(AgentAction.SEARCH, self._payload("search", query=query, filters=filters))

    async def get_search_results(self, page: PageContext) -> list[ProductResult]:
        products = await self._read_results(page)
        logger.info("Flipkart: found %d products", len(products))
        return products

    async def select_product(self, page: PageContext, index: int) -> None:
        await page.call(AgentAction.SELECT_PRODUCT, self._payload("results", index=index))

    async def add_to_cart(self, page: PageContext) -> None:
        await page.call(AgentAction.ADD_TO_CART, self._payload("product"))

    async def buy_now(self, page: PageContext) -> None:
        await page.call(AgentAction.BUY_NOW, self._payload("product"))

    async def get_product_details(self, page: PageContext) -> dict[str, Any]:
        data = await page.call(AgentAction.GET_PRODUCT_DETAILS, self._payload("product"))
        return data if isinstance(data, dict) else {}

    async def get_order_details(self, page: PageContext) -> OrderDetails:
        return await self._read_order_details(page)

    async def check_login_status(self, page: PageContext) -> bool:
        data = await page.call(AgentAction.CHECK_LOGIN_STATUS, self._payload("login"))
        return bool(data.get("logged_in")) if isinstance(data, dict) else bool(data)

    async def track_order(self, page: PageContext, order_id: str) -> dict[str, Any]:
        data = await page.call(AgentAction.TRACK_ORDER, self._payload("orders", order_id=order_id))
        return data if isinstance(data, dict) else {"status": data}
