"""Amazon storefront."""

from __future__ import annotations

import logging
from typing import Any

from shop_agent.page.channel import PageContext
from shop_agent.page.protocol import AgentAction
from shop_agent.platforms.base import StorefrontPlatform
from shop_agent.types import OrderDetails, ProductResult

logger = logging.getLogger(__name__)


class AmazonPlatform(StorefrontPlatform):
    platform_id = "amazon"
    domains = ("amazon.in", "amazon.com", "amazon.co.uk", "amazon.de", "amazon.fr")
    home_url = "https://www.amazon.in/"
    confirmation_markers = ("thank-you", "thankyou", "order-confirmation")
    selectors = {
        "search": {
            "input": "#twotabsearchtextbox",
            "button": 'input[type="submit"][value="Go"]',
            "form": "form.nav-searchbar",
        },
        "results": {
            "container": '[data-component-type="s-search-result"], .s-result-item, .s-card-container',
            "title": 'h2 a span, h2 a, [data-cy="title-recipe"] h2 span',
            "link": 'h2 a[href*="/dp/"], h2 a[href*="/gp/product/"], .a-link-normal[href*="/dp/"]',
            "price": ".a-price .a-offscreen, .a-price",
            "rating": ".a-icon-alt, .a-star-rating",
            "sponsored": ".s-sponsored-label-text, .AdHolder",
        },
        "product": {
            "buy_now": '#buy-now-button, #sc-buy-box-ptc-button, [name="submit.buy-now"]',
            "add_to_cart": "#add-to-cart-button, #add-to-cart-button-ubb",
            "title": "#productTitle",
            "price": ".a-price .a-offscreen, .a-price-whole",
        },
        "sort": {"dropdown": "#s-result-sort-select"},
        "login": {"account": "#nav-link-accountList-nav-line-1", "signed_out_text": "Hello, sign in"},
        "confirmation": {"order_id": "bdi, .my-orders-order-id", "delivery": ".delivery-box__primary-text"},
        "orders": {"url": "https://www.amazon.in/gp/css/order-history"},
        "support": {"url": "https://www.amazon.in/gp/help/customer/contact-us"},
    }

    async def search(self, page: PageContext, query: str, filters: dict[str, Any]) -> None:
        logger.info("Amazon: performing search", extra={"query": query, "filters": filters})
        await page.call(AgentAction.SEARCH, self._payload("search", query=query, filters=filters))

    async def get_search_results(self, page: PageContext) -> list[ProductResult]:
        products = await self._read_results(page)
        for product in products:
            # Sponsored placements link through /sspa/ redirects.
            if "/sspa/" in product.link:
                product.sponsored = True
        logger.info("Amazon: found %d products", len(products))
        return products

    async def select_product(self, page: PageContext, index: int) -> None:
        await page.call(AgentAction.SELECT_PRODUCT, self._payload("results", index=index))

    async def add_to_cart(self, page: PageContext) -> None:
        await page.call(AgentAction.ADD_TO_CART, self._payload("product"))

    async def buy_now(self, page: PageContext) -> None:
        await page.call(AgentAction.BUY_NOW, self._payload("product"))

    async def apply_filters(self, page: PageContext, filters: dict[str, Any]) -> None:
        await page.call(AgentAction.APPLY_FILTERS, self._payload("results", filters=filters))

    async def sort_results(self, page: PageContext, option: str) -> None:
        await page.call(AgentAction.SORT_RESULTS, self._payload("sort", option=option))

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

    async def initiate_return(self, page: PageContext, order_id: str, reason: str) -> dict[str, Any]:
        data = await page.call(
            AgentAction.INITIATE_RETURN, self._payload("orders", order_id=order_id, reason=reason)
        )
        return data if isinstance(data, dict) else {"status": data}

    async def create_support_ticket(
        self, page: PageContext, subject: str, body: str
    ) -> dict[str, Any]:
        data = await page.call(
            AgentAction.CREATE_SUPPORT_TICKET, self._payload("support", subject=subject, body=body)
        )
        return data if isinstance(data, dict) else {"ticket": data}
