"""Search result selection policy."""

from __future__ import annotations

from shop_agent.errors import NoResultsError
from shop_agent.types import ProductResult


def select_first_non_sponsored(results: list[ProductResult]) -> ProductResult:
    """First organic result in page order.

    Price and rating are ignored; list order is the only tie-breaker.
    """
    if not results:
        raise NoResultsError("No products found on the results page")
    for product in results:
        if not product.sponsored:
            return product
    raise NoResultsError(f"No suitable products found ({len(results)} results, all sponsored)")
