"""Natural-language request -> structured shopping intent."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any

from langchain_core.exceptions import OutputParserException
from langchain_core.output_parsers import JsonOutputParser
from langchain_core.prompts import PromptTemplate
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from shop_agent.errors import IntentParseError
from shop_agent.llm.client import GeminiModelClient
from shop_agent.types import ModelAttempt

logger = logging.getLogger(__name__)

_INTENT_PROMPT = PromptTemplate.from_template(
    """
You are a shopping assistant. Extract the following from the user's request.
Return JSON ONLY. No markdown.
Fields:
- product: (string) The search query for the product, without price or store words.
- platform: (string or null) One of "amazon", "flipkart", "ebay", "walmart" if the user names a store.
- filters: (object) Key-value pairs for filters, e.g. "price_max": 50000, "price_min": 1000, "brand": "Samsung", "storage": "256gb".
- sort: (string or null) One of "relevance", "price_low", "price_high", "rating", "newest".
- delivery_location: (string or null) e.g. "home", "office".
- payment_method: (string or null) e.g. "wallet", "card", "cod".
- quantity: (integer or null) Number of units.

User Request: "{request}"
""".strip()
)


class SortOption(str, Enum):
    RELEVANCE = "relevance"
    PRICE_LOW = "price_low"
    PRICE_HIGH = "price_high"
    RATING = "rating"
    NEWEST = "newest"


class Intent(BaseModel):
    """Structured interpretation of one shopping request. Immutable."""

    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    product: str = ""
    platform: str | None = None
    filters: dict[str, Any] = Field(default_factory=dict)
    sort: SortOption | None = None
    delivery_location: str | None = Field(
        default=None, validation_alias=AliasChoices("delivery_location", "deliveryLocation")
    )
    payment_method: str | None = Field(
        default=None, validation_alias=AliasChoices("payment_method", "paymentMethod")
    )
    quantity: int | None = Field(default=None, ge=1)

    @field_validator("product", mode="before")
    @classmethod
    def _strip_product(cls, value: Any) -> str:
        return str(value).strip() if value is not None else ""

    @field_validator("platform", mode="before")
    @classmethod
    def _normalize_platform(cls, value: Any) -> str | None:
        if value is None:
            return None
        text = str(value).strip().lower()
        return text or None

    @field_validator("filters", mode="before")
    @classmethod
    def _default_filters(cls, value: Any) -> Any:
        return {} if value is None else value

    @field_validator("sort", mode="before")
    @classmethod
    def _lenient_sort(cls, value: Any) -> Any:
        if value is None:
            return None
        text = str(value).strip().lower()
        return text if text in {option.value for option in SortOption} else None


def parse_intent(text: str) -> Intent:
    """Strip code fences, parse JSON and validate it as an Intent."""
    try:
        payload = JsonOutputParser().parse(text)
    except OutputParserException as exc:
        raise IntentParseError(f"Failed to parse model response: {exc}") from exc
    if not isinstance(payload, dict):
        raise IntentParseError(f"Expected a JSON object, got {type(payload).__name__}")
    try:
        return Intent.model_validate(payload)
    except ValidationError as exc:
        raise IntentParseError(f"Model response is not a valid intent: {exc}") from exc


class IntentResolver:
    """Turns raw request text into an Intent via the model client."""

    def __init__(self, client: GeminiModelClient) -> None:
        self.client = client

    @staticmethod
    def build_prompt(raw_text: str) -> str:
        return _INTENT_PROMPT.format(request=raw_text.strip())

    async def resolve_intent(self, raw_text: str, api_key: str) -> Intent:
        intent, _ = await self.resolve_with_attempts(raw_text, api_key)
        return intent

    async def resolve_with_attempts(
        self, raw_text: str, api_key: str
    ) -> tuple[Intent, list[ModelAttempt]]:
        prompt = self.build_prompt(raw_text)
        result = await self.client.generate(prompt, api_key)
        try:
            intent = parse_intent(result.text)
        except IntentParseError:
            # Let a retry reach the endpoint instead of replaying the bad answer.
            self.client.invalidate(prompt, api_key, result.model_id)
            raise
        logger.info(
            "Parsed intent via %s%s",
            result.model_id,
            " (cached)" if result.cached else "",
            extra={"intent": intent.model_dump(mode="json")},
        )
        return intent, result.attempts
