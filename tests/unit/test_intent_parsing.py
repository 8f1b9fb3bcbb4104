import pytest
from pydantic import ValidationError

from shop_agent.errors import IntentParseError
from shop_agent.llm.intent import Intent, SortOption, parse_intent


def test_parse_strips_code_fences() -> None:
    text = '```json\n{"product": " Samsung phone ", "platform": "Amazon", "filters": {"price_max": 50000}}\n```'

    intent = parse_intent(text)

    assert intent.product == "Samsung phone"
    assert intent.platform == "amazon"
    assert intent.filters == {"price_max": 50000}
    assert intent.sort is None


def test_parse_accepts_camel_case_and_nulls() -> None:
    intent = parse_intent(
        '{"product": "headphones", "filters": null, "sort": "price_low",'
        ' "deliveryLocation": "office", "paymentMethod": "cod", "quantity": 2}'
    )

    assert intent.filters == {}
    assert intent.sort is SortOption.PRICE_LOW
    assert intent.delivery_location == "office"
    assert intent.payment_method == "cod"
    assert intent.quantity == 2


def test_unknown_sort_is_dropped() -> None:
    assert parse_intent('{"product": "tv", "sort": "cheapest first"}').sort is None


def test_non_json_raises_parse_error() -> None:
    with pytest.raises(IntentParseError) as excinfo:
        parse_intent("I'd be happy to help you find a phone!")
    assert excinfo.value.code == "INTENT_PARSE_ERROR"


def test_non_object_json_raises_parse_error() -> None:
    with pytest.raises(IntentParseError):
        parse_intent('["phone"]')


def test_invalid_quantity_raises_parse_error() -> None:
    with pytest.raises(IntentParseError):
        parse_intent('{"product": "phone", "quantity": 0}')


def test_intent_is_immutable() -> None:
    intent = Intent(product="phone")
    with pytest.raises(ValidationError):
        intent.product = "laptop"  # type: ignore[misc]
