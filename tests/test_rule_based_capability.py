import os
import sys

import pytest

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from models.quote import LineItem
from services.llm_capability import (
    COMPARE_QUOTES,
    COMPOSE_QUOTE_MESSAGE,
    MATCH_SUPPLIERS,
    PARSE_PURCHASE_REQUEST,
    CapabilityRequest,
    ResultSchema,
)
from services.rule_based_capability import RuleBasedCapability


def _call(schema, payload):
    return RuleBasedCapability().complete(
        CapabilityRequest(system="", prompt="", schema=schema, payload=payload)
    )


def test_parse_items_from_portuguese_request():
    items = RuleBasedCapability.parse_items(
        "Preciso de 10 kg de arroz, 5 litros de oleo e 2 pacotes de cafe (extra forte)"
    )

    assert items == [
        LineItem(name="arroz", quantity=10, unit="kg"),
        LineItem(name="oleo", quantity=5, unit="litros"),
        LineItem(name="cafe", quantity=2, unit="pacotes", note="extra forte"),
    ]


def test_parse_items_from_english_request_and_bare_names():
    items = RuleBasedCapability.parse_items("2 bags of cement and sand")

    assert items[0] == LineItem(name="cement", quantity=2, unit="bags")
    assert items[1] == LineItem(name="sand", quantity=1, unit="unit")


def test_parse_purchase_request_schema_returns_item_dicts():
    result = _call(PARSE_PURCHASE_REQUEST, {"description": "3 kg de feijao"})

    assert result == {"items": [{"name": "feijao", "qty": 3.0, "unit": "kg"}]}


def test_match_prefers_same_city_and_skips_unrelated():
    suppliers = [
        {"id": "far", "name": "Far", "categories": ["Arroz"], "city": "Dourados"},
        {"id": "near", "name": "Near", "categories": ["graos", "arroz"], "city": "Campo Grande"},
        {"id": "none", "name": "Tools", "categories": ["ferramentas"], "city": "Campo Grande"},
    ]

    result = _call(MATCH_SUPPLIERS, {"items": ["arroz"], "suppliers": suppliers, "city": "campo grande"})

    assert [match["supplier_id"] for match in result["matches"]] == ["near", "far"]
    assert "arroz" in result["matches"][0]["reason"]


def test_compose_uses_template():
    result = _call(
        COMPOSE_QUOTE_MESSAGE,
        {"supplier_name": "Graos Ltda", "items": [{"name": "arroz", "qty": 10, "unit": "kg"}]},
    )

    assert result["message"].startswith("Hello Graos Ltda!")
    assert "- arroz: 10 kg" in result["message"]


def test_compare_picks_lowest_price():
    quotes = [
        {"supplier_name": "A", "response": "R$ 60,00 entrega 2 dias", "price": None},
        {"supplier_name": "B", "response": "sai por R$ 55,00", "price": 55.0},
        {"supplier_name": "C", "response": "sem estoque", "price": None},
    ]

    result = _call(COMPARE_QUOTES, {"quotes": quotes})

    assert result["best_supplier"] == "B"
    assert result["total_price"] == pytest.approx(55.0)
    assert "5.00 below A" in result["recommendation"]
    table_lines = result["comparison_table"].splitlines()
    assert table_lines[1].strip().startswith("B")
    assert table_lines[-1].strip().startswith("C")


def test_compare_without_prices_asks_for_manual_review():
    result = _call(COMPARE_QUOTES, {"quotes": [{"supplier_name": "A", "response": "ligo depois"}]})

    assert result["best_supplier"] == ""
    assert result["total_price"] == 0.0
    assert "manually" in result["recommendation"]


def test_unknown_schema_and_missing_schema_return_empty():
    other = ResultSchema(name="other", description="", json_schema={})
    assert _call(other, {}) == {}
    assert RuleBasedCapability().complete(CapabilityRequest(system="", prompt="hi")) == {}
