import os
import sys

import pytest

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from models.quote_analysis import parse_lead_time_days, parse_quoted_price


@pytest.mark.parametrize(
    "text, expected",
    [
        ("Arroz 5kg sai a R$ 27,90, entrego amanha", 27.90),
        ("Total R$ 1.234,56", 1234.56),
        ("Total $1,250.00, lead time 2 weeks", 1250.00),
        ("preco: 300", 300.0),
        ("10 kg por R$ 45", 45.0),
    ],
)
def test_parse_quoted_price(text, expected):
    assert parse_quoted_price(text) == pytest.approx(expected)


def test_quantities_are_not_prices():
    assert parse_quoted_price("Tenho 10 kg disponiveis") is None
    assert parse_quoted_price("") is None


def test_parse_lead_time_days():
    assert parse_lead_time_days("entrega em 3 dias") == 3
    assert parse_lead_time_days("lead time 2 weeks") == 14
    assert parse_lead_time_days("sem prazo") is None
