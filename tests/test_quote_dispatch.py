import os
import sys
from datetime import timedelta

import pytest

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from config.settings import CorrelationPolicy
from models.quote import QuoteStatus
from services.llm_capability import CapabilityError
from services.message_channel import SendResult, SimulatedChannel
from services.quote_manager import QuoteDispatchError, QuoteManager, QuoteParseError
from utils.quote_tracking import extract_correlation_token


class ScriptedCapability:
    """Answers by schema name; values may be dicts, exceptions or callables."""

    def __init__(self, **answers):
        self.answers = answers
        self.calls = []

    def complete(self, request):
        name = request.schema.name if request.schema else None
        self.calls.append(name)
        answer = self.answers.get(name, {})
        if callable(answer):
            answer = answer(request)
        if isinstance(answer, Exception):
            raise answer
        return answer


class RefusingChannel(SimulatedChannel):
    def send(self, address, text):
        return SendResult(success=False, error="blocked")


def _parse(manager, description="10 kg de arroz"):
    return manager.parse_request(description, urgent=False, timeout=timedelta(minutes=30))


@pytest.fixture
def three_suppliers(add_supplier):
    return [
        add_supplier("s-1", "Um", "5567000000001"),
        add_supplier("s-2", "Dois", "5567000000002"),
        add_supplier("s-3", "Tres", "5567000000003"),
    ]


def _manager(store, channel=None, policy=CorrelationPolicy.MOST_RECENT, **answers):
    answers.setdefault("parse_purchase_request", {"items": [{"name": "arroz", "qty": 10, "unit": "kg"}]})
    answers.setdefault("compose_quote_message", {"message": "Please quote 10 kg of rice"})
    capability = ScriptedCapability(**answers)
    channel = channel or SimulatedChannel()
    return QuoteManager(capability, channel, store, correlation_policy=policy), capability, channel


def test_parse_request_builds_request_and_skips_nameless_items(store):
    manager, _, _ = _manager(
        store,
        parse_purchase_request={"items": [{"name": "arroz", "qty": "10", "unit": "kg"}, {"qty": 2}, "junk"]},
    )

    request = manager.parse_request("10 kg de arroz", urgent=True, timeout=timedelta(minutes=5))

    assert [item.name for item in request.items] == ["arroz"]
    assert request.items[0].quantity == 10.0
    assert request.urgent is True
    assert request.timeout_seconds == 300
    assert request.id


def test_parse_request_wraps_capability_failure(store):
    manager, _, _ = _manager(store, parse_purchase_request=CapabilityError("down"))

    with pytest.raises(QuoteParseError):
        _parse(manager)


def test_dispatch_creates_one_pending_unit_per_supplier(store, three_suppliers):
    manager, _, channel = _manager(store)
    request = _parse(manager)
    store.create_request(request)

    units = manager.send_quotes(request, three_suppliers)

    stored = store.units_by_request(request.id)
    assert len(units) == len(stored) == 3
    assert {unit.supplier_id for unit in stored} == {"s-1", "s-2", "s-3"}
    assert all(unit.status == QuoteStatus.PENDING for unit in stored)
    assert [address for address, _ in channel.sent] == ["5567000000001", "5567000000002", "5567000000003"]


def test_dispatch_aborts_on_send_failure_and_keeps_earlier_units(store, three_suppliers):
    manager, _, channel = _manager(store)
    channel.fail_on("5567000000002")
    request = _parse(manager)
    store.create_request(request)

    with pytest.raises(QuoteDispatchError) as excinfo:
        manager.send_quotes(request, three_suppliers)

    assert excinfo.value.supplier_id == "s-2"
    assert [unit.supplier_id for unit in excinfo.value.dispatched] == ["s-1"]
    assert [unit.supplier_id for unit in store.units_by_request(request.id)] == ["s-1"]
    assert channel.sent_to("5567000000003") == []


def test_dispatch_aborts_when_channel_refuses(store, three_suppliers):
    manager, _, _ = _manager(store, channel=RefusingChannel())
    request = _parse(manager)
    store.create_request(request)

    with pytest.raises(QuoteDispatchError, match="blocked"):
        manager.send_quotes(request, three_suppliers)
    assert store.units_by_request(request.id) == []


def test_dispatch_aborts_when_compose_fails(store, three_suppliers):
    def compose(request):
        if request.payload["supplier_name"] == "Dois":
            return CapabilityError("overloaded")
        return {"message": "quote please"}

    manager, _, channel = _manager(store, compose_quote_message=compose)
    request = _parse(manager)
    store.create_request(request)

    with pytest.raises(QuoteDispatchError, match="compose message for Dois"):
        manager.send_quotes(request, three_suppliers)
    assert len(store.units_by_request(request.id)) == 1
    assert len(channel.sent) == 1


def test_empty_composed_message_falls_back_to_template(store, three_suppliers, caplog):
    manager, _, channel = _manager(store, compose_quote_message={"message": "   "})
    request = _parse(manager)
    store.create_request(request)

    manager.send_quotes(request, three_suppliers[:1])

    text = channel.sent[0][1]
    assert text.startswith("Hello Um!")
    assert "- arroz: 10 kg" in text
    assert "using template" in caplog.text


def test_token_policy_embeds_reference_and_stores_it(store, three_suppliers):
    manager, _, channel = _manager(store, policy=CorrelationPolicy.TOKEN)
    request = _parse(manager)
    store.create_request(request)

    units = manager.send_quotes(request, three_suppliers[:2])

    tokens = [extract_correlation_token(text) for _, text in channel.sent]
    assert tokens == [unit.correlation_token for unit in units]
    assert len(set(tokens)) == 2
    assert store.find_by_token(tokens[0]).supplier_id == "s-1"
