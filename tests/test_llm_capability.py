import json
import os
import sys

import pytest
import requests

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from services.llm_capability import (
    COMPARE_QUOTES,
    CapabilityError,
    CapabilityRequest,
    LMStudioCapability,
)
from services.lmstudio_client import LMStudioClient


class DummyResponse:
    def __init__(self, payload, status_code=200):
        self._payload = payload
        self.status_code = status_code
        self.content = json.dumps(payload).encode()
        self.text = json.dumps(payload)

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(str(self.status_code), response=self)

    def json(self):
        return self._payload


class DummySession:
    def __init__(self, response):
        self.response = response
        self.calls = []

    def request(self, method, url, headers=None, timeout=None, **kwargs):
        self.calls.append({"method": method, "url": url, "headers": headers, **kwargs})
        return self.response

    def close(self):
        pass


def _chat_payload(content):
    return {"choices": [{"message": {"role": "assistant", "content": content}}]}


def _capability(response):
    session = DummySession(response)
    client = LMStudioClient(base_url="localhost:1234", api_key="secret", session=session)
    return LMStudioCapability(client, model="qwen"), session


def _request():
    return CapabilityRequest(system="sys", prompt="rank these", schema=COMPARE_QUOTES)


def test_structured_result_is_decoded_and_schema_sent():
    content = json.dumps({"recommendation": "Pick A", "best_supplier": "A", "total_price": 10})
    capability, session = _capability(DummyResponse(_chat_payload(content)))

    result = capability.complete(_request())

    assert result == {"recommendation": "Pick A", "best_supplier": "A", "total_price": 10}
    call = session.calls[0]
    assert call["url"] == "http://localhost:1234/v1/chat/completions"
    assert call["headers"]["Authorization"] == "Bearer secret"
    assert call["json"]["response_format"]["json_schema"]["name"] == "compare_quotes"
    assert call["json"]["messages"][0] == {"role": "system", "content": "sys"}


def test_fenced_json_is_accepted():
    content = "```json\n{\"message\": \"hi\"}\n```"
    capability, _ = _capability(DummyResponse(_chat_payload(content)))

    assert capability.complete(_request()) == {"message": "hi"}


@pytest.mark.parametrize("content", ["not json at all", "[1, 2]", ""])
def test_malformed_content_yields_empty_result(content):
    capability, _ = _capability(DummyResponse(_chat_payload(content)))

    assert capability.complete(_request()) == {}


def test_http_failure_raises_capability_error():
    capability, _ = _capability(DummyResponse({"error": "model not loaded"}, status_code=503))

    with pytest.raises(CapabilityError) as excinfo:
        capability.complete(_request())

    assert excinfo.value.schema == "compare_quotes"
    assert excinfo.value.status_code == 503


def test_prompt_without_schema_returns_text():
    capability, session = _capability(DummyResponse(_chat_payload("plain answer")))

    result = capability.complete(CapabilityRequest(system="sys", prompt="hello"))

    assert result == {"text": "plain answer"}
    assert "response_format" not in session.calls[0]["json"]


def test_client_lists_models_and_filters_sampling_fields():
    session = DummySession(DummyResponse({"data": [{"id": "qwen2.5-7b-instruct"}, {"object": "model"}]}))
    client = LMStudioClient(base_url="http://localhost:1234/", session=session)

    assert client.list_models() == ["qwen2.5-7b-instruct"]
    assert session.calls[0]["url"] == "http://localhost:1234/v1/models"
    assert "Authorization" not in session.calls[0]["headers"]

    session.response = DummyResponse(_chat_payload("ok"))
    text = client.chat_completion(
        "qwen",
        [{"role": "user", "content": "hi"}],
        sampling={"temperature": 0.2, "num_ctx": 4096},
    )

    assert text == "ok"
    body = session.calls[1]["json"]
    assert body["temperature"] == 0.2
    assert "num_ctx" not in body
    assert body["stream"] is False
