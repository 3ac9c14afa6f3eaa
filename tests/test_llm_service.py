"""Outbound HTTP: LLM chat client and api_call layers"""

import requests

from core.domain import ExecutionLayer, ExecutionLayerType
from services import agent_service
from services.llm_service import LLMService


class _Response:
    def __init__(self, payload=None, status_code=200, text=""):
        self._payload = payload
        self.status_code = status_code
        self.text = text

    def json(self):
        if self._payload is None:
            raise ValueError("not json")
        return self._payload

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.exceptions.HTTPError(response=self)


def test_chat_posts_messages_and_tools(monkeypatch):
    sent = {}

    def fake_post(url, json, timeout):
        sent.update(url=url, json=json)
        return _Response({"message": {"role": "assistant", "content": "hello"}})

    monkeypatch.setattr(requests, "post", fake_post)
    llm = LLMService("http://llm:11434/", "tiny")

    result = llm.chat([{"role": "user", "content": "hi"}], tools=[{"type": "function"}])

    assert result == {"message": {"role": "assistant", "content": "hello"}, "status": "success"}
    assert sent["url"] == "http://llm:11434/api/chat"
    assert sent["json"]["stream"] is False
    assert sent["json"]["tools"] == [{"type": "function"}]


def test_chat_reports_failures_as_errors(monkeypatch):
    llm = LLMService("http://llm:11434", "tiny")

    def timeout(*args, **kwargs):
        raise requests.exceptions.Timeout()

    monkeypatch.setattr(requests, "post", timeout)
    assert llm.chat([{"role": "user", "content": "hi"}])["status"] == "error"

    monkeypatch.setattr(requests, "post", lambda *a, **k: _Response({"message": {"content": ""}}))
    assert llm.chat([{"role": "user", "content": "hi"}])["error"] == "Empty response from LLM"

    monkeypatch.setattr(requests, "post", lambda *a, **k: _Response(None))
    assert llm.chat([{"role": "user", "content": "hi"}])["error"] == "Invalid response from LLM"

    assert llm.chat([])["status"] == "error"


def _layer(method="GET"):
    return ExecutionLayer(
        id="l1", name="weather", description="", type=ExecutionLayerType.API_CALL,
        config={"url": "https://example.com/weather", "method": method, "headers": {"X-Key": "k"}},
    )


def test_api_layer_get_sends_query_param(monkeypatch):
    seen = {}

    def fake_get(url, params, headers, timeout):
        seen.update(url=url, params=params, headers=headers)
        return _Response(text="sunny" * 2000)

    monkeypatch.setattr(requests, "get", fake_get)
    monkeypatch.setattr(agent_service.settings, "API_CALL_RESPONSE_LIMIT", 10)

    out = agent_service.call_api_layer(_layer(), "weather today")

    assert out == "sunnysunny"
    assert seen["params"] == {"q": "weather today"}
    assert seen["headers"] == {"X-Key": "k"}


def test_api_layer_post_and_errors(monkeypatch):
    seen = {}

    def fake_post(url, json, headers, timeout):
        seen.update(json=json)
        return _Response(status_code=500, text="boom")

    monkeypatch.setattr(requests, "post", fake_post)

    out = agent_service.call_api_layer(_layer("POST"), "weather today")

    assert seen["json"] == {"query": "weather today"}
    assert out.startswith("error:")
