import httpx
import pytest

from support_chat.providers.openrouter_client import OpenRouterClient
from support_chat.domain.models import ChatRequest, ChatMessage
from support_chat.domain.exceptions import ApiError, NetworkError, RateLimitError, ValidationError


class SettingsStub:
    openrouter_api_key = "sk-or-test-key"
    http_timeout = 1.0
    openrouter_base_url = "https://openrouter.ai/api/v1"
    site_url = "http://localhost:3001"
    app_title = "Support Chat"


def _request():
    return ChatRequest(
        provider="openrouter",
        model="gpt-4o-mini",
        messages=[ChatMessage(role="system", content="sys"), ChatMessage(role="user", content="hi")],
        max_tokens=2000,
    )


def _install_client(monkeypatch, resp=None, exc=None, calls=None):
    class Client:
        def __init__(self, *a, **kw):
            pass

        def __enter__(self):
            return self

        def __exit__(self, *a):
            return False

        def post(self, url, json=None, headers=None):
            if calls is not None:
                calls.append({"url": url, "json": json, "headers": headers})
            if exc is not None:
                raise exc
            return resp

    monkeypatch.setattr("httpx.Client", Client)


class Resp:
    def __init__(self, status_code=200, body=None, text=""):
        self.status_code = status_code
        self._body = body
        self.text = text

    def json(self):
        if self._body is None:
            raise ValueError("not json")
        return self._body


def test_openrouter_client_basic(monkeypatch):
    calls = []
    body = {
        "choices": [{"index": 0, "message": {"role": "assistant", "content": "ok"}, "finish_reason": "stop"}],
        "usage": {"prompt_tokens": 1, "completion_tokens": 1, "total_tokens": 2},
    }
    _install_client(monkeypatch, resp=Resp(body=body), calls=calls)
    res = OpenRouterClient(SettingsStub()).chat(_request())

    assert res.first_content == "ok"
    assert res.usage.total_tokens == 2
    sent = calls[0]
    assert sent["url"] == "https://openrouter.ai/api/v1/chat/completions"
    assert sent["json"] == {
        "model": "gpt-4o-mini",
        "messages": [{"role": "system", "content": "sys"}, {"role": "user", "content": "hi"}],
        "max_tokens": 2000,
    }
    assert sent["headers"]["Authorization"] == "Bearer sk-or-test-key"
    assert sent["headers"]["HTTP-Referer"] == "http://localhost:3001"
    assert sent["headers"]["X-Title"] == "Support Chat"


def test_openrouter_client_missing_key():
    class NoKey(SettingsStub):
        openrouter_api_key = None

    with pytest.raises(ValidationError) as ei:
        OpenRouterClient(NoKey()).chat(_request())
    assert ei.value.code == "MISSING_API_KEY"


def test_openrouter_client_network_error(monkeypatch):
    _install_client(monkeypatch, exc=httpx.ConnectError("boom"))
    with pytest.raises(NetworkError):
        OpenRouterClient(SettingsStub()).chat(_request())


def test_openrouter_client_rate_limit(monkeypatch):
    _install_client(monkeypatch, resp=Resp(status_code=429, text="slow down"))
    with pytest.raises(RateLimitError):
        OpenRouterClient(SettingsStub()).chat(_request())


def test_openrouter_client_api_error_does_not_leak_key(monkeypatch):
    _install_client(monkeypatch, resp=Resp(status_code=500, text="upstream exploded"))
    with pytest.raises(ApiError) as ei:
        OpenRouterClient(SettingsStub()).chat(_request())
    assert ei.value.http_status == 500
    assert ei.value.message == "upstream exploded"
    assert "sk-or-test-key" not in str(ei.value.to_dict())


def test_openrouter_client_invalid_json(monkeypatch):
    _install_client(monkeypatch, resp=Resp(status_code=200, body=None, text="<html>"))
    with pytest.raises(ApiError) as ei:
        OpenRouterClient(SettingsStub()).chat(_request())
    assert ei.value.code == "INVALID_RESPONSE"


def test_openrouter_client_malformed_choices(monkeypatch):
    _install_client(monkeypatch, resp=Resp(body={"choices": [{"message": {"content": None}}]}))
    res = OpenRouterClient(SettingsStub()).chat(_request())
    assert res.first_content == ""


def test_openrouter_client_invalid_base_url(monkeypatch):
    _install_client(monkeypatch, exc=httpx.InvalidURL("No scheme included in URL."))
    with pytest.raises(ValidationError) as ei:
        OpenRouterClient(SettingsStub()).chat(_request())
    assert ei.value.code == "INVALID_BASE_URL"


def test_gateway_moves_past_transport_failures(monkeypatch):
    from support_chat.providers.gateway import CompletionGateway, GatewayConfig
    from support_chat.providers.registry import ModelRoute

    calls = []

    class Client:
        def __init__(self, *a, **kw):
            pass

        def __enter__(self):
            return self

        def __exit__(self, *a):
            return False

        def post(self, url, json=None, headers=None):
            calls.append(json["model"])
            if json["model"] == "m1":
                raise httpx.InvalidURL("bad url")
            if json["model"] == "m2":
                raise httpx.UnsupportedProtocol("ftp")
            return Resp(body={"choices": [{"message": {"content": "fine"}}]})

    monkeypatch.setattr("httpx.Client", Client)
    config = GatewayConfig(
        routes=[ModelRoute(provider="openrouter", model=m) for m in ("m1", "m2", "m3")],
        system_prompt="sys",
    )
    gateway = CompletionGateway(config, {"openrouter": OpenRouterClient(SettingsStub())})
    assert gateway.generate_reply([], "hi") == "fine"
    assert calls == ["m1", "m2", "m3"]
