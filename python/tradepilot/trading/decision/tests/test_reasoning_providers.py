import json

import httpx
import pytest

from tradepilot.trading.decision.providers import (
    DEFAULT_RAPIDAPI_HOST,
    OpenAICompatibleProvider,
    RapidApiProvider,
    create_providers,
)
from tradepilot.trading.errors import ProviderError, ProviderTimeoutError
from tradepilot.trading.models import ProviderConfig, ProviderKind


def _config(**overrides) -> ProviderConfig:
    defaults = dict(
        name="CLIProxyAPI",
        api_key="sk-test",
        base_url="https://llm.example.com/v1/",
        model="gpt-test",
    )
    defaults.update(overrides)
    return ProviderConfig(**defaults)


def _chat_response(content=None, finish_reason="stop", reasoning=None):
    message = {"role": "assistant", "content": content}
    if reasoning is not None:
        message["reasoning"] = reasoning
    return {"choices": [{"message": message, "finish_reason": finish_reason}]}


@pytest.mark.asyncio
async def test_openai_request_shape_and_content():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json=_chat_response('{"action": "wait"}'))

    provider = OpenAICompatibleProvider(_config(), transport=httpx.MockTransport(handler))
    text = await provider.complete("prompt", "system")

    assert text == '{"action": "wait"}'
    assert seen["url"] == "https://llm.example.com/v1/chat/completions"
    assert seen["auth"] == "Bearer sk-test"
    body = seen["body"]
    assert body["model"] == "gpt-test"
    assert body["temperature"] == 0.1
    assert body["max_tokens"] == 300
    assert body["response_format"] == {"type": "json_object"}
    assert [m["role"] for m in body["messages"]] == ["system", "user"]


@pytest.mark.asyncio
async def test_openai_non_2xx_raises_with_status():
    transport = httpx.MockTransport(lambda r: httpx.Response(429, text="rate limited"))
    provider = OpenAICompatibleProvider(_config(), transport=transport)
    with pytest.raises(ProviderError) as excinfo:
        await provider.complete("prompt")
    assert excinfo.value.status_code == 429
    assert "API error (429): rate limited" in str(excinfo.value)


@pytest.mark.asyncio
async def test_openai_truncated_response_raises():
    transport = httpx.MockTransport(
        lambda r: httpx.Response(200, json=_chat_response('{"action"', "length"))
    )
    provider = OpenAICompatibleProvider(_config(), transport=transport)
    with pytest.raises(ProviderError, match="Response truncated"):
        await provider.complete("prompt")


@pytest.mark.asyncio
async def test_openai_missing_choices_raises():
    transport = httpx.MockTransport(lambda r: httpx.Response(200, json={"id": "x"}))
    provider = OpenAICompatibleProvider(_config(), transport=transport)
    with pytest.raises(ProviderError, match="Invalid response structure from CLIProxyAPI"):
        await provider.complete("prompt")


@pytest.mark.asyncio
async def test_openai_reasoning_fallback_and_reasoning_only():
    with_json = httpx.MockTransport(
        lambda r: httpx.Response(200, json=_chat_response(None, reasoning='{"action": "hold"}'))
    )
    provider = OpenAICompatibleProvider(_config(), transport=with_json)
    assert await provider.complete("prompt") == '{"action": "hold"}'

    prose_only = httpx.MockTransport(
        lambda r: httpx.Response(200, json=_chat_response("", reasoning="thinking..."))
    )
    provider = OpenAICompatibleProvider(_config(), transport=prose_only)
    with pytest.raises(ProviderError, match="no JSON content"):
        await provider.complete("prompt")


@pytest.mark.asyncio
async def test_timeout_maps_to_provider_timeout():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow", request=request)

    provider = OpenAICompatibleProvider(
        _config(timeout_seconds=30), transport=httpx.MockTransport(handler)
    )
    with pytest.raises(ProviderTimeoutError, match="request timeout after 30 seconds"):
        await provider.complete("prompt")


@pytest.mark.asyncio
async def test_rapidapi_sends_message_list_and_returns_text():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["headers"] = request.headers
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, text='{"text": "{\\"action\\": \\"wait\\"}"}')

    cfg = _config(
        name="RapidAPI",
        kind=ProviderKind.RAPIDAPI,
        api_key="rk",
        base_url="https://chatgpt-api8.p.rapidapi.com/",
    )
    provider = RapidApiProvider(cfg, transport=httpx.MockTransport(handler))
    text = await provider.complete("prompt")

    assert '"text"' in text
    assert seen["headers"]["x-rapidapi-key"] == "rk"
    assert seen["headers"]["x-rapidapi-host"] == DEFAULT_RAPIDAPI_HOST
    assert seen["body"] == [{"role": "user", "content": "prompt"}]


def test_create_providers_skips_missing_credentials():
    providers = create_providers(
        [
            _config(name="NoKey", api_key=None),
            _config(name="Gemini"),
            _config(name="RapidAPI", kind=ProviderKind.RAPIDAPI),
        ]
    )
    assert [p.name for p in providers] == ["Gemini", "RapidAPI"]
    assert isinstance(providers[1], RapidApiProvider)
