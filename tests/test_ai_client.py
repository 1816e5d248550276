"""Tests for the OpenAI-compatible providers."""

from __future__ import annotations

from dataclasses import dataclass
from types import SimpleNamespace
from typing import Any, Iterable, cast

import httpx
import pytest

from openai import APIConnectionError, AsyncOpenAI

from actionflow.client import (
    AIClient,
    AIClientError,
    ApproxByteCounter,
    ClientSettings,
    FunctionProvider,
    GROQ_BASE_URL,
    OLLAMA_BASE_URL,
    groq_provider,
    ollama_provider,
    openai_provider,
)
from actionflow.orchestration.types import ChatConfig, ChatProvider, ChatResponse, Message, ProviderCapabilities, TokenUsage


@dataclass
class _FakeEvent:
    """Simple structure emulating ChatCompletionStreamEvent attributes."""

    type: str
    delta: str | None = None
    content: str | None = None


class _FakeStream:
    def __init__(self, events: Iterable[_FakeEvent]):
        self._iterator = iter(list(events))

    def __aiter__(self) -> "_FakeStream":
        return self

    async def __anext__(self) -> _FakeEvent:
        try:
            return next(self._iterator)
        except StopIteration as exc:  # pragma: no cover - exhaust iterator
            raise StopAsyncIteration from exc


class _FakeStreamContext:
    def __init__(self, events: Iterable[_FakeEvent]):
        self._events = list(events)

    async def __aenter__(self) -> _FakeStream:
        return _FakeStream(self._events)

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        return False


class _FakeCompletions:
    def __init__(self, completions: Iterable[Any] = (), events: Iterable[_FakeEvent] = ()):
        self._completions = list(completions)
        self._events = list(events)
        self.calls: list[dict[str, Any]] = []
        self.stream_calls: list[dict[str, Any]] = []

    async def create(self, **kwargs: Any) -> Any:
        self.calls.append(kwargs)
        result = self._completions.pop(0)
        if isinstance(result, BaseException):
            raise result
        return result

    def stream(self, **kwargs: Any) -> _FakeStreamContext:
        self.stream_calls.append(kwargs)
        return _FakeStreamContext(self._events)


def _make_client(completions: Iterable[Any] = (), events: Iterable[_FakeEvent] = ()) -> SimpleNamespace:
    return SimpleNamespace(chat=SimpleNamespace(completions=_FakeCompletions(completions, events)))


def _completion(
    content: str | None = "Hello",
    *,
    tool_calls: list[SimpleNamespace] | None = None,
    usage: SimpleNamespace | None = None,
    finish_reason: str = "stop",
) -> SimpleNamespace:
    message = SimpleNamespace(content=content, tool_calls=tool_calls)
    return SimpleNamespace(
        choices=[SimpleNamespace(message=message, finish_reason=finish_reason)],
        usage=usage,
    )


def _client(fake: SimpleNamespace, **overrides: Any) -> AIClient:
    settings = ClientSettings(base_url="http://local", api_key="test", model="gpt-4o-mini", max_retries=1, **overrides)
    return AIClient(settings, client=cast(AsyncOpenAI, fake))


# =============================================================================
# AIClient.chat
# =============================================================================


@pytest.mark.asyncio
async def test_chat_normalizes_completion() -> None:
    fake = _make_client(
        [_completion("Hi there", usage=SimpleNamespace(prompt_tokens=12, completion_tokens=3, total_tokens=15))]
    )
    client = _client(fake)

    response = await client.chat([Message.system("rules"), Message.user("Hello")])

    assert isinstance(client, ChatProvider)
    assert response.content == "Hi there"
    assert response.usage == TokenUsage(12, 3, 15)
    assert response.finish_reason == "stop"
    call = fake.chat.completions.calls[0]
    assert call["model"] == "gpt-4o-mini"
    assert call["messages"] == [{"role": "system", "content": "rules"}, {"role": "user", "content": "Hello"}]
    assert "tools" not in call


@pytest.mark.asyncio
async def test_chat_returns_native_tool_calls() -> None:
    tool_call = SimpleNamespace(
        id="call_1",
        function=SimpleNamespace(name="calculator", arguments='{"a": 5, "b": 3}'),
    )
    fake = _make_client([_completion(None, tool_calls=[tool_call], finish_reason="tool_calls")])
    client = _client(fake)
    tools = [{"type": "function", "function": {"name": "calculator", "parameters": {}}}]

    response = await client.chat([Message.user("Calculate 5+3")], tools=tools)

    assert response.content == ""
    assert response.tool_calls == (
        {"id": "call_1", "type": "function", "function": {"name": "calculator", "arguments": '{"a": 5, "b": 3}'}},
    )
    assert fake.chat.completions.calls[0]["tools"] == tools


@pytest.mark.asyncio
async def test_tools_are_withheld_without_native_support() -> None:
    fake = _make_client([_completion()])
    client = _client(fake, capabilities=ProviderCapabilities(native_tools=False))

    await client.chat([Message.user("hi")], tools=[{"type": "function", "function": {"name": "x"}}])

    assert "tools" not in fake.chat.completions.calls[0]


@pytest.mark.asyncio
async def test_chat_config_overrides_settings() -> None:
    fake = _make_client([_completion()])
    client = _client(fake, temperature=0.2, max_tokens=100)

    await client.chat([Message.user("hi")], ChatConfig(model="gpt-4o", temperature=0.9))

    call = fake.chat.completions.calls[0]
    assert call["model"] == "gpt-4o"
    assert call["temperature"] == 0.9
    assert call["max_tokens"] == 100


@pytest.mark.asyncio
async def test_missing_usage_is_estimated() -> None:
    fake = _make_client([_completion("abcdefgh", usage=SimpleNamespace(total_tokens=0))])
    client = _client(fake)

    response = await client.chat([Message.user("hi")])

    assert response.usage is not None
    assert response.usage.completion_tokens == 2
    assert response.usage.total_tokens == response.usage.prompt_tokens + 2


@pytest.mark.asyncio
async def test_completion_without_choices_raises() -> None:
    fake = _make_client([SimpleNamespace(choices=[], usage=None)])

    with pytest.raises(AIClientError):
        await _client(fake).chat([Message.user("hi")])


@pytest.mark.asyncio
async def test_chat_requires_messages() -> None:
    with pytest.raises(ValueError):
        await _client(_make_client()).chat([])


@pytest.mark.asyncio
async def test_chat_retries_connection_errors() -> None:
    error = APIConnectionError(request=httpx.Request("POST", "http://local/chat/completions"))
    fake = _make_client([error, _completion("recovered")])
    settings = ClientSettings(
        base_url="http://local",
        api_key="test",
        model="gpt-4o-mini",
        max_retries=2,
        retry_min_seconds=0.0,
        retry_max_seconds=0.0,
    )
    client = AIClient(settings, client=cast(AsyncOpenAI, fake))

    response = await client.chat([Message.user("hi")])

    assert response.content == "recovered"
    assert len(fake.chat.completions.calls) == 2


@pytest.mark.asyncio
async def test_debug_logging_captures_prompt_payload(monkeypatch: pytest.MonkeyPatch) -> None:
    fake = _make_client([_completion()])
    client = _client(fake, debug_logging=True)
    captured: dict[str, Any] = {}

    def _capture(payload: Any) -> None:
        captured["payload"] = payload

    monkeypatch.setattr(client, "_log_prompt_payload", _capture)

    await client.chat([Message.user("Hello")])

    assert captured["payload"]["messages"][0]["content"] == "Hello"


# =============================================================================
# AIClient.stream
# =============================================================================


@pytest.mark.asyncio
async def test_stream_yields_content_deltas_only() -> None:
    events = [
        _FakeEvent(type="content.delta", delta="Hel"),
        _FakeEvent(type="tool_calls.function.arguments.delta"),
        _FakeEvent(type="content.delta", delta="lo"),
        _FakeEvent(type="content.done", content="Hello"),
    ]
    fake = _make_client(events=events)
    client = _client(fake)

    chunks = [chunk async for chunk in client.stream([Message.user("Hi")])]

    assert chunks == ["Hel", "lo"]
    assert fake.chat.completions.stream_calls[0]["messages"][0]["role"] == "user"


@pytest.mark.asyncio
async def test_aclose_closes_underlying_client() -> None:
    class _StubAsyncOpenAI:
        def __init__(self) -> None:
            self.closed = False

        async def close(self) -> None:
            self.closed = True

    stub = _StubAsyncOpenAI()
    client = AIClient(
        ClientSettings(base_url="http://local", api_key="test", model="stub-model"),
        client=cast(AsyncOpenAI, stub),
    )

    await client.aclose()

    assert stub.closed is True


# =============================================================================
# Presets
# =============================================================================


def test_openai_preset() -> None:
    provider = openai_provider("sk-test", client=cast(AsyncOpenAI, _make_client()))

    assert provider.name == "openai"
    assert provider.capabilities == ProviderCapabilities(native_tools=True, streaming=True, vision=True)
    assert provider.settings.model == "gpt-4o-mini"


def test_groq_preset_native_tools_depend_on_model() -> None:
    default = groq_provider("gsk-test", client=cast(AsyncOpenAI, _make_client()))
    llama = groq_provider("gsk-test", model="llama-3.3-70b-versatile", client=cast(AsyncOpenAI, _make_client()))

    assert default.settings.base_url == GROQ_BASE_URL
    assert default.capabilities.native_tools is False
    assert llama.capabilities.native_tools is True


def test_ollama_preset() -> None:
    provider = ollama_provider(client=cast(AsyncOpenAI, _make_client()))

    assert provider.settings.base_url == OLLAMA_BASE_URL
    assert provider.settings.api_key == "ollama"
    assert provider.capabilities.native_tools is False
    assert provider.capabilities.streaming is True


def test_preset_builds_real_client() -> None:
    provider = openai_provider("sk-test", request_timeout=5.0)

    assert isinstance(provider._client, AsyncOpenAI)


# =============================================================================
# FunctionProvider
# =============================================================================


@pytest.mark.asyncio
async def test_function_provider_accepts_strings() -> None:
    seen: list[Any] = []

    def handler(messages, config, tools):
        seen.append((messages, config, tools))
        return "pong"

    provider = FunctionProvider(handler, name="local")

    response = await provider.chat([Message.user("ping")])

    assert isinstance(provider, ChatProvider)
    assert response.content == "pong"
    assert response.usage is not None and response.usage.total_tokens > 0
    assert seen[0][1] == ChatConfig()


@pytest.mark.asyncio
async def test_function_provider_accepts_async_mappings() -> None:
    async def handler(messages, config, tools):
        return {
            "content": "",
            "tool_calls": [{"id": "c1", "type": "function", "function": {"name": "x", "arguments": "{}"}}],
            "usage": {"prompt_tokens": 4, "completion_tokens": 1, "total_tokens": 5},
        }

    response = await FunctionProvider(handler).chat([Message.user("go")])

    assert response.has_tool_calls
    assert response.usage == TokenUsage(4, 1, 5)


@pytest.mark.asyncio
async def test_function_provider_passes_chat_responses_through() -> None:
    expected = ChatResponse(content="done", usage=TokenUsage(1, 1, 2))

    response = await FunctionProvider(lambda messages, config, tools: expected).chat([Message.user("x")])

    assert response is expected


@pytest.mark.asyncio
async def test_function_provider_rejects_unknown_results() -> None:
    provider = FunctionProvider(lambda messages, config, tools: 42)

    with pytest.raises(AIClientError):
        await provider.chat([Message.user("x")])


@pytest.mark.asyncio
async def test_function_provider_stream_yields_whole_reply() -> None:
    provider = FunctionProvider(lambda messages, config, tools: "all at once")

    chunks = [chunk async for chunk in provider.stream([Message.user("x")])]

    assert chunks == ["all at once"]


def test_function_provider_requires_callable() -> None:
    with pytest.raises(TypeError):
        FunctionProvider("not callable")  # type: ignore[arg-type]


def test_byte_counter_estimates() -> None:
    counter = ApproxByteCounter(bytes_per_token=4)

    assert counter.estimate("") == 0
    assert counter.estimate("abc") == 1
    assert counter.estimate("abcdefghi") == 3
