"""Async model providers built around OpenAI-compatible endpoints."""

from __future__ import annotations

import inspect
import json
import logging
import math
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Mapping, Sequence, Union, cast

import httpx
from openai import AsyncOpenAI, APIConnectionError, APIError, APIStatusError, RateLimitError
from openai.lib.streaming.chat import ChatCompletionStreamEvent
from openai.types.chat import ChatCompletionMessageParam
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from .orchestration.types import ChatConfig, ChatResponse, Message, ProviderCapabilities, TokenUsage

__all__ = [
    "AIClient",
    "AIClientError",
    "ApproxByteCounter",
    "ClientSettings",
    "FunctionProvider",
    "GROQ_BASE_URL",
    "GROQ_NATIVE_TOOL_MODELS",
    "OLLAMA_BASE_URL",
    "OPENAI_BASE_URL",
    "groq_provider",
    "ollama_provider",
    "openai_provider",
]

LOGGER = logging.getLogger(__name__)
_DEFAULT_BYTES_PER_TOKEN = 4

OPENAI_BASE_URL = "https://api.openai.com/v1"
GROQ_BASE_URL = "https://api.groq.com/openai/v1"
OLLAMA_BASE_URL = "http://localhost:11434/v1"

GROQ_NATIVE_TOOL_MODELS = frozenset(
    {
        "llama-3.1-70b-versatile",
        "llama-3.1-8b-instant",
        "llama-3.3-70b-versatile",
        "llama-3.3-70b-specdec",
        "mixtral-8x7b-32768",
        "gemma2-9b-it",
    }
)


class AIClientError(RuntimeError):
    """Raised when a backend returns a response that cannot be interpreted."""


class ApproxByteCounter:
    """Deterministic counter that estimates tokens via byte length."""

    def __init__(self, *, charset: str = "utf-8", bytes_per_token: int = _DEFAULT_BYTES_PER_TOKEN) -> None:
        self._charset = charset
        self._bytes_per_token = max(1, int(bytes_per_token))

    def estimate(self, text: str) -> int:
        if not text:
            return 0
        data = text.encode(self._charset, errors="ignore")
        return max(1, math.ceil(len(data) / self._bytes_per_token))

    def estimate_usage(self, messages: Sequence[Message], completion: str) -> TokenUsage:
        """Usage estimate for backends that report none."""
        prompt = self.estimate(json.dumps([message.to_chat_param() for message in messages], default=str))
        reply = self.estimate(completion)
        return TokenUsage(prompt_tokens=prompt, completion_tokens=reply, total_tokens=prompt + reply)


@dataclass(slots=True)
class ClientSettings:
    """Subset of settings required to configure the AI client."""

    base_url: str
    api_key: str
    model: str
    organization: str | None = None
    request_timeout: float | None = 90.0
    max_retries: int = 3
    retry_min_seconds: float = 0.5
    retry_max_seconds: float = 6.0
    temperature: float | None = None
    max_tokens: int | None = None
    capabilities: ProviderCapabilities = field(
        default_factory=lambda: ProviderCapabilities(native_tools=True, streaming=True)
    )
    provider_name: str = "openai"
    default_headers: Mapping[str, str] | None = None
    debug_logging: bool = False


class AIClient:
    """Chat provider for OpenAI-compatible endpoints with retry semantics."""

    def __init__(
        self,
        settings: ClientSettings,
        *,
        client: AsyncOpenAI | None = None,
        token_counter: ApproxByteCounter | None = None,
    ) -> None:
        self._settings = settings
        self._client = client or self._build_client(settings)
        self._token_counter = token_counter or ApproxByteCounter()

    @property
    def settings(self) -> ClientSettings:
        return self._settings

    @property
    def name(self) -> str:
        return self._settings.provider_name

    @property
    def capabilities(self) -> ProviderCapabilities:
        return self._settings.capabilities

    async def chat(
        self,
        messages: Sequence[Message],
        config: ChatConfig | None = None,
        tools: Sequence[Mapping[str, Any]] | None = None,
    ) -> ChatResponse:
        """Run one non-streaming chat completion."""

        payload = self._build_chat_payload(messages, config, tools)
        LOGGER.debug(
            "Starting chat completion via %s with %s message(s)",
            payload["model"],
            len(payload["messages"]),
        )
        if self._settings.debug_logging:
            self._log_prompt_payload(payload)

        async for attempt in self._retrying():
            with attempt:
                completion = await self._client.chat.completions.create(**payload)
        return self._normalize_completion(completion, messages)

    async def stream(
        self,
        messages: Sequence[Message],
        config: ChatConfig | None = None,
        tools: Sequence[Mapping[str, Any]] | None = None,
    ) -> AsyncIterator[str]:
        """Stream content deltas for the provided messages."""

        payload = self._build_chat_payload(messages, config, tools)
        LOGGER.debug(
            "Starting streamed chat completion via %s with %s message(s)",
            payload["model"],
            len(payload["messages"]),
        )
        if self._settings.debug_logging:
            self._log_prompt_payload(payload)

        async for attempt in self._retrying():
            with attempt:
                async with self._client.chat.completions.stream(**payload) as stream:
                    async for event in stream:
                        delta = self._content_delta(event)
                        if delta:
                            yield delta
                break

    def _build_client(self, settings: ClientSettings) -> AsyncOpenAI:
        headers = dict(settings.default_headers) if settings.default_headers else None
        timeout = httpx.Timeout(settings.request_timeout) if settings.request_timeout is not None else None
        return AsyncOpenAI(
            api_key=settings.api_key,
            base_url=settings.base_url,
            organization=settings.organization,
            timeout=timeout,
            max_retries=0,
            default_headers=headers,
        )

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            reraise=True,
            stop=stop_after_attempt(max(1, self._settings.max_retries)),
            wait=wait_exponential(
                multiplier=self._settings.retry_min_seconds,
                max=self._settings.retry_max_seconds,
            ),
            retry=retry_if_exception_type(
                (
                    APIError,
                    APIStatusError,
                    APIConnectionError,
                    RateLimitError,
                    httpx.TimeoutException,
                )
            ),
        )

    def _coerce_messages(self, messages: Sequence[Message | Mapping[str, Any]]) -> List[ChatCompletionMessageParam]:
        normalized: List[ChatCompletionMessageParam] = []
        for message in messages:
            if isinstance(message, Message):
                normalized.append(message.to_chat_param())
            else:
                normalized.append(cast(ChatCompletionMessageParam, dict(message)))
        if not normalized:
            raise ValueError("At least one message is required to start a chat")
        return normalized

    def _build_chat_payload(
        self,
        messages: Sequence[Message],
        config: ChatConfig | None,
        tools: Sequence[Mapping[str, Any]] | None,
    ) -> Dict[str, Any]:
        config = config or ChatConfig()
        payload: Dict[str, Any] = {
            "model": config.model or self._settings.model,
            "messages": self._coerce_messages(messages),
        }

        temperature = config.temperature if config.temperature is not None else self._settings.temperature
        max_tokens = config.max_tokens if config.max_tokens is not None else self._settings.max_tokens
        if tools and self.capabilities.native_tools:
            payload["tools"] = [dict(tool) for tool in tools]
        if temperature is not None:
            payload["temperature"] = temperature
        if max_tokens is not None:
            payload["max_tokens"] = max_tokens
        return payload

    def _normalize_completion(self, completion: Any, messages: Sequence[Message]) -> ChatResponse:
        choices = getattr(completion, "choices", None) or []
        if not choices:
            raise AIClientError(f"{self.name} returned a completion without choices")
        choice = choices[0]
        message = getattr(choice, "message", None)
        content = str(getattr(message, "content", None) or "")

        tool_calls: list[dict[str, Any]] = []
        for call in getattr(message, "tool_calls", None) or []:
            function = getattr(call, "function", None)
            if function is None:
                continue
            tool_calls.append(
                {
                    "id": getattr(call, "id", None) or "",
                    "type": "function",
                    "function": {
                        "name": getattr(function, "name", "") or "",
                        "arguments": getattr(function, "arguments", None) or "{}",
                    },
                }
            )

        usage = self._normalize_usage(getattr(completion, "usage", None))
        if usage is None:
            usage = self._token_counter.estimate_usage(messages, content)
        return ChatResponse(
            content=content,
            tool_calls=tuple(tool_calls),
            usage=usage,
            finish_reason=getattr(choice, "finish_reason", None),
        )

    @staticmethod
    def _normalize_usage(usage: Any) -> TokenUsage | None:
        if usage is None:
            return None
        total = int(getattr(usage, "total_tokens", 0) or 0)
        if total <= 0:
            return None
        return TokenUsage(
            prompt_tokens=int(getattr(usage, "prompt_tokens", 0) or 0),
            completion_tokens=int(getattr(usage, "completion_tokens", 0) or 0),
            total_tokens=total,
        )

    @staticmethod
    def _content_delta(event: ChatCompletionStreamEvent[Any]) -> str | None:
        if getattr(event, "type", None) != "content.delta":
            return None
        delta = getattr(event, "delta", None)
        return str(delta) if delta else None

    def _log_prompt_payload(self, payload: Mapping[str, Any]) -> None:
        try:
            serialized = json.dumps(payload, ensure_ascii=False, indent=2)
        except (TypeError, ValueError):
            LOGGER.debug("AI prompt payload (unserializable): %s", payload)
        else:
            LOGGER.debug("AI prompt payload:\n%s", serialized)

    async def aclose(self) -> None:
        """Close the underlying OpenAI client to release network resources."""

        close = getattr(self._client, "close", None)
        if close is None:
            return
        try:
            result = close()
        except Exception as exc:  # pragma: no cover
            LOGGER.debug("AI client close failed to start: %s", exc)
            return
        if inspect.isawaitable(result):
            await result


# -----------------------------------------------------------------------------
# Callable-backed Provider
# -----------------------------------------------------------------------------

HandlerResult = Union[ChatResponse, str, Mapping[str, Any]]
ChatHandler = Callable[
    [Sequence[Message], ChatConfig, Sequence[Mapping[str, Any]] | None],
    Union[HandlerResult, Awaitable[HandlerResult]],
]


class FunctionProvider:
    """Adapts a plain callable into a chat provider.

    The handler receives ``(messages, config, tools)`` and may return a
    ChatResponse, a plain string, or a mapping with ``content``,
    ``tool_calls``, ``usage`` and ``finish_reason`` keys. Async handlers
    are awaited.

    Example:
        provider = FunctionProvider(lambda messages, config, tools: "pong")
    """

    def __init__(
        self,
        handler: ChatHandler,
        *,
        name: str = "custom",
        capabilities: ProviderCapabilities | None = None,
        token_counter: ApproxByteCounter | None = None,
    ) -> None:
        if not callable(handler):
            raise TypeError("FunctionProvider requires a callable handler")
        self._handler = handler
        self._name = name
        self._capabilities = capabilities or ProviderCapabilities()
        self._token_counter = token_counter or ApproxByteCounter()

    @property
    def name(self) -> str:
        return self._name

    @property
    def capabilities(self) -> ProviderCapabilities:
        return self._capabilities

    async def chat(
        self,
        messages: Sequence[Message],
        config: ChatConfig | None = None,
        tools: Sequence[Mapping[str, Any]] | None = None,
    ) -> ChatResponse:
        result = self._handler(list(messages), config or ChatConfig(), tools)
        if inspect.isawaitable(result):
            result = await result
        return self._coerce_response(result, messages)

    async def stream(
        self,
        messages: Sequence[Message],
        config: ChatConfig | None = None,
        tools: Sequence[Mapping[str, Any]] | None = None,
    ) -> AsyncIterator[str]:
        """Yield the whole reply as one chunk; callables have no native streaming."""
        response = await self.chat(messages, config, tools)
        if response.content:
            yield response.content

    def _coerce_response(self, result: Any, messages: Sequence[Message]) -> ChatResponse:
        if isinstance(result, ChatResponse):
            response = result
        elif isinstance(result, str):
            response = ChatResponse(content=result)
        elif isinstance(result, Mapping):
            usage = result.get("usage")
            if isinstance(usage, Mapping):
                usage = TokenUsage(
                    prompt_tokens=int(usage.get("prompt_tokens", 0) or 0),
                    completion_tokens=int(usage.get("completion_tokens", 0) or 0),
                    total_tokens=int(usage.get("total_tokens", 0) or 0),
                )
            response = ChatResponse(
                content=str(result.get("content") or ""),
                tool_calls=tuple(result.get("tool_calls") or ()),
                usage=usage if isinstance(usage, TokenUsage) else None,
                finish_reason=result.get("finish_reason"),
            )
        else:
            raise AIClientError(f"Provider {self._name} handler returned unsupported type {type(result).__name__}")

        if response.usage is None or response.usage.total_tokens <= 0:
            response = ChatResponse(
                content=response.content,
                tool_calls=response.tool_calls,
                usage=self._token_counter.estimate_usage(messages, response.content),
                finish_reason=response.finish_reason,
            )
        return response


# -----------------------------------------------------------------------------
# Presets
# -----------------------------------------------------------------------------


def openai_provider(
    api_key: str,
    model: str = "gpt-4o-mini",
    *,
    base_url: str = OPENAI_BASE_URL,
    client: AsyncOpenAI | None = None,
    **overrides: Any,
) -> AIClient:
    """Provider for the OpenAI API (native tools, streaming, vision)."""
    overrides.setdefault("capabilities", ProviderCapabilities(native_tools=True, streaming=True, vision=True))
    settings = ClientSettings(base_url=base_url, api_key=api_key, model=model, provider_name="openai", **overrides)
    return AIClient(settings, client=client)


def groq_provider(
    api_key: str,
    model: str = "moonshotai/kimi-k2-instruct-0905",
    *,
    base_url: str = GROQ_BASE_URL,
    client: AsyncOpenAI | None = None,
    **overrides: Any,
) -> AIClient:
    """Provider for Groq; native tool calling only for models known to support it."""
    overrides.setdefault(
        "capabilities",
        ProviderCapabilities(native_tools=model in GROQ_NATIVE_TOOL_MODELS, streaming=True),
    )
    settings = ClientSettings(base_url=base_url, api_key=api_key, model=model, provider_name="groq", **overrides)
    return AIClient(settings, client=client)


def ollama_provider(
    model: str = "llama3.2",
    *,
    base_url: str = OLLAMA_BASE_URL,
    client: AsyncOpenAI | None = None,
    **overrides: Any,
) -> AIClient:
    """Provider for a local Ollama server through its OpenAI-compatible API."""
    overrides.setdefault("capabilities", ProviderCapabilities(native_tools=False, streaming=True))
    settings = ClientSettings(base_url=base_url, api_key="ollama", model=model, provider_name="ollama", **overrides)
    return AIClient(settings, client=client)
