"""Shared test helpers and stub classes.

This module contains reusable test stubs that are used across multiple test files.
Import from here instead of duplicating these classes in individual test files.
"""

from __future__ import annotations

import json
from collections.abc import AsyncIterator
from typing import Any, Mapping, Sequence, Union

from actionflow.orchestration.tools import ToolRegistry, ToolSpec
from actionflow.orchestration.types import (
    ChatConfig,
    ChatResponse,
    Message,
    ProviderCapabilities,
    TokenUsage,
)

ScriptedReply = Union[ChatResponse, str, BaseException]

CALCULATOR_SCHEMA: Mapping[str, Any] = {
    "type": "object",
    "properties": {
        "a": {"type": "number", "description": "First operand"},
        "b": {"type": "number", "description": "Second operand"},
    },
    "required": ["a", "b"],
}


class ScriptedProvider:
    """Chat provider replaying a fixed script of replies.

    Each ``chat`` call consumes the next reply. Strings become a
    ChatResponse with a fixed usage of 10/5/15 tokens, exceptions are
    raised, and once the script runs out ``default`` is returned.

    Example:
        from helpers import ScriptedProvider

        provider = ScriptedProvider(["first", "second"])
    """

    def __init__(
        self,
        replies: Sequence[ScriptedReply] = (),
        *,
        capabilities: ProviderCapabilities | None = None,
        name: str = "scripted",
        default: str = "Default response",
        chunks: Sequence[str] | None = None,
    ) -> None:
        self.replies = list(replies)
        self._capabilities = capabilities or ProviderCapabilities()
        self._name = name
        self.default = default
        self.chunks = list(chunks or ())
        self.calls: list[dict[str, Any]] = []
        self.stream_calls: list[list[Message]] = []

    @property
    def name(self) -> str:
        return self._name

    @property
    def capabilities(self) -> ProviderCapabilities:
        return self._capabilities

    @property
    def call_count(self) -> int:
        return len(self.calls)

    async def chat(
        self,
        messages: Sequence[Message],
        config: ChatConfig | None = None,
        tools: Sequence[Mapping[str, Any]] | None = None,
    ) -> ChatResponse:
        self.calls.append({"messages": list(messages), "config": config, "tools": tools})
        reply: ScriptedReply = self.replies.pop(0) if self.replies else self.default
        if isinstance(reply, BaseException):
            raise reply
        if isinstance(reply, ChatResponse):
            return reply
        return ChatResponse(content=reply, usage=TokenUsage(10, 5, 15), finish_reason="stop")

    async def stream(
        self,
        messages: Sequence[Message],
        config: ChatConfig | None = None,
        tools: Sequence[Mapping[str, Any]] | None = None,
    ) -> AsyncIterator[str]:
        self.stream_calls.append(list(messages))
        for chunk in self.chunks:
            yield chunk

    def last_messages(self) -> list[Message]:
        return self.calls[-1]["messages"]


def native_call(name: str, arguments: Mapping[str, Any], call_id: str = "call_1") -> dict[str, Any]:
    """OpenAI-shaped native tool call."""
    return {
        "id": call_id,
        "type": "function",
        "function": {"name": name, "arguments": json.dumps(dict(arguments))},
    }


def tool_call_text(name: str, arguments: Mapping[str, Any]) -> str:
    """Tag-delimited tool call as a text-only model would emit it."""
    return f"<tool_call>\n<name>{name}</name>\n<arguments>{json.dumps(dict(arguments))}</arguments>\n</tool_call>"


def agent_call_text(name: str, task: str) -> str:
    return f"<agent_call>\n<name>{name}</name>\n<task>{task}</task>\n</agent_call>"


def calculator_registry() -> ToolRegistry:
    """Registry with a schema-validated ``calculator`` tool that adds two numbers."""
    registry = ToolRegistry()
    registry.register_function(
        ToolSpec(name="calculator", description="Add two numbers", parameters=CALCULATOR_SCHEMA),
        lambda args: args["a"] + args["b"],
    )
    return registry
