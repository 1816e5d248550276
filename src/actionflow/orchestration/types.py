"""Core type definitions for the execution controller.

This module defines the dataclasses that flow between the action parser,
the tool invoker, the agent delegate and the controller. Most types are
frozen so they can be shared safely across rounds.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import (
    Any,
    AsyncIterator,
    Literal,
    Mapping,
    Protocol,
    Sequence,
    Union,
    runtime_checkable,
)

from openai.types.chat import ChatCompletionMessageParam

__all__ = [
    # Messages
    "Message",
    "MessageRole",
    # Actions
    "ToolAction",
    "AgentAction",
    "ActionRequest",
    "normalize_arguments",
    # Budget and results
    "ExecutionMode",
    "ExecutionBudget",
    "TerminationReason",
    "TokenUsage",
    "RunError",
    "RunResult",
    # Provider contract
    "ChatConfig",
    "ChatResponse",
    "ProviderCapabilities",
    "ChatProvider",
    "ConfigurationError",
]


class ConfigurationError(Exception):
    """Raised during setup when a required collaborator is missing or invalid."""


# -----------------------------------------------------------------------------
# Message Type
# -----------------------------------------------------------------------------

MessageRole = Literal["system", "user", "assistant", "tool"]
MessageContent = Union[str, Sequence[Mapping[str, Any]]]


@dataclass(slots=True, frozen=True)
class Message:
    """Immutable chat message.

    Can be converted to/from OpenAI's ChatCompletionMessageParam format.

    Attributes:
        role: The role of the message sender.
        content: Text content, or a sequence of multipart content parts
            (``{"type": "text", "text": ...}``, ``{"type": "image_url", ...}``).
        name: Optional name for tool messages.
        tool_call_id: ID linking a tool result to its call.
        tool_calls: Native tool calls made by the assistant.
        metadata: Additional metadata (not sent to the model).
    """

    role: MessageRole
    content: MessageContent
    name: str | None = None
    tool_call_id: str | None = None
    tool_calls: tuple[Mapping[str, Any], ...] | None = None
    metadata: Mapping[str, Any] = field(default_factory=dict)

    @property
    def text(self) -> str:
        """Plain text view of the content, joining text parts of multipart content."""
        if isinstance(self.content, str):
            return self.content
        parts: list[str] = []
        for part in self.content:
            if part.get("type") == "text" and part.get("text"):
                parts.append(str(part["text"]))
        return "\n".join(parts)

    @property
    def is_multipart(self) -> bool:
        return not isinstance(self.content, str)

    def to_chat_param(self) -> ChatCompletionMessageParam:
        """Convert to OpenAI's ChatCompletionMessageParam format."""
        content: Any = self.content if isinstance(self.content, str) else [dict(p) for p in self.content]
        payload: dict[str, Any] = {"role": self.role, "content": content}
        if self.name is not None:
            payload["name"] = self.name
        if self.tool_call_id is not None:
            payload["tool_call_id"] = self.tool_call_id
        if self.tool_calls is not None:
            payload["tool_calls"] = [dict(call) for call in self.tool_calls]
        return payload  # type: ignore[return-value]

    @classmethod
    def from_chat_param(cls, param: Mapping[str, Any]) -> Message:
        """Create a Message from OpenAI's ChatCompletionMessageParam format."""
        tool_calls = param.get("tool_calls")
        if tool_calls is not None:
            tool_calls = tuple(tool_calls)
        content = param.get("content")
        if content is None:
            content = ""
        elif not isinstance(content, str):
            content = tuple(content)
        return cls(
            role=param.get("role", "user"),  # type: ignore[arg-type]
            content=content,
            name=param.get("name"),
            tool_call_id=param.get("tool_call_id"),
            tool_calls=tool_calls,
        )

    @classmethod
    def system(cls, content: str, **metadata: Any) -> Message:
        """Create a system message."""
        return cls(role="system", content=content, metadata=metadata)

    @classmethod
    def user(cls, content: MessageContent, **metadata: Any) -> Message:
        """Create a user message."""
        if not isinstance(content, str):
            content = tuple(content)
        return cls(role="user", content=content, metadata=metadata)

    @classmethod
    def assistant(
        cls,
        content: str,
        tool_calls: Sequence[Mapping[str, Any]] | None = None,
        **metadata: Any,
    ) -> Message:
        """Create an assistant message."""
        return cls(
            role="assistant",
            content=content,
            tool_calls=tuple(tool_calls) if tool_calls else None,
            metadata=metadata,
        )

    @classmethod
    def tool(
        cls,
        content: str,
        tool_call_id: str,
        name: str | None = None,
        **metadata: Any,
    ) -> Message:
        """Create a tool result message."""
        return cls(
            role="tool",
            content=content,
            tool_call_id=tool_call_id,
            name=name,
            metadata=metadata,
        )


# -----------------------------------------------------------------------------
# Action Requests
# -----------------------------------------------------------------------------

_WHITESPACE_RE = re.compile(r"\s+")


def _normalize_value(value: Any) -> Any:
    if isinstance(value, str):
        return _WHITESPACE_RE.sub(" ", value.casefold()).strip()
    if isinstance(value, Mapping):
        return {str(key): _normalize_value(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_normalize_value(item) for item in value]
    return value


def normalize_arguments(arguments: Mapping[str, Any] | None) -> str:
    """Canonical text form of an argument map used for deduplication.

    String values are case-folded with whitespace collapsed; operators and
    other punctuation are kept, so ``"5+3"`` and ``"5*3"`` stay distinct.
    Keys are sorted so ordering differences do not matter.
    """
    if not arguments:
        return "{}"
    return json.dumps(_normalize_value(arguments), sort_keys=True, default=str)


@dataclass(slots=True, frozen=True)
class ToolAction:
    """Request to invoke a tool.

    Attributes:
        name: Tool name as emitted by the model.
        arguments: Argument map for the tool.
        call_id: Correlation id (generated when the model omits one).
    """

    name: str
    arguments: Mapping[str, Any] = field(default_factory=dict)
    call_id: str = ""
    kind: Literal["tool"] = "tool"

    @property
    def dedup_key(self) -> str:
        return f"tool:{self.name.strip().lower()}|{normalize_arguments(self.arguments)}"

    def to_native_call(self) -> dict[str, Any]:
        """Render as an OpenAI-style tool call for the assistant message."""
        return {
            "id": self.call_id,
            "type": "function",
            "function": {
                "name": self.name,
                "arguments": json.dumps(dict(self.arguments), default=str),
            },
        }


@dataclass(slots=True, frozen=True)
class AgentAction:
    """Request to delegate a task to a sub-agent.

    Attributes:
        agent_name: Requested agent name (resolved leniently).
        task: Natural-language task handed to the agent.
        call_id: Correlation id.
    """

    agent_name: str
    task: str
    call_id: str = ""
    kind: Literal["agent"] = "agent"

    @property
    def name(self) -> str:
        return self.agent_name

    @property
    def dedup_key(self) -> str:
        return f"agent:{self.agent_name.strip().lower()}|{normalize_arguments({'task': self.task})}"


ActionRequest = Union[ToolAction, AgentAction]


# -----------------------------------------------------------------------------
# Budget and Modes
# -----------------------------------------------------------------------------


class ExecutionMode:
    """Execution topologies selectable by the caller."""

    SINGLE_SHOT = "single-shot"
    TOOL_LOOP = "tool-loop"
    DELEGATED = "delegated"

    ALL = (SINGLE_SHOT, TOOL_LOOP, DELEGATED)


class TerminationReason:
    """Why a run stopped."""

    SINGLE_SHOT = "single-shot"
    NO_FURTHER_ACTIONS = "no-further-actions"
    DUPLICATE_ACTIONS = "duplicate-actions"
    MAX_ITERATIONS = "max-iterations"
    MAX_TOOL_CALLS = "max-tool-calls"
    MAX_CONSECUTIVE_ERRORS = "max-consecutive-errors"
    SYNTHESIS = "synthesis"
    DIRECT_ANSWER = "direct-answer"
    CANCELLED = "cancelled"
    CACHED = "cached"
    ERROR = "error"


@dataclass(slots=True, frozen=True)
class ExecutionBudget:
    """Caps bounding a single run.

    Attributes:
        max_iterations: Maximum action rounds.
        max_tool_calls_total: Maximum tool/agent invocations across the run.
        max_consecutive_errors: Consecutive failures that force finalization.
    """

    max_iterations: int = 5
    max_tool_calls_total: int = 10
    max_consecutive_errors: int = 3

    def __post_init__(self) -> None:
        for label in ("max_iterations", "max_tool_calls_total", "max_consecutive_errors"):
            value = getattr(self, label)
            if not isinstance(value, int) or value < 1:
                raise ValueError(f"{label} must be a positive integer, got {value!r}")

    @classmethod
    def for_mode(cls, mode: str) -> ExecutionBudget:
        """Default budget for an execution mode."""
        if mode == ExecutionMode.DELEGATED:
            return cls(max_iterations=10, max_tool_calls_total=3, max_consecutive_errors=3)
        return cls()


# -----------------------------------------------------------------------------
# Usage and Results
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class TokenUsage:
    """Token counts reported (or estimated) for one or more model calls."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    def __add__(self, other: TokenUsage) -> TokenUsage:
        if not isinstance(other, TokenUsage):
            return NotImplemented
        return TokenUsage(
            prompt_tokens=self.prompt_tokens + other.prompt_tokens,
            completion_tokens=self.completion_tokens + other.completion_tokens,
            total_tokens=self.total_tokens + other.total_tokens,
        )

    def to_dict(self) -> dict[str, int]:
        return {
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "total_tokens": self.total_tokens,
        }


@dataclass(slots=True, frozen=True)
class RunError:
    """Structured error attached to a run that hit an unexpected failure."""

    message: str
    code: str = "EXECUTION_ERROR"
    details: Mapping[str, Any] = field(default_factory=dict)


@dataclass(slots=True, frozen=True)
class RunResult:
    """Outcome of one controller run.

    Attributes:
        content: Final answer text.
        usage: Token usage accumulated across all rounds.
        rounds: Per-round usage, in call order.
        tools_called: Tool names invoked, in order.
        agents_called: Agent names delegated to, in order.
        termination_reason: One of the TerminationReason values.
        mode: Execution mode that produced the result.
        error: Populated only when the run failed unexpectedly.
    """

    content: str
    termination_reason: str
    usage: TokenUsage = field(default_factory=TokenUsage)
    rounds: tuple[TokenUsage, ...] = ()
    tools_called: tuple[str, ...] = ()
    agents_called: tuple[str, ...] = ()
    mode: str = ExecutionMode.SINGLE_SHOT
    error: RunError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "content": self.content,
            "termination_reason": self.termination_reason,
            "usage": self.usage.to_dict(),
            "tools_called": list(self.tools_called),
            "agents_called": list(self.agents_called),
            "mode": self.mode,
        }
        if self.error is not None:
            payload["error"] = {
                "message": self.error.message,
                "code": self.error.code,
                "details": dict(self.error.details),
            }
        return payload


# -----------------------------------------------------------------------------
# Provider Contract
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class ChatConfig:
    """Per-call options passed through to the model backend."""

    model: str | None = None
    temperature: float | None = None
    max_tokens: int | None = None


@dataclass(slots=True, frozen=True)
class ProviderCapabilities:
    """Capability descriptor attached to a provider at construction time.

    Attributes:
        native_tools: Backend accepts tool definitions and returns tool calls.
        streaming: Backend can stream incremental text chunks.
        vision: Backend accepts image content parts.
    """

    native_tools: bool = False
    streaming: bool = False
    vision: bool = False


@dataclass(slots=True, frozen=True)
class ChatResponse:
    """Normalized response from a single chat call.

    Attributes:
        content: Text content of the reply.
        tool_calls: Native action hints in OpenAI tool-call shape.
        usage: Token usage if reported.
        finish_reason: Backend finish reason.
    """

    content: str = ""
    tool_calls: tuple[Mapping[str, Any], ...] = ()
    usage: TokenUsage | None = None
    finish_reason: str | None = None

    @property
    def has_tool_calls(self) -> bool:
        return len(self.tool_calls) > 0


@runtime_checkable
class ChatProvider(Protocol):
    """Narrow model-backend capability consumed by the controller."""

    @property
    def name(self) -> str:
        ...

    @property
    def capabilities(self) -> ProviderCapabilities:
        ...

    async def chat(
        self,
        messages: Sequence[Message],
        config: ChatConfig | None = None,
        tools: Sequence[Mapping[str, Any]] | None = None,
    ) -> ChatResponse:
        """Run one chat completion."""
        ...

    def stream(
        self,
        messages: Sequence[Message],
        config: ChatConfig | None = None,
        tools: Sequence[Mapping[str, Any]] | None = None,
    ) -> AsyncIterator[str]:
        """Yield incremental text chunks. Only used when ``capabilities.streaming``."""
        ...
