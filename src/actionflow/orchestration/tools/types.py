"""Tool system types.

This module defines the tool specification, the per-tool execution policy
(timeout, retry, caching) and the Tool protocol consumed by ToolInvoker.
"""

from __future__ import annotations

import asyncio
import inspect
from dataclasses import dataclass, field
from typing import Any, Callable, Coroutine, Mapping, Protocol, runtime_checkable

__all__ = [
    "RetryPolicy",
    "ToolPolicy",
    "ToolSpec",
    "ToolContext",
    "ToolHandler",
    "AsyncToolHandler",
    "Tool",
    "FunctionTool",
    "ToolCategory",
]


# -----------------------------------------------------------------------------
# Tool Categories
# -----------------------------------------------------------------------------


class ToolCategory:
    """Standard tool categories for organization."""

    READ = "read"
    WRITE = "write"
    SEARCH = "search"
    ANALYSIS = "analysis"
    MEDIA = "media"
    UTILITY = "utility"


# -----------------------------------------------------------------------------
# Policies
# -----------------------------------------------------------------------------


RetryCallback = Callable[[int, BaseException], Any]


@dataclass(slots=True, frozen=True)
class RetryPolicy:
    """Exponential backoff settings for retryable tools.

    Delay before retry ``n`` is ``initial_delay * factor ** (n - 1)``,
    capped at ``max_delay`` seconds.

    Attributes:
        max_attempts: Total attempts including the first call.
        initial_delay: Delay before the first retry in seconds.
        factor: Exponential growth factor.
        max_delay: Upper bound on any single delay.
        on_retry: Optional callback ``(attempt, error)`` invoked before each retry.
    """

    max_attempts: int = 3
    initial_delay: float = 1.0
    factor: float = 2.0
    max_delay: float = 10.0
    on_retry: RetryCallback | None = None

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.initial_delay < 0 or self.max_delay < 0:
            raise ValueError("retry delays must be non-negative")


@dataclass(slots=True, frozen=True)
class ToolPolicy:
    """Execution policy for a single tool.

    Attributes:
        timeout: Per-call timeout in seconds; ``None`` uses the invoker default.
        retryable: Whether failures are retried with ``retry``.
        retry: Backoff settings used when ``retryable`` is set.
        cache: Whether successful results are cached.
        cache_ttl: Seconds a cached result stays valid; ``None`` never expires.
    """

    timeout: float | None = None
    retryable: bool = False
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    cache: bool = False
    cache_ttl: float | None = None


# -----------------------------------------------------------------------------
# Tool Specification
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class ToolSpec:
    """Specification for a tool's interface.

    Attributes:
        name: Unique identifier for the tool.
        description: Human-readable description of what the tool does.
        parameters: JSON Schema for the tool's arguments. Empty means
            arguments are not validated.
        category: Tool category for organization.
        policy: Timeout, retry and caching policy.
    """

    name: str
    description: str
    parameters: Mapping[str, Any] = field(default_factory=dict)
    category: str = ToolCategory.UTILITY
    policy: ToolPolicy = field(default_factory=ToolPolicy)

    def to_openai_tool(self) -> dict[str, Any]:
        """Convert to OpenAI tool definition format."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": dict(self.parameters) if self.parameters else {
                    "type": "object",
                    "properties": {},
                },
            },
        }

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "name": self.name,
            "description": self.description,
            "parameters": dict(self.parameters) if self.parameters else {},
            "category": self.category,
            "cache": self.policy.cache,
            "retryable": self.policy.retryable,
        }


@dataclass(slots=True, frozen=True)
class ToolContext:
    """Per-call context handed to tools that accept it.

    Attributes:
        call_id: Correlation id of the action being executed.
        run_id: Identifier of the controller run, if any.
        metadata: Caller-supplied values (credentials, handles, and so on).
    """

    call_id: str = ""
    run_id: str = ""
    metadata: Mapping[str, Any] = field(default_factory=dict)


# -----------------------------------------------------------------------------
# Tool Handler Types
# -----------------------------------------------------------------------------

# Synchronous tool handler
ToolHandler = Callable[..., Any]

# Asynchronous tool handler
AsyncToolHandler = Callable[..., Coroutine[Any, Any, Any]]


# -----------------------------------------------------------------------------
# Tool Protocol
# -----------------------------------------------------------------------------


@runtime_checkable
class Tool(Protocol):
    """Protocol for tool implementations.

    Attributes:
        name: Unique identifier for the tool.
        spec: Tool specification with metadata, parameters and policy.
    """

    @property
    def name(self) -> str:
        """Get the tool's unique name."""
        ...

    @property
    def spec(self) -> ToolSpec:
        """Get the tool's specification."""
        ...

    async def execute(self, arguments: Mapping[str, Any] | None, context: ToolContext) -> Any:
        """Execute the tool.

        Args:
            arguments: Validated arguments, or None for zero-argument calls.
            context: Per-call context.

        Returns:
            The tool's result (any type).

        Raises:
            Exception: If tool execution fails.
        """
        ...


# -----------------------------------------------------------------------------
# Function Tool
# -----------------------------------------------------------------------------


def _accepts_context(handler: Callable[..., Any]) -> bool:
    try:
        signature = inspect.signature(handler)
    except (TypeError, ValueError):
        return False
    positional = 0
    for parameter in signature.parameters.values():
        if parameter.kind is inspect.Parameter.VAR_POSITIONAL:
            return True
        if parameter.name == "context":
            return True
        if parameter.kind in (inspect.Parameter.POSITIONAL_ONLY, inspect.Parameter.POSITIONAL_OR_KEYWORD):
            positional += 1
    return positional >= 2


@dataclass
class FunctionTool:
    """Tool implementation wrapping a plain callable.

    The handler receives the argument map and, when its signature has a
    second positional parameter (or one named ``context``), the ToolContext.

    Example:
        def add(args: dict) -> int:
            return args["a"] + args["b"]

        tool = FunctionTool(
            spec=ToolSpec(name="add", description="Add two numbers"),
            handler=add,
        )
    """

    spec: ToolSpec
    handler: ToolHandler | AsyncToolHandler
    _is_async: bool = field(init=False, default=False)
    _wants_context: bool = field(init=False, default=False)

    def __post_init__(self) -> None:
        self._is_async = asyncio.iscoroutinefunction(self.handler)
        self._wants_context = _accepts_context(self.handler)

    @property
    def name(self) -> str:
        """Get the tool's name from its spec."""
        return self.spec.name

    async def execute(self, arguments: Mapping[str, Any] | None, context: ToolContext) -> Any:
        """Execute the tool handler."""
        args = (arguments, context) if self._wants_context else (arguments,)
        result = self.handler(*args)
        if self._is_async or inspect.isawaitable(result):
            return await result
        return result
