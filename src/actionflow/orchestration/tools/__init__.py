"""Tool system for the execution controller.

This package provides the tool registry, relevance-based tool selection,
the invoker (validation, caching, timeouts, retries) and the related types.

Example:
    from actionflow.orchestration.tools import (
        InMemoryToolCache,
        ToolInvoker,
        ToolRegistry,
        ToolSpec,
    )

    registry = ToolRegistry()
    registry.register_function(
        spec=ToolSpec(name="greet", description="Greet someone"),
        handler=lambda args: f"Hello, {args.get('name', 'World')}!",
    )

    invoker = ToolInvoker(registry, cache=InMemoryToolCache())
    outcome = await invoker.invoke(ToolAction("greet", {"name": "Alice"}))
"""

from .types import (
    AsyncToolHandler,
    FunctionTool,
    RetryPolicy,
    Tool,
    ToolCategory,
    ToolContext,
    ToolHandler,
    ToolPolicy,
    ToolSpec,
)

from .registry import (
    DuplicateToolError,
    ToolNotFoundError,
    ToolRegistration,
    ToolRegistry,
)

from .cache import (
    CacheEntry,
    InMemoryToolCache,
    ToolResultCache,
    cache_key,
)

from .selection import (
    CATEGORY_KEYWORDS,
    relevance_score,
    select_tools,
    tool_keywords,
)

from .invoker import (
    InvokerConfig,
    OutcomeKind,
    ToolExecutionError,
    ToolInvoker,
    ToolOutcome,
    ToolTimeoutError,
    ToolValidationError,
    format_tool_result,
)

__all__ = [
    # types.py
    "AsyncToolHandler",
    "FunctionTool",
    "RetryPolicy",
    "Tool",
    "ToolCategory",
    "ToolContext",
    "ToolHandler",
    "ToolPolicy",
    "ToolSpec",
    # registry.py
    "DuplicateToolError",
    "ToolNotFoundError",
    "ToolRegistration",
    "ToolRegistry",
    # cache.py
    "CacheEntry",
    "InMemoryToolCache",
    "ToolResultCache",
    "cache_key",
    # selection.py
    "CATEGORY_KEYWORDS",
    "relevance_score",
    "select_tools",
    "tool_keywords",
    # invoker.py
    "InvokerConfig",
    "OutcomeKind",
    "ToolExecutionError",
    "ToolInvoker",
    "ToolOutcome",
    "ToolTimeoutError",
    "ToolValidationError",
    "format_tool_result",
]
