"""Tool registry.

An explicit registry object is constructed per application and passed to
the invoker and controller; there is no process-wide tool table.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, Sequence

from .types import AsyncToolHandler, FunctionTool, Tool, ToolCategory, ToolHandler, ToolPolicy, ToolSpec

__all__ = [
    "ToolRegistry",
    "ToolRegistration",
    "DuplicateToolError",
    "ToolNotFoundError",
]

LOGGER = logging.getLogger(__name__)


# -----------------------------------------------------------------------------
# Exceptions
# -----------------------------------------------------------------------------


class DuplicateToolError(Exception):
    """Raised when attempting to register a tool with a name that already exists."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Tool '{name}' is already registered")


class ToolNotFoundError(Exception):
    """Raised when a requested tool is not found in the registry."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Tool '{name}' not found")


# -----------------------------------------------------------------------------
# Tool Registration
# -----------------------------------------------------------------------------


@dataclass(slots=True)
class ToolRegistration:
    """Record of a registered tool."""

    name: str
    tool: Tool
    spec: ToolSpec
    enabled: bool = True
    metadata: dict[str, Any] = field(default_factory=dict)


# -----------------------------------------------------------------------------
# Tool Registry
# -----------------------------------------------------------------------------


class ToolRegistry:
    """Registry for managing tool registrations.

    Example:
        registry = ToolRegistry()

        @registry.tool(description="Add two numbers", parameters=ADD_SCHEMA)
        def add(args):
            return args["a"] + args["b"]

        registry.get("add")
    """

    def __init__(self, tools: Sequence[Tool] | None = None) -> None:
        self._tools: dict[str, ToolRegistration] = {}
        for tool in tools or ():
            self.register(tool)

    def register(
        self,
        tool: Tool,
        *,
        enabled: bool = True,
        allow_override: bool = False,
        metadata: Mapping[str, Any] | None = None,
    ) -> ToolRegistration:
        """Register a tool implementation.

        Raises:
            DuplicateToolError: If the name is taken and ``allow_override`` is False.
        """
        name = tool.name
        if name in self._tools and not allow_override:
            raise DuplicateToolError(name)

        registration = ToolRegistration(
            name=name,
            tool=tool,
            spec=tool.spec,
            enabled=enabled,
            metadata=dict(metadata) if metadata else {},
        )
        self._tools[name] = registration
        LOGGER.debug("Registered tool: %s", name)
        return registration

    def register_function(
        self,
        spec: ToolSpec,
        handler: ToolHandler | AsyncToolHandler,
        *,
        enabled: bool = True,
        allow_override: bool = False,
        metadata: Mapping[str, Any] | None = None,
    ) -> ToolRegistration:
        """Register a plain function as a tool."""
        return self.register(
            FunctionTool(spec=spec, handler=handler),
            enabled=enabled,
            allow_override=allow_override,
            metadata=metadata,
        )

    def tool(
        self,
        name: str | None = None,
        *,
        description: str = "",
        parameters: Mapping[str, Any] | None = None,
        category: str = ToolCategory.UTILITY,
        policy: ToolPolicy | None = None,
    ) -> Callable[[ToolHandler], ToolHandler]:
        """Decorator registering a function as a tool.

        The tool name defaults to the function name and the description to
        the first line of its docstring.
        """

        def decorator(handler: ToolHandler) -> ToolHandler:
            doc = (handler.__doc__ or "").strip().splitlines()
            spec = ToolSpec(
                name=name or handler.__name__,
                description=description or (doc[0] if doc else ""),
                parameters=dict(parameters) if parameters else {},
                category=category,
                policy=policy or ToolPolicy(),
            )
            self.register_function(spec, handler)
            return handler

        return decorator

    def unregister(self, name: str) -> bool:
        if name in self._tools:
            del self._tools[name]
            LOGGER.debug("Unregistered tool: %s", name)
            return True
        return False

    def get(self, name: str) -> Tool | None:
        """Get an enabled tool by name."""
        registration = self._tools.get(name)
        if registration is None or not registration.enabled:
            return None
        return registration.tool

    def get_required(self, name: str) -> Tool:
        """Get a tool by name, raising ToolNotFoundError if missing or disabled."""
        tool = self.get(name)
        if tool is None:
            raise ToolNotFoundError(name)
        return tool

    def has(self, name: str) -> bool:
        registration = self._tools.get(name)
        return registration is not None and registration.enabled

    def list_tools(self, *, include_disabled: bool = False) -> list[ToolSpec]:
        return [
            registration.spec
            for registration in self._tools.values()
            if registration.enabled or include_disabled
        ]

    def list_names(self, *, include_disabled: bool = False) -> list[str]:
        return [
            registration.name
            for registration in self._tools.values()
            if registration.enabled or include_disabled
        ]

    def get_openai_tools(
        self,
        *,
        filter_names: Sequence[str] | None = None,
    ) -> list[dict[str, Any]]:
        """Get enabled tool definitions in OpenAI format."""
        tools: list[dict[str, Any]] = []
        for registration in self._tools.values():
            if not registration.enabled:
                continue
            if filter_names is not None and registration.name not in filter_names:
                continue
            tools.append(registration.spec.to_openai_tool())
        return tools

    def enable(self, name: str) -> bool:
        registration = self._tools.get(name)
        if registration is None:
            return False
        registration.enabled = True
        return True

    def disable(self, name: str) -> bool:
        registration = self._tools.get(name)
        if registration is None:
            return False
        registration.enabled = False
        return True

    def clear(self) -> None:
        self._tools.clear()

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._tools
