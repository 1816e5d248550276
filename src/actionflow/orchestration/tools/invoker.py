"""Tool invoker: validation, caching, timeouts and retries for one tool call.

``ToolInvoker.invoke`` never raises for tool-level problems. Unknown tools,
argument validation failures, timeouts and execution errors come back as a
failed ``ToolOutcome`` whose message the controller folds into the
conversation as a tool-result message.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Mapping, Sequence

from jsonschema import Draft202012Validator
from jsonschema.exceptions import SchemaError, best_match
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..hooks import HookName, RunHooks
from ..types import ToolAction
from .cache import ToolResultCache, cache_key
from .registry import ToolRegistry
from .types import RetryPolicy, Tool, ToolContext, ToolPolicy

__all__ = [
    "OutcomeKind",
    "InvokerConfig",
    "ToolInvoker",
    "ToolOutcome",
    "ToolExecutionError",
    "ToolTimeoutError",
    "ToolValidationError",
    "format_tool_result",
]

LOGGER = logging.getLogger(__name__)


# -----------------------------------------------------------------------------
# Exceptions
# -----------------------------------------------------------------------------


class ToolValidationError(Exception):
    """Raised when arguments do not match a tool's declared parameters."""

    def __init__(self, message: str, tool_name: str = "") -> None:
        self.tool_name = tool_name
        super().__init__(message)


class ToolExecutionError(Exception):
    """Raised when a tool body fails."""

    def __init__(
        self,
        message: str,
        tool_name: str = "",
        cause: BaseException | None = None,
    ) -> None:
        self.tool_name = tool_name
        self.cause = cause
        super().__init__(message)


class ToolTimeoutError(ToolExecutionError):
    """Raised when a tool call exceeds its timeout."""


# -----------------------------------------------------------------------------
# Results
# -----------------------------------------------------------------------------


def format_tool_result(result: Any) -> str:
    """Render a tool result as message content for the model."""
    if result is None:
        return "null"
    if isinstance(result, str):
        return result
    if isinstance(result, bool):
        return "true" if result else "false"
    if isinstance(result, (int, float)):
        return str(result)
    if isinstance(result, (dict, list, tuple)):
        try:
            return json.dumps(result, ensure_ascii=False, indent=2, default=str)
        except (TypeError, ValueError):
            return str(result)
    to_dict = getattr(result, "to_dict", None)
    if callable(to_dict):
        try:
            return json.dumps(to_dict(), ensure_ascii=False, indent=2, default=str)
        except (TypeError, ValueError):
            pass
    return str(result)


class OutcomeKind:
    """Failure categories reported on a ToolOutcome."""

    NOT_FOUND = "not-found"
    VALIDATION = "validation"
    TIMEOUT = "timeout"
    EXECUTION = "execution"


@dataclass(slots=True, frozen=True)
class ToolOutcome:
    """Tagged result of one tool invocation: a value or an error.

    Attributes:
        name: Tool name.
        call_id: Correlation id of the action.
        value: Result value on success.
        error: Human-readable failure message.
        error_kind: One of the OutcomeKind values on failure.
        duration_ms: Wall time spent, including retries.
        attempts: Number of execution attempts made.
        cached: Whether the value came from the result cache.
    """

    name: str
    call_id: str = ""
    value: Any = None
    error: str | None = None
    error_kind: str | None = None
    duration_ms: float = 0.0
    attempts: int = 0
    cached: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def content(self) -> str:
        """Message content for the tool-result message."""
        if self.error is not None:
            return f"Error: {self.error}"
        return format_tool_result(self.value)

    @classmethod
    def success(cls, action: ToolAction, value: Any, **kwargs: Any) -> ToolOutcome:
        return cls(name=action.name, call_id=action.call_id, value=value, **kwargs)

    @classmethod
    def failure(cls, action: ToolAction, kind: str, message: str, **kwargs: Any) -> ToolOutcome:
        return cls(name=action.name, call_id=action.call_id, error=message, error_kind=kind, **kwargs)


# -----------------------------------------------------------------------------
# Invoker Configuration
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class InvokerConfig:
    """Configuration for the tool invoker.

    Attributes:
        default_timeout: Timeout in seconds for tools whose policy sets none.
        log_arguments: Whether to log tool arguments (may contain sensitive data).
        log_results: Whether to log tool results.
    """

    default_timeout: float | None = 30.0
    log_arguments: bool = False
    log_results: bool = False


Sleep = Callable[[float], Awaitable[None]]


# -----------------------------------------------------------------------------
# Tool Invoker
# -----------------------------------------------------------------------------


class ToolInvoker:
    """Validates, caches, times out and retries single tool calls.

    Example:
        invoker = ToolInvoker(registry, cache=InMemoryToolCache())
        outcome = await invoker.invoke(ToolAction("calculator", {"a": 1, "b": 2}))
        if outcome.ok:
            print(outcome.value)
    """

    def __init__(
        self,
        registry: ToolRegistry,
        *,
        cache: ToolResultCache | None = None,
        config: InvokerConfig | None = None,
        hooks: RunHooks | None = None,
        sleep: Sleep | None = None,
    ) -> None:
        self._registry = registry
        self._cache = cache
        self._config = config or InvokerConfig()
        self._hooks = hooks or RunHooks()
        self._sleep = sleep or asyncio.sleep
        self._validators: dict[str, Draft202012Validator | None] = {}

    @property
    def registry(self) -> ToolRegistry:
        return self._registry

    @property
    def cache(self) -> ToolResultCache | None:
        return self._cache

    @property
    def config(self) -> InvokerConfig:
        return self._config

    @property
    def hooks(self) -> RunHooks:
        return self._hooks

    def with_hooks(self, hooks: RunHooks | None) -> ToolInvoker:
        """Copy of this invoker sharing registry and cache, emitting to ``hooks``."""
        if hooks is None or hooks is self._hooks:
            return self
        clone = ToolInvoker(
            self._registry,
            cache=self._cache,
            config=self._config,
            hooks=hooks,
            sleep=self._sleep,
        )
        clone._validators = self._validators
        return clone

    async def invoke(self, action: ToolAction, context: ToolContext | None = None) -> ToolOutcome:
        """Run one tool action.

        Args:
            action: The tool action to execute.
            context: Optional per-call context handed to the tool.

        Returns:
            A ToolOutcome carrying either the value or an error message.
        """
        name = action.name
        if self._config.log_arguments:
            LOGGER.debug("Invoking tool %s (call_id=%s) with arguments: %s", name, action.call_id, action.arguments)
        else:
            LOGGER.debug("Invoking tool %s (call_id=%s)", name, action.call_id)

        tool = self._registry.get(name)
        if tool is None:
            message = f"Tool '{name}' not found. Available tools: {', '.join(self._registry.list_names()) or 'none'}"
            LOGGER.warning("Tool %s not found or disabled", name)
            await self._hooks.emit(HookName.TOOL_ERROR, name, message)
            return ToolOutcome.failure(action, OutcomeKind.NOT_FOUND, message)

        await self._hooks.emit(HookName.TOOL_CALL, name, dict(action.arguments))
        start_time = time.perf_counter()

        try:
            arguments = self.validate(tool, action.arguments)
        except ToolValidationError as exc:
            LOGGER.warning("Tool %s rejected arguments: %s", name, exc)
            await self._hooks.emit(HookName.TOOL_ERROR, name, str(exc))
            return ToolOutcome.failure(action, OutcomeKind.VALIDATION, str(exc))

        policy = tool.spec.policy
        key = cache_key(name, arguments) if policy.cache and self._cache is not None else None
        if key is not None:
            entry = self._cache.get(key)  # type: ignore[union-attr]
            if entry is not None:
                LOGGER.debug("Tool %s served from cache", name)
                await self._hooks.emit(HookName.TOOL_COMPLETE, name, entry.value, 0.0)
                return ToolOutcome.success(action, entry.value, cached=True)

        call_context = context or ToolContext(call_id=action.call_id)
        try:
            value, attempts = await self._execute_with_policy(tool, arguments, call_context, policy)
        except ToolExecutionError as exc:
            duration_ms = (time.perf_counter() - start_time) * 1000
            kind = OutcomeKind.TIMEOUT if isinstance(exc, ToolTimeoutError) else OutcomeKind.EXECUTION
            await self._hooks.emit(HookName.TOOL_ERROR, name, str(exc))
            return ToolOutcome.failure(action, kind, str(exc), duration_ms=duration_ms)

        duration_ms = (time.perf_counter() - start_time) * 1000
        if self._config.log_results:
            LOGGER.debug("Tool %s completed in %.1fms with result: %s", name, duration_ms, value)
        else:
            LOGGER.debug("Tool %s completed in %.1fms", name, duration_ms)

        if key is not None:
            self._cache.set(key, value, policy.cache_ttl)  # type: ignore[union-attr]
        await self._hooks.emit(HookName.TOOL_COMPLETE, name, value, duration_ms)
        return ToolOutcome.success(action, value, duration_ms=duration_ms, attempts=attempts)

    async def invoke_many(
        self,
        actions: Sequence[ToolAction],
        *,
        parallel: bool = False,
        context: ToolContext | None = None,
    ) -> list[ToolOutcome]:
        """Invoke several actions; one failure never cancels the others."""
        if parallel:
            return list(await asyncio.gather(*(self.invoke(action, context) for action in actions)))
        return [await self.invoke(action, context) for action in actions]

    def validate(self, tool: Tool, arguments: Mapping[str, Any] | None) -> Mapping[str, Any] | None:
        """Check ``arguments`` against the tool's JSON Schema.

        Models frequently send ``{}`` to zero-argument tools whose schema
        expects no arguments at all; in that case the explicit "no arguments"
        value ``None`` is tried before giving up.

        Returns:
            The arguments to pass to the tool (``None`` for no arguments).

        Raises:
            ToolValidationError: If neither form validates.
        """
        validator = self._validator_for(tool)
        if validator is None:
            return arguments if arguments is not None else {}

        payload = dict(arguments) if arguments is not None else None
        error = best_match(validator.iter_errors(payload))
        if error is None:
            return payload
        if payload == {} and best_match(validator.iter_errors(None)) is None:
            LOGGER.debug("Tool %s accepted empty arguments as no arguments", tool.name)
            return None

        path = ".".join(str(part) for part in error.absolute_path)
        detail = f"{path}: {error.message}" if path else error.message
        raise ToolValidationError(f"Invalid arguments for '{tool.name}': {detail}", tool_name=tool.name)

    def _validator_for(self, tool: Tool) -> Draft202012Validator | None:
        name = tool.name
        if name in self._validators:
            return self._validators[name]
        schema = tool.spec.parameters
        validator: Draft202012Validator | None = None
        if schema:
            try:
                Draft202012Validator.check_schema(schema)
                validator = Draft202012Validator(schema)
            except SchemaError as exc:
                LOGGER.warning("Tool %s declares an invalid schema; skipping validation: %s", name, exc.message)
        self._validators[name] = validator
        return validator

    async def _execute_with_policy(
        self,
        tool: Tool,
        arguments: Mapping[str, Any] | None,
        context: ToolContext,
        policy: ToolPolicy,
    ) -> tuple[Any, int]:
        timeout = policy.timeout if policy.timeout is not None else self._config.default_timeout
        if not policy.retryable or policy.retry.max_attempts <= 1:
            return await self._execute_once(tool, arguments, context, timeout), 1

        retry = policy.retry
        last_error: ToolExecutionError | None = None
        async for attempt in self._retrying(retry):
            with attempt:
                number = attempt.retry_state.attempt_number
                if number > 1 and last_error is not None:
                    await self._notify_retry(tool.name, retry, number - 1, last_error)
                try:
                    return await self._execute_once(tool, arguments, context, timeout), number
                except ToolExecutionError as exc:
                    last_error = exc
                    raise
        raise ToolExecutionError("retry loop exited without a result", tool_name=tool.name)  # pragma: no cover

    def _retrying(self, retry: RetryPolicy) -> AsyncRetrying:
        return AsyncRetrying(
            reraise=True,
            stop=stop_after_attempt(retry.max_attempts),
            wait=wait_exponential(
                multiplier=retry.initial_delay,
                exp_base=retry.factor,
                max=retry.max_delay,
            ),
            retry=retry_if_exception_type(ToolExecutionError),
            sleep=self._sleep,
        )

    async def _notify_retry(self, name: str, retry: RetryPolicy, attempt: int, error: BaseException) -> None:
        LOGGER.info("Retrying tool %s after attempt %s failed: %s", name, attempt, error)
        if retry.on_retry is not None:
            try:
                result = retry.on_retry(attempt, error)
                if asyncio.iscoroutine(result):
                    await result
            except Exception:
                LOGGER.debug("Retry callback for %s raised; ignoring", name, exc_info=True)
        await self._hooks.emit(HookName.RETRY, attempt, error)

    async def _execute_once(
        self,
        tool: Tool,
        arguments: Mapping[str, Any] | None,
        context: ToolContext,
        timeout: float | None,
    ) -> Any:
        start_time = time.perf_counter()
        try:
            if timeout is not None and timeout > 0:
                return await asyncio.wait_for(tool.execute(arguments, context), timeout=timeout)
            return await tool.execute(arguments, context)
        except asyncio.TimeoutError as exc:
            duration_ms = (time.perf_counter() - start_time) * 1000
            LOGGER.warning("Tool %s timed out after %.1fms (timeout=%.1fs)", tool.name, duration_ms, timeout)
            raise ToolTimeoutError(
                f"Tool '{tool.name}' timed out after {timeout:g}s",
                tool_name=tool.name,
                cause=exc,
            ) from exc
        except Exception as exc:
            duration_ms = (time.perf_counter() - start_time) * 1000
            LOGGER.warning("Tool %s failed after %.1fms: %s", tool.name, duration_ms, exc)
            raise ToolExecutionError(
                f"Tool '{tool.name}' failed: {exc}",
                tool_name=tool.name,
                cause=exc,
            ) from exc
