"""Observable hook surface emitted by the controller, invoker and delegate.

Hooks are notifications only: a callback that raises is logged and ignored,
and nothing a callback returns affects control flow.
"""

from __future__ import annotations

import inspect
import logging
import time
from collections import deque
from dataclasses import dataclass, field, fields
from threading import Lock
from typing import Any, Callable, Mapping

__all__ = [
    "HookEvent",
    "HookName",
    "InMemoryHookSink",
    "RunHooks",
]

LOGGER = logging.getLogger(__name__)

HookCallback = Callable[..., Any]


class HookName:
    """Event names, matching the ``on_*`` attribute they dispatch to."""

    START = "start"
    COMPLETE = "complete"
    ERROR = "error"
    TOOL_CALL = "tool_call"
    TOOL_COMPLETE = "tool_complete"
    TOOL_ERROR = "tool_error"
    AGENT_START = "agent_start"
    AGENT_COMPLETE = "agent_complete"
    AGENT_ERROR = "agent_error"
    STREAM_CHUNK = "stream_chunk"
    STREAM_COMPLETE = "stream_complete"
    RETRY = "retry"


@dataclass(slots=True, frozen=True)
class HookEvent:
    """Recorded hook notification."""

    name: str
    args: tuple[Any, ...] = ()
    timestamp: float = field(default_factory=time.time)


@dataclass(slots=True)
class RunHooks:
    """Optional callbacks, each sync or async.

    Signatures:
        on_start(message)
        on_complete(result)
        on_error(error, phase)
        on_tool_call(name, arguments)
        on_tool_complete(name, value, duration_ms)
        on_tool_error(name, message)
        on_agent_start(agent_name, task)
        on_agent_complete(agent_name, content)
        on_agent_error(agent_name, message)
        on_stream_chunk(chunk)
        on_stream_complete(content)
        on_retry(attempt, error)
    """

    on_start: HookCallback | None = None
    on_complete: HookCallback | None = None
    on_error: HookCallback | None = None
    on_tool_call: HookCallback | None = None
    on_tool_complete: HookCallback | None = None
    on_tool_error: HookCallback | None = None
    on_agent_start: HookCallback | None = None
    on_agent_complete: HookCallback | None = None
    on_agent_error: HookCallback | None = None
    on_stream_chunk: HookCallback | None = None
    on_stream_complete: HookCallback | None = None
    on_retry: HookCallback | None = None

    async def emit(self, name: str, *args: Any) -> None:
        """Dispatch ``name`` to its callback, discarding callback failures."""
        callback = getattr(self, f"on_{name}", None)
        if callback is None:
            return
        try:
            result = callback(*args)
            if inspect.isawaitable(result):
                await result
        except Exception:
            LOGGER.debug("Hook %s raised; ignoring", name, exc_info=True)

    @classmethod
    def recording(cls, sink: InMemoryHookSink) -> RunHooks:
        """Hooks that record every event into ``sink``."""
        callbacks: dict[str, HookCallback] = {}
        for item in fields(cls):
            event_name = item.name[len("on_") :]
            callbacks[item.name] = _recorder(sink, event_name)
        return cls(**callbacks)

    def merged(self, other: RunHooks | None) -> RunHooks:
        """Combine two hook sets; both callbacks fire for shared events."""
        if other is None:
            return self
        combined: dict[str, HookCallback | None] = {}
        for item in fields(self):
            first = getattr(self, item.name)
            second = getattr(other, item.name)
            if first is None or second is None:
                combined[item.name] = first or second
            else:
                combined[item.name] = _chain(first, second)
        return RunHooks(**combined)


def _recorder(sink: InMemoryHookSink, name: str) -> HookCallback:
    def record(*args: Any) -> None:
        sink.record(HookEvent(name=name, args=args))

    return record


def _chain(first: HookCallback, second: HookCallback) -> HookCallback:
    async def call_both(*args: Any) -> None:
        for callback in (first, second):
            result = callback(*args)
            if inspect.isawaitable(result):
                await result

    return call_both


class InMemoryHookSink:
    """Ring buffer of hook events for local inspection and tests."""

    def __init__(self, capacity: int = 500) -> None:
        self._capacity = max(10, capacity)
        self._buffer: deque[HookEvent] = deque(maxlen=self._capacity)
        self._lock = Lock()

    @property
    def capacity(self) -> int:
        return self._capacity

    def record(self, event: HookEvent) -> None:
        with self._lock:
            self._buffer.append(event)

    def tail(self, limit: int | None = None) -> list[HookEvent]:
        with self._lock:
            events = list(self._buffer)
        if limit is None or limit >= len(events):
            return events
        return events[-limit:]

    def names(self) -> list[str]:
        return [event.name for event in self.tail()]

    def of(self, name: str) -> list[HookEvent]:
        return [event for event in self.tail() if event.name == name]

    def payloads(self) -> Mapping[str, list[tuple[Any, ...]]]:
        grouped: dict[str, list[tuple[Any, ...]]] = {}
        for event in self.tail():
            grouped.setdefault(event.name, []).append(event.args)
        return grouped

    def __len__(self) -> int:
        with self._lock:
            return len(self._buffer)
