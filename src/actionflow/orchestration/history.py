"""Bounded conversation history with a sliding-window trimming policy."""

from __future__ import annotations

import logging
from typing import Any, Iterable, Iterator, Mapping

from .types import Message

__all__ = ["HistoryStore"]

LOGGER = logging.getLogger(__name__)


class HistoryStore:
    """Ordered message log that keeps at most ``max_messages`` entries.

    When ``keep_system_message`` is set, the original system message survives
    every trim. Room for it is made by evicting one more of the oldest
    non-system messages, so the log as a whole never exceeds ``max_messages``.
    Tool results whose assistant turn was evicted are dropped as well, since
    chat backends reject tool messages without a preceding call.
    """

    def __init__(
        self,
        *,
        max_messages: int = 20,
        keep_system_message: bool = True,
        messages: Iterable[Message] | None = None,
    ) -> None:
        if max_messages < 1:
            raise ValueError("max_messages must be at least 1")
        self._max_messages = int(max_messages)
        self._keep_system = keep_system_message
        self._messages: list[Message] = []
        if messages:
            self.load(messages)

    @property
    def max_messages(self) -> int:
        return self._max_messages

    @property
    def keep_system_message(self) -> bool:
        return self._keep_system

    @property
    def system_message(self) -> Message | None:
        for message in self._messages:
            if message.role == "system":
                return message
        return None

    def add(self, message: Message) -> None:
        self._messages.append(message)
        self._trim()

    def extend(self, messages: Iterable[Message]) -> None:
        self._messages.extend(messages)
        self._trim()

    def set_system(self, content: str) -> None:
        """Replace the system message in place, or insert one at the front."""
        replacement = Message.system(content)
        for index, message in enumerate(self._messages):
            if message.role == "system":
                self._messages[index] = replacement
                return
        self._messages.insert(0, replacement)
        self._trim()

    def messages(self) -> list[Message]:
        return list(self._messages)

    def load(self, messages: Iterable[Message | Mapping[str, Any]]) -> None:
        """Replace the stored history, then apply the trimming policy."""
        loaded: list[Message] = []
        for item in messages:
            loaded.append(item if isinstance(item, Message) else Message.from_chat_param(item))
        self._messages = loaded
        self._trim()

    def snapshot(self) -> list[dict[str, Any]]:
        """Serializable copy of the history, suitable for ``load`` later."""
        return [dict(message.to_chat_param()) for message in self._messages]

    def clear(self) -> None:
        self._messages.clear()

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self) -> Iterator[Message]:
        return iter(list(self._messages))

    def _trim(self) -> None:
        if len(self._messages) <= self._max_messages:
            return

        system = self.system_message if self._keep_system else None
        excess = len(self._messages) - self._max_messages
        trimmed = self._messages[excess:]

        if system is not None and not any(message is system for message in trimmed):
            if len(trimmed) >= self._max_messages:
                trimmed = trimmed[1:]
            trimmed.insert(0, system)

        start = 1 if trimmed and trimmed[0] is system else 0
        while len(trimmed) > start and trimmed[start].role == "tool":
            del trimmed[start]

        LOGGER.debug("Trimmed history from %s to %s message(s)", len(self._messages), len(trimmed))
        self._messages = trimmed
