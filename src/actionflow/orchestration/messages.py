"""Message construction helpers shared by the controller and the delegate."""

from __future__ import annotations

from typing import Sequence

from .tools.invoker import ToolOutcome
from .types import Message, ToolAction

__all__ = [
    "tool_round_messages",
    "with_system_suffix",
]


def with_system_suffix(messages: Sequence[Message], suffix: str) -> list[Message]:
    """Copy of ``messages`` with ``suffix`` appended to the first system message.

    A system message is inserted at the front when none exists. The stored
    history is left untouched so instructions are not persisted twice.
    """
    if not suffix:
        return list(messages)
    result = list(messages)
    for index, message in enumerate(result):
        if message.role == "system":
            base = message.text.rstrip()
            combined = f"{base}\n\n{suffix}" if base else suffix
            result[index] = Message.system(combined)
            return result
    result.insert(0, Message.system(suffix))
    return result


def tool_round_messages(
    content: str,
    actions: Sequence[ToolAction],
    outcomes: Sequence[ToolOutcome],
    *,
    native: bool,
) -> list[Message]:
    """Assistant turn plus one result message per executed action.

    Backends with native tool calling get an assistant message carrying the
    calls and ``tool`` role results. Text-only backends get the assistant
    text followed by a user message per result, since they reject ``tool``
    messages that answer no recorded call.
    """
    if native:
        messages = [Message.assistant(content or "", tool_calls=[action.to_native_call() for action in actions])]
        for action, outcome in zip(actions, outcomes):
            messages.append(Message.tool(outcome.content, tool_call_id=action.call_id, name=action.name))
        return messages

    messages = [Message.assistant(content or "Using tools...")]
    for action, outcome in zip(actions, outcomes):
        messages.append(Message.user(f"Tool {action.name} result:\n{outcome.content}", tool_call_id=action.call_id))
    return messages
