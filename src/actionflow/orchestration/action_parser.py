"""Action request parsing for free-form model output.

Models encode tool invocations and agent delegations in several
incompatible ways. ``ActionParser`` tries each known encoding in a fixed
order and returns the result of the first stage that recognizes anything:

1. structured JSON blocks (fenced or bare), repaired before parsing;
2. ``<tool_call>`` / ``<agent_call>`` tag-delimited blocks;
3. the raw ``to=NAME ... <|message|>{...}<|call|>`` token form;
4. loose ``Tool: NAME Params: {...}`` lines.

Parsing is total: malformed input yields an empty list, never an exception.
"""

from __future__ import annotations

import json
import logging
import re
import uuid
from typing import Any, Callable, Iterator, Mapping, Sequence

import json_repair

from .types import ActionRequest, AgentAction, ToolAction

__all__ = [
    "ActionParser",
    "MARKER_TRANSLATION",
    "decode_action",
    "native_actions",
    "normalize_marker_text",
    "parse_actions",
    "parsed_tool_call_id",
    "strip_thinking",
    "has_action_markup",
]

LOGGER = logging.getLogger(__name__)

# Normalizes stylized glyphs some models emit inside markers and JSON.
MARKER_TRANSLATION = str.maketrans(
    {
        ord("＜"): "<",
        ord("﹤"): "<",
        ord("〈"): "<",
        ord("＞"): ">",
        ord("﹥"): ">",
        ord("〉"): ">",
        ord("｜"): "|",
        ord("￨"): "|",
        ord("│"): "|",
        ord("▁"): "_",
        ord("“"): '"',
        ord("”"): '"',
        ord("„"): '"',
        ord("″"): '"',
        ord("‘"): "'",
        ord("’"): "'",
        ord("\u00a0"): " ",
        ord("\u200b"): "",
        ord("\u202f"): " ",
        ord("\u3000"): " ",
        ord("\ufeff"): "",
    }
)

FENCED_BLOCK_RE = re.compile(r"```[ \t]*(?:json|JSON|javascript|js)?[ \t]*\r?\n?(?P<body>.*?)```", re.DOTALL)

TAG_BLOCK_RE = re.compile(
    r"<\s*(?P<tag>tool_call|agent_call)\s*>(?P<body>.*?)<\s*/\s*(?P=tag)\s*>",
    re.IGNORECASE | re.DOTALL,
)

_NAME_TAG_RE = re.compile(
    r"<\s*(?P<tag>name|tool_name|tool)\s*>(?P<value>.*?)<\s*/\s*(?P=tag)\s*>",
    re.IGNORECASE | re.DOTALL,
)
_TASK_TAG_RE = re.compile(r"<\s*task\s*>(?P<value>.*?)<\s*/\s*task\s*>", re.IGNORECASE | re.DOTALL)
_ARGUMENTS_TAG_RE = re.compile(
    r"<\s*(?P<tag>arguments|params|parameters)\s*>(?P<value>.*?)<\s*/\s*(?P=tag)\s*>",
    re.IGNORECASE | re.DOTALL,
)
_ID_TAG_RE = re.compile(r"<\s*id\s*>(?P<value>.*?)<\s*/\s*id\s*>", re.IGNORECASE | re.DOTALL)

LOOSE_TOOL_RE = re.compile(r"Tool:\s*(?P<name>[A-Za-z0-9_.\-]+)\s*Params:\s*", re.IGNORECASE)

THINK_BLOCK_RE = re.compile(r"<\s*think\s*>.*?(?:<\s*/\s*think\s*>|$)", re.IGNORECASE | re.DOTALL)

RAW_TARGET_MARKER = "to="
RAW_MESSAGE_START = "<|message|>"
RAW_MESSAGE_END = "<|call|>"
_RAW_NAME_CHARS = frozenset("abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789_.#-")
_RAW_NAMESPACE_PREFIXES = ("functions.", "tools.", "functions:", "tool.")

_NAME_KEYS = ("name", "tool", "tool_name")
_ARGUMENT_KEYS = ("arguments", "params", "parameters", "args")
_AGENT_KEYS = ("agent", "agent_name")
_BRACKET_PAIRS = {"{": "}", "[": "]"}
_MAX_QUOTE_RESCANS = 8


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------


def normalize_marker_text(text: str) -> str:
    """Normalize stylized Unicode glyphs to ASCII equivalents."""
    return text.translate(MARKER_TRANSLATION)


def parsed_tool_call_id(name: str, index: int) -> str:
    """Generate a unique correlation id for a parsed action."""
    return f"parsed_{name}_{index}_{uuid.uuid4().hex[:8]}"


def strip_thinking(text: str) -> str:
    """Remove ``<think>...</think>`` reasoning blocks from model output."""
    if not text:
        return ""
    return THINK_BLOCK_RE.sub("", text).strip()


def has_action_markup(text: str) -> bool:
    """Cheap check for any tag-delimited or raw-token action markers."""
    if not text:
        return False
    normalized = normalize_marker_text(text)
    return bool(TAG_BLOCK_RE.search(normalized)) or RAW_MESSAGE_START in normalized


def _load_json(text: str) -> Any:
    """Parse JSON, repairing common near-miss syntax when strict parsing fails."""
    candidate = text.strip()
    if not candidate:
        return None
    try:
        return json.loads(candidate)
    except ValueError:
        pass
    repaired = json_repair.loads(candidate)
    if repaired == "":
        return None
    return repaired


def _coerce_arguments(raw: Any) -> dict[str, Any] | None:
    """Return ``raw`` as an argument map, or ``None`` when it is not one."""
    if raw is None:
        return {}
    if isinstance(raw, Mapping):
        return dict(raw)
    if isinstance(raw, str):
        if not raw.strip():
            return {}
        parsed = _load_json(raw)
        if isinstance(parsed, Mapping):
            return dict(parsed)
    return None


def _first_key(payload: Mapping[str, Any], keys: Sequence[str]) -> tuple[str | None, Any]:
    for key in keys:
        if key in payload:
            return key, payload[key]
    return None, None


def _iter_json_snippets(text: str) -> Iterator[str]:
    """Yield top-level balanced ``{...}`` / ``[...]`` regions of ``text``."""
    regions, _ = _scan_brackets(text)
    for start, end in regions:
        yield text[start : end + 1]


def _scan_brackets(text: str) -> tuple[list[tuple[int, int]], dict[int, int]]:
    """Locate balanced bracket regions in one left-to-right pass.

    Returns the outermost balanced regions in order, plus a map from every
    matched opener to its closer. An opener that never balances (cut off by
    a mismatched closer or the end of the text) is dropped, and the balanced
    regions nested inside it become top-level instead. A quote left open at
    the end of the text is treated as literal and scanning resumes right
    after it, at most ``_MAX_QUOTE_RESCANS`` times, so the cost stays linear.
    """
    regions: list[tuple[int, int]] = []
    closers: dict[int, int] = {}
    # Open frames: (expected closer, start, balanced regions nested directly inside).
    frames: list[tuple[str, int, list[tuple[int, int]]]] = []
    position = 0
    rescans = 0
    length = len(text)
    quote = ""
    quote_start = -1
    escaped = False

    while True:
        while position < length:
            char = text[position]
            if quote:
                if escaped:
                    escaped = False
                elif char == "\\":
                    escaped = True
                elif char == quote:
                    quote = ""
            elif char in "\"'" and frames:
                quote = char
                quote_start = position
            elif char in _BRACKET_PAIRS:
                frames.append((_BRACKET_PAIRS[char], position, []))
            elif char in "}]" and frames:
                expected, start, _nested = frames[-1]
                if char == expected:
                    frames.pop()
                    closers[start] = position
                    (frames[-1][2] if frames else regions).append((start, position))
                else:
                    _release_frames(frames, regions)
            position += 1

        if quote and rescans < _MAX_QUOTE_RESCANS:
            rescans += 1
            _release_frames(frames, regions)
            position = quote_start + 1
            quote = ""
            escaped = False
            continue
        break

    _release_frames(frames, regions)
    regions.sort()
    return regions, closers


def _release_frames(
    frames: list[tuple[str, int, list[tuple[int, int]]]],
    regions: list[tuple[int, int]],
) -> None:
    """Discard unbalanced frames, promoting their nested regions to top level."""
    for _expected, _start, nested in frames:
        regions.extend(nested)
    frames.clear()


# -----------------------------------------------------------------------------
# Decoding
# -----------------------------------------------------------------------------


def decode_action(
    payload: Any,
    index: int = 0,
    *,
    require_arguments: bool = False,
) -> ActionRequest | None:
    """Normalize one decoded payload into a canonical ActionRequest.

    Accepts the synonyms models use interchangeably: ``name``/``tool``/
    ``tool_name`` for the target, ``arguments``/``params``/``parameters``
    for the argument map (as an object or a JSON string), OpenAI's nested
    ``{"function": {...}}`` tool-call shape, and ``agent`` + ``task`` for
    delegations.

    Args:
        payload: A decoded JSON value.
        index: Position of the action within its source, used for ids.
        require_arguments: Reject tool payloads without an argument field.

    Returns:
        The decoded action, or None when the payload does not qualify.
    """
    if not isinstance(payload, Mapping):
        return None

    call_id = payload.get("id") if isinstance(payload.get("id"), str) else None

    function = payload.get("function")
    if isinstance(function, Mapping):
        nested = decode_action(function, index, require_arguments=False)
        if isinstance(nested, ToolAction) and call_id:
            return ToolAction(name=nested.name, arguments=nested.arguments, call_id=call_id)
        return nested

    _, agent_name = _first_key(payload, _AGENT_KEYS)
    task = payload.get("task")
    if isinstance(agent_name, str) and agent_name.strip() and isinstance(task, str) and task.strip():
        name = agent_name.strip()
        return AgentAction(
            agent_name=name,
            task=task.strip(),
            call_id=call_id or parsed_tool_call_id(name, index),
        )

    _, name = _first_key(payload, _NAME_KEYS)
    if not isinstance(name, str) or not name.strip():
        return None
    name = name.strip()

    argument_key, raw_arguments = _first_key(payload, _ARGUMENT_KEYS)
    if argument_key is None:
        if require_arguments:
            return None
        raw_arguments = {}
    arguments = _coerce_arguments(raw_arguments)
    if arguments is None:
        LOGGER.debug("Dropping action %s: arguments are not a map", name)
        return None

    return ToolAction(
        name=name,
        arguments=arguments,
        call_id=call_id or parsed_tool_call_id(name, index),
    )


def native_actions(tool_calls: Sequence[Mapping[str, Any]] | None) -> list[ActionRequest]:
    """Decode native tool-call hints returned by a backend."""
    actions: list[ActionRequest] = []
    for index, call in enumerate(tool_calls or ()):
        try:
            action = decode_action(call, index)
        except Exception:  # pragma: no cover
            LOGGER.debug("Failed to decode native tool call %r", call, exc_info=True)
            continue
        if action is not None:
            actions.append(action)
    return actions


# -----------------------------------------------------------------------------
# Stages
# -----------------------------------------------------------------------------


def _decode_json_text(text: str, start_index: int = 0) -> list[ActionRequest]:
    """Decode a JSON object or array of objects into actions."""
    parsed = _load_json(text)
    items = parsed if isinstance(parsed, list) else [parsed]
    actions: list[ActionRequest] = []
    for item in items:
        action = decode_action(item, start_index + len(actions), require_arguments=True)
        if action is not None:
            actions.append(action)
    return actions


def parse_structured(text: str) -> list[ActionRequest]:
    """Stage 1: fenced or bare JSON action blocks."""
    actions: list[ActionRequest] = []
    for match in FENCED_BLOCK_RE.finditer(text):
        body = match.group("body")
        if body.strip():
            actions.extend(_decode_json_text(body, len(actions)))
    if actions:
        return actions
    for snippet in _iter_json_snippets(text):
        actions.extend(_decode_json_text(snippet, len(actions)))
    return actions


def parse_tagged(text: str) -> list[ActionRequest]:
    """Stage 2: ``<tool_call>`` and ``<agent_call>`` blocks."""
    actions: list[ActionRequest] = []
    for match in TAG_BLOCK_RE.finditer(text):
        tag = match.group("tag").lower()
        body = match.group("body")
        index = len(actions)
        name_match = _NAME_TAG_RE.search(body)
        id_match = _ID_TAG_RE.search(body)
        call_id = id_match.group("value").strip() if id_match else ""

        if name_match is None:
            actions.extend(_decode_json_text(body, index))
            continue

        name = name_match.group("value").strip().strip("\"'")
        if not name:
            continue

        if tag == "agent_call":
            task_match = _TASK_TAG_RE.search(body)
            task = task_match.group("value").strip() if task_match else ""
            if not task:
                LOGGER.debug("Dropping agent_call for %s without a task", name)
                continue
            actions.append(
                AgentAction(agent_name=name, task=task, call_id=call_id or parsed_tool_call_id(name, index))
            )
            continue

        arguments_match = _ARGUMENTS_TAG_RE.search(body)
        arguments = _coerce_arguments(arguments_match.group("value") if arguments_match else None)
        if arguments is None:
            LOGGER.debug("Dropping tool_call for %s: arguments are not a map", name)
            continue
        actions.append(ToolAction(name=name, arguments=arguments, call_id=call_id or parsed_tool_call_id(name, index)))
    return actions


def _read_raw_name(text: str, start: int) -> tuple[str, int]:
    end = start
    while end < len(text) and text[end] in _RAW_NAME_CHARS:
        end += 1
    name = text[start:end].strip(".#-")
    for prefix in _RAW_NAMESPACE_PREFIXES:
        if name.startswith(prefix):
            name = name[len(prefix) :]
            break
    return name, end


def parse_raw_tokens(text: str) -> list[ActionRequest]:
    """Stage 3: ``to=functions.NAME ... <|message|>{json}<|call|>`` token form."""
    actions: list[ActionRequest] = []
    position = 0
    while True:
        marker = text.find(RAW_TARGET_MARKER, position)
        if marker < 0:
            break
        if marker > 0 and (text[marker - 1].isalnum() or text[marker - 1] == "_"):
            position = marker + len(RAW_TARGET_MARKER)
            continue
        name, name_end = _read_raw_name(text, marker + len(RAW_TARGET_MARKER))
        payload_start = text.find(RAW_MESSAGE_START, name_end)
        if not name or payload_start < 0:
            position = name_end if name_end > marker else marker + len(RAW_TARGET_MARKER)
            if payload_start < 0:
                break
            continue
        next_marker = text.find(RAW_TARGET_MARKER, name_end, payload_start)
        if next_marker >= 0:
            position = next_marker
            continue
        payload_end = text.find(RAW_MESSAGE_END, payload_start)
        if payload_end < 0:
            break
        raw_payload = text[payload_start + len(RAW_MESSAGE_START) : payload_end]
        arguments = _coerce_arguments(raw_payload)
        if arguments is not None:
            actions.append(ToolAction(name=name, arguments=arguments, call_id=parsed_tool_call_id(name, len(actions))))
        else:
            LOGGER.debug("Dropping raw token action for %s: payload is not a map", name)
        position = payload_end + len(RAW_MESSAGE_END)
    return actions


def parse_loose(text: str) -> list[ActionRequest]:
    """Stage 4: ``Tool: NAME Params: {json}`` lines."""
    actions: list[ActionRequest] = []
    closers: dict[int, int] | None = None
    for match in LOOSE_TOOL_RE.finditer(text):
        start = match.end()
        if start >= len(text) or text[start] != "{":
            continue
        if closers is None:
            _, closers = _scan_brackets(text)
        end = closers.get(start)
        if end is None:
            continue
        arguments = _coerce_arguments(text[start : end + 1])
        if arguments is None:
            continue
        name = match.group("name")
        actions.append(ToolAction(name=name, arguments=arguments, call_id=parsed_tool_call_id(name, len(actions))))
    return actions


ParserStage = Callable[[str], list[ActionRequest]]

DEFAULT_STAGES: tuple[tuple[str, ParserStage], ...] = (
    ("structured", parse_structured),
    ("tagged", parse_tagged),
    ("raw_tokens", parse_raw_tokens),
    ("loose", parse_loose),
)


# -----------------------------------------------------------------------------
# Parser
# -----------------------------------------------------------------------------


class ActionParser:
    """Ordered cascade of action parsers; the first non-empty stage wins.

    Example:
        parser = ActionParser()
        actions = parser.parse('```json\\n{"tool": "calculator", "params": {"a": 1}}\\n```')
    """

    def __init__(self, stages: Sequence[tuple[str, ParserStage]] | None = None) -> None:
        self._stages = tuple(stages) if stages is not None else DEFAULT_STAGES

    @property
    def stage_names(self) -> tuple[str, ...]:
        return tuple(name for name, _ in self._stages)

    def parse(self, text: str | None) -> list[ActionRequest]:
        """Extract action requests from model output.

        Args:
            text: Raw model output.

        Returns:
            Actions from the first stage that recognized anything, or an
            empty list.
        """
        if not text or not isinstance(text, str):
            return []
        normalized = normalize_marker_text(text)
        for stage_name, stage in self._stages:
            try:
                actions = stage(normalized)
            except Exception:
                LOGGER.debug("Parser stage %s failed", stage_name, exc_info=True)
                continue
            if actions:
                LOGGER.debug("Parser stage %s produced %s action(s)", stage_name, len(actions))
                return actions
        return []


_DEFAULT_PARSER = ActionParser()


def parse_actions(text: str | None) -> list[ActionRequest]:
    """Parse ``text`` with the default cascade."""
    return _DEFAULT_PARSER.parse(text)
