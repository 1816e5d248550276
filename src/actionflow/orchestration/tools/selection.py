"""Relevance-based narrowing of the tool set advertised to the model.

Large registries waste prompt space when every tool is described on every
round. :func:`select_tools` ranks tools against the user's query and keeps
the best ``max_tools``; tools that are not advertised remain callable.
"""

from __future__ import annotations

import logging
import re
from difflib import SequenceMatcher
from typing import Mapping, Sequence

from .types import ToolCategory, ToolSpec

__all__ = [
    "CATEGORY_KEYWORDS",
    "relevance_score",
    "select_tools",
    "tool_keywords",
]

LOGGER = logging.getLogger(__name__)

_WORD_RE = re.compile(r"[a-z0-9]+")
_MIN_PARTIAL_LENGTH = 3
_EXACT_MATCH_SCORE = 10.0
_PARTIAL_MATCH_SCORE = 5.0

# Words that route a query to a tool category even when the tool's own
# name and description do not mention them.
CATEGORY_KEYWORDS: Mapping[str, frozenset[str]] = {
    ToolCategory.READ: frozenset({"read", "get", "fetch", "show", "open", "load", "view"}),
    ToolCategory.WRITE: frozenset({"write", "create", "save", "update", "delete", "add", "store"}),
    ToolCategory.SEARCH: frozenset({"search", "find", "lookup", "query", "look"}),
    ToolCategory.ANALYSIS: frozenset({"calculate", "compute", "analyze", "compare", "sum", "math"}),
    ToolCategory.MEDIA: frozenset({"image", "photo", "picture", "audio", "video"}),
    ToolCategory.UTILITY: frozenset(),
}


def _words(text: str) -> list[str]:
    return _WORD_RE.findall(text.lower())


def tool_keywords(spec: ToolSpec) -> frozenset[str]:
    """Index words for ``spec``: its name parts, description and category words."""
    words = set(_words(spec.name.replace("_", " ")))
    words.update(_words(spec.description))
    words.update(CATEGORY_KEYWORDS.get(spec.category, ()))
    return frozenset(words)


def relevance_score(query: str, spec: ToolSpec) -> float:
    """Score how relevant ``spec`` is to ``query``.

    Each query word scores 10 per exact keyword match and 5 per keyword
    that contains it or is contained in it (words of three letters or more).
    The character similarity of the query to ``"name description"`` is
    added as a fractional tie-breaker.
    """
    keywords = tool_keywords(spec)
    score = 0.0
    for word in set(_words(query)):
        for keyword in keywords:
            if keyword == word:
                score += _EXACT_MATCH_SCORE
            elif min(len(word), len(keyword)) >= _MIN_PARTIAL_LENGTH and (word in keyword or keyword in word):
                score += _PARTIAL_MATCH_SCORE
    similarity = SequenceMatcher(None, query.lower(), f"{spec.name} {spec.description}".lower()).ratio()
    return score + similarity


def select_tools(query: str, specs: Sequence[ToolSpec], max_tools: int | None) -> list[ToolSpec]:
    """Return at most ``max_tools`` specs, most relevant to ``query`` first.

    The full list is returned unchanged when no limit is set or it already
    fits. Without any query words the first ``max_tools`` registered tools
    are kept. Ties keep registration order.
    """
    if max_tools is None or len(specs) <= max_tools:
        return list(specs)
    if not _words(query):
        return list(specs[:max_tools])
    ranked = sorted(
        enumerate(specs),
        key=lambda item: (-relevance_score(query, item[1]), item[0]),
    )
    selected = [spec for _, spec in ranked[:max_tools]]
    LOGGER.debug("Selected %d of %d tools: %s", len(selected), len(specs), [spec.name for spec in selected])
    return selected
