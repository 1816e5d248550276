"""Heuristic detection of purely conversational messages.

Delegated mode uses this to decide whether a reply that skipped delegation
deserves a corrective nudge: greetings and small talk are answered directly,
anything that looks like a task is nudged toward the available agents.
"""

from __future__ import annotations

import re

__all__ = [
    "CONVERSATIONAL_THRESHOLD",
    "conversational_score",
    "is_conversational",
]

CONVERSATIONAL_THRESHOLD = 0.7

_GREETING_RE = re.compile(
    r"^(hi|hello|hey|hiya|yo|howdy|greetings|good (morning|afternoon|evening|night)|"
    r"thanks|thank you|thx|ty|cheers|bye|goodbye|see you|ok|okay|cool|nice|great|lol|haha|"
    r"halo|hai|oi|pagi|siang|sore|malam|assalamualaikum|kabar|test|tes)\b",
    re.IGNORECASE,
)
_SOCIAL_QUESTION_RE = re.compile(
    r"\b(how (are|is) (you|it going|things)|what'?s up|how'?s it going|apa kabar|gimana kabar)\b",
    re.IGNORECASE,
)
_QUESTION_WORD_RE = re.compile(r"^(what|why|how|when|where|who|which|can|could|would|should|is|are|do|does)\b", re.IGNORECASE)
_ACTIONABLE_PATTERNS = (
    re.compile(r"https?://"),
    re.compile(r"\{.*\}", re.DOTALL),
    re.compile(r"\d+\s*[+\-*/^%]\s*\d+"),
    re.compile(
        r"\b(search|find|look up|analy[sz]e|calculate|compute|convert|translate|summari[sz]e|"
        r"create|build|write|generate|fetch|download|check|compare|explain|help|"
        r"cari|hitung|buat|tolong)\b",
        re.IGNORECASE,
    ),
)


def conversational_score(text: str) -> float:
    """Score from 0.0 (clearly a task) to 1.0 (clearly small talk)."""
    clean = (text or "").strip()
    if not clean:
        return 1.0
    if len(clean) <= 3 and not any(char.isdigit() for char in clean):
        return 0.9

    words = clean.split()
    score = 0.0
    if _GREETING_RE.match(clean):
        score += 0.7
    if len(words) <= 3:
        score += 0.3
    if len(words) <= 5:
        score += 0.1

    is_question = "?" in clean or bool(_QUESTION_WORD_RE.match(clean))
    if is_question and not _SOCIAL_QUESTION_RE.search(clean):
        score -= 0.5
    elif _SOCIAL_QUESTION_RE.search(clean):
        score += 0.3
    if len(words) >= 12:
        score -= 0.6
    if any(pattern.search(clean) for pattern in _ACTIONABLE_PATTERNS):
        score -= 0.7

    return max(0.0, min(1.0, score))


def is_conversational(text: str, threshold: float = CONVERSATIONAL_THRESHOLD) -> bool:
    """Whether ``text`` is most likely just a greeting or social exchange."""
    return conversational_score(text) >= threshold
