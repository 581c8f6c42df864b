"""
Capture heuristic: decide whether a piece of conversation is worth keeping.

The evaluator only scores text.  The acceptance threshold, the per-turn cap
and deduplication are applied by :meth:`memory_vault.vault.Vault.capture`.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable

MIN_CAPTURE_CHARS = 20
MAX_CAPTURE_CHARS = 2000

#: Present in text that was injected from recalled memories.  Capturing it
#: again would feed recalled content back into the store.
RECALLED_MEMORY_MARKER = re.compile(r"<relevant-memories|<vault-memories")

_CODE_FENCE = re.compile(r"```")
_MARKDOWN_HEADER = re.compile(r"^#{1,6}\s", re.MULTILINE)

CODE_FENCE_PENALTY = 0.3
HEADER_PENALTY = 0.2


@dataclass(frozen=True)
class CaptureRule:
    name: str
    predicate: Callable[[str], bool]
    weight: float
    category: str


@dataclass(frozen=True)
class CaptureResult:
    score: float
    category: str


def _pattern(regex: str) -> Callable[[str], bool]:
    compiled = re.compile(regex, re.IGNORECASE)
    return lambda text: compiled.search(text) is not None


#: Evaluated in order; every matching rule adds its weight.
CAPTURE_RULES: tuple[CaptureRule, ...] = (
    CaptureRule(
        "explicit_request",
        _pattern(r"\b(remember|don't forget|note that|keep in mind|save this)\b"),
        0.5,
        "preference",
    ),
    CaptureRule(
        "personal_info",
        _pattern(r"\b(my |I prefer|I use |I like |I need |we decided|I always|I never)\b"),
        0.3,
        "preference",
    ),
    CaptureRule(
        "structured_data",
        _pattern(
            r"(\b[A-Z0-9._%+-]+@[A-Z0-9.-]+\.[A-Z]{2,}\b"
            r"|\b\d{3}[-.]?\d{3}[-.]?\d{4}\b"
            r"|\b\d{4}[-/]\d{2}[-/]\d{2}\b)"
        ),
        0.3,
        "entity",
    ),
    CaptureRule(
        "technical_decision",
        _pattern(r"\b(we'll use|switched to|let's go with|migrated to|chose|decided on|going with)\b"),
        0.3,
        "decision",
    ),
    CaptureRule(
        "preference_language",
        _pattern(r"\b(always|never|prefer|instead of|rather than|better than)\b"),
        0.2,
        "preference",
    ),
)

_REJECTED = CaptureResult(score=0.0, category="other")


def normalize(text: str) -> str:
    """Collapse runs of whitespace so rules see single-spaced text."""
    return " ".join(text.split())


def evaluate_capture(
    text: str, rules: tuple[CaptureRule, ...] = CAPTURE_RULES
) -> CaptureResult:
    """
    Score *text* for auto-capture.

    Returns a zero score for text outside the length bounds or text that
    carries a recalled-memory marker.  Otherwise sums the weight of every
    matching rule; the category comes from the heaviest match (earliest on
    ties).  Code-fence and header penalties are subtracted afterwards and
    the score is floored at 0.
    """
    if not text or len(text) < MIN_CAPTURE_CHARS or len(text) > MAX_CAPTURE_CHARS:
        return _REJECTED
    if RECALLED_MEMORY_MARKER.search(text):
        return _REJECTED

    normalized = normalize(text)
    score = 0.0
    best_category = "other"
    best_weight = 0.0
    for rule in rules:
        if rule.predicate(normalized):
            score += rule.weight
            if rule.weight > best_weight:
                best_weight = rule.weight
                best_category = rule.category

    if len(_CODE_FENCE.findall(text)) >= 2:
        score -= CODE_FENCE_PENALTY
    if len(_MARKDOWN_HEADER.findall(text)) >= 3:
        score -= HEADER_PENALTY

    return CaptureResult(score=max(0.0, score), category=best_category)
