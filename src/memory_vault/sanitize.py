"""
Default content sanitizer and memory text validation.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable

_INJECTION_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"\bsystem\s*:",
        r"\bignore\s+(previous|above|all)\s+instructions",
        r"\byou\s+are\s+now\b",
        r"\bforget\s+(everything|all|your)\b",
        r"\bnew\s+instructions?\b",
        r"</?system>",
        r"\bdo\s+not\s+follow\b",
        r"\boverride\b",
        r"\bjailbreak\b",
    )
]

# Tags that could confuse context injection when recalled later.
_CONTEXT_TAGS = re.compile(r"</?(?:system|instructions?|prompt|context|role)[^>]*>", re.IGNORECASE)

_CODE_BLOCK = re.compile(r"```[\s\S]*?```")

MIN_MEMORY_CHARS = 5
MAX_CODE_RATIO = 0.6


@dataclass(frozen=True)
class SanitizeResult:
    clean: str
    flagged: bool


Sanitizer = Callable[[str], SanitizeResult]


def sanitize(text: str) -> SanitizeResult:
    """Flag prompt-injection phrasing and strip context-like tags."""
    flagged = any(p.search(text) for p in _INJECTION_PATTERNS)
    return SanitizeResult(clean=_CONTEXT_TAGS.sub("", text).strip(), flagged=flagged)


def is_valid_memory_text(text: str, max_chars: int) -> bool:
    """Reject text that is too short, too long or mostly fenced code."""
    if not text or len(text) < MIN_MEMORY_CHARS or len(text) > max_chars:
        return False
    code_chars = sum(len(block) for block in _CODE_BLOCK.findall(text))
    return code_chars / len(text) <= MAX_CODE_RATIO
