"""
Ranking engine: re-scores similarity hits by recency, importance and use.

Similarity gates relevance; the bracketed term re-orders relevant candidates
by freshness and importance, and the access boost is a capped multiplicative
tiebreak.
"""

from __future__ import annotations

import math
import time

HALF_LIFE_DAYS = 30
_SECONDS_PER_DAY = 24 * 60 * 60
DECAY_LAMBDA = math.log(2) / (HALF_LIFE_DAYS * _SECONDS_PER_DAY)

MAX_ACCESS_BOOST = 1.3


def recency_decay(created_at: float, now: float | None = None) -> float:
    """1.0 for a brand-new record, 0.5 after one half-life, tending to 0."""
    now = time.time() if now is None else now
    return math.exp(-DECAY_LAMBDA * (now - created_at))


def access_boost(access_count: int) -> float:
    return min(MAX_ACCESS_BOOST, 1 + math.log2(1 + access_count) * 0.1)


def final_score(
    similarity: float,
    created_at: float,
    importance: float,
    access_count: int,
    now: float | None = None,
) -> float:
    recency = recency_decay(created_at, now)
    return similarity * (0.5 + 0.3 * recency + 0.2 * importance) * access_boost(access_count)
