"""Cheap, conservative token estimation."""

from __future__ import annotations

import hashlib
import math


class TokenEstimator:
    """
    Character-count token heuristic: ``ceil(len(text) / chars_per_token)``.

    Not an exact tokenizer: engine budgets are approximate and the same
    estimate is applied to every engine regardless of its real tokenizer.

    Counts for immutable text (summary blocks rendered repeatedly across
    requests) can be cached with :meth:`estimate_cached`.
    """

    def __init__(self, chars_per_token: int = 4) -> None:
        if chars_per_token < 1:
            raise ValueError("chars_per_token must be >= 1")
        self._chars_per_token = chars_per_token
        self._count_cache: dict[str, int] = {}

    @property
    def chars_per_token(self) -> int:
        return self._chars_per_token

    def estimate(self, text: str | None) -> int:
        """Return the estimated token count; 0 for empty text."""
        if not text:
            return 0
        return math.ceil(len(text) / self._chars_per_token)

    def estimate_cached(self, text: str, cache_key: str | None = None) -> int:
        """Estimate with caching, keyed by ``cache_key`` (SHA-256 of *text* by default)."""
        key = cache_key or self.content_hash(text)
        if key in self._count_cache:
            return self._count_cache[key]
        count = self.estimate(text)
        self._count_cache[key] = count
        return count

    @staticmethod
    def content_hash(text: str) -> str:
        """Return a stable SHA-256 hex digest for use as a cache key."""
        return hashlib.sha256(text.encode()).hexdigest()
