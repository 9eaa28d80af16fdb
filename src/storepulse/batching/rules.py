"""Routing table for batchable endpoints."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass


@dataclass(frozen=True)
class BatchRule:
    """Endpoints containing ``pattern`` are coalesced into ``batch_endpoint`` calls."""

    pattern: str
    batch_endpoint: str
    max_batch_size: int | None = None
    timeout_ms: float | None = None


DEFAULT_BATCH_RULES: tuple[BatchRule, ...] = (
    BatchRule("/products", "/products/batch", max_batch_size=20, timeout_ms=200),
    BatchRule("/categories", "/categories/batch", max_batch_size=15, timeout_ms=150),
    BatchRule("/search", "/search/batch", max_batch_size=5, timeout_ms=50),
)


def match_rule(rules: Sequence[BatchRule], endpoint: str) -> BatchRule | None:
    """First rule whose pattern occurs in the endpoint, in table order."""
    for rule in rules:
        if rule.pattern in endpoint:
            return rule
    return None


def overlapping_patterns(rules: Sequence[BatchRule]) -> list[tuple[str, str]]:
    """
    Pairs ``(earlier, later)`` where one pattern contains the other.

    With first-match routing, an endpoint matching both always goes to the
    earlier rule, e.g. ``/products/search`` matches ``/products`` before
    ``/search``.
    """
    pairs: list[tuple[str, str]] = []
    for i, earlier in enumerate(rules):
        for later in rules[i + 1 :]:
            if earlier.pattern in later.pattern or later.pattern in earlier.pattern:
                pairs.append((earlier.pattern, later.pattern))
    return pairs
