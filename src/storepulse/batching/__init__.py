"""Client-side request batching."""

from storepulse.batching.batcher import BatchStats, RequestBatcher
from storepulse.batching.rules import DEFAULT_BATCH_RULES, BatchRule, match_rule

__all__ = [
    "DEFAULT_BATCH_RULES",
    "BatchRule",
    "BatchStats",
    "RequestBatcher",
    "match_rule",
]
