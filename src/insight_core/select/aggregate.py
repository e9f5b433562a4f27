"""
Cross-message aggregation: sort, deduplicate, filter.

The order matters. Sorting first lets deduplication keep the best-scored
variant of a duplicate pair; filtering last means a low-confidence
duplicate can never shadow a higher one.
"""
import functools
import structlog
from dataclasses import dataclass
from typing import Callable, Iterable, List, Sequence

from insight_core.evidence.similarity import (
    EditDistanceSimilarity,
    JaccardWordSimilarity,
    SimilarityMetric,
    deduplicate,
)

logger = structlog.get_logger()


@dataclass(frozen=True)
class AggregationStrategy:
    """Per-category sort tolerance, similarity metric and thresholds."""
    category: str
    tolerance: float
    metric: SimilarityMetric
    similarity_threshold: float
    text_of: Callable
    confidence_threshold: float = 0.5


ACTION_STRATEGY = AggregationStrategy(
    category="actions",
    tolerance=0.1,
    metric=EditDistanceSimilarity(),
    similarity_threshold=0.8,
    text_of=lambda action: action.title,
)

DECISION_STRATEGY = AggregationStrategy(
    category="decisions",
    tolerance=0.05,
    metric=JaccardWordSimilarity(),
    similarity_threshold=0.7,
    text_of=lambda decision: decision.content,
)


def sort_candidates(candidates: Iterable, tolerance: float) -> List:
    """
    Sort by confidence descending, then timestamp descending.

    Confidences within ``tolerance`` of each other count as equal and are
    ordered by recency instead.
    """
    def compare(a, b) -> int:
        if abs(a.confidence - b.confidence) > tolerance:
            return -1 if a.confidence > b.confidence else 1
        if a.timestamp != b.timestamp:
            return -1 if a.timestamp > b.timestamp else 1
        return 0

    return sorted(candidates, key=functools.cmp_to_key(compare))


def aggregate(per_message: Iterable[Sequence], strategy: AggregationStrategy) -> List:
    """
    Merge per-message candidates into the final insight list.

    Args:
        per_message: Candidate lists in message order (oldest first)
        strategy: Category strategy

    Returns:
        Sorted, deduplicated candidates with confidence above the threshold
    """
    merged = [candidate for candidates in per_message for candidate in candidates]
    ordered = sort_candidates(merged, strategy.tolerance)
    unique = deduplicate(
        ordered,
        strategy.metric,
        strategy.similarity_threshold,
        text_of=strategy.text_of,
        source_of=lambda candidate: candidate.source_message_id,
    )
    kept = [c for c in unique if c.confidence > strategy.confidence_threshold]

    logger.debug("Aggregated insights",
                 category=strategy.category,
                 candidates=len(merged),
                 unique=len(unique),
                 kept=len(kept))
    return kept
