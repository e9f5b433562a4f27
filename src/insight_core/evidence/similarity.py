"""
Similarity metrics and order-preserving deduplication.

Two metrics with different scoping rules:
- Edit distance ratio, only between candidates from the same message
  (actions are per-utterance commitments)
- Jaccard word overlap across all candidates
  (decisions are conversation-wide and are often restated)
"""
from typing import Callable, List, Optional, Protocol, Sequence, TypeVar

T = TypeVar("T")


def levenshtein_distance(a: str, b: str) -> int:
    """Classic edit distance (insert, delete, substitute all cost 1)."""
    if a == b:
        return 0
    if len(a) < len(b):
        a, b = b, a
    if not b:
        return len(a)

    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i]
        for j, cb in enumerate(b, start=1):
            if ca == cb:
                current.append(previous[j - 1])
            else:
                current.append(1 + min(previous[j - 1], previous[j], current[j - 1]))
        previous = current
    return previous[-1]


class SimilarityMetric(Protocol):
    """Pairwise similarity in [0, 1] plus the rule for which pairs are compared."""

    def similarity(self, a: str, b: str) -> float:
        ...

    def in_scope(self, source_a: str, source_b: str) -> bool:
        ...


class EditDistanceSimilarity:
    """``1 - levenshtein(a, b) / max(len(a), len(b))`` on lowercased text."""

    def similarity(self, a: str, b: str) -> float:
        a, b = a.lower(), b.lower()
        longest = max(len(a), len(b))
        if longest == 0:
            return 1.0
        return (longest - levenshtein_distance(a, b)) / longest

    def in_scope(self, source_a: str, source_b: str) -> bool:
        # Cross-message actions are never collapsed
        return source_a == source_b


class JaccardWordSimilarity:
    """``|A ∩ B| / |A ∪ B|`` over lowercased whitespace-separated words."""

    def similarity(self, a: str, b: str) -> float:
        words_a = set(a.lower().split())
        words_b = set(b.lower().split())
        union = words_a | words_b
        if not union:
            return 0.0
        return len(words_a & words_b) / len(union)

    def in_scope(self, source_a: str, source_b: str) -> bool:
        return True


def deduplicate(
    candidates: Sequence[T],
    metric: SimilarityMetric,
    threshold: float,
    text_of: Callable[[T], str],
    source_of: Callable[[T], str],
) -> List[T]:
    """
    Drop candidates that are too similar to an earlier kept one.

    First occurrence wins, so callers sort best-first before calling.

    Args:
        candidates: Candidates in priority order
        metric: Similarity metric with its scoping rule
        threshold: Pairs with similarity strictly above this are duplicates
        text_of: Extracts the compared text from a candidate
        source_of: Extracts the source message id from a candidate

    Returns:
        Kept candidates in original order
    """
    kept: List[T] = []
    for candidate in candidates:
        text = text_of(candidate)
        source = source_of(candidate)
        duplicate: Optional[T] = next(
            (
                existing for existing in kept
                if metric.in_scope(source_of(existing), source)
                and metric.similarity(text_of(existing), text) > threshold
            ),
            None,
        )
        if duplicate is None:
            kept.append(candidate)
    return kept
