"""
Vector similarity engine.

Scores a query vector against every stored embedding and returns a ranked,
thresholded subset. This is a full linear scan, O(corpus size x dimension)
per query, sized for a document knowledge base of hundreds to low thousands
of records. Results are exact; no approximate index is involved.
"""

import math
from dataclasses import dataclass
from typing import TYPE_CHECKING, Iterable, Sequence

if TYPE_CHECKING:
    from .store import KnowledgeRecord

DEFAULT_SIMILARITY_FLOOR = 0.5


@dataclass
class ScoredRecord:
    """A stored record paired with its similarity to the query."""

    record: "KnowledgeRecord"
    similarity: float


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """
    Cosine similarity of two vectors.

    Returns 0.0 instead of raising when either vector is empty or all-zero,
    or when the dimensions differ.
    """
    if not a or not b or len(a) != len(b):
        return 0.0

    dot = 0.0
    norm_a = 0.0
    norm_b = 0.0
    for x, y in zip(a, b):
        dot += x * y
        norm_a += x * x
        norm_b += y * y

    if norm_a == 0 or norm_b == 0:
        return 0.0

    return dot / (math.sqrt(norm_a) * math.sqrt(norm_b))


def rank_by_similarity(
    query_embedding: Sequence[float],
    records: Iterable,
    threshold: float = DEFAULT_SIMILARITY_FLOOR,
    limit: int | None = None,
) -> list[ScoredRecord]:
    """
    Rank records by cosine similarity to the query.

    Args:
        query_embedding: The query vector.
        records: Candidates exposing an ``embedding`` attribute, in scan order.
        threshold: Minimum similarity (inclusive) for a record to be kept.
        limit: Maximum number of results, or None for all eligible.

    Returns:
        Eligible records sorted by descending similarity. Ties keep scan order.
    """
    scored = []
    for record in records:
        if not record.embedding:
            continue
        similarity = cosine_similarity(query_embedding, record.embedding)
        if similarity >= threshold:
            scored.append(ScoredRecord(record=record, similarity=similarity))

    # list.sort is stable, so equal scores keep their scan order
    scored.sort(key=lambda s: s.similarity, reverse=True)

    if limit is not None:
        scored = scored[:limit]

    return scored
