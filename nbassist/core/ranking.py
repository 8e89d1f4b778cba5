"""Similarity ranking of cached cell embeddings against a query vector.

A full linear scan is enough for notebooks (tens to low thousands of cells).
Callers depend on the ``Ranker`` protocol so an approximate index can be
swapped in without touching them.
"""

from collections.abc import Sequence
from typing import Protocol

import numpy as np

from nbassist.core.embedding_cache import EmbeddingStore
from nbassist.core.logging import get_logger
from nbassist.core.schemas_cells import RankedCell

logger = get_logger(__name__)


def cosine_similarity(vec_a: Sequence[float], vec_b: Sequence[float]) -> float:
    """
    Cosine similarity of two vectors, in [-1, 1].

    Returns 0.0 when either vector has zero norm.

    Raises:
        ValueError: If the vectors have different dimensions
    """
    a = np.asarray(vec_a, dtype=np.float64)
    b = np.asarray(vec_b, dtype=np.float64)
    if a.shape != b.shape:
        raise ValueError(f"Vector dimensions must match: {a.shape[0]} != {b.shape[0]}")

    norm_a = np.linalg.norm(a)
    norm_b = np.linalg.norm(b)
    if norm_a == 0 or norm_b == 0:
        return 0.0

    score = float(np.dot(a, b) / (norm_a * norm_b))
    return max(-1.0, min(1.0, score))


class Ranker(Protocol):
    """Anything that can pick the top-K entries of a store for a query."""

    def top_k(
        self,
        query_vector: Sequence[float],
        store: EmbeddingStore,
        k: int,
        exclude_id: str | None = None,
    ) -> list[RankedCell]: ...


class LinearScanRanker:
    """Exact cosine ranking over every entry of the store."""

    def top_k(
        self,
        query_vector: Sequence[float],
        store: EmbeddingStore,
        k: int,
        exclude_id: str | None = None,
    ) -> list[RankedCell]:
        if k <= 0:
            return []

        scored: list[RankedCell] = []
        for entry in store:
            if exclude_id is not None and entry.id == exclude_id:
                continue
            try:
                score = cosine_similarity(query_vector, entry.vector)
            except ValueError as e:
                logger.warning(f"Skipping cell {entry.id}: {e}")
                continue
            scored.append(RankedCell(id=entry.id, score=score, source=entry.source_snapshot))

        # sorted() is stable, so equal scores keep store order
        scored = sorted(scored, key=lambda cell: -cell.score)
        return scored[:k]


def top_k(
    query_vector: Sequence[float],
    store: EmbeddingStore,
    k: int,
    exclude_id: str | None = None,
) -> list[RankedCell]:
    """Rank ``store`` against ``query_vector`` with a linear scan."""
    return LinearScanRanker().top_k(query_vector, store, k, exclude_id)
