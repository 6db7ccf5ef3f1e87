"""Similarity ranking over caller-supplied vectors.

Pure computation: nothing here fetches or stores vectors. The collaborator
store narrows the candidate set first; this module scores and orders it.
The same engine serves "search by text" (query vector vs candidates) and
"find duplicates of document X" (a stored vector vs its peers).

Ordering is deterministic: score descending, then candidate id ascending.
"""

import logging
from collections.abc import Iterable, Mapping, Sequence
from typing import Union

import numpy as np

from docvec.core.errors import DocumentNotFoundError
from docvec.core.models import HybridResult, RankedResult

logger = logging.getLogger(__name__)

VectorLike = Union[Sequence[float], np.ndarray]
Candidates = Union[Mapping[str, VectorLike], Iterable[tuple[str, VectorLike]]]

# Default thresholds
VECTOR_SEARCH_THRESHOLD = 0.5
DUPLICATE_THRESHOLD = 0.75
HYBRID_VECTOR_WEIGHT = 0.65


def cosine_similarity(a: VectorLike, b: VectorLike) -> float:
    """Cosine similarity in [-1, 1].

    Returns 0.0 instead of dividing by zero when either vector has zero norm.

    Raises:
        ValueError: If a vector is empty or the lengths differ.
    """
    va = np.asarray(a, dtype=np.float64).ravel()
    vb = np.asarray(b, dtype=np.float64).ravel()
    if va.size == 0 or vb.size == 0:
        raise ValueError("cannot compare empty vectors")
    if va.size != vb.size:
        raise ValueError(f"vector lengths differ: {va.size} != {vb.size}")

    denominator = np.linalg.norm(va) * np.linalg.norm(vb)
    if denominator == 0:
        return 0.0
    return float(np.dot(va, vb) / denominator)


def _iter_candidates(candidates: Candidates) -> Iterable[tuple[str, VectorLike]]:
    if isinstance(candidates, Mapping):
        return candidates.items()
    return candidates


def rank(
    query: VectorLike,
    candidates: Candidates,
    threshold: float = VECTOR_SEARCH_THRESHOLD,
    limit: int = 10,
) -> list[RankedResult]:
    """Rank candidates by cosine similarity to a query vector.

    Args:
        query: Query vector.
        candidates: Mapping of id -> vector, or iterable of (id, vector) pairs.
        threshold: Candidates scoring below this are excluded.
        limit: Maximum number of results (>= 1).

    Returns:
        Results sorted by score descending, ties broken by id ascending.

    Note:
        A candidate whose score cannot be computed (missing, non-numeric,
        wrong length, non-finite) is dropped and logged; it never aborts
        the ranking.

    Example:
        >>> rank([1, 0], {"a": [1, 0], "b": [1, 0], "c": [0, 1]}, threshold=0.5)
        [RankedResult(id='a', score=1.0), RankedResult(id='b', score=1.0)]
    """
    if limit < 1:
        raise ValueError("limit must be >= 1")

    scored: list[tuple[str, float]] = []
    for candidate_id, vector in _iter_candidates(candidates):
        try:
            score = cosine_similarity(query, vector)
        except (TypeError, ValueError) as e:
            logger.warning("Skipping candidate %s: %s", candidate_id, e)
            continue
        if not np.isfinite(score):
            logger.debug("Skipping candidate %s: non-finite score", candidate_id)
            continue
        if score >= threshold:
            scored.append((candidate_id, score))

    scored.sort(key=lambda item: (-item[1], item[0]))
    return [RankedResult(id=candidate_id, score=score) for candidate_id, score in scored[:limit]]


def find_duplicates(
    target_id: str,
    vectors: Mapping[str, VectorLike],
    threshold: float = DUPLICATE_THRESHOLD,
    limit: int = 5,
) -> list[RankedResult]:
    """Rank documents most similar to a target document's own vector.

    Args:
        target_id: Document whose near-duplicates are wanted.
        vectors: Mapping of id -> vector; must include target_id.
        threshold: Minimum similarity to count as a duplicate.
        limit: Maximum number of results.

    Returns:
        Ranked results, never including the target itself.

    Raises:
        DocumentNotFoundError: If target_id has no vector in ``vectors``.
    """
    if target_id not in vectors:
        raise DocumentNotFoundError(target_id)

    query = vectors[target_id]
    others = ((doc_id, v) for doc_id, v in vectors.items() if doc_id != target_id)
    return rank(query, others, threshold=threshold, limit=limit)


def vector_boost(score: float) -> float:
    """Multiplier favouring high-quality vector matches in hybrid ranking."""
    if score >= 0.9:
        return 1.15
    if score >= 0.8:
        return 1.1
    if score >= 0.7:
        return 1.05
    return 1.0


def combine_hybrid(
    vector_results: Iterable[RankedResult],
    text_scores: Mapping[str, float],
    vector_weight: float = HYBRID_VECTOR_WEIGHT,
    limit: int = 10,
) -> list[HybridResult]:
    """Merge vector similarity and keyword scores into one ranking.

    combined = vector * weight * boost(vector) + text * (1 - weight), where a
    missing component contributes 0.

    Args:
        vector_results: Output of rank() for the query.
        text_scores: Keyword relevance per document id, in [0, 1].
        vector_weight: Weight of the vector component in [0, 1].
        limit: Maximum number of results (>= 1).

    Returns:
        Results sorted by combined score descending, ties by id ascending.
    """
    if not 0.0 <= vector_weight <= 1.0:
        raise ValueError("vector_weight must be between 0.0 and 1.0")
    if limit < 1:
        raise ValueError("limit must be >= 1")

    combined: dict[str, HybridResult] = {}
    for result in vector_results:
        combined[result.id] = HybridResult(
            id=result.id,
            vector_score=result.score,
            combined_score=result.score * vector_weight * vector_boost(result.score),
        )

    text_weight = 1.0 - vector_weight
    for doc_id, text_score in text_scores.items():
        existing = combined.get(doc_id)
        if existing is not None and existing.vector_score is not None:
            existing.text_score = text_score
            existing.combined_score = (
                existing.vector_score * vector_weight * vector_boost(existing.vector_score)
                + text_score * text_weight
            )
        else:
            combined[doc_id] = HybridResult(
                id=doc_id, text_score=text_score, combined_score=text_score * text_weight
            )

    ordered = sorted(combined.values(), key=lambda r: (-r.combined_score, r.id))
    return ordered[:limit]
