from __future__ import annotations
from functools import cmp_to_key
from typing import List, Optional, Sequence

import numpy as np

from .config import MMR_LAMBDA, MMR_VECTOR_BOOST_MIN, TITLE_VECTOR_DIM, YEAR_SIMILARITY_SPAN
from .normalize import normalize_for_comparison, tokenize
from .pipeline_types import Candidate
from .text_utils import clamp, hashed_vector, jaccard_similarity


def year_similarity(year_a: Optional[int], year_b: Optional[int]) -> float:
    if not year_a or not year_b:
        return 0.0
    delta = abs(year_a - year_b)
    if delta >= YEAR_SIMILARITY_SPAN:
        return 0.0
    return clamp(1.0 - delta / YEAR_SIMILARITY_SPAN)


def mmr_relevance(candidate: Candidate) -> float:
    rel = candidate.relevance
    vec = candidate.vector_score or 0.0
    if vec > MMR_VECTOR_BOOST_MIN:
        rel += 0.5 * vec
    return rel


def _seed_order(a: Candidate, b: Candidate) -> int:
    a_vec, b_vec = a.vector_score or 0.0, b.vector_score or 0.0
    a_high, b_high = a_vec > MMR_VECTOR_BOOST_MIN, b_vec > MMR_VECTOR_BOOST_MIN
    if a_high != b_high:
        return -1 if a_high else 1
    if a_vec > 0 and b_vec > 0 and a_vec != b_vec:
        return -1 if a_vec > b_vec else 1
    if a.relevance != b.relevance:
        return -1 if a.relevance > b.relevance else 1
    return -1 if a.id < b.id else (1 if a.id > b.id else 0)


def _title_matrix(pool: Sequence[Candidate]) -> np.ndarray:
    rows = np.array(
        [hashed_vector(tokenize(c.item.title), TITLE_VECTOR_DIM) for c in pool], dtype="float64"
    )
    norms = np.linalg.norm(rows, axis=1, keepdims=True)
    norms[norms == 0] = 1.0
    return rows / norms


def mmr_select(
    pool: Sequence[Candidate],
    k: int,
    lambda_: float = MMR_LAMBDA,
) -> List[Candidate]:
    """
    Select up to ``k`` candidates using Maximal Marginal Relevance (MMR).

    Parameters
    ----------
    pool :
        Candidates to choose from (already franchise-deduplicated).
    k :
        Maximum number of items to return.
    lambda_ :
        Tradeoff between relevance and diversity.  ``1.0`` = relevance only.

    Returns
    -------
    List[Candidate]
        Selected candidates in selection order. When ``len(pool) <= k`` the
        pool is returned unchanged.

    Similarity between two items is
    ``0.6 * genre Jaccard + 0.15 * hashed title cosine + 0.25 * year closeness``
    (clamped to [0, 1]). The first pick favours strong semantic matches
    (vector score > 0.4), then falls back to rerank/fused relevance.
    """
    pool = list(pool)
    if len(pool) <= k:
        return pool
    if k <= 0:
        return []

    genres = [{normalize_for_comparison(g) for g in c.item.genres} - {""} for c in pool]
    titles = _title_matrix(pool)
    relevance = [mmr_relevance(c) for c in pool]

    seed = min(range(len(pool)), key=cmp_to_key(lambda i, j: _seed_order(pool[i], pool[j])))
    selected: List[int] = [seed]
    remaining = [i for i in range(len(pool)) if i != seed]

    while len(selected) < k and remaining:
        best_idx = -1
        best_mmr = -np.inf
        for i in remaining:
            max_sim = 0.0
            for j in selected:
                sim = clamp(
                    0.6 * jaccard_similarity(genres[i], genres[j])
                    + 0.15 * float(np.dot(titles[i], titles[j]))
                    + 0.25 * year_similarity(pool[i].item.year, pool[j].item.year)
                )
                if sim > max_sim:
                    max_sim = sim
            mmr_score = lambda_ * relevance[i] - (1.0 - lambda_) * max_sim
            if mmr_score > best_mmr:
                best_mmr = mmr_score
                best_idx = i

        if best_idx < 0:
            break
        selected.append(best_idx)
        remaining.remove(best_idx)

    return [pool[i] for i in selected]
