from __future__ import annotations
"""
Hybrid retrieval = title full-text (BM25) + semantic (embedding cosine),
merged with Reciprocal Rank Fusion.

On top of plain RRF:
- semantic-only hits above VECTOR_ONLY_MIN_SCORE get a small additive boost
- hits present in both lists are multiplied by BOTH_LISTS_MULTIPLIER
- a popularity-floor probe keeps strong semantic matches that the
  ``pop_min`` filter would otherwise hide when the filtered list is thin
"""

import math
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, List, Sequence

from loguru import logger

from .config import (
    BOTH_LISTS_MULTIPLIER,
    POP_PROBE_LIMIT_RATIO,
    POP_PROBE_MIN_SCORE,
    POP_PROBE_TRIGGER_RATIO,
    RRF_K,
    VECTOR_ONLY_BOOST,
    VECTOR_ONLY_MIN_SCORE,
)
from .pipeline_types import Candidate, Item, RecommendationFilters
from .store import Hit, ItemStore


# ---------------------------------------------------------------------------
# Fusion
# ---------------------------------------------------------------------------

def reciprocal_rank_fusion(ranked_lists: Sequence[Sequence[str]], k: int = RRF_K) -> Dict[str, float]:
    """sum over lists of 1 / (k + rank), rank 1-based."""
    scores: Dict[str, float] = {}
    for ranked in ranked_lists:
        for rank, item_id in enumerate(ranked, start=1):
            scores[item_id] = scores.get(item_id, 0.0) + 1.0 / (k + rank)
    return scores


def enhance_fused_scores(
    fused: Dict[str, float],
    lexical_scores: Dict[str, float],
    vector_scores: Dict[str, float],
) -> Dict[str, float]:
    out: Dict[str, float] = {}
    for item_id, score in fused.items():
        in_lex = item_id in lexical_scores
        vec = vector_scores.get(item_id)
        if vec is not None and not in_lex and vec > VECTOR_ONLY_MIN_SCORE:
            score += VECTOR_ONLY_BOOST * vec
        if vec is not None and in_lex:
            score *= BOTH_LISTS_MULTIPLIER
        out[item_id] = score
    return out


def _dedupe_hits(hits: Sequence[Hit]) -> List[Hit]:
    seen = set()
    out: List[Hit] = []
    for item, score in hits:
        if item.id in seen:
            continue
        seen.add(item.id)
        out.append((item, score))
    return out


def _popularity_probe(
    store: ItemStore,
    embedding: Sequence[float],
    filters: RecommendationFilters,
    limit: int,
) -> List[Hit]:
    """Strong semantic matches just below the popularity floor."""
    probe_limit = int(math.floor(limit * POP_PROBE_LIMIT_RATIO))
    if probe_limit <= 0:
        return []
    hits = store.semantic_search(embedding, filters.relaxed(pop_min=None), probe_limit)
    return [
        (item, score)
        for item, score in hits
        if score > POP_PROBE_MIN_SCORE and item.popularity < (filters.pop_min or 0)
    ]


# ---------------------------------------------------------------------------
# Main entry
# ---------------------------------------------------------------------------

def retrieve_candidates(
    store: ItemStore,
    query: str,
    embedding: Sequence[float],
    filters: RecommendationFilters,
    limit: int,
) -> List[Candidate]:
    """
    Run both searches concurrently and fuse them.

    Returns candidates sorted by fused score descending (id ascending on
    ties). Each candidate keeps its raw ``fts_score`` / ``vector_score``
    when the corresponding search matched.
    """
    has_vec = len(embedding) > 0
    with ThreadPoolExecutor(max_workers=2, thread_name_prefix="retrieve") as pool:
        lex_future = pool.submit(store.lexical_search, query, filters, limit)
        vec_future = pool.submit(store.semantic_search, embedding, filters, limit) if has_vec else None
        lexical: List[Hit] = lex_future.result()
        semantic: List[Hit] = vec_future.result() if vec_future is not None else []

    if (
        filters.pop_min is not None
        and has_vec
        and len(semantic) < limit * POP_PROBE_TRIGGER_RATIO
    ):
        probe = _popularity_probe(store, embedding, filters, limit)
        if probe:
            logger.debug("Popularity probe added {} semantic hits below popMin={}", len(probe), filters.pop_min)
        semantic = _dedupe_hits(list(semantic) + probe)

    items: Dict[str, Item] = {}
    lexical_scores: Dict[str, float] = {}
    vector_scores: Dict[str, float] = {}
    for item, score in lexical:
        items.setdefault(item.id, item)
        lexical_scores.setdefault(item.id, float(score))
    for item, score in semantic:
        items.setdefault(item.id, item)
        vector_scores.setdefault(item.id, float(score))

    fused = reciprocal_rank_fusion(
        [[item.id for item, _ in lexical], [item.id for item, _ in semantic]]
    )
    fused = enhance_fused_scores(fused, lexical_scores, vector_scores)

    candidates = [
        Candidate(
            id=item_id,
            item=items[item_id],
            fused_score=score,
            fts_score=lexical_scores.get(item_id),
            vector_score=vector_scores.get(item_id),
        )
        for item_id, score in fused.items()
    ]
    candidates.sort(key=lambda c: (-c.fused_score, c.id))

    logger.debug(
        "Retrieved {} candidates (lexical={}, semantic={}) for '{}'",
        len(candidates), len(lexical), len(semantic), query,
    )
    return candidates
