from __future__ import annotations

"""
Anchor-vs-candidate boosts and the single combined score used for every
ordering decision after reranking.

All boost functions are pure, return values in [0, 1], and return 0 when
the anchor is missing or either side lacks the relevant field.
"""

import math
from dataclasses import asdict, dataclass
from typing import Dict, List, Optional, Sequence, Set, Tuple

from .config import (
    DEFAULT_WEIGHTS,
    RESERVE_CAP_MIN,
    RESERVE_CAP_RATIO,
    RESERVE_CREATOR_MIN,
    RESERVE_VECTOR_MIN,
    ScoreWeights,
)
from .normalize import STOP_WORDS, normalize_for_comparison, tokenize
from .pipeline_types import Candidate, Item
from .text_utils import clamp, jaccard_similarity

CREATOR_POSITION_WEIGHTS = (1.0, 0.7, 0.5)
SYNOPSIS_MIN_WORD_LEN = 4
SYNOPSIS_OVERLAP_FLOOR = 0.15
SYNOPSIS_OVERLAP_CEIL = 0.6


def _normalized_set(values: Sequence[str]) -> Set[str]:
    return {n for n in (normalize_for_comparison(v) for v in values or []) if n}


def _shared_count(a: Sequence[str], b: Sequence[str]) -> int:
    return len(_normalized_set(a) & _normalized_set(b))


# ---------------------------------------------------------------------------
# Boosts
# ---------------------------------------------------------------------------

def creator_boost(anchor: Optional[Item], item: Item) -> float:
    """Position-weighted overlap: anchor's 1st creator 1.0, 2nd 0.7, rest 0.5."""
    if anchor is None or not anchor.creators or not item.creators:
        return 0.0
    candidate_creators = _normalized_set(item.creators)
    total = matched = 0.0
    for pos, name in enumerate(anchor.creators):
        weight = CREATOR_POSITION_WEIGHTS[min(pos, len(CREATOR_POSITION_WEIGHTS) - 1)]
        total += weight
        if normalize_for_comparison(name) in candidate_creators:
            matched += weight
    return clamp(matched / total) if total else 0.0


def genre_boost(anchor: Optional[Item], item: Item) -> float:
    if anchor is None:
        return 0.0
    shared = _shared_count(anchor.genres, item.genres)
    if shared >= 3:
        return 1.0
    return {0: 0.0, 1: 0.4, 2: 0.7}[shared]


def tag_boost(anchor: Optional[Item], item: Item) -> float:
    if anchor is None:
        return 0.0
    shared = _shared_count(anchor.tags, item.tags)
    if shared >= 5:
        return 1.0
    if shared >= 3:
        return 0.8
    return {0: 0.0, 1: 0.3, 2: 0.5}[shared]


def franchise_boost(anchor: Optional[Item], item: Item) -> float:
    if anchor is None or not anchor.franchise_key or not item.franchise_key:
        return 0.0
    a = normalize_for_comparison(anchor.franchise_key)
    return 1.0 if a and a == normalize_for_comparison(item.franchise_key) else 0.0


def _synopsis_words(text: Optional[str]) -> Set[str]:
    return {w for w in tokenize(text) if len(w) >= SYNOPSIS_MIN_WORD_LEN and w not in STOP_WORDS}


def synopsis_boost(anchor: Optional[Item], item: Item) -> float:
    if anchor is None or not anchor.synopsis or not item.synopsis:
        return 0.0
    overlap = jaccard_similarity(_synopsis_words(anchor.synopsis), _synopsis_words(item.synopsis))
    if overlap < SYNOPSIS_OVERLAP_FLOOR:
        return 0.0
    if overlap >= SYNOPSIS_OVERLAP_CEIL:
        return 1.0
    return (overlap - SYNOPSIS_OVERLAP_FLOOR) / (SYNOPSIS_OVERLAP_CEIL - SYNOPSIS_OVERLAP_FLOOR)


def year_boost(anchor: Optional[Item], item: Item) -> float:
    if anchor is None or not anchor.year or not item.year:
        return 0.0
    delta = abs(anchor.year - item.year)
    if delta <= 5:
        return 1.0
    if delta <= 10:
        return 0.5
    if delta <= 15:
        return 0.3 if anchor.year // 10 == item.year // 10 else 0.2
    return 0.0


def _banded(delta: float, bands: Sequence[Tuple[float, float]]) -> float:
    for limit, value in bands:
        if delta <= limit:
            return value
    return 0.0


def popularity_boost(anchor: Optional[Item], item: Item) -> float:
    if anchor is None:
        return 0.0
    delta = abs(anchor.popularity - item.popularity)
    return _banded(delta, ((20, 1.0), (40, 0.5), (60, 0.2)))


def rating_boost(anchor: Optional[Item], item: Item) -> float:
    """Rating closeness (0-100 scale); popularity stands in when either rating is unknown."""
    if anchor is None:
        return 0.0
    if anchor.rating is not None and item.rating is not None:
        delta = abs(anchor.rating - item.rating)
    else:
        delta = abs(anchor.popularity - item.popularity)
    return _banded(delta, ((10, 1.0), (20, 0.6), (30, 0.3)))


def cast_boost(anchor: Optional[Item], item: Item) -> float:
    if anchor is None:
        return 0.0
    shared = _shared_count(anchor.cast, item.cast)
    if shared >= 2:
        return 1.0
    return 0.5 if shared == 1 else 0.0


@dataclass(frozen=True)
class BoostBreakdown:
    creator: float = 0.0
    genre: float = 0.0
    tag: float = 0.0
    franchise: float = 0.0
    synopsis: float = 0.0
    year: float = 0.0
    popularity: float = 0.0
    rating: float = 0.0
    cast: float = 0.0

    def as_dict(self) -> Dict[str, float]:
        return asdict(self)


def compute_boosts(anchor: Optional[Item], item: Item) -> BoostBreakdown:
    if anchor is None:
        return BoostBreakdown()
    return BoostBreakdown(
        creator=creator_boost(anchor, item),
        genre=genre_boost(anchor, item),
        tag=tag_boost(anchor, item),
        franchise=franchise_boost(anchor, item),
        synopsis=synopsis_boost(anchor, item),
        year=year_boost(anchor, item),
        popularity=popularity_boost(anchor, item),
        rating=rating_boost(anchor, item),
        cast=cast_boost(anchor, item),
    )


# ---------------------------------------------------------------------------
# Combined score
# ---------------------------------------------------------------------------

def effective_weights(anchor: Optional[Item], weights: ScoreWeights = DEFAULT_WEIGHTS) -> ScoreWeights:
    """An anchor without creators hands the creator weight to genre and synopsis, half each."""
    if anchor is not None and anchor.creators:
        return weights
    half = weights.creator / 2.0
    return weights.model_copy(
        update={
            "creator": 0.0,
            "genre": weights.genre + half,
            "synopsis": weights.synopsis + half,
        }
    )


def combined_score(
    candidate: Candidate,
    anchor: Optional[Item],
    weights: ScoreWeights = DEFAULT_WEIGHTS,
) -> float:
    w = effective_weights(anchor, weights)
    b = compute_boosts(anchor, candidate.item)
    return (
        w.vector * (candidate.vector_score or 0.0)
        + w.rerank * (candidate.rerank_score or 0.0)
        + w.fused * candidate.fused_score
        + w.creator * b.creator
        + w.tag * b.tag
        + w.genre * b.genre
        + w.franchise * b.franchise
        + w.synopsis * b.synopsis
        + w.year * b.year
        + w.popularity * b.popularity
        + w.rating * b.rating
        + w.cast * b.cast
    )


def sort_by_combined(
    candidates: Sequence[Candidate],
    anchor: Optional[Item],
    weights: ScoreWeights = DEFAULT_WEIGHTS,
) -> List[Candidate]:
    scored = [(combined_score(c, anchor, weights), c) for c in candidates]
    scored.sort(key=lambda sc: (-sc[0], sc[1].id))
    return [c for _, c in scored]


def reserve_cap(desired: int) -> int:
    return max(RESERVE_CAP_MIN, int(math.ceil(desired * RESERVE_CAP_RATIO)))


def reserve_high_relevance(
    ranked: Sequence[Candidate],
    anchor: Optional[Item],
    desired: int,
) -> Tuple[List[Candidate], List[Candidate]]:
    """
    Split ``ranked`` into (reserved, remainder).

    Reserved = creator_boost >= RESERVE_CREATOR_MIN first, then
    vector_score >= RESERVE_VECTOR_MIN, in ``ranked`` order, capped at
    ``reserve_cap(desired)``. The anchor is dropped from both lists.
    """
    anchor_id = anchor.id if anchor is not None else None
    eligible = [c for c in ranked if c.id != anchor_id]

    by_creator = [c for c in eligible if creator_boost(anchor, c.item) >= RESERVE_CREATOR_MIN]
    creator_ids = {c.id for c in by_creator}
    by_vector = [
        c for c in eligible
        if c.id not in creator_ids and (c.vector_score or 0.0) >= RESERVE_VECTOR_MIN
    ]
    reserved = (by_creator + by_vector)[: reserve_cap(desired)]

    reserved_ids = {c.id for c in reserved}
    remainder = [c for c in eligible if c.id not in reserved_ids]
    return reserved, remainder
