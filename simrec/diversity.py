"""Franchise dedupe, MMR wrapper with exact-count backfill, and the temporal pass."""

from __future__ import annotations

from typing import Dict, List, Optional, Sequence

from loguru import logger

from .balance import balance_types, by_relevance
from .config import MMR_LAMBDA, MMR_LAMBDA_REMAINDER, RESULT_DEFAULT, TEMPORAL_MAX_CONSECUTIVE
from .mmr import mmr_select
from .normalize import franchise_group_key, normalize_for_comparison
from .pipeline_types import Candidate


def dedupe_franchises(candidates: Sequence[Candidate]) -> List[Candidate]:
    """Keep the most relevant candidate per franchise key (title when no key)."""
    best: Dict[str, Candidate] = {}
    for c in by_relevance(candidates):
        key = franchise_group_key(c.item.franchise_key, c.item.title)
        if key not in best:
            best[key] = c
    return list(best.values())


def apply_diversity_with_options(
    candidates: Sequence[Candidate],
    desired: int = RESULT_DEFAULT,
    lambda_: float = MMR_LAMBDA,
    balance_by_type: bool = False,
    enforce_exact_count: bool = False,
) -> List[Candidate]:
    if not candidates or desired <= 0:
        return []

    deduped = dedupe_franchises(candidates)
    pool = balance_types(deduped, desired) if balance_by_type else deduped

    picked = mmr_select(pool, k=desired, lambda_=lambda_)
    if len(picked) >= desired or not enforce_exact_count:
        return picked[:desired]

    seen = {c.id for c in picked}
    filler = by_relevance([c for c in pool if c.id not in seen])[: desired - len(picked)]
    picked = picked + filler

    if len(picked) < desired:
        seen = {c.id for c in picked}
        backfill = by_relevance([c for c in candidates if c.id not in seen])[: desired - len(picked)]
        if backfill:
            logger.debug("Diversity backfilled {} candidates from the pre-dedupe pool", len(backfill))
        picked = picked + backfill

    return picked[:desired]


def apply_diversity(
    candidates: Sequence[Candidate],
    desired: int = RESULT_DEFAULT,
    lambda_: float = MMR_LAMBDA_REMAINDER,
) -> List[Candidate]:
    return apply_diversity_with_options(
        candidates,
        desired=desired,
        lambda_=lambda_,
        balance_by_type=False,
        enforce_exact_count=True,
    )


def _primary_genre(c: Candidate) -> Optional[str]:
    return normalize_for_comparison(c.item.genres[0]) if c.item.genres else None


def apply_temporal_diversity(
    candidates: Sequence[Candidate],
    max_consecutive: int = TEMPORAL_MAX_CONSECUTIVE,
) -> List[Candidate]:
    """
    Limit runs of items sharing a year or a primary genre to
    ``max_consecutive``. On a violation the next later item that differs
    in both is swapped into place and both run counters restart.
    Unknown years/genres never count as a run.
    """
    items = list(candidates)
    year_run = genre_run = 0
    prev_year: Optional[int] = None
    prev_genre: Optional[str] = None

    for i in range(len(items)):
        year = items[i].item.year
        genre = _primary_genre(items[i])
        year_run = year_run + 1 if year is not None and year == prev_year else 1
        genre_run = genre_run + 1 if genre is not None and genre == prev_genre else 1

        if year_run > max_consecutive or genre_run > max_consecutive:
            for j in range(i + 1, len(items)):
                other_year = items[j].item.year
                other_genre = _primary_genre(items[j])
                if (other_year is None or other_year != prev_year) and (
                    other_genre is None or other_genre != prev_genre
                ):
                    items[i], items[j] = items[j], items[i]
                    break
            year_run = genre_run = 1
            year = items[i].item.year
            genre = _primary_genre(items[i])

        prev_year, prev_genre = year, genre

    return items
