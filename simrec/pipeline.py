from __future__ import annotations

"""
Recommendation orchestrator.

search mode:
    seed -> [per relaxation step] retrieve -> drop anchor -> front-load
    semantic hits -> rerank -> combined sort -> reserve high-relevance ->
    diversify remainder -> temporal pass -> merge
    ... then a fused-score fallback when the result is still too short.

random mode:
    uniform store sample, no anchor, no ranking.
"""

import time
from typing import Dict, List, Optional, Sequence

from loguru import logger

from .config import (
    DEFAULT_LOCALE,
    DEFAULT_WEIGHTS,
    FALLBACK_RETRIEVAL_LIMIT,
    FRONT_LOAD_VECTOR_MIN,
    MMR_LAMBDA_REMAINDER,
    POOL_TARGET_MIN,
    POOL_TRIM_THRESHOLD,
    RANDOM_FETCH_MULTIPLIER,
    RESULT_DEFAULT,
    RESULT_MAX,
    RESULT_MIN,
    RETRIEVAL_LIMIT,
    EngineSettings,
    RecommendationRequest,
    ScoreWeights,
)
from .diversity import apply_diversity, apply_temporal_diversity
from .embeddings import Embeddings
from .normalize import franchise_group_key
from .pipeline_types import Candidate, Item, RecommendationFilters, RecommendationResult
from .providers import ProviderRegistry
from .rerank import Reranker, rerank_candidates
from .retrieval import retrieve_candidates
from .scoring import combined_score, reserve_high_relevance, sort_by_combined
from .seed import SeedResolver
from .store import ItemStore


class Deadline:
    """Request-scoped time budget; once expired, optional external calls are skipped."""

    def __init__(self, budget_ms: int):
        self.budget_ms = budget_ms
        self._expires_at = time.monotonic() + budget_ms / 1000.0

    def remaining_ms(self) -> float:
        return max(0.0, (self._expires_at - time.monotonic()) * 1000.0)

    def expired(self) -> bool:
        return time.monotonic() >= self._expires_at


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def desired_count(limit: Optional[int]) -> int:
    n = RESULT_DEFAULT if limit is None else int(limit)
    return min(max(n, 1), RESULT_MAX)


def build_relaxations(base: RecommendationFilters) -> List[RecommendationFilters]:
    """
    base -> popMin x0.6 -> no popMin -> year window +/-10 -> no year bounds.

    Each step relaxes the base filter on one axis only; duplicates are dropped
    while keeping first-seen order.
    """
    steps = [base]
    if base.pop_min is not None and base.pop_min > 0:
        steps.append(base.relaxed(pop_min=max(0.0, base.pop_min * 0.6)))
        steps.append(base.relaxed(pop_min=None))
    if base.year_min is not None or base.year_max is not None:
        steps.append(
            base.relaxed(
                year_min=base.year_min - 10 if base.year_min is not None else None,
                year_max=base.year_max + 10 if base.year_max is not None else None,
            )
        )
        steps.append(base.relaxed(year_min=None, year_max=None))

    unique: Dict[tuple, RecommendationFilters] = {}
    for f in steps:
        unique.setdefault(f.key(), f)
    return list(unique.values())


def _vector(c: Candidate) -> float:
    return c.vector_score or 0.0


def front_load_semantic(candidates: Sequence[Candidate]) -> List[Candidate]:
    """Strong semantic hits (by vector score) ahead of the rest (by fused score)."""
    strong = [c for c in candidates if _vector(c) > FRONT_LOAD_VECTOR_MIN]
    weak = [c for c in candidates if _vector(c) <= FRONT_LOAD_VECTOR_MIN]
    strong.sort(key=lambda c: (-_vector(c), c.id))
    weak.sort(key=lambda c: (-c.fused_score, c.id))
    return strong + weak


def trim_pool(candidates: Sequence[Candidate], desired: int) -> List[Candidate]:
    """Cap a front-loaded pool at max(POOL_TARGET_MIN, 2 x desired)."""
    target = max(POOL_TARGET_MIN, desired * 2)
    return list(candidates[:target])


def _unique_franchises(candidates: Sequence[Candidate]) -> List[Candidate]:
    seen = set()
    out: List[Candidate] = []
    for c in candidates:
        key = franchise_group_key(c.item.franchise_key, c.item.title)
        if key in seen:
            continue
        seen.add(key)
        out.append(c)
    return out


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

class RecommendationEngine:
    def __init__(
        self,
        store: ItemStore,
        embeddings: Embeddings,
        registry: Optional[ProviderRegistry] = None,
        reranker_chain: Optional[Sequence[Reranker]] = None,
        weights: ScoreWeights = DEFAULT_WEIGHTS,
        settings: Optional[EngineSettings] = None,
    ):
        self.store = store
        self.embeddings = embeddings
        self.registry = registry
        self.reranker_chain = list(reranker_chain or [])
        self.weights = weights
        self.settings = settings or EngineSettings()
        self.seed_resolver = SeedResolver(store, embeddings, registry)

    # ------------------------------------------------------------------
    # search mode
    # ------------------------------------------------------------------

    def _run_step(
        self,
        query: str,
        embedding: List[float],
        filters: RecommendationFilters,
        anchor: Optional[Item],
        desired: int,
        locale: str,
        deadline: Deadline,
    ) -> tuple:
        candidates = retrieve_candidates(self.store, query, embedding, filters, RETRIEVAL_LIMIT)
        seen_count = len(candidates)
        if not candidates:
            return [], seen_count

        anchor_id = anchor.id if anchor is not None else None
        pool = front_load_semantic([c for c in candidates if c.id != anchor_id])
        if len(pool) > POOL_TRIM_THRESHOLD:
            pool = trim_pool(pool, desired)
        if not pool:
            return [], seen_count

        if deadline.expired():
            logger.warning("Request deadline passed; skipping external rerankers")
            chain: List[Reranker] = []
        else:
            chain = self.reranker_chain
        reranked = rerank_candidates(query, pool, anchor=anchor, locale=locale, chain=chain)

        ranked = sort_by_combined(reranked, anchor, self.weights)
        reserved, remainder = reserve_high_relevance(ranked, anchor, desired)
        diversified: List[Candidate] = []
        if remainder:
            diversified = apply_diversity(
                remainder, max(1, desired - len(reserved)), MMR_LAMBDA_REMAINDER
            )
            diversified = apply_temporal_diversity(diversified)

        assembled = _unique_franchises(sort_by_combined(reserved + diversified, anchor, self.weights))
        return assembled[:desired], seen_count

    def recommend(self, request: RecommendationRequest) -> RecommendationResult:
        if request.mode == "random":
            return self.recommend_random(request)

        query = (request.query or "").strip()
        locale = request.locale or DEFAULT_LOCALE
        desired = desired_count(request.limit)
        base = RecommendationFilters(
            type=request.type,
            year_min=request.yearMin,
            year_max=request.yearMax,
            pop_min=request.popMin,
        )
        deadline = Deadline(self.settings.request_deadline_ms)

        seed = self.seed_resolver.resolve(query, base.type)
        anchor = seed.anchor
        embedding = list(seed.embedding)
        if not embedding:
            embedding = self.seed_resolver.embed_query(query)

        relaxations = build_relaxations(base)
        min_required = min(RESULT_MIN, desired)
        final: List[Item] = []
        seen_ids = set()
        seen_franchises = set()
        total_candidates = 0
        applied = 0

        for step, filters in enumerate(relaxations):
            picked, seen_count = self._run_step(query, embedding, filters, anchor, desired, locale, deadline)
            total_candidates = max(total_candidates, seen_count)
            if not picked:
                logger.info("No candidates at relaxation step {} ({})", step, filters)
                applied += 1
                continue

            for c in picked:
                if len(final) >= desired:
                    break
                fkey = franchise_group_key(c.item.franchise_key, c.item.title)
                if c.id in seen_ids or fkey in seen_franchises:
                    continue
                seen_ids.add(c.id)
                seen_franchises.add(fkey)
                final.append(c.item.with_score(combined_score(c, anchor, self.weights)))

            if len(final) >= desired:
                break
            if len(final) >= min_required and step == len(relaxations) - 1:
                break
            applied += 1

        if len(final) < min_required:
            logger.warning(
                "Only {} recommendations for '{}'; falling back to top fused candidates",
                len(final), query,
            )
            fallback = retrieve_candidates(
                self.store, query, embedding, relaxations[-1], FALLBACK_RETRIEVAL_LIMIT
            )
            anchor_id = anchor.id if anchor is not None else None
            fallback = [c for c in fallback if c.id != anchor_id and c.id not in seen_ids]
            fallback.sort(key=lambda c: (-c.fused_score, c.id))
            for c in fallback[: min_required - len(final)]:
                final.append(c.item.with_score(c.fused_score))

        final = final[:desired]
        if not final:
            logger.warning("No recommendations generated after {} relaxations", applied)
        elif len(final) < RESULT_MIN:
            logger.warning("Only {}/{} minimum recommendations generated", len(final), RESULT_MIN)

        return RecommendationResult(
            anchor=anchor,
            items=final,
            debug={"relaxations": applied, "totalCandidates": total_candidates},
        )

    # ------------------------------------------------------------------
    # random mode
    # ------------------------------------------------------------------

    def recommend_random(self, request: RecommendationRequest) -> RecommendationResult:
        desired = desired_count(request.limit)
        fetch = min(desired * RANDOM_FETCH_MULTIPLIER, RESULT_MAX * 2)
        filters = RecommendationFilters(
            type=request.type,
            year_min=request.yearMin,
            year_max=request.yearMax,
            pop_min=request.popMin,
        )
        rows = self.store.random_sample(filters, fetch)

        unique: Dict[str, Item] = {}
        for item in rows:
            unique.setdefault(item.id, item)
        items = [it.with_score(0.0) for it in list(unique.values())[:desired]]

        return RecommendationResult(
            anchor=None,
            items=items,
            debug={"relaxations": 0, "totalCandidates": len(rows)},
        )


# ---------------------------------------------------------------------------
# Module-level entry points
# ---------------------------------------------------------------------------

def build_recommendations(
    request: RecommendationRequest,
    engine: Optional[RecommendationEngine] = None,
) -> RecommendationResult:
    if engine is None:
        from ._singletons import get_engine

        engine = get_engine()
    return engine.recommend(request)


def build_random_recommendations(
    request: RecommendationRequest,
    engine: Optional[RecommendationEngine] = None,
) -> RecommendationResult:
    if engine is None:
        from ._singletons import get_engine

        engine = get_engine()
    return engine.recommend_random(request)
