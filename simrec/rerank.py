# simrec/rerank.py
from __future__ import annotations

import threading
from datetime import datetime
from typing import Dict, List, Optional, Sequence

import httpx
from loguru import logger

from . import config
from .config import EngineSettings
from .pipeline_types import Candidate, Item

ScoreMap = Dict[str, float]


# ---------------------------------------------------------------------------
# Heuristic baseline
# ---------------------------------------------------------------------------

def _sort_by_relevance(candidates: List[Candidate]) -> List[Candidate]:
    return sorted(candidates, key=lambda c: (-c.relevance, c.id))


def heuristic_rerank(candidates: Sequence[Candidate], current_year: Optional[int] = None) -> List[Candidate]:
    """
    rerank_score = fused + popularity/100 - |year - now|/1000 (no penalty
    when the year is unknown). Always computed, also when an external
    reranker answers, so unscored candidates keep a comparable value.
    """
    now = current_year or datetime.now().year
    for c in candidates:
        year_penalty = abs(c.item.year - now) / 1000.0 if c.item.year else 0.0
        c.rerank_score = c.fused_score + c.item.popularity / 100.0 - year_penalty
    return _sort_by_relevance(list(candidates))


def apply_scores(baseline: Sequence[Candidate], scores: ScoreMap) -> List[Candidate]:
    """Overwrite rerank_score for scored ids only, then re-sort the full set."""
    for c in baseline:
        if c.id in scores:
            c.rerank_score = float(scores[c.id])
    return _sort_by_relevance(list(baseline))


# ---------------------------------------------------------------------------
# Texts sent to the external services
# ---------------------------------------------------------------------------

def build_document_text(item: Item) -> str:
    segments = [item.title]
    if item.genres:
        segments.append(", ".join(item.genres))
    if item.synopsis:
        segments.append(item.synopsis)
    if item.creators:
        segments.append(f"Creators: {', '.join(item.creators)}")
    return "\n".join(segments)


def build_enhanced_query(query: str, anchor: Optional[Item]) -> str:
    """
    Wrap the query with anchor context so the reranker scores "similar to X"
    rather than lexical closeness to the raw query text.
    """
    if anchor is None:
        return query

    parts = [f'Similar to "{anchor.title}"']
    if anchor.synopsis:
        preview = anchor.synopsis[:100].replace("\n", " ")
        parts.append(f"({preview}...)")
    if anchor.genres:
        parts.append(f"Genres: {', '.join(anchor.genres[:3])}")
    if anchor.creators:
        parts.append(f"By: {', '.join(anchor.creators[:2])}")
    parts.append("Find shows/movies with similar themes, creators, style, or narrative structure.")
    return ". ".join(parts)


# ---------------------------------------------------------------------------
# External rerankers
# ---------------------------------------------------------------------------

class Reranker:
    name = "base"

    def score(
        self,
        query: str,
        candidates: Sequence[Candidate],
        anchor: Optional[Item] = None,
        locale: str = "en",
    ) -> Optional[ScoreMap]:
        raise NotImplementedError


def _json_headers(api_key: Optional[str]) -> dict:
    headers = {"Content-Type": "application/json", "User-Agent": config.HTTP_USER_AGENT}
    if api_key:
        headers["Authorization"] = f"Bearer {api_key}"
    return headers


class CohereReranker(Reranker):
    name = "cohere"

    def __init__(self, api_key: str, timeout_ms: int = config.RERANK_TIMEOUT_MS, url: str = config.COHERE_RERANK_URL):
        self.api_key = api_key
        self.url = url
        self.timeout = httpx.Timeout(timeout_ms / 1000.0, connect=config.HTTP_CONNECT_TIMEOUT)

    def score(self, query, candidates, anchor=None, locale="en") -> Optional[ScoreMap]:
        body = {
            "query": build_enhanced_query(query, anchor),
            "top_n": len(candidates),
            "documents": [
                {
                    "id": c.id,
                    "title": c.item.title,
                    "text": build_document_text(c.item),
                    "metadata": {
                        "type": c.item.type,
                        "year": c.item.year,
                        "popularity": c.item.popularity,
                    },
                }
                for c in candidates
            ],
        }
        with httpx.Client(timeout=self.timeout) as client:
            r = client.post(self.url, json=body, headers=_json_headers(self.api_key))
            r.raise_for_status()
            payload = r.json() or {}

        results = payload.get("results") or []
        if not results:
            return None
        scores: ScoreMap = {}
        for pos, result in enumerate(results):
            idx = result.get("index")
            if not isinstance(idx, int) or not 0 <= idx < len(candidates):
                continue
            rel = result.get("relevance_score")
            scores[candidates[idx].id] = float(rel) if isinstance(rel, (int, float)) else float(len(results) - pos)
        return scores


class HttpReranker(Reranker):
    """Generic JSON reranker: {query, locale, candidates[]} -> {results: [{id, score}]}."""

    name = "lightweight"

    def __init__(self, url: str, api_key: Optional[str] = None, timeout_ms: int = config.RERANK_TIMEOUT_MS):
        self.url = url
        self.api_key = api_key
        self.timeout = httpx.Timeout(timeout_ms / 1000.0, connect=config.HTTP_CONNECT_TIMEOUT)

    def score(self, query, candidates, anchor=None, locale="en") -> Optional[ScoreMap]:
        body = {
            "query": build_enhanced_query(query, anchor),
            "locale": locale,
            "candidates": [
                {
                    "id": c.id,
                    "title": c.item.title,
                    "synopsis": c.item.synopsis,
                    "genres": c.item.genres,
                    "popularity": c.item.popularity,
                    "type": c.item.type,
                    "year": c.item.year,
                }
                for c in candidates
            ],
        }
        with httpx.Client(timeout=self.timeout) as client:
            r = client.post(self.url, json=body, headers=_json_headers(self.api_key))
            r.raise_for_status()
            payload = r.json() or {}

        scores: ScoreMap = {}
        for result in payload.get("results") or []:
            s = result.get("score")
            if isinstance(s, (int, float)) and result.get("id") is not None:
                scores[str(result["id"])] = float(s)
        return scores or None


class CrossEncoderReranker(Reranker):
    """Local cross-encoder (sentence-transformers); needs the 'local-models' extra."""

    name = "cross-encoder"

    def __init__(self, model_name: str):
        try:
            from sentence_transformers import CrossEncoder
        except ImportError as e:
            raise ImportError(
                "RERANK_LOCAL_MODEL needs the 'local-models' extra (pip install simrec[local-models])"
            ) from e
        logger.info("Loading cross-encoder reranker: {}", model_name)
        self.model = CrossEncoder(model_name, device="cpu")

    def score(self, query, candidates, anchor=None, locale="en") -> Optional[ScoreMap]:
        if not candidates:
            return None
        enhanced = build_enhanced_query(query, anchor)
        pairs = [(enhanced, build_document_text(c.item)) for c in candidates]
        raw = self.model.predict(pairs)
        return {c.id: float(s) for c, s in zip(candidates, raw)}


# ---------------------------------------------------------------------------
# Chain (process-wide)
# ---------------------------------------------------------------------------

def build_reranker_chain(settings: EngineSettings) -> List[Reranker]:
    chain: List[Reranker] = []
    if not settings.rerank_enabled:
        return chain
    if settings.cohere_api_key:
        chain.append(CohereReranker(settings.cohere_api_key, settings.rerank_timeout_ms))
    if settings.llm_rerank_url:
        chain.append(HttpReranker(settings.llm_rerank_url, settings.llm_rerank_api_key, settings.rerank_timeout_ms))
    if settings.rerank_local_model:
        try:
            chain.append(CrossEncoderReranker(settings.rerank_local_model))
        except (ImportError, OSError) as e:
            logger.warning("Local cross-encoder '{}' unavailable: {}", settings.rerank_local_model, e)
    logger.info("Reranker chain: {}", [r.name for r in chain] or "heuristic only")
    return chain


_CHAIN: Optional[List[Reranker]] = None
_CHAIN_LOCK = threading.Lock()


def get_reranker_chain(settings: Optional[EngineSettings] = None) -> List[Reranker]:
    global _CHAIN
    if _CHAIN is not None:
        return _CHAIN
    with _CHAIN_LOCK:
        if _CHAIN is None:
            _CHAIN = build_reranker_chain(settings or config.load_settings())
    return _CHAIN


def reset_reranker_chain() -> None:
    global _CHAIN
    with _CHAIN_LOCK:
        _CHAIN = None


# ---------------------------------------------------------------------------
# Main entry
# ---------------------------------------------------------------------------

def rerank_candidates(
    query: str,
    candidates: Sequence[Candidate],
    anchor: Optional[Item] = None,
    locale: str = "en",
    top_k: int = config.RERANK_TOP_K,
    chain: Optional[Sequence[Reranker]] = None,
) -> List[Candidate]:
    """
    Heuristic baseline, then the first external reranker in ``chain`` that
    returns a non-empty score map for the top ``top_k`` candidates.

    Never raises on service failure; the heuristic order is the floor.
    """
    if not candidates:
        return []

    top_n = min(top_k, len(candidates))
    top = list(candidates[:top_n])
    baseline = heuristic_rerank(candidates)

    for reranker in chain or []:
        try:
            scores = reranker.score(query, top, anchor=anchor, locale=locale)
        except Exception as e:
            logger.warning("{} rerank failed: {}", reranker.name, e)
            continue
        if scores:
            logger.debug("{} reranker scored {} candidates", reranker.name, len(scores))
            return apply_scores(baseline, scores)

    return baseline
