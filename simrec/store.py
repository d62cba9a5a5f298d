from __future__ import annotations

"""
Read-only item store behind the three retrieval queries the engine issues:

* lexical_search  - title full-text match ranked by BM25 (rank_bm25)
* semantic_search - cosine similarity over stored embeddings (numpy)
* random_sample   - uniform shuffle of filter-matching rows

plus ``find_seed_match`` (trigram title similarity) for seed resolution.

``CatalogStore`` keeps everything in memory, built once from the catalog
snapshot; it is safe to share between request threads.
"""

import math
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple

import numpy as np
import pandas as pd
from loguru import logger
from rank_bm25 import BM25Okapi

from .catalog_build import parse_list_field, parse_year, load_catalog_snapshot
from .config import SEED_TRIGRAM_THRESHOLD
from .normalize import lexical_terms, matches_all_terms, trigram_similarity
from .pipeline_types import Item, RecommendationFilters, normalize_item_type

Hit = Tuple[Item, float]


class ItemStore(Protocol):
    def lexical_search(self, query: str, filters: RecommendationFilters, limit: int) -> List[Hit]:
        ...

    def semantic_search(
        self, embedding: Sequence[float], filters: RecommendationFilters, limit: int
    ) -> List[Hit]:
        ...

    def random_sample(self, filters: RecommendationFilters, limit: int) -> List[Item]:
        ...

    def find_seed_match(
        self, query: str, item_type: Optional[str] = None, threshold: float = SEED_TRIGRAM_THRESHOLD
    ) -> Optional[Item]:
        ...

    def get(self, item_id: str) -> Optional[Item]:
        ...


# =============================================================================
# Row mapping
# =============================================================================

def _float_or(val: Any, default: Optional[float]) -> Optional[float]:
    try:
        f = float(val)
    except (TypeError, ValueError):
        return default
    return f if math.isfinite(f) else default


def _str_or_none(val: Any) -> Optional[str]:
    if val is None or (isinstance(val, float) and math.isnan(val)):
        return None
    s = str(val).strip()
    return s or None


def item_from_row(row: Dict[str, Any]) -> Item:
    availability = [a for a in parse_list_field(row.get("availability")) if isinstance(a, dict)]
    return Item(
        id=str(row["id"]),
        title=str(row.get("title") or ""),
        type=normalize_item_type(row.get("type")) or "movie",
        year=parse_year(row.get("year")),
        genres=[str(g) for g in parse_list_field(row.get("genres"))],
        tags=[str(t) for t in parse_list_field(row.get("tags"))],
        creators=[str(c) for c in parse_list_field(row.get("creators"))],
        cast=[str(c) for c in parse_list_field(row.get("cast"))],
        synopsis=_str_or_none(row.get("synopsis")),
        popularity=_float_or(row.get("popularity"), 0.0) or 0.0,
        rating=_float_or(row.get("rating"), None),
        franchise_key=_str_or_none(row.get("franchise_key")),
        embedding=[float(x) for x in parse_list_field(row.get("embedding"))],
        availability=availability,
        poster_url=_str_or_none(row.get("poster_url")),
        provider_url=_str_or_none(row.get("provider_url")),
        source=_str_or_none(row.get("source")),
        source_id=_str_or_none(row.get("source_id")),
    )


# =============================================================================
# In-memory store
# =============================================================================

class CatalogStore:
    def __init__(self, items: Sequence[Item], seed: Optional[int] = None):
        self._items: List[Item] = list(items)
        self._by_id: Dict[str, Item] = {it.id: it for it in self._items}
        n = len(self._items)

        self._ids = np.array([it.id for it in self._items], dtype=object)
        self._types = np.array([it.type for it in self._items], dtype=object)
        self._years = np.array(
            [np.nan if it.year is None else float(it.year) for it in self._items], dtype="float64"
        )
        self._pops = np.array([float(it.popularity) for it in self._items], dtype="float64")

        # lexical side: title terms + BM25
        self._title_terms: List[List[str]] = [lexical_terms(it.title) for it in self._items]
        self._bm25: Optional[BM25Okapi] = None
        if n and any(self._title_terms):
            self._bm25 = BM25Okapi(self._title_terms)

        # semantic side: normalised matrix over rows with a vector of the dominant dim
        dims = [len(it.embedding) for it in self._items if it.embedding]
        self.dim = max(set(dims), key=dims.count) if dims else 0
        self._has_vec = np.array([len(it.embedding) == self.dim and self.dim > 0 for it in self._items], dtype=bool)
        matrix = np.zeros((n, max(self.dim, 1)), dtype="float32")
        for i, it in enumerate(self._items):
            if self._has_vec[i]:
                matrix[i] = np.asarray(it.embedding, dtype="float32")
        norms = np.linalg.norm(matrix, axis=1, keepdims=True)
        norms[norms == 0] = 1.0
        self._matrix = matrix / norms

        self._rng = np.random.default_rng(seed)
        self._rng_lock = threading.Lock()

        logger.info(
            "CatalogStore ready: {} items, {} with embeddings (dim={})",
            n, int(self._has_vec.sum()), self.dim,
        )

    # ------------------------------------------------------------------
    # Construction helpers
    # ------------------------------------------------------------------

    @classmethod
    def from_frame(cls, df: pd.DataFrame, seed: Optional[int] = None) -> "CatalogStore":
        items = [item_from_row(r) for r in df.to_dict("records")]
        return cls(items, seed=seed)

    @classmethod
    def from_snapshot(cls, path: Optional[Path] = None, seed: Optional[int] = None) -> "CatalogStore":
        df = load_catalog_snapshot(path) if path is not None else load_catalog_snapshot()
        return cls.from_frame(df, seed=seed)

    def __len__(self) -> int:
        return len(self._items)

    def get(self, item_id: str) -> Optional[Item]:
        return self._by_id.get(item_id)

    def items(self) -> List[Item]:
        return list(self._items)

    # ------------------------------------------------------------------
    # Filters
    # ------------------------------------------------------------------

    def _filter_mask(self, filters: RecommendationFilters, require_year: bool = False) -> np.ndarray:
        mask = np.ones(len(self._items), dtype=bool)
        if filters.type:
            mask &= self._types == filters.type
        year_known = ~np.isnan(self._years)
        if filters.year_min is not None:
            ok = self._years >= filters.year_min
            mask &= (ok & year_known) if require_year else (ok | ~year_known)
        if filters.year_max is not None:
            ok = self._years <= filters.year_max
            mask &= (ok & year_known) if require_year else (ok | ~year_known)
        if filters.pop_min is not None:
            mask &= self._pops >= filters.pop_min
        return mask

    def _ranked(self, idx: np.ndarray, scores: np.ndarray, limit: int) -> List[Hit]:
        order = sorted(idx.tolist(), key=lambda i: (-float(scores[i]), self._ids[i]))
        return [(self._items[i], float(scores[i])) for i in order[: max(0, limit)]]

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def lexical_search(self, query: str, filters: RecommendationFilters, limit: int) -> List[Hit]:
        terms = lexical_terms(query)
        if not terms or self._bm25 is None or limit <= 0:
            return []
        matched = np.array(
            [matches_all_terms(terms, doc) for doc in self._title_terms], dtype=bool
        )
        idx = np.where(matched & self._filter_mask(filters))[0]
        if idx.size == 0:
            return []
        scores = np.asarray(self._bm25.get_scores(terms), dtype="float64")
        return self._ranked(idx, scores, limit)

    def semantic_search(
        self, embedding: Sequence[float], filters: RecommendationFilters, limit: int
    ) -> List[Hit]:
        if not len(embedding) or self.dim == 0 or limit <= 0:
            return []
        if len(embedding) != self.dim:
            logger.warning(
                "Query embedding dim {} does not match stored dim {}; skipping semantic search",
                len(embedding), self.dim,
            )
            return []
        q = np.asarray(embedding, dtype="float32")
        norm = float(np.linalg.norm(q))
        if norm == 0:
            return []
        scores = self._matrix @ (q / norm)
        idx = np.where(self._has_vec & self._filter_mask(filters))[0]
        return self._ranked(idx, scores, limit)

    def random_sample(self, filters: RecommendationFilters, limit: int) -> List[Item]:
        idx = np.where(self._filter_mask(filters, require_year=True))[0]
        if idx.size == 0 or limit <= 0:
            return []
        with self._rng_lock:
            shuffled = self._rng.permutation(idx)
        return [self._items[i] for i in shuffled[:limit]]

    def find_seed_match(
        self, query: str, item_type: Optional[str] = None, threshold: float = SEED_TRIGRAM_THRESHOLD
    ) -> Optional[Item]:
        terms = lexical_terms(query)
        if not terms:
            return None
        item_type = normalize_item_type(item_type)
        best: Optional[Item] = None
        best_sim = threshold
        for i, it in enumerate(self._items):
            if not self._has_vec[i]:
                continue
            if item_type and it.type != item_type:
                continue
            if not matches_all_terms(terms, self._title_terms[i]):
                continue
            sim = trigram_similarity(it.title, query)
            if sim > best_sim or (best is not None and sim == best_sim and it.id < best.id):
                best, best_sim = it, sim
        return best
