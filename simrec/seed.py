from __future__ import annotations

"""
Seed resolution: turn the free-text query into (embedding, anchor).

Order of attempts:

1. local catalog match (trigram similarity + AND title match, must carry
   an embedding) -> anchor is the stored item, score 1
2. first provider search hit -> transient anchor embedded from
   "title\\ngenres\\nsynopsis", score 0
3. embed the raw query, no anchor

Provider and network failures degrade to the next step; an embeddings
dimension mismatch is a configuration error and propagates.
"""

import math
import re
from dataclasses import replace
from typing import Any, Iterable, List, Optional

import httpx
from loguru import logger

from .catalog_build import build_embedding_text
from .config import PROVIDER_SEED_LIMIT, SEED_TRIGRAM_THRESHOLD
from .embeddings import EmbeddingDimensionError, Embeddings
from .pipeline_types import Item, SeedResolution, normalize_item_type
from .providers import ProviderRegistry
from .store import ItemStore


_VECTOR_EDGES_RX = re.compile(r"^[\[(\s]+|[\])\s]+$")
_VECTOR_SPLIT_RX = re.compile(r"[\s,]+")


def _finite_floats(values: Iterable[Any]) -> List[float]:
    out: List[float] = []
    for v in values:
        try:
            f = float(v)
        except (TypeError, ValueError):
            continue
        if math.isfinite(f):
            out.append(f)
    return out


def parse_vector(raw: Any) -> List[float]:
    """
    Stored vectors arrive either as sequences or in text form
    ("[0.1, 0.2]", "(0.1 0.2)"). Non-numeric parts are skipped.
    """
    if raw is None:
        return []
    if isinstance(raw, str):
        body = _VECTOR_EDGES_RX.sub("", raw)
        return _finite_floats(p for p in _VECTOR_SPLIT_RX.split(body) if p)
    try:
        return _finite_floats(raw)
    except TypeError:
        return []


def poster_looks_valid(url: Optional[str]) -> bool:
    if not url:
        return False
    u = url.strip()
    if not u.startswith(("http://", "https://")):
        return False
    return not u.endswith(("/null", "/None", "/undefined"))


def enrich_anchor_poster(anchor: Item, registry: Optional[ProviderRegistry]) -> Item:
    """Replace a missing/malformed poster via the anchor's source provider; best-effort."""
    if poster_looks_valid(anchor.poster_url) or registry is None:
        return anchor
    if not anchor.source or not anchor.source_id:
        return anchor
    provider = registry.get(anchor.source)
    if provider is None or not provider.has_poster_lookup:
        return anchor
    try:
        poster = provider.fetch_poster(anchor.source_id, anchor.type)
    except Exception as e:
        logger.warning("Poster lookup for anchor {} failed: {}", anchor.id, e)
        return anchor
    return replace(anchor, poster_url=poster) if poster else anchor


class SeedResolver:
    def __init__(
        self,
        store: ItemStore,
        embeddings: Embeddings,
        registry: Optional[ProviderRegistry] = None,
        threshold: float = SEED_TRIGRAM_THRESHOLD,
    ):
        self.store = store
        self.embeddings = embeddings
        self.registry = registry
        self.threshold = threshold

    def _embed_one(self, text: str) -> List[float]:
        vectors = self.embeddings.embed([text])
        return list(vectors[0]) if vectors else []

    def _from_store(self, query: str, item_type: Optional[str]) -> Optional[SeedResolution]:
        match = self.store.find_seed_match(query, item_type, self.threshold)
        if match is None:
            return None
        embedding = parse_vector(match.embedding)
        if not embedding:
            return None
        logger.info("Seed resolved locally: '{}' -> {}", query, match.id)
        anchor = enrich_anchor_poster(match.with_score(1.0), self.registry)
        return SeedResolution(embedding=embedding, anchor=anchor)

    def _from_providers(self, query: str, item_type: Optional[str]) -> Optional[SeedResolution]:
        if self.registry is None:
            return None
        hits = self.registry.search(query, item_type, PROVIDER_SEED_LIMIT)
        if not hits:
            return None
        hit = hits[0]
        embedding = self._embed_one(build_embedding_text(hit.title, hit.genres, hit.synopsis))
        logger.info("Seed resolved via provider '{}': '{}' -> {}", hit.source, query, hit.id)
        anchor = replace(hit, popularity=0.0, score=0.0)
        return SeedResolution(embedding=embedding, anchor=anchor)

    def resolve(self, query: str, item_type: Optional[str] = None) -> SeedResolution:
        item_type = normalize_item_type(item_type)
        query = (query or "").strip()

        resolved = self._from_store(query, item_type)
        if resolved is not None:
            return resolved

        try:
            resolved = self._from_providers(query, item_type)
        except EmbeddingDimensionError:
            raise
        except (httpx.HTTPError, OSError, ValueError) as e:
            logger.warning("Provider seed lookup failed for '{}': {}", query, e)
            resolved = None
        if resolved is not None:
            return resolved

        logger.info("No anchor for '{}'; embedding the raw query", query)
        return SeedResolution(embedding=self.embed_query(query), anchor=None)

    def embed_query(self, query: str) -> List[float]:
        """Query-only embedding; network or decoding failures give [] (lexical-only retrieval)."""
        if not query:
            return []
        try:
            return self._embed_one(query)
        except EmbeddingDimensionError:
            raise
        except (httpx.HTTPError, OSError, ValueError) as e:
            logger.warning("Query embedding failed for '{}': {}", query, e)
            return []


def resolve_seed(
    query: str,
    item_type: Optional[str],
    store: ItemStore,
    embeddings: Embeddings,
    registry: Optional[ProviderRegistry] = None,
) -> SeedResolution:
    return SeedResolver(store, embeddings, registry).resolve(query, item_type)
