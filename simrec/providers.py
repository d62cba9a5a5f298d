from __future__ import annotations

"""
External catalog providers used as a best-effort fallback when a query has
no local anchor, plus the poster lookup used for anchor enrichment.

Provider output is transient (never written to the store) and every
provider failure degrades to an empty result.
"""

from concurrent.futures import ThreadPoolExecutor, wait
from typing import Dict, List, Optional, Sequence

import httpx
from loguru import logger

from . import config
from .config import EngineSettings
from .normalize import compute_franchise_key, normalize_for_comparison
from .pipeline_types import Item, normalize_item_type

# TMDb genre id 16
_TMDB_ANIMATION = 16


class CatalogProvider:
    """Base class; subclasses override ``search`` and optionally ``fetch_poster``."""

    name = "base"

    def supports(self, item_type: Optional[str]) -> bool:
        return True

    def search(self, query: str, item_type: Optional[str] = None, limit: int = 20) -> List[Item]:
        raise NotImplementedError

    def fetch_poster(self, source_id: str, media_type: str) -> Optional[str]:
        return None

    @property
    def has_poster_lookup(self) -> bool:
        return type(self).fetch_poster is not CatalogProvider.fetch_poster


def filter_by_type(items: Sequence[Item], item_type: Optional[str]) -> List[Item]:
    item_type = normalize_item_type(item_type)
    if item_type is None:
        return list(items)
    return [it for it in items if it.type == item_type]


# =============================================================================
# Snapshot (mock) provider
# =============================================================================

class SnapshotProvider(CatalogProvider):
    """Substring title search over a fixed list of items (offline / tests)."""

    name = "snapshot"

    def __init__(self, items: Sequence[Item]):
        self._items = list(items)

    def search(self, query: str, item_type: Optional[str] = None, limit: int = 20) -> List[Item]:
        needle = normalize_for_comparison(query)
        if not needle:
            return []
        hits = [it for it in self._items if needle in normalize_for_comparison(it.title)]
        return filter_by_type(hits, item_type)[:limit]


# =============================================================================
# TMDb
# =============================================================================

class TmdbProvider(CatalogProvider):
    name = "tmdb"

    def __init__(self, api_key: str, base: str = "https://api.themoviedb.org/3", timeout_ms: int = 4500):
        self.api_key = api_key
        self.base = base.rstrip("/")
        self.timeout = httpx.Timeout(timeout_ms / 1000.0, connect=config.HTTP_CONNECT_TIMEOUT)

    def supports(self, item_type: Optional[str]) -> bool:
        item_type = normalize_item_type(item_type)
        return item_type in (None, "movie", "tv", "anime")

    def _get(self, path: str, params: Dict[str, str]) -> dict:
        with httpx.Client(timeout=self.timeout) as client:
            r = client.get(
                f"{self.base}{path}",
                params={"api_key": self.api_key, **params},
                headers={"User-Agent": config.HTTP_USER_AGENT},
            )
            r.raise_for_status()
            payload = r.json()
        if not isinstance(payload, dict):
            raise httpx.DecodingError(f"TMDb response for {path} is not an object")
        return payload

    @staticmethod
    def _poster(path: Optional[str]) -> Optional[str]:
        if not path:
            return None
        return f"{config.TMDB_IMAGE_BASE}{path if path.startswith('/') else '/' + path}"

    @staticmethod
    def _year(date: Optional[str]) -> Optional[int]:
        if not date or len(date) < 4 or not date[:4].isdigit():
            return None
        return int(date[:4])

    def _map_result(self, result: dict) -> Optional[Item]:
        media_type = result.get("media_type")
        if media_type not in ("movie", "tv"):
            return None
        title = result.get("title") if media_type == "movie" else result.get("name")
        if not title:
            return None
        is_japanese = "JP" in (result.get("origin_country") or []) or result.get("original_language") == "ja"
        is_anime = _TMDB_ANIMATION in (result.get("genre_ids") or []) and is_japanese
        item_type = "anime" if is_anime else media_type
        date = result.get("release_date") if media_type == "movie" else result.get("first_air_date")
        return Item(
            id=f"tmdb-{item_type}:{result['id']}",
            title=title,
            type=item_type,
            year=self._year(date),
            synopsis=result.get("overview") or None,
            popularity=0.0,
            franchise_key=compute_franchise_key(title) or None,
            poster_url=self._poster(result.get("poster_path")),
            provider_url=f"https://www.themoviedb.org/{media_type}/{result['id']}",
            source="tmdb",
            source_id=str(result["id"]),
        )

    def search(self, query: str, item_type: Optional[str] = None, limit: int = 20) -> List[Item]:
        data = self._get(
            "/search/multi",
            {"query": query, "language": "en-US", "include_adult": "false"},
        )
        items = [m for m in (self._map_result(r) for r in data.get("results") or []) if m]
        return filter_by_type(items, item_type)[:limit]

    def fetch_poster(self, source_id: str, media_type: str) -> Optional[str]:
        path = "tv" if media_type in ("tv", "anime") else "movie"
        detail = self._get(f"/{path}/{source_id}", {"language": "en-US"})
        return self._poster(detail.get("poster_path"))


# =============================================================================
# Registry
# =============================================================================

class ProviderRegistry:
    def __init__(self, providers: Sequence[CatalogProvider], timeout_ms: int = config.PROVIDER_TIMEOUT_MS):
        self.providers = list(providers)
        self.timeout_s = timeout_ms / 1000.0

    def get(self, name: Optional[str]) -> Optional[CatalogProvider]:
        for p in self.providers:
            if p.name == name:
                return p
        return None

    def search(self, query: str, item_type: Optional[str] = None, limit: int = 20) -> List[Item]:
        """Fan out to every provider supporting ``item_type``; failures count as no results."""
        active = [p for p in self.providers if p.supports(item_type)]
        if not active:
            return []

        results: List[List[Item]] = []
        pool = ThreadPoolExecutor(max_workers=len(active), thread_name_prefix="provider-search")
        try:
            futures = [pool.submit(p.search, query, item_type, limit) for p in active]
            wait(futures, timeout=self.timeout_s)
            for provider, fut in zip(active, futures):
                if not fut.done():
                    logger.warning("Provider '{}' search timed out after {}s", provider.name, self.timeout_s)
                    results.append([])
                    continue
                try:
                    results.append(fut.result())
                except Exception as e:
                    logger.warning("Provider '{}' search failed: {}", provider.name, e)
                    results.append([])
        finally:
            # slow providers finish in the background; their results are dropped
            pool.shutdown(wait=False, cancel_futures=True)
        return [it for chunk in results for it in chunk]


def build_registry(settings: EngineSettings, items: Optional[Sequence[Item]] = None) -> ProviderRegistry:
    providers: List[CatalogProvider] = []
    for name in settings.enabled_providers:
        if name == "snapshot" and items is not None:
            providers.append(SnapshotProvider(items))
        elif name == "tmdb":
            if settings.tmdb_api_key:
                providers.append(
                    TmdbProvider(settings.tmdb_api_key, settings.tmdb_api_base, settings.provider_timeout_ms)
                )
            else:
                logger.info("TMDB_API_KEY not set; tmdb provider disabled")
    return ProviderRegistry(providers, timeout_ms=settings.provider_timeout_ms)
