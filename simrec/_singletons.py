# simrec/_singletons.py
from functools import lru_cache

from .config import load_settings
from .embeddings import get_embeddings
from .pipeline import RecommendationEngine
from .providers import build_registry
from .rerank import get_reranker_chain
from .store import CatalogStore


@lru_cache(maxsize=1)
def get_settings():
    return load_settings()


@lru_cache(maxsize=1)
def get_store():
    return CatalogStore.from_snapshot(get_settings().catalog_snapshot_path)


@lru_cache(maxsize=1)
def get_registry():
    store = get_store()
    return build_registry(get_settings(), items=store.items())


@lru_cache(maxsize=1)
def get_engine():
    settings = get_settings()
    return RecommendationEngine(
        get_store(),
        get_embeddings(settings),
        registry=get_registry(),
        reranker_chain=get_reranker_chain(settings),
        settings=settings,
    )
