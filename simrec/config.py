from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _env_str(name: str, default: Optional[str] = None) -> Optional[str]:
    val = os.getenv(name)
    if val is None:
        return default
    val = val.strip()
    return val or default


def _env_bool(name: str, default: bool) -> bool:
    val = (os.getenv(name) or "").strip().lower()
    if val in ("true", "1", "yes", "on"):
        return True
    if val in ("false", "0", "no", "off"):
        return False
    return default


# ---------------------------
# Paths
# ---------------------------

PROJECT_ROOT = Path(__file__).resolve().parents[1]

DATA_DIR = PROJECT_ROOT / "data"
CATALOG_RAW_PATH = DATA_DIR / "catalog_raw.json"
CATALOG_SNAPSHOT_PATH = Path(
    os.getenv("CATALOG_SNAPSHOT_PATH", str(DATA_DIR / "catalog_snapshot.parquet"))
)


# ---------------------------
# Model names (pinned)
# ---------------------------

# Dense encoder for EMBEDDINGS_PROVIDER=local-bge
BGE_ENCODER_MODEL = "BAAI/bge-base-en-v1.5"

OPENAI_EMBEDDINGS_MODEL = "text-embedding-3-small"

COHERE_RERANK_URL = "https://api.cohere.com/v1/rerank"


# ---------------------------
# Item vocabulary
# ---------------------------

ITEM_TYPES: List[str] = ["movie", "tv", "anime", "book"]
TYPE_ALIASES: Dict[str, str] = {"series": "tv"}
TYPE_WILDCARDS = {"any", "all"}

LOCALES: List[str] = ["en", "es", "de"]
DEFAULT_LOCALE = "en"


# ---------------------------
# Retrieval & fusion settings
# ---------------------------

RRF_K = 60
RETRIEVAL_LIMIT = 120
FALLBACK_RETRIEVAL_LIMIT = 100

# semantic hits in lexical-free positions get +VECTOR_ONLY_BOOST * score
VECTOR_ONLY_MIN_SCORE = 0.30
VECTOR_ONLY_BOOST = 0.10
BOTH_LISTS_MULTIPLIER = 1.2

# popularity-floor probe
POP_PROBE_TRIGGER_RATIO = 0.8
POP_PROBE_LIMIT_RATIO = 0.3
POP_PROBE_MIN_SCORE = 0.35

SEED_TRIGRAM_THRESHOLD = 0.35
PROVIDER_SEED_LIMIT = 5

# orchestrator pool shaping
FRONT_LOAD_VECTOR_MIN = 0.30
POOL_TRIM_THRESHOLD = 50
POOL_TARGET_MIN = 120

# high-relevance reservation
RESERVE_CREATOR_MIN = 0.19
RESERVE_VECTOR_MIN = 0.30
RESERVE_CAP_MIN = 15
RESERVE_CAP_RATIO = 0.5


# ---------------------------
# Diversity
# ---------------------------

MMR_LAMBDA = 0.70
MMR_LAMBDA_REMAINDER = 0.50
MMR_VECTOR_BOOST_MIN = 0.40
TITLE_VECTOR_DIM = 128
YEAR_SIMILARITY_SPAN = 30
TEMPORAL_MAX_CONSECUTIVE = 2


# ---------------------------
# Result size policy
# ---------------------------

RESULT_MIN = 5
RESULT_DEFAULT = 10
RESULT_MAX = 100
RANDOM_FETCH_MULTIPLIER = 3


# ---------------------------
# Rerank settings & env toggles
# ---------------------------

RERANK_ENABLED = _env_bool("RERANK_ENABLED", True)
RERANK_TOP_K = 100
RERANK_TIMEOUT_MS = int(os.getenv("RERANK_TIMEOUT_MS", "8000"))
COHERE_API_KEY = _env_str("COHERE_API_KEY")
LLM_RERANK_URL = _env_str("LLM_RERANK_URL")
LLM_RERANK_API_KEY = _env_str("LLM_RERANK_API_KEY")
# e.g. "BAAI/bge-reranker-base"; empty disables the local cross-encoder
RERANK_LOCAL_MODEL = _env_str("RERANK_LOCAL_MODEL")


# ---------------------------
# Embeddings
# ---------------------------

EMBEDDING_PROVIDERS = ("generic", "openai", "local-bge")

EMBEDDINGS_API_BASE = _env_str("EMBEDDINGS_API_BASE")
EMBEDDINGS_API_KEY = _env_str("EMBEDDINGS_API_KEY")
EMBEDDINGS_PROVIDER = (_env_str("EMBEDDINGS_PROVIDER", "generic") or "generic").lower()
EMBEDDINGS_MODEL = _env_str("EMBEDDINGS_MODEL")
EMBEDDINGS_DIM = int(os.getenv("EMBEDDINGS_DIM", "768"))
EMBEDDINGS_TIMEOUT_MS = int(os.getenv("EMBEDDINGS_TIMEOUT_MS", "7000"))
EMBEDDINGS_BATCH_SIZE = 16
EMBEDDINGS_MAX_IN_FLIGHT = 4


# ---------------------------
# Catalog providers / HTTP hardening
# ---------------------------

PROVIDERS_DEFAULT = ["snapshot", "tmdb"]
ENABLED_PROVIDERS = [
    p.strip().lower()
    for p in (_env_str("ENABLED_PROVIDERS") or ",".join(PROVIDERS_DEFAULT)).split(",")
    if p.strip()
]
TMDB_API_KEY = _env_str("TMDB_API_KEY")
TMDB_API_BASE = _env_str("TMDB_API_BASE", "https://api.themoviedb.org/3")
TMDB_IMAGE_BASE = "https://image.tmdb.org/t/p/w500"
PROVIDER_TIMEOUT_MS = int(os.getenv("PROVIDER_TIMEOUT_MS", "4500"))

HTTP_CONNECT_TIMEOUT = 3.0
HTTP_USER_AGENT = "simrec/1.0 (+https://example.com)"

# whole-request budget; external calls carry their own shorter timeouts
REQUEST_DEADLINE_MS = int(os.getenv("REQUEST_DEADLINE_MS", "15000"))


# ---------------------------
# Score weights
# ---------------------------

class ScoreWeights(BaseModel):
    """
    Weights of the final combined score.

    When the anchor has no creators, ``creator`` is split evenly into
    ``genre`` and ``synopsis`` (see ``scoring.effective_weights``).
    """

    model_config = ConfigDict(frozen=True)

    vector: float = 0.28
    rerank: float = 0.25
    fused: float = 0.10
    creator: float = 0.18
    tag: float = 0.06
    genre: float = 0.08
    franchise: float = 0.05
    synopsis: float = 0.03
    year: float = 0.015
    popularity: float = 0.015
    rating: float = 0.01
    cast: float = 0.0


DEFAULT_WEIGHTS = ScoreWeights()


# ---------------------------
# Injected settings
# ---------------------------

class EngineSettings(BaseModel):
    """
    Snapshot of the environment toggles above.

    Singletons (embeddings, reranker chain, providers) are built from one
    of these so tests can construct them without touching ``os.environ``.
    """

    model_config = ConfigDict(frozen=True)

    catalog_snapshot_path: Path = CATALOG_SNAPSHOT_PATH

    embeddings_api_base: Optional[str] = None
    embeddings_api_key: Optional[str] = None
    embeddings_provider: str = "generic"
    embeddings_model: Optional[str] = None
    embeddings_dim: int = 768
    embeddings_timeout_ms: int = 7000

    rerank_enabled: bool = True
    rerank_timeout_ms: int = 8000
    cohere_api_key: Optional[str] = None
    llm_rerank_url: Optional[str] = None
    llm_rerank_api_key: Optional[str] = None
    rerank_local_model: Optional[str] = None

    enabled_providers: List[str] = Field(default_factory=lambda: list(PROVIDERS_DEFAULT))
    tmdb_api_key: Optional[str] = None
    tmdb_api_base: str = "https://api.themoviedb.org/3"
    provider_timeout_ms: int = 4500

    request_deadline_ms: int = 15000

    @field_validator("embeddings_provider")
    @classmethod
    def _check_provider(cls, v: str) -> str:
        v = (v or "generic").strip().lower()
        if v not in EMBEDDING_PROVIDERS:
            raise ValueError(f"Unsupported embeddings provider: {v}")
        return v

    @field_validator("embeddings_dim", "embeddings_timeout_ms", "rerank_timeout_ms", "provider_timeout_ms")
    @classmethod
    def _check_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("must be positive")
        return v


def load_settings() -> EngineSettings:
    return EngineSettings(
        catalog_snapshot_path=CATALOG_SNAPSHOT_PATH,
        embeddings_api_base=EMBEDDINGS_API_BASE,
        embeddings_api_key=EMBEDDINGS_API_KEY,
        embeddings_provider=EMBEDDINGS_PROVIDER,
        embeddings_model=EMBEDDINGS_MODEL,
        embeddings_dim=EMBEDDINGS_DIM,
        embeddings_timeout_ms=EMBEDDINGS_TIMEOUT_MS,
        rerank_enabled=RERANK_ENABLED,
        rerank_timeout_ms=RERANK_TIMEOUT_MS,
        cohere_api_key=COHERE_API_KEY,
        llm_rerank_url=LLM_RERANK_URL,
        llm_rerank_api_key=LLM_RERANK_API_KEY,
        rerank_local_model=RERANK_LOCAL_MODEL,
        enabled_providers=ENABLED_PROVIDERS,
        tmdb_api_key=TMDB_API_KEY,
        tmdb_api_base=TMDB_API_BASE or "https://api.themoviedb.org/3",
        provider_timeout_ms=PROVIDER_TIMEOUT_MS,
        request_deadline_ms=REQUEST_DEADLINE_MS,
    )


# ---------------------------
# Pydantic models shared around the app
# ---------------------------

class AvailabilityLink(BaseModel):
    name: str
    url: str
    kind: Optional[str] = None


class ItemPayload(BaseModel):
    """
    Canonical schema for a single recommended title (and for the anchor).
    Field names match the public JSON contract.
    """

    model_config = ConfigDict(populate_by_name=True)

    id: str
    title: str
    type: str
    year: Optional[int] = None
    genres: List[str] = Field(default_factory=list)
    synopsis: Optional[str] = None
    poster_url: Optional[str] = Field(default=None, alias="posterUrl")
    popularity: float = Field(default=0.0, ge=0)
    provider_url: Optional[str] = Field(default=None, alias="providerUrl")
    availability: List[AvailabilityLink] = Field(default_factory=list)
    franchise_key: Optional[str] = Field(default=None, alias="franchiseKey")
    source: Optional[str] = None
    score: float = 0.0


class DebugInfo(BaseModel):
    relaxations: int = 0
    totalCandidates: int = 0


class RecommendationRequest(BaseModel):
    """
    Inbound request. ``limit`` is clamped to 1..RESULT_MAX by the orchestrator,
    not rejected here.
    """

    query: Optional[str] = None
    mode: str = "search"
    type: Optional[str] = None
    yearMin: Optional[int] = None
    yearMax: Optional[int] = None
    popMin: Optional[float] = None
    limit: Optional[int] = None
    locale: Optional[str] = None


class RecommendationResponse(BaseModel):
    """
    Response body for GET /api/recommendations.
    """

    anchor: Optional[ItemPayload] = None
    items: List[ItemPayload]
    debug: DebugInfo


class HealthResponse(BaseModel):
    """
    Response body for GET /health.
    """

    status: str


class ErrorResponse(BaseModel):
    error: Any
