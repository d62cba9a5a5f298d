from __future__ import annotations

"""
Embeddings providers: text -> fixed-dimension, L2-normalised vectors.

Three implementations share the ``embed(texts)`` surface:

* ``LocalTfIdfEmbeddings`` - dependency-free hashing TF-IDF, the default
  when no remote endpoint is configured.
* ``RemoteEmbeddings`` - HTTP provider (generic ``/embed`` or an
  OpenAI-compatible ``/embeddings``), batched with bounded concurrency.
* ``SentenceTransformerEmbeddings`` - local BGE encoder, only when the
  ``local-models`` extra is installed.

``get_embeddings()`` hands out one process-wide instance.
"""

import math
import threading
from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from typing import List, Optional, Protocol, Sequence

import httpx
from loguru import logger

from . import config
from .config import EngineSettings
from .normalize import tokenize
from .text_utils import l2_normalize, token_hash_index


class EmbeddingDimensionError(ValueError):
    """Remote vectors do not match the configured dimension (misconfiguration)."""


class Embeddings(Protocol):
    dim: int

    def embed(self, texts: Sequence[str]) -> List[List[float]]:
        ...


# -------------------------------------------------------------------
# Local hashing TF-IDF
# -------------------------------------------------------------------

class LocalTfIdfEmbeddings:
    """
    Hashing TF-IDF over the texts of a single call.

    Document frequencies are computed from the batch itself, so a single
    text gets idf = 1 for all of its tokens and the vector reduces to
    normalised term frequencies.
    """

    def __init__(self, dim: int = 768):
        if dim <= 0:
            raise ValueError("Embedding dimension must be positive")
        self.dim = dim

    def embed(self, texts: Sequence[str]) -> List[List[float]]:
        if not texts:
            return []
        tokenized = [tokenize(t) for t in texts]
        df: Counter = Counter()
        for tokens in tokenized:
            df.update(set(tokens))
        total_docs = len(texts)

        out: List[List[float]] = []
        for tokens in tokenized:
            vec = [0.0] * self.dim
            if not tokens:
                out.append(vec)
                continue
            for token, count in Counter(tokens).items():
                tf = count / len(tokens)
                idf = math.log((1 + total_docs) / (1 + df[token])) + 1
                vec[token_hash_index(token, self.dim)] += tf * idf
            out.append(l2_normalize(vec))
        return out


# -------------------------------------------------------------------
# Remote HTTP provider
# -------------------------------------------------------------------

class RemoteEmbeddings:
    def __init__(
        self,
        base: str,
        dim: int,
        api_key: Optional[str] = None,
        provider: str = "generic",
        model: Optional[str] = None,
        timeout_ms: int = config.EMBEDDINGS_TIMEOUT_MS,
        batch_size: int = config.EMBEDDINGS_BATCH_SIZE,
        max_in_flight: int = config.EMBEDDINGS_MAX_IN_FLIGHT,
    ):
        if provider not in ("generic", "openai"):
            raise ValueError(f"Unsupported remote embeddings provider: {provider}")
        self.base = base.rstrip("/")
        self.dim = dim
        self.api_key = api_key
        self.provider = provider
        self.model = model
        self.timeout = httpx.Timeout(timeout_ms / 1000.0, connect=config.HTTP_CONNECT_TIMEOUT)
        self.batch_size = batch_size
        self.max_in_flight = max_in_flight

    def _headers(self) -> dict:
        headers = {"Content-Type": "application/json", "User-Agent": config.HTTP_USER_AGENT}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def _checked(self, vectors: list, expected: int) -> List[List[float]]:
        if not isinstance(vectors, list) or len(vectors) != expected:
            raise EmbeddingDimensionError("Unexpected embeddings response shape")
        out: List[List[float]] = []
        for vec in vectors:
            if not isinstance(vec, list) or len(vec) != self.dim:
                got = len(vec) if isinstance(vec, list) else None
                raise EmbeddingDimensionError(
                    f"Remote embeddings dimension mismatch: expected {self.dim}, got {got}"
                )
            out.append(l2_normalize([float(v) for v in vec]))
        return out

    def _payload(self, r: httpx.Response) -> dict:
        payload = r.json()
        if not isinstance(payload, dict):
            raise httpx.DecodingError(f"Embeddings response is not an object: {type(payload).__name__}")
        return payload

    def _fetch_generic(self, client: httpx.Client, batch: List[str]) -> List[List[float]]:
        r = client.post(
            f"{self.base}/embed",
            json={"texts": batch, "dim": self.dim},
            headers=self._headers(),
        )
        r.raise_for_status()
        payload = self._payload(r)
        return self._checked(payload.get("data"), len(batch))

    def _fetch_openai(self, client: httpx.Client, batch: List[str]) -> List[List[float]]:
        if not self.api_key:
            raise ValueError("OpenAI embeddings require EMBEDDINGS_API_KEY")
        body = {
            "model": self.model or config.OPENAI_EMBEDDINGS_MODEL,
            "input": batch,
            "dimensions": self.dim,
        }
        r = client.post(f"{self.base}/embeddings", json=body, headers=self._headers())
        r.raise_for_status()
        payload = self._payload(r)
        data = payload.get("data")
        if isinstance(data, list):
            vectors = [d.get("embedding") if isinstance(d, dict) else None for d in data]
        else:
            vectors = data
        return self._checked(vectors, len(batch))

    def embed(self, texts: Sequence[str]) -> List[List[float]]:
        if not texts:
            return []
        texts = list(texts)
        batches = [texts[i : i + self.batch_size] for i in range(0, len(texts), self.batch_size)]
        fetch = self._fetch_openai if self.provider == "openai" else self._fetch_generic

        with httpx.Client(timeout=self.timeout) as client:
            if len(batches) == 1:
                results = [fetch(client, batches[0])]
            else:
                workers = min(self.max_in_flight, len(batches))
                with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="embed-batch") as pool:
                    results = list(pool.map(lambda b: fetch(client, b), batches))

        out: List[List[float]] = []
        for vecs in results:
            out.extend(vecs)
        return out


# -------------------------------------------------------------------
# Local dense encoder (optional extra)
# -------------------------------------------------------------------

class SentenceTransformerEmbeddings:
    """BGE encoder via sentence-transformers; vectors come out normalised."""

    def __init__(self, model_name: str = config.BGE_ENCODER_MODEL, dim: Optional[int] = None):
        try:
            from sentence_transformers import SentenceTransformer
        except ImportError as e:
            raise ImportError(
                "EMBEDDINGS_PROVIDER=local-bge needs the 'local-models' extra "
                "(pip install simrec[local-models])"
            ) from e

        logger.info("Loading dense encoder model: {}", model_name)
        self.model = SentenceTransformer(model_name)
        native = int(self.model.get_sentence_embedding_dimension())
        if dim is not None and dim != native:
            raise EmbeddingDimensionError(
                f"Encoder {model_name} produces {native}-d vectors, configured {dim}"
            )
        self.dim = native

    def embed(self, texts: Sequence[str]) -> List[List[float]]:
        if not texts:
            return []
        vecs = self.model.encode(
            list(texts),
            batch_size=config.EMBEDDINGS_BATCH_SIZE,
            convert_to_numpy=True,
            normalize_embeddings=True,
        )
        return [[float(v) for v in row] for row in vecs]


# -------------------------------------------------------------------
# Process-wide singleton
# -------------------------------------------------------------------

_EMBEDDINGS: Optional[Embeddings] = None
_EMBEDDINGS_LOCK = threading.Lock()


def create_embeddings(settings: EngineSettings) -> Embeddings:
    if settings.embeddings_provider == "local-bge":
        return SentenceTransformerEmbeddings(dim=settings.embeddings_dim)
    if settings.embeddings_api_base:
        return RemoteEmbeddings(
            settings.embeddings_api_base,
            settings.embeddings_dim,
            api_key=settings.embeddings_api_key,
            provider=settings.embeddings_provider,
            model=settings.embeddings_model,
            timeout_ms=settings.embeddings_timeout_ms,
        )
    return LocalTfIdfEmbeddings(settings.embeddings_dim)


def get_embeddings(settings: Optional[EngineSettings] = None) -> Embeddings:
    """
    Lazily build the shared provider. Safe under concurrent first access;
    ``settings`` only matters for the call that wins construction.
    """
    global _EMBEDDINGS
    if _EMBEDDINGS is not None:
        return _EMBEDDINGS
    with _EMBEDDINGS_LOCK:
        if _EMBEDDINGS is None:
            settings = settings or config.load_settings()
            _EMBEDDINGS = create_embeddings(settings)
            logger.info(
                "Embeddings provider initialised: {} (dim={})",
                type(_EMBEDDINGS).__name__,
                _EMBEDDINGS.dim,
            )
    return _EMBEDDINGS


def reset_embeddings() -> None:
    global _EMBEDDINGS
    with _EMBEDDINGS_LOCK:
        _EMBEDDINGS = None
