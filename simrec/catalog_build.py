from __future__ import annotations

import json
import math
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import numpy as np
import pandas as pd
from loguru import logger

from .config import CATALOG_RAW_PATH, CATALOG_SNAPSHOT_PATH, ITEM_TYPES
from .normalize import basic_clean, compute_franchise_key
from .pipeline_types import normalize_item_type
from .text_utils import clamp


# ---------------------------
# Column detection / standardization
# ---------------------------

# Provider dumps mix camelCase and snake_case; accept both.
COLUMN_CANDIDATES: Dict[str, List[str]] = {
    "id": ["id", "item_id", "itemId"],
    "title": ["title", "name"],
    "type": ["type", "media_type", "kind"],
    "year": ["year", "release_year"],
    "genres": ["genres"],
    "tags": ["tags", "keywords"],
    "creators": ["creators", "directors", "authors"],
    "cast": ["cast"],
    "synopsis": ["synopsis", "overview", "description"],
    "popularity": ["popularity"],
    "popularity_raw": ["popularity_raw", "popularityRaw"],
    "vote_count": ["vote_count", "voteCount"],
    "rating": ["rating"],
    "franchise_key": ["franchise_key", "franchiseKey"],
    "embedding": ["embedding"],
    "availability": ["availability"],
    "poster_url": ["poster_url", "posterUrl"],
    "provider_url": ["provider_url", "providerUrl"],
    "source": ["source"],
    "source_id": ["source_id", "sourceId"],
}

LIST_COLUMNS = ["genres", "tags", "creators", "cast", "availability"]

SNAPSHOT_COLUMNS = list(COLUMN_CANDIDATES.keys())


def _standardize_columns(df: pd.DataFrame) -> pd.DataFrame:
    col_map: Dict[str, str] = {}
    lower_to_original = {c.lower(): c for c in df.columns}

    for canon, candidates in COLUMN_CANDIDATES.items():
        for candidate in candidates:
            if candidate in df.columns:
                col_map[candidate] = canon
                break
            if candidate.lower() in lower_to_original:
                col_map[lower_to_original[candidate.lower()]] = canon
                break

    df_std = df.rename(columns=col_map)
    missing = [c for c in ("id", "title", "type") if c not in df_std.columns]
    if missing:
        logger.warning("Raw catalog is missing required columns: {}", missing)
    return df_std


# ---------------------------
# Field parsing helpers
# ---------------------------

def _is_missing(val: Any) -> bool:
    if val is None:
        return True
    if isinstance(val, float) and math.isnan(val):
        return True
    return False


def parse_list_field(val: Any) -> list:
    """Coerce list-ish cells (list, ndarray, JSON string, comma string) to a list."""
    if _is_missing(val):
        return []
    if isinstance(val, np.ndarray):
        return val.tolist()
    if isinstance(val, (list, tuple)):
        return list(val)
    if isinstance(val, str):
        s = val.strip()
        if not s:
            return []
        if s.startswith("["):
            try:
                parsed = json.loads(s)
                return parsed if isinstance(parsed, list) else []
            except ValueError:
                pass
        return [p.strip() for p in s.split(",") if p.strip()]
    return [val]


def parse_year(val: Any) -> Optional[int]:
    if _is_missing(val):
        return None
    try:
        year = int(float(str(val).strip()[:4]))
    except (ValueError, OverflowError):
        return None
    return year if year > 0 else None


def _optional_float(val: Any) -> Optional[float]:
    if _is_missing(val):
        return None
    try:
        f = float(val)
    except (TypeError, ValueError):
        return None
    return f if math.isfinite(f) else None


def _synopsis_proxy(synopsis: Optional[str]) -> float:
    words = len((synopsis or "").split())
    return clamp(words / 12.0, 5.0, 80.0)


def normalize_popularity_batch(rows: Sequence[Dict[str, Any]]) -> List[float]:
    """
    Map provider-native popularity/rating values onto 0..100.

    Each row may carry ``popularity_raw``, ``source``, ``vote_count`` and
    ``synopsis``. Scales per provider:

    * tmdb: vote average 0-10 (minus 5 points when vote_count < 50), x10;
      legacy popularity values > 10 use sqrt scaling from 100 upward.
    * anilist: average score 0-100 kept as is; larger values / 10.
    * googlebooks: 0-5 stars, x20.
    * omdb: 0-10, x10.
    * anything else: min-max over the batch (50 when flat).

    Rows without a raw value get a synopsis-length proxy in [5, 80].
    """
    raws = [_optional_float(r.get("popularity_raw")) for r in rows]
    known = [v for v in raws if v is not None]
    if not known:
        return [_synopsis_proxy(r.get("synopsis")) for r in rows]

    lo, hi = min(known), max(known)
    out: List[float] = []
    for row, raw in zip(rows, raws):
        if raw is None:
            out.append(_synopsis_proxy(row.get("synopsis")))
            continue
        source = row.get("source")
        if source == "tmdb":
            if raw <= 10:
                adjusted = raw
                if (_optional_float(row.get("vote_count")) or 0) < 50:
                    adjusted = max(0.0, raw - 5.0)
                out.append(clamp(adjusted * 10, 0, 100))
            elif raw >= 100:
                out.append(clamp(math.sqrt(raw) * 10, 0, 100))
            else:
                out.append(clamp(raw * 1.2, 0, 100))
        elif source == "anilist":
            out.append(clamp(raw if raw <= 100 else raw / 10, 0, 100))
        elif source == "googlebooks":
            out.append(clamp(raw * 20, 0, 100))
        elif source == "omdb":
            out.append(clamp(raw * 10, 0, 100))
        else:
            out.append(50.0 if hi == lo else clamp((raw - lo) / (hi - lo) * 100, 0, 100))
    return out


def build_embedding_text(title: str, genres: Sequence[str], synopsis: Optional[str]) -> str:
    lines = [title]
    if genres:
        lines.append(", ".join(genres))
    if synopsis:
        lines.append(synopsis)
    return "\n".join(lines)


# ---------------------------
# Core normalization
# ---------------------------

def normalize_catalog_df(df_raw: pd.DataFrame, embeddings=None) -> pd.DataFrame:
    """
    Normalize a raw provider dump into the snapshot schema.

    ``embeddings`` (an Embeddings provider) fills rows that arrive without
    a vector; when None those rows keep an empty embedding and are skipped
    by semantic search.
    """
    logger.info("Normalizing raw catalog with {} rows", len(df_raw))
    df = _standardize_columns(df_raw.copy())

    if "id" not in df.columns or "title" not in df.columns:
        logger.error("No id/title column found after standardization; resulting catalog will be empty.")
        return pd.DataFrame(columns=SNAPSHOT_COLUMNS)

    for col in SNAPSHOT_COLUMNS:
        if col not in df.columns:
            df[col] = None

    df["id"] = df["id"].astype(str).str.strip()
    df["title"] = df["title"].fillna("").astype(str).map(basic_clean)
    df = df[~df["id"].isin(["", "None", "nan"]) & (df["title"] != "")]
    df = df.drop_duplicates(subset=["id"]).reset_index(drop=True)

    df["type"] = df["type"].map(normalize_item_type)
    unknown = ~df["type"].isin(ITEM_TYPES)
    if unknown.any():
        logger.warning("Dropping {} rows with unknown item type", int(unknown.sum()))
        df = df[~unknown].reset_index(drop=True)

    for col in LIST_COLUMNS:
        df[col] = df[col].map(parse_list_field)
    for col in ("genres", "tags", "creators", "cast"):
        df[col] = df[col].map(lambda xs: [basic_clean(x) for x in xs if basic_clean(x)])

    df["year"] = pd.Series([parse_year(v) for v in df["year"]], index=df.index, dtype="object")
    df["synopsis"] = pd.Series(
        [None if _is_missing(s) else (basic_clean(s) or None) for s in df["synopsis"]],
        index=df.index,
        dtype="object",
    )
    df["rating"] = pd.Series([_optional_float(v) for v in df["rating"]], index=df.index, dtype="object")

    df["franchise_key"] = [
        fk if isinstance(fk, str) and fk.strip() else (compute_franchise_key(t) or None)
        for fk, t in zip(df["franchise_key"], df["title"])
    ]

    pops = [_optional_float(p) for p in df["popularity"]]
    if any(p is None for p in pops):
        normalized = normalize_popularity_batch(df.to_dict("records"))
        pops = [p if p is not None else n for p, n in zip(pops, normalized)]
    df["popularity"] = [clamp(float(p), 0, 100) for p in pops]

    vectors = [[float(x) for x in parse_list_field(v)] for v in df["embedding"]]
    missing_vec = [i for i, v in enumerate(vectors) if not v]
    if missing_vec and embeddings is not None:
        records = df[["title", "genres", "synopsis"]].to_dict("records")
        texts = [
            build_embedding_text(records[i]["title"], records[i]["genres"], records[i]["synopsis"])
            for i in missing_vec
        ]
        logger.info("Embedding {} catalog rows without vectors", len(texts))
        for i, vec in zip(missing_vec, embeddings.embed(texts)):
            vectors[i] = vec
    df["embedding"] = pd.Series(vectors, index=df.index, dtype="object")

    df_out = df[SNAPSHOT_COLUMNS].drop(columns=["popularity_raw", "vote_count"])
    logger.info("Catalog normalization complete. Final rows: {}", len(df_out))
    return df_out


# ---------------------------
# IO helpers
# ---------------------------

def load_raw_catalog(path: Optional[Path] = None) -> pd.DataFrame:
    """
    Load a raw provider dump (JSON list of records, or Parquet).
    """
    path = Path(path or CATALOG_RAW_PATH)
    if not path.exists():
        raise FileNotFoundError(f"Raw catalog not found at {path}.")

    logger.info("Loading raw catalog from {}", path)
    if path.suffix == ".parquet":
        df = pd.read_parquet(path)
    else:
        with path.open("r", encoding="utf-8") as f:
            df = pd.DataFrame(json.load(f))
    logger.info("Loaded {} rows from raw catalog", len(df))
    return df


def build_catalog_snapshot(
    raw_path: Optional[Path] = None,
    output_path: Path = CATALOG_SNAPSHOT_PATH,
    embeddings=None,
) -> Path:
    """
    End-to-end: load raw dump → normalize (+ fill embeddings) → write Parquet snapshot.
    """
    if embeddings is None:
        from .embeddings import get_embeddings

        embeddings = get_embeddings()
    df_norm = normalize_catalog_df(load_raw_catalog(raw_path), embeddings=embeddings)

    logger.info("Writing catalog snapshot to {}", output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    df_norm.to_parquet(output_path, index=False)
    logger.info("Catalog snapshot written with {} rows", len(df_norm))
    return output_path


def load_catalog_snapshot(path: Path = CATALOG_SNAPSHOT_PATH) -> pd.DataFrame:
    """
    Load the normalized catalog snapshot (Parquet, or a JSON list for small fixtures).
    """
    path = Path(path)
    logger.info("Loading catalog snapshot from {}", path)
    if path.suffix == ".json":
        with path.open("r", encoding="utf-8") as f:
            df = normalize_catalog_df(pd.DataFrame(json.load(f)))
    else:
        df = pd.read_parquet(path)
    logger.info("Loaded catalog snapshot with {} rows", len(df))
    return df


if __name__ == "__main__":
    # python -m simrec.catalog_build
    build_catalog_snapshot()
