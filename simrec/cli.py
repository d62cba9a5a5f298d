# simrec/cli.py
from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import List, Optional

from loguru import logger

from . import config
from .config import ITEM_TYPES, LOCALES, RecommendationRequest
from .mapping import map_result_to_response
from .pipeline import RecommendationEngine


def _build_engine(snapshot: Optional[Path]) -> RecommendationEngine:
    if snapshot is None:
        from ._singletons import get_engine

        return get_engine()

    from .embeddings import get_embeddings
    from .providers import build_registry
    from .rerank import get_reranker_chain
    from .store import CatalogStore

    settings = config.load_settings()
    store = CatalogStore.from_snapshot(snapshot)
    return RecommendationEngine(
        store,
        get_embeddings(settings),
        registry=build_registry(settings, items=store.items()),
        reranker_chain=get_reranker_chain(settings),
        settings=settings,
    )


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="simrec", description="Similar-title recommendations")
    ap.add_argument("--query", "-q", help="Title (or free text) to find similar items for")
    ap.add_argument("--type", choices=ITEM_TYPES)
    ap.add_argument("--year-min", type=int)
    ap.add_argument("--year-max", type=int)
    ap.add_argument("--pop-min", type=float)
    ap.add_argument("--limit", type=int, default=config.RESULT_DEFAULT)
    ap.add_argument("--locale", choices=LOCALES)
    ap.add_argument("--random", action="store_true", help="Random picks matching the filters")
    ap.add_argument("--snapshot", type=Path, help="Catalog snapshot (Parquet or JSON)")
    ap.add_argument("--build-snapshot", type=Path, metavar="RAW",
                    help="Normalize a raw catalog dump into --snapshot (or the default path) and exit")
    return ap


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    if args.build_snapshot is not None:
        out = args.snapshot or config.CATALOG_SNAPSHOT_PATH
        from .catalog_build import build_catalog_snapshot

        build_catalog_snapshot(args.build_snapshot, Path(out))
        print(str(out))
        return 0

    query = (args.query or "").strip()
    if not args.random and not query:
        print("error: --query is required unless --random is given", file=sys.stderr)
        return 2
    if args.limit is not None and args.limit <= 0:
        print("error: --limit must be positive", file=sys.stderr)
        return 2

    request = RecommendationRequest(
        query=query or None,
        mode="random" if args.random else "search",
        type=args.type,
        yearMin=args.year_min,
        yearMax=args.year_max,
        popMin=args.pop_min,
        limit=args.limit,
        locale=args.locale,
    )

    try:
        engine = _build_engine(args.snapshot)
    except FileNotFoundError as e:
        logger.error("Catalog snapshot not available: {}", e)
        return 1

    result = engine.recommend(request)
    payload = map_result_to_response(result).model_dump(by_alias=True, mode="json")
    print(json.dumps(payload, indent=2, ensure_ascii=False))
    return 0


if __name__ == "__main__":
    sys.exit(main())
