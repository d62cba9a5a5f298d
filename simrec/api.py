from __future__ import annotations

"""
FastAPI application for the similar-titles recommender.

- GET /health
- GET /api/recommendations (search or random mode)

Query parameters arrive as strings and are validated here; failures map to
400 ``{"error": {field: [messages]}}``. Anything unexpected past validation
is logged and answered with 500 ``{"error": "internal_error"}``.
"""

import math
from typing import Dict, List, Mapping, Optional, Tuple

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger

from .config import ITEM_TYPES, LOCALES, HealthResponse, RecommendationRequest
from .mapping import map_result_to_response
from .pipeline import build_random_recommendations, build_recommendations

FieldErrors = Dict[str, List[str]]


# -----------------------
# Query validation
# -----------------------

def _parse_int(raw: str) -> Optional[int]:
    try:
        return int(raw.strip())
    except ValueError:
        return None


def _parse_float(raw: str) -> Optional[float]:
    try:
        value = float(raw.strip())
    except ValueError:
        return None
    return value if math.isfinite(value) else None


def parse_recommendation_query(params: Mapping[str, str]) -> Tuple[Optional[RecommendationRequest], FieldErrors]:
    errors: FieldErrors = {}

    def fail(field: str, msg: str) -> None:
        errors.setdefault(field, []).append(msg)

    def raw(name: str) -> Optional[str]:
        value = params.get(name)
        return value if value else None

    mode = raw("mode")
    if mode is not None and mode != "random":
        fail("mode", "mode must be 'random' when provided")

    item_type = raw("type")
    if item_type is not None and item_type not in ITEM_TYPES:
        fail("type", f"type must be one of {', '.join(ITEM_TYPES)}")

    values: Dict[str, object] = {}
    for name in ("yearMin", "yearMax"):
        text = raw(name)
        if text is None:
            continue
        parsed = _parse_int(text)
        if parsed is None:
            fail(name, f"{name} must be a number")
        values[name] = parsed

    pop_text = raw("popMin")
    if pop_text is not None:
        pop = _parse_float(pop_text)
        if pop is None:
            fail("popMin", "popMin must be a finite number")
        values["popMin"] = pop

    limit_text = raw("limit")
    if limit_text is not None:
        limit = _parse_int(limit_text)
        if limit is None or limit <= 0:
            fail("limit", "limit must be positive")
        values["limit"] = limit

    locale = raw("locale")
    if locale is not None and locale not in LOCALES:
        fail("locale", f"locale must be one of {', '.join(LOCALES)}")

    query = (params.get("query") or "").strip()
    if mode != "random" and not query:
        fail("query", "query is required unless mode=random")

    if errors:
        return None, errors

    return (
        RecommendationRequest(
            query=query or None,
            mode="random" if mode == "random" else "search",
            type=item_type,
            locale=locale,
            **values,
        ),
        errors,
    )


# -----------------------
# FastAPI app + startup
# -----------------------

app = FastAPI(title="simrec")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
def startup_event() -> None:
    logger.info("Starting app warmup...")
    try:
        from ._singletons import get_engine

        get_engine()
    except Exception as e:
        logger.warning("Warmup partial failure: {}", e)
    logger.info("Warmup complete.")


@app.get("/health", response_model=HealthResponse)
def health() -> HealthResponse:
    return HealthResponse(status="healthy")


@app.get("/api/recommendations")
def recommendations(request: Request):
    req, errors = parse_recommendation_query(request.query_params)
    if req is None:
        return JSONResponse(status_code=400, content={"error": errors})

    try:
        if req.mode == "random":
            result = build_random_recommendations(req)
        else:
            result = build_recommendations(req)
        response = map_result_to_response(result)
    except Exception:
        logger.exception("Recommendation error for query={!r}", req.query)
        return JSONResponse(status_code=500, content={"error": "internal_error"})

    return JSONResponse(content=response.model_dump(by_alias=True, mode="json"))
