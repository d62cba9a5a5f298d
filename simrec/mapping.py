from __future__ import annotations
"""
Mapping utilities to convert internal items into API responses.

Centralises the mapping from ``Item`` (catalog record + request score) to the
Pydantic schemas (ItemPayload / RecommendationResponse), so the API and CLI
emit the same JSON shape.
"""

from typing import Any, Dict, List, Optional, Sequence

from loguru import logger

from .config import AvailabilityLink, DebugInfo, ItemPayload, RecommendationResponse
from .pipeline_types import Item, RecommendationResult


def _availability_links(raw: Sequence[Dict[str, Any]]) -> List[AvailabilityLink]:
    links: List[AvailabilityLink] = []
    for entry in raw or []:
        name, url = entry.get("name"), entry.get("url")
        if not isinstance(name, str) or not isinstance(url, str) or not url:
            logger.debug("Dropping malformed availability entry: {}", entry)
            continue
        kind = entry.get("kind")
        links.append(AvailabilityLink(name=name, url=url, kind=kind if isinstance(kind, str) else None))
    return links


def item_to_payload(item: Item) -> ItemPayload:
    return ItemPayload(
        id=item.id,
        title=item.title,
        type=item.type,
        year=item.year,
        genres=list(item.genres),
        synopsis=item.synopsis,
        poster_url=item.poster_url,
        popularity=max(0.0, float(item.popularity)),
        provider_url=item.provider_url,
        availability=_availability_links(item.availability),
        franchise_key=item.franchise_key,
        source=item.source,
        score=float(item.score),
    )


def map_result_to_response(result: RecommendationResult) -> RecommendationResponse:
    anchor: Optional[ItemPayload] = item_to_payload(result.anchor) if result.anchor else None
    return RecommendationResponse(
        anchor=anchor,
        items=[item_to_payload(it) for it in result.items],
        debug=DebugInfo(
            relaxations=int(result.debug.get("relaxations", 0)),
            totalCandidates=int(result.debug.get("totalCandidates", 0)),
        ),
    )
