"""Typed containers shared across pipeline modules."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional

from .config import ITEM_TYPES, TYPE_ALIASES, TYPE_WILDCARDS


def normalize_item_type(value: Optional[str]) -> Optional[str]:
    """Map ``series`` to ``tv`` and wildcards (``any``/``all``) to None."""
    if value is None:
        return None
    v = str(value).strip().lower()
    if not v or v in TYPE_WILDCARDS:
        return None
    return TYPE_ALIASES.get(v, v)


@dataclass(frozen=True)
class Item:
    """Read-only catalog record as stored by ingestion."""

    id: str
    title: str
    type: str
    year: Optional[int] = None
    genres: List[str] = field(default_factory=list)
    tags: List[str] = field(default_factory=list)
    creators: List[str] = field(default_factory=list)
    cast: List[str] = field(default_factory=list)
    synopsis: Optional[str] = None
    popularity: float = 0.0
    rating: Optional[float] = None
    franchise_key: Optional[str] = None
    embedding: List[float] = field(default_factory=list)
    availability: List[Dict[str, Any]] = field(default_factory=list)
    poster_url: Optional[str] = None
    provider_url: Optional[str] = None
    source: Optional[str] = None
    source_id: Optional[str] = None
    score: float = 0.0

    def with_score(self, score: float) -> "Item":
        return replace(self, score=float(score))


@dataclass
class Candidate:
    """
    Per-request wrapper around an Item.

    ``fused_score`` is set at construction; ``fts_score`` / ``vector_score``
    only when the corresponding search matched. Each stage mutates its own
    field and nothing here is persisted.
    """

    id: str
    item: Item
    fused_score: float
    fts_score: Optional[float] = None
    vector_score: Optional[float] = None
    rerank_score: Optional[float] = None

    @property
    def relevance(self) -> float:
        return self.rerank_score if self.rerank_score is not None else self.fused_score


@dataclass(frozen=True)
class RecommendationFilters:
    type: Optional[str] = None
    year_min: Optional[int] = None
    year_max: Optional[int] = None
    pop_min: Optional[float] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "type", normalize_item_type(self.type))
        if self.type is not None and self.type not in ITEM_TYPES:
            raise ValueError(f"Unknown item type: {self.type}")

    def relaxed(self, **changes: Any) -> "RecommendationFilters":
        return replace(self, **changes)

    def key(self) -> tuple:
        return (self.type, self.year_min, self.year_max, self.pop_min)


@dataclass
class SeedResolution:
    embedding: List[float]
    anchor: Optional[Item] = None


@dataclass
class RecommendationResult:
    anchor: Optional[Item]
    items: List[Item]
    debug: Dict[str, int] = field(default_factory=lambda: {"relaxations": 0, "totalCandidates": 0})
