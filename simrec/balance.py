from __future__ import annotations
from typing import Dict, List, Sequence

"""
Type balancing for a diversified pool.

Candidates are bucketed by item type, each bucket ordered by relevance,
and the buckets are drained round-robin in a fixed priority order
(movie, tv, anime, book) until ``desired`` items are picked. Remaining
slots are then filled from whatever is left, by relevance.
"""

from .config import ITEM_TYPES
from .pipeline_types import Candidate

TYPE_PRIORITY: Dict[str, int] = {t: i for i, t in enumerate(ITEM_TYPES)}


def by_relevance(candidates: Sequence[Candidate]) -> List[Candidate]:
    return sorted(candidates, key=lambda c: (-c.relevance, c.id))


def balance_types(candidates: Sequence[Candidate], desired: int) -> List[Candidate]:
    if desired <= 0:
        return []

    groups: Dict[str, List[Candidate]] = {}
    for c in candidates:
        groups.setdefault(c.item.type, []).append(c)
    for t in groups:
        groups[t] = by_relevance(groups[t])
    ordered_types = sorted(groups, key=lambda t: TYPE_PRIORITY.get(t, len(TYPE_PRIORITY)))

    picked: List[Candidate] = []
    while len(picked) < desired:
        added = False
        for t in ordered_types:
            bucket = groups[t]
            if not bucket:
                continue
            picked.append(bucket.pop(0))
            added = True
            if len(picked) >= desired:
                break
        if not added:
            break

    if len(picked) >= desired:
        return picked[:desired]

    # backfill by relevance from the rest
    seen = {c.id for c in picked}
    rest = by_relevance([c for c in candidates if c.id not in seen])
    return picked + rest[: desired - len(picked)]
