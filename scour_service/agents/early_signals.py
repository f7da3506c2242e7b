# Copyright (c) 2024 torchtorch Authors.
# Licensed under the Apache License, Version 2.0

from __future__ import annotations

from typing import Dict, Iterable, List, Optional, Tuple

from scour_service.agents.evidence import EARLY_SIGNAL_TYPE
from scour_service.schemas import Source

EARLY_SIGNAL_PREFIX = "early-signal:"

# Threat categories swept across countries; each query is suffixed "travel alert <country>".
EARLY_SIGNAL_CATEGORIES: Dict[str, Tuple[str, ...]] = {
    "natural_disasters": (
        "earthquake", "tsunami warning", "volcanic eruption", "severe flooding",
        "wildfire emergency", "hurricane warning", "landslide alert",
    ),
    "security": (
        "terrorist attack", "active shooter", "bombing incident", "civil unrest", "armed conflict",
    ),
    "health": ("disease outbreak", "epidemic alert", "cholera outbreak", "health emergency"),
    "transport": (
        "airport closure", "flight cancellations", "port closure", "train derailment", "highway closure",
    ),
    "infrastructure": ("power outage", "water contamination", "bridge collapse", "dam failure"),
    "economic_cyber": ("general strike", "cyber attack", "banking system outage", "fuel shortage"),
    "weather": ("extreme heat warning", "blizzard warning", "typhoon warning", "severe storm warning"),
}


def early_signal_id(query: str, country: str) -> str:
    return f"{EARLY_SIGNAL_PREFIX}{country.strip()}:{query.strip()}"


def is_early_signal_id(source_id: str) -> bool:
    return (source_id or "").startswith(EARLY_SIGNAL_PREFIX)


def virtual_source(source_id: str) -> Optional[Source]:
    """The search-only Source an early-signal id stands for; None for a malformed id."""
    if not is_early_signal_id(source_id):
        return None
    country, sep, query = source_id[len(EARLY_SIGNAL_PREFIX):].partition(":")
    if not sep or not country or not query:
        return None
    return Source(
        id=source_id,
        name=f"{query} travel alert {country}",
        url=None,
        country=country,
        topics=[],
        type=EARLY_SIGNAL_TYPE,
    )


def early_signal_ids(
    countries: Iterable[str],
    categories: Optional[Iterable[str]] = None,
    *,
    max_queries: Optional[int] = None,
) -> List[str]:
    """
    Query-major ordering: every country gets the first query before any gets the
    second, so a capped sweep still covers all countries.
    """
    names = list(categories) if categories else list(EARLY_SIGNAL_CATEGORIES)
    unknown = [n for n in names if n not in EARLY_SIGNAL_CATEGORIES]
    if unknown:
        raise ValueError(f"unknown early-signal categories: {', '.join(unknown)}")

    queries: List[str] = []
    for name in names:
        for q in EARLY_SIGNAL_CATEGORIES[name]:
            if q not in queries:
                queries.append(q)

    places = [c.strip() for c in countries if c and c.strip()]
    ids = [early_signal_id(q, c) for q in queries for c in places]
    if max_queries is not None:
        ids = ids[: max(0, int(max_queries))]
    return ids
