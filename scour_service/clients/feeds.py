# Copyright (c) 2024 torchtorch Authors.
# Licensed under the Apache License, Version 2.0

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional

import feedparser

from scour_service.utils.time import to_iso_z

logger = logging.getLogger(__name__)

# USGS quake feeds title entries like "M 6.1 - 20 km SSW of Hualien City, Taiwan"
USGS_MIN_MAGNITUDE = 5.5
_MAGNITUDE_RE = re.compile(r"\bM\s?(\d+(?:\.\d+)?)")


@dataclass(frozen=True)
class FeedEntry:
    title: str
    link: str
    summary: str = ""
    published: Optional[str] = None


def _published(entry) -> Optional[str]:
    # feedparser normalizes both RFC 822 and ISO dates to UTC struct_time
    parsed = entry.get("published_parsed") or entry.get("updated_parsed")
    if not parsed:
        return None
    return to_iso_z(datetime(*parsed[:6], tzinfo=timezone.utc))


def parse_feed(xml: str) -> List[FeedEntry]:
    """Atom and RSS entries in document order. Entries without a link are skipped."""
    if not xml or not xml.strip():
        return []
    feed = feedparser.parse(xml)
    if feed.get("bozo") and not feed.entries:
        logger.warning(f"FEED unparseable | err={feed.get('bozo_exception')}")
        return []

    out: List[FeedEntry] = []
    for e in feed.entries:
        link = str(e.get("link") or "")
        if not link:
            continue
        out.append(FeedEntry(
            title=re.sub(r"\s+", " ", str(e.get("title") or "")).strip(),
            link=link,
            summary=re.sub(r"\s+", " ", str(e.get("summary") or "")).strip(),
            published=_published(e),
        ))
    logger.debug(f"FEED parsed | entries={len(out)}")
    return out


def usgs_magnitude(title: str) -> Optional[float]:
    m = _MAGNITUDE_RE.search(title or "")
    return float(m.group(1)) if m else None


def significant_quakes(entries: List[FeedEntry], min_magnitude: float = USGS_MIN_MAGNITUDE) -> List[FeedEntry]:
    """Entries whose title magnitude is strictly above `min_magnitude`; titles without one are dropped."""
    out = []
    for e in entries:
        mag = usgs_magnitude(e.title)
        if mag is not None and mag > min_magnitude:
            out.append(e)
    return out
