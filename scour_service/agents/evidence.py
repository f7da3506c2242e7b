# Copyright (c) 2024 torchtorch Authors.
# Licensed under the Apache License, Version 2.0

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import List, Optional, Tuple

import httpx

from scour_service.agents.scoring import canonical_url, domain_of, is_junk_url
from scour_service.clients.feeds import parse_feed, significant_quakes
from scour_service.clients.fetcher import ContentFetcher
from scour_service.clients.web_search import WebSearchClient, freshness_for_days
from scour_service.config import ScourSettings
from scour_service.core.quota import QuotaGate
from scour_service.errors import ScourError
from scour_service.schemas import EvidenceItem, SearchResult, Source
from scour_service.utils.time import age_hours

logger = logging.getLogger(__name__)

INCIDENT_KEYWORDS = "(protest OR strike OR flood OR earthquake OR storm OR attack OR outbreak OR closure OR evacuation)"
MIN_ACCEPTED_RESULTS = 2

FEED_TYPES = ("rss", "atom", "usgs-atom")
EARLY_SIGNAL_TYPE = "early-signal"


def source_kind(source: Source) -> str:
    return (source.type or "web").strip().lower()


def build_queries(source: Source) -> List[str]:
    """Three queries of increasing breadth; the site-restricted ones need a source URL."""
    if source_kind(source) == EARLY_SIGNAL_TYPE:
        # the name already holds the full open-web query
        return [source.name.strip()]
    topics = " ".join(t.strip() for t in (source.topics or []) if t and t.strip())
    site = domain_of(source.url) if source.url else ""

    out: List[str] = []
    if site:
        out.append(" ".join(x for x in (f"site:{site}", topics, INCIDENT_KEYWORDS) if x))
        out.append(f"site:{site} {INCIDENT_KEYWORDS}")
    anchor = (source.country or source.name or "").strip()
    out.append(" ".join(x for x in (anchor, topics, INCIDENT_KEYWORDS) if x))

    seen = set()
    uniq: List[str] = []
    for q in out:
        if q not in seen:
            seen.add(q)
            uniq.append(q)
    return uniq[:3]


def filter_and_rank(results: List[SearchResult], *, now: Optional[datetime] = None, limit: int = 8) -> List[EvidenceItem]:
    now = now or datetime.now(timezone.utc)
    seen = set()
    kept: List[Tuple[float, int, SearchResult]] = []
    for i, r in enumerate(results):
        if is_junk_url(r.url):
            continue
        key = canonical_url(r.url)
        if key in seen:
            continue
        seen.add(key)
        age = age_hours(r.published, now=now)
        # unknown ages sort after every dated result; ties keep search order
        kept.append((age if age is not None else float("inf"), i, r))

    kept.sort(key=lambda x: (x[0], x[1]))
    return [
        EvidenceItem(url=r.url, title=r.title or None, description=r.snippet or None, recency_hint=r.published)
        for _, _, r in kept[:limit]
    ]


class EvidenceAcquirer:
    """
    Collects evidence for one source, dispatching on `source.type`:
    "web" sources go through search with a page-fetch fallback, feed sources
    ("rss", "atom", "usgs-atom") read their feed first, and "early-signal"
    sources run their single open query.
    """

    def __init__(
        self,
        search: WebSearchClient,
        fetcher: Optional[ContentFetcher] = None,
        cfg: Optional[ScourSettings] = None,
        *,
        results_per_query: int = 10,
    ) -> None:
        self.search = search
        self.fetcher = fetcher or ContentFetcher()
        self.cfg = cfg or ScourSettings()
        self.results_per_query = int(results_per_query)

    async def acquire(
        self,
        source: Source,
        days_back: int,
        *,
        quota: Optional[QuotaGate] = None,
    ) -> Tuple[List[EvidenceItem], Optional[str]]:
        quota = quota or QuotaGate.unlimited()
        kind = source_kind(source)

        if kind in FEED_TYPES and source.url:
            items = await self._from_feed(source, int(days_back))
            if items:
                return items, f"feed:{source.url}"
            if kind == "usgs-atom":
                # a quiet quake feed means nothing significant happened
                return [], None

        early = kind == EARLY_SIGNAL_TYPE
        items, q = await self._search(source, int(days_back), quota, min_accepted=1 if early else MIN_ACCEPTED_RESULTS)
        if items or early:
            return items, q
        return await self._fallback(source)

    async def _search(
        self,
        source: Source,
        days_back: int,
        quota: QuotaGate,
        *,
        min_accepted: int,
    ) -> Tuple[List[EvidenceItem], Optional[str]]:
        freshness = freshness_for_days(days_back)
        for q in build_queries(source):
            quota.consume("search")
            try:
                results = await self.search.search(q, self.results_per_query, freshness=freshness)
            except ScourError:
                raise
            except (RuntimeError, httpx.HTTPError) as e:
                logger.warning(f"EVIDENCE query failed | source={source.id} q={q!r} err={type(e).__name__}: {e}")
                continue

            items = filter_and_rank(results, limit=self.cfg.max_evidence)
            logger.debug(f"EVIDENCE query | source={source.id} q={q!r} raw={len(results)} kept={len(items)}")
            if len(items) >= min_accepted:
                return items, q
        return [], None

    async def _from_feed(self, source: Source, days_back: int) -> List[EvidenceItem]:
        xml = await self.fetcher.fetch_feed(source.url)
        if not xml:
            return []
        entries = parse_feed(xml)
        if source_kind(source) == "usgs-atom":
            entries = significant_quakes(entries)

        now = datetime.now(timezone.utc)
        results = []
        for e in entries:
            age = age_hours(e.published, now=now)
            if age is not None and age > days_back * 24:
                continue
            results.append(SearchResult(
                title=e.title,
                snippet=e.summary,
                url=e.link,
                source=domain_of(e.link) or None,
                published=e.published,
            ))
        items = filter_and_rank(results, now=now, limit=self.cfg.max_evidence)
        logger.info(f"EVIDENCE feed | source={source.id} entries={len(entries)} kept={len(items)}")
        return items

    async def _fallback(self, source: Source) -> Tuple[List[EvidenceItem], Optional[str]]:
        if not source.url:
            return [], None
        text = await self.fetcher.fetch_text(source.url)
        if not text or len(text.strip()) < self.fetcher.cfg.min_chars:
            logger.info(f"EVIDENCE empty | source={source.id} url={source.url}")
            return [], None
        item = EvidenceItem(
            url=source.url,
            title=source.name,
            description=text[: self.fetcher.cfg.max_chars],
            recency_hint=None,
        )
        return [item], f"fetch:{source.url}"
