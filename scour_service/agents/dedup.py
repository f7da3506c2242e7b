# Copyright (c) 2024 torchtorch Authors.
# Licensed under the Apache License, Version 2.0

from __future__ import annotations

import logging
import re
from typing import List, Optional

from rapidfuzz import fuzz

from scour_service.agents.scoring import canonical_url
from scour_service.db.base import IncidentStore
from scour_service.schemas import Incident, utc_now_iso

logger = logging.getLogger(__name__)

FUZZY_THRESHOLD = 92.0
MIN_CONTAINED_TOKENS = 2

_PUNCT_RE = re.compile(r"[^\w\s]", re.UNICODE)


def _stem(tok: str) -> str:
    if len(tok) > 5 and tok.endswith("ing"):
        return tok[:-3]
    if len(tok) > 4 and tok.endswith("ed"):
        return tok[:-2]
    if len(tok) > 4 and tok.endswith("es") and tok[-3] in "sxz":
        return tok[:-2]
    if len(tok) > 3 and tok.endswith("s") and not tok.endswith("ss"):
        return tok[:-1]
    return tok


def normalize_title(title: Optional[str]) -> str:
    s = _PUNCT_RE.sub(" ", (title or "").lower())
    return " ".join(_stem(t) for t in s.split())


def titles_match(a: Optional[str], b: Optional[str], *, threshold: float = FUZZY_THRESHOLD) -> bool:
    na, nb = normalize_title(a), normalize_title(b)
    if not na or not nb:
        return False
    if na == nb:
        return True

    short, long_ = (na, nb) if len(na) <= len(nb) else (nb, na)
    if len(short.split()) >= MIN_CONTAINED_TOKENS and f" {short} " in f" {long_} ":
        return True
    return fuzz.ratio(na, nb) >= threshold


class DuplicateResolver:
    def __init__(self, incidents: IncidentStore, *, threshold: float = FUZZY_THRESHOLD) -> None:
        self.incidents = incidents
        self.threshold = float(threshold)

    def find_duplicate(self, incident: Incident, since_iso: str) -> Optional[Incident]:
        candidates = self.incidents.list_since(since_iso, country=incident.country)
        for c in candidates:
            if c.id == incident.id:
                continue
            if titles_match(incident.title, c.title, threshold=self.threshold):
                return c
        return None

    def merge_into(self, existing: Incident, incident: Incident) -> Incident:
        seen = {canonical_url(s.url) for s in existing.sources}
        merged = list(existing.sources)
        added = 0
        for s in incident.sources:
            key = canonical_url(s.url)
            if key in seen:
                continue
            seen.add(key)
            merged.append(s)
            added += 1

        if added == 0:
            return existing
        updated = existing.model_copy(update={"sources": merged, "updated_at": utc_now_iso()})
        self.incidents.update(updated)
        logger.info(f"DEDUP merged | into={existing.id} added_sources={added}")
        return updated


def recent_titles(incidents: List[Incident]) -> List[str]:
    return [f"{i.title} ({i.location or i.country})" for i in incidents]
