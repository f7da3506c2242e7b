# Copyright (c) 2024 torchtorch Authors.
# Licensed under the Apache License, Version 2.0

from __future__ import annotations

import asyncio
import json
import logging
import re
import uuid
from collections import Counter
from typing import List, Optional, Sequence, Type

from pydantic import BaseModel, ConfigDict, Field

from scour_service.config import ScourSettings
from scour_service.core.quota import QuotaGate
from scour_service.db.base import IncidentStore, TrendStore
from scour_service.errors import IncidentNotFoundError
from scour_service.llm.clients import LLMChatMessage, LLMError, OpenAICompatibleClient
from scour_service.llm.decoding import Decoded, DecodeResult, decode_json
from scour_service.llm.prompts import trend_group_system, trend_group_user, trend_match_system, trend_match_user
from scour_service.schemas import Incident, Trend, max_severity, utc_now_iso
from scour_service.utils.countries import are_adjacent, continent_named_in, continent_of, normalize_country, same_country

logger = logging.getLogger(__name__)

LOCAL_CRIME_HINTS = (
    "crime", "robbery", "theft", "assault", "murder", "homicide", "kidnap", "burglary",
    "shooting", "stabbing", "carjacking", "scam", "fraud", "mugging", "gang",
)
CROSS_BORDER_HINTS = (
    "weather", "storm", "flood", "hurricane", "typhoon", "cyclone", "monsoon", "heat", "drought",
    "wildfire", "snow", "earthquake", "tsunami", "volcan", "natural disaster", "landslide",
    "epidemic", "pandemic", "outbreak", "disease", "health", "cholera", "dengue",
    "migration", "migrant", "refugee",
)

_PLACEHOLDER_RE = re.compile(
    r"^\s*((trend|group|cluster|topic)\s*#?\s*\d*|untitled|unknown|n/?a|none|other|misc(ellaneous)?|"
    r"general|title|various( incidents| events)?|multiple (incidents|events)|related incidents|"
    r"specific title)\s*$",
    re.IGNORECASE,
)
MIN_TREND_MEMBERS = 2


def is_local_crime(event_type: Optional[str]) -> bool:
    et = (event_type or "").lower()
    return any(h in et for h in LOCAL_CRIME_HINTS)


def is_cross_border_capable(event_type: Optional[str]) -> bool:
    et = (event_type or "").lower()
    return any(h in et for h in CROSS_BORDER_HINTS)


def can_group_countries_for_trend(a: Optional[str], b: Optional[str], event_type: Optional[str]) -> bool:
    if same_country(a, b):
        return True
    if is_local_crime(event_type):
        return False
    if not is_cross_border_capable(event_type):
        return False
    if are_adjacent(a, b):
        return True
    ca, cb = continent_of(a), continent_of(b)
    return ca is not None and ca == cb


def pair_can_group(country_a: Optional[str], type_a: Optional[str], country_b: Optional[str],
                   type_b: Optional[str], extra_type: Optional[str] = None) -> bool:
    """Both sides must pass on their own event type; `extra_type` can only narrow the result."""
    types = [type_a, type_b] + ([extra_type] if extra_type else [])
    return all(can_group_countries_for_trend(country_a, country_b, t) for t in types)


def is_placeholder_title(title: Optional[str]) -> bool:
    t = (title or "").strip()
    return len(t) < 8 or bool(_PLACEHOLDER_RE.match(t))


def trend_countries(trend: Trend) -> List[str]:
    return list(trend.countries) or ([trend.country] if trend.country else [])


def incident_fits_trend(incident: Incident, trend: Trend) -> bool:
    """Geographic and event-type pre-check; no generative call happens unless this passes."""
    continent = continent_named_in(trend.title)
    if continent is not None and continent_of(incident.country) != continent:
        return False
    countries = trend_countries(trend)
    if not countries:
        return False
    return all(
        pair_can_group(incident.country, incident.event_type, c, trend.event_type)
        for c in countries
    )


# -------------------------
# Generative payloads
# -------------------------
class TrendMatchPayload(BaseModel):
    match: bool
    reason: str = ""


class ProposedTrend(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    title: str
    description: str = ""
    predictive_analysis: str = Field(default="", alias="predictiveAnalysis")
    event_type: Optional[str] = Field(default=None, alias="eventType")
    incident_ids: List[str] = Field(default_factory=list, alias="incidentIds")


class TrendGroupingPayload(BaseModel):
    trends: List[ProposedTrend] = Field(default_factory=list)


def _incident_brief(i: Incident) -> dict:
    return {
        "id": i.id,
        "title": i.title,
        "country": i.country,
        "location": i.location,
        "eventType": i.event_type,
        "severity": i.severity,
        "summary": i.summary[:400],
    }


def _trend_brief(t: Trend) -> dict:
    return {
        "id": t.id,
        "title": t.title,
        "countries": trend_countries(t),
        "eventType": t.event_type,
        "severity": t.severity,
        "description": t.description[:400],
        "incidentCount": t.incident_count,
    }


def _union_countries(existing: Sequence[str], extra: Sequence[str]) -> List[str]:
    out = list(existing)
    seen = {normalize_country(c) for c in out}
    for c in extra:
        n = normalize_country(c)
        if n and n not in seen:
            seen.add(n)
            out.append(c)
    return out


class TrendEngine:
    def __init__(
        self,
        *,
        incidents: IncidentStore,
        trends: TrendStore,
        llm: OpenAICompatibleClient,
        cfg: Optional[ScourSettings] = None,
        llm_timeout_s: float = 25.0,
    ) -> None:
        self.incidents = incidents
        self.trends = trends
        self.llm = llm
        self.cfg = cfg or ScourSettings()
        self.llm_timeout_s = float(llm_timeout_s)

    async def _ask(self, system: str, user: str, model: Type[BaseModel], quota: Optional[QuotaGate]) -> DecodeResult:
        (quota or QuotaGate.unlimited()).consume("llm")
        messages = [LLMChatMessage("system", system), LLMChatMessage("user", user)]
        try:
            raw = await asyncio.wait_for(
                asyncio.to_thread(self.llm.chat, messages, model=None, temperature=0.0, max_tokens=1500),
                timeout=self.llm_timeout_s,
            )
        except asyncio.TimeoutError as e:
            raise LLMError(f"LLM call exceeded {self.llm_timeout_s:.0f}s") from e
        return decode_json(raw, model)

    # -------------------------
    # Matching
    # -------------------------
    async def match_to_trend(
        self,
        incident: Incident,
        open_trends: List[Trend],
        *,
        quota: Optional[QuotaGate] = None,
    ) -> Optional[Trend]:
        candidates = [t for t in open_trends if incident_fits_trend(incident, t)]
        if not candidates:
            logger.info(f"TREND no candidates | incident={incident.id} open={len(open_trends)}")
            return None

        # same-country trends first, then most recently active
        candidates.sort(key=lambda t: t.last_seen, reverse=True)
        candidates.sort(key=lambda t: not same_country(t.country, incident.country))

        inc_json = json.dumps(_incident_brief(incident), ensure_ascii=False)
        for t in candidates[: self.cfg.trend_match_candidates]:
            try:
                res = await self._ask(
                    trend_match_system(),
                    trend_match_user(incident_json=inc_json, trend_json=json.dumps(_trend_brief(t), ensure_ascii=False)),
                    TrendMatchPayload,
                    quota,
                )
            except LLMError as e:
                logger.warning(f"TREND match call failed | incident={incident.id} trend={t.id} err={e}")
                continue
            if isinstance(res, Decoded) and res.value.match:
                logger.info(f"TREND matched | incident={incident.id} trend={t.id} reason={res.value.reason!r}")
                return t
        return None

    def attach(self, trend: Trend, incident: Incident) -> Trend:
        ids = list(trend.alert_ids)
        if incident.id not in ids:
            ids.append(incident.id)
        updated = trend.model_copy(
            update={
                "alert_ids": ids,
                "incident_count": len(ids),
                "severity": max_severity(trend.severity, incident.severity),
                "countries": _union_countries(trend_countries(trend), [incident.country]),
                "last_seen": utc_now_iso(),
            }
        )
        self.trends.update(updated)
        self.incidents.update(incident.model_copy(update={"trend_id": trend.id, "updated_at": utc_now_iso()}))
        return updated

    async def process_incident(self, incident_id: str, *, quota: Optional[QuotaGate] = None) -> Optional[Trend]:
        incident = self.incidents.get(incident_id)
        if incident is None:
            raise IncidentNotFoundError(f"incident not found: {incident_id}")
        if incident.trend_id:
            return self.trends.get(incident.trend_id)
        if incident.status not in ("approved", "dismissed") and not incident.published:
            logger.info(f"TREND skip | incident={incident_id} status={incident.status}")
            return None

        trend = await self.match_to_trend(incident, self.trends.list_open(), quota=quota)
        if trend is None:
            return None
        return self.attach(trend, incident)

    # -------------------------
    # Creation
    # -------------------------
    def verify_members(self, members: List[Incident], event_type: Optional[str], title: str) -> List[Incident]:
        """Greedy pairwise check; a member joins only if it can group with every member kept so far."""
        continent = continent_named_in(title)
        kept: List[Incident] = []
        for m in members:
            if continent is not None and continent_of(m.country) != continent:
                continue
            if all(pair_can_group(m.country, m.event_type, k.country, k.event_type, event_type) for k in kept):
                kept.append(m)
        return kept

    def _build_trend(self, proposed: ProposedTrend, members: List[Incident]) -> Trend:
        countries = _union_countries([], [m.country for m in members])
        top_country = Counter(normalize_country(m.country) for m in members).most_common(1)[0][0]
        country = next(m.country for m in members if normalize_country(m.country) == top_country)
        severity = "informative"
        for m in members:
            severity = max_severity(severity, m.severity)
        event_type = proposed.event_type
        if not event_type:
            types = [m.event_type for m in members if m.event_type]
            event_type = Counter(types).most_common(1)[0][0] if types else None

        return Trend(
            id=uuid.uuid4().hex,
            title=proposed.title.strip(),
            country=country,
            countries=countries,
            event_type=event_type,
            severity=severity,
            description=proposed.description.strip(),
            predictive_analysis=proposed.predictive_analysis.strip(),
            alert_ids=[m.id for m in members],
            incident_count=len(members),
            status="open",
            first_seen=min(m.created_at for m in members),
            last_seen=utc_now_iso(),
            auto_generated=True,
        )

    async def create_trends_from_unmatched(
        self,
        candidates: Optional[List[Incident]] = None,
        *,
        quota: Optional[QuotaGate] = None,
    ) -> List[Trend]:
        if candidates is None:
            candidates = self.incidents.list_unmatched_reviewed(limit=self.cfg.trend_batch_size * 5)
        pool = [c for c in candidates if not c.trend_id]
        size = max(1, int(self.cfg.trend_batch_size))
        created: List[Trend] = []
        used: set = set()

        for start in range(0, len(pool), size):
            batch = pool[start : start + size]
            if len(batch) < MIN_TREND_MEMBERS:
                continue
            by_id = {i.id: i for i in batch}
            block = "\n".join(
                f"{i.id} | {i.country} | {i.event_type or '-'} | {i.severity} | {i.title}" for i in batch
            )
            try:
                res = await self._ask(trend_group_system(), trend_group_user(incidents_block=block), TrendGroupingPayload, quota)
            except LLMError as e:
                logger.warning(f"TREND grouping call failed | batch={start // size} err={e}")
                continue
            if not isinstance(res, Decoded):
                logger.warning(f"TREND grouping undecodable | batch={start // size} result={type(res).__name__}")
                continue

            for proposed in res.value.trends:
                if is_placeholder_title(proposed.title):
                    logger.info(f"TREND proposal rejected | title={proposed.title!r} reason=placeholder_title")
                    continue
                ids: List[str] = []
                for x in proposed.incident_ids:
                    if x in by_id and x not in used and x not in ids:
                        ids.append(x)
                if len(ids) < MIN_TREND_MEMBERS:
                    logger.info(f"TREND proposal rejected | title={proposed.title!r} reason=too_few_members")
                    continue

                members = self.verify_members([by_id[x] for x in ids], proposed.event_type, proposed.title)
                if len(members) < MIN_TREND_MEMBERS:
                    logger.info(f"TREND proposal rejected | title={proposed.title!r} reason=geo_rule")
                    continue

                trend = self._build_trend(proposed, members)
                self.trends.insert(trend)
                for m in members:
                    used.add(m.id)
                    self.incidents.update(m.model_copy(update={"trend_id": trend.id, "updated_at": utc_now_iso()}))
                created.append(trend)
                logger.info(f"TREND created | id={trend.id} title={trend.title!r} members={len(members)}")

        return created
