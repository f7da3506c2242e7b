# Copyright (c) 2024 torchtorch Authors.
# Licensed under the Apache License, Version 2.0

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Tuple

from scour_service.agents.scoring import canonical_url, is_credible_url, looks_generic_advisory
from scour_service.config import ScourSettings
from scour_service.schemas import (
    EvidenceItem,
    Incident,
    IncidentDraft,
    Rejection,
    Source,
    ValidationResult,
    severity_rank,
    utc_now_iso,
)
from scour_service.utils.countries import same_country
from scour_service.utils.geo import (
    circle_polygon,
    clamp_radius,
    default_radius_km,
    is_polygon_feature,
    valid_coordinates,
)
from scour_service.utils.time import (
    ABSOLUTE_FLOOR_UTC,
    date_from_url,
    day_start_utc,
    parse_iso_utc,
    parse_recency_hint,
    to_iso_z,
)

logger = logging.getLogger(__name__)

MIN_SUMMARY_CHARS = 40

# default event length by severity when no usable end is given
DEFAULT_DURATION_H = {"critical": 72, "warning": 48, "caution": 36, "informative": 24}


def _matching_evidence(draft: IncidentDraft, evidence: List[EvidenceItem]) -> List[EvidenceItem]:
    """Evidence items cited by the draft first, then the rest in order."""
    cited = {canonical_url(s.url) for s in draft.sources if s.url}
    hit = [e for e in evidence if canonical_url(e.url) in cited]
    rest = [e for e in evidence if canonical_url(e.url) not in cited]
    return hit + rest


def resolve_start(
    draft: IncidentDraft,
    evidence: List[EvidenceItem],
    *,
    now: datetime,
) -> Optional[datetime]:
    if draft.event_start_date:
        dt = parse_iso_utc(draft.event_start_date)
        if dt is not None:
            return dt

    ordered = _matching_evidence(draft, evidence)
    for ev in ordered:
        d = parse_recency_hint(ev.recency_hint, now=now)
        if d is not None:
            return day_start_utc(d)
    for ev in ordered:
        d = date_from_url(ev.url)
        if d is not None:
            return day_start_utc(d)
    if evidence:
        return day_start_utc(now.date())
    return None


def resolve_end(draft: IncidentDraft, start: datetime, severity: str) -> datetime:
    end = parse_iso_utc(draft.event_end_date) if draft.event_end_date else None
    if end is None or end <= start:
        end = start + timedelta(hours=DEFAULT_DURATION_H.get(severity, 24))
    return end


def clamp_severity(draft: IncidentDraft, severity: str) -> Tuple[str, Optional[str]]:
    """Apply the conservative caps; returns (severity, note)."""
    note = None
    urls = [s.url for s in draft.sources]
    if severity == "critical":
        severity, note = "warning", "critical_downgraded"
    if severity_rank(severity) > severity_rank("caution") and looks_generic_advisory(draft.title, draft.summary, urls):
        severity, note = "caution", "generic_advisory"
    if severity_rank(severity) >= severity_rank("warning") and not any(is_credible_url(u) for u in urls):
        severity, note = "caution", "no_credible_source"
    return severity, note


class IncidentValidator:
    def __init__(self, cfg: Optional[ScourSettings] = None, *, now: Optional[datetime] = None) -> None:
        self.cfg = cfg or ScourSettings()
        self._now = now

    def now(self) -> datetime:
        return self._now or datetime.now(timezone.utc)

    def validate(
        self,
        draft: IncidentDraft,
        source: Source,
        days_back: int,
        evidence: List[EvidenceItem],
    ) -> ValidationResult:
        now = self.now()
        severity = (draft.severity or "informative").lower()
        conf = float(draft.confidence or 0.0)

        def reject(reason: str, sev: Optional[str] = severity) -> Rejection:
            logger.info(f"VALIDATE reject | source={source.id} reason={reason} sev={sev} conf={conf:.2f}")
            return Rejection(reason=reason, severity=sev, confidence=conf)

        # 1. country
        country = (draft.country or "").strip() or (source.country or "").strip()
        if source.country and draft.country and not same_country(source.country, draft.country):
            return reject("country_mismatch")

        # 2. start date
        start = resolve_start(draft, evidence, now=now)
        if start is None:
            return reject("missing_eventStartDate")

        # 3. age
        if start.year <= 2023:
            return reject("too_old_year")
        lookback_floor = day_start_utc(now.date() - timedelta(days=int(days_back)))
        if start < lookback_floor:
            return reject("too_old_daysBack")
        if start < ABSOLUTE_FLOOR_UTC:
            return reject("event_pre_2025")

        # 4. confidence and content
        if (
            not draft.ok
            or not draft.title.strip()
            or not country
            or len(draft.summary.strip()) < MIN_SUMMARY_CHARS
            or not draft.sources
            or conf < self.cfg.min_confidence
        ):
            return reject("low_confidence")

        # 5. geo
        if not valid_coordinates(draft.lat, draft.lng):
            return reject("missing_geo_fields")
        lat, lng = float(draft.lat), float(draft.lng)
        if draft.radius_km is not None and draft.radius_km > 0:
            radius = round(clamp_radius(draft.radius_km), 1)
        else:
            radius = default_radius_km(severity, draft.geo_scope, draft.event_type)
        geo = draft.geo_json if is_polygon_feature(draft.geo_json) else circle_polygon(lat, lng, radius)
        if not is_polygon_feature(geo):
            return reject("missing_geo_fields")

        # 6. end
        end = resolve_end(draft, start, severity)

        # 7. severity caps
        final_sev, note = clamp_severity(draft, severity)
        if note:
            logger.info(f"VALIDATE clamp | source={source.id} {severity}->{final_sev} note={note}")

        # 8. floor
        floor = source.min_severity_floor or "informative"
        if severity_rank(final_sev) < severity_rank(floor):
            return reject(f"below_severity_floor_{floor}", final_sev)

        ts = utc_now_iso()
        return Incident(
            id=uuid.uuid4().hex,
            source_id=source.id,
            status="draft",
            title=draft.title.strip(),
            country=country,
            location=draft.location,
            summary=draft.summary.strip(),
            advice=list(draft.advice),
            sources=list(draft.sources),
            severity=final_sev,
            event_type=draft.event_type,
            geo_scope=draft.geo_scope,
            lat=lat,
            lng=lng,
            radius_km=radius,
            geo_json=geo,
            event_start_at=to_iso_z(start),
            event_end_at=to_iso_z(end),
            ai_confidence=conf,
            ai_reason=note or draft.reason,
            created_at=ts,
            updated_at=ts,
        )

