# Copyright (c) 2024 torchtorch Authors.
# Licensed under the Apache License, Version 2.0

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, Field

Severity = Literal["informative", "caution", "warning", "critical"]
SEVERITY_RANK: dict[str, int] = {"informative": 0, "caution": 1, "warning": 2, "critical": 3}

Outcome = Literal["created", "dup", "reject", "low", "error"]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def utc_now_iso() -> str:
    return utc_now().isoformat().replace("+00:00", "Z")


def severity_rank(sev: Optional[str]) -> int:
    return SEVERITY_RANK.get((sev or "").strip().lower(), 0)


def max_severity(a: Optional[str], b: Optional[str]) -> str:
    a2 = (a or "informative").lower()
    b2 = (b or "informative").lower()
    return a2 if severity_rank(a2) >= severity_rank(b2) else b2


# -------------------------
# Sources
# -------------------------
class Source(BaseModel):
    id: str
    name: str
    url: Optional[str] = None
    country: Optional[str] = None
    topics: list[str] = Field(default_factory=list)
    type: str = "web"
    enabled: bool = True
    min_severity_floor: Severity = "informative"
    disabled_reason: Optional[str] = None
    created_at: Optional[str] = None


# -------------------------
# Pipeline (ephemeral)
# -------------------------
class SearchResult(BaseModel):
    title: str
    snippet: str
    url: str
    source: Optional[str] = None
    published: Optional[str] = None  # ISO date-time or relative age ("3 hours ago")


class EvidenceItem(BaseModel):
    url: str
    title: Optional[str] = None
    description: Optional[str] = None
    recency_hint: Optional[str] = None


class SourceCitation(BaseModel):
    url: str
    title: Optional[str] = None


class IncidentDraft(BaseModel):
    ok: bool = False
    confidence: float = 0.0
    title: str = ""
    country: str = ""
    location: Optional[str] = None
    summary: str = ""
    advice: list[str] = Field(default_factory=list)
    sources: list[SourceCitation] = Field(default_factory=list)
    severity: Optional[Severity] = None
    event_type: Optional[str] = None
    geo_scope: Optional[str] = None
    lat: Optional[float] = None
    lng: Optional[float] = None
    radius_km: Optional[float] = None
    geo_json: Optional[dict[str, Any]] = None
    event_start_date: Optional[str] = None
    event_end_date: Optional[str] = None
    reason: Optional[str] = None


class Rejection(BaseModel):
    reason: str
    severity: Optional[str] = None
    confidence: Optional[float] = None


# -------------------------
# Persisted entities
# -------------------------
class Incident(BaseModel):
    id: str
    source_id: str
    status: Literal["draft", "approved", "dismissed"] = "draft"
    title: str
    country: str
    location: Optional[str] = None
    summary: str
    advice: list[str] = Field(default_factory=list)
    sources: list[SourceCitation] = Field(default_factory=list)
    severity: Severity = "informative"
    event_type: Optional[str] = None
    geo_scope: Optional[str] = None
    lat: Optional[float] = None
    lng: Optional[float] = None
    radius_km: Optional[float] = None
    geo_json: Optional[dict[str, Any]] = None
    event_start_at: str
    event_end_at: str
    trend_id: Optional[str] = None
    published: bool = False
    ai_confidence: float = 0.0
    ai_reason: Optional[str] = None
    created_at: str = Field(default_factory=utc_now_iso)
    updated_at: str = Field(default_factory=utc_now_iso)


ValidationResult = Union[Incident, Rejection]


class JobError(BaseModel):
    source_id: str
    error: str
    at: str = Field(default_factory=utc_now_iso)


class JobRejection(BaseModel):
    source_id: str
    reason: str
    at: str = Field(default_factory=utc_now_iso)


class ActivityEntry(BaseModel):
    time: str = Field(default_factory=utc_now_iso)
    message: str


class ScourJob(BaseModel):
    id: str
    source_ids: list[str]
    next_index: int = 0
    processed: int = 0
    created: int = 0
    duplicates_skipped: int = 0
    low_confidence_skipped: int = 0
    errors: list[JobError] = Field(default_factory=list)
    rejections: list[JobRejection] = Field(default_factory=list)
    status: Literal["running", "done"] = "running"
    days_back: Optional[int] = None
    kind: Literal["sources", "early_signals"] = "sources"
    activity: list[ActivityEntry] = Field(default_factory=list)
    created_at: str = Field(default_factory=utc_now_iso)
    updated_at: str = Field(default_factory=utc_now_iso)

    @property
    def total(self) -> int:
        return len(self.source_ids)


class HealthEntry(BaseModel):
    at: str = Field(default_factory=utc_now_iso)
    outcome: Outcome
    reason: Optional[str] = None
    severity: Optional[str] = None
    confidence: Optional[float] = None


class SourceHealthState(BaseModel):
    source_id: str
    history: list[HealthEntry] = Field(default_factory=list)
    consecutive_rejects: int = 0
    consecutive_no_create: int = 0
    total_created: int = 0
    total_runs: int = 0
    disabled_by_system: bool = False
    disabled_reason: Optional[str] = None


class Trend(BaseModel):
    id: str
    title: str
    country: str
    countries: list[str] = Field(default_factory=list)
    event_type: Optional[str] = None
    severity: Severity = "informative"
    description: str = ""
    predictive_analysis: str = ""
    alert_ids: list[str] = Field(default_factory=list)
    incident_count: int = 0
    status: Literal["open", "monitoring", "closed"] = "open"
    first_seen: str = Field(default_factory=utc_now_iso)
    last_seen: str = Field(default_factory=utc_now_iso)
    auto_generated: bool = False


# -------------------------
# Run results
# -------------------------
class SourceRunResult(BaseModel):
    source_id: str
    outcome: Outcome
    reason: Optional[str] = None
    incident_id: Optional[str] = None
    dup_grouped_into: Optional[str] = None
    severity: Optional[str] = None
    confidence: Optional[float] = None
    query_used: Optional[str] = None
    elapsed_ms: float = 0.0


class JobProgress(BaseModel):
    job: ScourJob
    processed_this_call: int = 0
    created_this_call: int = 0
    errors_this_call: list[JobError] = Field(default_factory=list)
    rejections_this_call: list[JobRejection] = Field(default_factory=list)

    @property
    def done(self) -> bool:
        return self.job.status == "done"
