# Copyright (c) 2024 torchtorch Authors.
# Licensed under the Apache License, Version 2.0

from __future__ import annotations

import asyncio
import logging
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from scour_service.agents.scoring import is_valid_url
from scour_service.config import LLMSettings, ScourSettings
from scour_service.core.quota import QuotaGate
from scour_service.llm.clients import LLMChatMessage, LLMError, OpenAICompatibleClient
from scour_service.llm.decoding import Decoded, LowConfidence, MalformedJSON, SchemaViolation, decode_json
from scour_service.llm.prompts import draft_system, draft_user
from scour_service.schemas import EvidenceItem, IncidentDraft, SourceCitation
from scour_service.utils.time import utc_today

logger = logging.getLogger(__name__)


class DraftPayload(BaseModel):
    """Wire shape of the draft completion (camelCase keys)."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    ok: bool
    confidence: float = Field(ge=0.0, le=1.0)
    title: str = ""
    country: str = ""
    location: Optional[str] = None
    summary: str = ""
    advice: List[str] = Field(default_factory=list)
    sources: List[SourceCitation] = Field(default_factory=list)
    severity: Optional[str] = None
    event_type: Optional[str] = Field(default=None, alias="eventType")
    geo_scope: Optional[str] = Field(default=None, alias="geoScope")
    lat: Optional[float] = None
    lng: Optional[float] = None
    radius_km: Optional[float] = Field(default=None, alias="radiusKm")
    geo_json: Optional[dict] = Field(default=None, alias="geoJson")
    event_start_date: Optional[str] = Field(default=None, alias="eventStartDate")
    event_end_date: Optional[str] = Field(default=None, alias="eventEndDate")
    reason: Optional[str] = None

    @field_validator("severity", mode="before")
    @classmethod
    def _severity(cls, v: Any) -> Optional[str]:
        if v is None or v == "":
            return None
        s = str(v).strip().lower()
        if s not in ("informative", "caution", "warning", "critical"):
            raise ValueError(f"unknown severity {v!r}")
        return s

    @field_validator("sources", mode="before")
    @classmethod
    def _sources(cls, v: Any) -> Any:
        # bare URL strings are accepted as citations; unparseable URLs are dropped
        if not isinstance(v, list):
            return v
        items = [{"url": x} if isinstance(x, str) else x for x in v]
        return [it for it in items if not isinstance(it, dict) or is_valid_url(it.get("url"))]

    @field_validator("advice", mode="before")
    @classmethod
    def _advice(cls, v: Any) -> Any:
        if v is None:
            return []
        if isinstance(v, str):
            return [v] if v.strip() else []
        return v

    def to_draft(self) -> IncidentDraft:
        return IncidentDraft(
            ok=self.ok,
            confidence=self.confidence,
            title=self.title.strip(),
            country=self.country.strip(),
            location=(self.location or "").strip() or None,
            summary=self.summary.strip(),
            advice=[a.strip() for a in self.advice if a and a.strip()],
            sources=self.sources,
            severity=self.severity,
            event_type=self.event_type,
            geo_scope=(self.geo_scope or "").strip().lower() or None,
            lat=self.lat,
            lng=self.lng,
            radius_km=self.radius_km,
            geo_json=self.geo_json,
            event_start_date=self.event_start_date or None,
            event_end_date=self.event_end_date or None,
            reason=self.reason,
        )


def _declined(p: DraftPayload) -> Optional[LowConfidence]:
    if not p.ok:
        return LowConfidence(confidence=p.confidence, reason=(p.reason or "declined").strip() or "declined")
    return None


def default_advice(event_type: Optional[str], severity: Optional[str]) -> List[str]:
    sev = (severity or "informative").lower()
    kind = (event_type or "").lower()

    if sev == "critical":
        out = ["Avoid all travel to the affected area."]
    elif sev == "warning":
        out = ["Reconsider travel to the affected area."]
    elif sev == "caution":
        out = ["Exercise extra caution in the affected area."]
    else:
        out = ["Stay informed of developments through local news."]

    if any(k in kind for k in ("earthquake", "natural", "volcan", "landslide")):
        out += [
            "Check infrastructure and transport status before travelling.",
            "Confirm hospitals, water and power are available at your destination.",
            "Carry emergency supplies and keep in contact with your embassy.",
        ]
    elif any(k in kind for k in ("war", "conflict", "terror", "armed")):
        out += [
            "Register with your embassy.",
            "Keep a low profile and avoid large gatherings.",
            "Prepare a contingency evacuation plan and keep documents secure.",
        ]
    elif any(k in kind for k in ("health", "disease", "epidemic", "outbreak")):
        out += [
            "Check vaccination requirements and current WHO guidance.",
            "Make sure your travel insurance covers medical care.",
            "Locate the nearest medical facilities before travel.",
        ]
    elif any(k in kind for k in ("weather", "flood", "storm", "hurricane", "cyclone", "typhoon")):
        out += [
            "Monitor weather forecasts and local emergency alerts.",
            "Confirm airline and transport operating status.",
            "Identify safe shelter locations before arrival.",
        ]
    elif any(k in kind for k in ("civil", "unrest", "protest", "demonstration", "strike")):
        out += [
            "Avoid protest areas and large public gatherings.",
            "Keep emergency numbers for police, embassy and hotel at hand.",
            "Plan alternate travel routes.",
        ]
    else:
        out += [
            "Follow official travel advisories and local authority guidance.",
            "Keep travel plans flexible.",
        ]
    return out


def evidence_block(evidence: List[EvidenceItem]) -> str:
    lines = []
    for i, ev in enumerate(evidence, 1):
        lines.append(f"[{i}] {ev.title or '(untitled)'}")
        lines.append(f"    url: {ev.url}")
        if ev.recency_hint:
            lines.append(f"    published: {ev.recency_hint}")
        if ev.description:
            lines.append(f"    text: {ev.description}")
    return "\n".join(lines)


class DraftGenerator:
    def __init__(
        self,
        llm: OpenAICompatibleClient,
        cfg: Optional[ScourSettings] = None,
        llm_cfg: Optional[LLMSettings] = None,
    ) -> None:
        self.llm = llm
        self.cfg = cfg or ScourSettings()
        self.llm_cfg = llm_cfg

    def _chat(self, messages: List[LLMChatMessage]) -> str:
        temperature = self.llm_cfg.temperature if self.llm_cfg else 0.1
        max_tokens = (self.llm_cfg.max_tokens if self.llm_cfg else None) or 1800
        return self.llm.chat(messages, model=None, temperature=temperature, max_tokens=max_tokens)

    async def generate(
        self,
        evidence: List[EvidenceItem],
        *,
        source_hint: str,
        country_hint: Optional[str],
        days_back: int,
        recent_incident_titles: List[str],
        quota: Optional[QuotaGate] = None,
    ) -> IncidentDraft:
        evidence = list(evidence)[: self.cfg.max_evidence_for_llm]
        if not evidence:
            return IncidentDraft(ok=False, reason="no_evidence")

        user = draft_user(
            today_utc=utc_today().isoformat(),
            days_back=int(days_back),
            source_hint=source_hint,
            country_hint=country_hint,
            evidence_block=evidence_block(evidence),
            recent_incidents=list(recent_incident_titles)[: self.cfg.recent_titles_limit],
        )
        messages = [LLMChatMessage("system", draft_system()), LLMChatMessage("user", user)]

        (quota or QuotaGate.unlimited()).consume("llm")
        timeout = (self.llm_cfg.timeout_s if self.llm_cfg else 20.0) + 5.0
        try:
            raw = await asyncio.wait_for(asyncio.to_thread(self._chat, messages), timeout=timeout)
        except asyncio.TimeoutError as e:
            raise LLMError(f"LLM call exceeded {timeout:.0f}s") from e

        res = decode_json(raw, DraftPayload, low_confidence=_declined)
        if isinstance(res, MalformedJSON):
            logger.warning(f"DRAFT malformed | source={source_hint} err={res.error}")
            return IncidentDraft(ok=False, reason="malformed_json")
        if isinstance(res, SchemaViolation):
            logger.warning(f"DRAFT schema violation | source={source_hint} errors={res.errors[:3]}")
            return IncidentDraft(ok=False, reason="schema_violation")
        if isinstance(res, LowConfidence):
            return IncidentDraft(ok=False, confidence=res.confidence, reason=res.reason)

        assert isinstance(res, Decoded)
        draft = res.value.to_draft()
        if not draft.advice:
            draft = draft.model_copy(update={"advice": default_advice(draft.event_type, draft.severity)})
        return draft
