# Copyright (c) 2024 torchtorch Authors.
# Licensed under the Apache License, Version 2.0

from __future__ import annotations

from typing import List, Optional

# ---------------------------------------------------------------------
# Centralized prompts. Agents import prompts ONLY from scour_service.llm.prompts
# ---------------------------------------------------------------------

PROMPT_VERSION = "v2.1"


# =========================================================
# Incident draft generation
# =========================================================
def draft_system() -> str:
    return (
        "You extract ONE travel-safety incident from web evidence for a risk desk.\n"
        "Use ONLY the evidence provided. Never invent facts, places, dates or sources.\n"
        "All output MUST be in English. Return STRICT JSON only. No extra text.\n"
    )


def draft_user(
    *,
    today_utc: str,
    days_back: int,
    source_hint: str,
    country_hint: Optional[str],
    evidence_block: str,
    recent_incidents: List[str],
) -> str:
    recent = "\n".join(f"- {t}" for t in recent_incidents) or "- (none)"
    country = country_hint or "(any)"

    return f"""
Today (UTC): {today_utc}
Source: {source_hint}
Expected country: {country}

EVIDENCE (numbered; cite by URL):
{evidence_block}

ALREADY REPORTED (do NOT recreate these; if the evidence describes one of them,
return ok=false with reason "duplicate"):
{recent}

HARD RULES:
- REJECT (ok=false, reason "too_old") any event that started more than {days_back} days before today,
  or any event from 2023 or earlier.
- REJECT (ok=false, reason "not_incident") sports, entertainment, opinion, listicles, general travel tips.
- If the evidence does not clearly describe one concrete incident, return ok=false.
- location must be a real city/region; country must be the full English country name.
- lat/lng: decimal degrees of the actual event location (never 0,0). Omit if unknown.

SEVERITY RUBRIC:
- critical: ONLY mass-casualty events or major conflict escalation.
- warning: significant, credibly reported disruption (major unrest, serious weather, infrastructure failure).
- caution: localized incidents (road closures, small protests, localized crime).
- informative: default for everything else.

Return STRICT JSON ONLY with this schema:
{{
  "ok": true,
  "confidence": 0.0,
  "title": "Specific event with location",
  "country": "Full country name",
  "location": "City/region",
  "summary": "40+ chars: what happened, impact, affected area",
  "advice": ["3-5 actionable traveller recommendations"],
  "sources": [{{"url": "evidence URL", "title": "optional"}}],
  "severity": "critical|warning|caution|informative",
  "eventType": "e.g. Civil Unrest, Natural Disaster, Crime, Health Crisis, Transportation Disruption",
  "geoScope": "local|city|regional|national|multinational",
  "lat": null,
  "lng": null,
  "radiusKm": null,
  "eventStartDate": "YYYY-MM-DD or null if the evidence gives no date",
  "eventEndDate": "YYYY-MM-DD or null",
  "reason": null
}}
""".strip()


# =========================================================
# Trend matching
# =========================================================
def trend_match_system() -> str:
    return (
        "You decide whether a new incident belongs to an existing trend of related incidents.\n"
        "A match requires the same underlying situation (same hazard or campaign), not just the same country.\n"
        "Return STRICT JSON only: {\"match\": true|false, \"reason\": \"short\"}\n"
    )


def trend_match_user(*, incident_json: str, trend_json: str) -> str:
    return f"""
INCIDENT:
{incident_json}

TREND:
{trend_json}

Rules:
- Local crime (robbery, theft, assault) never links incidents across countries.
- Weather, natural disasters, epidemics and migration can cross borders only between neighbouring countries.
- Do not match on generic similarity ("both are protests") without shared cause or geography.

Return the JSON only.
""".strip()


# =========================================================
# Trend creation from unmatched incidents
# =========================================================
def trend_group_system() -> str:
    return (
        "You group related safety incidents into named trends for analysts.\n"
        "Only group incidents that share an evolving situation. Leave unrelated incidents out.\n"
        "Return STRICT JSON only.\n"
    )


def trend_group_user(*, incidents_block: str) -> str:
    return f"""
INCIDENTS (id | country | eventType | severity | title):
{incidents_block}

Rules:
- Every trend must reference at least 2 incident ids from the list.
- Same country, or neighbouring countries for weather / natural disaster / epidemic / migration only.
- Local crime never crosses country borders.
- Titles must be specific (e.g. "Monsoon flooding across Jakarta and West Java"), never generic
  ("Trend 1", "Various incidents", "Multiple events").

Return STRICT JSON ONLY:
{{
  "trends": [
    {{
      "title": "specific title",
      "description": "what connects these incidents",
      "predictiveAnalysis": "likely evolution over the next days",
      "eventType": "dominant event type",
      "incidentIds": ["id1", "id2"]
    }}
  ]
}}
""".strip()
