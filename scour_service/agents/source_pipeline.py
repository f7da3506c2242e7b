# Copyright (c) 2024 torchtorch Authors.
# Licensed under the Apache License, Version 2.0

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Optional

import httpx

from scour_service.agents.dedup import DuplicateResolver, recent_titles
from scour_service.agents.draft import DraftGenerator
from scour_service.agents.evidence import EARLY_SIGNAL_TYPE, EvidenceAcquirer, source_kind
from scour_service.agents.health import SourceHealthTracker
from scour_service.agents.validator import IncidentValidator
from scour_service.config import ScourSettings
from scour_service.core.quota import QuotaGate
from scour_service.db.base import IncidentStore
from scour_service.errors import ConfigError, QuotaExceededError, StoreError
from scour_service.llm.clients import LLMError
from scour_service.schemas import Incident, Rejection, Source, SourceRunResult
from scour_service.utils.time import to_iso_z

logger = logging.getLogger(__name__)


class SourcePipeline:
    """evidence -> draft -> validate -> dedup -> persist, for one source."""

    def __init__(
        self,
        *,
        evidence: EvidenceAcquirer,
        drafts: DraftGenerator,
        validator: IncidentValidator,
        dedup: DuplicateResolver,
        incidents: IncidentStore,
        health: SourceHealthTracker,
        cfg: Optional[ScourSettings] = None,
    ) -> None:
        self.evidence = evidence
        self.drafts = drafts
        self.validator = validator
        self.dedup = dedup
        self.incidents = incidents
        self.health = health
        self.cfg = cfg or ScourSettings()

    async def run(
        self,
        source: Source,
        days_back: int,
        timeout_s: float,
        *,
        quota: Optional[QuotaGate] = None,
    ) -> SourceRunResult:
        t0 = time.perf_counter()
        logger.info(f"SOURCE start | id={source.id} name={source.name!r} days_back={days_back} timeout={timeout_s:.0f}s")
        try:
            res = await asyncio.wait_for(self._run(source, int(days_back), quota), timeout=float(timeout_s))
        except (ConfigError, StoreError):
            raise
        except asyncio.TimeoutError:
            res = SourceRunResult(source_id=source.id, outcome="error", reason="source_timeout")
        except (QuotaExceededError, LLMError, httpx.HTTPError, RuntimeError) as e:
            res = SourceRunResult(source_id=source.id, outcome="error", reason=f"{type(e).__name__}: {e}")
        except Exception as e:
            # any other failure is an error outcome for this source only
            logger.exception(f"SOURCE crash | id={source.id} err={type(e).__name__}: {e}")
            res = SourceRunResult(source_id=source.id, outcome="error", reason=f"{type(e).__name__}: {e}")

        res.elapsed_ms = (time.perf_counter() - t0) * 1000.0
        # early-signal queries are not stored sources and have no health record
        if source_kind(source) != EARLY_SIGNAL_TYPE:
            self.health.record_outcome(source.id, res.outcome, res.reason, res.severity, res.confidence)

        level = logging.WARNING if res.outcome == "error" else logging.INFO
        logger.log(
            level,
            f"SOURCE done | id={source.id} outcome={res.outcome} reason={res.reason} "
            f"incident={res.incident_id or res.dup_grouped_into} ms={res.elapsed_ms:.0f}",
        )
        return res

    def _since_iso(self) -> str:
        return to_iso_z(datetime.now(timezone.utc) - timedelta(days=self.cfg.dedup_lookback_days))

    async def _run(self, source: Source, days_back: int, quota: Optional[QuotaGate]) -> SourceRunResult:
        evidence, query = await self.evidence.acquire(source, days_back, quota=quota)
        if not evidence:
            return SourceRunResult(source_id=source.id, outcome="low", reason="no_evidence")

        since = self._since_iso()
        recent = self.incidents.list_since(since, country=source.country, limit=self.cfg.recent_titles_limit)

        draft = await self.drafts.generate(
            evidence,
            source_hint=f"{source.name} ({source.url or 'no url'})",
            country_hint=source.country,
            days_back=days_back,
            recent_incident_titles=recent_titles(recent),
            quota=quota,
        )
        if not draft.ok:
            outcome = "dup" if (draft.reason or "").strip().lower() == "duplicate" else "low"
            return SourceRunResult(
                source_id=source.id,
                outcome=outcome,
                reason=draft.reason or "declined",
                confidence=draft.confidence,
                query_used=query,
            )

        verdict = self.validator.validate(draft, source, days_back, evidence)
        if isinstance(verdict, Rejection):
            return SourceRunResult(
                source_id=source.id,
                outcome="low" if verdict.reason == "low_confidence" else "reject",
                reason=verdict.reason,
                severity=verdict.severity,
                confidence=verdict.confidence,
                query_used=query,
            )

        incident: Incident = verdict
        existing = self.dedup.find_duplicate(incident, since)
        if existing is not None:
            self.dedup.merge_into(existing, incident)
            return SourceRunResult(
                source_id=source.id,
                outcome="dup",
                reason="duplicate",
                dup_grouped_into=existing.id,
                severity=incident.severity,
                confidence=incident.ai_confidence,
                query_used=query,
            )

        saved = self.incidents.insert(incident)
        return SourceRunResult(
            source_id=source.id,
            outcome="created",
            incident_id=saved.id,
            severity=saved.severity,
            confidence=saved.ai_confidence,
            query_used=query,
        )
