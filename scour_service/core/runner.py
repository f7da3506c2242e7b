# Copyright (c) 2024 torchtorch Authors.
# Licensed under the Apache License, Version 2.0

from __future__ import annotations

import logging
from typing import Callable, List, Optional

from scour_service.agents.dedup import DuplicateResolver
from scour_service.agents.draft import DraftGenerator
from scour_service.agents.evidence import EvidenceAcquirer
from scour_service.agents.health import SourceHealthTracker
from scour_service.agents.source_pipeline import SourcePipeline
from scour_service.agents.trends import TrendEngine
from scour_service.agents.validator import IncidentValidator
from scour_service.clients.fetcher import ContentFetcher
from scour_service.clients.web_search import WebSearchClient
from scour_service.config import Settings, clamp, require_settings
from scour_service.core.job_manager import AdvanceParams, JobManager
from scour_service.core.quota import QuotaGate
from scour_service.db import Stores, build_stores
from scour_service.errors import IncidentNotFoundError, SourceNotFoundError
from scour_service.llm.clients import OpenAICompatibleClient
from scour_service.schemas import Incident, JobProgress, ScourJob, SourceRunResult, Trend, utc_now_iso

logger = logging.getLogger(__name__)

STATUS_ACTIONS = ("approve", "dismiss", "published")


class ScourRunner:
    """Wires stores, capability clients and services together for the CLI and the HTTP app."""

    def __init__(
        self,
        settings: Settings,
        stores: Stores,
        *,
        search: WebSearchClient,
        llm: OpenAICompatibleClient,
        fetcher: Optional[ContentFetcher] = None,
    ) -> None:
        self.settings = settings
        self.stores = stores
        cfg = settings.scour

        self.health = SourceHealthTracker(stores.health, stores.sources, cfg)
        self.pipeline = SourcePipeline(
            evidence=EvidenceAcquirer(
                search,
                fetcher or ContentFetcher(settings.fetch),
                cfg,
                results_per_query=settings.web_search.results_per_query,
            ),
            drafts=DraftGenerator(llm, cfg, settings.llm),
            validator=IncidentValidator(cfg),
            dedup=DuplicateResolver(stores.incidents),
            incidents=stores.incidents,
            health=self.health,
            cfg=cfg,
        )
        self.jobs = JobManager(jobs=stores.jobs, sources=stores.sources, pipeline=self.pipeline, cfg=cfg)
        self.trends = TrendEngine(
            incidents=stores.incidents,
            trends=stores.trends,
            llm=llm,
            cfg=cfg,
            llm_timeout_s=settings.llm.timeout_s + 5.0,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "ScourRunner":
        from scour_service.clients.web_search import client_from_settings as search_from_settings
        from scour_service.llm.clients import client_from_settings as llm_from_settings

        require_settings(settings)
        return cls(
            settings,
            build_stores(settings),
            search=search_from_settings(settings.web_search),
            llm=llm_from_settings(settings.llm),
            fetcher=ContentFetcher(settings.fetch),
        )

    def quota_for(self, user_id: Optional[str]) -> QuotaGate:
        return QuotaGate(self.stores.quota, self.settings.quota, user_id)

    # -------------------------
    # Jobs
    # -------------------------
    def create_job(
        self,
        source_ids: Optional[List[str]] = None,
        *,
        max_sources: Optional[int] = None,
        days_back: Optional[int] = None,
    ) -> ScourJob:
        ids = list(source_ids or [])
        if not ids:
            ids = [s.id for s in self.stores.sources.list_enabled()]
        if max_sources:
            ids = ids[: max(0, int(max_sources))]
        return self.jobs.create_job(ids, days_back=days_back)

    def resolve_job_id(self, job_id: Optional[str]) -> Optional[str]:
        return job_id or self.stores.jobs.last_job_id()

    async def run_job(
        self,
        job_id: str,
        params: AdvanceParams,
        *,
        quota: Optional[QuotaGate] = None,
        on_checkpoint: Optional[Callable[[ScourJob], None]] = None,
    ) -> JobProgress:
        """Drive a job to completion with repeated bounded advances (worker / CLI use)."""
        while True:
            progress = await self.jobs.advance(
                job_id,
                time_budget_s=params.time_budget_s,
                batch_size=params.batch_size,
                source_timeout_s=params.source_timeout_s,
                days_back=params.days_back,
                quota=quota,
            )
            if on_checkpoint is not None:
                on_checkpoint(progress.job)
            if progress.done or progress.processed_this_call == 0:
                return progress

    # -------------------------
    # Single source
    # -------------------------
    async def scour_source(
        self,
        source_id: str,
        *,
        timeout_s: Optional[float] = None,
        days_back: Optional[int] = None,
        quota: Optional[QuotaGate] = None,
    ) -> SourceRunResult:
        cfg = self.settings.scour
        source = self.stores.sources.get(source_id)
        if source is None:
            raise SourceNotFoundError(f"source not found: {source_id}")
        return await self.pipeline.run(
            source,
            int(clamp(days_back, cfg.days_back, cfg.default_days_back)),
            clamp(timeout_s, cfg.source_timeout_s, cfg.default_source_timeout_s),
            quota=quota,
        )

    # -------------------------
    # Review transitions
    # -------------------------
    async def set_incident_status(
        self,
        incident_id: str,
        action: str,
        *,
        quota: Optional[QuotaGate] = None,
    ) -> tuple[Incident, Optional[Trend]]:
        if action not in STATUS_ACTIONS:
            raise ValueError(f"unknown action: {action}")
        incident = self.stores.incidents.get(incident_id)
        if incident is None:
            raise IncidentNotFoundError(f"incident not found: {incident_id}")

        if action == "approve":
            update = {"status": "approved"}
        elif action == "dismiss":
            update = {"status": "dismissed"}
        else:
            update = {"published": True}
        incident = incident.model_copy(update={**update, "updated_at": utc_now_iso()})
        self.stores.incidents.update(incident)
        logger.info(f"INCIDENT {action} | id={incident_id}")

        trend = await self.trends.process_incident(incident_id, quota=quota)
        return self.stores.incidents.get(incident_id) or incident, trend
