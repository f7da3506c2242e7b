# Copyright (c) 2024 torchtorch Authors.
# Licensed under the Apache License, Version 2.0

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass
from typing import List, Optional

from scour_service.agents.early_signals import early_signal_ids, is_early_signal_id, virtual_source
from scour_service.agents.source_pipeline import SourcePipeline
from scour_service.config import ScourSettings, clamp
from scour_service.core.quota import QuotaGate
from scour_service.db.base import JobStore, SourceStore
from scour_service.errors import JobBusyError, JobNotFoundError
from scour_service.schemas import (
    ActivityEntry,
    JobError,
    JobProgress,
    JobRejection,
    ScourJob,
    SourceRunResult,
    utc_now_iso,
)

logger = logging.getLogger(__name__)

ACTIVITY_LIMIT = 20
# after the first source of a call, a new source needs at least this much budget left
MIN_START_S = 5.0
LEASE_MARGIN_S = 30.0


@dataclass(frozen=True)
class AdvanceParams:
    time_budget_s: float
    batch_size: int
    source_timeout_s: float
    days_back: int

    @classmethod
    def clamped(
        cls,
        cfg: ScourSettings,
        *,
        time_budget_s: Optional[float] = None,
        batch_size: Optional[int] = None,
        source_timeout_s: Optional[float] = None,
        days_back: Optional[int] = None,
    ) -> "AdvanceParams":
        return cls(
            time_budget_s=clamp(time_budget_s, cfg.call_budget_s, cfg.default_call_budget_s),
            batch_size=int(clamp(batch_size, cfg.batch_size, cfg.default_batch_size)),
            source_timeout_s=clamp(source_timeout_s, cfg.source_timeout_s, cfg.default_source_timeout_s),
            days_back=int(clamp(days_back, cfg.days_back, cfg.default_days_back)),
        )


@dataclass(frozen=True)
class Checkpoint:
    job_id: str
    next_index: int
    done: bool


def add_activity(job: ScourJob, message: str) -> None:
    job.activity.append(ActivityEntry(message=message))
    job.activity = job.activity[-ACTIVITY_LIMIT:]


class ScourTask:
    """
    One resumable pass over a job. Each step() runs a single batch, persists
    the job and returns a Checkpoint; the caller decides whether to step again.
    """

    def __init__(
        self,
        job: ScourJob,
        *,
        jobs: JobStore,
        sources: SourceStore,
        pipeline: SourcePipeline,
        params: AdvanceParams,
        quota: Optional[QuotaGate] = None,
        deadline: Optional[float] = None,
    ) -> None:
        self.job = job
        self.jobs = jobs
        self.sources = sources
        self.pipeline = pipeline
        self.params = params
        self.quota = quota
        self.deadline = deadline
        self.progress = JobProgress(job=job)
        self._started = 0

    def checkpoint(self) -> Checkpoint:
        return Checkpoint(job_id=self.job.id, next_index=self.job.next_index, done=self.job.status == "done")

    def remaining_s(self) -> float:
        if self.deadline is None:
            return float("inf")
        return self.deadline - time.monotonic()

    async def _run_source(self, source_id: str) -> SourceRunResult:
        if is_early_signal_id(source_id):
            source = virtual_source(source_id)
        else:
            source = self.sources.get(source_id)
        if source is None:
            return SourceRunResult(source_id=source_id, outcome="reject", reason="source_not_found")
        if not source.enabled:
            return SourceRunResult(source_id=source_id, outcome="reject", reason="source_disabled")
        return await self.pipeline.run(
            source, self.params.days_back, self.params.source_timeout_s, quota=self.quota
        )

    def _apply(self, res: SourceRunResult) -> None:
        job = self.job
        job.next_index += 1
        job.processed += 1
        self.progress.processed_this_call += 1

        if res.outcome == "created":
            job.created += 1
            self.progress.created_this_call += 1
        elif res.outcome == "dup":
            job.duplicates_skipped += 1
        elif res.outcome == "error":
            err = JobError(source_id=res.source_id, error=res.reason or "error")
            job.errors.append(err)
            self.progress.errors_this_call.append(err)
        else:
            if res.outcome == "low":
                job.low_confidence_skipped += 1
            rej = JobRejection(source_id=res.source_id, reason=res.reason or res.outcome)
            job.rejections.append(rej)
            self.progress.rejections_this_call.append(rej)

    async def step(self) -> Checkpoint:
        job = self.job
        if job.status == "done":
            return self.checkpoint()

        start = job.next_index
        batch: List[str] = job.source_ids[start : start + self.params.batch_size]
        created_before = job.created
        for sid in batch:
            if self._started > 0 and self.remaining_s() < MIN_START_S:
                logger.info(f"JOB budget low | id={job.id} next_index={job.next_index} remaining={self.remaining_s():.1f}s")
                break
            self._started += 1
            self._apply(await self._run_source(sid))

        if job.next_index >= job.total:
            job.next_index = job.total
            job.status = "done"
        job.updated_at = utc_now_iso()
        add_activity(
            job,
            f"sources {start + 1}-{job.next_index} of {job.total}: "
            f"created {job.created - created_before}" + (" (done)" if job.status == "done" else ""),
        )
        self.jobs.save(job)

        cp = self.checkpoint()
        logger.info(f"JOB step | id={job.id} next_index={cp.next_index}/{job.total} done={cp.done}")
        return cp


class JobManager:
    def __init__(
        self,
        *,
        jobs: JobStore,
        sources: SourceStore,
        pipeline: SourcePipeline,
        cfg: Optional[ScourSettings] = None,
    ) -> None:
        self.jobs = jobs
        self.sources = sources
        self.pipeline = pipeline
        self.cfg = cfg or ScourSettings()

    def create_job(
        self,
        source_ids: List[str],
        *,
        days_back: Optional[int] = None,
        kind: str = "sources",
    ) -> ScourJob:
        ids: List[str] = []
        for sid in source_ids:
            if sid not in ids:
                ids.append(sid)
        job = ScourJob(id=uuid.uuid4().hex, source_ids=ids, days_back=days_back, kind=kind)
        if not ids:
            job.status = "done"
        add_activity(job, f"job created with {len(ids)} sources")
        self.jobs.save(job)
        self.jobs.set_last(job.id)
        logger.info(f"JOB created | id={job.id} kind={kind} sources={len(ids)}")
        return job

    def create_early_signals_job(
        self,
        *,
        countries: Optional[List[str]] = None,
        categories: Optional[List[str]] = None,
        max_queries: Optional[int] = None,
    ) -> ScourJob:
        """A sweep of open-web threat queries per country, advanced like any other job."""
        ids = early_signal_ids(
            countries or self.cfg.early_signal_countries,
            categories,
            max_queries=self.cfg.early_signal_max_queries if max_queries is None else max_queries,
        )
        return self.create_job(ids, days_back=self.cfg.early_signal_days_back, kind="early_signals")

    def get_job(self, job_id: str) -> ScourJob:
        job = self.jobs.get(job_id)
        if job is None:
            raise JobNotFoundError(f"scour job not found: {job_id}")
        return job

    def task(
        self,
        job: ScourJob,
        params: AdvanceParams,
        *,
        quota: Optional[QuotaGate] = None,
        deadline: Optional[float] = None,
    ) -> ScourTask:
        return ScourTask(
            job,
            jobs=self.jobs,
            sources=self.sources,
            pipeline=self.pipeline,
            params=params,
            quota=quota,
            deadline=deadline,
        )

    async def advance(
        self,
        job_id: str,
        *,
        time_budget_s: Optional[float] = None,
        batch_size: Optional[int] = None,
        source_timeout_s: Optional[float] = None,
        days_back: Optional[int] = None,
        quota: Optional[QuotaGate] = None,
    ) -> JobProgress:
        job = self.get_job(job_id)
        if job.status == "done":
            return JobProgress(job=job)

        params = AdvanceParams.clamped(
            self.cfg,
            time_budget_s=time_budget_s,
            batch_size=batch_size,
            source_timeout_s=source_timeout_s,
            days_back=days_back if days_back is not None else job.days_back,
        )

        owner = uuid.uuid4().hex
        ttl = params.time_budget_s + params.source_timeout_s + LEASE_MARGIN_S
        if not self.jobs.acquire(job_id, owner, ttl):
            raise JobBusyError(f"scour job {job_id} is already being advanced")

        try:
            # re-read under the lease; the copy read above may be stale
            job = self.get_job(job_id)
            t0 = time.monotonic()
            deadline = t0 + params.time_budget_s
            task = self.task(job, params, quota=quota, deadline=deadline)
            logger.info(
                f"JOB advance | id={job_id} next_index={job.next_index}/{job.total} "
                f"budget={params.time_budget_s:.0f}s batch={params.batch_size} timeout={params.source_timeout_s:.0f}s"
            )

            cp = task.checkpoint()
            while not cp.done and time.monotonic() < deadline:
                before = cp.next_index
                cp = await task.step()
                if cp.next_index == before:
                    break
            return task.progress
        finally:
            self.jobs.release(job_id, owner)
