"""Unit tests for scour_service.core.job_manager."""

import time
import unittest

from scour_service.agents.early_signals import EARLY_SIGNAL_CATEGORIES, early_signal_id
from scour_service.config import ScourSettings
from scour_service.core.job_manager import AdvanceParams, JobManager, ScourTask
from scour_service.db import memory_stores
from scour_service.errors import JobBusyError, JobNotFoundError
from scour_service.schemas import SourceRunResult
from tests.fakes import make_source


class StubPipeline:
    """Records every source it runs; outcome per source id comes from `script`."""

    def __init__(self, script=None):
        self.script = dict(script or {})
        self.ran = []
        self.runs = []

    async def run(self, source, days_back, timeout_s, *, quota=None):
        self.ran.append(source.id)
        self.runs.append((source, days_back))
        outcome, reason = self.script.get(source.id, ("created", None))
        return SourceRunResult(source_id=source.id, outcome=outcome, reason=reason)


def make_manager(n_sources=5, script=None):
    stores = memory_stores()
    for i in range(n_sources):
        stores.sources.upsert(make_source(id=f"s{i}", name=f"Source {i}"))
    pipeline = StubPipeline(script)
    mgr = JobManager(jobs=stores.jobs, sources=stores.sources, pipeline=pipeline, cfg=ScourSettings())
    return mgr, stores, pipeline


def params(batch_size=2):
    return AdvanceParams.clamped(ScourSettings(), batch_size=batch_size, time_budget_s=60, source_timeout_s=20, days_back=7)


# ---------------------------------------------------------------------------
# Parameter clamping
# ---------------------------------------------------------------------------

class TestAdvanceParams(unittest.TestCase):

    def test_bounds(self):
        p = AdvanceParams.clamped(ScourSettings(), time_budget_s=1000, batch_size=0, source_timeout_s=1, days_back=90)
        self.assertEqual(p.time_budget_s, 85.0)
        self.assertEqual(p.batch_size, 1)
        self.assertEqual(p.source_timeout_s, 15.0)
        self.assertEqual(p.days_back, 30)

    def test_defaults(self):
        p = AdvanceParams.clamped(ScourSettings())
        self.assertEqual((p.time_budget_s, p.batch_size, p.source_timeout_s, p.days_back), (50.0, 5, 30.0, 7))


# ---------------------------------------------------------------------------
# Resumable task
# ---------------------------------------------------------------------------

class TestScourTask(unittest.IsolatedAsyncioTestCase):

    async def test_step_persists_and_resumes(self):
        mgr, stores, pipeline = make_manager(5)
        job = mgr.create_job([f"s{i}" for i in range(5)])

        cp = await mgr.task(job, params(2)).step()
        self.assertEqual((cp.next_index, cp.done), (2, False))
        self.assertEqual(stores.jobs.get(job.id).next_index, 2)

        # a fresh task built from the stored job continues where the first stopped
        seen = [cp.next_index]
        stored = stores.jobs.get(job.id)
        task = mgr.task(stored, params(2))
        while not cp.done:
            cp = await task.step()
            seen.append(cp.next_index)

        self.assertEqual(seen, [2, 4, 5])
        self.assertEqual(pipeline.ran, [f"s{i}" for i in range(5)])
        final = stores.jobs.get(job.id)
        self.assertEqual(final.status, "done")
        self.assertEqual(final.processed, 5)
        self.assertEqual(final.created, 5)

    async def test_budget_stops_after_first_source(self):
        mgr, stores, pipeline = make_manager(4)
        job = mgr.create_job([f"s{i}" for i in range(4)])
        task = mgr.task(job, params(4), deadline=time.monotonic() - 1)
        cp = await task.step()
        self.assertEqual(cp.next_index, 1)
        self.assertEqual(pipeline.ran, ["s0"])


# ---------------------------------------------------------------------------
# advance()
# ---------------------------------------------------------------------------

class TestAdvance(unittest.IsolatedAsyncioTestCase):

    async def test_drains_job_and_counts_outcomes(self):
        script = {
            "s1": ("dup", "duplicate"),
            "s2": ("low", "low_confidence"),
            "s3": ("error", "source_timeout"),
            "s4": ("reject", "country_mismatch"),
        }
        mgr, stores, _ = make_manager(5, script)
        job = mgr.create_job([f"s{i}" for i in range(5)])

        progress = await mgr.advance(job.id, batch_size=2, time_budget_s=60, source_timeout_s=20)
        j = progress.job
        self.assertTrue(progress.done)
        self.assertEqual(j.next_index, 5)
        self.assertEqual((j.created, j.duplicates_skipped, j.low_confidence_skipped), (1, 1, 1))
        self.assertEqual([e.error for e in j.errors], ["source_timeout"])
        self.assertEqual([r.reason for r in j.rejections], ["low_confidence", "country_mismatch"])
        self.assertEqual(progress.processed_this_call, 5)
        self.assertEqual(progress.created_this_call, 1)

    async def test_done_job_is_unchanged(self):
        mgr, stores, pipeline = make_manager(2)
        job = mgr.create_job(["s0", "s1"])
        await mgr.advance(job.id)
        before = stores.jobs.get(job.id)

        again = await mgr.advance(job.id)
        self.assertEqual(again.processed_this_call, 0)
        self.assertEqual(again.job.model_dump(), before.model_dump())
        self.assertEqual(pipeline.ran, ["s0", "s1"])

    async def test_resumes_from_persisted_index(self):
        mgr, stores, pipeline = make_manager(4)
        job = mgr.create_job([f"s{i}" for i in range(4)])
        job.next_index = 3
        job.processed = 3
        stores.jobs.save(job)

        progress = await mgr.advance(job.id)
        self.assertEqual(pipeline.ran, ["s3"])
        self.assertEqual(progress.job.processed, 4)

    async def test_missing_and_disabled_sources_are_rejections(self):
        mgr, stores, pipeline = make_manager(2)
        stores.sources.set_enabled("s1", False, "manual")
        job = mgr.create_job(["s0", "s1", "ghost"])
        progress = await mgr.advance(job.id)
        self.assertEqual(pipeline.ran, ["s0"])
        self.assertEqual(
            [r.reason for r in progress.job.rejections],
            ["source_disabled", "source_not_found"],
        )
        self.assertEqual(progress.job.next_index, 3)

    async def test_concurrent_advance_is_refused(self):
        mgr, stores, pipeline = make_manager(2)
        job = mgr.create_job(["s0", "s1"])
        self.assertTrue(stores.jobs.acquire(job.id, "someone-else", 60))
        with self.assertRaises(JobBusyError):
            await mgr.advance(job.id)
        self.assertEqual(pipeline.ran, [])

        stores.jobs.release(job.id, "someone-else")
        progress = await mgr.advance(job.id)
        self.assertTrue(progress.done)

    async def test_unknown_job(self):
        mgr, _, _ = make_manager(0)
        with self.assertRaises(JobNotFoundError):
            await mgr.advance("missing")

    async def test_empty_job_is_done(self):
        mgr, stores, _ = make_manager(0)
        job = mgr.create_job([])
        self.assertEqual(job.status, "done")
        self.assertEqual(stores.jobs.last_job_id(), job.id)

    async def test_next_index_is_monotonic(self):
        mgr, stores, _ = make_manager(6)
        job = mgr.create_job([f"s{i}" for i in range(6)])
        last = 0
        task = mgr.task(stores.jobs.get(job.id), params(1))
        for _ in range(8):
            cp = await task.step()
            self.assertGreaterEqual(cp.next_index, last)
            last = cp.next_index
        self.assertEqual(stores.jobs.get(job.id).status, "done")
        self.assertEqual(stores.jobs.get(job.id).next_index, 6)

    def test_task_type(self):
        mgr, stores, _ = make_manager(1)
        job = mgr.create_job(["s0"])
        self.assertIsInstance(mgr.task(job, params()), ScourTask)


# ---------------------------------------------------------------------------
# Early-signals sweep
# ---------------------------------------------------------------------------

class TestEarlySignalsJob(unittest.IsolatedAsyncioTestCase):

    async def test_sweep_drains_through_the_same_task(self):
        mgr, stores, pipeline = make_manager(0)
        job = mgr.create_early_signals_job(countries=["Japan", "Greece"], categories=["transport"], max_queries=3)
        self.assertEqual(job.kind, "early_signals")
        self.assertEqual(job.days_back, 1)
        self.assertEqual(job.total, 3)

        progress = await mgr.advance(job.id, batch_size=2)
        while not progress.done:
            progress = await mgr.advance(job.id, batch_size=2)

        first = EARLY_SIGNAL_CATEGORIES["transport"][0]
        self.assertEqual(pipeline.ran[:2], [early_signal_id(first, "Japan"), early_signal_id(first, "Greece")])
        self.assertEqual(progress.job.created, 3)
        source, days_back = pipeline.runs[0]
        self.assertEqual((source.type, source.country, days_back), ("early-signal", "Japan", 1))
        self.assertEqual(stores.sources.list_enabled(), [])

    async def test_default_countries_and_cap_from_settings(self):
        mgr, _, _ = make_manager(0)
        job = mgr.create_early_signals_job()
        cfg = ScourSettings()
        self.assertEqual(job.total, cfg.early_signal_max_queries)
        self.assertEqual(
            job.source_ids[0],
            early_signal_id(EARLY_SIGNAL_CATEGORIES["natural_disasters"][0], cfg.early_signal_countries[0]),
        )

    async def test_malformed_virtual_id_is_rejected(self):
        mgr, _, pipeline = make_manager(0)
        job = mgr.create_job(["early-signal:Japan"])
        progress = await mgr.advance(job.id)
        self.assertEqual(pipeline.ran, [])
        self.assertEqual([r.reason for r in progress.job.rejections], ["source_not_found"])


if __name__ == "__main__":
    unittest.main()
