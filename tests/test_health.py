"""Unit tests for scour_service.agents.health."""

import unittest

from scour_service.agents.health import SourceHealthTracker
from scour_service.config import ScourSettings
from scour_service.db import memory_stores
from tests.fakes import make_source


def make_tracker(**cfg):
    stores = memory_stores()
    stores.sources.upsert(make_source(id="s1"))
    return SourceHealthTracker(stores.health, stores.sources, ScourSettings(**cfg)), stores


class TestSourceHealthTracker(unittest.TestCase):

    def test_six_lows_disable_source(self):
        tracker, stores = make_tracker()
        for _ in range(6):
            st = tracker.record_outcome("s1", "low", "low_confidence")
        self.assertTrue(st.disabled_by_system)
        self.assertFalse(stores.sources.get("s1").enabled)
        self.assertEqual(stores.sources.get("s1").disabled_reason, st.disabled_reason)

    def test_five_rejects_trip_reject_streak(self):
        tracker, stores = make_tracker()
        for _ in range(5):
            st = tracker.record_outcome("s1", "reject", "country_mismatch")
        self.assertEqual(st.disabled_reason, "reject_streak")
        self.assertFalse(stores.sources.get("s1").enabled)

    def test_created_resets_no_create(self):
        tracker, stores = make_tracker()
        for _ in range(4):
            tracker.record_outcome("s1", "error", "source_timeout")
        st = tracker.record_outcome("s1", "created")
        self.assertEqual(st.consecutive_no_create, 0)
        for _ in range(4):
            st = tracker.record_outcome("s1", "error", "source_timeout")
        self.assertFalse(st.disabled_by_system)
        self.assertTrue(stores.sources.get("s1").enabled)
        self.assertEqual(st.total_runs, 9)
        self.assertEqual(st.total_created, 1)

    def test_errors_reset_reject_streak(self):
        tracker, _ = make_tracker()
        for _ in range(3):
            tracker.record_outcome("s1", "reject", "country_mismatch")
        st = tracker.record_outcome("s1", "error", "source_timeout")
        self.assertEqual(st.consecutive_rejects, 0)
        self.assertEqual(st.consecutive_no_create, 4)

    def test_no_create_needs_min_runs(self):
        tracker, _ = make_tracker(disable_min_runs=10)
        for _ in range(6):
            st = tracker.record_outcome("s1", "error", "boom")
        self.assertFalse(st.disabled_by_system)

    def test_dup_counts_as_no_create_by_default(self):
        tracker, _ = make_tracker()
        st = tracker.record_outcome("s1", "dup", "duplicate")
        self.assertEqual(st.consecutive_no_create, 1)
        self.assertEqual(st.consecutive_rejects, 0)

    def test_dup_policy_flag(self):
        tracker, _ = make_tracker(dup_counts_as_no_create=False)
        for _ in range(8):
            st = tracker.record_outcome("s1", "dup", "duplicate")
        self.assertEqual(st.consecutive_no_create, 0)
        self.assertFalse(st.disabled_by_system)

    def test_history_is_capped(self):
        tracker, _ = make_tracker(disable_reject_streak=1000, disable_no_create_streak=1000)
        for i in range(40):
            st = tracker.record_outcome("s1", "created", reason=str(i))
        self.assertEqual(len(st.history), 30)
        self.assertEqual(st.history[-1].reason, "39")
        self.assertEqual(tracker.get("s1").total_runs, 40)

    def test_reenabled_source_is_judged_again(self):
        tracker, stores = make_tracker()
        for _ in range(5):
            tracker.record_outcome("s1", "reject", "country_mismatch")
        self.assertFalse(stores.sources.get("s1").enabled)

        stores.sources.set_enabled("s1", True)
        for _ in range(4):
            st = tracker.record_outcome("s1", "reject", "country_mismatch")
        self.assertFalse(st.disabled_by_system)
        self.assertEqual(st.consecutive_rejects, 4)
        self.assertTrue(stores.sources.get("s1").enabled)

        st = tracker.record_outcome("s1", "reject", "country_mismatch")
        self.assertTrue(st.disabled_by_system)
        self.assertEqual(st.disabled_reason, "reject_streak")
        self.assertFalse(stores.sources.get("s1").enabled)

    def test_still_disabled_source_keeps_state(self):
        tracker, stores = make_tracker()
        for _ in range(5):
            tracker.record_outcome("s1", "reject", "country_mismatch")
        st = tracker.record_outcome("s1", "reject", "country_mismatch")
        self.assertTrue(st.disabled_by_system)
        self.assertEqual(st.consecutive_rejects, 6)


if __name__ == "__main__":
    unittest.main()
