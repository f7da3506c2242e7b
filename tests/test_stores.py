"""Store behaviour: leases, counters, typed KV repositories, geo column handling."""

import unittest

from scour_service.config import QuotaSettings
from scour_service.core.quota import QuotaGate
from scour_service.db import memory_stores
from scour_service.db.memory import MemoryKVStore
from scour_service.db.mysql_store import _INCIDENT_BOOL, _INCIDENT_JSON, _from_row, _to_row, _upsert_sql
from scour_service.errors import QuotaExceededError
from scour_service.schemas import ScourJob
from tests.fakes import make_incident, make_source


# ---------------------------------------------------------------------------
# Leases
# ---------------------------------------------------------------------------

class TestLease(unittest.TestCase):

    def test_second_owner_blocked_until_release(self):
        kv = MemoryKVStore()
        self.assertTrue(kv.acquire_lock("job", "w1", 60))
        self.assertFalse(kv.acquire_lock("job", "w2", 60))
        # re-entrant for the holder
        self.assertTrue(kv.acquire_lock("job", "w1", 60))
        kv.release_lock("job", "w2")
        self.assertFalse(kv.acquire_lock("job", "w2", 60))
        kv.release_lock("job", "w1")
        self.assertTrue(kv.acquire_lock("job", "w2", 60))

    def test_expired_lease_can_be_taken(self):
        kv = MemoryKVStore()
        self.assertTrue(kv.acquire_lock("job", "w1", -1))
        self.assertTrue(kv.acquire_lock("job", "w2", 60))


# ---------------------------------------------------------------------------
# Typed repositories
# ---------------------------------------------------------------------------

class TestRepositories(unittest.TestCase):

    def test_job_roundtrip_and_last(self):
        stores = memory_stores()
        self.assertIsNone(stores.jobs.last_job_id())
        stores.jobs.save(ScourJob(id="j1", source_ids=["a", "b"], next_index=1))
        stores.jobs.set_last("j1")
        job = stores.jobs.get("j1")
        self.assertEqual(job.next_index, 1)
        self.assertEqual(job.total, 2)
        self.assertEqual(stores.jobs.last_job_id(), "j1")
        self.assertIsNone(stores.jobs.get("missing"))

    def test_health_defaults_for_unknown_source(self):
        state = memory_stores().health.get("never-run")
        self.assertEqual(state.total_runs, 0)
        self.assertFalse(state.disabled_by_system)

    def test_list_enabled_skips_disabled(self):
        stores = memory_stores()
        stores.sources.upsert(make_source(id="a"))
        stores.sources.upsert(make_source(id="b"))
        stores.sources.set_enabled("b", False, "auto")
        self.assertEqual([s.id for s in stores.sources.list_enabled()], ["a"])
        self.assertEqual(stores.sources.get("b").disabled_reason, "auto")


# ---------------------------------------------------------------------------
# Incidents
# ---------------------------------------------------------------------------

class TestIncidentStore(unittest.TestCase):

    def test_geo_fields_dropped_without_columns(self):
        stores = memory_stores(geo_columns=False)
        stores.incidents.insert(make_incident(id="x"))
        row = stores.incidents.get("x")
        self.assertIsNone(row.lat)
        self.assertIsNone(row.geo_json)
        self.assertEqual(row.title, "Flood in Jakarta")

    def test_list_since_filters_country_aliases(self):
        stores = memory_stores()
        stores.incidents.insert(make_incident(id="us", country="USA"))
        stores.incidents.insert(make_incident(id="id", country="Indonesia"))
        rows = stores.incidents.list_since("2000-01-01", country="United States")
        self.assertEqual([r.id for r in rows], ["us"])

    def test_unmatched_reviewed_excludes_drafts_and_grouped(self):
        stores = memory_stores()
        stores.incidents.insert(make_incident(id="a"))
        stores.incidents.insert(make_incident(id="b", status="draft"))
        stores.incidents.insert(make_incident(id="c", status="draft", published=True))
        stores.incidents.insert(make_incident(id="d", trend_id="t1"))
        ids = sorted(i.id for i in stores.incidents.list_unmatched_reviewed())
        self.assertEqual(ids, ["a", "c"])


# ---------------------------------------------------------------------------
# Quota
# ---------------------------------------------------------------------------

class TestQuota(unittest.TestCase):

    def test_limit_enforced_per_kind(self):
        stores = memory_stores()
        gate = QuotaGate(stores.quota, QuotaSettings(llm_per_day=2, search_per_day=5), "alice")
        gate.consume("llm")
        gate.consume("llm")
        with self.assertRaises(QuotaExceededError):
            gate.consume("llm")
        self.assertEqual(gate.consume("search"), 1)

    def test_unlimited_gate_never_counts(self):
        stores = memory_stores()
        gate = QuotaGate(stores.quota, QuotaSettings(llm_per_day=0), None)
        self.assertEqual(gate.consume("llm"), 0)
        self.assertEqual(QuotaGate.unlimited().consume("search"), 0)

    def test_unknown_kind(self):
        with self.assertRaises(ValueError):
            QuotaGate(None, QuotaSettings(), "alice").limit_for("tokens")


# ---------------------------------------------------------------------------
# MySQL row mapping
# ---------------------------------------------------------------------------

class TestMySQLRows(unittest.TestCase):

    def test_json_and_bool_columns(self):
        row = _to_row({"id": "x", "sources": [{"url": "u"}], "published": True, "geo_json": None},
                      _INCIDENT_JSON, _INCIDENT_BOOL)
        self.assertEqual(row["sources"], '[{"url": "u"}]')
        self.assertEqual(row["published"], 1)
        self.assertIsNone(row["geo_json"])

        back = _from_row(row, _INCIDENT_JSON, _INCIDENT_BOOL)
        self.assertEqual(back["sources"], [{"url": "u"}])
        self.assertIs(back["published"], True)

    def test_upsert_sql_skips_key(self):
        sql = _upsert_sql("trends", ["id", "title", "status"])
        self.assertTrue(sql.startswith("INSERT INTO trends (id, title, status) VALUES (%s, %s, %s)"))
        self.assertIn("title=VALUES(title), status=VALUES(status)", sql)
        self.assertNotIn("id=VALUES(id)", sql)


if __name__ == "__main__":
    unittest.main()
