"""Unit tests for scour_service.agents.trends."""

import json
import unittest

from scour_service.agents.trends import (
    TrendEngine,
    can_group_countries_for_trend,
    incident_fits_trend,
    is_placeholder_title,
)
from scour_service.db import memory_stores
from scour_service.errors import IncidentNotFoundError
from scour_service.schemas import Trend
from tests.fakes import FakeLLM, make_incident


def make_trend(**kwargs) -> Trend:
    defaults = dict(
        id="t1",
        title="Monsoon flooding across Jakarta",
        country="Indonesia",
        countries=["Indonesia"],
        event_type="Flood",
        severity="caution",
        alert_ids=["seed"],
        incident_count=1,
    )
    defaults.update(kwargs)
    return Trend(**defaults)


def make_engine(llm=None):
    stores = memory_stores()
    return TrendEngine(incidents=stores.incidents, trends=stores.trends, llm=llm or FakeLLM()), stores


# ---------------------------------------------------------------------------
# Geographic grouping rule
# ---------------------------------------------------------------------------

class TestCanGroupCountries(unittest.TestCase):

    def test_local_crime_never_crosses_borders(self):
        self.assertFalse(can_group_countries_for_trend("France", "Germany", "robbery"))

    def test_neighbours_share_weather(self):
        self.assertTrue(can_group_countries_for_trend("Cuba", "Haiti", "hurricane"))

    def test_distant_continents(self):
        self.assertFalse(can_group_countries_for_trend("Japan", "Brazil", "earthquake"))

    def test_same_country_always(self):
        self.assertTrue(can_group_countries_for_trend("USA", "United States", "robbery"))

    def test_non_cross_border_type(self):
        self.assertFalse(can_group_countries_for_trend("France", "Germany", "Civil Unrest"))

    def test_same_continent_epidemic(self):
        self.assertTrue(can_group_countries_for_trend("Kenya", "Nigeria", "Cholera outbreak"))


class TestPreCheck(unittest.TestCase):

    def test_continent_in_title_restricts(self):
        trend = make_trend(title="Heatwave across Europe", country="France", countries=["France"], event_type="Heatwave")
        self.assertTrue(incident_fits_trend(make_incident(country="Spain", event_type="Heatwave"), trend))
        self.assertFalse(incident_fits_trend(make_incident(country="Morocco", event_type="Heatwave"), trend))

    def test_must_fit_every_trend_country(self):
        trend = make_trend(countries=["Indonesia", "Malaysia"], event_type="Flood")
        self.assertTrue(incident_fits_trend(make_incident(country="Indonesia"), trend))
        self.assertFalse(incident_fits_trend(make_incident(country="Brazil"), trend))

    def test_placeholder_titles(self):
        for t in ("Trend 1", "Various incidents", "untitled", "misc", ""):
            self.assertTrue(is_placeholder_title(t), t)
        self.assertFalse(is_placeholder_title("Monsoon flooding across Jakarta and West Java"))


# ---------------------------------------------------------------------------
# Matching and attaching
# ---------------------------------------------------------------------------

class TestMatchToTrend(unittest.IsolatedAsyncioTestCase):

    async def test_no_llm_call_when_precheck_fails(self):
        llm = FakeLLM()
        engine, _ = make_engine(llm)
        trend = make_trend(countries=["Brazil"], country="Brazil", title="Floods in Brazil")
        res = await engine.match_to_trend(make_incident(country="Indonesia", event_type="Crime"), [trend])
        self.assertIsNone(res)
        self.assertEqual(llm.calls, [])

    async def test_llm_decides_after_precheck(self):
        llm = FakeLLM([json.dumps({"match": True, "reason": "same flood"})])
        engine, _ = make_engine(llm)
        res = await engine.match_to_trend(make_incident(), [make_trend()])
        self.assertEqual(res.id, "t1")
        self.assertEqual(len(llm.calls), 1)

    async def test_malformed_reply_is_no_match(self):
        engine, _ = make_engine(FakeLLM(["sorry, no JSON today"]))
        self.assertIsNone(await engine.match_to_trend(make_incident(), [make_trend()]))

    async def test_process_incident_attaches(self):
        llm = FakeLLM([json.dumps({"match": True, "reason": "same flood"})])
        engine, stores = make_engine(llm)
        stores.trends.insert(make_trend())
        stores.incidents.insert(make_incident(id="i9", severity="warning", status="approved"))

        trend = await engine.process_incident("i9")
        self.assertEqual(trend.id, "t1")
        self.assertEqual(trend.alert_ids, ["seed", "i9"])
        self.assertEqual(trend.incident_count, 2)
        self.assertEqual(trend.severity, "warning")
        self.assertEqual(stores.incidents.get("i9").trend_id, "t1")
        self.assertEqual(stores.trends.get("t1").incident_count, 2)

    async def test_process_incident_skips_drafts(self):
        llm = FakeLLM()
        engine, stores = make_engine(llm)
        stores.trends.insert(make_trend())
        stores.incidents.insert(make_incident(id="d1", status="draft"))
        self.assertIsNone(await engine.process_incident("d1"))
        self.assertEqual(llm.calls, [])

    async def test_process_unknown_incident(self):
        engine, _ = make_engine()
        with self.assertRaises(IncidentNotFoundError):
            await engine.process_incident("nope")


# ---------------------------------------------------------------------------
# Creation from unmatched incidents
# ---------------------------------------------------------------------------

class TestCreateTrends(unittest.IsolatedAsyncioTestCase):

    async def test_groups_and_backlinks(self):
        reply = {
            "trends": [
                {
                    "title": "Monsoon flooding across Jakarta and Malaysia",
                    "description": "Same monsoon system",
                    "predictiveAnalysis": "More rain expected",
                    "eventType": "Flood",
                    "incidentIds": ["a", "b", "c", "ghost"],
                },
                {"title": "Trend 2", "incidentIds": ["d", "e"]},
            ]
        }
        engine, stores = make_engine(FakeLLM([json.dumps(reply)]))
        stores.incidents.insert(make_incident(id="a", country="Indonesia", severity="caution"))
        stores.incidents.insert(make_incident(id="b", country="Malaysia", severity="warning"))
        stores.incidents.insert(make_incident(id="c", country="Brazil"))
        stores.incidents.insert(make_incident(id="d", title="Robbery in Paris", country="France", event_type="Robbery"))
        stores.incidents.insert(make_incident(id="e", title="Robbery in Paris suburbs", country="France", event_type="Robbery"))

        created = await engine.create_trends_from_unmatched()
        self.assertEqual(len(created), 1)
        t = created[0]
        self.assertEqual(sorted(t.alert_ids), ["a", "b"])
        self.assertEqual(t.severity, "warning")
        self.assertTrue(t.auto_generated)
        self.assertEqual(stores.incidents.get("a").trend_id, t.id)
        self.assertIsNone(stores.incidents.get("c").trend_id)
        self.assertIsNone(stores.incidents.get("d").trend_id)

    async def test_single_known_member_rejected(self):
        reply = {"trends": [{"title": "Flooding in West Java districts", "incidentIds": ["a", "zzz"]}]}
        engine, stores = make_engine(FakeLLM([json.dumps(reply)]))
        stores.incidents.insert(make_incident(id="a"))
        stores.incidents.insert(make_incident(id="b", title="Landslide in Bogor"))
        self.assertEqual(await engine.create_trends_from_unmatched(), [])

    async def test_crime_across_borders_dropped(self):
        reply = {"trends": [{"title": "Robberies in France and Germany", "eventType": "Robbery", "incidentIds": ["a", "b"]}]}
        engine, stores = make_engine(FakeLLM([json.dumps(reply)]))
        stores.incidents.insert(make_incident(id="a", country="France", event_type="Robbery"))
        stores.incidents.insert(make_incident(id="b", country="Germany", event_type="Robbery"))
        self.assertEqual(await engine.create_trends_from_unmatched(), [])

    async def test_relabelled_crime_still_dropped(self):
        reply = {"trends": [{"title": "Storm-related incidents in France and Germany", "eventType": "Storm", "incidentIds": ["a", "b"]}]}
        engine, stores = make_engine(FakeLLM([json.dumps(reply)]))
        stores.incidents.insert(make_incident(id="a", title="Robbery in Strasbourg", country="France", event_type="Robbery"))
        stores.incidents.insert(make_incident(id="b", title="Robbery in Kehl", country="Germany", event_type="Robbery"))
        self.assertEqual(await engine.create_trends_from_unmatched(), [])
        self.assertIsNone(stores.incidents.get("a").trend_id)


class TestMemberTypes(unittest.TestCase):

    def test_proposed_type_only_narrows(self):
        engine, _ = make_engine()
        floods = [make_incident(id="a", country="Indonesia"), make_incident(id="b", country="Malaysia")]
        self.assertEqual(len(engine.verify_members(floods, "Flood", "Floods in Indonesia and Malaysia")), 2)
        self.assertEqual(len(engine.verify_members(floods, "Robbery", "Robberies in Indonesia and Malaysia")), 1)

    def test_mixed_member_types(self):
        engine, _ = make_engine()
        members = [
            make_incident(id="a", country="France", event_type="Storm"),
            make_incident(id="b", country="Germany", event_type="Robbery"),
        ]
        kept = engine.verify_members(members, "Storm", "Storms in France and Germany")
        self.assertEqual([m.id for m in kept], ["a"])

    def test_crime_incident_does_not_fit_weather_trend_abroad(self):
        trend = make_trend(title="Storms over western Europe", country="France", countries=["France"], event_type="Storm")
        self.assertFalse(incident_fits_trend(make_incident(country="Germany", event_type="Robbery"), trend))
        self.assertTrue(incident_fits_trend(make_incident(country="Germany", event_type="Storm"), trend))
        self.assertTrue(incident_fits_trend(make_incident(country="France", event_type="Robbery"), trend))


if __name__ == "__main__":
    unittest.main()
