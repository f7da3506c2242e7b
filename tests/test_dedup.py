"""Unit tests for scour_service.agents.dedup."""

import unittest
from datetime import datetime, timedelta, timezone

from scour_service.agents.dedup import DuplicateResolver, normalize_title, titles_match
from scour_service.db.memory import MemoryIncidentStore
from scour_service.schemas import SourceCitation
from scour_service.utils.time import to_iso_z
from tests.fakes import make_incident


def since(days=14):
    return to_iso_z(datetime.now(timezone.utc) - timedelta(days=days))


# ---------------------------------------------------------------------------
# Title normalization
# ---------------------------------------------------------------------------

class TestNormalizeTitle(unittest.TestCase):

    def test_lowercase_and_punctuation(self):
        self.assertEqual(normalize_title("Flood, in JAKARTA!"), "flood in jakarta")

    def test_light_stemming(self):
        self.assertEqual(normalize_title("Flooding in Jakarta"), normalize_title("Flood in Jakarta"))
        self.assertEqual(normalize_title("Protests"), "protest")

    def test_none(self):
        self.assertEqual(normalize_title(None), "")


class TestTitlesMatch(unittest.TestCase):

    def test_containment_needs_two_tokens(self):
        self.assertTrue(titles_match("Jakarta flood", "Severe Jakarta flood closes roads"))
        self.assertFalse(titles_match("Flood", "Severe Jakarta flood closes roads"))

    def test_fuzzy(self):
        self.assertTrue(titles_match("Protest blocks Thamrin road in Jakarta", "Protest blocks Thamrin roads in Jakarta."))

    def test_different_events(self):
        self.assertFalse(titles_match("Earthquake hits Sumatra", "Protest in Jakarta"))


# ---------------------------------------------------------------------------
# Resolver
# ---------------------------------------------------------------------------

class TestDuplicateResolver(unittest.TestCase):

    def setUp(self):
        self.store = MemoryIncidentStore()
        self.existing = make_incident(id="old", title="Flood in Jakarta", sources=[{"url": "https://a.example/1"}])
        self.store.insert(self.existing)
        self.resolver = DuplicateResolver(self.store)

    def test_flooding_merges_into_flood(self):
        new = make_incident(
            id="new",
            title="Flooding in Jakarta",
            sources=[{"url": "https://a.example/1/"}, {"url": "https://b.example/2"}],
        )
        dup = self.resolver.find_duplicate(new, since())
        self.assertIsNotNone(dup)
        self.assertEqual(dup.id, "old")

        merged = self.resolver.merge_into(dup, new)
        self.assertEqual([s.url for s in merged.sources], ["https://a.example/1", "https://b.example/2"])
        self.assertEqual(len(self.store.all()), 1)
        self.assertEqual(len(self.store.get("old").sources), 2)

    def test_other_country_is_not_a_duplicate(self):
        new = make_incident(id="new", title="Flooding in Jakarta", country="Malaysia")
        self.assertIsNone(self.resolver.find_duplicate(new, since()))

    def test_outside_lookback(self):
        future = to_iso_z(datetime.now(timezone.utc) + timedelta(days=1))
        new = make_incident(id="new", title="Flooding in Jakarta")
        self.assertIsNone(self.resolver.find_duplicate(new, future))

    def test_merge_without_new_sources_is_noop(self):
        new = make_incident(id="new", sources=[SourceCitation(url="https://a.example/1")])
        merged = self.resolver.merge_into(self.existing, new)
        self.assertEqual(len(merged.sources), 1)


if __name__ == "__main__":
    unittest.main()
