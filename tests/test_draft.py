"""Unit tests for scour_service.agents.draft and llm.decoding."""

import json
import unittest

from scour_service.agents.draft import DraftGenerator, DraftPayload, default_advice
from scour_service.llm.decoding import Decoded, LowConfidence, MalformedJSON, SchemaViolation, decode_json
from scour_service.llm.prompts import draft_user
from scour_service.schemas import EvidenceItem
from tests.fakes import FakeLLM, draft_json, draft_payload

EVIDENCE = [EvidenceItem(url=f"https://jakarta.go.id/{i}", title=f"Item {i}") for i in range(8)]


def generate(llm, evidence=EVIDENCE, recent=None):
    return DraftGenerator(llm).generate(
        evidence,
        source_hint="Jakarta City Government",
        country_hint="Indonesia",
        days_back=7,
        recent_incident_titles=recent or [],
    )


# ---------------------------------------------------------------------------
# Strict decoding
# ---------------------------------------------------------------------------

class TestDecodeJson(unittest.TestCase):

    def test_code_fenced_object(self):
        res = decode_json("```json\n" + draft_json() + "\n```", DraftPayload)
        self.assertIsInstance(res, Decoded)
        self.assertEqual(res.value.event_type, "Civil Unrest")

    def test_prose_around_object(self):
        res = decode_json("Here you go: " + draft_json() + " hope it helps", DraftPayload)
        self.assertIsInstance(res, Decoded)

    def test_no_object(self):
        self.assertIsInstance(decode_json("I cannot help with that.", DraftPayload), MalformedJSON)

    def test_broken_json(self):
        self.assertIsInstance(decode_json('{"ok": true, "confidence": }', DraftPayload), MalformedJSON)

    def test_missing_required_field(self):
        payload = draft_payload()
        del payload["ok"]
        res = decode_json(json.dumps(payload), DraftPayload)
        self.assertIsInstance(res, SchemaViolation)
        self.assertTrue(any(e.startswith("ok") for e in res.errors))

    def test_unknown_severity(self):
        res = decode_json(draft_json(severity="extreme"), DraftPayload)
        self.assertIsInstance(res, SchemaViolation)

    def test_low_confidence_hook(self):
        res = decode_json(
            draft_json(ok=False, reason="duplicate"),
            DraftPayload,
            low_confidence=lambda p: None if p.ok else LowConfidence(p.confidence, p.reason),
        )
        self.assertIsInstance(res, LowConfidence)
        self.assertEqual(res.reason, "duplicate")

    def test_bare_url_sources(self):
        res = decode_json(draft_json(sources=["https://jakarta.go.id/x"]), DraftPayload)
        self.assertEqual(res.value.sources[0].url, "https://jakarta.go.id/x")


# ---------------------------------------------------------------------------
# Generator
# ---------------------------------------------------------------------------

class TestDraftGenerator(unittest.IsolatedAsyncioTestCase):

    async def test_valid_draft(self):
        llm = FakeLLM([draft_json()])
        d = await generate(llm)
        self.assertTrue(d.ok)
        self.assertEqual(d.severity, "warning")
        self.assertEqual(d.geo_scope, "city")
        self.assertIsNone(d.radius_km)

    async def test_at_most_six_evidence_items_in_prompt(self):
        llm = FakeLLM([draft_json()])
        await generate(llm)
        user = llm.calls[0][1].content
        self.assertIn("https://jakarta.go.id/5", user)
        self.assertNotIn("https://jakarta.go.id/6", user)

    async def test_malformed(self):
        d = await generate(FakeLLM(["not json"]))
        self.assertFalse(d.ok)
        self.assertEqual(d.reason, "malformed_json")

    async def test_schema_violation(self):
        d = await generate(FakeLLM([json.dumps({"title": "x"})]))
        self.assertFalse(d.ok)
        self.assertEqual(d.reason, "schema_violation")

    async def test_declined_duplicate(self):
        d = await generate(FakeLLM([draft_json(ok=False, reason="duplicate", confidence=0.9)]))
        self.assertFalse(d.ok)
        self.assertEqual(d.reason, "duplicate")
        self.assertAlmostEqual(d.confidence, 0.9)

    async def test_missing_start_date_is_not_a_failure(self):
        d = await generate(FakeLLM([draft_json(eventStartDate=None)]))
        self.assertTrue(d.ok)
        self.assertIsNone(d.event_start_date)

    async def test_advice_generated_when_empty(self):
        d = await generate(FakeLLM([draft_json(advice=[])]))
        self.assertEqual(d.advice, default_advice("Civil Unrest", "warning"))
        self.assertTrue(any("protest" in a.lower() for a in d.advice))

    async def test_no_evidence_skips_llm(self):
        llm = FakeLLM()
        d = await generate(llm, evidence=[])
        self.assertFalse(d.ok)
        self.assertEqual(llm.calls, [])


class TestPrompt(unittest.TestCase):

    def test_prompt_carries_rules(self):
        text = draft_user(
            today_utc="2025-06-10",
            days_back=3,
            source_hint="src",
            country_hint="Indonesia",
            evidence_block="[1] x",
            recent_incidents=["Flood in Jakarta (Jakarta)"],
        )
        self.assertIn("2025-06-10", text)
        self.assertIn("more than 3 days", text)
        self.assertIn("2023 or earlier", text)
        self.assertIn("Flood in Jakarta", text)


if __name__ == "__main__":
    unittest.main()
