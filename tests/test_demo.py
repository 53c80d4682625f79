"""
Tests for the demo dataset generator.

Uses Python's unittest module. Generated datasets are loaded into an
in-memory repository and scored end to end.
"""

from __future__ import annotations

import unittest
from datetime import UTC, datetime, timedelta

from gaplens.demo import DemoConfig, DemoGenerator, DemoProfile, generate_demo_dataset
from gaplens.engine import ComplianceEngine
from gaplens.errors import NoBaselineConfiguredError
from gaplens.storage.memory import InMemoryRepository
from gaplens.storage.models import AssessmentStatus

NOW = datetime(2024, 6, 15, 12, 0, tzinfo=UTC)


class TestDemoGenerator(unittest.TestCase):
    """Tests for DemoGenerator."""

    def test_same_seed_same_dataset(self) -> None:
        """Test same seed same dataset."""
        first = generate_demo_dataset(seed=7, now=NOW)
        second = generate_demo_dataset(seed=7, now=NOW)
        self.assertEqual(first, second)

    def test_different_seed_different_statuses(self) -> None:
        """Test different seed different statuses."""
        first = generate_demo_dataset(seed=1, now=NOW)
        second = generate_demo_dataset(seed=2, now=NOW)
        self.assertNotEqual(
            [a["status"] for a in first["assessments"]],
            [a["status"] for a in second["assessments"]],
        )

    def test_profile_from_string(self) -> None:
        """Test profile from string."""
        dataset = generate_demo_dataset(profile="Mature", now=NOW)
        self.assertTrue(dataset["assessments"])
        with self.assertRaises(ValueError):
            generate_demo_dataset(profile="enterprise", now=NOW)

    def test_organisation_shape(self) -> None:
        """Test organisation shape."""
        dataset = generate_demo_dataset(now=NOW)

        centres = {c["id"]: c for c in dataset["capability_centres"]}
        self.assertEqual(set(centres), {"cc-platform", "cc-corporate"})
        self.assertNotIn("prod-internal-tools", dataset["baselines"])
        self.assertIn("prod-backup", dataset["baselines"])
        backed_up = [a for a in dataset["assessments"] if a["system_id"] == "sys-backup-vault"]
        self.assertEqual(backed_up, [])

    def test_assessments_well_formed(self) -> None:
        """Test assessments well formed."""
        generator = DemoGenerator(DemoConfig(seed=3, days_of_history=10, now=NOW))
        dataset = generator.generate()

        ids = [a["id"] for a in dataset["assessments"]]
        self.assertEqual(len(ids), len(set(ids)))
        for item in dataset["assessments"]:
            status = AssessmentStatus.parse(item["status"])
            self.assertNotEqual(status, AssessmentStatus.NOT_ASSESSED)
            if not status.is_gap:
                self.assertIsNone(item["risk_level"])
            assessed = datetime.fromisoformat(item["assessed_date"])
            self.assertLessEqual(assessed, NOW)
            self.assertGreaterEqual(assessed, NOW - timedelta(days=10, hours=23))

    def test_must_have_priorities(self) -> None:
        """Test must have priorities."""
        dataset = generate_demo_dataset(now=NOW)

        for entry in dataset["baselines"]["prod-payments"]:
            expected = (
                "MUST_HAVE" if entry["control_id"].startswith(("PR.", "GV.")) else "SHOULD_HAVE"
            )
            self.assertEqual(entry["priority"], expected)


class TestDemoDatasetScoring(unittest.TestCase):
    """Tests for scoring a generated organisation."""

    def engine_for(self, profile: DemoProfile) -> ComplianceEngine:
        dataset = generate_demo_dataset(seed=42, profile=profile, now=NOW)
        return ComplianceEngine(InMemoryRepository.from_dict(dataset))

    def test_loads_and_rolls_up(self) -> None:
        """Test loads and rolls up."""
        engine = self.engine_for(DemoProfile.GROWING)
        self.addCleanup(engine.close)

        view = engine.get_organizational_hierarchy_with_scores()
        self.assertEqual(view.total_systems, 12)

        security = next(s for s in engine.get_framework_summary() if s.name == "Security")
        self.assertEqual(security.cc_names, ["Corporate IT", "Platform Engineering"])
        self.assertEqual(security.product_count, 4)

        unassessed = [s.system_id for s in engine.get_attention_required().unassessed_systems]
        self.assertIn("sys-backup-vault", unassessed)

        with self.assertRaises(NoBaselineConfiguredError):
            engine.compute_product_compliance("prod-internal-tools")

    def test_mature_scores_above_startup(self) -> None:
        """Test mature scores above startup."""
        startup = self.engine_for(DemoProfile.STARTUP)
        mature = self.engine_for(DemoProfile.MATURE)
        self.addCleanup(startup.close)
        self.addCleanup(mature.close)

        self.assertGreater(
            mature.get_organizational_hierarchy_with_scores().summary.score,
            startup.get_organizational_hierarchy_with_scores().summary.score,
        )


if __name__ == "__main__":
    unittest.main()
