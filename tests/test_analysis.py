"""
Tests for the analysis modules.

Uses Python's unittest module. Covers gap analysis, the assessment matrix,
hierarchy rollup, risk scoring and trend tracking over the sample
organisation.
"""

from __future__ import annotations

import unittest
from datetime import UTC, date, datetime, timedelta

from gaplens.analysis.gap_analyzer import GapAnalyzer, GapAnalyzerConfig, GapRecord
from gaplens.analysis.hierarchy import (
    HierarchyRollup,
    NodeType,
    RollupCancelledError,
)
from gaplens.analysis.matrix import (
    MatrixBuilder,
    MatrixCell,
    MatrixFilter,
    WriteAction,
    resolve_write,
)
from gaplens.analysis.risk import RiskScorer, risk_level_for_score
from gaplens.analysis.trend_tracker import (
    TrendDirection,
    TrendTracker,
    TrendTrackerConfig,
    classify_status_change,
)
from gaplens.catalog.controls import get_default_catalog
from gaplens.errors import NoBaselineConfiguredError, UnknownEntityError
from gaplens.scoring.aggregator import ScoreAggregator, ScoringPolicy
from gaplens.scoring.baseline import BaselineResolver, ResolvedBaseline
from gaplens.scoring.lookup import AssessmentLookup
from gaplens.storage.memory import InMemoryRepository
from gaplens.storage.models import (
    Assessment,
    AssessmentStatus,
    BaselinePriority,
    RiskLevel,
    System,
)
from tests.sample_org import NOW, sample_dataset


class _SampleOrgTestCase(unittest.TestCase):
    """Shared setup over the sample organisation."""

    def setUp(self) -> None:
        self.catalog = get_default_catalog()
        self.repo = InMemoryRepository.from_dict(sample_dataset())
        self.resolver = BaselineResolver(self.repo, self.catalog)
        self.aggregator = ScoreAggregator(self.catalog)

    def product_inputs(self, product_id: str):
        product = self.repo.get_product(product_id)
        baseline = self.resolver.resolve(product_id)
        lookup = AssessmentLookup(self.repo.get_assessments(product_id=product_id))
        return product, baseline, lookup


class TestGapAnalyzer(_SampleOrgTestCase):
    """Tests for GapAnalyzer."""

    def setUp(self) -> None:
        super().setUp()
        self.analyzer = GapAnalyzer(self.catalog)

    def test_single_partial_gap(self) -> None:
        """Test single partial gap."""
        analysis = self.analyzer.analyze_gaps(*self.product_inputs("prod-checkout"))

        self.assertEqual(analysis.total_gaps, 1)
        gap = analysis.gaps[0]
        self.assertEqual(gap.control_id, "PR.AA-02")
        self.assertEqual(gap.systems_affected, 1)
        self.assertEqual(gap.risk_level, RiskLevel.HIGH)
        self.assertEqual(gap.baseline_priority, BaselinePriority.SHOULD_HAVE)
        self.assertEqual(gap.records[0].remediation_plan, "Roll out MFA to service accounts")
        self.assertEqual(analysis.high_risk_gaps, 1)
        self.assertEqual(analysis.critical_gaps, 0)

    def test_ordered_by_risk_then_code(self) -> None:
        """Test ordered by risk then code."""
        analysis = self.analyzer.analyze_gaps(*self.product_inputs("prod-ledger"))

        self.assertEqual([g.control_id for g in analysis.gaps], ["PR.AA-01", "RS.MA-01"])
        self.assertEqual(analysis.gaps[0].risk_level, RiskLevel.CRITICAL)
        # No assessor risk on RS.MA-01, so the control's declared level applies
        self.assertEqual(analysis.gaps[1].risk_level, RiskLevel.MEDIUM)
        self.assertEqual(
            analysis.gaps_by_risk, {"Low": 0, "Medium": 1, "High": 0, "Critical": 1}
        )

    def test_function_summary(self) -> None:
        """Test function summary."""
        analysis = self.analyzer.analyze_gaps(*self.product_inputs("prod-ledger"))

        summary = {s.function_id: s for s in analysis.function_summary}
        self.assertEqual(list(summary), ["PR", "RS"])
        self.assertEqual(summary["PR"].not_implemented, 1)
        self.assertEqual(summary["PR"].must_have, 1)
        self.assertEqual(summary["RS"].partially_implemented, 1)
        self.assertEqual(summary["RS"].must_have, 0)

    def test_groups_records_per_control(self) -> None:
        """Test groups records per control."""
        self.repo.update_assessment("d1", {"status": "Not Implemented", "risk_level": "Low"})

        analysis = self.analyzer.analyze_gaps(*self.product_inputs("prod-ledger"))

        gap = analysis.gaps[0]
        self.assertEqual(gap.control_id, "PR.AA-01")
        self.assertEqual(gap.systems_affected, 2)
        self.assertEqual(gap.risk_level, RiskLevel.CRITICAL)
        self.assertEqual([r.system_name for r in gap.records], ["ledger-api", "ledger-db"])
        self.assertEqual(gap.status_counts, {"Not Implemented": 2})
        self.assertEqual(analysis.total_gap_records, 3)

    def test_top_n_caps_display_only(self) -> None:
        """Test top n caps display only."""
        analysis = self.analyzer.analyze_gaps(*self.product_inputs("prod-ledger"), top_n=1)

        self.assertEqual(len(analysis.gaps), 1)
        self.assertEqual(analysis.total_gaps, 2)
        self.assertEqual(len(analysis.all_gaps), 2)
        self.assertEqual(analysis.to_dict()["top_n"], 1)

    def test_config_top_n(self) -> None:
        """Test config top n."""
        analyzer = GapAnalyzer(self.catalog, GapAnalyzerConfig(top_n=1))
        analysis = analyzer.analyze_gaps(*self.product_inputs("prod-ledger"))
        self.assertEqual(analysis.top_n, 1)

    def test_last_analysis_helpers(self) -> None:
        """Test last analysis helpers."""
        self.assertEqual(self.analyzer.get_critical_gaps(), [])

        self.analyzer.analyze_gaps(*self.product_inputs("prod-ledger"))

        self.assertEqual([g.control_id for g in self.analyzer.get_critical_gaps()], ["PR.AA-01"])
        self.assertEqual(
            [g.control_id for g in self.analyzer.get_gaps_by_function("rs")], ["RS.MA-01"]
        )
        self.assertEqual(len(self.analyzer.get_gaps_by_risk(RiskLevel.LOW)), 0)

    def test_no_gaps(self) -> None:
        """Test no gaps."""
        analysis = self.analyzer.analyze_gaps(*self.product_inputs("prod-intranet"))
        self.assertEqual(analysis.total_gaps, 0)
        self.assertEqual(analysis.function_summary, [])


class TestMatrix(_SampleOrgTestCase):
    """Tests for MatrixBuilder and related helpers."""

    def setUp(self) -> None:
        super().setUp()
        self.builder = MatrixBuilder(self.catalog, self.aggregator)
        product, self.baseline, self.lookup = self.product_inputs("prod-checkout")
        self.systems = sorted(product.systems, key=lambda s: s.name)
        self.matrix = self.builder.build(
            product.id, self.baseline, self.systems, self.lookup
        )

    def test_layout(self) -> None:
        """Test layout."""
        self.assertEqual(
            [r.control_id for r in self.matrix.rows],
            ["GV.OC-01", "PR.AA-01", "PR.AA-02", "DE.CM-01"],
        )
        self.assertEqual([s.id for s in self.matrix.systems], ["sys-a", "sys-b"])
        self.assertEqual(len(self.matrix.flatten()), 8)

    def test_virtual_cells(self) -> None:
        """Test virtual cells."""
        virtual = self.matrix.cell("sys-b", "GV.OC-01")
        stored = self.matrix.cell("sys-b", "PR.AA-01")

        self.assertTrue(virtual.is_virtual)
        self.assertEqual(virtual.status, AssessmentStatus.NOT_ASSESSED)
        self.assertIsNone(virtual.version)
        self.assertFalse(stored.is_virtual)
        self.assertEqual(stored.assessment_id, "a5")
        # Building the matrix persists nothing
        self.assertEqual(len(self.repo.get_assessments(system_id="sys-b")), 1)

    def test_summary(self) -> None:
        """Test summary."""
        summary = self.matrix.to_dict()["summary"]

        self.assertEqual(summary["total_cells"], 8)
        self.assertEqual(summary["assessed_cells"], 4)
        self.assertEqual(summary["completion_rate"], 50)
        self.assertEqual(summary["compliance_rate"], 83)

    def test_filters_intersect(self) -> None:
        """Test filters intersect."""
        self.assertEqual(len(self.matrix.filter(MatrixFilter(function_id="pr"))), 2)
        partial = self.matrix.filter(
            MatrixFilter(status=AssessmentStatus.PARTIALLY_IMPLEMENTED)
        )
        self.assertEqual([r.control_id for r in partial], ["PR.AA-02"])
        self.assertEqual(
            [r.control_id for r in self.matrix.filter(MatrixFilter(search="aa-0"))],
            ["PR.AA-01", "PR.AA-02"],
        )
        self.assertEqual(
            self.matrix.filter(
                MatrixFilter(function_id="PR", status=AssessmentStatus.NOT_APPLICABLE)
            ),
            [],
        )
        self.assertEqual(len(self.matrix.filter(MatrixFilter())), 4)

    def test_filtered_to_dict(self) -> None:
        """Test filtered to dict."""
        rows = self.matrix.filter(MatrixFilter(function_id="GV"))
        data = self.matrix.to_dict(rows)

        self.assertEqual(len(data["rows"]), 1)
        self.assertEqual(data["summary"]["total_controls"], 4)

    def test_unknown_cell(self) -> None:
        """Test unknown cell."""
        with self.assertRaises(UnknownEntityError):
            self.matrix.cell("sys-z", "GV.OC-01")
        with self.assertRaises(UnknownEntityError):
            self.matrix.cell("sys-a", "RC.RP-01")

    def test_resolve_write(self) -> None:
        """Test resolve write."""
        create = resolve_write(self.lookup, "sys-b", "GV.OC-01")
        update = resolve_write(self.lookup, "sys-a", "PR.AA-02")

        self.assertEqual(create.action, WriteAction.CREATE)
        self.assertIsNone(create.assessment_id)
        self.assertEqual(update.action, WriteAction.UPDATE)
        self.assertEqual(update.assessment_id, "a3")
        self.assertEqual(update.expected_version, 1)

    def test_with_cell_rederives_summary(self) -> None:
        """Test with cell rederives summary."""
        cell = MatrixCell("sys-b", "GV.OC-01", status=AssessmentStatus.IMPLEMENTED)

        updated = self.builder.with_cell(self.matrix, cell)

        self.assertEqual(updated.cell("sys-b", "GV.OC-01").status, AssessmentStatus.IMPLEMENTED)
        self.assertEqual(updated.summary.score, 88)
        self.assertEqual(self.matrix.summary.score, 83)
        self.assertTrue(self.matrix.cell("sys-b", "GV.OC-01").is_virtual)

    def test_with_cell_unknown_pair(self) -> None:
        """Test with cell unknown pair."""
        with self.assertRaises(UnknownEntityError):
            self.builder.with_cell(self.matrix, MatrixCell("sys-c", "GV.OC-01"))


class TestHierarchyRollup(_SampleOrgTestCase):
    """Tests for HierarchyRollup."""

    def setUp(self) -> None:
        super().setUp()
        self.tree = self.repo.get_organization_tree()
        self.baselines: dict[str, ResolvedBaseline | None] = {}
        for centre in self.tree:
            for framework in centre.frameworks:
                for product in framework.products:
                    try:
                        self.baselines[product.id] = self.resolver.resolve(product.id)
                    except NoBaselineConfiguredError:
                        self.baselines[product.id] = None
        self.lookup = AssessmentLookup(self.repo.get_assessments())
        self.rollup = HierarchyRollup(self.aggregator, critical_threshold=60, top_n=5)

    def test_organisation_scores(self) -> None:
        """Test organisation scores."""
        view = self.rollup.build(self.tree, self.baselines, self.lookup)

        self.assertEqual(view.summary.score, 75)
        self.assertEqual(view.total_systems, 6)
        self.assertEqual([c.id for c in view.centres], ["cc-alpha", "cc-beta"])
        self.assertEqual([c.score for c in view.centres], [71, 100])

    def test_parents_score_union_of_slots(self) -> None:
        """Test parents score union of slots."""
        view = self.rollup.build(self.tree, self.baselines, self.lookup)

        checkout = view.find(NodeType.PRODUCT, "prod-checkout")
        ledger = view.find(NodeType.PRODUCT, "prod-ledger")
        framework = view.find(NodeType.FRAMEWORK, "fw-alpha-sec")

        self.assertEqual(checkout.score, 83)
        self.assertEqual(ledger.score, 63)
        # Union of slots, not the mean of 83 and 63
        self.assertEqual(framework.score, 71)
        self.assertEqual(
            framework.summary.tally, checkout.summary.tally + ledger.summary.tally
        )

    def test_attention_lists(self) -> None:
        """Test attention lists."""
        view = self.rollup.build(self.tree, self.baselines, self.lookup)

        self.assertEqual([s.system_id for s in view.unassessed_systems], ["sys-b", "sys-f"])
        self.assertEqual([s.system_id for s in view.critical_systems], ["sys-c"])
        self.assertEqual(view.critical_systems[0].score, 50)

        report = view.attention()
        self.assertEqual(report.unassessed_count, 2)
        self.assertEqual(report.critical_count, 1)
        self.assertEqual(report.critical_threshold, 60)

    def test_attention_lists_capped(self) -> None:
        """Test attention lists capped."""
        rollup = HierarchyRollup(self.aggregator, critical_threshold=90, top_n=1)

        view = rollup.build(self.tree, self.baselines, self.lookup)

        self.assertEqual(view.unassessed_count, 2)
        self.assertEqual(len(view.unassessed_systems), 1)
        # Worst first: ledger-api 50, ledger-db 75, alpha-api 83
        self.assertEqual(view.critical_count, 3)
        self.assertEqual([s.system_id for s in view.critical_systems], ["sys-c"])

    def test_unassessed_systems_never_critical(self) -> None:
        """Test unassessed systems stay out of the critical list."""
        aggregator = ScoreAggregator(
            get_default_catalog(), ScoringPolicy(not_assessed_in_denominator=True)
        )
        rollup = HierarchyRollup(aggregator, critical_threshold=80, top_n=10)

        view = rollup.build(self.tree, self.baselines, self.lookup)

        unassessed = {s.system_id for s in view.unassessed_systems}
        critical = {s.system_id for s in view.critical_systems}
        self.assertEqual(unassessed, {"sys-b", "sys-f"})
        self.assertIn("sys-c", critical)
        self.assertFalse(unassessed & critical)
        self.assertEqual(view.find(NodeType.SYSTEM, "sys-b").critical_count, 0)

    def test_unconfigured_products(self) -> None:
        """Test unconfigured products."""
        view = self.rollup.build(self.tree, self.baselines, self.lookup)

        beta = view.find(NodeType.CAPABILITY_CENTRE, "cc-beta")
        alpha = view.find(NodeType.CAPABILITY_CENTRE, "cc-alpha")
        legacy = view.find(NodeType.SYSTEM, "sys-f")

        self.assertEqual(beta.unconfigured_products, 1)
        self.assertEqual(alpha.unconfigured_products, 0)
        self.assertEqual(legacy.unassessed_count, 1)
        self.assertEqual(legacy.summary.total_controls, 0)

    def test_nodes_flatten(self) -> None:
        """Test nodes flatten."""
        view = self.rollup.build(self.tree, self.baselines, self.lookup)

        self.assertEqual(len(view.nodes(NodeType.SYSTEM)), 6)
        self.assertEqual(len(view.nodes(NodeType.FRAMEWORK)), 3)
        self.assertIsNone(view.find(NodeType.PRODUCT, "prod-missing"))
        self.assertNotIn("children", view.find(NodeType.SYSTEM, "sys-a").to_dict())

    def test_cancelled(self) -> None:
        """Test cancelled."""
        with self.assertRaises(RollupCancelledError):
            self.rollup.build(self.tree, self.baselines, self.lookup, should_stop=lambda: True)

    def test_summarize_frameworks_merges_by_name(self) -> None:
        """Test summarize frameworks merges by name."""
        view = self.rollup.build(self.tree, self.baselines, self.lookup)

        with self.assertLogs("gaplens.analysis.hierarchy", level="WARNING"):
            summaries = self.rollup.summarize_frameworks(view)

        self.assertEqual([s.name for s in summaries], ["Operations", "Security"])
        security = summaries[1]
        self.assertEqual(security.framework_ids, ["fw-alpha-sec", "fw-beta-sec"])
        self.assertEqual(security.cc_names, ["Alpha Centre", "Beta Centre"])
        self.assertEqual(security.product_count, 3)
        self.assertEqual(security.system_count, 5)
        self.assertEqual(security.average_score, 86)
        self.assertEqual(security.combined.score, 75)
        self.assertTrue(security.to_dict()["merged"])

        operations = summaries[0]
        self.assertFalse(operations.merged)
        self.assertEqual(operations.average_score, 0)
        self.assertEqual(operations.system_count, 1)

    def test_summarize_frameworks_case_insensitive(self) -> None:
        """Test summarize frameworks case insensitive."""
        data = sample_dataset()
        data["capability_centres"][0]["frameworks"][1]["name"] = "SECURITY"
        repo = InMemoryRepository.from_dict(data)
        tree = repo.get_organization_tree()

        view = self.rollup.build(tree, self.baselines, self.lookup)
        summaries = self.rollup.summarize_frameworks(view)

        self.assertEqual(len(summaries), 1)
        self.assertEqual(summaries[0].cc_names, ["Alpha Centre", "Beta Centre"])
        self.assertEqual(summaries[0].product_count, 4)


class TestRiskScorer(_SampleOrgTestCase):
    """Tests for RiskScorer."""

    def setUp(self) -> None:
        super().setUp()
        self.scorer = RiskScorer(self.catalog)

    def _record(self, control_id: str, status: AssessmentStatus) -> GapRecord:
        return GapRecord(
            control_id=control_id,
            system_id="s-1",
            system_name="box",
            status=status,
            risk_level=None,
            assessment_id="x",
        )

    def test_score_not_implemented_must_have_on_critical_system(self) -> None:
        """Test score not implemented must have on critical system."""
        system = System("s-1", "box", "p-1", criticality="CRITICAL", data_classification="RESTRICTED")
        record = self._record("PR.AA-01", AssessmentStatus.NOT_IMPLEMENTED)

        score = self.scorer.risk_score(record, system, BaselinePriority.MUST_HAVE)

        self.assertEqual(score, 98)
        self.assertEqual(risk_level_for_score(score), RiskLevel.CRITICAL)

    def test_score_partial_should_have_on_low_system(self) -> None:
        """Test score partial should have on low system."""
        system = System("s-1", "box", "p-1", criticality="LOW", data_classification="PUBLIC")
        record = self._record("PR.AA-01", AssessmentStatus.PARTIALLY_IMPLEMENTED)

        score = self.scorer.risk_score(record, system, BaselinePriority.SHOULD_HAVE)

        self.assertEqual(score, 17)
        self.assertEqual(risk_level_for_score(score), RiskLevel.LOW)

    def test_level_thresholds(self) -> None:
        """Test level thresholds."""
        self.assertEqual(risk_level_for_score(75), RiskLevel.CRITICAL)
        self.assertEqual(risk_level_for_score(74), RiskLevel.HIGH)
        self.assertEqual(risk_level_for_score(50), RiskLevel.HIGH)
        self.assertEqual(risk_level_for_score(25), RiskLevel.MEDIUM)
        self.assertEqual(risk_level_for_score(24), RiskLevel.LOW)

    def test_quick_wins(self) -> None:
        """Test quick wins."""
        low = System("s-1", "box", "p-1", criticality="LOW", data_classification="PUBLIC")
        critical = System("s-1", "box", "p-1", criticality="CRITICAL")
        open_gap = self._record("PR.AA-01", AssessmentStatus.NOT_IMPLEMENTED)
        partial = self._record("PR.AA-01", AssessmentStatus.PARTIALLY_IMPLEMENTED)

        self.assertTrue(self.scorer.is_quick_win(open_gap, low, 34))
        self.assertFalse(self.scorer.is_quick_win(open_gap, low, 29))
        self.assertFalse(self.scorer.is_quick_win(open_gap, critical, 90))
        self.assertTrue(self.scorer.is_quick_win(partial, critical, 49))
        self.assertFalse(self.scorer.is_quick_win(partial, critical, 39))

    def _ledger_items(self):
        product, baseline, lookup = self.product_inputs("prod-ledger")
        records = GapAnalyzer(self.catalog).collect_records(product, baseline, lookup)
        systems = {s.id: s for s in product.systems}
        return product, self.scorer.score_records(records, systems, baseline)

    def test_score_records_sorted(self) -> None:
        """Test score records sorted."""
        _, items = self._ledger_items()

        self.assertEqual([i.risk_score for i in items], [83, 26])
        self.assertEqual(items[0].record.system_id, "sys-c")
        self.assertEqual(items[0].risk_level, RiskLevel.CRITICAL)
        self.assertEqual(items[1].risk_level, RiskLevel.MEDIUM)
        self.assertIn("Implement protection control PR.AA-01", items[0].recommendation)
        self.assertIn("partially implemented", items[1].recommendation)

    def test_summarize(self) -> None:
        """Test summarize."""
        _, items = self._ledger_items()

        summary = self.scorer.summarize(items, product_id="prod-ledger", limit=1)

        self.assertEqual(summary.total_items, 2)
        self.assertEqual(summary.by_risk_level["Critical"], 1)
        self.assertEqual(summary.by_risk_level["Medium"], 1)
        self.assertEqual(summary.by_function["PR"], 1)
        self.assertEqual(summary.by_function["GV"], 0)
        self.assertEqual(len(summary.top_priorities), 1)
        self.assertEqual(summary.quick_wins, [])

    def test_heat_map(self) -> None:
        """Test heat map."""
        product, items = self._ledger_items()

        heat_map = self.scorer.heat_map(product.id, list(product.systems), items)

        self.assertEqual(heat_map.functions, ["GV", "ID", "PR", "DE", "RS", "RC"])
        self.assertEqual(heat_map.cells["PR"]["sys-c"].max_score, 83)
        self.assertEqual(heat_map.cells["PR"]["sys-d"].count, 0)
        self.assertEqual(heat_map.by_function["RS"].average_score, 26)
        data = heat_map.to_dict()
        self.assertEqual(data["heat_map"]["PR"]["sys-c"]["risk_level"], "Critical")
        self.assertIsNone(data["heat_map"]["GV"]["sys-c"]["risk_level"])


class TestTrendTracker(_SampleOrgTestCase):
    """Tests for TrendTracker."""

    def setUp(self) -> None:
        super().setUp()
        self.tracker = TrendTracker(self.aggregator)

    def test_checkout_trend(self) -> None:
        """Test checkout trend."""
        assessments = self.repo.get_assessments(product_id="prod-checkout")

        trend = self.tracker.calculate_trend("prod-checkout", assessments, days=30, now=NOW)

        self.assertEqual([p.day for p in trend.points], [date(2024, 6, 5), date(2024, 6, 10)])
        self.assertEqual([p.score for p in trend.points], [100, 50])
        self.assertEqual([p.cumulative_score for p in trend.points], [100, 83])
        self.assertEqual(trend.points[-1].cumulative_assessments, 4)
        self.assertEqual(trend.score_delta, -17)
        self.assertEqual(trend.direction, TrendDirection.DECLINING)

    def test_ledger_trend_improving(self) -> None:
        """Test ledger trend improving."""
        assessments = self.repo.get_assessments(product_id="prod-ledger")

        trend = self.tracker.calculate_trend("prod-ledger", assessments, days=30, now=NOW)

        self.assertEqual([p.cumulative_score for p in trend.points], [50, 67, 63])
        self.assertEqual(trend.score_delta, 13)
        self.assertEqual(trend.direction, TrendDirection.IMPROVING)

    def test_window_excludes_old_assessments(self) -> None:
        """Test window excludes old assessments."""
        assessments = self.repo.get_assessments(product_id="prod-checkout")

        trend = self.tracker.calculate_trend("prod-checkout", assessments, days=3, now=NOW)

        self.assertEqual(trend.points, [])
        self.assertEqual(trend.direction, TrendDirection.INSUFFICIENT_DATA)
        self.assertIsNone(trend.score_delta)

    def test_stable_within_tolerance(self) -> None:
        """Test stable within tolerance."""
        day_one = NOW - timedelta(days=2)
        day_two = NOW - timedelta(days=1)
        assessments = [
            Assessment.create("s", "PR.AA-01", AssessmentStatus.IMPLEMENTED, assessed_date=day_one),
            Assessment.create("s", "PR.AA-02", AssessmentStatus.IMPLEMENTED, assessed_date=day_two),
        ]

        trend = self.tracker.calculate_trend("p", assessments, now=NOW)

        self.assertEqual(trend.score_delta, 0)
        self.assertEqual(trend.direction, TrendDirection.STABLE)

    def test_tolerance_configurable(self) -> None:
        """Test tolerance configurable."""
        tracker = TrendTracker(self.aggregator, TrendTrackerConfig(tolerance=20))
        assessments = self.repo.get_assessments(product_id="prod-checkout")

        trend = tracker.calculate_trend("prod-checkout", assessments, now=NOW)

        self.assertEqual(trend.direction, TrendDirection.STABLE)

    def test_invalid_period(self) -> None:
        """Test invalid period."""
        with self.assertRaises(ValueError):
            self.tracker.calculate_trend("p", [], days=0, now=datetime.now(UTC))

    def test_classify_status_change(self) -> None:
        """Test classify status change."""
        self.assertEqual(
            classify_status_change(
                AssessmentStatus.NOT_IMPLEMENTED, AssessmentStatus.PARTIALLY_IMPLEMENTED
            ),
            TrendDirection.IMPROVING,
        )
        self.assertEqual(
            classify_status_change(
                AssessmentStatus.IMPLEMENTED, AssessmentStatus.NOT_ASSESSED
            ),
            TrendDirection.DECLINING,
        )
        self.assertEqual(
            classify_status_change(
                AssessmentStatus.IMPLEMENTED, AssessmentStatus.NOT_APPLICABLE
            ),
            TrendDirection.STABLE,
        )


if __name__ == "__main__":
    unittest.main()
