"""
Compliance engine facade.

ComplianceEngine wires the catalog, a repository, the scoring and analysis
components and the view cache together, and exposes every read view and
mutation the host application needs.

Reads:
    Each view is cached under a ViewKey and recomputed lazily once a
    mutation has marked it stale.

Writes:
    Each mutation runs through the OptimisticCoordinator: affected views are
    snapshotted, speculative values (such as the edited matrix cell) are
    shown while the write is in flight, and on failure the snapshot is
    restored and the error is returned in the WriteOutcome. On success every
    view listed in the invalidation table for that mutation goes stale and
    any running background rollup is superseded.
"""

from __future__ import annotations

import logging
import uuid
from collections import Counter
from collections.abc import Sequence
from dataclasses import replace
from datetime import datetime
from typing import Any

from gaplens.analysis.gap_analyzer import GapAnalysis, GapAnalyzer, GapAnalyzerConfig
from gaplens.analysis.hierarchy import (
    AttentionReport,
    FrameworkSummary,
    HierarchyRollup,
    OrganizationRollup,
)
from gaplens.analysis.matrix import (
    AssessmentMatrix,
    MatrixBuilder,
    MatrixCell,
    WriteAction,
    resolve_write,
)
from gaplens.analysis.risk import RiskHeatMap, RiskItem, RiskScorer, RiskSummary
from gaplens.analysis.trend_tracker import ComplianceTrend, TrendTracker
from gaplens.cache.autosave import AutoSaver, Clock
from gaplens.cache.invalidation import (
    InvalidationTable,
    Mutation,
    MutationType,
    View,
    ViewKey,
)
from gaplens.cache.optimistic import OptimisticCoordinator, WriteOutcome
from gaplens.cache.store import ViewCache
from gaplens.cache.tasks import CancellationToken, RollupScheduler, RollupTicket
from gaplens.catalog.controls import ControlCatalog, get_default_catalog, load_catalog
from gaplens.catalog.templates import get_template
from gaplens.config.settings import Settings
from gaplens.errors import NoBaselineConfiguredError, UnknownEntityError
from gaplens.scoring.aggregator import (
    FunctionCompliance,
    ProductCompliance,
    ScoreAggregator,
    ScoringPolicy,
    SystemScore,
    merge_function_tallies,
)
from gaplens.scoring.baseline import BaselineResolver, ResolvedBaseline
from gaplens.scoring.lookup import AssessmentLookup
from gaplens.storage.models import (
    Assessment,
    BaselineEntry,
    BaselinePriority,
    Product,
    RiskLevel,
    System,
)
from gaplens.storage.repository import ComplianceRepository

logger = logging.getLogger(__name__)


def _name_order(systems: Sequence[System]) -> list[System]:
    return sorted(systems, key=lambda s: (s.name.lower(), s.id))


class ComplianceEngine:
    """
    Entry point for compliance scoring, analysis and edits.

    Example:
        repository = InMemoryRepository.load("org.yaml")
        engine = ComplianceEngine(repository)

        product = engine.compute_product_compliance("prod-1")
        print(product.compliance_score)

        outcome = engine.save_assessment("sys-1", "PR.AA-01", {"status": "Implemented"})
        if not outcome.confirmed:
            print(f"Save failed: {outcome.error}")

    Attributes:
        repository: Storage for the organisation tree, baselines and assessments.
        catalog: Control catalog.
        settings: Engine settings.
        cache: View cache shared by every read.
    """

    def __init__(
        self,
        repository: ComplianceRepository,
        catalog: ControlCatalog | None = None,
        settings: Settings | None = None,
        scheduler: RollupScheduler | None = None,
    ) -> None:
        self.repository = repository
        self.settings = settings or Settings()
        if catalog is None:
            catalog = (
                load_catalog(self.settings.catalog_path)
                if self.settings.catalog_path
                else get_default_catalog()
            )
        self.catalog = catalog

        scoring = self.settings.scoring
        self.aggregator = ScoreAggregator(
            catalog, ScoringPolicy(not_assessed_in_denominator=scoring.not_assessed_in_denominator)
        )
        self.resolver = BaselineResolver(repository, catalog)
        self.gap_analyzer = GapAnalyzer(catalog, GapAnalyzerConfig(top_n=self.settings.gaps.top_n))
        self.matrix_builder = MatrixBuilder(catalog, self.aggregator)
        self.rollup = HierarchyRollup(
            self.aggregator,
            critical_threshold=scoring.critical_threshold,
            top_n=scoring.attention_top_n,
        )
        self.risk_scorer = RiskScorer(catalog)
        self.trend_tracker = TrendTracker(self.aggregator)

        self.cache = ViewCache()
        self.invalidation = InvalidationTable()
        self.coordinator = OptimisticCoordinator(self.cache, self.invalidation)
        self.scheduler = scheduler or RollupScheduler()

    # -------------------------------------------------------------------------
    # Shared lookups
    # -------------------------------------------------------------------------

    def get_product(self, product_id: str) -> Product:
        """The product with its systems (cached until a system mutation)."""
        return self.cache.get_or_compute(
            ViewKey.product(View.SYSTEMS, product_id),
            lambda: self.repository.get_product(product_id),
        )

    def get_baseline(self, product_id: str) -> ResolvedBaseline:
        """
        The product's resolved baseline.

        Raises:
            UnknownEntityError: If the product does not exist.
            NoBaselineConfiguredError: If the product has no usable baseline.
        """
        return self.cache.get_or_compute(
            ViewKey.product(View.BASELINE, product_id),
            lambda: self.resolver.resolve(product_id),
        )

    def _product_lookup(self, product_id: str) -> AssessmentLookup:
        return AssessmentLookup(self.repository.get_assessments(product_id=product_id))

    def _optional_baseline(self, product_id: str) -> ResolvedBaseline | None:
        try:
            return self.get_baseline(product_id)
        except NoBaselineConfiguredError as e:
            logger.info("Skipping product %s: %s", product_id, e)
            return None

    def _all_products(self) -> list[Product]:
        return [
            product
            for centre in self.repository.get_organization_tree()
            for framework in centre.frameworks
            for product in framework.products
        ]

    # -------------------------------------------------------------------------
    # Scores
    # -------------------------------------------------------------------------

    def compute_system_score(self, system_id: str) -> SystemScore:
        """
        Score one system against its product's baseline.

        Raises:
            UnknownEntityError: If the system does not exist.
            NoBaselineConfiguredError: If its product has no usable baseline.
        """

        def compute() -> SystemScore:
            system = self.repository.get_system(system_id)
            baseline = self.get_baseline(system.product_id)
            lookup = AssessmentLookup(self.repository.get_assessments(system_id=system_id))
            return self.aggregator.score_system(system, baseline.control_ids, lookup)

        return self.cache.get_or_compute(ViewKey.system(View.SYSTEM_SCORE, system_id), compute)

    def compute_product_compliance(self, product_id: str) -> ProductCompliance:
        """
        Score a product over every (system, applicable control) slot.

        Raises:
            UnknownEntityError: If the product does not exist.
            NoBaselineConfiguredError: If the product has no usable baseline.
        """

        def compute() -> ProductCompliance:
            product = self.get_product(product_id)
            baseline = self.get_baseline(product_id)
            lookup = self._product_lookup(product_id)
            records = self.gap_analyzer.collect_records(product, baseline, lookup)
            risk_breakdown: Counter[RiskLevel] = Counter(
                self.gap_analyzer.effective_risk(record) for record in records
            )
            compliance = self.aggregator.score_product(
                product, baseline.control_ids, lookup, risk_breakdown
            )
            logger.info(
                "Computed compliance for %s: %d%%", product_id, compliance.compliance_score
            )
            return compliance

        return self.cache.get_or_compute(
            ViewKey.product(View.PRODUCT_COMPLIANCE, product_id), compute
        )

    def compute_function_compliance(self, product_id: str | None = None) -> list[FunctionCompliance]:
        """
        Compliance per function and category.

        Args:
            product_id: Restrict to one product. Without it, every product
                with a usable baseline is included and the rest are skipped.

        Returns:
            FunctionCompliance per function with baseline controls, in
            catalog order.
        """
        if product_id is not None:

            def compute_product() -> list[FunctionCompliance]:
                product = self.get_product(product_id)
                baseline = self.get_baseline(product_id)
                tallies = self.aggregator.function_tallies(
                    [s.id for s in product.systems],
                    baseline.control_ids,
                    self._product_lookup(product_id),
                )
                return self.aggregator.build_function_compliance(tallies)

            return self.cache.get_or_compute(
                ViewKey.product(View.FUNCTION_COMPLIANCE, product_id), compute_product
            )

        def compute_all() -> list[FunctionCompliance]:
            lookup = AssessmentLookup(self.repository.get_assessments())
            parts = []
            for product in self._all_products():
                baseline = self._optional_baseline(product.id)
                if baseline is None:
                    continue
                parts.append(
                    self.aggregator.function_tallies(
                        [s.id for s in product.systems], baseline.control_ids, lookup
                    )
                )
            return self.aggregator.build_function_compliance(merge_function_tallies(parts))

        return self.cache.get_or_compute(ViewKey(View.FUNCTION_COMPLIANCE), compute_all)

    # -------------------------------------------------------------------------
    # Matrix and gaps
    # -------------------------------------------------------------------------

    def _ordered_systems(self, product: Product, system_order: Sequence[str] | None) -> list[System]:
        systems = _name_order(product.systems)
        if not system_order:
            return systems
        by_id = {s.id: s for s in systems}
        ordered: list[System] = []
        for system_id in system_order:
            system = by_id.pop(system_id, None)
            if system is None:
                raise UnknownEntityError("system", system_id)
            ordered.append(system)
        # Systems the caller did not place keep name order after the placed ones
        return ordered + [s for s in systems if s.id in by_id]

    def get_assessment_matrix(
        self, product_id: str, system_order: Sequence[str] | None = None
    ) -> AssessmentMatrix:
        """
        Controls x systems matrix of a product.

        Args:
            product_id: Product to show.
            system_order: Optional column order by system id. Unlisted
                systems follow in name order.

        Raises:
            UnknownEntityError: If the product or an ordered system is unknown.
            NoBaselineConfiguredError: If the product has no usable baseline.
        """

        def compute(order: Sequence[str] | None = None) -> AssessmentMatrix:
            product = self.get_product(product_id)
            return self.matrix_builder.build(
                product_id,
                self.get_baseline(product_id),
                self._ordered_systems(product, order),
                self._product_lookup(product_id),
            )

        if system_order:
            return compute(system_order)
        return self.cache.get_or_compute(ViewKey.product(View.MATRIX, product_id), compute)

    def get_gap_analysis(self, product_id: str, top_n: int | None = None) -> GapAnalysis:
        """
        Grouped, prioritized gaps of a product.

        Args:
            product_id: Product to analyse.
            top_n: Display cap. Defaults to the configured gaps.top_n.

        Raises:
            UnknownEntityError: If the product does not exist.
            NoBaselineConfiguredError: If the product has no usable baseline.
        """

        def compute() -> GapAnalysis:
            return self.gap_analyzer.analyze_gaps(
                self.get_product(product_id),
                self.get_baseline(product_id),
                self._product_lookup(product_id),
            )

        analysis = self.cache.get_or_compute(
            ViewKey.product(View.GAP_ANALYSIS, product_id), compute
        )
        if top_n is None or top_n == analysis.top_n:
            return analysis
        if top_n < 0:
            raise ValueError(f"top_n must not be negative, got {top_n}")
        return replace(analysis, gaps=analysis.all_gaps[:top_n], top_n=top_n)

    # -------------------------------------------------------------------------
    # Hierarchy
    # -------------------------------------------------------------------------

    def _build_rollup(self, token: CancellationToken | None = None) -> OrganizationRollup:
        tree = self.repository.get_organization_tree()
        baselines = {
            product.id: self._optional_baseline(product.id)
            for centre in tree
            for framework in centre.frameworks
            for product in framework.products
        }
        lookup = AssessmentLookup(self.repository.get_assessments())
        return self.rollup.build(tree, baselines, lookup, should_stop=token)

    def get_organizational_hierarchy_with_scores(self) -> OrganizationRollup:
        """Rollup view of every capability centre, framework, product and system."""
        return self.cache.get_or_compute(ViewKey(View.HIERARCHY), self._build_rollup)

    def schedule_hierarchy_rollup(self) -> RollupTicket:
        """
        Recompute the hierarchy rollup in the background.

        The result is cached only if no newer rollup was scheduled and no
        mutation superseded it while it ran.
        """
        key = ViewKey(View.HIERARCHY)
        started = self.cache.clock

        def store(view: OrganizationRollup) -> None:
            self.cache.put(key, view, computed_at=started)

        return self.scheduler.submit(self._build_rollup, on_result=store)

    def get_framework_summary(self) -> list[FrameworkSummary]:
        """Frameworks merged by case-insensitive name across capability centres."""
        return self.cache.get_or_compute(
            ViewKey(View.FRAMEWORK_SUMMARY),
            lambda: self.rollup.summarize_frameworks(
                self.get_organizational_hierarchy_with_scores()
            ),
        )

    def get_attention_required(self) -> AttentionReport:
        """Unassessed and below-threshold systems across the organisation."""
        return self.cache.get_or_compute(
            ViewKey(View.ATTENTION),
            lambda: self.get_organizational_hierarchy_with_scores().attention(),
        )

    # -------------------------------------------------------------------------
    # Risk and trends
    # -------------------------------------------------------------------------

    def _risk_items(self, product_id: str) -> list[RiskItem]:
        product = self.get_product(product_id)
        baseline = self.get_baseline(product_id)
        records = self.get_gap_analysis(product_id).records
        return self.risk_scorer.score_records(
            records, {s.id: s for s in product.systems}, baseline
        )

    def get_risk_summary(self, product_id: str | None = None) -> RiskSummary:
        """
        Scored remediation priorities for one product or the organisation.

        Raises:
            UnknownEntityError: If the product does not exist.
            NoBaselineConfiguredError: If the product has no usable baseline.
        """
        if product_id is not None:
            return self.cache.get_or_compute(
                ViewKey.product(View.RISK_SUMMARY, product_id),
                lambda: self.risk_scorer.summarize(self._risk_items(product_id), product_id),
            )

        def compute_all() -> RiskSummary:
            items: list[RiskItem] = []
            for product in self._all_products():
                if self._optional_baseline(product.id) is not None:
                    items.extend(self._risk_items(product.id))
            items.sort(key=lambda i: (-i.risk_score, i.record.control_id, i.record.system_name))
            return self.risk_scorer.summarize(items)

        return self.cache.get_or_compute(ViewKey(View.RISK_SUMMARY), compute_all)

    def get_risk_heat_map(self, product_id: str) -> RiskHeatMap:
        """Function x system risk grid of a product."""
        return self.cache.get_or_compute(
            ViewKey.product(View.RISK_HEAT_MAP, product_id),
            lambda: self.risk_scorer.heat_map(
                product_id,
                _name_order(self.get_product(product_id).systems),
                self._risk_items(product_id),
            ),
        )

    def get_compliance_trend(
        self, product_id: str, days: int = 30, now: datetime | None = None
    ) -> ComplianceTrend:
        """
        Daily compliance series of a product's applicable controls.

        Not cached: the window moves with the clock.
        """
        baseline = self.get_baseline(product_id)
        assessments = [
            a
            for a in self.repository.get_assessments(product_id=product_id)
            if a.control_id in baseline
        ]
        return self.trend_tracker.calculate_trend(product_id, assessments, days=days, now=now)

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    def _mutation(
        self,
        mutation_type: MutationType,
        product_id: str,
        system_ids: Sequence[str] = (),
    ) -> Mutation:
        product = self.repository.get_product(product_id)
        framework = self.repository.get_framework(product.framework_id)
        return Mutation(
            mutation_type=mutation_type,
            product_id=product_id,
            framework_id=framework.id,
            centre_id=framework.capability_centre_id,
            system_ids=tuple(system_ids),
        )

    def _settle(self, outcome: WriteOutcome[Any]) -> None:
        if outcome.confirmed:
            self.scheduler.supersede()

    def _speculative_matrix(
        self, product_id: str, cell: MatrixCell
    ) -> dict[ViewKey, AssessmentMatrix]:
        key = ViewKey.product(View.MATRIX, product_id)
        matrix = self.cache.get(key)
        if matrix is None:
            return {}
        try:
            return {key: self.matrix_builder.with_cell(matrix, cell)}
        except UnknownEntityError:
            return {}

    def save_assessment(
        self, system_id: str, control_id: str, patch: dict[str, Any]
    ) -> WriteOutcome[Assessment]:
        """
        Save an edit to one (system, control) cell.

        Creates the assessment when the pair has none, otherwise updates it
        with the stored version as the expected prior state. The decision
        reads storage directly, never a cached matrix.

        Args:
            system_id: Edited system.
            control_id: Edited control.
            patch: Fields to set (status, risk_level, notes, evidence,
                remediation_plan, assessed_date).

        Returns:
            WriteOutcome with the confirmed assessment, or the revert
            instruction and error when the write failed.

        Raises:
            UnknownEntityError: If the system or control does not exist.
            ValueError: If the patch names unknown fields or values.
        """
        system = self.repository.get_system(system_id)
        control = self.catalog.get_control(control_id)
        lookup = AssessmentLookup(self.repository.get_assessments(system_id=system_id))
        intent = resolve_write(lookup, system.id, control.id)

        if intent.action == WriteAction.CREATE:
            draft = Assessment.create(system.id, control.id).with_patch(patch)
            draft = replace(draft, version=1)
            mutation_type = MutationType.ASSESSMENT_CREATED

            def write() -> Assessment:
                return self.repository.create_assessment(draft)

        else:
            existing = lookup.get(system.id, control.id)
            draft = existing.with_patch(patch)
            mutation_type = MutationType.ASSESSMENT_UPDATED

            def write() -> Assessment:
                return self.repository.update_assessment(
                    intent.assessment_id, patch, expected_version=intent.expected_version
                )

        cell = MatrixCell(
            system_id=system.id,
            control_id=control.id,
            status=draft.status,
            assessment_id=draft.id,
            risk_level=draft.risk_level,
            assessed_date=draft.assessed_date,
            version=draft.version,
        )
        outcome = self.coordinator.execute(
            self._mutation(mutation_type, system.product_id, [system.id]),
            write,
            speculative=self._speculative_matrix(system.product_id, cell),
        )
        self._settle(outcome)
        return outcome

    def delete_assessment(self, system_id: str, control_id: str) -> WriteOutcome[None]:
        """
        Clear one cell back to Not Assessed by deleting its assessment.

        Raises:
            UnknownEntityError: If the system is unknown or the pair has no
                assessment.
        """
        system = self.repository.get_system(system_id)
        control_id = control_id.upper()
        lookup = AssessmentLookup(self.repository.get_assessments(system_id=system_id))
        existing = lookup.get(system.id, control_id)
        if existing is None:
            raise UnknownEntityError("assessment", f"{system_id}/{control_id}")

        outcome = self.coordinator.execute(
            self._mutation(MutationType.ASSESSMENT_DELETED, system.product_id, [system.id]),
            lambda: self.repository.delete_assessment(existing.id),
            speculative=self._speculative_matrix(
                system.product_id, MatrixCell(system_id=system.id, control_id=control_id)
            ),
        )
        self._settle(outcome)
        return outcome

    def configure_baseline(
        self, product_id: str, entries: Sequence[BaselineEntry | dict[str, Any]]
    ) -> WriteOutcome[list[BaselineEntry]]:
        """
        Replace a product's baseline entries.

        Raises:
            UnknownEntityError: If the product or an entry's control is unknown.
        """
        product = self.repository.get_product(product_id)
        resolved: list[BaselineEntry] = []
        for entry in entries:
            if isinstance(entry, dict):
                entry = BaselineEntry.from_dict(entry, product_id=product_id)
            control = self.catalog.get_control(entry.control_id)
            resolved.append(replace(entry, product_id=product_id, control_id=control.id))

        outcome = self.coordinator.execute(
            self._mutation(
                MutationType.BASELINE_CHANGED, product_id, [s.id for s in product.systems]
            ),
            lambda: self.repository.save_baseline_entries(product_id, resolved),
        )
        self._settle(outcome)
        if outcome.confirmed:
            logger.info("Configured baseline for %s: %d entries", product_id, len(resolved))
        return outcome

    def apply_baseline_template(
        self,
        product_id: str,
        template_id: str,
        control_ids: Sequence[str] | None = None,
    ) -> WriteOutcome[list[BaselineEntry]]:
        """
        Replace a product's baseline with a template's controls.

        Args:
            product_id: Product to configure.
            template_id: Template to apply.
            control_ids: Explicit control list overriding the template's.

        Raises:
            UnknownEntityError: If the template, product or a control is unknown.
        """
        template = get_template(template_id)
        selected = list(control_ids) if control_ids else template.resolve(self.catalog)
        entries = [
            BaselineEntry(
                product_id=product_id,
                control_id=control_id,
                applicable=True,
                priority=BaselinePriority.SHOULD_HAVE,
                justification=f"Applied from template: {template.name}",
            )
            for control_id in selected
        ]
        return self.configure_baseline(product_id, entries)

    def create_system(
        self,
        product_id: str,
        name: str,
        criticality: str = "MEDIUM",
        environment: str = "PRODUCTION",
        data_classification: str = "INTERNAL",
    ) -> WriteOutcome[System]:
        """Add a system to a product."""
        system = System(
            id=str(uuid.uuid4()),
            name=name,
            product_id=product_id,
            criticality=criticality.upper(),
            environment=environment.upper(),
            data_classification=data_classification.upper(),
        )
        outcome = self.coordinator.execute(
            self._mutation(MutationType.SYSTEM_CREATED, product_id, [system.id]),
            lambda: self.repository.create_system(system),
        )
        self._settle(outcome)
        return outcome

    def update_system(self, system_id: str, patch: dict[str, Any]) -> WriteOutcome[System]:
        """Rename or reclassify a system."""
        system = self.repository.get_system(system_id)
        outcome = self.coordinator.execute(
            self._mutation(MutationType.SYSTEM_UPDATED, system.product_id, [system.id]),
            lambda: self.repository.update_system(system_id, patch),
        )
        self._settle(outcome)
        return outcome

    def delete_system(self, system_id: str) -> WriteOutcome[None]:
        """Remove a system and its assessments."""
        system = self.repository.get_system(system_id)
        outcome = self.coordinator.execute(
            self._mutation(MutationType.SYSTEM_DELETED, system.product_id, [system.id]),
            lambda: self.repository.delete_system(system_id),
        )
        self._settle(outcome)
        return outcome

    def create_autosaver(self, clock: Clock | None = None) -> AutoSaver:
        """Debounced saver for matrix edits using the configured quiet period."""
        return AutoSaver(
            self.save_assessment,
            quiet_period=self.settings.autosave.quiet_period_seconds,
            clock=clock,
        )

    def close(self) -> None:
        self.scheduler.shutdown(wait=False)
