"""
Gap analysis for product compliance.

This module identifies applicable controls that are not fully implemented
on a product's systems and ranks them for remediation. All analysis is
deterministic.

Gap Records:
    One record per (system, applicable control) whose status is
    Not Implemented or Partially Implemented.

Grouped Gaps:
    Records are grouped by control code. A control yields one gap entry per
    product however many systems it affects, carrying:
        - systems_affected: number of distinct systems
        - risk_level: the highest risk level set on any affected system's
          assessment, or the control's declared risk level when none is set

Ordering:
    Risk priority first (Critical=1, High=2, Medium=3, Low=4), then control
    code ascending. The displayed list is capped to top_n; totals are not.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from gaplens.catalog.controls import ControlCatalog
from gaplens.scoring.baseline import ResolvedBaseline
from gaplens.scoring.lookup import AssessmentLookup
from gaplens.storage.models import (
    AssessmentStatus,
    BaselinePriority,
    Product,
    RiskLevel,
)

logger = logging.getLogger(__name__)


@dataclass
class GapRecord:
    """
    One system's gap on one control.

    Attributes:
        control_id: Control code.
        system_id: Affected system.
        system_name: Affected system's display name.
        status: Not Implemented or Partially Implemented.
        risk_level: Assessor-set risk level, if any.
        assessment_id: Assessment carrying the status.
        remediation_plan: Planned remediation recorded on the assessment.
    """

    control_id: str
    system_id: str
    system_name: str
    status: AssessmentStatus
    risk_level: RiskLevel | None
    assessment_id: str
    remediation_plan: str = ""

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "control_id": self.control_id,
            "system_id": self.system_id,
            "system_name": self.system_name,
            "status": self.status.value,
            "risk_level": self.risk_level.value if self.risk_level else None,
            "assessment_id": self.assessment_id,
            "remediation_plan": self.remediation_plan,
        }


@dataclass
class Gap:
    """
    A control with gaps on one or more systems of a product.

    Attributes:
        control_id: Control code.
        control_name: Control name.
        function_id: Parent function code.
        category_id: Parent category code.
        risk_level: Highest effective risk across affected systems.
        baseline_priority: Priority tier of the control in the baseline.
        systems_affected: Distinct systems with a gap on this control.
        records: Underlying per-system gap records.
    """

    control_id: str
    control_name: str
    function_id: str
    category_id: str
    risk_level: RiskLevel
    baseline_priority: BaselinePriority
    systems_affected: int
    records: list[GapRecord] = field(default_factory=list)

    @property
    def priority(self) -> int:
        """Sort priority derived from the risk level (1 is most urgent)."""
        return self.risk_level.priority

    @property
    def status_counts(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for record in self.records:
            counts[record.status.value] = counts.get(record.status.value, 0) + 1
        return counts

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "control_id": self.control_id,
            "control_name": self.control_name,
            "function_id": self.function_id,
            "category_id": self.category_id,
            "risk_level": self.risk_level.value,
            "priority": self.priority,
            "baseline_priority": self.baseline_priority.value,
            "systems_affected": self.systems_affected,
            "status_counts": self.status_counts,
            "records": [r.to_dict() for r in self.records],
        }


@dataclass
class FunctionGapSummary:
    """Gap record counts for one function."""

    function_id: str
    total_gaps: int = 0
    not_implemented: int = 0
    partially_implemented: int = 0
    must_have: int = 0

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "function_id": self.function_id,
            "total_gaps": self.total_gaps,
            "not_implemented": self.not_implemented,
            "partially_implemented": self.partially_implemented,
            "must_have": self.must_have,
        }


@dataclass
class GapAnalysis:
    """
    Gap analysis results for one product.

    Attributes:
        product_id: Product analysed.
        timestamp: When the analysis was performed.
        total_gaps: Number of grouped gaps (uncapped).
        critical_gaps: Grouped gaps with Critical risk (uncapped).
        high_risk_gaps: Grouped gaps with High risk (uncapped).
        total_gap_records: Number of (system, control) gap records.
        gaps: Grouped gaps in priority order, capped to top_n.
        all_gaps: Every grouped gap in priority order.
        gaps_by_risk: Grouped gap counts per risk level.
        function_summary: Record counts per function, in catalog order.
        top_n: Display cap applied to gaps.
    """

    product_id: str
    timestamp: datetime
    total_gaps: int
    critical_gaps: int
    high_risk_gaps: int
    total_gap_records: int
    gaps: list[Gap]
    all_gaps: list[Gap]
    gaps_by_risk: dict[str, int]
    function_summary: list[FunctionGapSummary]
    top_n: int

    @property
    def records(self) -> list[GapRecord]:
        return [record for gap in self.all_gaps for record in gap.records]

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "product_id": self.product_id,
            "timestamp": self.timestamp.isoformat(),
            "total_gaps": self.total_gaps,
            "critical_gaps": self.critical_gaps,
            "high_risk_gaps": self.high_risk_gaps,
            "total_gap_records": self.total_gap_records,
            "gaps_by_risk": self.gaps_by_risk,
            "function_summary": [f.to_dict() for f in self.function_summary],
            "top_n": self.top_n,
            "gaps": [g.to_dict() for g in self.gaps],
        }


@dataclass
class GapAnalyzerConfig:
    """
    Configuration for gap analysis.

    Attributes:
        top_n: Maximum number of grouped gaps in the displayed list.
    """

    top_n: int = 10


class GapAnalyzer:
    """
    Analyzer for identifying and prioritizing compliance gaps.

    Example:
        analyzer = GapAnalyzer(catalog)

        analysis = analyzer.analyze_gaps(product, baseline, lookup)

        # Grouped gaps with Critical risk
        critical = analyzer.get_critical_gaps()

        # Grouped gaps in the Protect function
        protect = analyzer.get_gaps_by_function("PR")

    Attributes:
        catalog: Control catalog used for names and declared risk levels.
        config: GapAnalyzerConfig with analysis settings.
    """

    def __init__(
        self, catalog: ControlCatalog, config: GapAnalyzerConfig | None = None
    ) -> None:
        """
        Initialize the gap analyzer.

        Args:
            catalog: Control catalog.
            config: GapAnalyzerConfig with analysis settings.
                Defaults to standard settings.
        """
        self.catalog = catalog
        self.config = config or GapAnalyzerConfig()
        self._last_analysis: GapAnalysis | None = None

    def collect_records(
        self,
        product: Product,
        baseline: ResolvedBaseline,
        lookup: AssessmentLookup,
    ) -> list[GapRecord]:
        """
        Emit one record per (system, applicable control) gap.

        Records are ordered by baseline order, then system name.
        """
        systems = sorted(product.systems, key=lambda s: (s.name.lower(), s.id))
        records: list[GapRecord] = []
        for control_id in baseline.control_ids:
            for system in systems:
                assessment = lookup.get(system.id, control_id)
                if assessment is None or not assessment.status.is_gap:
                    continue
                records.append(
                    GapRecord(
                        control_id=control_id,
                        system_id=system.id,
                        system_name=system.name,
                        status=assessment.status,
                        risk_level=assessment.risk_level,
                        assessment_id=assessment.id,
                        remediation_plan=assessment.remediation_plan,
                    )
                )
        return records

    def effective_risk(self, record: GapRecord) -> RiskLevel:
        """Assessor-set risk, falling back to the control's declared risk."""
        if record.risk_level is not None:
            return record.risk_level
        return self.catalog.get_control(record.control_id).risk_level

    def analyze_gaps(
        self,
        product: Product,
        baseline: ResolvedBaseline,
        lookup: AssessmentLookup,
        top_n: int | None = None,
    ) -> GapAnalysis:
        """
        Perform gap analysis over a product's systems.

        Args:
            product: Product with its systems.
            baseline: The product's resolved baseline.
            lookup: Assessments of the product's systems.
            top_n: Display cap (overrides config).

        Returns:
            GapAnalysis with grouped, prioritized gaps.
        """
        cap = top_n if top_n is not None else self.config.top_n
        records = self.collect_records(product, baseline, lookup)

        grouped: dict[str, list[GapRecord]] = {}
        for record in records:
            grouped.setdefault(record.control_id, []).append(record)

        all_gaps: list[Gap] = []
        for control_id, control_records in grouped.items():
            control = self.catalog.get_control(control_id)
            assessed_risk = RiskLevel.highest([r.risk_level for r in control_records])
            all_gaps.append(
                Gap(
                    control_id=control.id,
                    control_name=control.name,
                    function_id=control.function_id,
                    category_id=control.category_id,
                    risk_level=assessed_risk or control.risk_level,
                    baseline_priority=baseline.priorities[control.id],
                    systems_affected=len({r.system_id for r in control_records}),
                    records=control_records,
                )
            )

        all_gaps.sort(key=lambda g: (g.priority, g.control_id))

        gaps_by_risk = {level.value: 0 for level in RiskLevel}
        for gap in all_gaps:
            gaps_by_risk[gap.risk_level.value] += 1

        summaries: dict[str, FunctionGapSummary] = {}
        for record in records:
            function_id = self.catalog.get_control(record.control_id).function_id
            summary = summaries.setdefault(function_id, FunctionGapSummary(function_id))
            summary.total_gaps += 1
            if record.status == AssessmentStatus.NOT_IMPLEMENTED:
                summary.not_implemented += 1
            else:
                summary.partially_implemented += 1
            if baseline.priorities[record.control_id] == BaselinePriority.MUST_HAVE:
                summary.must_have += 1
        function_summary = [
            summaries[f.id] for f in self.catalog.functions if f.id in summaries
        ]

        analysis = GapAnalysis(
            product_id=product.id,
            timestamp=datetime.now(UTC),
            total_gaps=len(all_gaps),
            critical_gaps=gaps_by_risk[RiskLevel.CRITICAL.value],
            high_risk_gaps=gaps_by_risk[RiskLevel.HIGH.value],
            total_gap_records=len(records),
            gaps=all_gaps[:cap],
            all_gaps=all_gaps,
            gaps_by_risk=gaps_by_risk,
            function_summary=function_summary,
            top_n=cap,
        )

        self._last_analysis = analysis
        logger.info(
            "Gap analysis complete for %s: %d gaps across %d records",
            product.id,
            analysis.total_gaps,
            analysis.total_gap_records,
        )

        return analysis

    def get_critical_gaps(self) -> list[Gap]:
        """
        Get grouped gaps requiring immediate attention.

        Returns:
            List of gaps with Critical risk.
        """
        if not self._last_analysis:
            return []
        return [g for g in self._last_analysis.all_gaps if g.risk_level == RiskLevel.CRITICAL]

    def get_gaps_by_function(self, function_id: str) -> list[Gap]:
        """
        Get all grouped gaps for a specific function.

        Args:
            function_id: Function code (e.g., "PR").

        Returns:
            List of gaps in that function.
        """
        if not self._last_analysis:
            return []
        return [
            g for g in self._last_analysis.all_gaps if g.function_id == function_id.upper()
        ]

    def get_gaps_by_risk(self, risk_level: RiskLevel) -> list[Gap]:
        """Get all grouped gaps with a specific risk level."""
        if not self._last_analysis:
            return []
        return [g for g in self._last_analysis.all_gaps if g.risk_level == risk_level]
