"""
Weighted compliance score aggregation.

This module turns (control, status) pairs into compliance and coverage
scores. All scores are derived on demand and never stored.

Weighting:
    Implemented             1
    Partially Implemented   1/2
    Not Implemented         0
    Not Applicable          excluded from numerator and denominator
    Not Assessed            excluded from numerator; counted by coverage

Scoring Algorithm:
    1. Each (system, control) slot in a product's baseline is counted into a
       ScoreTally by status. Missing assessment rows count as Not Assessed.
    2. Tallies are plain integer counters, so merging tallies is exact and
       associative: a product tally is the sum of its system tallies, a
       function tally is the sum of its category tallies.
    3. compliance = weight_sum / assessed_controls, kept as a Fraction.
       With ScoringPolicy.not_assessed_in_denominator the denominator also
       includes Not Assessed slots.
    4. coverage = (total - not_assessed) / total.
    5. Percentages are rounded half-up to integers only when a ScoreSummary
       is produced. Nothing rounds intermediate values.

A tally with zero assessed controls scores 0, and its assessed_controls
counter of 0 distinguishes it from a fully assessed 0% result.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from fractions import Fraction
from typing import Any

from gaplens.catalog.controls import ControlCatalog
from gaplens.scoring.lookup import AssessmentLookup
from gaplens.storage.models import AssessmentStatus, Product, RiskLevel, System

logger = logging.getLogger(__name__)


def to_percentage(ratio: Fraction | None) -> int:
    """Convert a ratio to a 0-100 integer percentage, rounding half up."""
    if ratio is None:
        return 0
    return math.floor(ratio * 100 + Fraction(1, 2))


@dataclass
class ScoreTally:
    """
    Status counts over a set of (system, control) slots.

    Attributes:
        implemented: Slots with status Implemented.
        partially_implemented: Slots with status Partially Implemented.
        not_implemented: Slots with status Not Implemented.
        not_applicable: Slots with status Not Applicable.
        not_assessed: Slots with status Not Assessed or no assessment row.
    """

    implemented: int = 0
    partially_implemented: int = 0
    not_implemented: int = 0
    not_applicable: int = 0
    not_assessed: int = 0

    def add(self, status: AssessmentStatus, count: int = 1) -> None:
        """Count a status into the tally."""
        if status == AssessmentStatus.IMPLEMENTED:
            self.implemented += count
        elif status == AssessmentStatus.PARTIALLY_IMPLEMENTED:
            self.partially_implemented += count
        elif status == AssessmentStatus.NOT_IMPLEMENTED:
            self.not_implemented += count
        elif status == AssessmentStatus.NOT_APPLICABLE:
            self.not_applicable += count
        else:
            self.not_assessed += count

    def __add__(self, other: ScoreTally) -> ScoreTally:
        if not isinstance(other, ScoreTally):
            return NotImplemented
        return ScoreTally(
            implemented=self.implemented + other.implemented,
            partially_implemented=self.partially_implemented + other.partially_implemented,
            not_implemented=self.not_implemented + other.not_implemented,
            not_applicable=self.not_applicable + other.not_applicable,
            not_assessed=self.not_assessed + other.not_assessed,
        )

    @classmethod
    def from_statuses(cls, statuses: Iterable[AssessmentStatus]) -> ScoreTally:
        tally = cls()
        for status in statuses:
            tally.add(status)
        return tally

    @classmethod
    def merge(cls, tallies: Iterable[ScoreTally]) -> ScoreTally:
        """Sum any number of tallies."""
        total = cls()
        for tally in tallies:
            total = total + tally
        return total

    @property
    def total_controls(self) -> int:
        """All counted slots, whatever their status."""
        return (
            self.implemented
            + self.partially_implemented
            + self.not_implemented
            + self.not_applicable
            + self.not_assessed
        )

    @property
    def assessed_controls(self) -> int:
        """Slots carrying a weight (Implemented, Partial, Not Implemented)."""
        return self.implemented + self.partially_implemented + self.not_implemented

    @property
    def evaluated_controls(self) -> int:
        """Slots with any recorded decision, Not Applicable included."""
        return self.total_controls - self.not_assessed

    @property
    def gap_count(self) -> int:
        return self.partially_implemented + self.not_implemented

    @property
    def weight_sum(self) -> Fraction:
        """Exact weighted sum of Implemented and Partially Implemented slots."""
        return Fraction(self.implemented) + Fraction(self.partially_implemented, 2)

    def status_breakdown(self) -> dict[str, int]:
        """Counts keyed by status display value."""
        return {
            AssessmentStatus.IMPLEMENTED.value: self.implemented,
            AssessmentStatus.PARTIALLY_IMPLEMENTED.value: self.partially_implemented,
            AssessmentStatus.NOT_IMPLEMENTED.value: self.not_implemented,
            AssessmentStatus.NOT_APPLICABLE.value: self.not_applicable,
            AssessmentStatus.NOT_ASSESSED.value: self.not_assessed,
        }

    def to_dict(self) -> dict[str, int]:
        """Convert to dictionary."""
        return {
            "implemented": self.implemented,
            "partially_implemented": self.partially_implemented,
            "not_implemented": self.not_implemented,
            "not_applicable": self.not_applicable,
            "not_assessed": self.not_assessed,
        }


@dataclass(frozen=True)
class ScoringPolicy:
    """
    Policy deciding how Not Assessed slots affect compliance.

    Attributes:
        not_assessed_in_denominator: When False (default), Not Assessed slots
            only lower coverage. When True, they also count as zero-weight
            slots in the compliance denominator.
    """

    not_assessed_in_denominator: bool = False

    def denominator(self, tally: ScoreTally) -> int:
        if self.not_assessed_in_denominator:
            return tally.assessed_controls + tally.not_assessed
        return tally.assessed_controls

    def compliance_ratio(self, tally: ScoreTally) -> Fraction | None:
        """Exact compliance ratio, or None when the denominator is zero."""
        denominator = self.denominator(tally)
        if denominator == 0:
            return None
        return tally.weight_sum / denominator

    def coverage_ratio(self, tally: ScoreTally) -> Fraction | None:
        if tally.total_controls == 0:
            return None
        return Fraction(tally.evaluated_controls, tally.total_controls)


@dataclass(frozen=True)
class ScoreSummary:
    """
    Display-ready scores for one tally.

    Attributes:
        score: Compliance percentage (0-100), 0 when nothing is assessed.
        coverage: Coverage percentage (0-100).
        assessed_controls: Slots that contributed to the compliance ratio.
        total_controls: All counted slots.
        ratio: Exact compliance ratio, None when nothing is assessed.
        tally: Underlying counts.
    """

    score: int
    coverage: int
    assessed_controls: int
    total_controls: int
    ratio: Fraction | None
    tally: ScoreTally

    @property
    def has_assessments(self) -> bool:
        """False when the score is 0 only because nothing was assessed."""
        return self.ratio is not None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "score": self.score,
            "coverage": self.coverage,
            "assessed_controls": self.assessed_controls,
            "total_controls": self.total_controls,
            "status_breakdown": self.tally.status_breakdown(),
        }


@dataclass
class SystemScore:
    """Compliance of one system over its product's baseline."""

    system_id: str
    system_name: str
    summary: ScoreSummary

    @property
    def score(self) -> int:
        return self.summary.score

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "system_id": self.system_id,
            "system_name": self.system_name,
            **self.summary.to_dict(),
        }


@dataclass
class CategoryCompliance:
    """Compliance of one category."""

    category_id: str
    name: str
    summary: ScoreSummary

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "category_id": self.category_id,
            "name": self.name,
            **self.summary.to_dict(),
        }


@dataclass
class FunctionCompliance:
    """Compliance of one function with its nested category breakdown."""

    function_id: str
    name: str
    summary: ScoreSummary
    categories: list[CategoryCompliance] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "function_id": self.function_id,
            "name": self.name,
            **self.summary.to_dict(),
            "categories": [c.to_dict() for c in self.categories],
        }


@dataclass
class ProductCompliance:
    """
    Product-level compliance.

    Attributes:
        product_id: Product scored.
        product_name: Display name.
        summary: Scores over every (system, baseline control) slot.
        system_scores: Per-system scores, sorted by system name.
        risk_breakdown: Gap records per effective risk level.
    """

    product_id: str
    product_name: str
    summary: ScoreSummary
    system_scores: list[SystemScore] = field(default_factory=list)
    risk_breakdown: dict[str, int] = field(default_factory=dict)

    @property
    def compliance_score(self) -> int:
        return self.summary.score

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "product_id": self.product_id,
            "product_name": self.product_name,
            "compliance_score": self.summary.score,
            "coverage_score": self.summary.coverage,
            "assessed_controls": self.summary.assessed_controls,
            "total_controls": self.summary.total_controls,
            "status_breakdown": self.summary.tally.status_breakdown(),
            "risk_breakdown": dict(self.risk_breakdown),
            "system_scores": [s.to_dict() for s in self.system_scores],
        }


# function_id -> category_id -> tally
FunctionTallies = dict[str, dict[str, ScoreTally]]


def merge_function_tallies(parts: Iterable[Mapping[str, Mapping[str, ScoreTally]]]) -> FunctionTallies:
    """Sum nested function/category tallies from several sources."""
    merged: FunctionTallies = {}
    for part in parts:
        for function_id, categories in part.items():
            target = merged.setdefault(function_id, {})
            for category_id, tally in categories.items():
                target[category_id] = target.get(category_id, ScoreTally()) + tally
    return merged


class ScoreAggregator:
    """
    Computes compliance at system, category, function and product level.

    Every granularity is built from the same per-slot tally, so a product
    score equals the score of the merged system tallies exactly.

    Example:
        aggregator = ScoreAggregator(catalog)
        system_score = aggregator.score_system(system, baseline.control_ids, lookup)
        product = aggregator.score_product(product, baseline.control_ids, lookup)
    """

    def __init__(
        self, catalog: ControlCatalog, policy: ScoringPolicy | None = None
    ) -> None:
        self.catalog = catalog
        self.policy = policy or ScoringPolicy()

    def summarize(self, tally: ScoreTally) -> ScoreSummary:
        """Round a tally into display-ready percentages."""
        ratio = self.policy.compliance_ratio(tally)
        return ScoreSummary(
            score=to_percentage(ratio),
            coverage=to_percentage(self.policy.coverage_ratio(tally)),
            assessed_controls=tally.assessed_controls,
            total_controls=tally.total_controls,
            ratio=ratio,
            tally=tally,
        )

    def tally_system(
        self, system_id: str, control_ids: Iterable[str], lookup: AssessmentLookup
    ) -> ScoreTally:
        """Tally one system over a set of applicable controls."""
        return ScoreTally.from_statuses(
            lookup.status(system_id, control_id) for control_id in control_ids
        )

    def tally_systems(
        self,
        system_ids: Iterable[str],
        control_ids: Iterable[str],
        lookup: AssessmentLookup,
    ) -> ScoreTally:
        controls = list(control_ids)
        return ScoreTally.merge(
            self.tally_system(system_id, controls, lookup) for system_id in system_ids
        )

    def tally_by_category(
        self, system_id: str, control_ids: Iterable[str], lookup: AssessmentLookup
    ) -> dict[str, ScoreTally]:
        """Tally one system per category, in catalog order."""
        tallies: dict[str, ScoreTally] = {}
        for control_id in sorted(control_ids, key=self.catalog.sort_key):
            control = self.catalog.get_control(control_id)
            tallies.setdefault(control.category_id, ScoreTally()).add(
                lookup.status(system_id, control.id)
            )
        return tallies

    def function_tallies(
        self,
        system_ids: Iterable[str],
        control_ids: Iterable[str],
        lookup: AssessmentLookup,
    ) -> FunctionTallies:
        """Tally a set of systems per function and category."""
        controls = list(control_ids)
        tallies: FunctionTallies = {}
        for system_id in system_ids:
            for category_id, tally in self.tally_by_category(
                system_id, controls, lookup
            ).items():
                function_id = self.catalog.get_category(category_id).function_id
                bucket = tallies.setdefault(function_id, {})
                bucket[category_id] = bucket.get(category_id, ScoreTally()) + tally
        return tallies

    def build_function_compliance(
        self, tallies: Mapping[str, Mapping[str, ScoreTally]]
    ) -> list[FunctionCompliance]:
        """Turn nested tallies into FunctionCompliance records in catalog order."""
        results = []
        for function in self.catalog.functions:
            categories = tallies.get(function.id)
            if not categories:
                continue
            category_results = [
                CategoryCompliance(
                    category_id=category.id,
                    name=category.name,
                    summary=self.summarize(categories[category.id]),
                )
                for category in function.categories
                if category.id in categories
            ]
            results.append(
                FunctionCompliance(
                    function_id=function.id,
                    name=function.name,
                    summary=self.summarize(ScoreTally.merge(categories.values())),
                    categories=category_results,
                )
            )
        return results

    def score_system(
        self, system: System, control_ids: Iterable[str], lookup: AssessmentLookup
    ) -> SystemScore:
        """Score one system against its product's applicable controls."""
        return SystemScore(
            system_id=system.id,
            system_name=system.name,
            summary=self.summarize(self.tally_system(system.id, control_ids, lookup)),
        )

    def score_product(
        self,
        product: Product,
        control_ids: Iterable[str],
        lookup: AssessmentLookup,
        risk_breakdown: Mapping[RiskLevel, int] | None = None,
    ) -> ProductCompliance:
        """
        Score a product over every (system, applicable control) slot.

        Args:
            product: Product with its systems.
            control_ids: The product's applicable controls.
            lookup: Assessments of the product's systems.
            risk_breakdown: Optional gap counts per risk level.

        Returns:
            ProductCompliance whose summary is the merge of its system tallies.
        """
        controls = list(control_ids)
        system_scores = [
            self.score_system(system, controls, lookup)
            for system in sorted(product.systems, key=lambda s: (s.name.lower(), s.id))
        ]
        summary = self.summarize(ScoreTally.merge(s.summary.tally for s in system_scores))
        logger.debug(
            "Scored product %s: %d%% over %d slots",
            product.id,
            summary.score,
            summary.total_controls,
        )
        return ProductCompliance(
            product_id=product.id,
            product_name=product.name,
            summary=summary,
            system_scores=system_scores,
            risk_breakdown={
                level.value: (risk_breakdown or {}).get(level, 0) for level in RiskLevel
            },
        )
