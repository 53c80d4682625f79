"""
Risk scoring, remediation priorities and heat maps.

Each gap record gets a 0-100 risk score:

    control criticality = (1.0 for MUST_HAVE, 0.5 for SHOULD_HAVE)
                          x function priority
    system criticality  = CRITICAL 1.0, HIGH 0.75, MEDIUM 0.5, LOW 0.25
    data classification = RESTRICTED 1.0, CONFIDENTIAL 0.75, INTERNAL 0.5,
                          PUBLIC 0.25

    raw   = 0.4 x control + 0.3 x system + 0.3 x data
    score = round(raw x status multiplier x 100)

The status multiplier is 1.0 for Not Implemented and 0.5 for Partially
Implemented. Scores map to levels: >= 75 Critical, >= 50 High, >= 25 Medium,
otherwise Low.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from gaplens.analysis.gap_analyzer import GapRecord
from gaplens.catalog.controls import ControlCatalog
from gaplens.scoring.baseline import ResolvedBaseline
from gaplens.storage.models import (
    AssessmentStatus,
    BaselinePriority,
    RiskLevel,
    System,
)

logger = logging.getLogger(__name__)

DEFAULT_FUNCTION_PRIORITIES: dict[str, float] = {
    "GV": 0.9,
    "ID": 0.85,
    "PR": 0.95,
    "DE": 0.8,
    "RS": 0.75,
    "RC": 0.7,
}

SYSTEM_CRITICALITY_SCORES: dict[str, float] = {
    "CRITICAL": 1.0,
    "HIGH": 0.75,
    "MEDIUM": 0.5,
    "LOW": 0.25,
}

DATA_CLASSIFICATION_SCORES: dict[str, float] = {
    "RESTRICTED": 1.0,
    "CONFIDENTIAL": 0.75,
    "INTERNAL": 0.5,
    "PUBLIC": 0.25,
}

_FUNCTION_NOUNS: dict[str, str] = {
    "GV": "governance",
    "ID": "asset identification",
    "PR": "protection",
    "DE": "detection",
    "RS": "response",
    "RC": "recovery",
}

_URGENCY: dict[RiskLevel, str] = {
    RiskLevel.CRITICAL: "immediately",
    RiskLevel.HIGH: "as soon as possible",
    RiskLevel.MEDIUM: "within the next sprint",
    RiskLevel.LOW: "when resources permit",
}


def risk_level_for_score(score: int) -> RiskLevel:
    """Map a 0-100 risk score to a risk level."""
    if score >= 75:
        return RiskLevel.CRITICAL
    if score >= 50:
        return RiskLevel.HIGH
    if score >= 25:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


@dataclass
class RiskWeights:
    """
    Weights of the three risk factors. They should sum to 1.

    Attributes:
        control_criticality: Weight of the control's criticality.
        system_criticality: Weight of the system's criticality.
        data_classification: Weight of the system's data classification.
    """

    control_criticality: float = 0.4
    system_criticality: float = 0.3
    data_classification: float = 0.3


@dataclass
class RiskItem:
    """
    A scored remediation item for one gap record.

    Attributes:
        record: Underlying gap record.
        function_id: Function of the control.
        risk_score: 0-100 risk score.
        risk_level: Level derived from the score.
        quick_win: Whether closing the gap is likely cheap for its impact.
        recommendation: Suggested action.
    """

    record: GapRecord
    function_id: str
    risk_score: int
    risk_level: RiskLevel
    quick_win: bool
    recommendation: str

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            **self.record.to_dict(),
            "function_id": self.function_id,
            "risk_score": self.risk_score,
            "risk_level": self.risk_level.value,
            "quick_win": self.quick_win,
            "recommendation": self.recommendation,
        }


@dataclass
class RiskSummary:
    """
    Prioritized remediation view for a product or the organisation.

    Attributes:
        product_id: Product summarized, None for organisation-wide.
        total_items: Number of scored gap records.
        by_risk_level: Item counts per risk level.
        by_function: Item counts per function.
        top_priorities: Highest-scoring items, capped.
        quick_wins: Highest-scoring quick wins, capped at 5.
    """

    product_id: str | None
    total_items: int
    by_risk_level: dict[str, int]
    by_function: dict[str, int]
    top_priorities: list[RiskItem] = field(default_factory=list)
    quick_wins: list[RiskItem] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "product_id": self.product_id,
            "total_items": self.total_items,
            "by_risk_level": self.by_risk_level,
            "by_function": self.by_function,
            "top_priorities": [i.to_dict() for i in self.top_priorities],
            "quick_wins": [i.to_dict() for i in self.quick_wins],
        }


@dataclass
class HeatMapCell:
    """Aggregated risk of the gaps in one cell."""

    count: int = 0
    total_score: int = 0
    max_score: int = 0

    @property
    def average_score(self) -> int:
        if self.count == 0:
            return 0
        return math.floor(self.total_score / self.count + 0.5)

    def add(self, score: int) -> None:
        self.count += 1
        self.total_score += score
        self.max_score = max(self.max_score, score)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "count": self.count,
            "average_score": self.average_score,
            "max_score": self.max_score,
            "risk_level": risk_level_for_score(self.max_score).value if self.count else None,
        }


@dataclass
class RiskHeatMap:
    """
    Function x system grid of gap risk.

    Attributes:
        product_id: Product mapped.
        functions: Function codes in catalog order (rows).
        systems: Systems in display order (columns).
        cells: function_id -> system_id -> cell.
        by_function: Per-function totals across systems.
    """

    product_id: str
    functions: list[str]
    systems: list[System]
    cells: dict[str, dict[str, HeatMapCell]]
    by_function: dict[str, HeatMapCell]

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "product_id": self.product_id,
            "functions": list(self.functions),
            "systems": [{"id": s.id, "name": s.name} for s in self.systems],
            "heat_map": {
                function_id: {sid: cell.to_dict() for sid, cell in row.items()}
                for function_id, row in self.cells.items()
            },
            "by_function": {f: cell.to_dict() for f, cell in self.by_function.items()},
        }


class RiskScorer:
    """
    Scores gap records and builds risk views.

    Example:
        scorer = RiskScorer(catalog)
        items = scorer.score_records(records, systems_by_id, baseline)
        summary = scorer.summarize(items, product_id="prod-1")
        heat_map = scorer.heat_map("prod-1", systems, items)
    """

    def __init__(
        self,
        catalog: ControlCatalog,
        weights: RiskWeights | None = None,
        function_priorities: Mapping[str, float] | None = None,
    ) -> None:
        self.catalog = catalog
        self.weights = weights or RiskWeights()
        self.function_priorities = dict(function_priorities or DEFAULT_FUNCTION_PRIORITIES)

    def risk_score(
        self,
        record: GapRecord,
        system: System,
        baseline_priority: BaselinePriority,
    ) -> int:
        """Compute the 0-100 risk score of one gap record."""
        control = self.catalog.get_control(record.control_id)
        control_criticality = 1.0 if baseline_priority == BaselinePriority.MUST_HAVE else 0.5
        control_criticality *= self.function_priorities.get(control.function_id, 0.7)
        system_criticality = SYSTEM_CRITICALITY_SCORES.get(system.criticality, 0.5)
        data_classification = DATA_CLASSIFICATION_SCORES.get(system.data_classification, 0.5)

        raw = (
            control_criticality * self.weights.control_criticality
            + system_criticality * self.weights.system_criticality
            + data_classification * self.weights.data_classification
        )
        multiplier = 1.0 if record.status == AssessmentStatus.NOT_IMPLEMENTED else 0.5
        return math.floor(raw * multiplier * 100 + 0.5)

    @staticmethod
    def is_quick_win(record: GapRecord, system: System, score: int) -> bool:
        """Partial gaps with notable risk, or open gaps on low-criticality systems."""
        if record.status == AssessmentStatus.PARTIALLY_IMPLEMENTED and score >= 40:
            return True
        return (
            record.status == AssessmentStatus.NOT_IMPLEMENTED
            and system.criticality == "LOW"
            and score >= 30
        )

    def recommendation(self, record: GapRecord, system: System, level: RiskLevel) -> str:
        function_id = self.catalog.get_control(record.control_id).function_id
        noun = _FUNCTION_NOUNS.get(function_id, "security")
        urgency = _URGENCY[level]
        if record.status == AssessmentStatus.NOT_IMPLEMENTED:
            return (
                f"Implement {noun} control {record.control_id} for {system.name} {urgency}. "
                f"This control is not implemented on a {system.criticality.lower()} "
                "criticality system."
            )
        return (
            f"Complete implementation of {noun} control {record.control_id} for "
            f"{system.name} {urgency}. This control is partially implemented and "
            "needs attention."
        )

    def score_records(
        self,
        records: Sequence[GapRecord],
        systems: Mapping[str, System],
        baseline: ResolvedBaseline,
    ) -> list[RiskItem]:
        """
        Score gap records of one product.

        Returns:
            Items sorted by risk score descending, then control code.
        """
        items = []
        for record in records:
            system = systems[record.system_id]
            priority = baseline.priorities.get(record.control_id, BaselinePriority.SHOULD_HAVE)
            score = self.risk_score(record, system, priority)
            level = risk_level_for_score(score)
            items.append(
                RiskItem(
                    record=record,
                    function_id=self.catalog.get_control(record.control_id).function_id,
                    risk_score=score,
                    risk_level=level,
                    quick_win=self.is_quick_win(record, system, score),
                    recommendation=self.recommendation(record, system, level),
                )
            )
        items.sort(key=lambda i: (-i.risk_score, i.record.control_id, i.record.system_name))
        return items

    def summarize(
        self,
        items: Sequence[RiskItem],
        product_id: str | None = None,
        limit: int = 20,
    ) -> RiskSummary:
        """Summarize scored items. Items must already be sorted."""
        by_risk_level = {level.value: 0 for level in RiskLevel}
        by_function = {function.id: 0 for function in self.catalog.functions}
        for item in items:
            by_risk_level[item.risk_level.value] += 1
            by_function[item.function_id] = by_function.get(item.function_id, 0) + 1

        return RiskSummary(
            product_id=product_id,
            total_items=len(items),
            by_risk_level=by_risk_level,
            by_function=by_function,
            top_priorities=list(items[:limit]),
            quick_wins=[i for i in items if i.quick_win][:5],
        )

    def heat_map(
        self,
        product_id: str,
        systems: Sequence[System],
        items: Sequence[RiskItem],
    ) -> RiskHeatMap:
        """Build the function x system heat map of a product."""
        functions = [function.id for function in self.catalog.functions]
        cells = {f: {s.id: HeatMapCell() for s in systems} for f in functions}
        by_function = {f: HeatMapCell() for f in functions}

        for item in items:
            row = cells.get(item.function_id)
            if row is None or item.record.system_id not in row:
                continue
            row[item.record.system_id].add(item.risk_score)
            by_function[item.function_id].add(item.risk_score)

        logger.debug("Built heat map for %s from %d items", product_id, len(items))
        return RiskHeatMap(
            product_id=product_id,
            functions=functions,
            systems=list(systems),
            cells=cells,
            by_function=by_function,
        )
