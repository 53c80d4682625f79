"""
Controls x systems assessment matrix.

Rows follow the resolved baseline order; columns follow the caller-supplied
system order (name order by default). A (system, control) pair without an
assessment row becomes a virtual cell: status Not Assessed and no
assessment_id. Virtual cells are never persisted by building the matrix.
They become real only when an edit is saved, and resolve_write() decides
whether that save creates a new assessment or updates the existing one.

Filters (function, status, free-text search) are successive intersections
over rows and return new lists without touching the matrix.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Any

from gaplens.catalog.controls import ControlCatalog
from gaplens.errors import UnknownEntityError
from gaplens.scoring.aggregator import ScoreAggregator, ScoreSummary, ScoreTally
from gaplens.scoring.baseline import ResolvedBaseline
from gaplens.scoring.lookup import AssessmentLookup
from gaplens.storage.models import (
    AssessmentStatus,
    BaselinePriority,
    RiskLevel,
    System,
)


@dataclass(frozen=True)
class MatrixCell:
    """
    One (system, control) cell.

    Attributes:
        system_id: Column system.
        control_id: Row control.
        status: Assessment status, Not Assessed for virtual cells.
        assessment_id: Backing assessment, None for virtual cells.
        risk_level: Assessor-set risk level.
        assessed_date: When the status was last assessed.
        version: Version of the backing assessment, None for virtual cells.
    """

    system_id: str
    control_id: str
    status: AssessmentStatus = AssessmentStatus.NOT_ASSESSED
    assessment_id: str | None = None
    risk_level: RiskLevel | None = None
    assessed_date: datetime | None = None
    version: int | None = None

    @property
    def is_virtual(self) -> bool:
        return self.assessment_id is None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "status": self.status.value,
            "assessment_id": self.assessment_id,
            "risk_level": self.risk_level.value if self.risk_level else None,
            "assessed_date": self.assessed_date.isoformat() if self.assessed_date else None,
        }


@dataclass(frozen=True)
class MatrixRow:
    """One baseline control across every column system."""

    control_id: str
    name: str
    function_id: str
    category_id: str
    baseline_priority: BaselinePriority
    cells: dict[str, MatrixCell]

    @property
    def subcategory_code(self) -> str:
        return self.control_id

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "control_id": self.control_id,
            "subcategory_code": self.subcategory_code,
            "name": self.name,
            "function_id": self.function_id,
            "category_id": self.category_id,
            "baseline_priority": self.baseline_priority.value,
            "systems": {system_id: cell.to_dict() for system_id, cell in self.cells.items()},
        }


@dataclass(frozen=True)
class MatrixFilter:
    """
    Row filters, each optional.

    Attributes:
        function_id: Keep rows in this function.
        status: Keep rows where at least one cell has this status.
        search: Keep rows whose code or name contains this text.
    """

    function_id: str | None = None
    status: AssessmentStatus | None = None
    search: str | None = None

    def apply(self, rows: Iterable[MatrixRow]) -> list[MatrixRow]:
        """Return the rows passing every active filter, in original order."""
        result = list(rows)
        if self.function_id:
            function_id = self.function_id.upper()
            result = [r for r in result if r.function_id == function_id]
        if self.status is not None:
            result = [
                r for r in result if any(c.status == self.status for c in r.cells.values())
            ]
        if self.search:
            query = self.search.lower()
            result = [
                r
                for r in result
                if query in r.subcategory_code.lower() or query in r.name.lower()
            ]
        return result


@dataclass
class AssessmentMatrix:
    """
    Controls x systems view of a product.

    Attributes:
        product_id: Product shown.
        systems: Column systems in display order.
        rows: Baseline controls in canonical order.
        summary: Scores derived from the cells.
    """

    product_id: str
    systems: list[System]
    rows: list[MatrixRow]
    summary: ScoreSummary

    def cell(self, system_id: str, control_id: str) -> MatrixCell:
        """
        Return one cell.

        Raises:
            UnknownEntityError: If the pair is not part of the matrix.
        """
        for row in self.rows:
            if row.control_id == control_id:
                cell = row.cells.get(system_id)
                if cell is not None:
                    return cell
                raise UnknownEntityError("system", system_id)
        raise UnknownEntityError("control", control_id)

    def flatten(self) -> list[MatrixCell]:
        """All cells, row by row."""
        return [
            row.cells[system.id] for row in self.rows for system in self.systems
        ]

    def filter(self, criteria: MatrixFilter) -> list[MatrixRow]:
        return criteria.apply(self.rows)

    def to_dict(self, rows: Sequence[MatrixRow] | None = None) -> dict[str, Any]:
        """Convert to dictionary, optionally restricted to filtered rows."""
        total_cells = len(self.rows) * len(self.systems)
        tally = self.summary.tally
        return {
            "product_id": self.product_id,
            "systems": [{"id": s.id, "name": s.name} for s in self.systems],
            "rows": [r.to_dict() for r in (self.rows if rows is None else rows)],
            "summary": {
                "total_controls": len(self.rows),
                "total_systems": len(self.systems),
                "total_cells": total_cells,
                "assessed_cells": tally.evaluated_controls,
                "implemented_cells": tally.implemented,
                "completion_rate": self.summary.coverage,
                "compliance_rate": self.summary.score,
            },
        }


class WriteAction(str, Enum):
    """What saving an edited cell must do."""

    CREATE = "create"
    UPDATE = "update"


@dataclass(frozen=True)
class WriteIntent:
    """
    Outcome of the create-vs-update decision for one pair.

    Attributes:
        action: CREATE when no assessment exists for the pair, else UPDATE.
        assessment_id: Assessment to update, None for CREATE.
        expected_version: Version the update expects to replace.
    """

    action: WriteAction
    system_id: str
    control_id: str
    assessment_id: str | None = None
    expected_version: int | None = None


def resolve_write(lookup: AssessmentLookup, system_id: str, control_id: str) -> WriteIntent:
    """
    Decide whether saving (system, control) creates or updates an assessment.

    The lookup must reflect storage as of the decision. Using a stale matrix
    cell here would create duplicate rows or miss the row to update.
    """
    existing = lookup.get(system_id, control_id)
    if existing is None:
        return WriteIntent(WriteAction.CREATE, system_id, control_id)
    return WriteIntent(
        WriteAction.UPDATE,
        system_id,
        control_id,
        assessment_id=existing.id,
        expected_version=existing.version,
    )


class MatrixBuilder:
    """
    Builds AssessmentMatrix views.

    Example:
        builder = MatrixBuilder(catalog, aggregator)
        matrix = builder.build(product_id, baseline, systems, lookup)
        protect_rows = matrix.filter(MatrixFilter(function_id="PR"))
    """

    def __init__(self, catalog: ControlCatalog, aggregator: ScoreAggregator) -> None:
        self.catalog = catalog
        self.aggregator = aggregator

    def build(
        self,
        product_id: str,
        baseline: ResolvedBaseline,
        systems: Sequence[System],
        lookup: AssessmentLookup,
    ) -> AssessmentMatrix:
        """
        Build the matrix for a product.

        Args:
            product_id: Product shown.
            baseline: The product's resolved baseline (row order).
            systems: Column systems in display order.
            lookup: Assessments of the product's systems.

        Returns:
            AssessmentMatrix with a cell for every (row, column) pair.
        """
        rows: list[MatrixRow] = []
        tally = ScoreTally()
        for control_id in baseline.control_ids:
            control = self.catalog.get_control(control_id)
            cells: dict[str, MatrixCell] = {}
            for system in systems:
                assessment = lookup.get(system.id, control_id)
                if assessment is None:
                    cell = MatrixCell(system_id=system.id, control_id=control_id)
                else:
                    cell = MatrixCell(
                        system_id=system.id,
                        control_id=control_id,
                        status=assessment.status,
                        assessment_id=assessment.id,
                        risk_level=assessment.risk_level,
                        assessed_date=assessment.assessed_date,
                        version=assessment.version,
                    )
                cells[system.id] = cell
                tally.add(cell.status)
            rows.append(
                MatrixRow(
                    control_id=control.id,
                    name=control.name,
                    function_id=control.function_id,
                    category_id=control.category_id,
                    baseline_priority=baseline.priorities[control.id],
                    cells=cells,
                )
            )

        return AssessmentMatrix(
            product_id=product_id,
            systems=list(systems),
            rows=rows,
            summary=self.aggregator.summarize(tally),
        )

    def with_cell(self, matrix: AssessmentMatrix, cell: MatrixCell) -> AssessmentMatrix:
        """
        Return a copy of matrix with one cell replaced and the summary re-derived.

        Raises:
            UnknownEntityError: If the cell's pair is not part of the matrix.
        """
        matrix.cell(cell.system_id, cell.control_id)
        rows = [
            replace(row, cells={**row.cells, cell.system_id: cell})
            if row.control_id == cell.control_id
            else row
            for row in matrix.rows
        ]
        updated = replace(matrix, rows=rows)
        tally = ScoreTally.from_statuses(c.status for c in updated.flatten())
        return replace(updated, summary=self.aggregator.summarize(tally))
