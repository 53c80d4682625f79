"""
Assessment lookup indexed by (system, control).

Absence of an assessment row is equivalent to status NOT_ASSESSED, so
status() never fails for a pair without a row.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator

from gaplens.storage.models import Assessment, AssessmentStatus

logger = logging.getLogger(__name__)


class AssessmentLookup:
    """
    O(1) index of assessments keyed by (system_id, control_id).

    If the source data violates the one-assessment-per-pair invariant, the
    most recently updated row wins and a warning is logged.

    Example:
        lookup = AssessmentLookup(repository.get_assessments(product_id="prod-1"))
        status = lookup.status("sys-1", "PR.AA-01")
    """

    def __init__(self, assessments: Iterable[Assessment] = ()) -> None:
        self._by_pair: dict[tuple[str, str], Assessment] = {}
        self._by_system: dict[str, dict[str, Assessment]] = {}
        for assessment in assessments:
            self.add(assessment)

    def add(self, assessment: Assessment) -> None:
        """Index an assessment, replacing any older row for the same pair."""
        key = (assessment.system_id, assessment.control_id)
        existing = self._by_pair.get(key)
        if existing is not None and existing.id != assessment.id:
            logger.warning(
                "Duplicate assessments for system %s control %s (%s, %s)",
                key[0],
                key[1],
                existing.id,
                assessment.id,
            )
            if existing.updated_at > assessment.updated_at:
                return
        self._by_pair[key] = assessment
        self._by_system.setdefault(assessment.system_id, {})[assessment.control_id] = assessment

    def get(self, system_id: str, control_id: str) -> Assessment | None:
        """Return the assessment for a pair, or None when absent."""
        return self._by_pair.get((system_id, control_id))

    def status(self, system_id: str, control_id: str) -> AssessmentStatus:
        """Return the status for a pair, NOT_ASSESSED when absent."""
        assessment = self._by_pair.get((system_id, control_id))
        return assessment.status if assessment else AssessmentStatus.NOT_ASSESSED

    def for_system(self, system_id: str) -> dict[str, Assessment]:
        """Assessments of one system keyed by control code."""
        return dict(self._by_system.get(system_id, {}))

    def count_for_system(self, system_id: str) -> int:
        return len(self._by_system.get(system_id, {}))

    def __len__(self) -> int:
        return len(self._by_pair)

    def __iter__(self) -> Iterator[Assessment]:
        return iter(self._by_pair.values())
