"""
Baseline resolution.

A product's baseline is the subset of catalog controls declared applicable to
it. Every product-scoped score, matrix and gap list starts from the resolved
baseline, so resolution is strict:

    - a product with no baseline entries at all is not "0% compliant", it is
      unconfigured (NoBaselineConfiguredError, reason "no_entries")
    - a baseline whose entries exclude every control is reported the same way
      with reason "no_applicable_controls", so callers can tell the two apart
    - entries referencing controls unknown to the catalog raise
      UnknownEntityError rather than being dropped

The resolved order is deterministic: function order (GV, ID, PR, DE, RS, RC),
then category code, then control code.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from gaplens.catalog.controls import ControlCatalog
from gaplens.errors import NoBaselineConfiguredError
from gaplens.storage.models import BaselineEntry, BaselinePriority
from gaplens.storage.repository import ComplianceRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResolvedBaseline:
    """
    The applicable controls of one product, in canonical order.

    Attributes:
        product_id: Product the baseline belongs to.
        control_ids: Applicable control codes in canonical order.
        priorities: Priority tier per applicable control.
        excluded_count: Entries present but marked not applicable.
    """

    product_id: str
    control_ids: tuple[str, ...]
    priorities: dict[str, BaselinePriority]
    excluded_count: int = 0

    def __len__(self) -> int:
        return len(self.control_ids)

    def __contains__(self, control_id: object) -> bool:
        return control_id in self.priorities


class BaselineResolver:
    """
    Resolves the applicable controls of a product.

    Example:
        resolver = BaselineResolver(repository, catalog)
        baseline = resolver.resolve("prod-1")
        for control_id in baseline.control_ids:
            ...
    """

    def __init__(self, repository: ComplianceRepository, catalog: ControlCatalog) -> None:
        self.repository = repository
        self.catalog = catalog

    def resolve(self, product_id: str) -> ResolvedBaseline:
        """
        Resolve a product's applicable controls.

        Args:
            product_id: Product to resolve.

        Returns:
            ResolvedBaseline in canonical order.

        Raises:
            UnknownEntityError: If the product or a referenced control does
                not exist.
            NoBaselineConfiguredError: If the product has no entries, or no
                applicable entries.
        """
        entries = self.repository.get_baseline_entries(product_id)
        return self.resolve_entries(product_id, entries)

    def resolve_entries(
        self, product_id: str, entries: list[BaselineEntry]
    ) -> ResolvedBaseline:
        """Resolve an already-fetched list of baseline entries."""
        if not entries:
            raise NoBaselineConfiguredError(product_id, NoBaselineConfiguredError.NO_ENTRIES)

        priorities: dict[str, BaselinePriority] = {}
        excluded = 0
        for entry in entries:
            # Raises UnknownEntityError for controls outside the catalog
            control = self.catalog.get_control(entry.control_id)
            if entry.applicable:
                priorities[control.id] = entry.priority
            else:
                excluded += 1

        if not priorities:
            raise NoBaselineConfiguredError(
                product_id, NoBaselineConfiguredError.NO_APPLICABLE_CONTROLS
            )

        ordered = tuple(sorted(priorities, key=self.catalog.sort_key))
        logger.debug(
            "Resolved baseline for %s: %d applicable, %d excluded",
            product_id,
            len(ordered),
            excluded,
        )
        return ResolvedBaseline(
            product_id=product_id,
            control_ids=ordered,
            priorities=priorities,
            excluded_count=excluded,
        )
