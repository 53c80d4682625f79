"""
Hierarchy rollup across the organisational tree.

Walks Capability Centre -> Framework -> Product -> System bottom-up and
produces a separate, derived rollup view. The input tree is frozen and
never modified.

Rollup Algorithm:
    1. Each system is tallied over its product's resolved baseline.
    2. Each parent's tally is the sum of its children's tallies, so every
       node is scored over the union of its descendants' (control, status)
       pairs. Child percentages are never averaged.
    3. Each node also reports its descendant systems that are unassessed
       (no recorded decision on any baseline control) and those scoring
       below the critical threshold, worst first, capped to top_n. Counts
       are reported uncapped.

Framework Summary:
    summarize_frameworks() is a keyed reduction over the flattened framework
    nodes. Frameworks whose names match case-insensitively become one row
    that keeps every contributing framework id and capability-centre name,
    sums product and system counts, and averages the member frameworks'
    scores. This merge is a display aggregation only; the underlying
    frameworks stay distinct. Merges that join frameworks from different
    centres are logged, since identically named but unrelated frameworks
    cannot be told apart by name alone.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from fractions import Fraction
from typing import Any

from gaplens.errors import EngineError
from gaplens.scoring.aggregator import (
    ScoreAggregator,
    ScoreSummary,
    ScoreTally,
    to_percentage,
)
from gaplens.scoring.baseline import ResolvedBaseline
from gaplens.scoring.lookup import AssessmentLookup
from gaplens.storage.models import CapabilityCentre, Framework, Product, System

logger = logging.getLogger(__name__)


class RollupCancelledError(EngineError):
    """Raised when a rollup is cancelled before it completes."""

    pass


class NodeType(str, Enum):
    """Level of a node in the organisational tree."""

    CAPABILITY_CENTRE = "capability_centre"
    FRAMEWORK = "framework"
    PRODUCT = "product"
    SYSTEM = "system"


@dataclass(frozen=True)
class AttentionItem:
    """A system surfaced for attention."""

    system_id: str
    system_name: str
    product_id: str
    product_name: str
    score: int
    assessed_controls: int
    ratio: Fraction | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "system_id": self.system_id,
            "system_name": self.system_name,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "score": self.score,
            "assessed_controls": self.assessed_controls,
        }


@dataclass
class AttentionReport:
    """
    Organisation-wide systems needing attention.

    Attributes:
        unassessed_systems: Systems without any recorded decision, capped.
        critical_systems: Systems below the threshold, worst first, capped.
        unassessed_count: Uncapped number of unassessed systems.
        critical_count: Uncapped number of below-threshold systems.
        critical_threshold: Threshold used (percent).
        top_n: Cap applied to both lists.
    """

    unassessed_systems: list[AttentionItem]
    critical_systems: list[AttentionItem]
    unassessed_count: int
    critical_count: int
    critical_threshold: int
    top_n: int

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "unassessed_count": self.unassessed_count,
            "critical_count": self.critical_count,
            "critical_threshold": self.critical_threshold,
            "top_n": self.top_n,
            "unassessed_systems": [s.to_dict() for s in self.unassessed_systems],
            "critical_systems": [s.to_dict() for s in self.critical_systems],
        }


def _worst_first(item: AttentionItem) -> tuple[Fraction, str, str]:
    return (item.ratio or Fraction(0), item.system_name.lower(), item.system_id)


@dataclass
class RollupNode:
    """
    One node of the derived rollup view.

    Attributes:
        node_type: Tree level.
        id: Entity identifier.
        name: Display name.
        summary: Scores over the union of descendant slots.
        total_systems: Descendant systems (the system itself for leaves).
        unassessed_count: Descendant systems without any recorded decision.
        critical_count: Descendant systems scoring below the threshold.
        unassessed_systems: Unassessed systems, capped to top_n.
        critical_systems: Below-threshold systems, worst first, capped.
        unconfigured_products: Descendant products without a usable baseline.
        children: Child nodes.
    """

    node_type: NodeType
    id: str
    name: str
    summary: ScoreSummary
    total_systems: int = 0
    unassessed_count: int = 0
    critical_count: int = 0
    unassessed_systems: list[AttentionItem] = field(default_factory=list)
    critical_systems: list[AttentionItem] = field(default_factory=list)
    unconfigured_products: int = 0
    children: list[RollupNode] = field(default_factory=list)

    @property
    def score(self) -> int:
        return self.summary.score

    def walk(self) -> Iterator[RollupNode]:
        """Yield this node and all descendants, depth first."""
        yield self
        for child in self.children:
            yield from child.walk()

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        data: dict[str, Any] = {
            "type": self.node_type.value,
            "id": self.id,
            "name": self.name,
            **self.summary.to_dict(),
            "total_systems": self.total_systems,
            "unassessed_count": self.unassessed_count,
            "critical_count": self.critical_count,
        }
        if self.node_type != NodeType.SYSTEM:
            data["unassessed_systems"] = [s.to_dict() for s in self.unassessed_systems]
            data["critical_systems"] = [s.to_dict() for s in self.critical_systems]
            data["unconfigured_products"] = self.unconfigured_products
            data["children"] = [c.to_dict() for c in self.children]
        return data


@dataclass
class OrganizationRollup:
    """
    Rollup view of the whole organisation.

    Attributes:
        centres: Capability centre nodes.
        summary: Organisation-wide scores.
        total_systems: Every system in the tree.
        unassessed_count: Systems without any recorded decision.
        critical_count: Systems below the critical threshold.
        unassessed_systems: Unassessed systems, capped to top_n.
        critical_systems: Below-threshold systems, worst first, capped.
        critical_threshold: Threshold used (percent).
        top_n: Cap applied to the attention lists.
        generated_at: When the rollup was computed.
    """

    centres: list[RollupNode]
    summary: ScoreSummary
    total_systems: int
    unassessed_count: int
    critical_count: int
    unassessed_systems: list[AttentionItem]
    critical_systems: list[AttentionItem]
    critical_threshold: int
    top_n: int
    generated_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def nodes(self, node_type: NodeType | None = None) -> list[RollupNode]:
        """Flatten the view, optionally keeping one level."""
        result = [node for centre in self.centres for node in centre.walk()]
        if node_type is not None:
            result = [node for node in result if node.node_type == node_type]
        return result

    def find(self, node_type: NodeType, node_id: str) -> RollupNode | None:
        for node in self.nodes(node_type):
            if node.id == node_id:
                return node
        return None

    def attention(self) -> AttentionReport:
        return AttentionReport(
            unassessed_systems=list(self.unassessed_systems),
            critical_systems=list(self.critical_systems),
            unassessed_count=self.unassessed_count,
            critical_count=self.critical_count,
            critical_threshold=self.critical_threshold,
            top_n=self.top_n,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "generated_at": self.generated_at.isoformat(),
            **self.summary.to_dict(),
            "total_systems": self.total_systems,
            "unassessed_count": self.unassessed_count,
            "critical_count": self.critical_count,
            "unassessed_systems": [s.to_dict() for s in self.unassessed_systems],
            "critical_systems": [s.to_dict() for s in self.critical_systems],
            "critical_threshold": self.critical_threshold,
            "top_n": self.top_n,
            "capability_centres": [c.to_dict() for c in self.centres],
        }


@dataclass
class FrameworkSummary:
    """
    Cross-branch summary row for frameworks sharing a name.

    Attributes:
        name: Display name of the first framework seen with this name.
        framework_ids: Every merged framework, in tree order.
        cc_names: Contributing capability-centre names, de-duplicated.
        product_count: Products summed across merged frameworks.
        system_count: Systems summed across merged frameworks.
        average_score: Mean of the merged frameworks' scores.
        combined: Scores over the union of the merged frameworks' slots.
    """

    name: str
    framework_ids: list[str]
    cc_names: list[str]
    product_count: int
    system_count: int
    average_score: int
    combined: ScoreSummary

    @property
    def merged(self) -> bool:
        return len(self.framework_ids) > 1

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "name": self.name,
            "framework_ids": list(self.framework_ids),
            "cc_names": list(self.cc_names),
            "product_count": self.product_count,
            "system_count": self.system_count,
            "average_score": self.average_score,
            "combined_score": self.combined.score,
            "assessed_controls": self.combined.assessed_controls,
            "merged": self.merged,
        }


@dataclass
class _BuiltNode:
    """A rollup node with its uncapped attention lists."""

    node: RollupNode
    unassessed: list[AttentionItem]
    critical: list[AttentionItem]


class HierarchyRollup:
    """
    Computes the rollup view of an organisation tree.

    Example:
        rollup = HierarchyRollup(aggregator, critical_threshold=60, top_n=5)
        view = rollup.build(tree, baselines, lookup)
        for summary in rollup.summarize_frameworks(view):
            print(summary.name, summary.cc_names)
    """

    def __init__(
        self,
        aggregator: ScoreAggregator,
        critical_threshold: int = 60,
        top_n: int = 5,
    ) -> None:
        self.aggregator = aggregator
        self.critical_threshold = critical_threshold
        self.top_n = top_n

    def build(
        self,
        tree: list[CapabilityCentre],
        baselines: Mapping[str, ResolvedBaseline | None],
        lookup: AssessmentLookup,
        should_stop: Callable[[], bool] | None = None,
    ) -> OrganizationRollup:
        """
        Build the rollup view.

        Args:
            tree: Capability centres with their nested frameworks, products
                and systems.
            baselines: Resolved baseline per product id. Products mapped to
                None (or missing) have no usable baseline; their systems are
                counted but contribute no scored slots.
            lookup: Assessments of every system in the tree.
            should_stop: Polled between products; returning True abandons
                the rollup with RollupCancelledError.

        Returns:
            OrganizationRollup view.

        Raises:
            RollupCancelledError: If should_stop returned True.
        """
        built = [
            self._centre_node(centre, baselines, lookup, should_stop) for centre in tree
        ]
        unassessed = [item for b in built for item in b.unassessed]
        critical = sorted((item for b in built for item in b.critical), key=_worst_first)
        centres = [b.node for b in built]

        view = OrganizationRollup(
            centres=centres,
            summary=self.aggregator.summarize(
                ScoreTally.merge(c.summary.tally for c in centres)
            ),
            total_systems=sum(c.total_systems for c in centres),
            unassessed_count=len(unassessed),
            critical_count=len(critical),
            unassessed_systems=unassessed[: self.top_n],
            critical_systems=critical[: self.top_n],
            critical_threshold=self.critical_threshold,
            top_n=self.top_n,
        )
        logger.info(
            "Hierarchy rollup complete: %d centres, %d systems, %d critical, %d unassessed",
            len(centres),
            view.total_systems,
            view.critical_count,
            view.unassessed_count,
        )
        return view

    def _system_node(
        self,
        system: System,
        product: Product,
        baseline: ResolvedBaseline | None,
        lookup: AssessmentLookup,
    ) -> _BuiltNode:
        controls = baseline.control_ids if baseline is not None else ()
        summary = self.aggregator.summarize(
            self.aggregator.tally_system(system.id, controls, lookup)
        )
        item = AttentionItem(
            system_id=system.id,
            system_name=system.name,
            product_id=product.id,
            product_name=product.name,
            score=summary.score,
            assessed_controls=summary.assessed_controls,
            ratio=summary.ratio,
        )
        is_unassessed = summary.tally.evaluated_controls == 0
        is_critical = (
            not is_unassessed
            and summary.has_assessments
            and summary.score < self.critical_threshold
        )
        node = RollupNode(
            node_type=NodeType.SYSTEM,
            id=system.id,
            name=system.name,
            summary=summary,
            total_systems=1,
            unassessed_count=int(is_unassessed),
            critical_count=int(is_critical),
        )
        return _BuiltNode(
            node,
            [item] if is_unassessed else [],
            [item] if is_critical else [],
        )

    def _parent_node(
        self,
        node_type: NodeType,
        node_id: str,
        name: str,
        children: list[_BuiltNode],
        unconfigured: int,
    ) -> _BuiltNode:
        unassessed = [item for child in children for item in child.unassessed]
        critical = sorted(
            (item for child in children for item in child.critical), key=_worst_first
        )
        child_nodes = [child.node for child in children]
        node = RollupNode(
            node_type=node_type,
            id=node_id,
            name=name,
            summary=self.aggregator.summarize(
                ScoreTally.merge(child.summary.tally for child in child_nodes)
            ),
            total_systems=sum(child.total_systems for child in child_nodes),
            unassessed_count=len(unassessed),
            critical_count=len(critical),
            unassessed_systems=unassessed[: self.top_n],
            critical_systems=critical[: self.top_n],
            unconfigured_products=unconfigured,
            children=child_nodes,
        )
        return _BuiltNode(node, unassessed, critical)

    def _product_node(
        self,
        product: Product,
        baselines: Mapping[str, ResolvedBaseline | None],
        lookup: AssessmentLookup,
        should_stop: Callable[[], bool] | None,
    ) -> _BuiltNode:
        if should_stop is not None and should_stop():
            raise RollupCancelledError(f"Rollup cancelled at product {product.id}")

        baseline = baselines.get(product.id)
        children = [
            self._system_node(system, product, baseline, lookup)
            for system in sorted(product.systems, key=lambda s: (s.name.lower(), s.id))
        ]
        return self._parent_node(
            NodeType.PRODUCT,
            product.id,
            product.name,
            children,
            0 if baseline is not None else 1,
        )

    def _framework_node(
        self,
        framework: Framework,
        baselines: Mapping[str, ResolvedBaseline | None],
        lookup: AssessmentLookup,
        should_stop: Callable[[], bool] | None,
    ) -> _BuiltNode:
        children = [
            self._product_node(product, baselines, lookup, should_stop)
            for product in framework.products
        ]
        return self._parent_node(
            NodeType.FRAMEWORK,
            framework.id,
            framework.name,
            children,
            sum(c.node.unconfigured_products for c in children),
        )

    def _centre_node(
        self,
        centre: CapabilityCentre,
        baselines: Mapping[str, ResolvedBaseline | None],
        lookup: AssessmentLookup,
        should_stop: Callable[[], bool] | None,
    ) -> _BuiltNode:
        children = [
            self._framework_node(framework, baselines, lookup, should_stop)
            for framework in centre.frameworks
        ]
        return self._parent_node(
            NodeType.CAPABILITY_CENTRE,
            centre.id,
            centre.name,
            children,
            sum(c.node.unconfigured_products for c in children),
        )

    def summarize_frameworks(self, view: OrganizationRollup) -> list[FrameworkSummary]:
        """
        Merge framework nodes by case-insensitive name.

        Args:
            view: A rollup view from build().

        Returns:
            One row per distinct name, sorted by average score ascending,
            then name.
        """
        groups: dict[str, list[tuple[RollupNode, str]]] = {}
        for centre in view.centres:
            for framework in centre.children:
                groups.setdefault(framework.name.casefold(), []).append(
                    (framework, centre.name)
                )

        summaries = []
        for members in groups.values():
            cc_names: list[str] = []
            for _, cc_name in members:
                if cc_name not in cc_names:
                    cc_names.append(cc_name)
            if len(cc_names) > 1:
                logger.warning(
                    "Merging %d frameworks named %r across capability centres: %s",
                    len(members),
                    members[0][0].name,
                    ", ".join(cc_names),
                )
            ratios = [node.summary.ratio or Fraction(0) for node, _ in members]
            summaries.append(
                FrameworkSummary(
                    name=members[0][0].name,
                    framework_ids=[node.id for node, _ in members],
                    cc_names=cc_names,
                    product_count=sum(len(node.children) for node, _ in members),
                    system_count=sum(node.total_systems for node, _ in members),
                    average_score=to_percentage(sum(ratios, Fraction(0)) / len(ratios)),
                    combined=self.aggregator.summarize(
                        ScoreTally.merge(node.summary.tally for node, _ in members)
                    ),
                )
            )

        summaries.sort(key=lambda s: (s.average_score, s.name.lower()))
        return summaries
