"""
Invalidation table for cached views.

Each mutation type maps to a fixed set of topics. A topic is a (view, scope)
pair; resolving it against a Mutation's ancestor ids yields concrete
ViewKeys. Only the listed keys go stale. In particular an assessment change
invalidates its own system's score and never a sibling system's.

    Mutation                      Invalidates
    assessment created/updated/   matrix, gap analysis, function compliance,
    deleted                       risk views and product compliance
                                  of the product; the system's score;
                                  the organisation rollup, framework summary
                                  and attention views
    system created/updated/       the above plus the product's system list
    deleted
    baseline changed              the above plus the product's baseline and
                                  every system score of the product
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class View(str, Enum):
    """Cached view kinds."""

    BASELINE = "baseline"
    SYSTEMS = "systems"
    SYSTEM_SCORE = "system_score"
    PRODUCT_COMPLIANCE = "product_compliance"
    FUNCTION_COMPLIANCE = "function_compliance"
    MATRIX = "matrix"
    GAP_ANALYSIS = "gap_analysis"
    RISK_SUMMARY = "risk_summary"
    RISK_HEAT_MAP = "risk_heat_map"
    HIERARCHY = "hierarchy"
    FRAMEWORK_SUMMARY = "framework_summary"
    ATTENTION = "attention"


class Scope(str, Enum):
    """Entity level a cached view is keyed by."""

    GLOBAL = "global"
    CENTRE = "capability_centre"
    FRAMEWORK = "framework"
    PRODUCT = "product"
    SYSTEM = "system"


@dataclass(frozen=True)
class ViewKey:
    """Cache key: a view kind at one scope."""

    view: View
    scope: Scope = Scope.GLOBAL
    scope_id: str | None = None

    @classmethod
    def product(cls, view: View, product_id: str) -> ViewKey:
        return cls(view, Scope.PRODUCT, product_id)

    @classmethod
    def system(cls, view: View, system_id: str) -> ViewKey:
        return cls(view, Scope.SYSTEM, system_id)

    def __str__(self) -> str:
        if self.scope == Scope.GLOBAL:
            return self.view.value
        return f"{self.view.value}({self.scope.value}={self.scope_id})"


class MutationType(str, Enum):
    """Kinds of write the engine performs."""

    ASSESSMENT_CREATED = "assessment_created"
    ASSESSMENT_UPDATED = "assessment_updated"
    ASSESSMENT_DELETED = "assessment_deleted"
    SYSTEM_CREATED = "system_created"
    SYSTEM_UPDATED = "system_updated"
    SYSTEM_DELETED = "system_deleted"
    BASELINE_CHANGED = "baseline_changed"


@dataclass(frozen=True)
class Mutation:
    """
    A write and the entities it touches.

    Attributes:
        mutation_type: Kind of write.
        product_id: Product whose data changed.
        framework_id: Parent framework of the product.
        centre_id: Parent capability centre of the framework.
        system_ids: Systems whose own scores changed.
    """

    mutation_type: MutationType
    product_id: str
    framework_id: str | None = None
    centre_id: str | None = None
    system_ids: tuple[str, ...] = field(default_factory=tuple)


Topic = tuple[View, Scope]

_PRODUCT_AGGREGATES: tuple[Topic, ...] = (
    (View.MATRIX, Scope.PRODUCT),
    (View.GAP_ANALYSIS, Scope.PRODUCT),
    (View.FUNCTION_COMPLIANCE, Scope.PRODUCT),
    (View.FUNCTION_COMPLIANCE, Scope.GLOBAL),
    (View.RISK_SUMMARY, Scope.PRODUCT),
    (View.RISK_SUMMARY, Scope.GLOBAL),
    (View.RISK_HEAT_MAP, Scope.PRODUCT),
    (View.PRODUCT_COMPLIANCE, Scope.PRODUCT),
    (View.SYSTEM_SCORE, Scope.SYSTEM),
)

_ORGANISATION_VIEWS: tuple[Topic, ...] = (
    (View.HIERARCHY, Scope.GLOBAL),
    (View.FRAMEWORK_SUMMARY, Scope.GLOBAL),
    (View.ATTENTION, Scope.GLOBAL),
)

_ASSESSMENT_TOPICS = _PRODUCT_AGGREGATES + _ORGANISATION_VIEWS
_SYSTEM_TOPICS = ((View.SYSTEMS, Scope.PRODUCT),) + _ASSESSMENT_TOPICS
_BASELINE_TOPICS = ((View.BASELINE, Scope.PRODUCT),) + _ASSESSMENT_TOPICS

INVALIDATION_MAP: dict[MutationType, tuple[Topic, ...]] = {
    MutationType.ASSESSMENT_CREATED: _ASSESSMENT_TOPICS,
    MutationType.ASSESSMENT_UPDATED: _ASSESSMENT_TOPICS,
    MutationType.ASSESSMENT_DELETED: _ASSESSMENT_TOPICS,
    MutationType.SYSTEM_CREATED: _SYSTEM_TOPICS,
    MutationType.SYSTEM_UPDATED: _SYSTEM_TOPICS,
    MutationType.SYSTEM_DELETED: _SYSTEM_TOPICS,
    MutationType.BASELINE_CHANGED: _BASELINE_TOPICS,
}


class InvalidationTable:
    """
    Resolves mutations to the cache keys they invalidate.

    Example:
        table = InvalidationTable()
        keys = table.keys_for(Mutation(
            MutationType.ASSESSMENT_UPDATED, "prod-1",
            framework_id="fw-1", centre_id="cc-1", system_ids=("sys-1",),
        ))
    """

    def __init__(self, mapping: dict[MutationType, tuple[Topic, ...]] | None = None) -> None:
        self.mapping = mapping or INVALIDATION_MAP

    def topics_for(self, mutation_type: MutationType) -> tuple[Topic, ...]:
        return self.mapping[mutation_type]

    def keys_for(self, mutation: Mutation) -> set[ViewKey]:
        """Concrete keys a mutation invalidates."""
        keys: set[ViewKey] = set()
        for view, scope in self.topics_for(mutation.mutation_type):
            if scope == Scope.GLOBAL:
                keys.add(ViewKey(view))
            elif scope == Scope.PRODUCT:
                keys.add(ViewKey(view, scope, mutation.product_id))
            elif scope == Scope.SYSTEM:
                keys.update(ViewKey(view, scope, sid) for sid in mutation.system_ids)
            elif scope == Scope.FRAMEWORK and mutation.framework_id:
                keys.add(ViewKey(view, scope, mutation.framework_id))
            elif scope == Scope.CENTRE and mutation.centre_id:
                keys.add(ViewKey(view, scope, mutation.centre_id))
        return keys
