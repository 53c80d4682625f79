"""
Data models for organisation, baseline and assessment records.

This module defines the dataclasses the engine consumes from its storage
collaborator: the four-level organisational tree, per-product baseline
entries, and per-system assessments.

Schema Design Decisions:
    - IDs are opaque strings; assessments get UUIDs when created locally
    - Timestamps are ISO format strings in UTC when serialized
    - Organisation nodes are frozen; the tree is never mutated in place
    - Assessments carry a version counter used as the expected-prior-value
      token for conflicting write detection
    - Statuses and risk levels accept both display names and backend codes
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import Enum
from fractions import Fraction
from typing import Any


class AssessmentStatus(str, Enum):
    """
    Recorded compliance status of one control for one system.

    Weights used by score aggregation:
        IMPLEMENTED: 1
        PARTIALLY_IMPLEMENTED: 1/2
        NOT_IMPLEMENTED: 0
        NOT_APPLICABLE: excluded from numerator and denominator
        NOT_ASSESSED: excluded from numerator, reported as coverage
    """

    IMPLEMENTED = "Implemented"
    PARTIALLY_IMPLEMENTED = "Partially Implemented"
    NOT_IMPLEMENTED = "Not Implemented"
    NOT_APPLICABLE = "Not Applicable"
    NOT_ASSESSED = "Not Assessed"

    @property
    def weight(self) -> Fraction | None:
        """Scoring weight, or None when the status carries no weight."""
        return _STATUS_WEIGHTS.get(self)

    @property
    def is_gap(self) -> bool:
        """True for statuses that make a control a gap."""
        return self in (
            AssessmentStatus.NOT_IMPLEMENTED,
            AssessmentStatus.PARTIALLY_IMPLEMENTED,
        )

    @property
    def backend_code(self) -> str:
        """Status code used by the REST backend."""
        return _STATUS_TO_BACKEND[self]

    @classmethod
    def parse(cls, value: str | AssessmentStatus | None) -> AssessmentStatus:
        """
        Parse a status from a display name or backend code.

        Args:
            value: "Implemented", "COMPLIANT", an AssessmentStatus, or None.

        Returns:
            The matching status. None maps to NOT_ASSESSED.

        Raises:
            ValueError: If the value is not a recognised status.
        """
        if value is None:
            return cls.NOT_ASSESSED
        if isinstance(value, cls):
            return value
        text = str(value).strip()
        for status in cls:
            if text.lower() == status.value.lower():
                return status
        backend = _BACKEND_TO_STATUS.get(text.upper().replace(" ", "_"))
        if backend is not None:
            return backend
        raise ValueError(f"Unknown assessment status: {value}")


_STATUS_WEIGHTS: dict[AssessmentStatus, Fraction] = {
    AssessmentStatus.IMPLEMENTED: Fraction(1),
    AssessmentStatus.PARTIALLY_IMPLEMENTED: Fraction(1, 2),
    AssessmentStatus.NOT_IMPLEMENTED: Fraction(0),
}

_STATUS_TO_BACKEND: dict[AssessmentStatus, str] = {
    AssessmentStatus.IMPLEMENTED: "COMPLIANT",
    AssessmentStatus.PARTIALLY_IMPLEMENTED: "PARTIALLY_COMPLIANT",
    AssessmentStatus.NOT_IMPLEMENTED: "NON_COMPLIANT",
    AssessmentStatus.NOT_APPLICABLE: "NOT_APPLICABLE",
    AssessmentStatus.NOT_ASSESSED: "NOT_ASSESSED",
}

_BACKEND_TO_STATUS: dict[str, AssessmentStatus] = {
    code: status for status, code in _STATUS_TO_BACKEND.items()
}


class RiskLevel(str, Enum):
    """Risk level of a control or assessment, with display priority."""

    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    CRITICAL = "Critical"

    @property
    def priority(self) -> int:
        """Sort priority: Critical=1, High=2, Medium=3, Low=4."""
        return _RISK_PRIORITY[self]

    @classmethod
    def parse(cls, value: str | RiskLevel | None) -> RiskLevel | None:
        """Parse a risk level case-insensitively. None stays None."""
        if value is None or value == "":
            return None
        if isinstance(value, cls):
            return value
        text = str(value).strip().lower()
        for level in cls:
            if level.value.lower() == text:
                return level
        raise ValueError(f"Unknown risk level: {value}")

    @classmethod
    def highest(cls, levels: list[RiskLevel | None]) -> RiskLevel | None:
        """Return the most severe level in the list, ignoring None."""
        present = [level for level in levels if level is not None]
        if not present:
            return None
        return min(present, key=lambda level: level.priority)


_RISK_PRIORITY: dict[RiskLevel, int] = {
    RiskLevel.CRITICAL: 1,
    RiskLevel.HIGH: 2,
    RiskLevel.MEDIUM: 3,
    RiskLevel.LOW: 4,
}


class BaselinePriority(str, Enum):
    """Priority tier of a baseline entry."""

    MUST_HAVE = "MUST_HAVE"
    SHOULD_HAVE = "SHOULD_HAVE"


def _parse_datetime(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


# -----------------------------------------------------------------------------
# Organisation tree
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class System:
    """
    A deployable system owned by exactly one product.

    Attributes:
        id: System identifier.
        name: Display name.
        product_id: Owning product.
        criticality: CRITICAL, HIGH, MEDIUM or LOW.
        environment: Deployment environment (PRODUCTION, STAGING, ...).
        data_classification: RESTRICTED, CONFIDENTIAL, INTERNAL or PUBLIC.
    """

    id: str
    name: str
    product_id: str
    criticality: str = "MEDIUM"
    environment: str = "PRODUCTION"
    data_classification: str = "INTERNAL"

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "name": self.name,
            "product_id": self.product_id,
            "criticality": self.criticality,
            "environment": self.environment,
            "data_classification": self.data_classification,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any], product_id: str | None = None) -> System:
        """Create from dictionary, defaulting product_id to the parent's."""
        return cls(
            id=str(data["id"]),
            name=data.get("name", str(data["id"])),
            product_id=str(data.get("product_id") or product_id or ""),
            criticality=str(data.get("criticality", "MEDIUM")).upper(),
            environment=str(data.get("environment", "PRODUCTION")).upper(),
            data_classification=str(data.get("data_classification", "INTERNAL")).upper(),
        )


@dataclass(frozen=True)
class Product:
    """A product grouping systems under one baseline."""

    id: str
    name: str
    framework_id: str
    systems: tuple[System, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "name": self.name,
            "framework_id": self.framework_id,
            "systems": [s.to_dict() for s in self.systems],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any], framework_id: str | None = None) -> Product:
        """Create from dictionary, defaulting framework_id to the parent's."""
        product_id = str(data["id"])
        return cls(
            id=product_id,
            name=data.get("name", product_id),
            framework_id=str(data.get("framework_id") or framework_id or ""),
            systems=tuple(
                System.from_dict(s, product_id) for s in data.get("systems", [])
            ),
        )


@dataclass(frozen=True)
class Framework:
    """A framework grouping products inside one capability centre."""

    id: str
    name: str
    capability_centre_id: str
    products: tuple[Product, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "name": self.name,
            "capability_centre_id": self.capability_centre_id,
            "products": [p.to_dict() for p in self.products],
        }

    @classmethod
    def from_dict(
        cls, data: dict[str, Any], capability_centre_id: str | None = None
    ) -> Framework:
        """Create from dictionary."""
        framework_id = str(data["id"])
        return cls(
            id=framework_id,
            name=data.get("name", framework_id),
            capability_centre_id=str(
                data.get("capability_centre_id") or capability_centre_id or ""
            ),
            products=tuple(
                Product.from_dict(p, framework_id) for p in data.get("products", [])
            ),
        )


@dataclass(frozen=True)
class CapabilityCentre:
    """Top-level grouping and root of the organisational tree."""

    id: str
    name: str
    frameworks: tuple[Framework, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "name": self.name,
            "frameworks": [f.to_dict() for f in self.frameworks],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CapabilityCentre:
        """Create from dictionary."""
        centre_id = str(data["id"])
        return cls(
            id=centre_id,
            name=data.get("name", centre_id),
            frameworks=tuple(
                Framework.from_dict(f, centre_id) for f in data.get("frameworks", [])
            ),
        )


# -----------------------------------------------------------------------------
# Baselines and assessments
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class BaselineEntry:
    """
    A (product, control) pair declaring whether the control applies.

    At most one entry exists per (product_id, control_id).
    """

    product_id: str
    control_id: str
    applicable: bool = True
    priority: BaselinePriority = BaselinePriority.SHOULD_HAVE
    justification: str = ""

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "product_id": self.product_id,
            "control_id": self.control_id,
            "applicable": self.applicable,
            "priority": self.priority.value,
            "justification": self.justification,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any], product_id: str | None = None) -> BaselineEntry:
        """Create from dictionary."""
        priority = data.get("priority") or BaselinePriority.SHOULD_HAVE.value
        return cls(
            product_id=str(data.get("product_id") or product_id or ""),
            control_id=str(data["control_id"]).upper(),
            applicable=bool(data.get("applicable", True)),
            priority=BaselinePriority(str(priority).upper()),
            justification=data.get("justification") or "",
        )


# Fields an assessment update may change
ASSESSMENT_PATCH_FIELDS = frozenset(
    {"status", "risk_level", "notes", "evidence", "remediation_plan", "assessed_date"}
)


@dataclass
class Assessment:
    """
    Recorded compliance status of one control for one system.

    At most one assessment exists per (system_id, control_id). The absence
    of a row is equivalent to status NOT_ASSESSED.

    Attributes:
        id: Unique identifier.
        system_id: Assessed system.
        control_id: Assessed control code (e.g., "PR.AA-01").
        status: Compliance status.
        risk_level: Optional risk level set by the assessor.
        notes: Free-text notes.
        evidence: Evidence reference.
        remediation_plan: Planned remediation for gaps.
        assessed_date: When the status was last assessed.
        updated_at: Last modification time (UTC).
        version: Incremented on every update; used as the expected-prior-value
            token for conflict detection.
    """

    id: str
    system_id: str
    control_id: str
    status: AssessmentStatus = AssessmentStatus.NOT_ASSESSED
    risk_level: RiskLevel | None = None
    notes: str = ""
    evidence: str = ""
    remediation_plan: str = ""
    assessed_date: datetime | None = None
    updated_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    version: int = 1

    @classmethod
    def create(
        cls,
        system_id: str,
        control_id: str,
        status: AssessmentStatus = AssessmentStatus.NOT_ASSESSED,
        risk_level: RiskLevel | None = None,
        notes: str = "",
        evidence: str = "",
        remediation_plan: str = "",
        assessed_date: datetime | None = None,
    ) -> Assessment:
        """
        Create a new Assessment with auto-generated ID.

        Args:
            system_id: Assessed system.
            control_id: Assessed control code.
            status: Compliance status.
            risk_level: Optional risk level.
            notes: Free-text notes.
            evidence: Evidence reference.
            remediation_plan: Planned remediation.
            assessed_date: Assessment date. Defaults to now unless the
                status is NOT_ASSESSED.

        Returns:
            New Assessment instance.
        """
        now = datetime.now(UTC)
        if assessed_date is None and status != AssessmentStatus.NOT_ASSESSED:
            assessed_date = now
        return cls(
            id=str(uuid.uuid4()),
            system_id=system_id,
            control_id=control_id.upper(),
            status=status,
            risk_level=risk_level,
            notes=notes,
            evidence=evidence,
            remediation_plan=remediation_plan,
            assessed_date=_parse_datetime(assessed_date),
            updated_at=now,
        )

    def with_patch(self, patch: dict[str, Any]) -> Assessment:
        """
        Return a copy with the patch applied and the version incremented.

        Raises:
            ValueError: If the patch names a field that cannot be updated.
        """
        unknown = set(patch) - ASSESSMENT_PATCH_FIELDS
        if unknown:
            raise ValueError(f"Cannot update assessment fields: {', '.join(sorted(unknown))}")

        changes: dict[str, Any] = dict(patch)
        if "status" in changes:
            changes["status"] = AssessmentStatus.parse(changes["status"])
            if "assessed_date" not in changes and changes["status"] != self.status:
                changes["assessed_date"] = datetime.now(UTC)
        if "risk_level" in changes:
            changes["risk_level"] = RiskLevel.parse(changes["risk_level"])
        if "assessed_date" in changes:
            changes["assessed_date"] = _parse_datetime(changes["assessed_date"])
        return replace(
            self,
            **changes,
            updated_at=datetime.now(UTC),
            version=self.version + 1,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "system_id": self.system_id,
            "control_id": self.control_id,
            "status": self.status.value,
            "risk_level": self.risk_level.value if self.risk_level else None,
            "notes": self.notes,
            "evidence": self.evidence,
            "remediation_plan": self.remediation_plan,
            "assessed_date": self.assessed_date.isoformat() if self.assessed_date else None,
            "updated_at": self.updated_at.isoformat(),
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Assessment:
        """Create from dictionary."""
        return cls(
            id=str(data["id"]),
            system_id=str(data["system_id"]),
            control_id=str(data["control_id"]).upper(),
            status=AssessmentStatus.parse(data.get("status")),
            risk_level=RiskLevel.parse(data.get("risk_level")),
            notes=data.get("notes") or "",
            evidence=data.get("evidence") or "",
            remediation_plan=data.get("remediation_plan") or "",
            assessed_date=_parse_datetime(data.get("assessed_date")),
            updated_at=_parse_datetime(data.get("updated_at")) or datetime.now(UTC),
            version=int(data.get("version", 1)),
        )
