"""
Storage models and repositories for Gaplens.

The engine never persists anything itself. It reads organisation, baseline
and assessment records through a ComplianceRepository and writes mutations
back through it. Aggregated scores are always derived, never stored.
"""

from gaplens.storage.http import BackendAuthenticationError, HttpRepository
from gaplens.storage.memory import DatasetError, InMemoryRepository
from gaplens.storage.models import (
    ASSESSMENT_PATCH_FIELDS,
    Assessment,
    AssessmentStatus,
    BaselineEntry,
    BaselinePriority,
    CapabilityCentre,
    Framework,
    Product,
    RiskLevel,
    System,
)
from gaplens.storage.repository import ComplianceRepository

__all__ = [
    # Models
    "Assessment",
    "AssessmentStatus",
    "BaselineEntry",
    "BaselinePriority",
    "CapabilityCentre",
    "Framework",
    "Product",
    "RiskLevel",
    "System",
    "ASSESSMENT_PATCH_FIELDS",
    # Repositories
    "ComplianceRepository",
    "InMemoryRepository",
    "HttpRepository",
    "DatasetError",
    "BackendAuthenticationError",
]
