"""
Storage collaborator interface for the compliance engine.

Persistence is not the engine's concern: it reads organisation, baseline and
assessment records through a ComplianceRepository and routes every write back
through the same interface. Two implementations ship with Gaplens:

    InMemoryRepository  dataset loaded from JSON/YAML, used by the CLI and tests
    HttpRepository      REST client for a remote compliance backend

Implementations must enforce the uniqueness invariants:
    - at most one baseline entry per (product_id, control_id)
    - at most one assessment per (system_id, control_id)
and raise UnknownEntityError, ConflictingWriteError or TransientIOError
from gaplens.errors rather than backend-specific exceptions.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from gaplens.storage.models import (
    Assessment,
    BaselineEntry,
    CapabilityCentre,
    Framework,
    Product,
    System,
)


class ComplianceRepository(ABC):
    """
    Abstract storage collaborator.

    Read methods return fresh copies; callers may not mutate stored state
    through returned objects. Write methods return the stored record as
    confirmed by the backend.
    """

    # -------------------------------------------------------------------------
    # Organisation tree
    # -------------------------------------------------------------------------

    @abstractmethod
    def get_organization_tree(self) -> list[CapabilityCentre]:
        """
        Get the full capability centre > framework > product > system tree.

        Returns:
            Capability centres sorted by name.
        """

    @abstractmethod
    def get_framework(self, framework_id: str) -> Framework:
        """
        Get a framework with its products.

        Raises:
            UnknownEntityError: If the framework does not exist.
        """

    @abstractmethod
    def get_product(self, product_id: str) -> Product:
        """
        Get a product with its systems.

        Raises:
            UnknownEntityError: If the product does not exist.
        """

    @abstractmethod
    def get_system(self, system_id: str) -> System:
        """
        Get a system.

        Raises:
            UnknownEntityError: If the system does not exist.
        """

    @abstractmethod
    def create_system(self, system: System) -> System:
        """
        Create a system under an existing product.

        Raises:
            UnknownEntityError: If the owning product does not exist.
            ConflictingWriteError: If a system with this ID already exists.
        """

    @abstractmethod
    def update_system(self, system_id: str, patch: dict[str, Any]) -> System:
        """
        Update a system's descriptive fields.

        Raises:
            UnknownEntityError: If the system does not exist.
        """

    @abstractmethod
    def delete_system(self, system_id: str) -> None:
        """
        Delete a system and cascade-delete its assessments.

        Raises:
            UnknownEntityError: If the system does not exist.
        """

    # -------------------------------------------------------------------------
    # Baselines
    # -------------------------------------------------------------------------

    @abstractmethod
    def get_baseline_entries(self, product_id: str) -> list[BaselineEntry]:
        """
        Get every baseline entry of a product, applicable or not.

        Raises:
            UnknownEntityError: If the product does not exist.
        """

    @abstractmethod
    def save_baseline_entries(
        self, product_id: str, entries: list[BaselineEntry]
    ) -> list[BaselineEntry]:
        """
        Replace a product's baseline entries.

        Raises:
            UnknownEntityError: If the product does not exist.
            ValueError: If two entries name the same control.
        """

    # -------------------------------------------------------------------------
    # Assessments
    # -------------------------------------------------------------------------

    @abstractmethod
    def get_assessments(
        self, system_id: str | None = None, product_id: str | None = None
    ) -> list[Assessment]:
        """
        Get assessments, optionally filtered by system and/or product.

        Raises:
            UnknownEntityError: If a filter names an entity that does not exist.
        """

    @abstractmethod
    def create_assessment(self, assessment: Assessment) -> Assessment:
        """
        Persist a new assessment.

        Raises:
            UnknownEntityError: If the system does not exist.
            ConflictingWriteError: If an assessment already exists for the
                same (system, control) pair.
        """

    @abstractmethod
    def update_assessment(
        self,
        assessment_id: str,
        patch: dict[str, Any],
        expected_version: int | None = None,
    ) -> Assessment:
        """
        Apply a patch to an existing assessment.

        Args:
            assessment_id: Assessment to update.
            patch: Field changes (see ASSESSMENT_PATCH_FIELDS).
            expected_version: When given, the write is rejected unless the
                stored version still matches.

        Raises:
            UnknownEntityError: If the assessment does not exist.
            ConflictingWriteError: If expected_version does not match.
        """

    @abstractmethod
    def delete_assessment(self, assessment_id: str) -> None:
        """
        Delete an assessment.

        Raises:
            UnknownEntityError: If the assessment does not exist.
        """
