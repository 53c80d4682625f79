"""
In-memory repository backed by a JSON or YAML dataset.

Dataset format:
    capability_centres:
      - id: cc-1
        name: Platform Engineering
        frameworks:
          - id: fw-1
            name: Security
            products:
              - id: prod-1
                name: Payments API
                systems:
                  - {id: sys-1, name: api-gateway, criticality: HIGH}
    baselines:
      prod-1:
        - {control_id: PR.AA-01, applicable: true, priority: MUST_HAVE}
    assessments:
      - {system_id: sys-1, control_id: PR.AA-01, status: Implemented}

Assessments without an id receive a generated one on load. The repository
is safe to share between the foreground session and background rollup
threads; every operation holds a re-entrant lock.
"""

from __future__ import annotations

import json
import logging
import threading
import uuid
from dataclasses import replace
from pathlib import Path
from typing import Any

import yaml

from gaplens.errors import ConflictingWriteError, UnknownEntityError
from gaplens.storage.models import (
    Assessment,
    BaselineEntry,
    CapabilityCentre,
    Framework,
    Product,
    System,
)
from gaplens.storage.repository import ComplianceRepository

logger = logging.getLogger(__name__)

_SYSTEM_PATCH_FIELDS = frozenset({"name", "criticality", "environment", "data_classification"})


class DatasetError(Exception):
    """Raised when a dataset file cannot be read or is malformed."""

    pass


class InMemoryRepository(ComplianceRepository):
    """
    Dictionary-backed ComplianceRepository.

    Example:
        repo = InMemoryRepository.load("org.yaml")
        engine = ComplianceEngine(repo)
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._centres: dict[str, dict[str, str]] = {}
        self._frameworks: dict[str, dict[str, str]] = {}
        self._products: dict[str, dict[str, str]] = {}
        self._systems: dict[str, System] = {}
        self._baselines: dict[str, dict[str, BaselineEntry]] = {}
        self._assessments: dict[str, Assessment] = {}
        self._pair_index: dict[tuple[str, str], str] = {}

    # -------------------------------------------------------------------------
    # Loading and saving
    # -------------------------------------------------------------------------

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> InMemoryRepository:
        """
        Build a repository from a dataset dictionary.

        Raises:
            DatasetError: If the dataset is malformed.
        """
        repo = cls()
        try:
            for centre_data in data.get("capability_centres", []):
                repo._add_centre(CapabilityCentre.from_dict(centre_data))

            for product_id, entries in (data.get("baselines") or {}).items():
                repo.save_baseline_entries(
                    str(product_id),
                    [BaselineEntry.from_dict(e, str(product_id)) for e in entries],
                )

            for assessment_data in data.get("assessments", []):
                assessment_data = dict(assessment_data)
                assessment_data.setdefault("id", str(uuid.uuid4()))
                repo.create_assessment(Assessment.from_dict(assessment_data))
        except (KeyError, TypeError, ValueError) as e:
            raise DatasetError(f"Malformed dataset: {e}") from e
        except (UnknownEntityError, ConflictingWriteError) as e:
            raise DatasetError(f"Inconsistent dataset: {e}") from e

        logger.info(
            "Loaded dataset: %d products, %d systems, %d assessments",
            len(repo._products),
            len(repo._systems),
            len(repo._assessments),
        )
        return repo

    @classmethod
    def load(cls, path: Path | str) -> InMemoryRepository:
        """
        Load a repository from a JSON or YAML dataset file.

        Raises:
            DatasetError: If the file cannot be read or parsed.
        """
        path = Path(path)
        try:
            with open(path) as f:
                if path.suffix.lower() in (".yaml", ".yml"):
                    data = yaml.safe_load(f) or {}
                else:
                    data = json.load(f)
        except (yaml.YAMLError, json.JSONDecodeError) as e:
            raise DatasetError(f"Cannot parse dataset {path}: {e}") from e
        except OSError as e:
            raise DatasetError(f"Cannot read dataset {path}: {e}") from e

        if not isinstance(data, dict):
            raise DatasetError(f"Dataset {path} must contain a mapping")
        return cls.from_dict(data)

    def to_dict(self) -> dict[str, Any]:
        """Export the repository contents in dataset format."""
        with self._lock:
            return {
                "capability_centres": [c.to_dict() for c in self.get_organization_tree()],
                "baselines": {
                    product_id: [
                        {k: v for k, v in e.to_dict().items() if k != "product_id"}
                        for e in entries.values()
                    ]
                    for product_id, entries in self._baselines.items()
                },
                "assessments": [a.to_dict() for a in self._assessments.values()],
            }

    def save(self, path: Path | str) -> None:
        """Write the repository contents to a JSON or YAML dataset file."""
        path = Path(path)
        data = self.to_dict()
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            if path.suffix.lower() in (".yaml", ".yml"):
                yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)
            else:
                json.dump(data, f, indent=2)

    def _add_centre(self, centre: CapabilityCentre) -> None:
        self._centres[centre.id] = {"name": centre.name}
        for framework in centre.frameworks:
            self._frameworks[framework.id] = {
                "name": framework.name,
                "capability_centre_id": centre.id,
            }
            for product in framework.products:
                self._products[product.id] = {
                    "name": product.name,
                    "framework_id": framework.id,
                }
                for system in product.systems:
                    if system.id in self._systems:
                        raise ConflictingWriteError(
                            system.id, message=f"Duplicate system id: {system.id}"
                        )
                    self._systems[system.id] = system

    # -------------------------------------------------------------------------
    # Organisation tree
    # -------------------------------------------------------------------------

    def _build_product(self, product_id: str) -> Product:
        info = self._products[product_id]
        systems = tuple(s for s in self._systems.values() if s.product_id == product_id)
        return Product(
            id=product_id,
            name=info["name"],
            framework_id=info["framework_id"],
            systems=systems,
        )

    def _build_framework(self, framework_id: str) -> Framework:
        info = self._frameworks[framework_id]
        products = tuple(
            self._build_product(pid)
            for pid, p in self._products.items()
            if p["framework_id"] == framework_id
        )
        return Framework(
            id=framework_id,
            name=info["name"],
            capability_centre_id=info["capability_centre_id"],
            products=products,
        )

    def get_organization_tree(self) -> list[CapabilityCentre]:
        with self._lock:
            centres = [
                CapabilityCentre(
                    id=centre_id,
                    name=info["name"],
                    frameworks=tuple(
                        self._build_framework(fid)
                        for fid, f in self._frameworks.items()
                        if f["capability_centre_id"] == centre_id
                    ),
                )
                for centre_id, info in self._centres.items()
            ]
        return sorted(centres, key=lambda c: c.name.lower())

    def get_framework(self, framework_id: str) -> Framework:
        with self._lock:
            if framework_id not in self._frameworks:
                raise UnknownEntityError("framework", framework_id)
            return self._build_framework(framework_id)

    def get_product(self, product_id: str) -> Product:
        with self._lock:
            if product_id not in self._products:
                raise UnknownEntityError("product", product_id)
            return self._build_product(product_id)

    def get_system(self, system_id: str) -> System:
        with self._lock:
            system = self._systems.get(system_id)
            if system is None:
                raise UnknownEntityError("system", system_id)
            return system

    def create_system(self, system: System) -> System:
        with self._lock:
            if system.product_id not in self._products:
                raise UnknownEntityError("product", system.product_id)
            if system.id in self._systems:
                raise ConflictingWriteError(
                    system.id, message=f"System {system.id} already exists"
                )
            self._systems[system.id] = system
            logger.debug("Created system %s under product %s", system.id, system.product_id)
            return system

    def update_system(self, system_id: str, patch: dict[str, Any]) -> System:
        unknown = set(patch) - _SYSTEM_PATCH_FIELDS
        if unknown:
            raise ValueError(f"Cannot update system fields: {', '.join(sorted(unknown))}")
        with self._lock:
            system = self.get_system(system_id)
            updated = replace(system, **patch)
            self._systems[system_id] = updated
            return updated

    def delete_system(self, system_id: str) -> None:
        with self._lock:
            self.get_system(system_id)
            del self._systems[system_id]
            doomed = [a.id for a in self._assessments.values() if a.system_id == system_id]
            for assessment_id in doomed:
                self._remove_assessment(assessment_id)
            logger.debug(
                "Deleted system %s and %d assessments", system_id, len(doomed)
            )

    # -------------------------------------------------------------------------
    # Baselines
    # -------------------------------------------------------------------------

    def get_baseline_entries(self, product_id: str) -> list[BaselineEntry]:
        with self._lock:
            if product_id not in self._products:
                raise UnknownEntityError("product", product_id)
            return list(self._baselines.get(product_id, {}).values())

    def save_baseline_entries(
        self, product_id: str, entries: list[BaselineEntry]
    ) -> list[BaselineEntry]:
        with self._lock:
            if product_id not in self._products:
                raise UnknownEntityError("product", product_id)
            keyed: dict[str, BaselineEntry] = {}
            for entry in entries:
                if entry.control_id in keyed:
                    raise ValueError(
                        f"Duplicate baseline entry for {product_id}/{entry.control_id}"
                    )
                keyed[entry.control_id] = replace(entry, product_id=product_id)
            self._baselines[product_id] = keyed
            return list(keyed.values())

    # -------------------------------------------------------------------------
    # Assessments
    # -------------------------------------------------------------------------

    def get_assessments(
        self, system_id: str | None = None, product_id: str | None = None
    ) -> list[Assessment]:
        with self._lock:
            if system_id is not None and system_id not in self._systems:
                raise UnknownEntityError("system", system_id)
            if product_id is not None and product_id not in self._products:
                raise UnknownEntityError("product", product_id)

            results = []
            for assessment in self._assessments.values():
                if system_id is not None and assessment.system_id != system_id:
                    continue
                if product_id is not None:
                    system = self._systems.get(assessment.system_id)
                    if system is None or system.product_id != product_id:
                        continue
                results.append(replace(assessment))
        return sorted(results, key=lambda a: (a.system_id, a.control_id))

    def create_assessment(self, assessment: Assessment) -> Assessment:
        with self._lock:
            if assessment.system_id not in self._systems:
                raise UnknownEntityError("system", assessment.system_id)
            pair = (assessment.system_id, assessment.control_id)
            existing = self._pair_index.get(pair)
            if existing is not None:
                raise ConflictingWriteError(
                    existing,
                    message=(
                        f"Assessment already exists for system {pair[0]} "
                        f"control {pair[1]}"
                    ),
                )
            if assessment.id in self._assessments:
                raise ConflictingWriteError(
                    assessment.id, message=f"Assessment {assessment.id} already exists"
                )
            stored = replace(assessment)
            self._assessments[stored.id] = stored
            self._pair_index[pair] = stored.id
            return replace(stored)

    def update_assessment(
        self,
        assessment_id: str,
        patch: dict[str, Any],
        expected_version: int | None = None,
    ) -> Assessment:
        with self._lock:
            current = self._assessments.get(assessment_id)
            if current is None:
                raise UnknownEntityError("assessment", assessment_id)
            if expected_version is not None and expected_version != current.version:
                raise ConflictingWriteError(
                    assessment_id, expected=expected_version, actual=current.version
                )
            updated = current.with_patch(patch)
            self._assessments[assessment_id] = updated
            return replace(updated)

    def delete_assessment(self, assessment_id: str) -> None:
        with self._lock:
            if assessment_id not in self._assessments:
                raise UnknownEntityError("assessment", assessment_id)
            self._remove_assessment(assessment_id)

    def _remove_assessment(self, assessment_id: str) -> None:
        assessment = self._assessments.pop(assessment_id)
        self._pair_index.pop((assessment.system_id, assessment.control_id), None)
