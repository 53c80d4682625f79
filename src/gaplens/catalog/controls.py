"""
NIST Cybersecurity Framework 2.0 control catalog.

The catalog is a fixed reference dataset: the engine consumes it to order,
group and label controls but never creates or mutates controls. The packaged
catalog lives in data/csf2_controls.json and holds:
    - 6 Functions in framework order: GV, ID, PR, DE, RS, RC
    - 22 Categories grouped under functions
    - 106 Subcategory controls grouped under categories

Each function declares a default risk level inherited by its controls. Gap
analysis falls back to this level when no assessor-set risk exists.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from gaplens.errors import UnknownEntityError
from gaplens.storage.models import RiskLevel

logger = logging.getLogger(__name__)

DEFAULT_CATALOG_PATH = Path(__file__).parent / "data" / "csf2_controls.json"


@dataclass(frozen=True)
class Control:
    """
    A single subcategory control.

    Attributes:
        id: Subcategory code (e.g., "PR.AA-01").
        name: Short name.
        category_id: Parent category code (e.g., "PR.AA").
        function_id: Parent function code (e.g., "PR").
        risk_level: Declared risk level of the control.
    """

    id: str
    name: str
    category_id: str
    function_id: str
    risk_level: RiskLevel = RiskLevel.MEDIUM

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "name": self.name,
            "category_id": self.category_id,
            "function_id": self.function_id,
            "risk_level": self.risk_level.value,
        }


@dataclass(frozen=True)
class ControlCategory:
    """A category of related controls."""

    id: str
    name: str
    function_id: str
    controls: tuple[Control, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "name": self.name,
            "function_id": self.function_id,
            "controls": [c.to_dict() for c in self.controls],
        }


@dataclass(frozen=True)
class CsfFunction:
    """
    A top-level CSF function.

    Attributes:
        id: Two-letter identifier (GV, ID, PR, DE, RS, RC).
        name: Function name.
        default_risk_level: Risk level inherited by the function's controls.
        categories: Categories in catalog order.
    """

    id: str
    name: str
    default_risk_level: RiskLevel = RiskLevel.MEDIUM
    categories: tuple[ControlCategory, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "name": self.name,
            "default_risk_level": self.default_risk_level.value,
            "categories": [c.to_dict() for c in self.categories],
        }


class ControlCatalog:
    """
    Indexed, immutable view over the control hierarchy.

    Provides O(1) lookups of functions, categories and controls, and the
    canonical sort key used to order control lists deterministically:
    function order first, then category code, then control code.

    Example:
        catalog = load_catalog()
        control = catalog.get_control("PR.AA-01")
        ordered = sorted(control_ids, key=catalog.sort_key)
    """

    def __init__(self, functions: list[CsfFunction], version: str = "") -> None:
        self.version = version
        self._functions: tuple[CsfFunction, ...] = tuple(functions)
        self._function_index: dict[str, CsfFunction] = {}
        self._function_order: dict[str, int] = {}
        self._category_index: dict[str, ControlCategory] = {}
        self._control_index: dict[str, Control] = {}

        for position, function in enumerate(self._functions):
            self._function_index[function.id] = function
            self._function_order[function.id] = position
            for category in function.categories:
                self._category_index[category.id] = category
                for control in category.controls:
                    self._control_index[control.id] = control

    @property
    def functions(self) -> list[CsfFunction]:
        """All functions in catalog order."""
        return list(self._functions)

    @property
    def controls(self) -> list[Control]:
        """All controls in catalog order."""
        return list(self._control_index.values())

    def has_control(self, control_id: str) -> bool:
        return control_id.upper() in self._control_index

    def get_function(self, function_id: str) -> CsfFunction:
        """
        Get a function by ID.

        Raises:
            UnknownEntityError: If the function does not exist.
        """
        function = self._function_index.get(function_id.upper())
        if function is None:
            raise UnknownEntityError("function", function_id)
        return function

    def get_category(self, category_id: str) -> ControlCategory:
        """
        Get a category by ID.

        Raises:
            UnknownEntityError: If the category does not exist.
        """
        category = self._category_index.get(category_id.upper())
        if category is None:
            raise UnknownEntityError("category", category_id)
        return category

    def get_control(self, control_id: str) -> Control:
        """
        Get a control by its subcategory code.

        Raises:
            UnknownEntityError: If the control does not exist.
        """
        control = self._control_index.get(control_id.upper())
        if control is None:
            raise UnknownEntityError("control", control_id)
        return control

    def sort_key(self, control_id: str) -> tuple[int, str, str]:
        """
        Canonical ordering key for a control code.

        Raises:
            UnknownEntityError: If the control does not exist.
        """
        control = self.get_control(control_id)
        return (self._function_order[control.function_id], control.category_id, control.id)

    def statistics(self) -> dict[str, int]:
        """Counts of functions, categories and controls."""
        return {
            "functions": len(self._function_index),
            "categories": len(self._category_index),
            "controls": len(self._control_index),
        }


def _build_function(data: dict[str, Any]) -> CsfFunction:
    function_id = data["id"].upper()
    risk = RiskLevel.parse(data.get("default_risk_level")) or RiskLevel.MEDIUM
    categories = []
    for cat_data in data.get("categories", []):
        category_id = cat_data["id"].upper()
        controls = []
        for ctrl in cat_data.get("controls", []):
            control_id = ctrl["id"].upper()
            controls.append(
                Control(
                    id=control_id,
                    name=ctrl.get("name", control_id),
                    category_id=category_id,
                    function_id=function_id,
                    risk_level=RiskLevel.parse(ctrl.get("risk_level")) or risk,
                )
            )
        categories.append(
            ControlCategory(
                id=category_id,
                name=cat_data.get("name", category_id),
                function_id=function_id,
                controls=tuple(controls),
            )
        )
    return CsfFunction(
        id=function_id,
        name=data.get("name", function_id),
        default_risk_level=risk,
        categories=tuple(categories),
    )


def load_catalog(path: Path | str | None = None) -> ControlCatalog:
    """
    Load a control catalog from JSON.

    Args:
        path: Catalog file. Defaults to the packaged CSF 2.0 catalog.

    Returns:
        ControlCatalog instance.

    Raises:
        FileNotFoundError: If the catalog file does not exist.
        ValueError: If the file is not a valid catalog.
    """
    catalog_path = Path(path) if path else DEFAULT_CATALOG_PATH

    with open(catalog_path) as f:
        try:
            data = json.load(f)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid catalog JSON in {catalog_path}: {e}") from e

    functions_data = data.get("functions")
    if not functions_data:
        raise ValueError(f"Catalog {catalog_path} defines no functions")

    catalog = ControlCatalog(
        [_build_function(f) for f in functions_data],
        version=str(data.get("version", "")),
    )
    logger.debug("Loaded control catalog %s: %s", catalog_path.name, catalog.statistics())
    return catalog


_DEFAULT_CATALOG: ControlCatalog | None = None


def get_default_catalog() -> ControlCatalog:
    """Return the packaged catalog, loading it on first use."""
    global _DEFAULT_CATALOG
    if _DEFAULT_CATALOG is None:
        _DEFAULT_CATALOG = load_catalog()
    return _DEFAULT_CATALOG
