"""
Control catalog for Gaplens.

This module exposes the fixed NIST CSF 2.0 reference dataset (functions,
categories and subcategory controls) and the predefined baseline templates
that select subsets of it.
"""

from gaplens.catalog.controls import (
    DEFAULT_CATALOG_PATH,
    Control,
    ControlCatalog,
    ControlCategory,
    CsfFunction,
    get_default_catalog,
    load_catalog,
)
from gaplens.catalog.templates import (
    BASELINE_TEMPLATES,
    BaselineTemplate,
    get_template,
)

__all__ = [
    # Catalog
    "Control",
    "ControlCategory",
    "CsfFunction",
    "ControlCatalog",
    "load_catalog",
    "get_default_catalog",
    "DEFAULT_CATALOG_PATH",
    # Templates
    "BaselineTemplate",
    "BASELINE_TEMPLATES",
    "get_template",
]
