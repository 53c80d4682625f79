"""
Gaplens - Compliance Aggregation and Gap Analysis

Gaplens scores NIST CSF 2.0 assessments across a multi-level organisation
(capability centre, framework, product, system) and turns them into gap
lists, risk priorities and rollup views.

Key Features:
    - Scores systems, products and CSF functions against per-product baselines
    - Builds the controls x systems assessment matrix
    - Groups gaps by control and prioritizes them by risk
    - Rolls scores up the organisation and merges same-named frameworks
    - Caches every view and invalidates exactly what a write affects
    - Applies edits optimistically and reverts them on failure

Design Principles:
    - Determinism: exact rational arithmetic, one rounding at the edge
    - Transparency: every score traces back to assessment rows
    - Portability: storage is a pluggable repository
"""

__version__ = "0.1.0"
__author__ = ""
__email__ = ""

from gaplens.config.settings import Settings, load_config
from gaplens.engine import ComplianceEngine

__all__ = [
    "__version__",
    "ComplianceEngine",
    "Settings",
    "load_config",
]
