"""
Analysis components built on top of scored tallies.

Hierarchy Rollup:
    HierarchyRollup rolls system tallies up through products, frameworks
    and capability centres into a derived view, and merges same-named
    frameworks into cross-branch summary rows.

Gap Analysis:
    GapAnalyzer finds applicable controls that are not fully implemented,
    groups them by control and ranks them by risk.

Assessment Matrix:
    MatrixBuilder lays out a product's baseline controls against its
    systems, with virtual Not Assessed cells for missing rows.

Risk and Trends:
    RiskScorer turns gap records into scored remediation items, summaries
    and heat maps. TrendTracker buckets assessments by date.

Example:
    from gaplens.analysis import GapAnalyzer, MatrixBuilder

    analyzer = GapAnalyzer(catalog)
    analysis = analyzer.analyze_gaps(product, baseline, lookup)
    critical = analyzer.get_critical_gaps()
"""

from gaplens.analysis.gap_analyzer import (
    FunctionGapSummary,
    Gap,
    GapAnalysis,
    GapAnalyzer,
    GapAnalyzerConfig,
    GapRecord,
)
from gaplens.analysis.hierarchy import (
    AttentionItem,
    AttentionReport,
    FrameworkSummary,
    HierarchyRollup,
    NodeType,
    OrganizationRollup,
    RollupCancelledError,
    RollupNode,
)
from gaplens.analysis.matrix import (
    AssessmentMatrix,
    MatrixBuilder,
    MatrixCell,
    MatrixFilter,
    MatrixRow,
    WriteAction,
    WriteIntent,
    resolve_write,
)
from gaplens.analysis.risk import (
    HeatMapCell,
    RiskHeatMap,
    RiskItem,
    RiskScorer,
    RiskSummary,
    RiskWeights,
    risk_level_for_score,
)
from gaplens.analysis.trend_tracker import (
    ComplianceTrend,
    TrendDirection,
    TrendPoint,
    TrendTracker,
    TrendTrackerConfig,
    classify_status_change,
)

__all__ = [
    # Hierarchy
    "HierarchyRollup",
    "OrganizationRollup",
    "RollupNode",
    "NodeType",
    "AttentionItem",
    "AttentionReport",
    "FrameworkSummary",
    "RollupCancelledError",
    # Gap Analyzer
    "GapAnalyzer",
    "GapAnalyzerConfig",
    "Gap",
    "GapRecord",
    "GapAnalysis",
    "FunctionGapSummary",
    # Matrix
    "MatrixBuilder",
    "AssessmentMatrix",
    "MatrixRow",
    "MatrixCell",
    "MatrixFilter",
    "WriteAction",
    "WriteIntent",
    "resolve_write",
    # Risk
    "RiskScorer",
    "RiskWeights",
    "RiskItem",
    "RiskSummary",
    "RiskHeatMap",
    "HeatMapCell",
    "risk_level_for_score",
    # Trend Tracker
    "TrendTracker",
    "TrendTrackerConfig",
    "ComplianceTrend",
    "TrendPoint",
    "TrendDirection",
    "classify_status_change",
]
