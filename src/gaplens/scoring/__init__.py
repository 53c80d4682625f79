"""
Baseline resolution and weighted score aggregation.

This module provides:
    - BaselineResolver: the applicable controls of a product, in canonical order
    - AssessmentLookup: assessments indexed by (system, control)
    - ScoreAggregator: compliance and coverage at system, category, function
      and product granularity from exact rational tallies
"""

from gaplens.scoring.aggregator import (
    CategoryCompliance,
    FunctionCompliance,
    ProductCompliance,
    ScoreAggregator,
    ScoreSummary,
    ScoreTally,
    ScoringPolicy,
    SystemScore,
    merge_function_tallies,
    to_percentage,
)
from gaplens.scoring.baseline import BaselineResolver, ResolvedBaseline
from gaplens.scoring.lookup import AssessmentLookup

__all__ = [
    # Baselines
    "BaselineResolver",
    "ResolvedBaseline",
    # Lookup
    "AssessmentLookup",
    # Aggregation
    "ScoreAggregator",
    "ScoreTally",
    "ScoringPolicy",
    "ScoreSummary",
    "SystemScore",
    "CategoryCompliance",
    "FunctionCompliance",
    "ProductCompliance",
    "merge_function_tallies",
    "to_percentage",
]
