"""
Compliance trend tracking over assessment dates.

Assessments of a product are bucketed by the UTC date of assessed_date.
Each day in the window yields a point with the day's own compliance score
and a cumulative score over every assessment dated up to and including that
day, weighted the same way as product compliance.

Trend Types:
    - improving: cumulative score rose by more than the tolerance
    - declining: cumulative score fell by more than the tolerance
    - stable: change within the tolerance
    - insufficient_data: fewer than two points in the window

Individual status changes are classified with the ordering
Not Assessed < Not Implemented < Partially Implemented < Implemented,
where Not Applicable ranks with Implemented.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import UTC, date, datetime, timedelta
from enum import Enum
from typing import Any

from gaplens.scoring.aggregator import ScoreAggregator, ScoreTally
from gaplens.storage.models import Assessment, AssessmentStatus

logger = logging.getLogger(__name__)

STATUS_ORDER: dict[AssessmentStatus, int] = {
    AssessmentStatus.NOT_ASSESSED: 0,
    AssessmentStatus.NOT_IMPLEMENTED: 1,
    AssessmentStatus.PARTIALLY_IMPLEMENTED: 2,
    AssessmentStatus.IMPLEMENTED: 3,
    AssessmentStatus.NOT_APPLICABLE: 3,
}


class TrendDirection(str, Enum):
    """Direction of a compliance trend or status change."""

    IMPROVING = "improving"
    DECLINING = "declining"
    STABLE = "stable"
    INSUFFICIENT_DATA = "insufficient_data"


def classify_status_change(
    previous: AssessmentStatus, current: AssessmentStatus
) -> TrendDirection:
    """Classify a status change as an improvement, a regression or neither."""
    delta = STATUS_ORDER[current] - STATUS_ORDER[previous]
    if delta > 0:
        return TrendDirection.IMPROVING
    if delta < 0:
        return TrendDirection.DECLINING
    return TrendDirection.STABLE


@dataclass
class TrendPoint:
    """
    One day of the trend series.

    Attributes:
        day: Calendar day (UTC).
        assessments: Assessments dated that day.
        cumulative_assessments: Assessments dated up to and including that day.
        score: Compliance of that day's assessments.
        cumulative_score: Compliance of the cumulative assessments.
        tally: Status counts of that day's assessments.
    """

    day: date
    assessments: int
    cumulative_assessments: int
    score: int
    cumulative_score: int
    tally: ScoreTally

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "date": self.day.isoformat(),
            "total_assessments": self.assessments,
            "cumulative_total": self.cumulative_assessments,
            "compliance_score": self.score,
            "cumulative_compliance_score": self.cumulative_score,
            "implemented": self.tally.implemented,
            "partially_implemented": self.tally.partially_implemented,
            "not_implemented": self.tally.not_implemented,
        }


@dataclass
class ComplianceTrend:
    """
    Daily compliance series for one product.

    Attributes:
        product_id: Product tracked.
        start: Start of the window.
        end: End of the window.
        days: Window length in days.
        direction: Classification of the cumulative score change.
        score_delta: Last minus first cumulative score, None without data.
        points: Days that have at least one assessment, oldest first.
    """

    product_id: str
    start: datetime
    end: datetime
    days: int
    direction: TrendDirection
    score_delta: int | None
    points: list[TrendPoint] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "product_id": self.product_id,
            "start_date": self.start.isoformat(),
            "end_date": self.end.isoformat(),
            "days": self.days,
            "direction": self.direction.value,
            "score_delta": self.score_delta,
            "trends": [p.to_dict() for p in self.points],
        }


@dataclass
class TrendTrackerConfig:
    """
    Configuration for trend tracking.

    Attributes:
        default_period_days: Default number of days to analyze.
        tolerance: Score change (percentage points) still considered stable.
    """

    default_period_days: int = 30
    tolerance: int = 1


class TrendTracker:
    """
    Tracker for compliance trends over assessment dates.

    Example:
        tracker = TrendTracker(aggregator)
        trend = tracker.calculate_trend("prod-1", assessments, days=30)
        print(trend.direction.value)
    """

    def __init__(
        self,
        aggregator: ScoreAggregator,
        config: TrendTrackerConfig | None = None,
    ) -> None:
        self.aggregator = aggregator
        self.config = config or TrendTrackerConfig()
        self._last_trend: ComplianceTrend | None = None

    def calculate_trend(
        self,
        product_id: str,
        assessments: Iterable[Assessment],
        days: int | None = None,
        now: datetime | None = None,
    ) -> ComplianceTrend:
        """
        Build the daily series for a product's assessments.

        Args:
            product_id: Product tracked.
            assessments: The product's assessments, already restricted to
                its applicable controls.
            days: Window length. Defaults to config.default_period_days.
            now: End of the window. Defaults to the current time.

        Returns:
            ComplianceTrend with one point per day that has assessments.
        """
        period = days if days is not None else self.config.default_period_days
        if period < 1:
            raise ValueError(f"Trend period must be at least one day, got {period}")
        end = now or datetime.now(UTC)
        start = end - timedelta(days=period)

        buckets: dict[date, list[Assessment]] = {}
        for assessment in assessments:
            assessed = assessment.assessed_date
            if assessed is None:
                continue
            if assessed.tzinfo is None:
                assessed = assessed.replace(tzinfo=UTC)
            if not start <= assessed <= end:
                continue
            buckets.setdefault(assessed.astimezone(UTC).date(), []).append(assessment)

        points: list[TrendPoint] = []
        cumulative = ScoreTally()
        cumulative_count = 0
        for day in sorted(buckets):
            day_tally = ScoreTally.from_statuses(a.status for a in buckets[day])
            cumulative = cumulative + day_tally
            cumulative_count += len(buckets[day])
            points.append(
                TrendPoint(
                    day=day,
                    assessments=len(buckets[day]),
                    cumulative_assessments=cumulative_count,
                    score=self.aggregator.summarize(day_tally).score,
                    cumulative_score=self.aggregator.summarize(cumulative).score,
                    tally=day_tally,
                )
            )

        score_delta = None
        if len(points) >= 2:
            score_delta = points[-1].cumulative_score - points[0].cumulative_score

        trend = ComplianceTrend(
            product_id=product_id,
            start=start,
            end=end,
            days=period,
            direction=self._determine_direction(score_delta),
            score_delta=score_delta,
            points=points,
        )
        self._last_trend = trend
        logger.info(
            "Calculated trend for %s: %d points, %s",
            product_id,
            len(points),
            trend.direction.value,
        )
        return trend

    def _determine_direction(self, score_delta: int | None) -> TrendDirection:
        if score_delta is None:
            return TrendDirection.INSUFFICIENT_DATA
        if score_delta > self.config.tolerance:
            return TrendDirection.IMPROVING
        if score_delta < -self.config.tolerance:
            return TrendDirection.DECLINING
        return TrendDirection.STABLE
