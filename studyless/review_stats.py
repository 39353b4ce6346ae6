"""
Review statistics and learning insights for studyless.

Pure, read-only aggregation over a collection of ReviewLogEntry records:
accuracy, response times, rating distribution, retention by elapsed day,
cheating-risk assessment and improvement trends. Nothing here mutates or
persists history, so it can run against any snapshot of the review log.
"""

import logging
import math
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from statistics import mean
from typing import Dict, List, Sequence
from uuid import UUID

from .constants import MIN_REVIEWS_FOR_INSIGHTS, SUSPICIOUS_REVIEW_MS
from .models import Rating, ReviewLogEntry

logger = logging.getLogger(__name__)

# Accuracy change between history halves that still counts as stable.
TREND_NEUTRAL_BAND = 0.05
MOST_DIFFICULT_CARDS_LIMIT = 10
DEFAULT_AVERAGE_DIFFICULTY = 5.0


class CheatingRisk(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class ImprovementTrend(str, Enum):
    IMPROVING = "improving"
    STABLE = "stable"
    DECLINING = "declining"


@dataclass
class RetentionBucket:
    """Pass/fail counts for reviews made after the same number of whole days."""

    passed: int = 0
    failed: int = 0

    @property
    def total(self) -> int:
        return self.passed + self.failed

    @property
    def retention(self) -> float:
        return self.passed / self.total if self.total else 0.0


@dataclass
class ReviewStats:
    """
    Aggregate statistics over a review history.
    """

    total_reviews: int
    average_accuracy: float  # Fraction of reviews rated Hard or better
    average_response_time_ms: float
    rating_distribution: Dict[Rating, int]
    suspiciously_fast_reviews: int  # Answered in under a second
    average_stability: float
    average_difficulty: float
    retention_by_day: Dict[int, RetentionBucket] = field(default_factory=dict)


@dataclass
class CheatingRiskAssessment:
    risk_level: CheatingRisk
    suspicious_reviews: int
    suspicious_percent: float
    message: str


@dataclass
class LearningInsights:
    improvement_trend: ImprovementTrend
    most_difficult_cards: List[UUID]


def is_suspicious(entry: ReviewLogEntry) -> bool:
    return entry.review_time_ms < SUSPICIOUS_REVIEW_MS


def _accuracy(entries: Sequence[ReviewLogEntry]) -> float:
    if not entries:
        return 0.0
    return sum(1 for e in entries if e.passed) / len(entries)


def calculate_review_stats(history: Sequence[ReviewLogEntry]) -> ReviewStats:
    """
    Calculate comprehensive review statistics.

    Args:
        history: Review log entries in any order.

    Returns:
        ReviewStats. An empty history yields zeros, an empty retention map
        and the default average difficulty.
    """
    rating_distribution = {rating: 0 for rating in Rating}
    if not history:
        return ReviewStats(
            total_reviews=0,
            average_accuracy=0.0,
            average_response_time_ms=0.0,
            rating_distribution=rating_distribution,
            suspiciously_fast_reviews=0,
            average_stability=0.0,
            average_difficulty=DEFAULT_AVERAGE_DIFFICULTY,
        )

    retention_by_day: Dict[int, RetentionBucket] = {}
    for entry in history:
        rating_distribution[entry.rating] += 1
        bucket = retention_by_day.setdefault(
            math.floor(entry.elapsed_days), RetentionBucket()
        )
        if entry.passed:
            bucket.passed += 1
        else:
            bucket.failed += 1

    with_state = [e for e in history if e.stability_before > 0]
    stats = ReviewStats(
        total_reviews=len(history),
        average_accuracy=_accuracy(history),
        average_response_time_ms=mean(e.review_time_ms for e in history),
        rating_distribution=rating_distribution,
        suspiciously_fast_reviews=sum(1 for e in history if is_suspicious(e)),
        average_stability=(
            mean(e.stability_before for e in with_state) if with_state else 0.0
        ),
        average_difficulty=(
            mean(e.difficulty_before for e in with_state)
            if with_state
            else DEFAULT_AVERAGE_DIFFICULTY
        ),
        retention_by_day=dict(sorted(retention_by_day.items())),
    )
    logger.debug(
        f"Computed stats over {stats.total_reviews} reviews "
        f"(accuracy {stats.average_accuracy:.3f})"
    )
    return stats


def detect_cheating_risk(
    history: Sequence[ReviewLogEntry],
) -> CheatingRiskAssessment:
    """
    Classify how likely it is that reviews were clicked through without
    real recall, based on the share of sub-second answers.
    """
    if not history:
        return CheatingRiskAssessment(
            risk_level=CheatingRisk.LOW,
            suspicious_reviews=0,
            suspicious_percent=0.0,
            message="No reviews to analyze.",
        )

    suspicious = sum(1 for e in history if is_suspicious(e))
    percent = suspicious / len(history) * 100

    if percent > 50:
        level = CheatingRisk.HIGH
        message = "Many reviews completed too quickly. Consider reviewing more carefully."
    elif percent > 20:
        level = CheatingRisk.MEDIUM
        message = "Some reviews may have been rushed."
    else:
        level = CheatingRisk.LOW
        message = "Review times look normal."

    return CheatingRiskAssessment(
        risk_level=level,
        suspicious_reviews=suspicious,
        suspicious_percent=percent,
        message=message,
    )


def improvement_trend(history: Sequence[ReviewLogEntry]) -> ImprovementTrend:
    """Compare accuracy of the first and second chronological halves."""
    ordered = sorted(history, key=lambda e: e.reviewed_at)
    half = len(ordered) // 2
    if half == 0:
        return ImprovementTrend.STABLE
    first = _accuracy(ordered[:half])
    second = _accuracy(ordered[half:])
    if second > first + TREND_NEUTRAL_BAND:
        return ImprovementTrend.IMPROVING
    if second < first - TREND_NEUTRAL_BAND:
        return ImprovementTrend.DECLINING
    return ImprovementTrend.STABLE


def most_difficult_cards(
    history: Sequence[ReviewLogEntry], limit: int = MOST_DIFFICULT_CARDS_LIMIT
) -> List[UUID]:
    """Cards with the most Again ratings, most first."""
    lapses = Counter(e.card_id for e in history if e.rating == Rating.Again)
    return [card_id for card_id, _ in lapses.most_common(limit)]


def get_learning_insights(history: Sequence[ReviewLogEntry]) -> LearningInsights:
    """
    Trend and problem-card insights. Below MIN_REVIEWS_FOR_INSIGHTS entries
    there is not enough data and a stable, empty result is returned.
    """
    if len(history) < MIN_REVIEWS_FOR_INSIGHTS:
        return LearningInsights(
            improvement_trend=ImprovementTrend.STABLE, most_difficult_cards=[]
        )
    return LearningInsights(
        improvement_trend=improvement_trend(history),
        most_difficult_cards=most_difficult_cards(history),
    )
