"""
Retention advisor: the requested retention that minimizes total study time.

Higher retention means more frequent reviews but fewer lapses; lower
retention the opposite. The sweet spot depends on the user's average
stability and how long reviews and relearning take.
"""

import logging
import math
from enum import Enum
from statistics import mean
from typing import Sequence, Union

from .constants import (
    DECAY_FACTOR,
    DECAY_POWER,
    DEFAULT_DESIRED_RETENTION,
    MIN_REVIEWS_FOR_OPTIMAL_RETENTION,
    RECOMMENDED_RETENTION,
)
from .models import ReviewLogEntry

logger = logging.getLogger(__name__)

MIN_RETENTION_PERCENT = 70
MAX_RETENTION_PERCENT = 95
FALLBACK_STABILITY = 10.0
DAYS_PER_YEAR = 365


class RetentionGoal(str, Enum):
    EFFICIENCY = "efficiency"
    BALANCED = "balanced"
    MASTERY = "mastery"


def yearly_study_time(
    retention: float,
    average_stability: float,
    avg_review_time_seconds: float,
    avg_relearn_time_seconds: float,
) -> float:
    """Seconds per card per year spent reviewing and relearning at `retention`."""
    interval = (
        average_stability
        * (math.pow(retention, -1 / DECAY_POWER) - 1)
        / DECAY_FACTOR
    )
    reviews_per_year = max(1.0, DAYS_PER_YEAR / interval) if interval > 0 else float(DAYS_PER_YEAR)
    lapses_per_year = reviews_per_year * (1 - retention)
    return (
        reviews_per_year * avg_review_time_seconds
        + lapses_per_year * avg_relearn_time_seconds
    )


def calculate_optimal_retention(
    history: Sequence[ReviewLogEntry],
    avg_review_time_seconds: float = 8,
    avg_relearn_time_seconds: float = 30,
) -> float:
    """
    Calculate the retention in [0.70, 0.95] that minimizes total study time.

    Args:
        history: Review log entries.
        avg_review_time_seconds: Average time per review.
        avg_relearn_time_seconds: Average time to relearn a lapsed card.

    Returns:
        The optimal retention rounded to two decimals, or 0.90 when fewer
        than MIN_REVIEWS_FOR_OPTIMAL_RETENTION entries are available.
    """
    if len(history) < MIN_REVIEWS_FOR_OPTIMAL_RETENTION:
        logger.info(
            f"Only {len(history)} reviews; using default retention "
            f"{DEFAULT_DESIRED_RETENTION}."
        )
        return DEFAULT_DESIRED_RETENTION

    stabilities = [e.stability_before for e in history if e.stability_before > 0]
    average_stability = mean(stabilities) if stabilities else FALLBACK_STABILITY

    best_retention = DEFAULT_DESIRED_RETENTION
    best_time = math.inf
    for percent in range(MIN_RETENTION_PERCENT, MAX_RETENTION_PERCENT + 1):
        retention = percent / 100
        total = yearly_study_time(
            retention,
            average_stability,
            avg_review_time_seconds,
            avg_relearn_time_seconds,
        )
        if total < best_time:
            best_time = total
            best_retention = retention

    logger.info(
        f"Optimal retention {best_retention:.2f} for mean stability "
        f"{average_stability:.2f} days"
    )
    return round(best_retention, 2)


def get_recommended_retention(goal: Union[RetentionGoal, str]) -> float:
    """Fixed retention shortcut for a study goal, independent of history."""
    return RECOMMENDED_RETENTION[RetentionGoal(goal).value]
