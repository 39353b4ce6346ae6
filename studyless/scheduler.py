# studyless/scheduler.py

"""
Defines the FSRS memory model and the BaseScheduler / FSRS_Scheduler pair
that turns a card's state and a rating into its next state and a review
log entry.

All functions here are pure: identical inputs give identical outputs and
nothing is persisted. Persisting the result is the caller's job.
"""

import logging
import math
from abc import ABC, abstractmethod
import datetime
from dataclasses import dataclass
from typing import Dict, Optional, Sequence, Tuple

from .constants import (
    DECAY_FACTOR,
    DECAY_POWER,
    DEFAULT_MAXIMUM_INTERVAL,
    MAX_DIFFICULTY,
    MIN_DIFFICULTY,
    MIN_STABILITY,
)
from .exceptions import (
    CardSuspendedError,
    DegenerateParametersError,
    InvalidRatingError,
    InvalidTimeOrderError,
)
from .models import (
    AlgorithmParameters,
    CardState,
    LearningState,
    Rating,
    ReviewLogEntry,
    ensure_utc,
)

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400.0


# ---------------------------------------------------------------------------
# Forgetting curve
# ---------------------------------------------------------------------------


def retrievability(stability: float, elapsed_days: float) -> float:
    """
    Predicted probability of recall after `elapsed_days` without review.

    R(t) = (1 + DECAY_FACTOR * t / S) ** -DECAY_POWER, defined as exactly 1.0
    when stability or elapsed time is not positive.
    """
    if stability <= 0 or elapsed_days <= 0:
        return 1.0
    return math.pow(1 + DECAY_FACTOR * elapsed_days / stability, -DECAY_POWER)


def next_interval(
    stability: float,
    requested_retention: float,
    maximum_interval: int = DEFAULT_MAXIMUM_INTERVAL,
) -> float:
    """
    Days until retrievability falls to `requested_retention`.

    Solves R(t) = requested_retention for t, capped at `maximum_interval`.
    """
    if stability <= 0:
        return 0.0
    interval = (
        stability
        * (math.pow(requested_retention, -1 / DECAY_POWER) - 1)
        / DECAY_FACTOR
    )
    return min(max(interval, 0.0), float(maximum_interval))


def days_between(start: datetime.datetime, end: datetime.datetime) -> float:
    return (end - start).total_seconds() / SECONDS_PER_DAY


# ---------------------------------------------------------------------------
# FSRS-5 memory model
# ---------------------------------------------------------------------------


def _clamp_difficulty(d: float) -> float:
    return min(max(d, MIN_DIFFICULTY), MAX_DIFFICULTY)


def initial_stability(w: Sequence[float], rating: Rating) -> float:
    return max(w[rating - 1], MIN_STABILITY)


def initial_difficulty(w: Sequence[float], rating: Rating) -> float:
    return _clamp_difficulty(w[4] - math.exp(w[5] * (rating - 1)) + 1)


def next_difficulty(
    w: Sequence[float], difficulty: float, rating: Rating
) -> float:
    """Damped linear step by rating, then mean reversion towards the Easy default."""
    delta = -w[6] * (rating - 3)
    damped = difficulty + delta * (MAX_DIFFICULTY - difficulty) / 9
    reverted = w[7] * initial_difficulty(w, Rating.Easy) + (1 - w[7]) * damped
    return _clamp_difficulty(reverted)


def next_recall_stability(
    w: Sequence[float],
    difficulty: float,
    stability: float,
    r: float,
    rating: Rating,
) -> float:
    """Stability after a successful review. Hard grows least, Easy most."""
    hard_penalty = w[15] if rating == Rating.Hard else 1.0
    easy_bonus = w[16] if rating == Rating.Easy else 1.0
    growth = (
        math.exp(w[8])
        * (11 - difficulty)
        * math.pow(stability, -w[9])
        * (math.exp(w[10] * (1 - r)) - 1)
        * hard_penalty
        * easy_bonus
    )
    return stability * (1 + growth)


def next_forget_stability(
    w: Sequence[float], difficulty: float, stability: float, r: float
) -> float:
    """Stability after a lapse; never above the pre-lapse value."""
    post_lapse = (
        w[11]
        * math.pow(difficulty, -w[12])
        * (math.pow(stability + 1, w[13]) - 1)
        * math.exp(w[14] * (1 - r))
    )
    return min(post_lapse, stability)


def short_term_stability(
    w: Sequence[float], stability: float, rating: Rating
) -> float:
    return stability * math.exp(w[17] * (rating - 3 + w[18]))


def step_memory(
    w: Sequence[float],
    state: LearningState,
    stability: float,
    difficulty: float,
    elapsed_days: float,
    rating: Rating,
) -> Tuple[LearningState, float, float]:
    """
    Apply one rating to a memory state.

    Returns:
        (next learning state, next stability, next difficulty)

    Raises:
        DegenerateParametersError: If the weights produce a non-finite value.
    """
    try:
        if state == LearningState.New:
            new_s = initial_stability(w, rating)
            new_d = initial_difficulty(w, rating)
            new_state = (
                LearningState.Learning
                if rating == Rating.Again
                else LearningState.Review
            )
        elif state in (LearningState.Learning, LearningState.Relearning):
            new_s = short_term_stability(w, stability, rating)
            new_d = next_difficulty(w, difficulty, rating)
            new_state = state if rating == Rating.Again else LearningState.Review
        else:
            r = retrievability(stability, elapsed_days)
            if rating == Rating.Again:
                new_s = next_forget_stability(w, difficulty, stability, r)
                new_state = LearningState.Relearning
            else:
                new_s = next_recall_stability(w, difficulty, stability, r, rating)
                new_state = LearningState.Review
            new_d = next_difficulty(w, difficulty, rating)
    except (OverflowError, ValueError, ZeroDivisionError) as e:
        raise DegenerateParametersError(
            f"Memory update failed for state {state.name}, rating {rating.name}: {e}"
        ) from e

    if not (math.isfinite(new_s) and math.isfinite(new_d)):
        raise DegenerateParametersError(
            f"Non-finite memory state (stability={new_s}, difficulty={new_d})."
        )
    return new_state, max(new_s, MIN_STABILITY), new_d


# ---------------------------------------------------------------------------
# Scheduling
# ---------------------------------------------------------------------------


def _validate_rating(rating: int) -> Rating:
    """Maps a 1-4 rating to Rating and validates."""
    if isinstance(rating, bool) or not isinstance(rating, int) or rating not in (1, 2, 3, 4):
        raise InvalidRatingError(
            f"Invalid rating: {rating}. Must be 1-4 (1=Again, 2=Hard, 3=Good, 4=Easy)."
        )
    return Rating(rating)


def _next_due(
    new_state: LearningState,
    stability: float,
    now: datetime.datetime,
    params: AlgorithmParameters,
) -> datetime.datetime:
    if new_state == LearningState.Learning:
        return now + params.learning_steps[0]
    if new_state == LearningState.Relearning:
        return now + params.relearning_steps[0]
    interval = next_interval(
        stability, params.requested_retention, params.maximum_interval
    )
    return now + datetime.timedelta(days=interval)


def schedule(
    card: CardState,
    rating: int,
    now: datetime.datetime,
    params: AlgorithmParameters,
) -> Tuple[CardState, ReviewLogEntry]:
    """
    Computes the next state of a card and the log entry for this review.

    Args:
        card: The card's current learning state.
        rating: The rating given for this review (1=Again, 2=Hard, 3=Good, 4=Easy).
        now: Time of the review. Naive datetimes are taken as UTC.
        params: Algorithm parameters (weights and scalar settings).

    Returns:
        A (CardState, ReviewLogEntry) pair. The input card is not modified.

    Raises:
        InvalidRatingError: If the rating is not in 1-4.
        InvalidTimeOrderError: If `now` precedes the card's last review.
        CardSuspendedError: If the card is suspended.
        DegenerateParametersError: If the weights yield non-finite values.
    """
    grade = _validate_rating(rating)
    now = ensure_utc(now)
    if card.is_suspended:
        raise CardSuspendedError(f"Card {card.card_id} is suspended.")
    if card.last_reviewed_at is not None and now < card.last_reviewed_at:
        raise InvalidTimeOrderError(
            f"Review time {now.isoformat()} precedes last review "
            f"{card.last_reviewed_at.isoformat()} of card {card.card_id}."
        )

    if card.last_reviewed_at is not None:
        elapsed_days = days_between(card.last_reviewed_at, now)
        scheduled_days = max(days_between(card.last_reviewed_at, card.due_at), 0.0)
    else:
        elapsed_days = 0.0
        scheduled_days = 0.0

    new_state, new_stability, new_difficulty = step_memory(
        params.weights,
        card.learning_state,
        card.stability,
        card.difficulty,
        elapsed_days,
        grade,
    )
    lapses = card.lapses
    if card.learning_state == LearningState.Review and grade == Rating.Again:
        lapses += 1

    updated = CardState(
        card_id=card.card_id,
        stability=new_stability,
        difficulty=new_difficulty,
        due_at=_next_due(new_state, new_stability, now, params),
        last_reviewed_at=now,
        learning_state=new_state,
        lapses=lapses,
        reps=card.reps + 1,
        is_suspended=False,
    )
    log_entry = ReviewLogEntry(
        card_id=card.card_id,
        rating=grade,
        reviewed_at=now,
        elapsed_days=elapsed_days,
        scheduled_days=scheduled_days,
        stability_before=card.stability,
        difficulty_before=card.difficulty,
        state_before=card.learning_state,
    )
    logger.debug(
        f"Scheduled card {card.card_id}: {card.learning_state.name} -> "
        f"{new_state.name}, S={new_stability:.4f}, D={new_difficulty:.4f}, "
        f"due {updated.due_at.isoformat()}"
    )
    return updated, log_entry


def preview_intervals(
    card: CardState,
    now: datetime.datetime,
    params: AlgorithmParameters,
) -> Dict[Rating, float]:
    """Days until the next review for each possible rating, without applying any."""
    now = ensure_utc(now)
    previews = {}
    for rating in Rating:
        updated, _ = schedule(card, rating, now, params)
        previews[rating] = days_between(now, updated.due_at)
    return previews


def format_interval(days: float) -> str:
    """Render an interval in days as a short hint such as '10m', '4d' or '2w'."""
    if days < 1:
        hours = days * 24
        if hours < 1:
            return f"{round(hours * 60)}m"
        return f"{round(hours)}h"
    if days < 7:
        return f"{round(days)}d"
    if days < 30:
        return f"{round(days / 7)}w"
    if days < 365:
        return f"{round(days / 30)}mo"
    return f"{round(days / 365)}y"


@dataclass
class SchedulerOutput:
    card: CardState
    review_log: ReviewLogEntry
    interval_days: float


class BaseScheduler(ABC):
    """
    Abstract base class for all schedulers in studyless.
    """

    @abstractmethod
    def compute_next_state(
        self, card: CardState, new_rating: int, review_ts: datetime.datetime
    ) -> SchedulerOutput:
        """
        Computes the next state of a card based on its current state and a new rating.

        Args:
            card: The card's current learning state.
            new_rating: The rating given for the current review (1=Again, 2=Hard, 3=Good, 4=Easy).
            review_ts: The UTC timestamp of the current review.

        Returns:
            A SchedulerOutput object containing the new state and its log entry.

        Raises:
            InvalidRatingError: If the new_rating is invalid.
        """
        pass


class FSRS_Scheduler(BaseScheduler):
    """
    FSRS (Free Spaced Repetition Scheduler) implementation bound to one
    user's AlgorithmParameters.
    """

    def __init__(self, params: Optional[AlgorithmParameters] = None):
        self.params = params if params is not None else AlgorithmParameters()

    def compute_next_state(
        self, card: CardState, new_rating: int, review_ts: datetime.datetime
    ) -> SchedulerOutput:
        updated, log_entry = schedule(card, new_rating, review_ts, self.params)
        return SchedulerOutput(
            card=updated,
            review_log=log_entry,
            interval_days=days_between(log_entry.reviewed_at, updated.due_at),
        )

    def preview(
        self, card: CardState, now: datetime.datetime
    ) -> Dict[Rating, str]:
        """Formatted interval hints for each rating button."""
        return {
            rating: format_interval(days)
            for rating, days in preview_intervals(card, now, self.params).items()
        }
