"""
Review submission for studyless.

The ReviewProcessor ties one review together end to end:
1. Timestamp handling
2. Scheduler computation
3. Leech evaluation when the review was a lapse
4. Atomic persistence of the log entry and the new card state
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional
from uuid import UUID

from .constants import DEFAULT_USER_ID
from .db.database import ReviewDatabase
from .leech import apply_leech_decision, evaluate_leech
from .models import CardState, LeechDecision, ReviewLogEntry
from .scheduler import FSRS_Scheduler, SchedulerOutput

logger = logging.getLogger(__name__)


@dataclass
class ReviewOutcome:
    card: CardState
    review_log: ReviewLogEntry
    interval_days: float
    leech_decision: LeechDecision = LeechDecision.NONE


class ReviewProcessor:
    """
    Processes review submissions against a ReviewDatabase using one
    user's FSRS_Scheduler.
    """

    def __init__(
        self,
        db_manager: ReviewDatabase,
        scheduler: FSRS_Scheduler,
        user_id: str = DEFAULT_USER_ID,
    ):
        """
        Args:
            db_manager: Database instance for persistence
            scheduler: FSRS scheduler bound to the reviewing user's parameters
            user_id: Account whose cards and review log are read and written
        """
        self.db_manager = db_manager
        self.scheduler = scheduler
        self.user_id = user_id

    def process_review(
        self,
        card: CardState,
        rating: int,
        review_time_ms: int = 0,
        reviewed_at: Optional[datetime] = None,
    ) -> ReviewOutcome:
        """
        Schedule, evaluate and persist a single review.

        Args:
            card: The card being reviewed
            rating: User's rating (1-4: Again, Hard, Good, Easy)
            review_time_ms: Time the user spent on the card
            reviewed_at: Review timestamp (defaults to current time)

        Returns:
            ReviewOutcome with the stored card state, its log entry and the
            leech decision taken for this review.

        Raises:
            SchedulingError: If the rating, timestamp or card state is rejected
            ReviewOperationError: If the database write fails
        """
        ts = reviewed_at or datetime.now(timezone.utc)
        logger.debug(f"Processing review for card {card.card_id} with rating {rating}")

        try:
            output: SchedulerOutput = self.scheduler.compute_next_state(
                card=card, new_rating=rating, review_ts=ts
            )
            # Re-validated: review_time_ms must be >= 0 before the write
            review_log = ReviewLogEntry.model_validate(
                {**output.review_log.model_dump(), "review_time_ms": review_time_ms}
            )

            new_card = output.card
            decision = LeechDecision.NONE
            if new_card.lapses > card.lapses:
                decision = evaluate_leech(new_card, self.scheduler.params)
                new_card = apply_leech_decision(new_card, decision)
                if decision == LeechDecision.FLAGGED:
                    logger.info(
                        f"Card {card.card_id} flagged as a leech "
                        f"({new_card.lapses} lapses)."
                    )

            stored = self.db_manager.add_review_and_update_card(
                review_log, new_card, user_id=self.user_id
            )
        except Exception:
            logger.exception(f"Failed to process review for card {card.card_id}")
            raise

        logger.debug(
            f"Review processed for card {card.card_id}. "
            f"Next due: {stored.due_at}, State: {stored.learning_state.name}"
        )
        return ReviewOutcome(
            card=stored,
            review_log=review_log,
            interval_days=output.interval_days,
            leech_decision=decision,
        )

    def process_review_by_id(
        self,
        card_id: UUID,
        rating: int,
        review_time_ms: int = 0,
        reviewed_at: Optional[datetime] = None,
    ) -> ReviewOutcome:
        """
        Fetches the card state by id and then calls process_review().

        Raises:
            ValueError: If the card is not found
        """
        card = self.db_manager.get_card_state(card_id, user_id=self.user_id)
        if not card:
            raise ValueError(f"Card {card_id} not found in database")
        return self.process_review(
            card=card,
            rating=rating,
            review_time_ms=review_time_ms,
            reviewed_at=reviewed_at,
        )
