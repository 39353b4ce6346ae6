"""
Builds study sessions: which cards are due for review at a given instant,
plus retrievability analytics over a set of cards.
"""

import logging
import math
from dataclasses import dataclass
from datetime import date, datetime
from typing import Iterable, List, Optional
from uuid import UUID

from .constants import DECAY_FACTOR, DECAY_POWER
from .models import AlgorithmParameters, CardState, ensure_utc
from .scheduler import days_between, retrievability

logger = logging.getLogger(__name__)


def is_test_day(test_date: Optional[date], today: date) -> bool:
    """True when `today` is the scheduled test date."""
    return test_date is not None and test_date == today


def due_cards(
    cards: Iterable[CardState],
    now: datetime,
    params: AlgorithmParameters,
    is_test_day_today: bool,
) -> List[UUID]:
    """
    Return the ids of the cards eligible for review at `now`.

    With test-day lockout enabled nothing is due on the test day. Otherwise
    every non-suspended card with `due_at <= now` is returned, ordered by
    due time with ties broken by card id.
    """
    if params.test_day_lockout_enabled and is_test_day_today:
        logger.info("Test day lockout active: no cards are due today.")
        return []

    now = ensure_utc(now)
    eligible = [
        card
        for card in cards
        if not card.is_suspended and card.due_at <= now
    ]
    eligible.sort(key=lambda c: (c.due_at, str(c.card_id)))
    logger.debug(f"{len(eligible)} cards due at {now.isoformat()}")
    return [card.card_id for card in eligible]


def current_retrievability(card: CardState, now: datetime) -> float:
    """Predicted recall probability of a card right now."""
    if card.last_reviewed_at is None:
        return 1.0
    return retrievability(
        card.stability, days_between(card.last_reviewed_at, ensure_utc(now))
    )


def cards_by_urgency(
    cards: Iterable[CardState], now: datetime
) -> List[CardState]:
    """Overdue, non-suspended cards with the lowest current retrievability first."""
    now = ensure_utc(now)
    overdue = [
        card for card in cards if not card.is_suspended and card.due_at < now
    ]
    return sorted(
        overdue,
        key=lambda c: (current_retrievability(c, now), str(c.card_id)),
    )


def cards_below_retrievability(
    cards: Iterable[CardState], threshold: float, now: datetime
) -> List[CardState]:
    """Cards whose current retrievability is below `threshold`, weakest first."""
    now = ensure_utc(now)
    scored = [(current_retrievability(card, now), card) for card in cards]
    below = [(r, card) for r, card in scored if r < threshold]
    below.sort(key=lambda item: (item[0], str(item[1].card_id)))
    return [card for _, card in below]


def average_retrievability(cards: Iterable[CardState], now: datetime) -> float:
    """Mean current retrievability; 0.0 for an empty set."""
    now = ensure_utc(now)
    values = [current_retrievability(card, now) for card in cards]
    if not values:
        return 0.0
    return sum(values) / len(values)


@dataclass
class RetrievabilityDistribution:
    """Card counts per retrievability band."""

    excellent: int = 0  # R >= 0.95
    good: int = 0  # R >= 0.85
    fair: int = 0  # R >= 0.70
    poor: int = 0  # R >= 0.50
    critical: int = 0  # R < 0.50

    @property
    def total(self) -> int:
        return self.excellent + self.good + self.fair + self.poor + self.critical


def retrievability_distribution(
    cards: Iterable[CardState], now: datetime
) -> RetrievabilityDistribution:
    now = ensure_utc(now)
    dist = RetrievabilityDistribution()
    for card in cards:
        r = current_retrievability(card, now)
        if r >= 0.95:
            dist.excellent += 1
        elif r >= 0.85:
            dist.good += 1
        elif r >= 0.70:
            dist.fair += 1
        elif r >= 0.50:
            dist.poor += 1
        else:
            dist.critical += 1
    return dist


def project_retrievability_at(card: CardState, target: datetime) -> float:
    """
    Retrievability the card will have at `target` if it is not reviewed
    before then, e.g. on an exam date.

    A card with no review or no stability has no memory to project and
    scores 0.5.
    """
    if card.last_reviewed_at is None or card.stability <= 0:
        return 0.5
    return retrievability(
        card.stability, days_between(card.last_reviewed_at, ensure_utc(target))
    )


def days_until_retrievability_drops(
    stability: float, threshold: float = 0.9
) -> float:
    """
    Days after a review until retrievability falls to `threshold`.

    Returns 0.0 for a non-positive stability or a threshold outside (0, 1).
    Unlike `next_interval` the result is not capped.
    """
    if stability <= 0 or not 0 < threshold < 1:
        return 0.0
    days = stability * (math.pow(threshold, -1 / DECAY_POWER) - 1) / DECAY_FACTOR
    return max(0.0, days)
