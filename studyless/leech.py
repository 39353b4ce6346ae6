"""
Leech policy: cards that keep lapsing are flagged or suspended.
"""

import logging

from .models import AlgorithmParameters, CardState, LeechDecision

logger = logging.getLogger(__name__)


def evaluate_leech(
    card: CardState, params: AlgorithmParameters
) -> LeechDecision:
    """
    Decide what to do with a card given its lapse count.

    Returns:
        NONE below the threshold; at or above it SUSPENDED when
        auto-suspension is on, otherwise FLAGGED.
    """
    if card.lapses < params.leech_threshold:
        return LeechDecision.NONE
    if params.auto_suspend_leeches:
        return LeechDecision.SUSPENDED
    return LeechDecision.FLAGGED


def apply_leech_decision(
    card: CardState, decision: LeechDecision
) -> CardState:
    """Return the card suspended if the decision requires it, otherwise unchanged."""
    if decision != LeechDecision.SUSPENDED or card.is_suspended:
        return card
    logger.info(
        f"Suspending leech card {card.card_id} after {card.lapses} lapses."
    )
    return card.model_copy(update={"is_suspended": True})
