"""Studyless - FSRS spaced-repetition scheduling, optimization and analytics."""

from .models import (
    AlgorithmParameters,
    CardState,
    LearningState,
    LeechDecision,
    Rating,
    ReviewLogEntry,
)
from .constants import DEFAULT_PARAMETERS, DEFAULT_DESIRED_RETENTION
from .scheduler import schedule, FSRS_Scheduler
from .due_selector import due_cards
from .leech import evaluate_leech
from .review_stats import calculate_review_stats
from .optimizer import optimize_fsrs_parameters
from .retention import calculate_optimal_retention, get_recommended_retention
from .db import ReviewDatabase

__all__ = [
    "AlgorithmParameters",
    "CardState",
    "LearningState",
    "LeechDecision",
    "Rating",
    "ReviewLogEntry",
    "DEFAULT_PARAMETERS",
    "DEFAULT_DESIRED_RETENTION",
    "schedule",
    "FSRS_Scheduler",
    "due_cards",
    "evaluate_leech",
    "calculate_review_stats",
    "optimize_fsrs_parameters",
    "calculate_optimal_retention",
    "get_recommended_retention",
    "ReviewDatabase",
]
