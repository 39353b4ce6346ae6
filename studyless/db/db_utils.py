"""
Utility functions for data marshalling between Pydantic models and database formats.
This module helps decouple the core database logic from the specifics of data conversion.
"""

import shutil
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from pydantic import ValidationError

from ..exceptions import MarshallingError
from ..models import (
    AlgorithmParameters,
    CardState,
    LearningState,
    ReviewLogEntry,
    check_weights,
)


def to_db_timestamp(ts: Optional[datetime]) -> Optional[datetime]:
    """Convert an aware datetime to the naive UTC value stored in the database."""
    if ts is None:
        return None
    if ts.tzinfo is not None:
        ts = ts.astimezone(timezone.utc)
    return ts.replace(tzinfo=None)


def card_state_to_db_params(user_id: str, card: CardState) -> Tuple:
    """
    Convert one user's CardState into a tuple for insertion, in column order:
    (user_id, card_id, stability, difficulty, due_at, last_reviewed_at, learning_state,
     lapses, reps, is_suspended, modified_at).
    """
    return (
        user_id,
        card.card_id,
        card.stability,
        card.difficulty,
        to_db_timestamp(card.due_at),
        to_db_timestamp(card.last_reviewed_at),
        card.learning_state.name,
        card.lapses,
        card.reps,
        card.is_suspended,
        to_db_timestamp(datetime.now(timezone.utc)),
    )


def db_row_to_card_state(row_dict: Dict[str, Any]) -> CardState:
    """
    Create a CardState model from a database row dictionary.

    Raises:
        MarshallingError: If the row cannot be validated into a CardState.
    """
    data = row_dict.copy()
    data.pop("user_id", None)
    data.pop("modified_at", None)
    try:
        data["learning_state"] = LearningState[data["learning_state"]]
        return CardState(**data)
    except (KeyError, ValidationError) as e:
        raise MarshallingError(
            f"Failed to parse card state from DB row: {row_dict}. Error: {e}",
            original_exception=e,
        ) from e


def review_log_to_db_params(user_id: str, entry: ReviewLogEntry) -> Tuple:
    """
    Convert one user's ReviewLogEntry into a tuple for insertion, in column order:
    (user_id, card_id, rating, reviewed_at, elapsed_days, scheduled_days,
     review_time_ms, stability_before, difficulty_before, state_before).
    """
    return (
        user_id,
        entry.card_id,
        int(entry.rating),
        to_db_timestamp(entry.reviewed_at),
        entry.elapsed_days,
        entry.scheduled_days,
        entry.review_time_ms,
        entry.stability_before,
        entry.difficulty_before,
        entry.state_before.name,
    )


def db_row_to_review_log(row_dict: Dict[str, Any]) -> ReviewLogEntry:
    """Converts a database row dictionary to a ReviewLogEntry model."""
    data = row_dict.copy()
    data.pop("review_id", None)
    data.pop("user_id", None)
    try:
        data["state_before"] = LearningState[data["state_before"]]
        return ReviewLogEntry(**data)
    except (KeyError, ValidationError) as e:
        raise MarshallingError(
            f"Data validation failed for review log: {e}", original_exception=e
        ) from e


def parameters_to_db_params(user_id: str, params: AlgorithmParameters) -> Tuple:
    """
    Serialize AlgorithmParameters for one user. The weight vector is checked
    again because model_copy() can bypass validation.
    """
    return (
        user_id,
        list(check_weights(params.weights)),
        params.requested_retention,
        params.leech_threshold,
        params.auto_suspend_leeches,
        params.test_day_lockout_enabled,
        params.maximum_interval,
        [s.total_seconds() for s in params.learning_steps],
        [s.total_seconds() for s in params.relearning_steps],
        to_db_timestamp(datetime.now(timezone.utc)),
    )


def db_row_to_parameters(row_dict: Dict[str, Any]) -> AlgorithmParameters:
    data = row_dict.copy()
    data.pop("user_id", None)
    data.pop("updated_at", None)
    data["learning_steps"] = tuple(
        timedelta(seconds=s) for s in data.pop("learning_steps_s")
    )
    data["relearning_steps"] = tuple(
        timedelta(seconds=s) for s in data.pop("relearning_steps_s")
    )
    data["weights"] = tuple(data["weights"])
    try:
        return AlgorithmParameters(**data)
    except ValidationError as e:
        raise MarshallingError(
            f"Data validation failed for algorithm parameters: {e}",
            original_exception=e,
        ) from e


def backup_database(db_path: Path) -> Path:
    """
    Creates a timestamped backup of the database file.

    Args:
        db_path: The path to the database file.

    Returns:
        The path to the created backup file, or `db_path` itself when
        there is nothing to back up.
    """
    if not db_path.exists():
        return db_path

    backup_dir = db_path.parent / "backups"
    backup_dir.mkdir(exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d-%H%M%S")
    backup_filename = f"{db_path.stem}-backup-{timestamp}{db_path.suffix}"
    backup_path = backup_dir / backup_filename

    shutil.copy2(db_path, backup_path)
    return backup_path
