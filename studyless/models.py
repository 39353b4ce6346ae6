"""
Pydantic records for the memory model: card learning state, review log
entries and the per-user algorithm parameters.
"""

from __future__ import annotations

import math
import uuid
from enum import Enum, IntEnum
from uuid import UUID
from datetime import datetime, timedelta, timezone
from typing import Optional, Sequence, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .constants import (
    DEFAULT_DESIRED_RETENTION,
    DEFAULT_LEARNING_STEPS,
    DEFAULT_LEECH_THRESHOLD,
    DEFAULT_MAXIMUM_INTERVAL,
    DEFAULT_PARAMETERS,
    DEFAULT_RELEARNING_STEPS,
    MAX_DIFFICULTY,
    MIN_DIFFICULTY,
    PARAMETER_COUNT,
)
from .exceptions import DegenerateParametersError


def ensure_utc(ts: datetime) -> datetime:
    """Ensures the given datetime is UTC. Assumes UTC if naive."""
    if ts.tzinfo is None or ts.tzinfo.utcoffset(ts) is None:
        return ts.replace(tzinfo=timezone.utc)
    if ts.tzinfo != timezone.utc:
        return ts.astimezone(timezone.utc)
    return ts


class LearningState(IntEnum):
    """
    Represents the FSRS-defined state of a card's memory trace.
    """

    New = 0
    Learning = 1
    Review = 2
    Relearning = 3


class Rating(IntEnum):
    """
    Represents the user's rating of their recall performance.
    """

    Again = 1
    Hard = 2
    Good = 3
    Easy = 4


class LeechDecision(str, Enum):
    """Outcome of the leech policy for a single card."""

    NONE = "none"
    FLAGGED = "flagged"
    SUSPENDED = "suspended"


class CardState(BaseModel):
    """
    Learning state of a single flashcard.

    Owned by its flashcard and replaced only by the scheduler. Timestamps
    are normalized to UTC.
    """

    model_config = ConfigDict(validate_assignment=True, extra="forbid")

    card_id: UUID = Field(
        default_factory=uuid.uuid4,
        description="Identifier of the flashcard this state belongs to.",
    )
    stability: float = Field(
        default=0.0,
        ge=0.0,
        description="Days until retrievability decays to ~90% (0 while New).",
    )
    difficulty: float = Field(
        default=5.0,
        ge=MIN_DIFFICULTY,
        le=MAX_DIFFICULTY,
        description="Intrinsic recall difficulty in [1, 10].",
    )
    due_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="Next scheduled review instant (UTC).",
    )
    last_reviewed_at: Optional[datetime] = Field(
        default=None,
        description="UTC timestamp of the last review; None if never reviewed.",
    )
    learning_state: LearningState = Field(
        default=LearningState.New,
        description="The current FSRS state of the card.",
    )
    lapses: int = Field(
        default=0, ge=0, description="Times the card was forgotten while in Review."
    )
    reps: int = Field(default=0, ge=0, description="Total review count.")
    is_suspended: bool = Field(
        default=False,
        description="Suspended cards never enter the due set.",
    )

    @field_validator("due_at", "last_reviewed_at")
    @classmethod
    def normalize_to_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(v) if v is not None else None

    @model_validator(mode="after")
    def check_invariants(self) -> "CardState":
        if self.learning_state != LearningState.New and self.stability <= 0:
            raise ValueError(
                f"Card in state {self.learning_state.name} must have positive stability."
            )
        if self.lapses > self.reps:
            raise ValueError(
                f"lapses ({self.lapses}) cannot exceed reps ({self.reps})."
            )
        return self

    @classmethod
    def new(
        cls, card_id: Optional[UUID] = None, now: Optional[datetime] = None
    ) -> "CardState":
        """Create the state of a freshly created flashcard, due immediately."""
        ts = ensure_utc(now) if now else datetime.now(timezone.utc)
        return cls(card_id=card_id or uuid.uuid4(), due_at=ts)


class ReviewLogEntry(BaseModel):
    """
    Represents a single answered review, with the card's memory state
    as it was before the review. Immutable once created.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    card_id: UUID = Field(..., description="Card the review belongs to.")
    rating: Rating = Field(
        ..., description="User rating (1=Again, 2=Hard, 3=Good, 4=Easy)."
    )
    reviewed_at: datetime = Field(
        ..., description="The UTC timestamp when the review occurred."
    )
    elapsed_days: float = Field(
        ..., ge=0.0, description="Days since the previous review."
    )
    scheduled_days: float = Field(
        ..., ge=0.0, description="Interval that had been predicted (days)."
    )
    review_time_ms: int = Field(
        default=0, ge=0, description="Time spent answering (ms)."
    )
    stability_before: float = Field(
        ..., ge=0.0, description="Stability before review (days)."
    )
    difficulty_before: float = Field(
        ..., description="Difficulty before review."
    )
    state_before: LearningState = Field(
        ..., description="Learning state before review."
    )

    @field_validator("reviewed_at")
    @classmethod
    def normalize_to_utc(cls, v: datetime) -> datetime:
        return ensure_utc(v)

    @property
    def passed(self) -> bool:
        """Any rating other than Again counts as a successful recall."""
        return self.rating >= Rating.Hard


def check_weights(weights: Sequence[float]) -> Tuple[float, ...]:
    """Validate a weight vector, raising DegenerateParametersError if unusable."""
    values = tuple(float(w) for w in weights)
    if len(values) != PARAMETER_COUNT:
        raise DegenerateParametersError(
            f"Expected {PARAMETER_COUNT} weights, got {len(values)}."
        )
    if not all(math.isfinite(w) for w in values):
        raise DegenerateParametersError(
            f"Weight vector contains non-finite values: {values}"
        )
    return values


class AlgorithmParameters(BaseModel):
    """
    Per-user scheduler configuration: the FSRS weight vector plus scalar
    settings. Written only by the optimizer or explicit settings changes.
    """

    model_config = ConfigDict(validate_assignment=True, extra="forbid")

    weights: Tuple[float, ...] = Field(
        default_factory=lambda: tuple(DEFAULT_PARAMETERS),
        description="FSRS-5 weight vector (19 values).",
    )
    requested_retention: float = Field(
        default=DEFAULT_DESIRED_RETENTION,
        gt=0.0,
        lt=1.0,
        description="Target recall probability used to size intervals.",
    )
    leech_threshold: int = Field(
        default=DEFAULT_LEECH_THRESHOLD,
        ge=1,
        description="Lapse count at which a card becomes a leech.",
    )
    auto_suspend_leeches: bool = Field(
        default=False,
        description="Suspend leeches automatically instead of flagging them.",
    )
    test_day_lockout_enabled: bool = Field(
        default=True,
        description="Show no cards on the day of a test.",
    )
    maximum_interval: int = Field(
        default=DEFAULT_MAXIMUM_INTERVAL,
        ge=1,
        description="Upper bound on any review interval (days).",
    )
    learning_steps: Tuple[timedelta, ...] = Field(
        default_factory=lambda: DEFAULT_LEARNING_STEPS,
        min_length=1,
        description="Learning delays. Again on a New or Learning card waits the first step.",
    )
    relearning_steps: Tuple[timedelta, ...] = Field(
        default_factory=lambda: DEFAULT_RELEARNING_STEPS,
        min_length=1,
        description="Relearning delays. Again on a Review or Relearning card waits the first step.",
    )

    @field_validator("weights")
    @classmethod
    def validate_weights(cls, v: Tuple[float, ...]) -> Tuple[float, ...]:
        # DegenerateParametersError is a ValueError, so pydantic reports it
        # as a regular validation error.
        return check_weights(v)

    def with_weights(self, weights: Sequence[float]) -> "AlgorithmParameters":
        """Return a copy of these settings using a different weight vector."""
        values = check_weights(weights)
        data = self.model_dump()
        data["weights"] = values
        return AlgorithmParameters.model_validate(data)
