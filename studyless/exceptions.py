from typing import Optional


class StudylessError(Exception):
    """Base exception for all studyless errors."""

    pass


# --- Scheduling errors ---


class SchedulingError(StudylessError):
    """Raised when a review cannot be scheduled. The card is left unchanged."""

    pass


class InvalidRatingError(SchedulingError, ValueError):
    """Raised for a rating outside 1-4 (Again, Hard, Good, Easy)."""

    pass


class InvalidTimeOrderError(SchedulingError):
    """Raised when the review time precedes the card's last review."""

    pass


class CardSuspendedError(SchedulingError):
    """Raised when a suspended card is submitted for scheduling."""

    pass


class DegenerateParametersError(StudylessError, ValueError):
    """Raised when a parameter vector is malformed or yields non-finite
    stability/difficulty values. Such a vector must never reach live settings."""

    pass


# --- Database errors ---


class DatabaseError(StudylessError):
    """Base exception for database-related errors."""

    def __init__(
        self, message: str, original_exception: Optional[Exception] = None
    ):
        super().__init__(message)
        self.original_exception = original_exception


class DatabaseConnectionError(DatabaseError):
    """Raised for errors connecting to the database."""

    pass


class SchemaInitializationError(DatabaseError):
    """Raised for errors during schema setup."""

    pass


class CardOperationError(DatabaseError):
    """Raised for errors during card state operations (CRUD)."""

    pass


class ReviewOperationError(DatabaseError):
    """Indicates an error during a review-log database operation."""

    pass


class ParameterOperationError(DatabaseError):
    """Indicates an error reading or writing algorithm parameters."""

    pass


class MarshallingError(DatabaseError):
    """Indicates an error during data conversion between application models
    and DB format."""

    pass
