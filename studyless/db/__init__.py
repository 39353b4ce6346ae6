"""Database package for studyless.

This package provides the persistence boundary for card states, review
logs and algorithm parameters. Only ReviewDatabase is exported as the
public API.
"""

from .database import ReviewDatabase

__all__ = ["ReviewDatabase"]
