"""Custom exception hierarchy for the classwork engine."""

from errors.exceptions import (
    BackendUnavailableError,
    ClassworkError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)

__all__ = [
    "BackendUnavailableError",
    "ClassworkError",
    "InvalidTransitionError",
    "NotFoundError",
    "ValidationError",
]
