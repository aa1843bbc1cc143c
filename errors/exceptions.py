"""Domain-specific exceptions for the classwork engine.

These exceptions let callers distinguish between failure modes: a missing
record, a forbidden status change, bad input, or a storage backend that
could not be reached.  None of them are retried inside the engine.
"""

from __future__ import annotations


class ClassworkError(Exception):
    """Base class for all engine errors."""


class NotFoundError(ClassworkError):
    """A referenced entity (work item, submission, student) does not exist."""

    def __init__(self, entity_type: str, entity_id: str) -> None:
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{entity_type} '{entity_id}' not found")


class InvalidTransitionError(ClassworkError):
    """A submission status change that the state machine does not allow.

    ``current`` is ``None`` when no submission exists yet.
    """

    def __init__(self, current: str | None, target: str, detail: str = "") -> None:
        self.current = current
        self.target = target
        message = f"cannot move submission from '{current or 'none'}' to '{target}'"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class ValidationError(ClassworkError):
    """Input is missing a required field or is otherwise unusable."""

    def __init__(self, field: str, message: str) -> None:
        self.field = field
        self.message = message
        super().__init__(f"{field}: {message}")


class BackendUnavailableError(ClassworkError):
    """A storage call failed (network, I/O or a rejected request).

    Carries the backend name and, for HTTP backends, the response status.
    """

    def __init__(
        self,
        backend: str,
        message: str,
        status_code: int | None = None,
    ) -> None:
        self.backend = backend
        self.status_code = status_code
        super().__init__(f"{backend} backend unavailable: {message}")
