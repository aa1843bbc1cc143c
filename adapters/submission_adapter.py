"""Adapter between stored submission records and :class:`Submission` models.

Stored records are the snake_case JSON dump of the model; every backend
returns them in that shape.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Iterable

from models.submission import Submission, SubmissionView
from models.work_item import Student

logger = logging.getLogger(__name__)

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Record ↔ model conversions
# ---------------------------------------------------------------------------

def parse_submission(raw: dict[str, Any]) -> Submission:
    """Convert a stored record to :class:`Submission`."""
    return Submission.model_validate(raw)


def submission_to_record(submission: Submission) -> dict[str, Any]:
    """Dump a submission as a stored record.

    SubmissionView's display-only fields are never persisted.
    """
    return submission.model_dump(mode="json", include=set(Submission.model_fields))


def build_submission_view(submission: Submission, student: Student | None) -> SubmissionView:
    """Enrich a submission with the student's display name and group."""
    if student is None:
        logger.warning(
            "Submission %s references unknown student %s",
            submission.id, submission.student_id,
        )
    return SubmissionView(
        **submission.model_dump(include=set(Submission.model_fields)),
        student_name=student.display_name if student else "Student",
        student_group=student.group_id if student else None,
    )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _submitted_sort_key(submission: Submission) -> tuple[bool, datetime]:
    return (submission.submitted_at is not None, submission.submitted_at or _EPOCH)


def sort_by_submitted_desc(submissions: Iterable[Submission]) -> list[Submission]:
    """Order by ``submitted_at`` descending, never-submitted records last."""
    return sorted(submissions, key=_submitted_sort_key, reverse=True)
