"""Submission records and their status vocabulary.

A submission holds one student's work on one work item.  Its content is a
tagged variant: free text for assignments, an answer map keyed by question
id for quizzes.  Both variants share the same status lifecycle and the same
``(work_item_id, student_id)`` storage key.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import Field

from models.base import CamelModel, utc_now


class SubmissionStatus(str, Enum):
    DRAFT = "draft"
    SUBMITTED = "submitted"
    TO_REVIEW = "to_review"
    REVIEWED = "reviewed"
    RETURNED = "returned"
    GRADED = "graded"


# ``submitted`` and ``to_review`` are one review-pending bucket.
REVIEW_PENDING_STATUSES = frozenset({SubmissionStatus.SUBMITTED, SubmissionStatus.TO_REVIEW})
# ``reviewed`` and ``graded`` differ only in presentation.
DONE_STATUSES = frozenset({SubmissionStatus.REVIEWED, SubmissionStatus.GRADED})
# Work the student has already acted upon; hidden from their pending list.
ACTED_UPON_STATUSES = REVIEW_PENDING_STATUSES | DONE_STATUSES
# Statuses in which the student may still edit.
EDITABLE_STATUSES = frozenset({SubmissionStatus.DRAFT, SubmissionStatus.RETURNED})


class AssignmentContent(CamelModel):
    kind: Literal["assignment"] = "assignment"
    text: str = ""

    def is_empty(self) -> bool:
        return not self.text.strip()


class QuizContent(CamelModel):
    kind: Literal["quiz"] = "quiz"
    answers: dict[str, Any] = Field(default_factory=dict)

    def is_empty(self) -> bool:
        return not self.answers


SubmissionContent = Annotated[
    Union[AssignmentContent, QuizContent],
    Field(discriminator="kind"),
]


def generate_submission_id() -> str:
    return f"sub-{uuid.uuid4().hex[:12]}"


class Submission(CamelModel):
    """The single record of a student's work against one work item."""

    id: str = Field(default_factory=generate_submission_id)
    work_item_id: str
    student_id: str
    content: SubmissionContent | None = None
    attachments: list[str] = Field(default_factory=list)  # opaque storage URLs
    status: SubmissionStatus = SubmissionStatus.DRAFT
    grade: float | None = None
    student_comment: str | None = None
    reviewer_comment: str | None = None
    submitted_at: datetime | None = None
    returned_at: datetime | None = None
    reviewed_at: datetime | None = None
    graded_at: datetime | None = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @property
    def key(self) -> tuple[str, str]:
        return (self.work_item_id, self.student_id)


class SubmissionView(Submission):
    """A submission enriched with the submitting student's name and group."""

    student_name: str = "Student"
    student_group: str | None = None
