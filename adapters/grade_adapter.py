"""Adapter building student grade lines from work items and submissions."""

from __future__ import annotations

from models.grade import GradeRecord
from models.submission import Submission
from models.work_item import WorkItem


def build_grade_record(item: WorkItem, submission: Submission | None) -> GradeRecord:
    """Combine a gradable work item with the student's submission, if any.

    The percentage is only computed when both a grade and a positive point
    value exist; grades above the point value are kept as-is.
    """
    grade = submission.grade if submission else None
    max_points = item.points
    percentage = None
    if grade is not None and max_points:
        percentage = grade / max_points * 100
    return GradeRecord(
        work_item_id=item.id,
        title=item.title,
        kind=item.kind,
        status=submission.status if submission else None,
        grade=grade,
        max_points=max_points,
        percentage=percentage,
        due_at=item.due_at,
        submitted_at=submission.submitted_at if submission else None,
        reviewer_comment=submission.reviewer_comment if submission else None,
    )
