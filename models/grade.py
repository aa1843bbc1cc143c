"""Grade lines shown to a student or reviewer."""

from __future__ import annotations

from datetime import datetime

from models.base import CamelModel
from models.submission import SubmissionStatus
from models.work_item import WorkItemKind


class GradeRecord(CamelModel):
    """A single gradable work item and where the student stands on it."""

    work_item_id: str
    title: str = ""
    kind: WorkItemKind = WorkItemKind.ASSIGNMENT
    status: SubmissionStatus | None = None  # None: nothing saved yet
    grade: float | None = None
    max_points: float | None = None
    percentage: float | None = None
    due_at: datetime | None = None
    submitted_at: datetime | None = None
    reviewer_comment: str | None = None
