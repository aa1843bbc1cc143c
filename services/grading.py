"""Reviewer actions on submitted work.

Grading is only possible on work that is waiting for review
(``submitted`` or ``to_review``).  The grade is a non-negative score with
no upper bound: a work item's point value is advisory for display.
"""

from __future__ import annotations

import logging

from adapters.grade_adapter import build_grade_record
from models.grade import GradeRecord
from models.submission import Submission
from services.audience import resolve_audience
from services.submission_ledger import SubmissionLedger
from services.work_distribution import (
    WorkDistributionService,
    get_work_distribution_service,
)

logger = logging.getLogger(__name__)


class GradingCoordinator:
    """Applies grades and comments and advances submission status."""

    def __init__(self, distribution: WorkDistributionService) -> None:
        self._distribution = distribution

    @property
    def _ledger(self) -> SubmissionLedger:
        return self._distribution.ledger

    async def grade_submission(
        self,
        submission_id: str,
        grade: float | None = None,
        reviewer_comment: str | None = None,
        final: bool = False,
    ) -> Submission:
        """Review a submission, setting whichever of grade/comment are given.

        Moves it to ``reviewed`` (``graded`` when *final*) and stamps
        ``reviewed_at``.  Raises ``NotFoundError`` for an unknown id and
        ``InvalidTransitionError`` unless the work is awaiting review.
        """
        submission = await self._ledger.apply_review(
            submission_id, grade=grade, reviewer_comment=reviewer_comment, final=final
        )
        logger.info(
            "Graded submission %s (grade=%s, final=%s)", submission_id, submission.grade, final
        )
        return submission

    async def return_submission(
        self, submission_id: str, reviewer_comment: str | None = None
    ) -> Submission:
        """Send work back; the student may edit and submit again."""
        return await self._ledger.return_submission(submission_id, reviewer_comment)

    async def mark_to_review(self, submission_id: str) -> Submission:
        return await self._ledger.mark_to_review(submission_id)

    async def list_grades_for_student(self, class_id: str, student_id: str) -> list[GradeRecord]:
        """Grade lines for every gradable item of a class in the student's audience.

        Archived items are included; deleted items and materials are not.
        """
        student = await self._distribution.get_student(student_id)
        students = await self._distribution.list_students()
        items = await self._distribution.list_work_for_class(class_id, include_archived=True)
        by_item = {s.work_item_id: s for s in await self._ledger.list_for_student(student.id)}

        return [
            build_grade_record(item, by_item.get(item.id))
            for item in items
            if item.accepts_submissions and student.id in resolve_audience(item, students)
        ]


# ── Module-level Singleton ───────────────────────────────────

_coordinator: GradingCoordinator | None = None


def get_grading_coordinator() -> GradingCoordinator:
    global _coordinator
    if _coordinator is None:
        _coordinator = GradingCoordinator(get_work_distribution_service())
    return _coordinator
