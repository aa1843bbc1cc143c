"""What is assigned to whom, and who still owes work.

Combines audience resolution with the submission ledger to answer the two
questions the application asks:

- "what does student X still have to do?" (:meth:`list_work_for_student`)
- "who submitted, or still needs to, for item Y?"
  (:meth:`list_submissions_for_work_item`, :meth:`list_outstanding_students`,
  :meth:`count_pending_review`)

It also owns work item and roster writes so audience inputs always pass
through one place.
"""

from __future__ import annotations

import logging

from adapters.class_adapter import (
    parse_student,
    parse_work_item,
    student_to_record,
    work_item_to_record,
)
from adapters.submission_adapter import build_submission_view, sort_by_submitted_desc
from errors.exceptions import NotFoundError, ValidationError
from models.base import utc_now
from models.submission import (
    ACTED_UPON_STATUSES,
    REVIEW_PENDING_STATUSES,
    Submission,
    SubmissionView,
)
from models.work_item import Student, WorkItem, WorkItemKind
from services.audience import resolve_audience
from services.record_store import Filter, RecordStore, get_record_store
from services.submission_ledger import Clock, SubmissionLedger, get_submission_ledger

logger = logging.getLogger(__name__)


def _already_acted_upon(submission: Submission | None) -> bool:
    return submission is not None and submission.status in ACTED_UPON_STATUSES


class WorkDistributionService:
    """Read-side orchestration over work items, students and submissions."""

    def __init__(
        self,
        store: RecordStore,
        ledger: SubmissionLedger | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self._store = store
        self._ledger = ledger or SubmissionLedger(store, clock=clock)
        self._clock = clock

    @property
    def ledger(self) -> SubmissionLedger:
        return self._ledger

    # -- roster --------------------------------------------------------------

    async def save_student(self, student: Student) -> Student:
        if not student.id.strip():
            raise ValidationError("id", "student id is required")
        await self._store.upsert("students", student_to_record(student))
        return student

    async def get_student(self, student_id: str) -> Student:
        raw = await self._store.get("students", student_id)
        if raw is None:
            raise NotFoundError("student", student_id)
        return parse_student(raw)

    async def list_students(self) -> list[Student]:
        return [parse_student(r) for r in await self._store.query("students")]

    # -- work items ----------------------------------------------------------

    async def save_work_item(self, item: WorkItem) -> WorkItem:
        """Create or update a work item.

        Distribution changes take effect on the next query; existing
        submissions are never touched.
        """
        if not item.title.strip():
            raise ValidationError("title", "title is required")
        if not item.class_id.strip():
            raise ValidationError("class_id", "class id is required")
        if item.kind == WorkItemKind.MATERIAL and item.points is not None:
            raise ValidationError("points", "materials carry no point value")
        if item.points is not None and item.points < 0:
            raise ValidationError("points", "point value cannot be negative")
        question_ids = [q.id for q in item.questions]
        if len(question_ids) != len(set(question_ids)):
            raise ValidationError("questions", "question ids must be unique")

        item.updated_at = self._clock()
        await self._store.upsert("workItems", work_item_to_record(item))
        logger.info("Saved %s %s (%s)", item.kind.value, item.id, item.distribution.value)
        return item

    async def get_work_item(self, work_item_id: str) -> WorkItem:
        raw = await self._store.get("workItems", work_item_id)
        if raw is None:
            raise NotFoundError("work_item", work_item_id)
        item = parse_work_item(raw)
        if item.deleted:
            raise NotFoundError("work_item", work_item_id)
        return item

    async def archive_work_item(self, work_item_id: str) -> WorkItem:
        return await self._set_flags(work_item_id, archived=True)

    async def unarchive_work_item(self, work_item_id: str) -> WorkItem:
        return await self._set_flags(work_item_id, archived=False)

    async def delete_work_item(self, work_item_id: str) -> WorkItem:
        """Soft delete: the item disappears from every listing, submissions stay."""
        return await self._set_flags(work_item_id, deleted=True)

    async def _set_flags(self, work_item_id: str, **flags: bool) -> WorkItem:
        item = await self.get_work_item(work_item_id)
        for name, value in flags.items():
            setattr(item, name, value)
        item.updated_at = self._clock()
        await self._store.upsert("workItems", work_item_to_record(item))
        logger.info("Work item %s updated: %s", work_item_id, flags)
        return item

    async def list_work_for_class(
        self, class_id: str, include_archived: bool = False
    ) -> list[WorkItem]:
        filters = [Filter.eq("class_id", class_id), Filter.eq("deleted", False)]
        if not include_archived:
            filters.append(Filter.eq("archived", False))
        items = [parse_work_item(r) for r in await self._store.query("workItems", filters)]
        return sorted(items, key=lambda i: i.created_at, reverse=True)

    async def resolve_audience(self, work_item_id: str) -> set[str]:
        item = await self.get_work_item(work_item_id)
        return resolve_audience(item, await self.list_students())

    # -- student-facing ------------------------------------------------------

    async def list_work_for_student(
        self, student_id: str, class_id: str | None = None
    ) -> list[WorkItem]:
        """Work the student can still act on, newest first.

        Items are in the student's audience, not archived and not deleted.
        Items whose submission is already submitted, queued for review,
        reviewed or graded are hidden; drafts and returned work stay.
        """
        student = await self.get_student(student_id)
        students = await self.list_students()

        filters = [Filter.eq("archived", False), Filter.eq("deleted", False)]
        if class_id is not None:
            filters.append(Filter.eq("class_id", class_id))
        items = [parse_work_item(r) for r in await self._store.query("workItems", filters)]
        assigned = [i for i in items if student.id in resolve_audience(i, students)]

        by_item = {s.work_item_id: s for s in await self._ledger.list_for_student(student.id)}
        pending = [i for i in assigned if not _already_acted_upon(by_item.get(i.id))]
        return sorted(pending, key=lambda i: i.created_at, reverse=True)

    # -- reviewer-facing -----------------------------------------------------

    async def list_submissions_for_work_item(self, work_item_id: str) -> list[SubmissionView]:
        """All submissions of an item with student name and group.

        Ordered by ``submitted_at`` descending; never-submitted drafts last.
        """
        await self.get_work_item(work_item_id)
        submissions = await self._ledger.list_for_work_item(work_item_id)
        if not submissions:
            return []

        student_ids = sorted({s.student_id for s in submissions})
        rows = await self._store.query("students", [Filter.is_in("id", student_ids)])
        students = {s.id: s for s in (parse_student(r) for r in rows)}
        return [
            build_submission_view(s, students.get(s.student_id))
            for s in sort_by_submitted_desc(submissions)
        ]

    async def list_outstanding_students(self, work_item_id: str) -> list[str]:
        """Audience members who have not handed the work in yet.

        Materials take no submissions, so nobody is outstanding on them.
        """
        item = await self.get_work_item(work_item_id)
        if not item.accepts_submissions:
            return []
        audience = resolve_audience(item, await self.list_students())
        by_student = {s.student_id: s for s in await self._ledger.list_for_work_item(item.id)}
        return sorted(sid for sid in audience if not _already_acted_upon(by_student.get(sid)))

    async def count_pending_review(self, work_item_id: str) -> int:
        """Submissions waiting for a reviewer (``submitted`` or ``to_review``)."""
        await self.get_work_item(work_item_id)
        submissions = await self._ledger.list_for_work_item(work_item_id)
        return sum(1 for s in submissions if s.status in REVIEW_PENDING_STATUSES)


# ── Module-level Singleton ───────────────────────────────────

_service: WorkDistributionService | None = None


def get_work_distribution_service() -> WorkDistributionService:
    global _service
    if _service is None:
        _service = WorkDistributionService(get_record_store(), ledger=get_submission_ledger())
    return _service
