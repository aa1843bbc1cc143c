"""The authority over submission records and status changes.

Every write follows the same shape: read the single row for the
``(work_item_id, student_id)`` pair, check the requested transition
against :data:`ALLOWED_TRANSITIONS`, then upsert one full record.  A
rejected transition writes nothing.  Student writes additionally require
a known student inside the work item's current audience.  Writes for one
pair are serialised in-process so a draft save racing a submit can never
overwrite the submission.
"""

from __future__ import annotations

import asyncio
import logging
import math
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Callable, Iterable, Mapping

from adapters.class_adapter import parse_student, parse_work_item
from adapters.submission_adapter import parse_submission, submission_to_record
from errors.exceptions import InvalidTransitionError, NotFoundError, ValidationError
from models.base import utc_now
from models.submission import (
    AssignmentContent,
    QuizContent,
    Submission,
    SubmissionStatus,
)
from models.work_item import WorkItem, WorkItemKind
from services.audience import resolve_audience
from services.record_store import Filter, RecordStore, get_record_store

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

S = SubmissionStatus

# None stands for "no submission saved yet".
ALLOWED_TRANSITIONS: dict[SubmissionStatus | None, frozenset[SubmissionStatus]] = {
    None: frozenset({S.DRAFT, S.SUBMITTED}),
    S.DRAFT: frozenset({S.DRAFT, S.SUBMITTED}),
    S.RETURNED: frozenset({S.DRAFT, S.SUBMITTED}),
    S.SUBMITTED: frozenset({S.TO_REVIEW, S.REVIEWED, S.GRADED, S.RETURNED}),
    S.TO_REVIEW: frozenset({S.REVIEWED, S.GRADED, S.RETURNED}),
    S.REVIEWED: frozenset(),
    S.GRADED: frozenset(),
}


def check_transition(current: SubmissionStatus | None, target: SubmissionStatus) -> None:
    """Raise :class:`InvalidTransitionError` unless *current* → *target* is allowed."""
    if target not in ALLOWED_TRANSITIONS.get(current, frozenset()):
        detail = ""
        if target == S.SUBMITTED and current is not None:
            detail = "work was already submitted"
        raise InvalidTransitionError(
            current.value if current is not None else None, target.value, detail
        )


def _is_blank(answer: Any) -> bool:
    if answer is None:
        return True
    if isinstance(answer, str):
        return not answer.strip()
    if isinstance(answer, (list, tuple, set, dict)):
        return not answer
    return False


ContentInput = str | Mapping[str, Any] | AssignmentContent | QuizContent | None


def coerce_content(item: WorkItem, content: ContentInput) -> AssignmentContent | QuizContent | None:
    """Turn caller input into the content variant matching the work item kind.

    Assignments take text, quizzes take an answer map keyed by question id.
    """
    if content is None:
        return None
    if isinstance(content, (AssignmentContent, QuizContent)):
        coerced = content
    elif isinstance(content, str):
        coerced = AssignmentContent(text=content)
    elif isinstance(content, Mapping):
        coerced = QuizContent(answers=dict(content))
    else:
        raise ValidationError("content", f"unsupported content type {type(content).__name__}")

    if coerced.kind != item.kind.value:
        raise ValidationError(
            "content",
            f"{item.kind.value} submissions cannot carry {coerced.kind} content",
        )
    return coerced


class _PairLock:
    """A lock plus the number of writers holding or waiting for it."""

    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = asyncio.Lock()
        self.users = 0


class SubmissionLedger:
    """Owns the per-pair submission record and its status transitions."""

    def __init__(self, store: RecordStore, clock: Clock = utc_now) -> None:
        self._store = store
        self._clock = clock
        self._locks: dict[tuple[str, str], _PairLock] = {}

    @asynccontextmanager
    async def _pair_lock(self, work_item_id: str, student_id: str) -> AsyncIterator[None]:
        """Serialise writes for one pair; the entry is dropped once nobody uses it."""
        key = (work_item_id, student_id)
        entry = self._locks.get(key)
        if entry is None:
            entry = self._locks[key] = _PairLock()
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0:
                del self._locks[key]

    # -- reads ---------------------------------------------------------------

    async def get_submission(self, work_item_id: str, student_id: str) -> Submission | None:
        raw = await self._store.get("submissions", (work_item_id, student_id))
        return parse_submission(raw) if raw is not None else None

    async def get_submission_by_id(self, submission_id: str) -> Submission:
        rows = await self._store.query("submissions", [Filter.eq("id", submission_id)])
        if not rows:
            raise NotFoundError("submission", submission_id)
        return parse_submission(rows[0])

    async def list_for_work_item(self, work_item_id: str) -> list[Submission]:
        rows = await self._store.query("submissions", [Filter.eq("work_item_id", work_item_id)])
        return [parse_submission(r) for r in rows]

    async def list_for_student(self, student_id: str) -> list[Submission]:
        rows = await self._store.query("submissions", [Filter.eq("student_id", student_id)])
        return [parse_submission(r) for r in rows]

    # -- student writes ------------------------------------------------------

    async def save_draft(
        self,
        work_item_id: str,
        student_id: str,
        content: ContentInput = None,
        attachments: Iterable[str] | None = None,
        student_comment: str | None = None,
    ) -> Submission:
        """Save work without finalising it.  Allowed any number of times."""
        return await self._student_write(
            S.DRAFT, work_item_id, student_id, content, attachments, student_comment
        )

    async def submit(
        self,
        work_item_id: str,
        student_id: str,
        content: ContentInput = None,
        attachments: Iterable[str] | None = None,
        student_comment: str | None = None,
    ) -> Submission:
        """Finalise work.  Rejected once the work is submitted or reviewed."""
        return await self._student_write(
            S.SUBMITTED, work_item_id, student_id, content, attachments, student_comment
        )

    async def _student_write(
        self,
        target: SubmissionStatus,
        work_item_id: str,
        student_id: str,
        content: ContentInput,
        attachments: Iterable[str] | None,
        student_comment: str | None,
    ) -> Submission:
        item = await self._load_work_item(work_item_id)
        if not item.accepts_submissions:
            raise ValidationError("work_item_id", f"{item.kind.value} items do not accept submissions")
        await self._check_audience(item, student_id)

        async with self._pair_lock(work_item_id, student_id):
            existing = await self.get_submission(work_item_id, student_id)
            current = existing.status if existing else None
            try:
                check_transition(current, target)
            except InvalidTransitionError:
                logger.warning(
                    "Rejected %s → %s for %s/%s",
                    current.value if current else "none", target.value,
                    work_item_id, student_id,
                )
                raise
            coerced = coerce_content(item, content)

            now = self._clock()
            if existing is None:
                submission = Submission(
                    work_item_id=work_item_id,
                    student_id=student_id,
                    created_at=now,
                )
            else:
                submission = existing.model_copy(deep=True)

            if coerced is not None:
                submission.content = coerced
            if attachments is not None:
                submission.attachments = [a for a in attachments if a]
            if student_comment is not None:
                submission.student_comment = student_comment
            submission.status = target
            submission.updated_at = now
            if target == S.SUBMITTED:
                self._validate_for_submit(item, submission)
                submission.submitted_at = now

            await self._store.upsert("submissions", submission_to_record(submission))

        logger.info(
            "Submission %s for %s/%s is now %s",
            submission.id, work_item_id, student_id, target.value,
        )
        return submission

    @staticmethod
    def _validate_for_submit(item: WorkItem, submission: Submission) -> None:
        content = submission.content
        if item.kind == WorkItemKind.QUIZ:
            answers = content.answers if isinstance(content, QuizContent) else {}
            if not answers:
                raise ValidationError("content", "answer at least one question before submitting")
            missing = [qid for qid in item.required_question_ids() if _is_blank(answers.get(qid))]
            if missing:
                raise ValidationError(
                    "content",
                    f"{len(missing)} required question(s) unanswered: {', '.join(missing)}",
                )
            return

        has_text = isinstance(content, AssignmentContent) and not content.is_empty()
        if not has_text and not submission.attachments:
            raise ValidationError("content", "add text or at least one attachment before submitting")

    # -- reviewer writes -----------------------------------------------------

    async def mark_to_review(self, submission_id: str) -> Submission:
        """Move a freshly submitted record into the reviewer's queue."""
        return await self._reviewer_write(submission_id, S.TO_REVIEW, {})

    async def return_submission(
        self, submission_id: str, reviewer_comment: str | None = None
    ) -> Submission:
        """Send work back to the student for correction."""
        changes: dict[str, Any] = {}
        if reviewer_comment is not None:
            changes["reviewer_comment"] = reviewer_comment
        return await self._reviewer_write(
            submission_id, S.RETURNED, changes, stamps=("returned_at",)
        )

    async def apply_review(
        self,
        submission_id: str,
        grade: float | None = None,
        reviewer_comment: str | None = None,
        final: bool = False,
    ) -> Submission:
        """Record a review; omitted fields keep their current value.

        ``final=True`` marks the grade as final (``graded``) and also stamps
        ``graded_at``.
        """
        if grade is not None and (not math.isfinite(grade) or grade < 0):
            raise ValidationError("grade", "grade must be a non-negative number")

        changes: dict[str, Any] = {}
        if grade is not None:
            changes["grade"] = float(grade)
        if reviewer_comment is not None:
            changes["reviewer_comment"] = reviewer_comment
        target = S.GRADED if final else S.REVIEWED
        stamps = ("reviewed_at", "graded_at") if final else ("reviewed_at",)
        return await self._reviewer_write(submission_id, target, changes, stamps=stamps)

    async def _reviewer_write(
        self,
        submission_id: str,
        target: SubmissionStatus,
        changes: dict[str, Any],
        stamps: tuple[str, ...] = (),
    ) -> Submission:
        found = await self.get_submission_by_id(submission_id)
        async with self._pair_lock(found.work_item_id, found.student_id):
            current = await self.get_submission(found.work_item_id, found.student_id)
            if current is None or current.id != submission_id:
                raise NotFoundError("submission", submission_id)
            check_transition(current.status, target)

            now = self._clock()
            submission = current.model_copy(deep=True)
            for field, value in changes.items():
                setattr(submission, field, value)
            for field in stamps:
                setattr(submission, field, now)
            submission.status = target
            submission.updated_at = now

            await self._store.upsert("submissions", submission_to_record(submission))

        logger.info("Submission %s moved %s → %s", submission_id, current.status.value, target.value)
        return submission

    # -- helpers -------------------------------------------------------------

    async def _check_audience(self, item: WorkItem, student_id: str) -> None:
        """Only known students inside the item's current audience may write."""
        raw = await self._store.get("students", student_id)
        if raw is None:
            raise NotFoundError("student", student_id)
        students = [parse_student(r) for r in await self._store.query("students")]
        if student_id not in resolve_audience(item, students):
            logger.warning("Student %s is not in the audience of %s", student_id, item.id)
            raise ValidationError("student_id", f"student is not assigned {item.id}")

    async def _load_work_item(self, work_item_id: str) -> WorkItem:
        raw = await self._store.get("workItems", work_item_id)
        if raw is None:
            raise NotFoundError("work_item", work_item_id)
        item = parse_work_item(raw)
        if item.deleted:
            raise NotFoundError("work_item", work_item_id)
        return item


# ── Module-level Singleton ───────────────────────────────────

_ledger: SubmissionLedger | None = None


def get_submission_ledger() -> SubmissionLedger:
    """Get the singleton ledger bound to the configured record store."""
    global _ledger
    if _ledger is None:
        _ledger = SubmissionLedger(get_record_store())
    return _ledger
