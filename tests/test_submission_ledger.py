"""Tests for the submission ledger: drafts, submits and the status machine."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio

from errors import (
    BackendUnavailableError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from models.submission import AssignmentContent, QuizContent, SubmissionStatus
from models.work_item import DistributionMode, QuizQuestion, Student, WorkItem, WorkItemKind
from services.grading import GradingCoordinator
from services.submission_ledger import ALLOWED_TRANSITIONS, check_transition
from services.work_distribution import WorkDistributionService

S = SubmissionStatus


@pytest_asyncio.fixture
async def classroom(distribution):
    for sid, group in (("s1", "A"), ("s2", "B")):
        await distribution.save_student(Student(id=sid, name=sid.upper(), group_id=group))
    await distribution.save_work_item(WorkItem(id="w1", class_id="c1", title="Essay"))
    await distribution.save_work_item(
        WorkItem(
            id="q1",
            class_id="c1",
            title="Quiz",
            kind=WorkItemKind.QUIZ,
            questions=[
                QuizQuestion(id="a", required=True),
                QuizQuestion(id="b", required=True),
                QuizQuestion(id="c"),
            ],
        )
    )
    await distribution.save_work_item(
        WorkItem(id="m1", class_id="c1", title="Reading", kind=WorkItemKind.MATERIAL)
    )
    return distribution


# ── Transition table ─────────────────────────────────────────


class TestTransitions:
    def test_first_write_may_be_draft_or_submit(self):
        assert ALLOWED_TRANSITIONS[None] == {S.DRAFT, S.SUBMITTED}

    @pytest.mark.parametrize("current", [S.SUBMITTED, S.TO_REVIEW, S.REVIEWED, S.GRADED])
    def test_resubmit_rejected(self, current):
        with pytest.raises(InvalidTransitionError) as exc_info:
            check_transition(current, S.SUBMITTED)
        assert exc_info.value.current == current.value
        assert "already submitted" in str(exc_info.value)

    @pytest.mark.parametrize("current", [S.REVIEWED, S.GRADED])
    def test_done_is_terminal(self, current):
        for target in S:
            with pytest.raises(InvalidTransitionError):
                check_transition(current, target)

    def test_returned_can_be_resubmitted(self):
        check_transition(S.RETURNED, S.SUBMITTED)
        check_transition(S.RETURNED, S.DRAFT)

    def test_draft_cannot_be_graded(self):
        with pytest.raises(InvalidTransitionError):
            check_transition(S.DRAFT, S.REVIEWED)


# ── Drafts ───────────────────────────────────────────────────


class TestDrafts:
    @pytest.mark.asyncio
    async def test_draft_save_creates_one_record(self, classroom, ledger):
        first = await ledger.save_draft("w1", "s1", "first")
        second = await ledger.save_draft("w1", "s1", "second")

        assert first.id == second.id
        assert second.status == S.DRAFT
        assert second.submitted_at is None
        rows = await ledger.list_for_work_item("w1")
        assert len(rows) == 1
        assert rows[0].content == AssignmentContent(text="second")

    @pytest.mark.asyncio
    async def test_empty_draft_allowed(self, classroom, ledger):
        draft = await ledger.save_draft("w1", "s1")
        assert draft.content is None
        assert draft.status == S.DRAFT

    @pytest.mark.asyncio
    async def test_omitted_fields_kept(self, classroom, ledger):
        await ledger.save_draft("w1", "s1", "text", attachments=["https://files/x.pdf"])
        updated = await ledger.save_draft("w1", "s1", student_comment="done soon")
        assert updated.content.text == "text"
        assert updated.attachments == ["https://files/x.pdf"]
        assert updated.student_comment == "done soon"

    @pytest.mark.asyncio
    async def test_draft_after_submit_rejected(self, classroom, ledger):
        await ledger.submit("w1", "s1", "hello")
        with pytest.raises(InvalidTransitionError):
            await ledger.save_draft("w1", "s1", "sneaky edit")
        stored = await ledger.get_submission("w1", "s1")
        assert stored.content.text == "hello"


# ── Submit ───────────────────────────────────────────────────


class TestSubmit:
    @pytest.mark.asyncio
    async def test_submit_sets_status_and_timestamp(self, classroom, ledger):
        sub = await ledger.submit("w1", "s1", "hello")
        assert sub.status == S.SUBMITTED
        assert sub.submitted_at is not None

    @pytest.mark.asyncio
    async def test_second_submit_rejected_and_content_kept(self, classroom, ledger):
        await ledger.submit("w1", "s1", "hello")
        with pytest.raises(InvalidTransitionError):
            await ledger.submit("w1", "s1", "overwrite")
        stored = await ledger.get_submission("w1", "s1")
        assert stored.content.text == "hello"
        assert stored.status == S.SUBMITTED

    @pytest.mark.asyncio
    async def test_submit_rejected_while_queued_for_review(self, classroom, ledger):
        sub = await ledger.submit("w1", "s1", "hello")
        await ledger.mark_to_review(sub.id)
        with pytest.raises(InvalidTransitionError):
            await ledger.submit("w1", "s1", "again")
        assert (await ledger.get_submission("w1", "s1")).status == S.TO_REVIEW

    @pytest.mark.asyncio
    async def test_draft_then_submit_keeps_draft_content(self, classroom, ledger):
        draft = await ledger.save_draft("w1", "s1", "from the draft")
        sub = await ledger.submit("w1", "s1")
        assert sub.id == draft.id
        assert sub.content.text == "from the draft"

    @pytest.mark.asyncio
    async def test_empty_assignment_rejected(self, classroom, ledger):
        with pytest.raises(ValidationError):
            await ledger.submit("w1", "s1", "   ")
        assert await ledger.get_submission("w1", "s1") is None

    @pytest.mark.asyncio
    async def test_attachment_only_assignment_accepted(self, classroom, ledger):
        sub = await ledger.submit("w1", "s1", attachments=["https://files/essay.pdf"])
        assert sub.status == S.SUBMITTED
        assert sub.content is None

    @pytest.mark.asyncio
    async def test_blank_attachments_dropped(self, classroom, ledger):
        with pytest.raises(ValidationError):
            await ledger.submit("w1", "s1", attachments=["", ""])

    @pytest.mark.asyncio
    async def test_quiz_requires_required_answers(self, classroom, ledger):
        with pytest.raises(ValidationError) as exc_info:
            await ledger.submit("q1", "s1", {"a": "yes", "b": "  "})
        assert "b" in str(exc_info.value)

        sub = await ledger.submit("q1", "s1", {"a": "yes", "b": ["x"]})
        assert sub.content == QuizContent(answers={"a": "yes", "b": ["x"]})

    @pytest.mark.asyncio
    async def test_quiz_without_answers_rejected(self, classroom, ledger):
        with pytest.raises(ValidationError):
            await ledger.submit("q1", "s1", {})

    @pytest.mark.asyncio
    async def test_quiz_draft_may_be_incomplete(self, classroom, ledger):
        draft = await ledger.save_draft("q1", "s1", {"a": "yes"})
        assert draft.content.answers == {"a": "yes"}

    @pytest.mark.asyncio
    async def test_content_kind_must_match_item(self, classroom, ledger):
        with pytest.raises(ValidationError):
            await ledger.submit("q1", "s1", "plain text for a quiz")
        with pytest.raises(ValidationError):
            await ledger.save_draft("w1", "s1", {"a": "answers for an essay"})

    @pytest.mark.asyncio
    async def test_material_rejects_submissions(self, classroom, ledger):
        with pytest.raises(ValidationError):
            await ledger.save_draft("m1", "s1", "notes")
        assert await ledger.list_for_work_item("m1") == []

    @pytest.mark.asyncio
    async def test_unknown_work_item(self, classroom, ledger):
        with pytest.raises(NotFoundError):
            await ledger.submit("missing", "s1", "hello")

    @pytest.mark.asyncio
    async def test_deleted_work_item_rejects_submissions(self, classroom, ledger):
        await classroom.delete_work_item("w1")
        with pytest.raises(NotFoundError):
            await ledger.submit("w1", "s1", "hello")


# ── Return and resubmit ──────────────────────────────────────


class TestReturnLoop:
    @pytest.mark.asyncio
    async def test_returned_work_can_be_resubmitted(self, classroom, ledger):
        first = await ledger.submit("w1", "s1", "hello")
        returned = await ledger.return_submission(first.id, "please expand")
        assert returned.status == S.RETURNED
        assert returned.returned_at is not None
        assert returned.reviewer_comment == "please expand"

        again = await ledger.submit("w1", "s1", "hello, expanded")
        assert again.status == S.SUBMITTED
        assert again.submitted_at > first.submitted_at
        assert again.id == first.id
        assert len(await ledger.list_for_work_item("w1")) == 1

    @pytest.mark.asyncio
    async def test_return_of_draft_rejected(self, classroom, ledger):
        draft = await ledger.save_draft("w1", "s1", "wip")
        with pytest.raises(InvalidTransitionError):
            await ledger.return_submission(draft.id)

    @pytest.mark.asyncio
    async def test_unknown_submission_id(self, classroom, ledger):
        with pytest.raises(NotFoundError):
            await ledger.return_submission("sub-nope")


# ── Reads ────────────────────────────────────────────────────


class TestReads:
    @pytest.mark.asyncio
    async def test_lookup_by_id_and_pair(self, classroom, ledger):
        sub = await ledger.submit("w1", "s1", "hello")
        assert (await ledger.get_submission_by_id(sub.id)).key == ("w1", "s1")
        assert await ledger.get_submission("w1", "s2") is None

    @pytest.mark.asyncio
    async def test_list_for_student(self, classroom, ledger):
        await ledger.submit("w1", "s1", "hello")
        await ledger.save_draft("q1", "s1", {"a": "x"})
        await ledger.save_draft("w1", "s2", "other")
        rows = await ledger.list_for_student("s1")
        assert sorted(s.work_item_id for s in rows) == ["q1", "w1"]


# ── Who may write ────────────────────────────────────────────


class TestStudentChecks:
    @pytest.mark.asyncio
    async def test_unknown_student(self, classroom, ledger):
        with pytest.raises(NotFoundError) as exc_info:
            await ledger.submit("w1", "ghost", "hello")
        assert exc_info.value.entity_type == "student"
        assert await ledger.list_for_work_item("w1") == []

    @pytest.mark.asyncio
    async def test_student_outside_audience_rejected(self, classroom, ledger):
        await classroom.save_work_item(
            WorkItem(
                id="wb", class_id="c1", title="Group B lab",
                distribution=DistributionMode.GROUPS, target_groups=["B"],
            )
        )
        with pytest.raises(ValidationError) as exc_info:
            await ledger.submit("wb", "s1", "hello")
        assert exc_info.value.field == "student_id"
        with pytest.raises(ValidationError):
            await ledger.save_draft("wb", "s1", "draft")
        assert await ledger.get_submission("wb", "s1") is None

        sub = await ledger.submit("wb", "s2", "hello")
        assert sub.status == S.SUBMITTED

    @pytest.mark.asyncio
    async def test_inactive_student_cannot_write_to_whole_class_work(self, classroom, ledger):
        await classroom.save_student(Student(id="s3", name="Cy", active=False))
        with pytest.raises(ValidationError):
            await ledger.save_draft("w1", "s3", "wip")

    @pytest.mark.asyncio
    async def test_resubmit_with_wrong_content_kind_is_a_transition_error(
        self, classroom, ledger
    ):
        await ledger.submit("w1", "s1", "hello")
        with pytest.raises(InvalidTransitionError):
            await ledger.submit("w1", "s1", {"a": "quiz answers"})
        assert (await ledger.get_submission("w1", "s1")).content.text == "hello"


# ── Concurrency and locks ────────────────────────────────────


class TestConcurrency:
    @pytest.mark.asyncio
    async def test_draft_racing_submit_never_overwrites_the_submission(self, classroom, ledger):
        results = await asyncio.gather(
            ledger.save_draft("w1", "s1", "draft text"),
            ledger.submit("w1", "s1", "final"),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, Exception):
                assert isinstance(result, InvalidTransitionError)

        stored = await ledger.get_submission("w1", "s1")
        assert stored.status == S.SUBMITTED
        assert stored.content.text == "final"
        assert len(await ledger.list_for_work_item("w1")) == 1

    @pytest.mark.asyncio
    async def test_concurrent_submits_accept_exactly_one(self, classroom, ledger):
        results = await asyncio.gather(
            ledger.submit("w1", "s1", "first"),
            ledger.submit("w1", "s1", "second"),
            return_exceptions=True,
        )
        errors = [r for r in results if isinstance(r, Exception)]
        assert len(errors) == 1
        assert isinstance(errors[0], InvalidTransitionError)

    @pytest.mark.asyncio
    async def test_pair_locks_released_after_use(self, classroom, ledger):
        for work_item_id in ("w1", "q1"):
            for student_id in ("s1", "s2"):
                await ledger.save_draft(work_item_id, student_id)
        await asyncio.gather(*(ledger.save_draft("w1", "s1", str(i)) for i in range(5)))
        await ledger.submit("w1", "s2", "done")
        with pytest.raises(InvalidTransitionError):
            await ledger.submit("w1", "s2", "again")

        assert ledger._locks == {}


# ── Storage failures ─────────────────────────────────────────


class TestStorageFailures:
    @pytest.mark.asyncio
    async def test_failed_submit_leaves_draft(self, classroom, ledger, store, monkeypatch):
        await ledger.save_draft("w1", "s1", "wip")
        monkeypatch.setattr(
            store, "upsert", AsyncMock(side_effect=BackendUnavailableError("test", "down"))
        )

        with pytest.raises(BackendUnavailableError):
            await ledger.submit("w1", "s1", "final")

        stored = await ledger.get_submission("w1", "s1")
        assert stored.status == S.DRAFT
        assert stored.content.text == "wip"
        assert ledger._locks == {}

    @pytest.mark.asyncio
    async def test_failed_grade_leaves_submission(
        self, classroom, ledger, grading, store, monkeypatch
    ):
        sub = await ledger.submit("w1", "s1", "hello")
        monkeypatch.setattr(
            store, "upsert", AsyncMock(side_effect=BackendUnavailableError("test", "down"))
        )

        with pytest.raises(BackendUnavailableError):
            await grading.grade_submission(sub.id, grade=90, reviewer_comment="Good")

        stored = await ledger.get_submission("w1", "s1")
        assert stored.status == S.SUBMITTED
        assert stored.grade is None
        assert stored.reviewer_comment is None


@pytest.mark.asyncio
async def test_remote_write_rejected_by_server_leaves_state(remote_store, rest_tables, clock):
    distribution = WorkDistributionService(remote_store, clock=clock)
    grading = GradingCoordinator(distribution)
    ledger = distribution.ledger
    await distribution.save_student(Student(id="s1", name="Ana"))
    await distribution.save_work_item(WorkItem(id="w1", class_id="c1", title="Essay"))
    await ledger.save_draft("w1", "s1", "wip")

    rest_tables.fail_with = 503
    rest_tables.fail_methods = {"POST"}
    with pytest.raises(BackendUnavailableError) as exc_info:
        await ledger.submit("w1", "s1", "final")
    assert exc_info.value.status_code == 503
    assert (await ledger.get_submission("w1", "s1")).status == S.DRAFT

    rest_tables.fail_with = None
    sub = await ledger.submit("w1", "s1", "final")

    rest_tables.fail_with = 503
    with pytest.raises(BackendUnavailableError):
        await grading.grade_submission(sub.id, grade=90)
    stored = await ledger.get_submission("w1", "s1")
    assert stored.status == S.SUBMITTED
    assert stored.grade is None
