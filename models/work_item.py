"""Work items (assignments, quizzes, materials) and the students they target."""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import Field, field_validator

from models.base import CamelModel, utc_now


class WorkItemKind(str, Enum):
    ASSIGNMENT = "assignment"
    QUIZ = "quiz"
    MATERIAL = "material"


class DistributionMode(str, Enum):
    """Who a work item is distributed to.

    ``groups`` and ``individuals`` are labels only: an item may carry both a
    group list and a student list, and the audience is their union.
    """

    ALL = "all"
    GROUPS = "groups"
    INDIVIDUALS = "individuals"


def generate_work_item_id() -> str:
    return f"wi-{uuid.uuid4().hex[:12]}"


def _clean_id(value: Any) -> str | None:
    if isinstance(value, str) and value.strip():
        return value
    return None


class QuizQuestion(CamelModel):
    """A question of a quiz; only its identity and ``required`` flag matter here."""

    id: str
    title: str = ""
    required: bool = False
    points: float = 1


class WorkItem(CamelModel):
    """A unit of assigned work owned by a class."""

    id: str = Field(default_factory=generate_work_item_id)
    class_id: str
    title: str
    kind: WorkItemKind = WorkItemKind.ASSIGNMENT
    distribution: DistributionMode = DistributionMode.ALL
    target_groups: list[str] = Field(default_factory=list)
    target_students: list[str] = Field(default_factory=list)
    points: float | None = None  # advisory, never enforced as a grade ceiling
    due_at: datetime | None = None
    instructions: str = ""
    questions: list[QuizQuestion] = Field(default_factory=list)
    archived: bool = False
    deleted: bool = False  # soft delete; submissions are kept
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @field_validator("target_groups", "target_students", mode="before")
    @classmethod
    def _drop_malformed_targets(cls, value: Any) -> list[str]:
        # Stored targets may hold nulls, numbers or blanks; none of them can match.
        if not isinstance(value, (list, tuple, set)):
            return []
        return [v for v in value if _clean_id(v) is not None]

    @property
    def accepts_submissions(self) -> bool:
        return self.kind != WorkItemKind.MATERIAL

    def required_question_ids(self) -> list[str]:
        return [q.id for q in self.questions if q.required]


class Student(CamelModel):
    """A student; belongs to at most one group."""

    id: str
    name: str = ""
    group_id: str | None = None
    active: bool = True

    @field_validator("group_id", mode="before")
    @classmethod
    def _blank_group_is_none(cls, value: Any) -> str | None:
        return _clean_id(value)

    @property
    def display_name(self) -> str:
        return self.name.strip() or "Student"
