"""Adapter between stored class records (work items, students) and models."""

from __future__ import annotations

from typing import Any

from models.work_item import Student, WorkItem


def parse_work_item(raw: dict[str, Any]) -> WorkItem:
    """Convert a stored record to :class:`WorkItem`."""
    return WorkItem.model_validate(raw)


def work_item_to_record(item: WorkItem) -> dict[str, Any]:
    return item.model_dump(mode="json")


def parse_student(raw: dict[str, Any]) -> Student:
    """Convert a stored record to :class:`Student`.

    A blank or non-string group id is read as "no group".
    """
    return Student.model_validate(raw)


def student_to_record(student: Student) -> dict[str, Any]:
    return student.model_dump(mode="json")
