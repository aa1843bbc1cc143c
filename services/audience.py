"""Which students can see and submit a work item.

The audience is derived on every call and never stored, so edits to a
work item's targets or to group membership take effect immediately.
"""

from __future__ import annotations

from typing import Any, Iterable

from models.work_item import DistributionMode, Student, WorkItem


def _usable_id(value: Any) -> bool:
    return isinstance(value, str) and bool(value.strip())


def resolve_audience(work_item: WorkItem, all_students: Iterable[Student]) -> set[str]:
    """Return the ids of students the work item is distributed to.

    - ``all``: every active student.
    - otherwise: students whose group is targeted, plus every individually
      targeted id.  Group and individual targets are additive whichever
      mode label the item carries.

    Blank or malformed group ids never match.
    """
    students = list(all_students)
    if work_item.distribution == DistributionMode.ALL:
        return {s.id for s in students if s.active}

    target_groups = {g for g in work_item.target_groups if _usable_id(g)}
    audience = {
        s.id
        for s in students
        if _usable_id(s.group_id) and s.group_id in target_groups
    }
    audience.update(sid for sid in work_item.target_students if _usable_id(sid))
    return audience


def is_in_audience(
    work_item: WorkItem, student: Student, all_students: Iterable[Student]
) -> bool:
    return student.id in resolve_audience(work_item, all_students)
