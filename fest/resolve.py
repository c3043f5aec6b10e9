"""Reconcile checklist-derived status with the stored progress record.

The checklist text decides completion. The stored record only contributes
``blocked`` while the checklist shows no progress, plus metadata (time,
blocker message) that callers read from the record directly.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Dict, Optional, Tuple

from .checklist import parse_task_status
from .errors import ValidationError
from .filetime import FileTimeCache, infer_task_time
from .models import (
    STATUS_BLOCKED,
    STATUS_COMPLETED,
    STATUS_IN_PROGRESS,
    STATUS_PENDING,
    TaskProgress,
)
from .store import ProgressStore

# (checklist status, stored status) -> resolved status.
# ``None`` in the stored position matches any stored value, including no record.
STATUS_DECISIONS: Dict[Tuple[str, Optional[str]], str] = {
    (STATUS_COMPLETED, None): STATUS_COMPLETED,
    (STATUS_IN_PROGRESS, None): STATUS_IN_PROGRESS,
    (STATUS_PENDING, STATUS_BLOCKED): STATUS_BLOCKED,
    (STATUS_PENDING, None): STATUS_PENDING,
}


def task_key_from_path(festival_path: Path | str, task_path: Path | str) -> str:
    """Festival-relative, forward-slash key for ``task_path``.

    Raises ``ValidationError`` when the path is the festival root itself or
    lies outside it.
    """
    root = os.path.abspath(str(festival_path))
    target = os.path.abspath(str(task_path))
    rel = os.path.relpath(target, root)
    if rel == "." or rel == ".." or rel.startswith(".." + os.sep):
        raise ValidationError(
            "task path is outside festival",
            op="task_key_from_path",
            festival_path=root,
            task_path=target,
        )
    return Path(rel).as_posix()


def normalize_task_id(festival_path: Path | str, task_id: str) -> str:
    """Canonical store key for a user-supplied task id.

    Absolute paths and paths containing a separator become festival-relative
    keys; bare filenames pass through unchanged for legacy records.
    """
    if not task_id:
        raise ValidationError("task ID required", op="normalize_task_id")

    if os.path.isabs(task_id):
        return task_key_from_path(festival_path, task_id)

    if "/" in task_id or "\\" in task_id:
        relative = task_id.replace("\\", "/")
        return task_key_from_path(festival_path, Path(festival_path) / relative)

    return task_id


def resolve_task_progress(
    store: Optional[ProgressStore], festival_path: Path | str, task_path: Path | str
) -> Optional[TaskProgress]:
    """Stored record for a task file, trying the relative key then the bare filename."""
    if store is None or not task_path:
        return None

    try:
        key = task_key_from_path(festival_path, task_path)
    except ValidationError:
        key = None

    if key is not None:
        task = store.get_task(key)
        if task is not None:
            return task

    return store.get_task(Path(task_path).name)


def decide_status(checklist_status: str, stored_status: Optional[str]) -> str:
    """Apply the reconciliation table to one pair of statuses."""
    exact = STATUS_DECISIONS.get((checklist_status, stored_status))
    if exact is not None:
        return exact
    return STATUS_DECISIONS.get((checklist_status, None), STATUS_PENDING)


def resolve_task_status(
    store: Optional[ProgressStore], festival_path: Path | str, task_path: Path | str
) -> str:
    """Single authoritative status for a task file."""
    checklist_status = parse_task_status(task_path)
    if checklist_status != STATUS_PENDING:
        return decide_status(checklist_status, None)

    record = resolve_task_progress(store, festival_path, task_path)
    return decide_status(checklist_status, record.status if record else None)


def resolve_task_time(
    store: Optional[ProgressStore],
    festival_path: Path | str,
    task_path: Path | str,
    cache: Optional[FileTimeCache] = None,
) -> int:
    """Minutes spent on a task: explicit when recorded, inferred otherwise.

    Inference runs on a copy, so the stored record is never modified here.
    """
    record = resolve_task_progress(store, festival_path, task_path)
    if record is None:
        return 0
    if record.time_spent_minutes > 0:
        return record.time_spent_minutes

    inferred = record.copy()
    infer_task_time(task_path, inferred, cache)
    return inferred.time_spent_minutes
