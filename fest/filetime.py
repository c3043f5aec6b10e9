"""Infer missing time-tracking data from task file modification times.

Inference never touches a task that already has explicit time spent, and
no minimum or maximum is applied to the inferred duration: a task whose
timestamps span three days reports three days.
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Optional

from .models import STATUS_COMPLETED, TaskProgress


def get_file_mod_time(path: Path | str) -> Optional[datetime]:
    """Modification time of ``path`` as aware UTC, or ``None`` if it cannot be stat'd."""
    try:
        mtime = Path(path).stat().st_mtime
    except OSError:
        return None
    return datetime.fromtimestamp(mtime, tz=timezone.utc)


class FileTimeCache:
    """Opt-in cache of modification times for repeated lookups in one operation.

    Entries are never refreshed automatically; call ``invalidate`` after
    writing a file.
    """

    def __init__(self) -> None:
        self._cache: Dict[str, Optional[datetime]] = {}

    def get_mod_time(self, path: Path | str) -> Optional[datetime]:
        """Cached modification time; misses (including missing files) are cached too."""
        key = str(path)
        if key not in self._cache:
            self._cache[key] = get_file_mod_time(key)
        return self._cache[key]

    def invalidate(self, path: Path | str) -> None:
        self._cache.pop(str(path), None)

    def clear(self) -> None:
        self._cache.clear()

    def __len__(self) -> int:
        return len(self._cache)


def infer_task_time(task_path: Path | str, task: TaskProgress, cache: Optional[FileTimeCache] = None) -> bool:
    """Backfill timestamps and elapsed minutes on ``task``.

    Returns ``True`` when anything was changed.
    """
    if task.time_spent_minutes > 0:
        return False

    mod_time = cache.get_mod_time(task_path) if cache is not None else get_file_mod_time(task_path)
    if mod_time is None:
        return False

    applied = False

    if task.completed_at is None and task.status == STATUS_COMPLETED:
        task.completed_at = mod_time
        applied = True

    # Start time is unknown: record it equal to completion (zero duration)
    # instead of inventing one.
    if task.started_at is None and task.completed_at is not None:
        task.started_at = task.completed_at
        applied = True

    if task.started_at is not None and task.completed_at is not None and task.time_spent_minutes == 0:
        minutes = int((task.completed_at - task.started_at).total_seconds() // 60)
        if minutes > 0:
            task.time_spent_minutes = minutes
            applied = True

    return applied


def needs_time_inference(task: Optional[TaskProgress]) -> bool:
    """True only for completed tasks lacking both explicit time and a completion timestamp."""
    if task is None:
        return False
    if task.time_spent_minutes > 0:
        return False
    if task.status != STATUS_COMPLETED:
        return False
    return task.completed_at is None
