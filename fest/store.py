"""Persistence of per-festival progress records.

The record lives at ``<festival>/.fest/progress.yaml`` and is rewritten
wholesale on every save. Writes go through a temporary file and an atomic
rename; ``ProgressStore.transaction`` additionally holds an exclusive file
lock across load, mutate and save so that concurrent processes do not lose
each other's updates.
"""

from __future__ import annotations

import fcntl
import logging
import os
import tempfile
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterator, Optional

import yaml

from .cancellation import CancellationToken, ensure_token
from .errors import FestError, ParseError, StorageIOError, ValidationError
from .filetime import FileTimeCache, infer_task_time
from .fest_logging import log_error_with_context, log_operation
from .models import (
    STATUS_COMPLETED,
    FestivalProgressData,
    FestivalTimeMetrics,
    TaskProgress,
    utcnow,
)

logger = logging.getLogger("fest.store")

PROGRESS_DIR = ".fest"
PROGRESS_FILE_NAME = "progress.yaml"
LOCK_FILE_NAME = "progress.lock"


class ProgressStore:
    """Load, query, mutate and save one festival's progress record."""

    def __init__(self, festival_path: Path | str):
        """Initialize the store; nothing is read until ``load``."""
        self.festival_path = Path(festival_path).resolve()
        self._data: Optional[FestivalProgressData] = None

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------

    @property
    def progress_dir(self) -> Path:
        return self.festival_path / PROGRESS_DIR

    @property
    def progress_file_path(self) -> Path:
        """Get path to the progress record."""
        return self.progress_dir / PROGRESS_FILE_NAME

    @property
    def lock_file_path(self) -> Path:
        return self.progress_dir / LOCK_FILE_NAME

    @property
    def festival_name(self) -> str:
        return self.festival_path.name

    # ------------------------------------------------------------------
    # Load / save
    # ------------------------------------------------------------------

    def load(self, ctx: Optional[CancellationToken] = None) -> FestivalProgressData:
        """Load the record from disk.

        A missing file yields an empty record whose time metrics start now.
        Records written before time metrics existed get metrics created from
        their last-updated timestamp.
        """
        ensure_token(ctx).check("load_progress")
        path = self.progress_file_path

        if not path.exists():
            self._data = FestivalProgressData.empty(self.festival_name)
            return self._data

        try:
            raw = path.read_text(encoding="utf-8")
        except OSError as e:
            raise StorageIOError("reading progress file", op="load_progress", cause=e, path=str(path)) from e

        try:
            payload = yaml.safe_load(raw)
        except yaml.YAMLError as e:
            raise ParseError("parsing progress file", op="load_progress", cause=e, path=str(path)) from e

        if payload is None:
            payload = {}
        if not isinstance(payload, dict):
            raise ParseError("progress file is not a mapping", op="load_progress", path=str(path))

        try:
            data = FestivalProgressData.from_dict(payload, festival=self.festival_name)
        except (AttributeError, TypeError, ValueError) as e:
            raise ParseError("decoding progress record", op="load_progress", cause=e, path=str(path)) from e

        if data.time_metrics is None:
            data.time_metrics = FestivalTimeMetrics(created_at=data.updated_at)

        self._data = data
        logger.debug(f"Loaded {len(data.tasks)} task records from {path}")
        return data

    def save(self, ctx: Optional[CancellationToken] = None) -> Path:
        """Stamp ``updated_at`` and write the whole record."""
        ensure_token(ctx).check("save_progress")
        if self._data is None:
            raise ValidationError("no progress data to save", op="save_progress")

        path = self.progress_file_path
        try:
            with log_operation("save_progress", path=str(path), tasks=len(self._data.tasks)):
                self._data.updated_at = utcnow()
                try:
                    content = yaml.safe_dump(
                        self._data.to_dict(),
                        sort_keys=False,
                        default_flow_style=False,
                        allow_unicode=True,
                    )
                except yaml.YAMLError as e:
                    raise FestError("serializing progress data", op="save_progress", cause=e) from e

                try:
                    self.progress_dir.mkdir(parents=True, exist_ok=True)
                except OSError as e:
                    raise StorageIOError("creating progress directory", op="save_progress",
                                         cause=e, path=str(self.progress_dir)) from e

                self._atomic_write(path, content)
            return path
        except Exception as e:
            log_error_with_context(e, {"operation": "save_progress", "path": str(path)})
            raise

    def _atomic_write(self, path: Path, content: str) -> None:
        tmp_name = None
        try:
            with tempfile.NamedTemporaryFile(
                "w", encoding="utf-8", dir=str(path.parent), prefix=".progress-", suffix=".tmp", delete=False
            ) as tmp:
                tmp_name = tmp.name
                tmp.write(content)
                tmp.flush()
                os.fsync(tmp.fileno())
            os.replace(tmp_name, path)
        except OSError as e:
            if tmp_name and os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise StorageIOError("writing progress file", op="save_progress", cause=e, path=str(path)) from e

    @contextmanager
    def exclusive_lock(self, ctx: Optional[CancellationToken] = None) -> Iterator[None]:
        """Hold an exclusive lock on the festival's progress record."""
        ensure_token(ctx).check("lock_progress")
        try:
            self.progress_dir.mkdir(parents=True, exist_ok=True)
            handle = open(self.lock_file_path, "a+")
        except OSError as e:
            raise StorageIOError("opening progress lock", op="lock_progress",
                                 cause=e, path=str(self.lock_file_path)) from e
        try:
            fcntl.flock(handle.fileno(), fcntl.LOCK_EX)
            yield
        finally:
            try:
                fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
            finally:
                handle.close()

    @contextmanager
    def transaction(self, ctx: Optional[CancellationToken] = None) -> Iterator["ProgressStore"]:
        """Lock, reload, hand the store to the caller, then save and unlock.

        The record is only written when the block exits normally; the lock is
        released on every exit path.
        """
        token = ensure_token(ctx)
        with self.exclusive_lock(token):
            self.load(token)
            yield self
            self.save(token)

    # ------------------------------------------------------------------
    # Task accessors
    # ------------------------------------------------------------------

    @property
    def data(self) -> Optional[FestivalProgressData]:
        return self._data

    def _ensure_data(self) -> FestivalProgressData:
        if self._data is None:
            self._data = FestivalProgressData(festival=self.festival_name, updated_at=utcnow())
        return self._data

    def get_task(self, task_id: str) -> Optional[TaskProgress]:
        """Stored record for ``task_id``, or ``None``."""
        if self._data is None:
            return None
        return self._data.tasks.get(task_id)

    def set_task(self, task: TaskProgress) -> None:
        """Insert or replace the record for ``task.task_id``."""
        self._ensure_data().tasks[task.task_id] = task

    def all_tasks(self) -> Dict[str, TaskProgress]:
        if self._data is None:
            return {}
        return self._data.tasks

    # ------------------------------------------------------------------
    # Festival time metrics
    # ------------------------------------------------------------------

    @property
    def time_metrics(self) -> Optional[FestivalTimeMetrics]:
        if self._data is None:
            return None
        return self._data.time_metrics

    def set_time_metrics(self, metrics: FestivalTimeMetrics) -> None:
        self._ensure_data().time_metrics = metrics

    def ensure_time_metrics(self) -> FestivalTimeMetrics:
        """Return the time metrics, creating them (starting now) if absent."""
        data = self._ensure_data()
        if data.time_metrics is None:
            data.time_metrics = FestivalTimeMetrics(created_at=utcnow())
        return data.time_metrics

    def mark_festival_completed(self, now: Optional[datetime] = None) -> FestivalTimeMetrics:
        """Record completion and the whole-day lifecycle duration."""
        metrics = self.ensure_time_metrics()
        metrics.completed_at = now or utcnow()
        metrics.lifecycle_duration_days = metrics.calculate_lifecycle_duration()
        return metrics

    def update_total_work_minutes(self) -> int:
        """Recompute the festival's total work minutes from every task record."""
        if self._data is None:
            return 0
        total = sum(task.time_spent_minutes for task in self._data.tasks.values())
        self.ensure_time_metrics().total_work_minutes = total
        return total

    def is_festival_complete(self) -> bool:
        """True when at least one task is tracked and every tracked task is completed."""
        tasks = self.all_tasks()
        if not tasks:
            return False
        return all(task.status == STATUS_COMPLETED for task in tasks.values())

    def check_and_set_completion(self, now: Optional[datetime] = None) -> bool:
        """Mark the festival completed the first time all tasks are complete.

        Returns ``True`` only on the call that performs the transition; later
        calls leave the recorded timestamp untouched.
        """
        if not self.is_festival_complete():
            return False
        metrics = self.time_metrics
        if metrics is not None and metrics.completed_at is not None:
            return False
        self.mark_festival_completed(now)
        self.update_total_work_minutes()
        logger.info(f"Festival '{self.festival_name}' marked completed")
        return True

    def lazy_populate_time_data(self, cache: Optional[FileTimeCache] = None) -> bool:
        """Infer time data for completed tasks that have none.

        Returns ``True`` when any record changed; the caller decides whether to save.
        """
        tasks = self.all_tasks()
        if not tasks:
            return False

        modified = False
        for task in tasks.values():
            if task.status != STATUS_COMPLETED or task.time_spent_minutes > 0:
                continue
            if infer_task_time(self.festival_path / task.task_id, task, cache):
                modified = True

        if modified:
            self.update_total_work_minutes()
        return modified
