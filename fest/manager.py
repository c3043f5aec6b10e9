"""Progress mutations for one festival.

Every mutation runs as lock -> reload -> mutate -> save on the festival's
progress store, so two processes updating the same festival never drop
each other's changes.
"""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import Dict, Optional

from .aggregate import festival_progress
from .cancellation import CancellationToken, ensure_token
from .errors import NotFoundError, ValidationError
from .fest_logging import (
    log_blocker_event,
    log_error_with_context,
    log_festival_completed,
    log_operation,
    log_performance,
    log_task_update,
)
from .filetime import FileTimeCache, get_file_mod_time, infer_task_time
from .models import (
    STATUS_BLOCKED,
    STATUS_COMPLETED,
    STATUS_IN_PROGRESS,
    STATUS_PENDING,
    BackfillResult,
    FestivalProgress,
    TaskProgress,
    utcnow,
)
from .resolve import normalize_task_id
from .store import ProgressStore

logger = logging.getLogger("fest.manager")

BACKFILL_MIGRATED = "migrated"
BACKFILL_SKIPPED = "skipped"


def _elapsed_minutes(start: datetime, end: datetime) -> int:
    return max(0, int((end - start).total_seconds() // 60))


class ProgressManager:
    """Record task progress, blockers and completion for a festival."""

    def __init__(
        self,
        festival_path: Path | str,
        store: Optional[ProgressStore] = None,
        ctx: Optional[CancellationToken] = None,
    ):
        """Initialize the manager and load the festival's progress record."""
        token = ensure_token(ctx)
        token.check("progress_manager_init")
        self.festival_path = Path(festival_path).resolve()
        self.store = store or ProgressStore(self.festival_path)
        self.store.load(token)

    @property
    def festival_name(self) -> str:
        return self.festival_path.name

    def normalize(self, task_id: str, op: str = "normalize_task_id") -> str:
        """Store key for a task id or path; rejections are tagged with ``op``."""
        try:
            return normalize_task_id(self.festival_path, task_id)
        except ValidationError as e:
            raise e.with_op(op).with_field("festival", self.festival_name)

    def _task_file_mod_time(self, key: str) -> datetime:
        """Modification time of the task file, or now when it cannot be stat'd."""
        return get_file_mod_time(self.festival_path / key) or utcnow()

    def _get_or_create(self, key: str) -> TaskProgress:
        task = self.store.get_task(key)
        if task is None:
            task = TaskProgress(task_id=key, status=STATUS_PENDING)
        return task

    def _record_completion(self, now: datetime, token: CancellationToken) -> bool:
        """Refresh total work minutes, then stamp festival completion.

        The festival counts as complete only when every tracked task file
        resolves to completed; stored records alone never decide it.
        Must run inside a store transaction.
        """
        self.store.update_total_work_minutes()
        overall = festival_progress(self.store, self.festival_path, token).overall
        if overall.total == 0 or overall.completed < overall.total:
            return False
        return self.store.check_and_set_completion(now)

    def _announce_festival_completed(self) -> None:
        metrics = self.store.time_metrics
        log_festival_completed(
            self.festival_name,
            lifecycle_duration_days=metrics.lifecycle_duration_days if metrics else 0,
            total_work_minutes=metrics.total_work_minutes if metrics else 0,
        )

    def _fail(self, operation: str, error: Exception, **context) -> None:
        logger.error(f"Failed to {operation.replace('_', ' ')}: {error}")
        log_error_with_context(error, {"operation": operation, "festival": self.festival_name, **context})

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    @log_performance("update_progress")
    def update_progress(self, task_id: str, progress: int, ctx: Optional[CancellationToken] = None) -> TaskProgress:
        """Set a task's completion percentage.

        Any progress moves a pending task to in_progress and clears its blocker;
        100 completes it, records the time spent since it started and, like
        ``mark_complete``, may complete the festival.
        """
        token = ensure_token(ctx)
        try:
            token.check("update_progress")
            if not isinstance(progress, int) or isinstance(progress, bool) or not 0 <= progress <= 100:
                raise ValidationError("progress must be between 0 and 100", op="update_progress",
                                      progress=progress)
            key = self.normalize(task_id, op="update_progress")
            festival_done = False

            with log_operation("update_progress", task_id=key, progress=progress):
                with self.store.transaction(token):
                    task = self._get_or_create(key)

                    if task.started_at is None:
                        task.started_at = self._task_file_mod_time(key)

                    if progress > 0 and task.status == STATUS_PENDING:
                        task.status = STATUS_IN_PROGRESS

                    if progress == 100:
                        now = utcnow()
                        task.status = STATUS_COMPLETED
                        task.completed_at = now
                        task.time_spent_minutes = _elapsed_minutes(task.started_at, now)

                    task.progress = progress

                    if progress > 0 and task.blocker_message:
                        task.clear_blocker()

                    self.store.set_task(task)
                    if progress == 100:
                        festival_done = self._record_completion(now, token)

            log_task_update(self.festival_name, key, task.status, progress=progress)
            if festival_done:
                self._announce_festival_completed()
            return task

        except Exception as e:
            self._fail("update_progress", e, task_id=task_id, progress=progress)
            raise

    @log_performance("mark_complete")
    def mark_complete(self, task_id: str, ctx: Optional[CancellationToken] = None) -> TaskProgress:
        """Complete a task and, when it was the last one, the festival."""
        token = ensure_token(ctx)
        try:
            token.check("mark_complete")
            key = self.normalize(task_id, op="mark_complete")
            festival_done = False

            with log_operation("mark_complete", task_id=key):
                with self.store.transaction(token):
                    task = self._get_or_create(key)
                    now = utcnow()

                    # completed without being started: the file's mtime stands in for the start
                    if task.started_at is None:
                        task.started_at = self._task_file_mod_time(key)

                    task.status = STATUS_COMPLETED
                    task.progress = 100
                    task.completed_at = now
                    task.time_spent_minutes = _elapsed_minutes(task.started_at, now)
                    task.clear_blocker()

                    self.store.set_task(task)
                    festival_done = self._record_completion(now, token)

            log_task_update(self.festival_name, key, STATUS_COMPLETED,
                            time_spent_minutes=task.time_spent_minutes)
            if festival_done:
                self._announce_festival_completed()
            return task

        except Exception as e:
            self._fail("mark_complete", e, task_id=task_id)
            raise

    @log_performance("mark_in_progress")
    def mark_in_progress(self, task_id: str, ctx: Optional[CancellationToken] = None) -> TaskProgress:
        """Start work on a task now."""
        token = ensure_token(ctx)
        try:
            token.check("mark_in_progress")
            key = self.normalize(task_id, op="mark_in_progress")

            with log_operation("mark_in_progress", task_id=key):
                with self.store.transaction(token):
                    task = self._get_or_create(key)
                    if task.started_at is None:
                        task.started_at = utcnow()
                    task.status = STATUS_IN_PROGRESS
                    self.store.set_task(task)

            log_task_update(self.festival_name, key, STATUS_IN_PROGRESS)
            return task

        except Exception as e:
            self._fail("mark_in_progress", e, task_id=task_id)
            raise

    @log_performance("report_blocker")
    def report_blocker(self, task_id: str, message: str, ctx: Optional[CancellationToken] = None) -> TaskProgress:
        """Mark a task blocked with an explanation."""
        token = ensure_token(ctx)
        try:
            token.check("report_blocker")
            if not message or not message.strip():
                raise ValidationError("blocker message required", op="report_blocker", task_id=task_id)
            key = self.normalize(task_id, op="report_blocker")

            with log_operation("report_blocker", task_id=key):
                with self.store.transaction(token):
                    task = self._get_or_create(key)
                    now = utcnow()
                    task.status = STATUS_BLOCKED
                    task.blocker_message = message
                    task.blocked_at = now
                    if task.started_at is None:
                        task.started_at = now
                    self.store.set_task(task)

            log_blocker_event(self.festival_name, key, cleared=False, message=message)
            return task

        except Exception as e:
            self._fail("report_blocker", e, task_id=task_id)
            raise

    @log_performance("clear_blocker")
    def clear_blocker(self, task_id: str, ctx: Optional[CancellationToken] = None) -> TaskProgress:
        """Remove a task's blocker; a blocked task resumes as in_progress.

        A task without a blocker is returned untouched and nothing is written.
        """
        token = ensure_token(ctx)
        try:
            token.check("clear_blocker")
            key = self.normalize(task_id, op="clear_blocker")

            with log_operation("clear_blocker", task_id=key):
                with self.store.exclusive_lock(token):
                    self.store.load(token)
                    task = self.store.get_task(key)
                    if task is None:
                        raise NotFoundError("task", op="clear_blocker", task_id=key)
                    if not task.blocker_message:
                        return task

                    task.clear_blocker()
                    if task.status == STATUS_BLOCKED:
                        task.status = STATUS_IN_PROGRESS
                    self.store.set_task(task)
                    self.store.save(token)

            log_blocker_event(self.festival_name, key, cleared=True)
            return task

        except Exception as e:
            self._fail("clear_blocker", e, task_id=task_id)
            raise

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_task_progress(self, task_id: str) -> Optional[TaskProgress]:
        """Stored record for a task, trying the legacy filename key as well."""
        key = self.normalize(task_id)
        task = self.store.get_task(key)
        if task is None and "/" in key:
            task = self.store.get_task(key.rsplit("/", 1)[-1])
        return task

    def all_task_progress(self) -> Dict[str, TaskProgress]:
        return dict(self.store.all_tasks())

    def festival_progress(
        self, ctx: Optional[CancellationToken] = None, cache: Optional[FileTimeCache] = None
    ) -> FestivalProgress:
        """Aggregate the festival, inferring missing time data in memory only."""
        token = ensure_token(ctx)
        token.check("festival_progress")
        self.store.load(token)
        self.store.lazy_populate_time_data(cache or FileTimeCache())
        return festival_progress(self.store, self.festival_path, token)

    # ------------------------------------------------------------------
    # Time backfill
    # ------------------------------------------------------------------

    @log_performance("backfill_times")
    def backfill_times(self, dry_run: bool = False, ctx: Optional[CancellationToken] = None) -> BackfillResult:
        """Populate time data for completed tasks from file modification times.

        Festivals that already report work minutes are skipped. With
        ``dry_run`` the inferred values are computed but not written.
        """
        token = ensure_token(ctx)
        try:
            token.check("backfill_times")
            result = BackfillResult(festival_path=str(self.festival_path), status=BACKFILL_SKIPPED,
                                    dry_run=dry_run)

            with log_operation("backfill_times", dry_run=dry_run):
                with self.store.exclusive_lock(token):
                    self.store.load(token)
                    metrics = self.store.time_metrics
                    if metrics is not None and metrics.total_work_minutes > 0:
                        result.total_work_minutes = metrics.total_work_minutes
                        return result

                    cache = FileTimeCache()
                    updated = 0
                    for task in self.store.all_tasks().values():
                        token.check("backfill_times")
                        if task.status != STATUS_COMPLETED or task.time_spent_minutes > 0:
                            continue
                        if infer_task_time(self.festival_path / task.task_id, task, cache):
                            updated += 1

                    if updated == 0:
                        return result

                    result.total_work_minutes = self.store.update_total_work_minutes()
                    if not dry_run:
                        self.store.save(token)

            result.status = BACKFILL_MIGRATED
            result.task_count = updated
            logger.info(f"Backfilled time data for {updated} tasks in {self.festival_name}"
                        f"{' (dry run)' if dry_run else ''}")
            return result

        except Exception as e:
            self._fail("backfill_times", e, dry_run=dry_run)
            raise
