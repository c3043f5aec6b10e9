"""Unit tests for status reconciliation and task id normalization."""

from datetime import datetime, timedelta, timezone

import pytest

from conftest import set_mtime

from fest.errors import ValidationError
from fest.models import (
    STATUS_BLOCKED,
    STATUS_COMPLETED,
    STATUS_IN_PROGRESS,
    STATUS_PENDING,
    TaskProgress,
)
from fest.resolve import (
    decide_status,
    normalize_task_id,
    resolve_task_progress,
    resolve_task_status,
    resolve_task_time,
    task_key_from_path,
)
from fest.store import ProgressStore


KEY = "001_BUILD/01_core/01_task.md"


@pytest.fixture
def store(festival_root):
    store = ProgressStore(festival_root)
    store.load()
    return store


class TestNormalizeTaskId:
    """Test cases for task id normalization."""

    def test_absolute_path(self, festival_root):
        assert normalize_task_id(festival_root, str(festival_root / KEY)) == KEY

    def test_relative_path(self, festival_root):
        assert normalize_task_id(festival_root, KEY) == KEY

    def test_backslash_path(self, festival_root):
        assert normalize_task_id(festival_root, KEY.replace("/", "\\")) == KEY

    def test_bare_filename_passes_through(self, festival_root):
        assert normalize_task_id(festival_root, "01_task.md") == "01_task.md"

    def test_empty_rejected(self, festival_root):
        with pytest.raises(ValidationError):
            normalize_task_id(festival_root, "")

    def test_outside_festival_rejected(self, festival_root, tmp_path):
        with pytest.raises(ValidationError):
            normalize_task_id(festival_root, str(tmp_path / "elsewhere.md"))

    def test_festival_root_itself_rejected(self, festival_root):
        with pytest.raises(ValidationError):
            task_key_from_path(festival_root, festival_root)


class TestResolveTaskProgress:
    """Test cases for record lookup."""

    def test_prefers_relative_key(self, festival_root, store):
        store.set_task(TaskProgress(task_id=KEY, status=STATUS_BLOCKED))
        store.set_task(TaskProgress(task_id="01_task.md", status=STATUS_COMPLETED))
        record = resolve_task_progress(store, festival_root, festival_root / KEY)
        assert record.status == STATUS_BLOCKED

    def test_falls_back_to_filename(self, festival_root, store):
        store.set_task(TaskProgress(task_id="01_task.md", status=STATUS_COMPLETED))
        record = resolve_task_progress(store, festival_root, festival_root / KEY)
        assert record.task_id == "01_task.md"

    def test_no_store(self, festival_root):
        assert resolve_task_progress(None, festival_root, festival_root / KEY) is None


class TestDecisionTable:
    """Test cases for the reconciliation rule."""

    @pytest.mark.parametrize("stored", [None, STATUS_PENDING, STATUS_BLOCKED, STATUS_COMPLETED, STATUS_IN_PROGRESS])
    def test_checklist_completed_always_wins(self, stored):
        assert decide_status(STATUS_COMPLETED, stored) == STATUS_COMPLETED

    @pytest.mark.parametrize("stored", [None, STATUS_BLOCKED, STATUS_COMPLETED])
    def test_checklist_in_progress_always_wins(self, stored):
        assert decide_status(STATUS_IN_PROGRESS, stored) == STATUS_IN_PROGRESS

    def test_store_can_only_elevate_to_blocked(self):
        assert decide_status(STATUS_PENDING, STATUS_BLOCKED) == STATUS_BLOCKED
        assert decide_status(STATUS_PENDING, STATUS_COMPLETED) == STATUS_PENDING
        assert decide_status(STATUS_PENDING, STATUS_IN_PROGRESS) == STATUS_PENDING
        assert decide_status(STATUS_PENDING, None) == STATUS_PENDING


class TestResolveTaskStatus:
    """Test cases for status resolution against real files."""

    def test_checked_file_beats_blocked_record(self, festival_root, builder, store):
        path = builder.task("001_BUILD", "01_core", "01_task.md", checked=2, unchecked=0)
        store.set_task(TaskProgress(task_id=KEY, status=STATUS_BLOCKED))
        assert resolve_task_status(store, festival_root, path) == STATUS_COMPLETED

    def test_blocked_record_on_untouched_file(self, festival_root, builder, store):
        path = builder.task("001_BUILD", "01_core", "01_task.md", checked=0, unchecked=2)
        store.set_task(TaskProgress(task_id=KEY, status=STATUS_BLOCKED))
        assert resolve_task_status(store, festival_root, path) == STATUS_BLOCKED

    def test_completed_record_with_no_checks_is_pending(self, festival_root, builder, store):
        path = builder.task("001_BUILD", "01_core", "01_task.md", checked=0, unchecked=2)
        store.set_task(TaskProgress(task_id=KEY, status=STATUS_COMPLETED, progress=100))
        assert resolve_task_status(store, festival_root, path) == STATUS_PENDING

    def test_no_record(self, festival_root, builder, store):
        path = builder.task("001_BUILD", "01_core", "01_task.md", checked=0, unchecked=1)
        assert resolve_task_status(store, festival_root, path) == STATUS_PENDING

    def test_missing_file_is_pending(self, festival_root, store):
        assert resolve_task_status(store, festival_root, festival_root / KEY) == STATUS_PENDING


class TestResolveTaskTime:
    """Test cases for time resolution."""

    def test_explicit_minutes_win(self, festival_root, store):
        store.set_task(TaskProgress(task_id=KEY, status=STATUS_COMPLETED, time_spent_minutes=42))
        assert resolve_task_time(store, festival_root, festival_root / KEY) == 42

    def test_inferred_without_mutating_record(self, festival_root, builder, store):
        path = builder.task("001_BUILD", "01_core", "01_task.md", checked=1, unchecked=0)
        done = datetime(2025, 2, 1, 12, 0, tzinfo=timezone.utc)
        set_mtime(path, done)
        record = TaskProgress(task_id=KEY, status=STATUS_COMPLETED, started_at=done - timedelta(minutes=30))
        store.set_task(record)

        assert resolve_task_time(store, festival_root, path) == 30
        assert record.completed_at is None
        assert record.time_spent_minutes == 0

    def test_no_record(self, festival_root, store):
        assert resolve_task_time(store, festival_root, festival_root / KEY) == 0
