"""Unit tests for progress aggregation."""

import os

import pytest

from fest.aggregate import (
    festival_progress,
    is_task_file,
    phase_progress,
    sequence_progress,
)
from fest.cancellation import CancellationToken
from fest.errors import NotFoundError, OperationCancelled
from fest.models import STATUS_BLOCKED, TaskProgress
from fest.store import ProgressStore


@pytest.fixture
def store(festival_root):
    store = ProgressStore(festival_root)
    store.load()
    return store


class TestRecognizers:
    """Test cases for naming conventions."""

    @pytest.mark.parametrize("name,expected", [
        ("01_task.md", True),
        ("01.5_inserted.md", True),
        ("1_task.md", False),
        ("01_task.txt", False),
        ("SEQUENCE_GOAL.md", False),
        (".01_hidden.md", False),
        ("_01_draft.md", False),
    ])
    def test_is_task_file(self, tmp_path, name, expected):
        path = tmp_path / name
        path.write_text("x", encoding="utf-8")
        assert is_task_file(path) is expected


class TestSequenceProgress:
    """Test cases for sequence rollups."""

    def test_empty_sequence(self, builder, store):
        seq = builder.sequence("001_BUILD", "01_core")
        result = sequence_progress(store, seq)

        assert result.progress.total == 0
        assert result.progress.percentage == 0

    def test_half_complete(self, builder, store):
        for i in range(10):
            done = i < 5
            builder.task("001_BUILD", "01_core", f"{i:02d}_task.md",
                         checked=1 if done else 0, unchecked=0 if done else 1)

        result = sequence_progress(store, builder.root / "001_BUILD" / "01_core")

        assert result.progress.total == 10
        assert result.progress.completed == 5
        assert result.progress.percentage == 50

    def test_percentage_truncates(self, builder, store):
        builder.task("001_BUILD", "01_core", "01_a.md", checked=1, unchecked=0)
        builder.task("001_BUILD", "01_core", "02_b.md")
        builder.task("001_BUILD", "01_core", "03_c.md")

        result = sequence_progress(store, builder.root / "001_BUILD" / "01_core")
        assert result.progress.percentage == 33

    def test_counts_blockers_and_time(self, festival_root, builder, store):
        builder.task("001_BUILD", "01_core", "01_a.md", checked=1, unchecked=1)
        builder.task("001_BUILD", "01_core", "02_b.md")
        builder.task("001_BUILD", "01_core", "03_c.md")
        store.set_task(TaskProgress(task_id="001_BUILD/01_core/01_a.md", status="in_progress",
                                    time_spent_minutes=25))
        store.set_task(TaskProgress(task_id="001_BUILD/01_core/02_b.md", status=STATUS_BLOCKED,
                                    blocker_message="need API key"))

        result = sequence_progress(store, festival_root / "001_BUILD" / "01_core").progress

        assert (result.in_progress, result.blocked, result.pending) == (1, 1, 1)
        assert result.time_spent_minutes == 25
        assert [b.blocker_message for b in result.blockers] == ["need API key"]

    def test_untracked_tasks_are_excluded(self, builder, store):
        builder.task("001_BUILD", "01_core", "01_a.md", checked=1, unchecked=0)
        builder.task("001_BUILD", "01_core", "02_notes.md", frontmatter="tracking: false")

        result = sequence_progress(store, builder.root / "001_BUILD" / "01_core")
        assert result.progress.total == 1
        assert result.progress.percentage == 100

    def test_cancellation(self, builder, store):
        seq = builder.sequence("001_BUILD", "01_core")
        token = CancellationToken()
        token.cancel("stop")
        with pytest.raises(OperationCancelled):
            sequence_progress(store, seq, token)


class TestFestivalProgress:
    """Test cases for phase and festival rollups."""

    def test_rolls_up_levels(self, builder, store):
        builder.task("001_PLAN", "01_research", "01_a.md", checked=1, unchecked=0)
        builder.task("001_PLAN", "01_research", "02_b.md", checked=1, unchecked=0)
        builder.task("002_BUILD", "01_core", "01_c.md")
        builder.task("002_BUILD", "02_api", "01_d.md")
        (builder.root / "002_BUILD" / "_archive").mkdir()
        (builder.root / ".fest").mkdir(exist_ok=True)
        (builder.root / "notes").mkdir()

        result = festival_progress(store)

        assert [p.phase_name for p in result.phases] == ["001_PLAN", "002_BUILD"]
        assert result.phases[0].progress.percentage == 100
        assert [s.sequence_name for s in result.phases[1].sequences] == ["01_core", "02_api"]
        assert result.overall.total == 4
        assert result.overall.completed == 2
        assert result.overall.percentage == 50
        assert result.time_metrics is store.time_metrics

    def test_empty_festival(self, store):
        result = festival_progress(store)
        assert result.overall.total == 0
        assert result.overall.percentage == 0

    def test_missing_festival_directory(self, tmp_path):
        store = ProgressStore(tmp_path / "missing")
        store.load()
        with pytest.raises(NotFoundError):
            festival_progress(store)

    @pytest.mark.skipif(os.name != "posix" or os.geteuid() == 0, reason="needs unprivileged POSIX user")
    def test_unreadable_sequence_is_skipped(self, builder, store):
        builder.task("001_BUILD", "01_core", "01_a.md", checked=1, unchecked=0)
        locked = builder.sequence("001_BUILD", "02_locked")
        builder.task("001_BUILD", "02_locked", "01_b.md")
        locked.chmod(0)
        try:
            result = phase_progress(store, builder.root / "001_BUILD")
        finally:
            locked.chmod(0o755)

        assert [s.sequence_name for s in result.sequences] == ["01_core"]
        assert result.progress.total == 1
