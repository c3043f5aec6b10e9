"""Integration tests for the MCP tool functions in main.py."""

import json

import pytest

import main
from conftest import checklist

from fest.errors import NotFoundError, ValidationError


@pytest.fixture
def festival(festival_root, builder, monkeypatch):
    builder.task("001_BUILD", "01_core", "01_schema.md")
    builder.task("001_BUILD", "01_core", "02_models.md", checked=1, unchecked=0)
    monkeypatch.delenv(main.ROOT_ENV, raising=False)
    monkeypatch.setenv(main.RESOLVER_ENV, "conftest:TreeResolver")
    return festival_root


class TestResolveRoot:
    """Test cases for festival root discovery."""

    def test_explicit_root(self, festival):
        assert main._resolve_root(str(festival)) == festival

    def test_missing_root(self, festival):
        with pytest.raises(ValidationError):
            main._resolve_root(str(festival / "nope"))

    def test_environment(self, festival, monkeypatch):
        monkeypatch.setenv(main.ROOT_ENV, str(festival))
        assert main._resolve_root(None) == festival

    def test_walks_up_to_marker(self, festival, monkeypatch):
        (festival / ".fest").mkdir()
        monkeypatch.chdir(festival / "001_BUILD" / "01_core")
        assert main._resolve_root(None) == festival


class TestTools:
    """Test cases for tool round trips."""

    def test_next_task(self, festival):
        result = main.next_task(root=str(festival))

        assert result["kind"] == "task"
        assert result["task"]["name"] == "01_schema"
        json.dumps(result)

    def test_next_task_requires_resolver(self, festival, monkeypatch):
        monkeypatch.delenv(main.RESOLVER_ENV)
        with pytest.raises(ValidationError):
            main.next_task(root=str(festival))

    def test_next_in_sequence(self, festival):
        result = main.next_in_sequence(str(festival / "001_BUILD" / "01_core"), root=str(festival))
        assert result["task"]["name"] == "01_schema"

    def test_progress_lifecycle(self, festival):
        task_id = "001_BUILD/01_core/01_schema.md"

        assert main.start_task(task_id, root=str(festival))["task"]["status"] == "in_progress"
        assert main.update_progress(task_id, 60, root=str(festival))["task"]["progress"] == 60
        assert main.report_blocker(task_id, "schema review", root=str(festival))["task"]["status"] == "blocked"
        assert main.clear_blocker(task_id, root=str(festival))["task"]["status"] == "in_progress"

        done = main.complete_task(task_id, root=str(festival))
        assert done["task"]["status"] == "completed"
        assert done["festival_complete"] is False

        status = main.task_status(task_id, root=str(festival))
        assert status["task_id"] == task_id
        assert status["record"]["status"] == "completed"
        assert status["status"] == "pending"

    def test_complete_task_finishes_festival(self, festival):
        task_id = "001_BUILD/01_core/01_schema.md"
        (festival / task_id).write_text("# Task: 01_schema\n\n" + checklist(checked=2), encoding="utf-8")

        done = main.complete_task(task_id, root=str(festival))

        assert done["festival_complete"] is True
        assert done["time_metrics"]["completed_at"] is not None

    def test_update_progress_to_hundred_finishes_festival(self, festival):
        task_id = "001_BUILD/01_core/01_schema.md"
        (festival / task_id).write_text("# Task: 01_schema\n\n" + checklist(checked=2), encoding="utf-8")

        main.update_progress(task_id, 100, root=str(festival))

        assert main.festival_progress(root=str(festival))["overall"]["percentage"] == 100
        assert main._manager(str(festival)).store.time_metrics.is_completed is True

    def test_clear_blocker_unknown(self, festival):
        with pytest.raises(NotFoundError):
            main.clear_blocker("001_BUILD/01_core/01_schema.md", root=str(festival))

    def test_festival_progress(self, festival):
        result = main.festival_progress(root=str(festival))
        assert result["overall"]["total"] == 2
        assert result["overall"]["percentage"] == 50

    def test_migrate_times_dry_run(self, festival):
        result = main.migrate_times(dry_run=True, root=str(festival))
        assert result["status"] == "skipped"
        assert result["dry_run"] is True


class TestProgressResource:
    """Test cases for the fest://progress resource."""

    def test_summary(self, festival, monkeypatch):
        monkeypatch.setenv(main.ROOT_ENV, str(festival))
        text = main.resource_progress()
        assert "Progress: 1/2 tasks (50%)" in text
        assert "- 001_BUILD: 1/2 (50%)" in text

    def test_no_festival(self, tmp_path, monkeypatch):
        monkeypatch.delenv(main.ROOT_ENV, raising=False)
        monkeypatch.chdir(tmp_path)
        assert main.resource_progress().startswith("No festival detected")
