"""Shared fixtures: festival trees on disk and an in-memory dependency graph resolver."""

import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional

import pytest

from fest.aggregate import is_phase_dir, is_sequence_dir, is_task_file, list_entries
from fest.graph import GraphTask, TaskGraph


def checklist(checked: int = 0, unchecked: int = 0, heading: str = "Definition of Done") -> str:
    lines = [f"## {heading}", ""]
    lines += [f"- [x] done item {i}" for i in range(checked)]
    lines += [f"- [ ] open item {i}" for i in range(unchecked)]
    return "\n".join(lines) + "\n"


def set_mtime(path: Path, when: datetime) -> None:
    ts = when.replace(tzinfo=when.tzinfo or timezone.utc).timestamp()
    os.utime(path, (ts, ts))


class FestivalBuilder:
    """Writes phase/sequence/task trees under a festival root."""

    def __init__(self, root: Path):
        self.root = root

    def phase(self, name: str, phase_type: Optional[str] = None, goal_body: str = "") -> Path:
        path = self.root / name
        path.mkdir(parents=True, exist_ok=True)
        if phase_type is not None or goal_body:
            header = f"---\nfest_phase_type: {phase_type}\n---\n" if phase_type else ""
            (path / "PHASE_GOAL.md").write_text(header + "# Phase Goal\n\n" + goal_body, encoding="utf-8")
        return path

    def sequence(self, phase: str, name: str) -> Path:
        path = self.root / phase / name
        path.mkdir(parents=True, exist_ok=True)
        return path

    def task(
        self,
        phase: str,
        sequence: str,
        name: str,
        checked: int = 0,
        unchecked: int = 1,
        frontmatter: Optional[str] = None,
        body: Optional[str] = None,
    ) -> Path:
        seq = self.sequence(phase, sequence)
        content = f"# Task: {name}\n\n" + (body if body is not None else checklist(checked, unchecked))
        if frontmatter is not None:
            content = f"---\n{frontmatter}\n---\n" + content
        path = seq / name
        path.write_text(content, encoding="utf-8")
        return path

    def gate(self, phase: str) -> Path:
        path = self.root / phase / "QUALITY_GATE.md"
        path.write_text("# Quality Gate\n\n- [ ] review passed\n", encoding="utf-8")
        return path


class TreeResolver:
    """Builds a TaskGraph by walking the festival tree.

    ``dependencies`` maps a task file name to the file names it depends on.
    Tasks sharing an ordinal within a sequence share a parallel group.
    """

    def __init__(self, root: Path, dependencies: Optional[Dict[str, List[str]]] = None):
        self.root = Path(root)
        self.dependencies = dependencies or {}
        self.festival_calls = 0

    def _tasks_in(self, phase: Path, seq: Path) -> List[GraphTask]:
        tasks = []
        for entry in list_entries(seq):
            if not is_task_file(entry):
                continue
            number = int(entry.name[:2])
            tasks.append(GraphTask(
                id=str(entry),
                name=entry.stem,
                number=number,
                path=str(entry),
                sequence_path=str(seq),
                phase_path=str(phase),
                parallel_group=number,
            ))
        return tasks

    def _link(self, tasks: List[GraphTask]) -> TaskGraph:
        by_name = {Path(task.path).name: task.id for task in tasks}
        for task in tasks:
            deps = self.dependencies.get(Path(task.path).name, [])
            task.dependencies = [by_name.get(dep, dep) for dep in deps]
        return TaskGraph(tasks)

    def resolve_festival(self) -> TaskGraph:
        self.festival_calls += 1
        tasks = []
        for phase in list_entries(self.root):
            if not is_phase_dir(phase):
                continue
            for seq in list_entries(phase):
                if is_sequence_dir(seq):
                    tasks.extend(self._tasks_in(phase, seq))
        return self._link(tasks)

    def resolve_sequence(self, seq_path: str) -> TaskGraph:
        seq = Path(seq_path)
        return self._link(self._tasks_in(seq.parent, seq))


@pytest.fixture
def festival_root(tmp_path) -> Path:
    root = tmp_path.resolve() / "demo-festival"
    root.mkdir()
    return root


@pytest.fixture
def builder(festival_root) -> FestivalBuilder:
    return FestivalBuilder(festival_root)


@pytest.fixture(autouse=True)
def reset_observability():
    """Keep global hooks and metrics from leaking between tests."""
    from fest.fest_logging import observability_hooks, performance_monitor

    yield
    observability_hooks.hooks.clear()
    performance_monitor.clear()
