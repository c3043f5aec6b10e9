"""Next-task selection.

The selector asks the graph collaborator for the festival's task graph,
overwrites every node's status with the reconciled status, and then picks
a recommendation under a fixed priority chain: current sequence, current
phase, earlier phase, earlier sequence, lower task number.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import List, Optional

from .cancellation import CancellationToken, ensure_token
from .fest_logging import log_next_selection, log_performance
from .frontmatter import is_planning_phase_type, read_phase_type
from .graph import GRAPH_COMPLETE, GRAPH_IN_PROGRESS, GraphResolver, GraphTask, TaskGraph, to_graph_status
from .models import (
    GateInfo,
    LocationInfo,
    NextTaskResult,
    ProgressInfo,
    ProgressStats,
    TaskInfo,
)
from .planning import build_planning_result, planning_reason
from .resolve import resolve_task_status
from .store import ProgressStore

logger = logging.getLogger("fest.selector")

QUALITY_GATE_FILE = "QUALITY_GATE.md"
GATE_TYPE_PHASE_TRANSITION = "phase_transition"

REASON_CURRENT_SEQUENCE = "Next task in current sequence"
REASON_CURRENT_PHASE = "Next task in current phase (sequence change)"
REASON_ELSEWHERE = "Next available task in festival"
REASON_FESTIVAL_COMPLETE = "All tasks in the festival are complete"
REASON_GATE = "Quality gate must be passed before proceeding"
REASON_NOTHING_READY = "No tasks are currently ready (dependencies not satisfied)"
REASON_NEXT_IN_SEQUENCE = "Next task in sequence"
REASON_SEQUENCE_COMPLETE = "All tasks in sequence are complete"
REASON_SEQUENCE_NOTHING_READY = "No tasks are ready (dependencies not satisfied)"


def is_numbered_dir(name: str) -> bool:
    """A visible name of two or more characters starting with a digit."""
    if len(name) < 2 or name.startswith(".") or name.startswith("_"):
        return False
    return name[0].isdigit()


def task_to_info(task: GraphTask) -> TaskInfo:
    return TaskInfo(
        name=task.name,
        path=task.path,
        number=task.number,
        sequence_name=os.path.basename(task.sequence_path),
        sequence_path=task.sequence_path,
        phase_name=os.path.basename(task.phase_path),
        phase_path=task.phase_path,
        status=task.status,
        parallel_group=task.parallel_group,
        autonomy_level=task.autonomy_level,
        dependencies=list(task.dependencies),
    )


class Selector:
    """Find the next task to work on in a festival."""

    def __init__(
        self,
        festival_path: Path | str,
        resolver: GraphResolver,
        store: Optional[ProgressStore] = None,
    ):
        self.festival_path = str(Path(festival_path).resolve())
        self.resolver = resolver
        self.store = store or ProgressStore(self.festival_path)

    @property
    def festival_name(self) -> str:
        return os.path.basename(self.festival_path)

    def _anchor(self, path: Path | str) -> str:
        """Absolute form of ``path``; relative paths are taken from the festival root."""
        path = str(path)
        if not path:
            return path
        return os.path.normpath(path if os.path.isabs(path) else os.path.join(self.festival_path, path))

    # ------------------------------------------------------------------
    # Public queries
    # ------------------------------------------------------------------

    @log_performance("find_next")
    def find_next(self, current_path: Path | str | None = None, ctx: Optional[CancellationToken] = None) -> NextTaskResult:
        """Recommend what to work on from ``current_path``.

        Planning and research phases report their objectives instead of a
        task. With nothing ready, the result is festival completion, a
        blocking quality gate, or "nothing ready", in that order.
        """
        token = ensure_token(ctx)
        token.check("find_next")

        graph = self.resolver.resolve_festival()
        self.apply_statuses(graph, token)

        location = self.determine_location(current_path or self.festival_path)

        if location.phase_path:
            phase_type = read_phase_type(location.phase_path)
            if is_planning_phase_type(phase_type):
                planning = build_planning_result(location.phase_path, phase_type)
                result = NextTaskResult.for_planning(planning, planning_reason(planning), location)
                return self._finish(result)

        ready = graph.ready_tasks()
        if not ready:
            if graph.all_complete():
                return self._finish(NextTaskResult.complete(REASON_FESTIVAL_COMPLETE, location))

            gate = self.find_blocking_gate(graph)
            if gate is not None:
                return self._finish(NextTaskResult.for_gate(gate, REASON_GATE, location))

            return self._finish(NextTaskResult.nothing_ready(REASON_NOTHING_READY, location))

        prioritized = self.prioritize_tasks(ready, location)
        primary = prioritized[0]

        result = NextTaskResult.for_task(
            task_to_info(primary),
            self.generate_reason(primary, location),
            location,
            parallel_tasks=self.find_parallel_tasks(prioritized, primary),
            progress=self.calculate_progress(graph),
        )
        return self._finish(result)

    @log_performance("find_next_in_sequence")
    def find_next_in_sequence(self, seq_path: Path | str, ctx: Optional[CancellationToken] = None) -> NextTaskResult:
        """Next task within one sequence, ordered by task number only."""
        token = ensure_token(ctx)
        token.check("find_next_in_sequence")

        seq_path = self._anchor(seq_path)
        graph = self.resolver.resolve_sequence(seq_path)
        self.apply_statuses(graph, token)

        location = self.determine_location(seq_path)
        ready = sorted(graph.ready_tasks(), key=lambda t: t.number)

        if not ready:
            reason = REASON_SEQUENCE_COMPLETE if graph.all_complete() else REASON_SEQUENCE_NOTHING_READY
            return self._finish(NextTaskResult.nothing_ready(reason, location))

        primary = ready[0]
        parallel = [task_to_info(t) for t in ready[1:] if t.parallel_group == primary.parallel_group]
        return self._finish(NextTaskResult.for_task(task_to_info(primary), REASON_NEXT_IN_SEQUENCE,
                                                    location, parallel_tasks=parallel))

    def get_progress(self, ctx: Optional[CancellationToken] = None) -> ProgressStats:
        """Task counts across the whole resolved graph."""
        token = ensure_token(ctx)
        token.check("get_progress")

        graph = self.resolver.resolve_festival()
        self.apply_statuses(graph, token)

        stats = ProgressStats()
        for task in graph:
            stats.total_tasks += 1
            if task.status == GRAPH_COMPLETE:
                stats.completed_tasks += 1
            elif task.status == GRAPH_IN_PROGRESS:
                stats.in_progress_tasks += 1
            else:
                stats.pending_tasks += 1

        if stats.total_tasks > 0:
            stats.percent_complete = stats.completed_tasks / stats.total_tasks * 100
        return stats

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def apply_statuses(self, graph: TaskGraph, ctx: Optional[CancellationToken] = None) -> None:
        """Overwrite each node's status with the reconciled status."""
        token = ensure_token(ctx)
        self.store.load(token)
        for task in graph:
            token.check("apply_statuses")
            status = resolve_task_status(self.store, self.festival_path, self._anchor(task.path))
            task.status = to_graph_status(status)

    def determine_location(self, current_path: Path | str) -> LocationInfo:
        """Classify ``current_path`` as festival, phase or sequence context.

        A relative ``current_path`` is taken from the festival root.
        """
        current = self._anchor(current_path)
        location = LocationInfo(festival_path=self.festival_path, current_path=current)

        rel = os.path.relpath(current, self.festival_path)
        if rel == ".." or rel.startswith(".." + os.sep):
            return location

        parts = rel.split(os.sep)
        if parts and is_numbered_dir(parts[0]):
            location.phase_path = os.path.join(self.festival_path, parts[0])
            if len(parts) >= 2 and is_numbered_dir(parts[1]):
                location.sequence_path = os.path.join(self.festival_path, parts[0], parts[1])
        return location

    def prioritize_tasks(self, tasks: List[GraphTask], location: LocationInfo) -> List[GraphTask]:
        """Order ready tasks by the tie-break chain."""

        def sort_key(task: GraphTask):
            in_sequence = bool(location.sequence_path) and self._anchor(task.sequence_path) == location.sequence_path
            in_phase = bool(location.phase_path) and self._anchor(task.phase_path) == location.phase_path
            return (not in_sequence, not in_phase, task.phase_path, task.sequence_path, task.number)

        return sorted(tasks, key=sort_key)

    def find_parallel_tasks(self, tasks: List[GraphTask], primary: GraphTask) -> List[TaskInfo]:
        """Ready siblings sharing the primary's sequence and parallel group."""
        return [
            task_to_info(task)
            for task in tasks
            if task.id != primary.id
            and task.sequence_path == primary.sequence_path
            and task.parallel_group == primary.parallel_group
        ]

    def find_blocking_gate(self, graph: TaskGraph) -> Optional[GateInfo]:
        """First fully complete phase, not the last, with a gate marker file."""
        by_phase = {}
        for task in graph:
            by_phase.setdefault(self._anchor(task.phase_path), []).append(task)

        phases = sorted(by_phase)
        for index, phase in enumerate(phases):
            if index == len(phases) - 1:
                break
            if not all(task.is_complete for task in by_phase[phase]):
                continue
            if os.path.isfile(os.path.join(phase, QUALITY_GATE_FILE)):
                return GateInfo(
                    phase=os.path.basename(phase),
                    gate_type=GATE_TYPE_PHASE_TRANSITION,
                    description="Quality gate must be passed before moving to next phase",
                )
        return None

    def generate_reason(self, task: GraphTask, location: LocationInfo) -> str:
        if location.sequence_path and self._anchor(task.sequence_path) == location.sequence_path:
            return REASON_CURRENT_SEQUENCE
        if location.phase_path and self._anchor(task.phase_path) == location.phase_path:
            return REASON_CURRENT_PHASE
        return REASON_ELSEWHERE

    def calculate_progress(self, graph: TaskGraph) -> Optional[ProgressInfo]:
        if len(graph) == 0:
            return None
        completed = sum(1 for task in graph if task.is_complete)
        return ProgressInfo(
            total_tasks=len(graph),
            completed_tasks=completed,
            percentage=completed / len(graph) * 100,
        )

    def _finish(self, result: NextTaskResult) -> NextTaskResult:
        log_next_selection(
            self.festival_name,
            result.kind,
            reason=result.reason,
            task=result.task.path if result.task else None,
        )
        return result
