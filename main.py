"""MCP server exposing festival progress and next-task tools."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, List, Optional

from mcp.server.fastmcp import FastMCP

from fest.aggregate import festival_progress as aggregate_festival
from fest.errors import ValidationError
from fest.fest_logging import setup_logging
from fest.graph import GraphResolver, load_resolver
from fest.manager import ProgressManager
from fest.resolve import resolve_task_status, resolve_task_time
from fest.selector import Selector
from fest.store import PROGRESS_DIR, ProgressStore

mcp = FastMCP("fest")

ROOT_ENV = "FEST_FESTIVAL_ROOT"
RESOLVER_ENV = "FEST_GRAPH_RESOLVER"
LOG_LEVEL_ENV = "FEST_LOG_LEVEL"
LOG_FILE_ENV = "FEST_LOG_FILE"

FESTIVAL_MARKERS = (PROGRESS_DIR, "fest.yaml")


def _candidate_bases() -> List[Path]:
    cwd = Path.cwd().resolve()
    return [cwd, *cwd.parents]


def _locate_festival_root() -> Optional[Path]:
    for base in _candidate_bases():
        for marker in FESTIVAL_MARKERS:
            if (base / marker).exists():
                return base
    return None


def _resolve_root(root: Optional[str]) -> Path:
    if root:
        resolved = Path(root).expanduser().resolve()
        if not resolved.is_dir():
            raise ValidationError("festival root does not exist", op="resolve_root", root=root)
        return resolved

    env_root = os.getenv(ROOT_ENV)
    if env_root:
        env_path = Path(env_root).expanduser().resolve()
        if not env_path.is_dir():
            raise ValidationError(
                f"environment variable {ROOT_ENV} points to a missing directory",
                op="resolve_root",
                root=env_root,
            )
        return env_path

    detected = _locate_festival_root()
    if detected:
        return detected

    raise ValidationError(
        f"unable to determine festival root; pass 'root' or set {ROOT_ENV}",
        op="resolve_root",
    )


def _manager(root: Optional[str]) -> ProgressManager:
    return ProgressManager(_resolve_root(root))


def _resolver(festival: Path) -> GraphResolver:
    spec = os.getenv(RESOLVER_ENV)
    if not spec:
        raise ValidationError(
            f"no dependency graph resolver configured; set {RESOLVER_ENV} to 'module:factory'",
            op="graph_resolver",
        )
    return load_resolver(spec, festival)


def _selector(root: Optional[str]) -> Selector:
    festival = _resolve_root(root)
    return Selector(festival, _resolver(festival))


@mcp.tool()
def next_task(current_path: Optional[str] = None, root: Optional[str] = None) -> Dict[str, Any]:
    """Recommend the next task to work on, or report a blocking gate, planning objectives or completion.

    current_path places the caller inside a phase or sequence so nearby tasks are preferred."""

    selector = _selector(root)
    return selector.find_next(current_path).to_dict()


@mcp.tool()
def next_in_sequence(sequence_path: str, root: Optional[str] = None) -> Dict[str, Any]:
    """Recommend the next task within a single sequence."""

    selector = _selector(root)
    return selector.find_next_in_sequence(sequence_path).to_dict()


@mcp.tool()
def task_status(task_path: str, root: Optional[str] = None) -> Dict[str, Any]:
    """Report the reconciled status, stored record and time spent for one task document."""

    festival = _resolve_root(root)
    manager = ProgressManager(festival)
    path = Path(task_path)
    if not path.is_absolute():
        path = festival / path

    record = manager.get_task_progress(str(path))
    return {
        "task_id": manager.normalize(str(path)),
        "status": resolve_task_status(manager.store, festival, path),
        "time_spent_minutes": resolve_task_time(manager.store, festival, path),
        "record": record.to_dict() if record else None,
    }


@mcp.tool()
def update_progress(task_id: str, progress: int, root: Optional[str] = None) -> Dict[str, Any]:
    """Record a completion percentage (0-100) for a task; 100 completes it."""

    task = _manager(root).update_progress(task_id, progress)
    return {"task": task.to_dict()}


@mcp.tool()
def complete_task(task_id: str, root: Optional[str] = None) -> Dict[str, Any]:
    """Mark a task complete and report whether the festival is now complete."""

    manager = _manager(root)
    task = manager.mark_complete(task_id)
    metrics = manager.store.time_metrics
    return {
        "task": task.to_dict(),
        "festival_complete": bool(metrics and metrics.is_completed),
        "time_metrics": metrics.to_dict() if metrics else None,
    }


@mcp.tool()
def start_task(task_id: str, root: Optional[str] = None) -> Dict[str, Any]:
    """Mark a task as in progress."""

    task = _manager(root).mark_in_progress(task_id)
    return {"task": task.to_dict()}


@mcp.tool()
def report_blocker(task_id: str, message: str, root: Optional[str] = None) -> Dict[str, Any]:
    """Mark a task blocked with a non-empty explanation."""

    task = _manager(root).report_blocker(task_id, message)
    return {"task": task.to_dict()}


@mcp.tool()
def clear_blocker(task_id: str, root: Optional[str] = None) -> Dict[str, Any]:
    """Clear a task's blocker; blocked tasks return to in progress."""

    task = _manager(root).clear_blocker(task_id)
    return {"task": task.to_dict()}


@mcp.tool()
def festival_progress(root: Optional[str] = None) -> Dict[str, Any]:
    """Completion counts and percentages for the festival, its phases and sequences."""

    return _manager(root).festival_progress().to_dict()


@mcp.tool()
def migrate_times(dry_run: bool = False, root: Optional[str] = None) -> Dict[str, Any]:
    """Infer missing time data for completed tasks from file modification times."""

    return _manager(root).backfill_times(dry_run=dry_run).to_dict()


@mcp.resource("fest://progress")
def resource_progress() -> str:
    """Text summary of the detected festival's progress."""

    try:
        festival = _resolve_root(None)
    except ValidationError:
        return f"No festival detected. Launch tools with a 'root' argument or set {ROOT_ENV}."

    store = ProgressStore(festival)
    store.load()
    summary = aggregate_festival(store, festival)
    overall = summary.overall

    lines = [
        f"Festival: {summary.festival_name}",
        f"Progress: {overall.completed}/{overall.total} tasks ({overall.percentage}%)",
        f"In progress: {overall.in_progress}, blocked: {overall.blocked}, pending: {overall.pending}",
    ]
    for phase in summary.phases:
        lines.append(f"- {phase.phase_name}: {phase.progress.completed}/{phase.progress.total} "
                     f"({phase.progress.percentage}%)")
    for blocker in overall.blockers:
        lines.append(f"! {blocker.task_id}: {blocker.blocker_message}")
    return "\n".join(lines)


if __name__ == "__main__":
    setup_logging(os.getenv(LOG_LEVEL_ENV, "INFO").upper(), os.getenv(LOG_FILE_ENV) or None)
    mcp.run(transport="stdio")
