"""Data models for festival progress tracking.

This module contains the core data structures used throughout fest:
the persisted progress record (task progress, festival time metrics),
aggregated completion figures, and the transient view objects returned
by the next-task selector.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

STATUS_PENDING = "pending"
STATUS_IN_PROGRESS = "in_progress"
STATUS_BLOCKED = "blocked"
STATUS_COMPLETED = "completed"

TASK_STATUSES = (STATUS_PENDING, STATUS_IN_PROGRESS, STATUS_BLOCKED, STATUS_COMPLETED)

RESULT_TASK = "task"
RESULT_BLOCKING_GATE = "blocking_gate"
RESULT_PLANNING = "planning"
RESULT_FESTIVAL_COMPLETE = "festival_complete"
RESULT_NONE = "none"

_FRACTION_PATTERN = re.compile(r"(\.\d{6})\d+")


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    """Render a datetime as an ISO-8601 UTC string."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse a stored timestamp into an aware UTC datetime.

    Accepts datetimes (YAML may already have decoded them) and ISO-8601
    strings, including a trailing ``Z`` and sub-microsecond fractions.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith("Z") or text.endswith("z"):
            text = text[:-1] + "+00:00"
        text = _FRACTION_PATTERN.sub(r"\1", text)
        parsed = datetime.fromisoformat(text)
    else:
        raise ValueError(f"Unsupported timestamp value: {value!r}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _whole_days(start: datetime, end: datetime) -> int:
    return int((end - start).total_seconds() // 86400)


@dataclass(slots=True)
class TaskProgress:
    """Stored progress for a single task, keyed by festival-relative path."""

    task_id: str
    status: str = STATUS_PENDING
    progress: int = 0
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    time_spent_minutes: int = 0
    blocker_message: str = ""
    blocked_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation, omitting unset optionals."""
        data: Dict[str, Any] = {
            "task_id": self.task_id,
            "status": self.status,
            "progress": self.progress,
        }
        if self.started_at is not None:
            data["started_at"] = format_timestamp(self.started_at)
        if self.completed_at is not None:
            data["completed_at"] = format_timestamp(self.completed_at)
        if self.time_spent_minutes:
            data["time_spent_minutes"] = self.time_spent_minutes
        if self.blocker_message:
            data["blocker_message"] = self.blocker_message
        if self.blocked_at is not None:
            data["blocked_at"] = format_timestamp(self.blocked_at)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any], task_id: Optional[str] = None) -> "TaskProgress":
        """Create from dictionary representation.

        ``task_id`` is used when the record itself does not carry one
        (the mapping key is authoritative in that case).
        """
        return cls(
            task_id=data.get("task_id") or task_id or "",
            status=data.get("status") or STATUS_PENDING,
            progress=int(data.get("progress") or 0),
            started_at=parse_timestamp(data.get("started_at")),
            completed_at=parse_timestamp(data.get("completed_at")),
            time_spent_minutes=int(data.get("time_spent_minutes") or 0),
            blocker_message=data.get("blocker_message") or "",
            blocked_at=parse_timestamp(data.get("blocked_at")),
        )

    def copy(self) -> "TaskProgress":
        """Return an independent copy."""
        return TaskProgress(
            task_id=self.task_id,
            status=self.status,
            progress=self.progress,
            started_at=self.started_at,
            completed_at=self.completed_at,
            time_spent_minutes=self.time_spent_minutes,
            blocker_message=self.blocker_message,
            blocked_at=self.blocked_at,
        )

    @property
    def is_completed(self) -> bool:
        return self.status == STATUS_COMPLETED

    def clear_blocker(self) -> None:
        self.blocker_message = ""
        self.blocked_at = None

    def validate(self) -> List[str]:
        """Validate task progress and return any issues."""
        issues = []

        if not self.task_id:
            issues.append("Task ID is required")
        if self.status not in TASK_STATUSES:
            issues.append(f"Invalid status: {self.status}")
        if not 0 <= self.progress <= 100:
            issues.append(f"Progress must be 0-100, got: {self.progress}")
        if self.progress == 100 and self.status != STATUS_COMPLETED:
            issues.append("Progress 100 requires status 'completed'")
        if self.progress == 100 and self.completed_at is None:
            issues.append("Progress 100 requires a completion timestamp")
        if self.time_spent_minutes < 0:
            issues.append("Time spent cannot be negative")

        return issues


@dataclass(slots=True)
class FestivalTimeMetrics:
    """Festival-level time data.

    ``total_work_minutes`` answers "how long was worked", the lifecycle
    fields answer "how long has the festival existed". The stored
    ``lifecycle_duration_days`` is only meaningful once ``completed_at`` is set.
    """

    created_at: datetime
    completed_at: Optional[datetime] = None
    lifecycle_duration_days: int = 0
    total_work_minutes: int = 0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        data: Dict[str, Any] = {"created_at": format_timestamp(self.created_at)}
        if self.completed_at is not None:
            data["completed_at"] = format_timestamp(self.completed_at)
        if self.lifecycle_duration_days:
            data["lifecycle_duration_days"] = self.lifecycle_duration_days
        data["total_work_minutes"] = self.total_work_minutes
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any], fallback_created_at: Optional[datetime] = None) -> "FestivalTimeMetrics":
        """Create from dictionary representation."""
        created_at = parse_timestamp(data.get("created_at")) or fallback_created_at or utcnow()
        return cls(
            created_at=created_at,
            completed_at=parse_timestamp(data.get("completed_at")),
            lifecycle_duration_days=int(data.get("lifecycle_duration_days") or 0),
            total_work_minutes=int(data.get("total_work_minutes") or 0),
        )

    @property
    def is_completed(self) -> bool:
        return self.completed_at is not None

    def calculate_lifecycle_duration(self) -> int:
        """Whole days from creation to completion, or -1 while ongoing.

        No upper bound is applied.
        """
        if self.completed_at is None:
            return -1
        return _whole_days(self.created_at, self.completed_at)

    def current_duration_days(self, now: Optional[datetime] = None) -> int:
        """Whole days since creation, measured against ``now``."""
        return _whole_days(self.created_at, now or utcnow())

    def effective_lifecycle_days(self, now: Optional[datetime] = None) -> int:
        """Stored-and-recomputed duration when completed, live duration otherwise."""
        if self.completed_at is not None:
            self.lifecycle_duration_days = self.calculate_lifecycle_duration()
            return self.lifecycle_duration_days
        return self.current_duration_days(now)


@dataclass(slots=True)
class FestivalProgressData:
    """The persisted progress record for one festival."""

    festival: str
    updated_at: datetime
    time_metrics: Optional[FestivalTimeMetrics] = None
    tasks: Dict[str, TaskProgress] = field(default_factory=dict)

    @classmethod
    def empty(cls, festival: str, now: Optional[datetime] = None) -> "FestivalProgressData":
        """Fresh record with time metrics starting now."""
        now = now or utcnow()
        return cls(
            festival=festival,
            updated_at=now,
            time_metrics=FestivalTimeMetrics(created_at=now),
            tasks={},
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        data: Dict[str, Any] = {
            "festival": self.festival,
            "updated_at": format_timestamp(self.updated_at),
        }
        if self.time_metrics is not None:
            data["time_metrics"] = self.time_metrics.to_dict()
        data["tasks"] = {key: task.to_dict() for key, task in self.tasks.items()}
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any], festival: str = "") -> "FestivalProgressData":
        """Create from dictionary representation.

        ``time_metrics`` is left as ``None`` when absent; the store decides how
        to upgrade legacy records.
        """
        updated_at = parse_timestamp(data.get("updated_at")) or utcnow()
        raw_tasks = data.get("tasks") or {}
        if not isinstance(raw_tasks, dict):
            raise TypeError(f"tasks must be a mapping, got {type(raw_tasks).__name__}")
        tasks = {}
        for key, value in raw_tasks.items():
            if value is not None and not isinstance(value, dict):
                raise TypeError(f"task {key!r} must be a mapping, got {type(value).__name__}")
            tasks[str(key)] = TaskProgress.from_dict(value or {}, task_id=str(key))
        raw_metrics = data.get("time_metrics")
        metrics = (
            FestivalTimeMetrics.from_dict(raw_metrics, fallback_created_at=updated_at)
            if isinstance(raw_metrics, dict)
            else None
        )
        return cls(
            festival=data.get("festival") or festival,
            updated_at=updated_at,
            time_metrics=metrics,
            tasks=tasks,
        )


@dataclass(slots=True)
class BackfillResult:
    """Outcome of inferring time data for one festival."""

    festival_path: str
    status: str  # migrated, skipped
    task_count: int = 0
    total_work_minutes: int = 0
    dry_run: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "festival_path": self.festival_path,
            "status": self.status,
            "task_count": self.task_count,
            "total_work_minutes": self.total_work_minutes,
            "dry_run": self.dry_run,
        }


# ----------------------------------------------------------------------
# Aggregated completion figures
# ----------------------------------------------------------------------


@dataclass(slots=True)
class AggregateProgress:
    """Task counts rolled up over a sequence, phase or festival."""

    total: int = 0
    completed: int = 0
    in_progress: int = 0
    blocked: int = 0
    pending: int = 0
    percentage: int = 0
    time_spent_minutes: int = 0
    blockers: List[TaskProgress] = field(default_factory=list)

    def add(self, other: "AggregateProgress") -> None:
        """Accumulate a child aggregate into this one."""
        self.total += other.total
        self.completed += other.completed
        self.in_progress += other.in_progress
        self.blocked += other.blocked
        self.pending += other.pending
        self.time_spent_minutes += other.time_spent_minutes
        self.blockers.extend(other.blockers)

    def compute_percentage(self) -> int:
        """Truncated completion percentage; 0 for an empty aggregate."""
        self.percentage = (self.completed * 100) // self.total if self.total > 0 else 0
        return self.percentage

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "total": self.total,
            "completed": self.completed,
            "in_progress": self.in_progress,
            "blocked": self.blocked,
            "pending": self.pending,
            "percentage": self.percentage,
            "time_spent_minutes": self.time_spent_minutes,
            "blockers": [task.to_dict() for task in self.blockers],
        }


@dataclass(slots=True)
class SequenceProgress:
    sequence_id: str
    sequence_name: str
    progress: AggregateProgress

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sequence_id": self.sequence_id,
            "sequence_name": self.sequence_name,
            "progress": self.progress.to_dict(),
        }


@dataclass(slots=True)
class PhaseProgress:
    phase_id: str
    phase_name: str
    progress: AggregateProgress
    sequences: List[SequenceProgress] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "phase_id": self.phase_id,
            "phase_name": self.phase_name,
            "progress": self.progress.to_dict(),
            "sequences": [seq.to_dict() for seq in self.sequences],
        }


@dataclass(slots=True)
class FestivalProgress:
    """Complete festival rollup, with time metrics when the store has them."""

    festival_name: str
    overall: AggregateProgress
    phases: List[PhaseProgress] = field(default_factory=list)
    time_metrics: Optional[FestivalTimeMetrics] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "festival_name": self.festival_name,
            "overall": self.overall.to_dict(),
            "phases": [phase.to_dict() for phase in self.phases],
        }
        if self.time_metrics is not None:
            data["time_metrics"] = self.time_metrics.to_dict()
            data["lifecycle_days"] = self.time_metrics.effective_lifecycle_days()
            data["lifecycle_ongoing"] = not self.time_metrics.is_completed
        return data


# ----------------------------------------------------------------------
# Next-task selector view objects (never persisted)
# ----------------------------------------------------------------------


@dataclass(slots=True)
class TaskInfo:
    """A task as presented in a recommendation."""

    name: str
    path: str
    number: int
    sequence_name: str
    sequence_path: str
    phase_name: str
    phase_path: str
    status: str
    parallel_group: int = 0
    autonomy_level: str = ""
    dependencies: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        data: Dict[str, Any] = {
            "name": self.name,
            "path": self.path,
            "number": self.number,
            "sequence_name": self.sequence_name,
            "sequence_path": self.sequence_path,
            "phase_name": self.phase_name,
            "phase_path": self.phase_path,
            "status": self.status,
            "parallel_group": self.parallel_group,
        }
        if self.autonomy_level:
            data["autonomy_level"] = self.autonomy_level
        if self.dependencies:
            data["dependencies"] = list(self.dependencies)
        return data


@dataclass(slots=True)
class GateInfo:
    """A quality gate blocking the transition out of a phase."""

    phase: str
    gate_type: str
    description: str
    criteria: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "phase": self.phase,
            "gate_type": self.gate_type,
            "description": self.description,
        }
        if self.criteria:
            data["criteria"] = list(self.criteria)
        return data


@dataclass(slots=True)
class LocationInfo:
    """Where the caller stands inside the festival."""

    festival_path: str
    current_path: str
    phase_path: str = ""
    sequence_path: str = ""

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "festival_path": self.festival_path,
            "current_path": self.current_path,
        }
        if self.phase_path:
            data["phase_path"] = self.phase_path
        if self.sequence_path:
            data["sequence_path"] = self.sequence_path
        return data


@dataclass(slots=True)
class PlanningObjective:
    """One checklist objective from a planning phase goal document."""

    category: str  # question, decision, artifact, objective
    text: str
    resolved: bool

    def to_dict(self) -> Dict[str, Any]:
        return {"category": self.category, "text": self.text, "resolved": self.resolved}


@dataclass(slots=True)
class PlanningProgress:
    total_objectives: int
    resolved_objectives: int
    percentage: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_objectives": self.total_objectives,
            "resolved_objectives": self.resolved_objectives,
            "percentage": self.percentage,
        }


@dataclass(slots=True)
class PlanningPhaseResult:
    """Report for a planning or research phase in place of a task."""

    phase_name: str
    phase_path: str
    phase_type: str
    objectives: List[PlanningObjective]
    progress: PlanningProgress
    graduation_ready: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "phase_name": self.phase_name,
            "phase_path": self.phase_path,
            "phase_type": self.phase_type,
            "objectives": [objective.to_dict() for objective in self.objectives],
            "progress": self.progress.to_dict(),
            "graduation_ready": self.graduation_ready,
        }


@dataclass(slots=True)
class ProgressInfo:
    total_tasks: int
    completed_tasks: int
    percentage: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_tasks": self.total_tasks,
            "completed_tasks": self.completed_tasks,
            "percentage": self.percentage,
        }


@dataclass(slots=True)
class ProgressStats:
    """Graph-wide task counts."""

    total_tasks: int = 0
    completed_tasks: int = 0
    in_progress_tasks: int = 0
    pending_tasks: int = 0
    percent_complete: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_tasks": self.total_tasks,
            "completed_tasks": self.completed_tasks,
            "in_progress_tasks": self.in_progress_tasks,
            "pending_tasks": self.pending_tasks,
            "percent_complete": self.percent_complete,
        }


@dataclass(slots=True)
class NextTaskResult:
    """Tagged result of a next-task query.

    ``kind`` names the populated variant: a recommended task (with optional
    parallel siblings), a blocking gate, a planning report, festival
    completion, or ``none`` when nothing is ready.
    """

    kind: str
    reason: str
    location: LocationInfo
    task: Optional[TaskInfo] = None
    parallel_tasks: List[TaskInfo] = field(default_factory=list)
    blocking_gate: Optional[GateInfo] = None
    planning: Optional[PlanningPhaseResult] = None
    festival_complete: bool = False
    progress: Optional[ProgressInfo] = None

    @classmethod
    def for_task(
        cls,
        task: TaskInfo,
        reason: str,
        location: LocationInfo,
        parallel_tasks: Optional[List[TaskInfo]] = None,
        progress: Optional[ProgressInfo] = None,
    ) -> "NextTaskResult":
        return cls(
            kind=RESULT_TASK,
            reason=reason,
            location=location,
            task=task,
            parallel_tasks=list(parallel_tasks or []),
            progress=progress,
        )

    @classmethod
    def for_gate(cls, gate: GateInfo, reason: str, location: LocationInfo) -> "NextTaskResult":
        return cls(kind=RESULT_BLOCKING_GATE, reason=reason, location=location, blocking_gate=gate)

    @classmethod
    def for_planning(cls, planning: PlanningPhaseResult, reason: str, location: LocationInfo) -> "NextTaskResult":
        return cls(kind=RESULT_PLANNING, reason=reason, location=location, planning=planning)

    @classmethod
    def complete(cls, reason: str, location: LocationInfo) -> "NextTaskResult":
        return cls(kind=RESULT_FESTIVAL_COMPLETE, reason=reason, location=location, festival_complete=True)

    @classmethod
    def nothing_ready(cls, reason: str, location: LocationInfo) -> "NextTaskResult":
        return cls(kind=RESULT_NONE, reason=reason, location=location)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        data: Dict[str, Any] = {
            "kind": self.kind,
            "reason": self.reason,
            "festival_complete": self.festival_complete,
            "location": self.location.to_dict(),
        }
        if self.task is not None:
            data["task"] = self.task.to_dict()
        if self.parallel_tasks:
            data["parallel_tasks"] = [task.to_dict() for task in self.parallel_tasks]
        if self.blocking_gate is not None:
            data["blocking_gate"] = self.blocking_gate.to_dict()
        if self.planning is not None:
            data["planning"] = self.planning.to_dict()
        if self.progress is not None:
            data["progress"] = self.progress.to_dict()
        return data

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)
