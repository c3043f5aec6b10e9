"""Interface to the external dependency-graph builder.

The builder itself lives outside this package. It is supplied as a
``GraphResolver``: given a festival root it returns a ``TaskGraph`` whose
nodes carry a mutable ``status`` in the graph's own vocabulary, where a
finished task is ``"complete"`` (the progress store says ``"completed"``).
``to_graph_status`` is the only place the two vocabularies meet.
"""

from __future__ import annotations

import importlib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Protocol, runtime_checkable

from .errors import ValidationError
from .models import STATUS_BLOCKED, STATUS_COMPLETED, STATUS_IN_PROGRESS

GRAPH_COMPLETE = "complete"
GRAPH_IN_PROGRESS = "in_progress"
GRAPH_BLOCKED = "blocked"
GRAPH_PENDING = "pending"

_PROGRESS_TO_GRAPH = {
    STATUS_COMPLETED: GRAPH_COMPLETE,
    STATUS_IN_PROGRESS: GRAPH_IN_PROGRESS,
    STATUS_BLOCKED: GRAPH_BLOCKED,
}


def to_graph_status(progress_status: str) -> str:
    """Translate a resolved progress status into the graph vocabulary."""
    return _PROGRESS_TO_GRAPH.get(progress_status, GRAPH_PENDING)


@dataclass(slots=True)
class GraphTask:
    """A task node as produced by the graph builder."""

    id: str
    name: str
    number: int
    path: str
    sequence_path: str
    phase_path: str
    parallel_group: int = 0
    status: str = GRAPH_PENDING
    dependencies: List[str] = field(default_factory=list)
    autonomy_level: str = ""

    @property
    def is_complete(self) -> bool:
        return self.status == GRAPH_COMPLETE


class TaskGraph:
    """Task nodes keyed by id, with the ready-set query the selector needs."""

    def __init__(self, tasks: Optional[Iterable[GraphTask]] = None):
        self.tasks: Dict[str, GraphTask] = {}
        for task in tasks or []:
            self.add_task(task)

    def add_task(self, task: GraphTask) -> None:
        """Add a node; an id that is already present keeps its first node."""
        self.tasks.setdefault(task.id, task)

    def get_task(self, task_id: str) -> Optional[GraphTask]:
        return self.tasks.get(task_id)

    def get_dependencies(self, task_id: str) -> List[GraphTask]:
        """Dependency nodes of ``task_id``; references to unknown ids are ignored."""
        task = self.tasks.get(task_id)
        if task is None:
            return []
        return [self.tasks[dep] for dep in task.dependencies if dep in self.tasks]

    def ready_tasks(self) -> List[GraphTask]:
        """Incomplete tasks whose dependencies are all complete, by number then id."""
        ready = [
            task
            for task in self.tasks.values()
            if not task.is_complete
            and all(dep.is_complete for dep in self.get_dependencies(task.id))
        ]
        ready.sort(key=lambda t: (t.number, t.id))
        return ready

    def all_complete(self) -> bool:
        return all(task.is_complete for task in self.tasks.values())

    def __len__(self) -> int:
        return len(self.tasks)

    def __iter__(self):
        return iter(self.tasks.values())


@runtime_checkable
class GraphResolver(Protocol):
    """What the selector needs from the graph builder."""

    def resolve_festival(self) -> TaskGraph:
        ...

    def resolve_sequence(self, seq_path: str) -> TaskGraph:
        ...


ResolverFactory = Callable[[Path], GraphResolver]


def load_resolver(spec: str, festival_path: Path | str) -> GraphResolver:
    """Import ``"package.module:factory"`` and call it with the festival root."""
    module_name, sep, attr = spec.partition(":")
    if not sep or not module_name or not attr:
        raise ValidationError("graph resolver must be given as 'module:attribute'",
                              op="load_resolver", value=spec)

    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise ValidationError("cannot import graph resolver module", op="load_resolver",
                              cause=e, value=spec) from e

    factory = getattr(module, attr, None)
    if factory is None or not callable(factory):
        raise ValidationError("graph resolver factory not found", op="load_resolver", value=spec)

    resolver = factory(Path(festival_path))
    if not isinstance(resolver, GraphResolver):
        raise ValidationError("object does not implement resolve_festival/resolve_sequence",
                              op="load_resolver", value=spec)
    return resolver
