"""Roll task statuses up into sequence, phase and festival completion figures."""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import List, Optional

from .cancellation import CancellationToken, ensure_token
from .errors import NotFoundError, StorageIOError
from .fest_logging import log_performance
from .frontmatter import is_tracked
from .models import (
    STATUS_BLOCKED,
    STATUS_COMPLETED,
    STATUS_IN_PROGRESS,
    AggregateProgress,
    FestivalProgress,
    PhaseProgress,
    SequenceProgress,
)
from .resolve import resolve_task_progress, resolve_task_status
from .store import ProgressStore

logger = logging.getLogger("fest.aggregate")

PHASE_PATTERN = re.compile(r"^\d{3}_")
SEQUENCE_PATTERN = re.compile(r"^\d{2}_")
TASK_PATTERN = re.compile(r"^\d{2}[._].*\.md$")


def _is_hidden(name: str) -> bool:
    return name.startswith(".") or name.startswith("_")


def is_phase_dir(path: Path) -> bool:
    return path.is_dir() and not _is_hidden(path.name) and bool(PHASE_PATTERN.match(path.name))


def is_sequence_dir(path: Path) -> bool:
    return path.is_dir() and not _is_hidden(path.name) and bool(SEQUENCE_PATTERN.match(path.name))


def is_task_file(path: Path) -> bool:
    """``01_name.md`` or ``01.5_name.md``; sequence goal documents are excluded."""
    name = path.name
    if _is_hidden(name) or name.startswith("SEQUENCE"):
        return False
    return path.is_file() and bool(TASK_PATTERN.match(name))


def list_entries(directory: Path) -> List[Path]:
    """Sorted children of ``directory``."""
    try:
        return sorted(directory.iterdir(), key=lambda p: p.name)
    except OSError as e:
        raise StorageIOError("listing directory", op="list_entries", cause=e, path=str(directory)) from e


def sequence_progress(
    store: ProgressStore, seq_path: Path | str, ctx: Optional[CancellationToken] = None
) -> SequenceProgress:
    """Count the tracked tasks of one sequence by resolved status."""
    token = ensure_token(ctx)
    token.check("sequence_progress")

    seq_path = Path(seq_path)
    aggregate = AggregateProgress()

    for entry in list_entries(seq_path):
        token.check("sequence_progress")
        if not is_task_file(entry):
            continue
        if not is_tracked(entry):
            logger.debug(f"Skipping untracked task: {entry}")
            continue

        aggregate.total += 1
        status = resolve_task_status(store, store.festival_path, entry)
        record = resolve_task_progress(store, store.festival_path, entry)

        if status == STATUS_COMPLETED:
            aggregate.completed += 1
        elif status == STATUS_IN_PROGRESS:
            aggregate.in_progress += 1
        elif status == STATUS_BLOCKED:
            aggregate.blocked += 1
            if record is not None and record.status == STATUS_BLOCKED:
                aggregate.blockers.append(record)
        else:
            aggregate.pending += 1

        # markdown carries no time data; minutes come from the record
        if record is not None:
            aggregate.time_spent_minutes += record.time_spent_minutes

    aggregate.compute_percentage()
    return SequenceProgress(sequence_id=seq_path.name, sequence_name=seq_path.name, progress=aggregate)


def phase_progress(
    store: ProgressStore, phase_path: Path | str, ctx: Optional[CancellationToken] = None
) -> PhaseProgress:
    """Sum the sequences of one phase."""
    token = ensure_token(ctx)
    token.check("phase_progress")

    phase_path = Path(phase_path)
    aggregate = AggregateProgress()
    sequences: List[SequenceProgress] = []

    for entry in list_entries(phase_path):
        token.check("phase_progress")
        if not is_sequence_dir(entry):
            continue
        try:
            seq = sequence_progress(store, entry, token)
        except StorageIOError as e:
            logger.warning(f"Skipping unreadable sequence {entry}: {e}")
            continue
        sequences.append(seq)
        aggregate.add(seq.progress)

    aggregate.compute_percentage()
    return PhaseProgress(
        phase_id=phase_path.name,
        phase_name=phase_path.name,
        progress=aggregate,
        sequences=sequences,
    )


@log_performance("festival_progress")
def festival_progress(
    store: ProgressStore, festival_path: Path | str | None = None, ctx: Optional[CancellationToken] = None
) -> FestivalProgress:
    """Sum every phase of the festival and attach the store's time metrics."""
    token = ensure_token(ctx)
    token.check("festival_progress")

    festival_path = Path(festival_path) if festival_path is not None else store.festival_path
    try:
        entries = list_entries(festival_path)
    except StorageIOError as e:
        raise NotFoundError("festival directory not readable", op="festival_progress",
                            cause=e, path=str(festival_path)) from e

    overall = AggregateProgress()
    phases: List[PhaseProgress] = []

    for entry in entries:
        token.check("festival_progress")
        if not is_phase_dir(entry):
            continue
        try:
            phase = phase_progress(store, entry, token)
        except StorageIOError as e:
            logger.warning(f"Skipping unreadable phase {entry}: {e}")
            continue
        phases.append(phase)
        overall.add(phase.progress)

    overall.compute_percentage()
    return FestivalProgress(
        festival_name=festival_path.name,
        overall=overall,
        phases=phases,
        time_metrics=store.time_metrics,
    )
