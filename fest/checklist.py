"""Derive task status from checklist markers in task documents.

The checklist text is the ground truth for completion. Markers found under
a recognized status heading ("Definition of Done", "Requirements", ...)
take precedence; when no such section has markers, every marker in the
document counts.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Tuple

from .models import STATUS_COMPLETED, STATUS_IN_PROGRESS, STATUS_PENDING

logger = logging.getLogger("fest.checklist")

_CHECKED_BOX = re.compile(r"^\s*[-*]\s*\[(x|X)\]")
_UNCHECKED_BOX = re.compile(r"^\s*[-*]\s*\[\s*\]")
_EMOJI_DONE = re.compile(r"\[✅\]")  # [✅]
_EMOJI_STARTED = re.compile(r"\[\U0001F6A7\]")  # [🚧]
_EMOJI_BLOCKED = re.compile(r"\[❌\]")  # [❌]

# Lowercased substrings; a heading containing any of them opens a status section.
STATUS_SECTIONS = (
    "definition of done",
    "requirements",
    "acceptance criteria",
    "deliverables",
    "checklist",
)


@dataclass(slots=True)
class CheckboxCounts:
    checked: int = 0
    unchecked: int = 0

    @property
    def total(self) -> int:
        return self.checked + self.unchecked

    def status(self) -> str:
        return status_from_counts(self)


def parse_header(line: str) -> Tuple[int, str]:
    """Return ``(level, text)`` for a markdown heading, ``(0, "")`` otherwise."""
    stripped = line.lstrip(" \t")
    if not stripped.startswith("#"):
        return 0, ""
    level = len(stripped) - len(stripped.lstrip("#"))
    if level > 6:
        return 0, ""
    return level, stripped.lstrip("#").strip()


def classify_marker(line: str) -> int:
    """1 for a checked marker, 0 for an unchecked one, -1 when the line has none."""
    if _CHECKED_BOX.match(line):
        return 1
    if _UNCHECKED_BOX.match(line):
        return 0
    if _EMOJI_DONE.search(line):
        return 1
    if _EMOJI_STARTED.search(line) or _EMOJI_BLOCKED.search(line):
        # started or blocked items are not done
        return 0
    return -1


def _is_status_heading(text: str) -> bool:
    lowered = text.lower()
    return any(section in lowered for section in STATUS_SECTIONS)


def count_checkboxes(lines: Iterable[str]) -> Tuple[CheckboxCounts, CheckboxCounts]:
    """Count markers in one pass.

    Returns ``(priority, fallback)``: markers under status headings, and
    markers anywhere in the document. A status section ends at the next
    heading of the same or higher level that is not itself a status heading.
    """
    priority = CheckboxCounts()
    fallback = CheckboxCounts()
    in_section = False
    section_level = 0

    for line in lines:
        level, text = parse_header(line)
        if level:
            if _is_status_heading(text):
                in_section = True
                section_level = level
            elif in_section and level <= section_level:
                in_section = False
            continue

        mark = classify_marker(line)
        if mark < 0:
            continue

        if mark:
            fallback.checked += 1
        else:
            fallback.unchecked += 1
        if in_section:
            if mark:
                priority.checked += 1
            else:
                priority.unchecked += 1

    return priority, fallback


def status_from_counts(counts: CheckboxCounts) -> str:
    """completed when all checked, in_progress when some, pending otherwise."""
    if counts.total == 0:
        return STATUS_PENDING
    if counts.checked == counts.total:
        return STATUS_COMPLETED
    if counts.checked > 0:
        return STATUS_IN_PROGRESS
    return STATUS_PENDING


def status_from_content(content: str) -> str:
    """Derive a status from raw task text."""
    priority, fallback = count_checkboxes(content.splitlines())
    if priority.total > 0:
        return status_from_counts(priority)
    return status_from_counts(fallback)


def parse_task_status(task_path: Path | str) -> str:
    """Read a task document and derive its status.

    A missing or unreadable file yields ``pending``.
    """
    path = Path(task_path)
    try:
        content = path.read_text(encoding="utf-8", errors="replace")
    except OSError as e:
        logger.debug(f"Treating unreadable task file as pending: {path} ({e})")
        return STATUS_PENDING
    return status_from_content(content)
