"""Leading metadata blocks in task and goal documents.

Documents may open with a YAML block delimited by ``---`` lines. Only the
keys that affect progress tracking are interpreted here: ``tracking`` on
task documents and ``fest_phase_type`` on phase goal documents.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import yaml

from .errors import ParseError

logger = logging.getLogger("fest.frontmatter")

DELIMITER = "---"
PHASE_GOAL_FILE = "PHASE_GOAL.md"
PHASE_TYPE_KEY = "fest_phase_type"
TRACKING_KEY = "tracking"

PHASE_TYPE_PLANNING = "planning"
PHASE_TYPE_RESEARCH = "research"
PHASE_TYPE_IMPLEMENTATION = "implementation"
PLANNING_PHASE_TYPES = (PHASE_TYPE_PLANNING, PHASE_TYPE_RESEARCH)


def split_frontmatter(content: str) -> Tuple[Optional[str], str]:
    """Split ``content`` into its raw metadata block and the remaining body.

    Returns ``(None, content)`` when there is no block or it is never closed.
    """
    stripped = content.lstrip()
    if not stripped.startswith(DELIMITER):
        return None, content

    lines = stripped.splitlines()
    if lines[0].strip() != DELIMITER:
        return None, content

    for index in range(1, len(lines)):
        if lines[index].strip() == DELIMITER:
            block = "\n".join(lines[1:index])
            body = "\n".join(lines[index + 1:])
            return block, body
    return None, content


def parse_frontmatter(content: str) -> Optional[Dict[str, Any]]:
    """Parse the metadata block of ``content``.

    Returns ``None`` when the document has no block. Raises ``ParseError``
    when the block is not a YAML mapping.
    """
    block, _ = split_frontmatter(content)
    if block is None:
        return None
    try:
        data = yaml.safe_load(block)
    except yaml.YAMLError as e:
        raise ParseError("malformed metadata block", op="parse_frontmatter", cause=e) from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ParseError("metadata block is not a mapping", op="parse_frontmatter",
                         found=type(data).__name__)
    return data


def read_frontmatter(path: Path | str) -> Dict[str, Any]:
    """Read a document's metadata; any failure yields an empty mapping."""
    try:
        content = Path(path).read_text(encoding="utf-8", errors="replace")
        return parse_frontmatter(content) or {}
    except (OSError, ParseError) as e:
        logger.debug(f"Ignoring metadata of {path}: {e}")
        return {}


def is_tracked(path: Path | str) -> bool:
    """Whether a task document counts toward progress.

    Only an explicit ``tracking: false`` opts out.
    """
    value = read_frontmatter(path).get(TRACKING_KEY)
    return value is not False


def read_phase_type(phase_path: Path | str) -> str:
    """Declared type of a phase, from its goal document."""
    meta = read_frontmatter(Path(phase_path) / PHASE_GOAL_FILE)
    phase_type = meta.get(PHASE_TYPE_KEY)
    if not phase_type:
        return PHASE_TYPE_IMPLEMENTATION
    return str(phase_type).strip().lower()


def is_planning_phase_type(phase_type: str) -> bool:
    return phase_type in PLANNING_PHASE_TYPES
