"""Planning and research phases: objectives instead of tasks.

Objectives are checklist items in the phase goal document, grouped by the
heading they appear under ("Questions to Answer", "Decisions to Make",
"Artifacts to Produce", ...).
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import List

from .frontmatter import PHASE_GOAL_FILE
from .models import PlanningObjective, PlanningPhaseResult, PlanningProgress

logger = logging.getLogger("fest.selector")

CATEGORY_QUESTION = "question"
CATEGORY_DECISION = "decision"
CATEGORY_ARTIFACT = "artifact"
CATEGORY_OBJECTIVE = "objective"

_SECTION = re.compile(r"^###?\s*(Questions?|Decisions?|Artifacts?|Objectives?)")
_CHECKBOX = re.compile(r"^[-*]\s*\[([ xX])\]\s*(.+)")
_SECTION_OPENERS = ("planning objectives", "objectives to achieve")
_SECTION_KEYWORDS = ("planning", "question", "decision", "artifact", "objective")


def _category_for(section_name: str) -> str:
    name = section_name.lower()
    for category in (CATEGORY_QUESTION, CATEGORY_DECISION, CATEGORY_ARTIFACT):
        if name.startswith(category):
            return category
    return CATEGORY_OBJECTIVE


def parse_objectives(content: str) -> List[PlanningObjective]:
    """Collect checklist objectives from goal document text."""
    objectives: List[PlanningObjective] = []
    category = ""
    in_section = False

    for line in content.splitlines():
        lowered = line.lower()

        if any(opener in lowered for opener in _SECTION_OPENERS):
            in_section = True
            continue

        match = _SECTION.match(line)
        if match:
            in_section = True
            category = _category_for(match.group(1))
            continue

        # a top-level heading unrelated to planning closes the section
        if line.startswith("## ") and not any(word in lowered for word in _SECTION_KEYWORDS):
            in_section = False

        if not in_section:
            continue

        match = _CHECKBOX.match(line)
        if match:
            objectives.append(PlanningObjective(
                category=category or CATEGORY_OBJECTIVE,
                text=match.group(2).strip(),
                resolved=match.group(1) != " ",
            ))

    return objectives


def parse_planning_objectives(goal_path: Path | str) -> List[PlanningObjective]:
    """Objectives from a goal document; unreadable documents yield none."""
    try:
        content = Path(goal_path).read_text(encoding="utf-8", errors="replace")
    except OSError as e:
        logger.debug(f"No planning objectives in {goal_path}: {e}")
        return []
    return parse_objectives(content)


def build_planning_result(phase_path: Path | str, phase_type: str) -> PlanningPhaseResult:
    """Summarize a planning phase's objectives and graduation readiness."""
    phase_path = Path(phase_path)
    objectives = parse_planning_objectives(phase_path / PHASE_GOAL_FILE)

    total = len(objectives)
    resolved = sum(1 for objective in objectives if objective.resolved)
    percentage = resolved / total * 100 if total > 0 else 0.0

    return PlanningPhaseResult(
        phase_name=phase_path.name,
        phase_path=str(phase_path),
        phase_type=phase_type,
        objectives=objectives,
        progress=PlanningProgress(
            total_objectives=total,
            resolved_objectives=resolved,
            percentage=percentage,
        ),
        graduation_ready=total > 0 and resolved == total,
    )


def planning_reason(result: PlanningPhaseResult) -> str:
    if result.graduation_ready:
        return "Planning complete, all objectives resolved; ready to graduate to an implementation phase"
    return "Planning phase - review objectives and explore"
