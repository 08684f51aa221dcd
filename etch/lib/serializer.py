"""
Plan serializer for etch.

Two modes:

- serialize_plan() renders a whole Plan back to markdown that parse_plan()
  reads back to the same content.
- update_task_status(), update_criterion() and update_plan_priority() edit
  a stored plan file in place. They patch one line of the file's line
  array and leave every other byte untouched, so formatting written by a
  human or a model survives. There is no fallback to a full re-render.
"""

import logging
import re
from pathlib import Path
from typing import Callable

from etch.lib.errors import CriterionNotFoundError, EtchError, ParseError, TaskNotFoundError
from etch.lib.lines import read_lines, write_lines
from etch.lib.locking import LockTimeout, file_lock
from etch.lib.models import Plan, Status, Task
from etch.lib.parser import PLAN_HEADING_RE, PRIORITY_RE

logger = logging.getLogger(__name__)

TASK_LINE_RE = re.compile(r'^\s*###\s+Task\s+(\d+(?:\.\d+)?[a-z]?):')
STATUS_TOKEN_RE = re.compile(r'\[(\w+)\]\s*$')
CRITERION_LINE_RE = re.compile(r'^(\s*-\s+\[)([ xX])(\]\s+)(.+)$')
SECTION_HEADING_RE = re.compile(r'^\s*#{2,3}\s')
ANY_SUBHEADING_RE = re.compile(r'^\s*#{2,}\s')


# --- Full render ---

def _render_task(task: Task, single_feature: bool) -> list[str]:
    task_id = task.short_id if single_feature else task.full_id
    heading = f"### Task {task_id}: {task.title}"
    if task.status:
        heading += f" [{Status(task.status).value}]"
    lines = ["", heading]

    if task.complexity:
        lines.append(f"**Complexity:** {task.complexity}")
    if task.files:
        lines.append(f"**Files:** {', '.join(task.files)}")
    if task.depends_on:
        lines.append(f"**Depends on:** {', '.join(task.depends_on)}")

    if task.description:
        lines.append("")
        lines.append(task.description)

    for comment in task.comments:
        lines.append("")
        for i, comment_line in enumerate(comment.split("\n")):
            prefix = "> 💬 " if i == 0 else "> "
            lines.append(prefix + comment_line)

    if task.criteria:
        lines.append("")
        lines.append("**Acceptance Criteria:**")
        for criterion in task.criteria:
            check = "x" if criterion.is_met else " "
            lines.append(f"- [{check}] {criterion.description}")

    return lines


def serialize_plan(plan: Plan) -> str:
    """Render a Plan as plan markdown.

    Single-feature plans omit the '## Feature' heading and number their
    tasks '### Task N:'; multi-feature plans use dotted IDs and separate
    features with a horizontal rule.
    """
    lines = [f"# Plan: {plan.title}"]
    if plan.priority > 0:
        lines.append(f"**Priority:** {plan.priority}")

    if plan.overview:
        lines.extend(["", "## Overview", "", plan.overview])

    single_feature = plan.is_single_feature
    for feature in plan.features:
        if not single_feature:
            lines.extend(["", "---", "", f"## Feature {feature.number}: {feature.title}"])
            if feature.overview:
                lines.extend(["", "### Overview", feature.overview])

        for task in feature.tasks:
            lines.extend(_render_task(task, single_feature))

    return "\n".join(lines) + "\n"


def write_plan(plan: Plan, path: str | Path | None = None) -> Path:
    """Serialize a plan to disk (defaults to plan.file_path)."""
    target = Path(path or plan.file_path)
    if not str(target):
        raise EtchError.usage("plan has no file path to write to")
    target.write_text(serialize_plan(plan), encoding="utf-8")
    logger.info(f"Wrote plan {plan.slug or plan.title} to {target}")
    return target


# --- Targeted mutation ---

def _patch_lines(path: str | Path, patch: Callable[[list[str]], bool]) -> bool:
    """Read a file as a line array, apply patch, write back if it changed.

    Line endings and the presence or absence of a trailing newline are
    preserved exactly.
    """
    path = Path(path)
    try:
        with file_lock(path):
            lines, newline = read_lines(path)
            changed = patch(lines)
            if changed:
                write_lines(path, lines, newline)
    except LockTimeout as e:
        raise EtchError.io(f"rewriting plan file {path}", cause=e).with_hint(
            "another etch process is editing this plan; try again"
        ) from e
    except OSError as e:
        raise EtchError.io(f"rewriting plan file {path}", cause=e) from e
    except UnicodeDecodeError as e:
        raise EtchError.parse(f"plan file {path} is not valid UTF-8", cause=e) from e
    return changed


def _heading_ids(task_id: str) -> set[str]:
    """IDs a task's heading may use: dotted, plus bare N for feature 1."""
    ids = {task_id}
    if task_id.startswith("1."):
        ids.add(task_id[2:])
    return ids


def _find_task_heading(lines: list[str], task_id: str) -> int | None:
    ids = _heading_ids(task_id)
    for i, line in enumerate(lines):
        m = TASK_LINE_RE.match(line)
        if m and m.group(1) in ids:
            return i
    return None


def update_task_status(path: str | Path, task_id: str, new_status: Status) -> bool:
    """Rewrite the [status] token on a task heading.

    A heading without a status token gets one appended.

    Returns:
        True if the file changed, False if the status was already set.

    Raises:
        TaskNotFoundError: no heading for task_id
    """
    new_status = Status(new_status)

    def patch(lines: list[str]) -> bool:
        idx = _find_task_heading(lines, task_id)
        if idx is None:
            raise TaskNotFoundError(f"task {task_id} not found in {Path(path).name}")

        line = lines[idx]
        m = STATUS_TOKEN_RE.search(line)
        if m:
            if m.group(1) == new_status.value:
                return False
            lines[idx] = line[:m.start(1)] + new_status.value + line[m.end(1):]
        else:
            stripped = line.rstrip()
            lines[idx] = f"{stripped} [{new_status.value}]" + line[len(stripped):]
        return True

    changed = _patch_lines(path, patch)
    if changed:
        logger.info(f"Task {task_id} -> {new_status.value} in {Path(path).name}")
    return changed


def update_criterion(path: str | Path, task_id: str, criterion_text: str, met: bool) -> bool:
    """Set a criterion checkbox within one task's section.

    Matching is exact on the trimmed criterion text; fuzzy matching is the
    caller's job.

    Returns:
        True if the file changed, False if the checkbox already had that value.

    Raises:
        TaskNotFoundError: no heading for task_id
        CriterionNotFoundError: no checkbox line with that text in the task
    """
    def patch(lines: list[str]) -> bool:
        start = _find_task_heading(lines, task_id)
        if start is None:
            raise TaskNotFoundError(f"task {task_id} not found in {Path(path).name}")

        for i in range(start + 1, len(lines)):
            line = lines[i]
            if SECTION_HEADING_RE.match(line):
                break
            m = CRITERION_LINE_RE.match(line)
            if not m or m.group(4).strip() != criterion_text:
                continue
            check = "x" if met else " "
            if m.group(2).lower() == check:
                return False
            lines[i] = m.group(1) + check + line[m.end(2):]
            return True

        raise CriterionNotFoundError(f"criterion {criterion_text!r} not found in task {task_id}")

    changed = _patch_lines(path, patch)
    if changed:
        logger.info(f"Task {task_id} criterion {'checked' if met else 'unchecked'}: {criterion_text}")
    return changed


def update_plan_priority(path: str | Path, new_priority: int) -> bool:
    """Insert, replace or remove the '**Priority:** N' line under the plan title.

    Only lines between the title and the first subheading are considered.
    A priority of 0 removes the line.

    Returns:
        True if the file changed.

    Raises:
        ParseError: the file has no '# Plan:' heading
    """
    def patch(lines: list[str]) -> bool:
        title_idx = next((i for i, line in enumerate(lines) if PLAN_HEADING_RE.match(line)), None)
        if title_idx is None:
            raise ParseError(f"no '# Plan:' heading found in {Path(path).name}")

        priority_idx = None
        for i in range(title_idx + 1, len(lines)):
            if ANY_SUBHEADING_RE.match(lines[i]):
                break
            if PRIORITY_RE.match(lines[i]):
                priority_idx = i
                break

        new_line = f"**Priority:** {new_priority}"
        if priority_idx is None:
            if new_priority > 0:
                lines.insert(title_idx + 1, new_line)
                return True
            return False
        if new_priority > 0:
            if lines[priority_idx] == new_line:
                return False
            lines[priority_idx] = new_line
            return True
        del lines[priority_idx]
        return True

    changed = _patch_lines(path, patch)
    if changed:
        logger.info(f"Priority of {Path(path).name} set to {new_priority or 'unset'}")
    return changed
