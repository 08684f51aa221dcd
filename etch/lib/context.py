"""
Context prompt assembly.

A context file is a self-contained markdown prompt handed to a coding
agent: the plan in brief, where every task stands, the full task (or
feature) to work on, what earlier sessions did, and instructions for
filling in the session progress file created alongside it.

    .etch/context/<slug>--task-<id>--<NNN>.md
    .etch/context/<slug>--feature-<N>--<NNN>.md

NNN matches the session number of the progress file(s) created for the
same run.
"""

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path

from etch.lib import progress
from etch.lib.config import context_dir, load_config
from etch.lib.errors import EtchError
from etch.lib.models import Feature, Plan, SessionProgress, Status, Task
from etch.lib.resolver import (
    ProgressMap,
    effective_status,
    extract_task_id,
    feature_tasks,
    resolve_leading_dependency,
)

logger = logging.getLogger(__name__)

CHARS_PER_TOKEN = 3.5
TOKEN_WARNING_THRESHOLD = 80_000
OVERVIEW_SENTENCES = 3
SENTENCE_END_RE = re.compile(r'(?<=[.!?])')


@dataclass
class ContextResult:
    context_path: Path
    progress_path: Path
    session_number: int
    token_estimate: int


@dataclass
class FeatureContextResult:
    context_path: Path
    progress_paths: list[Path] = field(default_factory=list)
    session_number: int = 0
    token_estimate: int = 0


def estimate_tokens(text: str) -> int:
    return int(len(text) / CHARS_PER_TOKEN)


def condense_overview(overview: str, limit: int = OVERVIEW_SENTENCES) -> str:
    """First few sentences of an overview, joined on one line."""
    sentences = [s.strip() for s in SENTENCE_END_RE.split(overview) if s.strip()]
    return " ".join(sentences[:limit])


def _relative(root: Path, path: Path) -> str:
    try:
        return os.path.relpath(path, root)
    except ValueError:
        return str(path)


def _write_context(root: Path, filename: str, content: str) -> Path:
    directory = context_dir(root)
    path = directory / filename
    try:
        directory.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
    except OSError as e:
        raise EtchError.io(f"writing context file {filename}", cause=e) from e
    logger.info(f"Wrote context {path.name} (~{estimate_tokens(content)} tokens)")
    return path


# --- Sections ---

def _task_annotation(task: Task, current: set[str], status: Status) -> str:
    if task.full_id in current:
        return "(in_progress – this is your task)"
    if status == Status.PENDING and task.depends_on:
        deps = ", ".join(extract_task_id(d) for d in task.depends_on)
        return f"(pending, depends on {deps})"
    return f"({status.value})"


def _plan_header(plan: Plan, heading: str) -> list[str]:
    lines = [
        f"# Etch Context – {heading}",
        "",
        "You are working on part of an implementation plan managed by Etch.",
        "",
        f"## Plan: {plan.title}",
    ]
    overview = condense_overview(plan.overview)
    if overview:
        lines.append(overview)
    lines.append("")
    return lines


def _plan_state(plan: Plan, progress_map: ProgressMap, current: set[str]) -> list[str]:
    lines = ["## Current Plan State"]
    for feature in plan.features:
        lines.append(f"Feature {feature.number}: {feature.title}")
        for task in feature.tasks:
            status = effective_status(task, progress_map)
            annotation = _task_annotation(task, current, status)
            lines.append(f"  {status.icon} Task {task.full_id}: {task.title} {annotation}")
    lines.append("")
    return lines


def _task_details(plan: Plan, task: Task, progress_map: ProgressMap, heading_level: str,
                  complexity_guide: str = "") -> list[str]:
    """Metadata, description, merged criteria and review comments."""
    lines = []
    if task.complexity:
        lines.append(f"**Complexity:** {task.complexity}")
        if complexity_guide:
            lines.append(f"*Complexity guide: {complexity_guide}*")
    if task.files:
        lines.append(f"**Files in Scope:** {', '.join(task.files)}")
    if task.depends_on:
        parts = []
        for dep in task.depends_on:
            dep_task = resolve_leading_dependency(plan, dep)
            if dep_task is None:
                parts.append(dep)
            else:
                parts.append(f"{dep} ({effective_status(dep_task, progress_map).value})")
        lines.append(f"**Depends on:** {', '.join(parts)}")
    lines.append("")

    if task.description:
        lines.extend([task.description, ""])

    if task.criteria:
        met = set()
        for session in progress_map.get(task.full_id) or []:
            met |= session.met_criteria()
        lines.append(f"{heading_level} Acceptance Criteria")
        for criterion in task.criteria:
            check = "x" if criterion.is_met or criterion.description in met else " "
            lines.append(f"- [{check}] {criterion.description}")
        lines.append("")

    if task.comments:
        lines.append(f"{heading_level} Review Comments")
        for comment in task.comments:
            lines.extend([f"> 💬 {comment}", ""])

    return lines


def _previous_sessions(sessions: list[SessionProgress], before: int, heading_level: str) -> list[str]:
    prior = [s for s in sessions if s.session_number < before]
    if not prior:
        return [f"{heading_level} Previous Sessions", f"None – this is session {before:03d}.", ""]

    lines = [f"{heading_level} Previous Sessions"]
    for s in prior:
        lines.extend(["", f"**Session {s.session_number:03d} ({s.started}, {s.status}):**"])
        if s.changes_made:
            lines.append(f"Changes: {', '.join(s.changes_made)}")
        if s.decisions:
            lines.append(f"Decisions: {s.decisions}")
        if s.blockers:
            lines.append(f"Blockers: {s.blockers}")
        if s.next:
            lines.append(f"Next: {s.next}")
    lines.append("")
    return lines


def summarize_task(task: Task, progress_map: ProgressMap) -> str:
    """One-line summary of a task's latest session (changes and decisions)."""
    sessions = progress_map.get(task.full_id) or []
    if not sessions:
        return ""
    latest = sessions[-1]
    parts = []
    if latest.changes_made:
        parts.append(", ".join(latest.changes_made))
    if latest.decisions:
        parts.append(latest.decisions)
    return ". ".join(parts)


def completed_prerequisites(plan: Plan, task: Task, progress_map: ProgressMap) -> list[Task]:
    """Known dependencies of task whose effective status is completed."""
    done = []
    for dep in task.depends_on:
        dep_task = resolve_leading_dependency(plan, dep)
        if dep_task is None or dep_task in done:
            continue
        if effective_status(dep_task, progress_map) == Status.COMPLETED:
            done.append(dep_task)
    return done


def _prerequisites_section(prereqs: list[Task], progress_map: ProgressMap) -> list[str]:
    if not prereqs:
        return []
    lines = ["### Completed Prerequisites"]
    for dep_task in prereqs:
        lines.extend(["", f"**Task {dep_task.full_id} ({dep_task.title}):**"])
        summary = summarize_task(dep_task, progress_map)
        if summary:
            lines.append(summary)
    lines.append("")
    return lines


def _instructions(progress_paths: list[str]) -> list[str]:
    if len(progress_paths) == 1:
        lines = [
            "## Session Progress File",
            "",
            f"Update your progress file as you work:\n`{progress_paths[0]}`",
            "",
            "This file has been created for you. Fill in each section:",
        ]
    else:
        lines = [
            "## Session Progress Files",
            "",
            "Each task has its own progress file, listed under the task above.",
            "Fill in each section of a task's file as you finish it:",
        ]
    lines.extend([
        "- **Changes Made:** files created or modified",
        "- **Acceptance Criteria Updates:** check off what you completed",
        "- **Decisions & Notes:** design decisions, important context",
        "- **Blockers:** anything blocking progress",
        "- **Next:** what still needs to happen",
        "- **Status:** update to completed, partial, failed, or blocked",
        "",
        "Rules:",
        "- Stay within the files listed in scope. Ask before modifying others.",
        "- Do NOT modify the plan file. Only update progress files.",
        "- Keep notes concise but useful, future sessions depend on them.",
    ])
    return lines


# --- Assembly ---

def build_task_context(plan: Plan, task: Task, progress_map: ProgressMap,
                       session_number: int, progress_path: str, complexity_guide: str = "") -> str:
    lines = _plan_header(plan, "Implementation Task")
    lines.extend(_plan_state(plan, progress_map, {task.full_id}))
    lines.append(f"## Your Task: Task {task.full_id} – {task.title}")
    lines.extend(_task_details(plan, task, progress_map, "###", complexity_guide))
    lines.extend(_previous_sessions(progress_map.get(task.full_id) or [], session_number, "###"))
    lines.extend(_prerequisites_section(completed_prerequisites(plan, task, progress_map), progress_map))
    lines.extend(_instructions([progress_path]))
    return "\n".join(lines) + "\n"


def assemble(root: Path, plan: Plan, task: Task) -> ContextResult:
    """Create a session for task and write its context prompt.

    Raises:
        EtchError: (config) if .etch/config.yaml is malformed
        EtchError: (io) if the session or context file cannot be written
    """
    config = load_config(root)
    progress_map = progress.read_all(root, plan.slug)
    progress_path = progress.write_session(root, plan, task)
    session_number = progress.session_number_from_path(progress_path) or 1

    content = build_task_context(plan, task, progress_map, session_number,
                                 _relative(root, progress_path), config.complexity_guide)
    filename = f"{plan.slug}--task-{task.full_id}--{session_number:03d}.md"
    context_path = _write_context(root, filename, content)

    return ContextResult(
        context_path=context_path,
        progress_path=progress_path,
        session_number=session_number,
        token_estimate=estimate_tokens(content),
    )


def build_feature_context(plan: Plan, feature: Feature, tasks: list[Task], progress_map: ProgressMap,
                          sessions: dict[str, tuple[int, str]], complexity_guide: str = "") -> str:
    """Prompt for a whole feature. sessions maps task ID to (number, progress path)."""
    ids = {t.full_id for t in tasks}
    lines = _plan_header(plan, "Feature Implementation")
    lines.extend(_plan_state(plan, progress_map, ids))

    lines.append(f"## Your Feature: Feature {feature.number} – {feature.title}")
    if feature.overview:
        lines.extend(["", feature.overview])
    lines.extend([
        "",
        "Work through the tasks below in order. Each task depends only on the ones before it",
        "or on work that is already complete.",
        "",
    ])

    for task in tasks:
        number, path = sessions[task.full_id]
        lines.append(f"### Task {task.full_id} – {task.title}")
        lines.append(f"**Progress File:** `{path}`")
        lines.extend(_task_details(plan, task, progress_map, "####", complexity_guide))
        lines.extend(_previous_sessions(progress_map.get(task.full_id) or [], number, "####"))

    prereqs = []
    for task in tasks:
        for dep_task in completed_prerequisites(plan, task, progress_map):
            if dep_task.full_id not in ids and dep_task not in prereqs:
                prereqs.append(dep_task)
    lines.extend(_prerequisites_section(prereqs, progress_map))

    lines.extend(_instructions([path for _, path in sessions.values()]))
    return "\n".join(lines) + "\n"


def assemble_feature(root: Path, plan: Plan, feature: Feature) -> FeatureContextResult:
    """Create a session per ready task in feature and write one combined prompt.

    Raises:
        EtchError: (config) if .etch/config.yaml is malformed
        EtchError: (project) if no task in the feature is ready
        EtchError: (io) if a session or the context file cannot be written
    """
    config = load_config(root)
    progress_map = progress.read_all(root, plan.slug)
    tasks = feature_tasks(plan, feature, progress_map)
    if not tasks:
        raise EtchError.project(f"feature {feature.number} has no tasks ready to work on").with_hint(
            "run 'etch status' to see completed and blocked tasks"
        )

    result = FeatureContextResult(context_path=Path())
    sessions: dict[str, tuple[int, str]] = {}
    for task in tasks:
        progress_path = progress.write_session(root, plan, task)
        number = progress.session_number_from_path(progress_path) or 1
        sessions[task.full_id] = (number, _relative(root, progress_path))
        result.progress_paths.append(progress_path)
        result.session_number = max(result.session_number, number)

    content = build_feature_context(plan, feature, tasks, progress_map, sessions, config.complexity_guide)
    filename = f"{plan.slug}--feature-{feature.number}--{result.session_number:03d}.md"
    result.context_path = _write_context(root, filename, content)
    result.token_estimate = estimate_tokens(content)
    return result
