"""
etch progress - Report progress on a task from the command line.

Each subcommand changes the task in the plan file (targeted mutation) and
mirrors the change into the task's latest session file.
"""

import logging
from datetime import datetime
from pathlib import Path

from etch.lib import progress, serializer
from etch.lib.errors import CriterionNotFoundError, EtchError
from etch.lib.models import Plan, SessionStatus, Status, Task
from etch.lib.resolver import discover_plans, resolve_task

logger = logging.getLogger(__name__)


def _usage(action: str, extra: str = "") -> str:
    return f"usage: etch progress {action} [plan-slug] <task-id>{extra}"


def resolve_target(args, root: Path, extra: str = "") -> tuple[Plan, Task]:
    """(plan, task) from the 1 or 2 positional arguments."""
    ids = list(args.ids or [])
    if not ids:
        raise EtchError.usage("task ID is required").with_hint(_usage(args.action, extra))
    if len(ids) > 2:
        raise EtchError.usage("too many arguments").with_hint(_usage(args.action, extra))
    plan_slug, task_id = (ids[0], ids[1]) if len(ids) == 2 else ("", ids[0])
    return resolve_task(discover_plans(root), plan_slug, task_id, root)


def set_plan_status(plan: Plan, task: Task, status: Status) -> None:
    try:
        serializer.update_task_status(plan.file_path, task.full_id, status)
    except EtchError as e:
        raise EtchError.io("updating task status", cause=e).with_hint(
            f"could not update task {task.full_id} in {plan.file_path}"
        ) from e
    task.status = status


def latest_session(root: Path, plan: Plan, task: Task) -> Path:
    path, _ = progress.find_latest_session_path(root, plan.slug, task.full_id)
    return path


def cmd_progress_start(args, root: Path) -> int:
    """Mark a task in progress, reusing its latest session or creating one."""
    plan, task = resolve_target(args, root)
    set_plan_status(plan, task, Status.IN_PROGRESS)

    sessions = progress.read_all(root, plan.slug).get(task.full_id)
    if sessions and sessions[-1].path:
        session_path = Path(sessions[-1].path)
        number = sessions[-1].session_number
    else:
        session_path = progress.write_session(root, plan, task)
        number = progress.session_number_from_path(session_path)

    progress.update_status(session_path, SessionStatus.IN_PROGRESS.value)
    print(f"Task {task.full_id} started (session {number:03d})")
    return 0


def cmd_progress_update(args, root: Path) -> int:
    """Log a timestamped entry under Changes Made."""
    plan, task = resolve_target(args, root, ' -m "text"')
    session_path = latest_session(root, plan, task)

    entry = f"- [{datetime.now().strftime('%H:%M')}] {args.message}"
    progress.append_to_section(session_path, progress.SECTION_CHANGES, entry)
    print(f"Logged update for Task {task.full_id}")
    return 0


def cmd_progress_done(args, root: Path) -> int:
    """Mark a task completed and warn about unchecked criteria."""
    plan, task = resolve_target(args, root)
    set_plan_status(plan, task, Status.COMPLETED)

    met = set()
    try:
        session_path = latest_session(root, plan, task)
    except EtchError:
        logger.debug(f"No session for task {task.full_id}, plan file updated only")
    else:
        progress.update_status(session_path, SessionStatus.COMPLETED.value)
        for session in progress.read_all(root, plan.slug).get(task.full_id, []):
            met |= session.met_criteria()

    print(f"Task {task.full_id} completed")
    unchecked = [c for c in task.unmet_criteria() if c.description not in met]
    if unchecked:
        print(f"Warning: {len(unchecked)} unchecked acceptance criteria:")
        for criterion in unchecked:
            print(f"  - [ ] {criterion.description}")
    return 0


def check_criterion(plan: Plan, task: Task, text: str) -> str | None:
    """Check off one criterion; returns the matched description or None.

    Exact text first, then a case-insensitive substring of an unmet one.
    """
    try:
        serializer.update_criterion(plan.file_path, task.full_id, text, True)
        return text
    except CriterionNotFoundError:
        pass

    needle = text.lower()
    for criterion in task.unmet_criteria():
        if needle in criterion.description.lower():
            serializer.update_criterion(plan.file_path, task.full_id, criterion.description, True)
            return criterion.description
    return None


def mirror_criterion(root: Path, plan: Plan, task: Task, description: str) -> None:
    """Check the criterion in the latest session file too, if there is one."""
    try:
        session_path = latest_session(root, plan, task)
        progress.update_criterion(session_path, description)
    except EtchError as e:
        logger.debug(f"Session not updated for '{description}': {e}")


def cmd_progress_criteria(args, root: Path) -> int:
    """Check off acceptance criteria by text."""
    plan, task = resolve_target(args, root, ' --check "text"')

    matched = 0
    unmatched = []
    for text in args.check:
        description = check_criterion(plan, task, text)
        if description is None:
            print(f"  ✗ {text} (no match)")
            unmatched.append(text)
            continue

        for criterion in task.criteria:
            if criterion.description == description:
                criterion.is_met = True
        mirror_criterion(root, plan, task, description)
        if description == text:
            print(f"  ✓ {text}")
        else:
            print(f"  ✓ {text} (matched: {description})")
        matched += 1

    print(f"Checked {matched}/{len(args.check)} criteria for Task {task.full_id}")
    if unmatched:
        print(f"ERROR: {len(unmatched)} criteria did not match")
        print("  Check the criterion text matches what's in the plan")
        return 1
    return 0


def _stop_task(args, root: Path, status: Status, session_status: SessionStatus, verb: str) -> int:
    plan, task = resolve_target(args, root, ' --reason "text"')
    set_plan_status(plan, task, status)

    session_path = latest_session(root, plan, task)
    progress.update_status(session_path, session_status.value)
    progress.append_to_section(session_path, progress.SECTION_BLOCKERS, f"- {args.reason}")

    print(f"Task {task.full_id} {verb}: {args.reason}")
    return 0


def cmd_progress_block(args, root: Path) -> int:
    """Mark a task blocked and record why."""
    return _stop_task(args, root, Status.BLOCKED, SessionStatus.BLOCKED, "blocked")


def cmd_progress_fail(args, root: Path) -> int:
    """Mark a task failed and record why."""
    return _stop_task(args, root, Status.FAILED, SessionStatus.FAILED, "failed")
