"""
Task resolution for etch.

Answers "which task?" for commands: explicit IDs ("1.2", "1.3b", or a bare
"2" in single-feature plans), or auto-selection of the next pending task
whose dependencies are done. Status is always the effective status, i.e.
the plan status overridden by the latest session outcome.
"""

import logging
import re
from pathlib import Path

from etch.lib import progress
from etch.lib.config import plans_dir
from etch.lib.errors import EtchError, NoEligibleTaskError
from etch.lib.models import Feature, Plan, SessionProgress, Status, Task, map_session_status
from etch.lib.parser import parse_plan_file

logger = logging.getLogger(__name__)

DOTTED_ID_RE = re.compile(r'^\d+\.\d+[a-z]?$')
BARE_ID_RE = re.compile(r'^\d+[a-z]?$')
DOTTED_ID_SEARCH_RE = re.compile(r'(\d+\.\d+[a-z]?)')
BARE_ID_SEARCH_RE = re.compile(r'(?:^|\D)(\d+[a-z]?)(?:\D|$)')

ProgressMap = dict[str, list[SessionProgress]]


# --- Dependency references ---

def extract_task_id(dep: str) -> str:
    """Leading token of a dependency reference, minus any 'Task ' prefix.

    'Task 1.2' -> '1.2', '1.2 (completed)' -> '1.2'.
    """
    dep = dep.strip()
    if dep.startswith("Task "):
        dep = dep[len("Task "):]
    parts = dep.split()
    return parts[0].rstrip(".,;:)") if parts else dep


def extract_dependency_id(dep: str, single_feature: bool = False) -> str:
    """Normalize a free-text dependency to a task ID, or '' if none found.

    Tries the leading token first, then any dotted ID in the text. In
    single-feature plans a bare number ('Task 2') means '1.2'.
    """
    if dep_id := leading_dependency_id(dep, single_feature):
        return dep_id
    if m := DOTTED_ID_SEARCH_RE.search(dep):
        return m.group(1)
    if single_feature:
        if m := BARE_ID_SEARCH_RE.search(dep):
            return f"1.{m.group(1)}"
    return ""


def leading_dependency_id(dep: str, single_feature: bool = False) -> str:
    """Task ID named by the leading token of a dependency, or ''.

    Unlike extract_dependency_id, IDs later in the text are ignored:
    'vendor contract (ref 1.1)' names no task.
    """
    token = extract_task_id(dep)
    if DOTTED_ID_RE.match(token):
        return token
    if single_feature and BARE_ID_RE.match(token):
        return f"1.{token}"
    return ""


def resolve_dependency(plan: Plan, dep: str) -> Task | None:
    """The task a dependency refers to, or None if it names no known task."""
    dep_id = extract_dependency_id(dep, plan.is_single_feature)
    return plan.task_by_id(dep_id) if dep_id else None


def resolve_leading_dependency(plan: Plan, dep: str) -> Task | None:
    """The task a dependency's leading token names, or None."""
    dep_id = leading_dependency_id(dep, plan.is_single_feature)
    return plan.task_by_id(dep_id) if dep_id else None


# --- Status ---

def effective_status(task: Task, progress_map: ProgressMap) -> Status:
    """Plan status, overridden by the latest session's outcome if it has one."""
    sessions = progress_map.get(task.full_id) or []
    if sessions:
        mapped = map_session_status(sessions[-1].status)
        if mapped is not None:
            return mapped
    return task.status


def dependencies_satisfied(plan: Plan, task: Task, progress_map: ProgressMap,
                           siblings_satisfied: bool = False) -> bool:
    """True if every dependency naming a known task is completed.

    Only the leading token of each reference is matched, and references
    naming no task never block. With siblings_satisfied, tasks
    in the same feature count as done (the feature runs as one unit).
    """
    for dep in task.depends_on:
        dep_task = resolve_leading_dependency(plan, dep)
        if dep_task is None:
            continue
        if siblings_satisfied and dep_task.feature_number == task.feature_number:
            continue
        if effective_status(dep_task, progress_map) != Status.COMPLETED:
            return False
    return True


# --- Discovery ---

def discover_plans(root: Path) -> list[Plan]:
    """Parse every plan in .etch/plans/, skipping files that fail to parse."""
    directory = plans_dir(root)
    paths = sorted(directory.glob("*.md")) if directory.exists() else []
    if not paths:
        raise EtchError.project(f"no plan files found in {directory}").with_hint(
            "add a plan markdown file to .etch/plans/"
        )

    plans = []
    for path in paths:
        try:
            plans.append(parse_plan_file(path))
        except EtchError as e:
            logger.warning(f"Skipping plan {path.name}: {e}")
    if not plans:
        raise EtchError.project(f"no valid plan files found in {directory}")
    return plans


def find_plan(plans: list[Plan], slug: str) -> Plan:
    for plan in plans:
        if plan.slug == slug:
            return plan
    raise EtchError.project(f"no plan found with slug {slug!r}").with_hint(
        "run 'etch list --all' to see available plans"
    )


# --- Resolution ---

def resolve_task_id(plan: Plan, task_id: str) -> Task | None:
    """Find a task by full ID, or by bare number in a single-feature plan."""
    task = plan.task_by_id(task_id)
    if task is not None:
        return task
    if plan.is_single_feature and BARE_ID_RE.match(task_id):
        return plan.task_by_id(f"1.{task_id}")
    return None


def eligible_tasks(plans: list[Plan], root: Path) -> list[tuple[Plan, Task]]:
    """Pending tasks with satisfied dependencies, in document order."""
    found = []
    for plan in plans:
        progress_map = progress.read_all(root, plan.slug)
        for task in plan.iter_tasks():
            if effective_status(task, progress_map) != Status.PENDING:
                continue
            if dependencies_satisfied(plan, task, progress_map):
                found.append((plan, task))
    return found


def auto_select_task(plans: list[Plan], root: Path) -> tuple[Plan, Task]:
    candidates = eligible_tasks(plans, root)
    if not candidates:
        raise NoEligibleTaskError("no pending tasks with satisfied dependencies").with_hint(
            "run 'etch status' to see what is blocked or in progress"
        )
    return candidates[0]


def needs_plan_picker(plans: list[Plan], root: Path) -> tuple[bool, list[Plan]]:
    """Whether auto-select would have to choose between plans.

    Returns (True, plans-with-eligible-work) when more than one plan has an
    eligible task, otherwise (False, []).
    """
    with_work: list[Plan] = []
    for plan, _ in eligible_tasks(plans, root):
        if plan not in with_work:
            with_work.append(plan)
    if len(with_work) <= 1:
        return False, []
    return True, with_work


def resolve_task(plans: list[Plan], plan_slug: str, task_id: str, root: Path) -> tuple[Plan, Task]:
    """Resolve (plan, task) from optional slug and optional task ID.

    Raises:
        EtchError: unknown slug or task ID
        NoEligibleTaskError: auto-select found nothing to do
    """
    candidates = [find_plan(plans, plan_slug)] if plan_slug else plans

    if not task_id:
        return auto_select_task(candidates, root)

    for plan in candidates:
        task = resolve_task_id(plan, task_id)
        if task is not None:
            return plan, task

    raise EtchError.project(f"task {task_id!r} not found").with_hint(
        "run 'etch status' to list task IDs"
    )


def resolve_feature(plans: list[Plan], plan_slug: str, number: int) -> tuple[Plan, Feature]:
    """Resolve (plan, feature) for feature-scoped work."""
    candidates = [find_plan(plans, plan_slug)] if plan_slug else plans

    matches = [(p, f) for p in candidates if (f := p.feature_by_number(number)) is not None]
    if not matches:
        raise EtchError.project(f"feature {number} not found")
    if len(matches) > 1:
        raise EtchError.usage(f"feature {number} exists in {len(matches)} plans").with_hint(
            "pass --plan to choose one"
        )
    return matches[0]


def feature_tasks(plan: Plan, feature: Feature, progress_map: ProgressMap) -> list[Task]:
    """Tasks of a feature still to do, whose outside dependencies are done."""
    ready = []
    for task in feature.tasks:
        if effective_status(task, progress_map) == Status.COMPLETED:
            continue
        if dependencies_satisfied(plan, task, progress_map, siblings_satisfied=True):
            ready.append(task)
        else:
            logger.info(f"Task {task.full_id} waits on a task outside feature {feature.number}")
    return ready
