"""
etch status - Reconcile sessions into plans and show progress.
"""

from pathlib import Path

from etch.lib import reconcile
from etch.lib.models import Status
from etch.lib.reconcile import FeatureStatus, PlanStatus, TaskStatus

BAR_WIDTH = 10
PLAN_SEPARATOR = "─" * 40


def progress_bar(pct: int) -> str:
    filled = min(pct // 10, BAR_WIDTH)
    return f"[{'█' * filled}{'░' * (BAR_WIDTH - filled)}] {pct}%"


def priority_tag(priority: int) -> str:
    return f"[{priority}]" if priority > 0 else "[ ]"


def feature_icon(feature: FeatureStatus) -> str:
    if feature.total_tasks and feature.completed_tasks == feature.total_tasks:
        return Status.COMPLETED.icon
    if feature.completed_tasks:
        return Status.IN_PROGRESS.icon
    for task in feature.tasks:
        if task.status in (Status.IN_PROGRESS, Status.FAILED, Status.BLOCKED):
            return task.status.icon
    return Status.PENDING.icon


def task_icon(task: TaskStatus) -> str:
    """Pending tasks waiting on a dependency show the blocked icon."""
    if task.is_blocked:
        return Status.BLOCKED.icon
    return task.status.icon


def _plan_heading(plan: PlanStatus) -> list[str]:
    return [
        f"📋 {priority_tag(plan.priority)} {plan.title}  {progress_bar(plan.percentage)}",
        f"  slug: {plan.slug}",
    ]


def format_summary(plans: list[PlanStatus]) -> str:
    if not plans:
        return "No plans found.\n"

    lines = []
    for i, plan in enumerate(plans):
        if i > 0:
            lines.extend(["", PLAN_SEPARATOR, ""])
        lines.extend(_plan_heading(plan))
        for feature in plan.features:
            lines.append(
                f"   {feature_icon(feature)} Feature {feature.number}: {feature.title} "
                f"[{feature.completed_tasks}/{feature.total_tasks} tasks]"
            )
            for task in feature.tasks:
                line = f"      {task_icon(task)} {task.id:<6} {task.title}"
                if task.session_count and task.status != Status.COMPLETED:
                    line += f" ({task.session_count} sessions, last: {task.last_outcome})"
                lines.append(line)
    return "\n".join(lines) + "\n"


def format_detailed(plan: PlanStatus) -> str:
    """One plan with criteria, blockers and the latest session notes."""
    lines = _plan_heading(plan)
    lines.append("")

    for feature in plan.features:
        lines.append(
            f"{feature_icon(feature)} Feature {feature.number}: {feature.title} "
            f"[{feature.completed_tasks}/{feature.total_tasks} tasks]"
        )
        for task in feature.tasks:
            line = f"  {task_icon(task)} {task.id:<6} {task.title}"
            if task.session_count:
                line += f" ({task.session_count} sessions, last: {task.last_outcome})"
            lines.extend(["", line])

            if task.is_blocked and task.depends_on:
                lines.append(f"    Waiting on: {', '.join(task.depends_on)}")
            for criterion in task.criteria:
                check = "[x]" if criterion.is_met else "[ ]"
                lines.append(f"    {check} {criterion.description}")
            if task.last_decisions:
                lines.append(f"    Notes: {task.last_decisions}")
            if task.last_next:
                lines.append(f"    Next: {task.last_next}")
        lines.append("")
    return "\n".join(lines) + "\n"


def cmd_status(args, root: Path) -> int:
    """Reconcile and show plan status."""
    plan_filter = args.slug or ""
    plans = reconcile.run(root, plan_filter)
    reconcile.sort_plan_statuses(plans)

    if args.json:
        print(reconcile.to_json(plans))
        return 0

    if plan_filter and not plans:
        print(f"ERROR: Plan '{plan_filter}' not found")
        print("  Use 'etch list --all' to see available plans")
        return 1

    if plan_filter and len(plans) == 1:
        print(format_detailed(plans[0]), end="")
    else:
        print(format_summary(plans), end="")
    return 0
