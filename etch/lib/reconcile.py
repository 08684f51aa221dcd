"""
Reconciliation of session outcomes into plan files.

For each plan, the latest session of every task decides its status, and
any session that ever checked a criterion checks it in the plan. Criteria
are cumulative progress, so they only ever move from unmet to met here;
status is current state, so only the latest session counts.

All writes go through the serializer's targeted mutations. A plan that is
already in sync produces no writes, which makes reconciliation idempotent.
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path

from etch.lib import progress, serializer
from etch.lib.config import plans_dir
from etch.lib.errors import EtchError
from etch.lib.models import Criterion, Plan, SessionProgress, Status, map_session_status
from etch.lib.parser import parse_plan_file
from etch.lib.resolver import resolve_dependency
from etch.lib.validate import validate_output

logger = logging.getLogger(__name__)


@dataclass
class TaskStatus:
    """Reconciled view of one task."""
    id: str
    title: str
    status: Status
    depends_on: list[str] = field(default_factory=list)
    is_blocked: bool = False  # pending, with an unfinished known dependency
    session_count: int = 0
    last_outcome: str = ""
    criteria: list[Criterion] = field(default_factory=list)
    last_decisions: str = ""
    last_next: str = ""

    def to_dict(self) -> dict:
        data = {"id": self.id, "title": self.title, "status": self.status.value}
        if self.depends_on:
            data["depends_on"] = list(self.depends_on)
        if self.is_blocked:
            data["is_blocked"] = True
        data["session_count"] = self.session_count
        if self.last_outcome:
            data["last_outcome"] = self.last_outcome
        if self.criteria:
            data["criteria"] = [c.to_dict() for c in self.criteria]
        if self.last_decisions:
            data["last_decisions"] = self.last_decisions
        if self.last_next:
            data["last_next"] = self.last_next
        return data


@dataclass
class FeatureStatus:
    number: int
    title: str
    tasks: list[TaskStatus] = field(default_factory=list)

    @property
    def total_tasks(self) -> int:
        return len(self.tasks)

    @property
    def completed_tasks(self) -> int:
        return sum(1 for t in self.tasks if t.status == Status.COMPLETED)

    def to_dict(self) -> dict:
        return {
            "number": self.number,
            "title": self.title,
            "tasks": [t.to_dict() for t in self.tasks],
            "completed_tasks": self.completed_tasks,
            "total_tasks": self.total_tasks,
        }


@dataclass
class PlanStatus:
    """Reconciled view of one plan, as exposed by `etch status --json`."""
    title: str
    slug: str
    file_path: str
    priority: int = 0
    features: list[FeatureStatus] = field(default_factory=list)
    writes: int = 0  # plan-file mutations applied by this run; not serialized

    @property
    def total_tasks(self) -> int:
        return sum(f.total_tasks for f in self.features)

    @property
    def completed_tasks(self) -> int:
        return sum(f.completed_tasks for f in self.features)

    @property
    def percentage(self) -> int:
        if self.total_tasks == 0:
            return 0
        return self.completed_tasks * 100 // self.total_tasks

    @property
    def is_active(self) -> bool:
        """Work underway: a task in progress, failed or blocked, or partial completion."""
        for feature in self.features:
            for task in feature.tasks:
                if task.status in (Status.IN_PROGRESS, Status.FAILED, Status.BLOCKED):
                    return True
        return 0 < self.completed_tasks < self.total_tasks

    def to_dict(self) -> dict:
        return {
            "title": self.title,
            "slug": self.slug,
            "file_path": self.file_path,
            "priority": self.priority,
            "features": [f.to_dict() for f in self.features],
            "completed_tasks": self.completed_tasks,
            "total_tasks": self.total_tasks,
        }


def reconcile_plan(plan: Plan, progress_map: dict[str, list[SessionProgress]],
                   write: bool = True) -> PlanStatus:
    """Fold sessions into plan (file and in-memory copy) and build its status.

    With write=False the plan file is left untouched; only the in-memory
    copy and the returned status reflect the sessions.

    Raises:
        EtchError: (io) if a targeted mutation fails; earlier writes to this
            plan stay applied
    """
    plan_status = PlanStatus(
        title=plan.title,
        slug=plan.slug,
        file_path=plan.file_path,
        priority=plan.priority,
    )

    for feature in plan.features:
        feature_status = FeatureStatus(number=feature.number, title=feature.title)

        for task in feature.tasks:
            sessions = progress_map.get(task.full_id) or []
            task_status = TaskStatus(
                id=task.full_id,
                title=task.title,
                status=task.status,
                depends_on=list(task.depends_on),
                session_count=len(sessions),
                criteria=task.criteria,
            )

            if sessions:
                latest = sessions[-1]
                task_status.last_outcome = latest.status
                task_status.last_decisions = latest.decisions
                task_status.last_next = latest.next

                new_status = map_session_status(latest.status)
                if new_status is not None and new_status != task.status:
                    if write:
                        try:
                            serializer.update_task_status(plan.file_path, task.full_id, new_status)
                        except EtchError as e:
                            raise EtchError.io(f"updating task {task.full_id} status", cause=e) from e
                        logger.info(f"[reconcile] {plan.slug} {task.full_id}: {task.status.value} -> {new_status.value}")
                        plan_status.writes += 1
                    task.status = new_status
                    task_status.status = new_status

                met = set()
                for session in sessions:
                    met |= session.met_criteria()
                for criterion in task.criteria:
                    if criterion.is_met or criterion.description not in met:
                        continue
                    if write:
                        try:
                            serializer.update_criterion(plan.file_path, task.full_id, criterion.description, True)
                        except EtchError as e:
                            raise EtchError.io(f"updating criterion for task {task.full_id}", cause=e) from e
                        logger.info(f"[reconcile] {plan.slug} {task.full_id}: met '{criterion.description}'")
                        plan_status.writes += 1
                    criterion.is_met = True

            feature_status.tasks.append(task_status)

        plan_status.features.append(feature_status)

    resolve_blocked(plan, plan_status)
    return plan_status


def resolve_blocked(plan: Plan, plan_status: PlanStatus) -> None:
    """Flag pending tasks whose known dependencies are not all completed."""
    status_by_id = {t.id: t.status for f in plan_status.features for t in f.tasks}
    for feature_status in plan_status.features:
        for task_status in feature_status.tasks:
            if task_status.status != Status.PENDING:
                continue
            for dep in task_status.depends_on:
                dep_task = resolve_dependency(plan, dep)
                if dep_task is None:
                    continue
                if status_by_id.get(dep_task.full_id) != Status.COMPLETED:
                    task_status.is_blocked = True
                    break


def run(root: Path, plan_filter: str = "", write: bool = True) -> list[PlanStatus]:
    """Reconcile every plan under root (or only the slug in plan_filter).

    Unparseable plan files are skipped with a warning. With write=False
    statuses are computed without changing any plan file.

    Raises:
        EtchError: (io) naming the plan whose reconciliation failed; plans
            reconciled before it keep their changes
    """
    directory = plans_dir(root)
    if not directory.exists():
        return []

    results = []
    for path in sorted(directory.glob("*.md")):
        slug = path.stem
        if plan_filter and slug != plan_filter:
            continue

        try:
            plan = parse_plan_file(path)
        except EtchError as e:
            logger.warning(f"Skipping plan {path.name}: {e}")
            continue

        progress_map = progress.read_all(root, plan.slug)
        try:
            plan_status = reconcile_plan(plan, progress_map, write)
        except EtchError as e:
            raise EtchError.io(f"reconciling {plan.slug}", cause=e) from e

        if plan_status.writes:
            logger.info(f"[reconcile] {plan.slug}: {plan_status.writes} change(s) written")
        results.append(plan_status)

    return results


def filter_active(plans: list[PlanStatus]) -> list[PlanStatus]:
    return [p for p in plans if p.is_active]


def sort_key(priority: int, title: str) -> tuple:
    """Priority ascending with unset (0) last, then title."""
    return (priority == 0, priority, title)


def sort_plan_statuses(plans: list[PlanStatus]) -> None:
    plans.sort(key=lambda p: sort_key(p.priority, p.title))


def to_json(plans: list[PlanStatus]) -> str:
    """The `status --json` payload, validated against the status schema."""
    data = [p.to_dict() for p in plans]
    validate_output(data, "status", "stdout")
    return json.dumps(data, indent=2, ensure_ascii=False)
