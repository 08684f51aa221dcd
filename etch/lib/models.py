"""
Document model for etch plans and session progress.

Plain data only. Parsing lives in parser.py, rendering and in-place edits
in serializer.py, session files in progress.py.
"""

from dataclasses import dataclass, field
from enum import Enum


class Status(str, Enum):
    """Lifecycle state of a task as recorded in the plan file."""
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    BLOCKED = "blocked"
    COMPLETED = "completed"
    FAILED = "failed"

    @classmethod
    def parse(cls, value: str | None) -> "Status":
        """Convert a status tag to Status, defaulting to pending."""
        try:
            return cls((value or "").strip())
        except ValueError:
            return cls.PENDING

    @property
    def icon(self) -> str:
        return STATUS_ICONS.get(self, "○")

    def __str__(self) -> str:
        return self.value


STATUS_ICONS = {
    Status.COMPLETED: "✓",
    Status.IN_PROGRESS: "▶",
    Status.PENDING: "○",
    Status.FAILED: "✗",
    Status.BLOCKED: "⊘",
}


class SessionStatus(str, Enum):
    """Outcome vocabulary written into session files.

    Not the same vocabulary as Status: "partial" has no plan-side
    equivalent and session files may hold free text.
    """
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    PARTIAL = "partial"
    COMPLETED = "completed"
    FAILED = "failed"
    BLOCKED = "blocked"

    def __str__(self) -> str:
        return self.value


SESSION_TO_PLAN_STATUS = {
    SessionStatus.COMPLETED.value: Status.COMPLETED,
    SessionStatus.PARTIAL.value: Status.IN_PROGRESS,
    SessionStatus.IN_PROGRESS.value: Status.IN_PROGRESS,
    SessionStatus.FAILED.value: Status.FAILED,
    SessionStatus.BLOCKED.value: Status.BLOCKED,
}


def map_session_status(session_status: str) -> Status | None:
    """Map a session outcome onto the plan status it implies.

    Returns None for "pending", blank or unrecognized outcomes: the session
    says nothing yet and the plan status stands.
    """
    return SESSION_TO_PLAN_STATUS.get((session_status or "").strip())


@dataclass
class Criterion:
    """A single acceptance criterion."""
    description: str
    is_met: bool = False

    def to_dict(self) -> dict:
        return {"description": self.description, "is_met": self.is_met}


@dataclass
class Task:
    """A unit of work, identified by feature.task[suffix]."""
    feature_number: int
    task_number: int
    title: str
    suffix: str = ""  # single lowercase letter, e.g. "b" in 1.3b
    status: Status = Status.PENDING
    complexity: str = ""  # free label, usually small/medium/large
    files: list[str] = field(default_factory=list)
    depends_on: list[str] = field(default_factory=list)  # free text, see resolver.extract_task_id
    description: str = ""
    criteria: list[Criterion] = field(default_factory=list)
    comments: list[str] = field(default_factory=list)

    @property
    def full_id(self) -> str:
        return f"{self.feature_number}.{self.task_number}{self.suffix}"

    @property
    def short_id(self) -> str:
        """ID used in single-feature plan headings (no feature prefix)."""
        return f"{self.task_number}{self.suffix}"

    def unmet_criteria(self) -> list[Criterion]:
        return [c for c in self.criteria if not c.is_met]

    def to_dict(self) -> dict:
        data = {
            "feature_number": self.feature_number,
            "task_number": self.task_number,
            "title": self.title,
            "status": self.status.value,
            "complexity": self.complexity,
            "files": list(self.files),
            "depends_on": list(self.depends_on),
            "description": self.description,
            "criteria": [c.to_dict() for c in self.criteria],
            "comments": list(self.comments),
        }
        if self.suffix:
            data["suffix"] = self.suffix
        return data


@dataclass
class Feature:
    """A numbered group of tasks within a plan."""
    number: int
    title: str
    overview: str = ""
    tasks: list[Task] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "number": self.number,
            "title": self.title,
            "overview": self.overview,
            "tasks": [t.to_dict() for t in self.tasks],
        }


@dataclass
class Plan:
    """One implementation plan document.

    file_path and slug are set when the plan is loaded from disk; the slug
    (filename without .md) is the stable identity used by session files.
    """
    title: str
    overview: str = ""
    priority: int = 0  # 0 = unset
    features: list[Feature] = field(default_factory=list)
    file_path: str = ""
    slug: str = ""

    @property
    def is_single_feature(self) -> bool:
        return len(self.features) == 1

    def iter_tasks(self):
        """Yield every task in document order."""
        for feature in self.features:
            yield from feature.tasks

    def task_by_id(self, task_id: str) -> Task | None:
        for task in self.iter_tasks():
            if task.full_id == task_id:
                return task
        return None

    def feature_by_number(self, number: int) -> Feature | None:
        for feature in self.features:
            if feature.number == number:
                return feature
        return None

    def to_dict(self) -> dict:
        return {
            "title": self.title,
            "overview": self.overview,
            "priority": self.priority,
            "features": [f.to_dict() for f in self.features],
            "file_path": self.file_path,
            "slug": self.slug,
        }


@dataclass
class SessionProgress:
    """Contents of one session file."""
    plan_slug: str
    task_id: str = ""
    session_number: int = 0
    started: str = ""
    status: str = ""  # free string, see SessionStatus / map_session_status
    changes_made: list[str] = field(default_factory=list)
    criteria_updates: list[Criterion] = field(default_factory=list)
    decisions: str = ""
    blockers: str = ""
    next: str = ""
    path: str = ""

    def met_criteria(self) -> set[str]:
        return {c.description for c in self.criteria_updates if c.is_met}

    def to_dict(self) -> dict:
        return {
            "plan_slug": self.plan_slug,
            "task_id": self.task_id,
            "session_number": self.session_number,
            "started": self.started,
            "status": self.status,
            "changes_made": list(self.changes_made),
            "criteria_updates": [c.to_dict() for c in self.criteria_updates],
            "decisions": self.decisions,
            "blockers": self.blockers,
            "next": self.next,
        }
