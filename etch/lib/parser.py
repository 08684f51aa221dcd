"""
Plan markdown parser for etch.

Turns the plan dialect into a models.Plan with a single forward scan. The
scan is driven by a small section state machine (transitions library);
text accumulated for the current section is flushed into the model on
every state change, so no section can leak into the next one.

Only the plan dialect is understood:

    # Plan: <title>
    **Priority:** <n>
    ## Overview
    ## Feature <n>: <title>
    ### Overview
    ### Task <n>[.<m>][<suffix>]: <title> [<status>]

Anything malformed below the title degrades to defaults instead of failing.
"""

import logging
import re
from pathlib import Path

from transitions import Machine

from etch.lib.errors import EtchError, ParseError
from etch.lib.models import Criterion, Feature, Plan, Status, Task

logger = logging.getLogger(__name__)

PLAN_HEADING_RE = re.compile(r'^#\s+Plan:\s*(.+)$')
FEATURE_HEADING_RE = re.compile(r'^##\s+Feature\s+(\d+):\s*(.+)$')
OVERVIEW_H2_RE = re.compile(r'^##\s+Overview\s*$')
OVERVIEW_H3_RE = re.compile(r'^###\s+Overview\s*$')
TASK_HEADING_RE = re.compile(r'^###\s+Task\s+(\d+)(?:\.(\d+))?([a-z])?:\s*(.+)$')
STATUS_TAG_RE = re.compile(r'\[(\w+)\]\s*$')
SEPARATOR_RE = re.compile(r'^---+\s*$')
H2_RE = re.compile(r'^##\s+')
CODE_FENCE = "```"

PRIORITY_RE = re.compile(r'^\*\*Priority:\*\*\s*(\d+)\s*$')

COMPLEXITY_RE = re.compile(r'^\*\*Complexity:\*\*\s*(.+)$')
FILES_RE = re.compile(r'^\*\*Files(?:\s+in\s+Scope)?:\*\*\s*(.+)$')
DEPENDS_ON_RE = re.compile(r'^\*\*Depends\s+on:\*\*\s*(.+)$')
CRITERIA_HEADING_RE = re.compile(r'^\*\*Acceptance\s+Criteria:\*\*\s*$')
CRITERION_RE = re.compile(r'^-\s+\[([ xX])\]\s+(.+)$')
COMMENT_RE = re.compile(r'^>\s*💬\s*(.+)$')
COMMENT_CONT_RE = re.compile(r'^>\s*(.+)$')

STATES = [
    "init",              # before '# Plan:'
    "plan_level",        # after the title, before any ## heading
    "overview",          # inside '## Overview'
    "feature",           # feature body before its first task
    "feature_overview",  # inside '### Overview' of a feature
    "task",              # inside a task
    "other",             # inside an unrecognized ## section (swallowed)
]

TRANSITIONS = [
    {"trigger": "enter_plan", "source": "*", "dest": "plan_level"},
    {"trigger": "enter_overview", "source": "*", "dest": "overview"},
    {"trigger": "enter_feature", "source": "*", "dest": "feature"},
    {"trigger": "enter_feature_overview", "source": "*", "dest": "feature_overview"},
    {"trigger": "enter_task", "source": "*", "dest": "task"},
    {"trigger": "enter_other", "source": "*", "dest": "other"},
]

# States whose free text is collected into the buffer
TEXT_STATES = ("overview", "feature", "feature_overview", "task")


def split_list(value: str) -> list[str]:
    """Split a comma-separated metadata value, dropping empty entries."""
    return [item.strip() for item in value.split(",") if item.strip()]


def to_int(value: str) -> int:
    """Parse an integer, returning 0 for anything unparsable."""
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


class PlanBuilder:
    """Owns the Plan under construction and the section state machine.

    The current feature and task are held as object references (not list
    indices), so appending to the plan never invalidates them.
    """

    def __init__(self):
        self.plan = Plan(title="")
        self.feature: Feature | None = None
        self.task: Task | None = None
        self.buffer: list[str] = []
        self.in_comment = False
        self.saw_feature_heading = False

        self.machine = Machine(
            model=self,
            states=STATES,
            transitions=TRANSITIONS,
            initial="init",
            auto_transitions=False,
            before_state_change="flush",
        )

    def flush(self) -> None:
        """Commit buffered text to the section being left."""
        text = "\n".join(self.buffer).strip()
        self.buffer = []
        self.in_comment = False
        if not text:
            return

        if self.state == "overview":
            self.plan.overview = text
        elif self.state == "feature":
            # Text between a feature heading and its first task is its overview
            if self.feature is not None and not self.feature.overview:
                self.feature.overview = text
        elif self.state == "feature_overview":
            if self.feature is not None:
                self.feature.overview = text
        elif self.state == "task":
            if self.task is not None:
                self.task.description = text

    def set_title(self, title: str) -> None:
        self.enter_plan()
        self.plan.title = title.strip()

    def begin_overview(self) -> None:
        if self.saw_feature_heading:
            self.enter_other()
        else:
            self.enter_overview()

    def begin_feature(self, number: int, title: str) -> Feature:
        self.enter_feature()
        self.saw_feature_heading = True
        self.feature = Feature(number=number, title=title.strip())
        self.plan.features.append(self.feature)
        self.task = None
        return self.feature

    def begin_feature_overview(self) -> None:
        if self.feature is not None:
            self.enter_feature_overview()
        else:
            self.flush()

    def begin_task(self, feature_number: int, task_number: int, suffix: str,
                   title: str, status: Status) -> Task:
        self.enter_task()
        if self.feature is None:
            # Single-feature plan: the implicit feature mirrors the plan title
            self.feature = Feature(number=1, title=self.plan.title)
            self.plan.features.append(self.feature)
        self.task = Task(
            feature_number=feature_number,
            task_number=task_number,
            suffix=suffix,
            title=title,
            status=status,
        )
        self.feature.tasks.append(self.task)
        return self.task

    def begin_other(self) -> None:
        self.enter_other()
        self.task = None

    def add_text(self, line: str) -> None:
        if self.state in TEXT_STATES:
            self.buffer.append(line)

    def add_task_line(self, line: str) -> None:
        """Route a line inside a task to metadata, criteria, comments or description."""
        task = self.task
        if task is None:
            return

        if m := COMPLEXITY_RE.match(line):
            task.complexity = m.group(1).strip()
            return
        if m := FILES_RE.match(line):
            task.files.extend(split_list(m.group(1)))
            return
        if m := DEPENDS_ON_RE.match(line):
            task.depends_on.extend(split_list(m.group(1)))
            return
        if CRITERIA_HEADING_RE.match(line):
            return
        if m := CRITERION_RE.match(line):
            self.in_comment = False
            task.criteria.append(Criterion(
                description=m.group(2).strip(),
                is_met=m.group(1).lower() == "x",
            ))
            return
        if m := COMMENT_RE.match(line):
            self.in_comment = True
            task.comments.append(m.group(1).strip())
            return
        if self.in_comment:
            if m := COMMENT_CONT_RE.match(line):
                task.comments[-1] += "\n" + m.group(1).strip()
                return
            self.in_comment = False
        self.buffer.append(line)

    def finish(self) -> Plan:
        self.flush()
        if not self.plan.title:
            raise ParseError("invalid plan file: no '# Plan:' heading found")
        return self.plan


def parse_task_heading(match: re.Match) -> tuple[int, int, str, str, Status]:
    """Split a task heading match into (feature, task, suffix, title, status).

    '### Task N:' is the single-feature shorthand: N is the task number and
    the feature is always 1.
    """
    first = to_int(match.group(1))
    second = match.group(2)
    suffix = match.group(3) or ""
    title = match.group(4).strip()

    if second is not None:
        feature_number, task_number = first, to_int(second)
    else:
        feature_number, task_number = 1, first

    status = Status.PENDING
    tag = STATUS_TAG_RE.search(title)
    if tag:
        status = Status.parse(tag.group(1))
        title = STATUS_TAG_RE.sub("", title).strip()

    return feature_number, task_number, suffix, title, status


def parse_plan(text: str) -> Plan:
    """Parse plan markdown into a Plan.

    Raises:
        ParseError: if no '# Plan:' heading is present
    """
    builder = PlanBuilder()
    in_code_fence = False

    for line in text.splitlines():
        # Fenced code passes through verbatim; nothing inside is interpreted
        if line.strip().startswith(CODE_FENCE):
            in_code_fence = not in_code_fence
            builder.add_text(line)
            continue
        if in_code_fence:
            builder.add_text(line)
            continue

        if SEPARATOR_RE.match(line):
            continue

        if m := PLAN_HEADING_RE.match(line):
            builder.set_title(m.group(1))
            continue

        if OVERVIEW_H2_RE.match(line):
            builder.begin_overview()
            continue

        if m := FEATURE_HEADING_RE.match(line):
            builder.begin_feature(to_int(m.group(1)), m.group(2))
            continue

        if OVERVIEW_H3_RE.match(line):
            builder.begin_feature_overview()
            continue

        if m := TASK_HEADING_RE.match(line):
            builder.begin_task(*parse_task_heading(m))
            continue

        if H2_RE.match(line):
            builder.begin_other()
            continue

        # Priority only counts at plan level, never inside a task body
        if builder.state == "plan_level":
            if m := PRIORITY_RE.match(line):
                builder.plan.priority = to_int(m.group(1))
                continue

        if builder.state == "task":
            builder.add_task_line(line)
        else:
            builder.add_text(line)

    return builder.finish()


def slug_for_path(path: str | Path) -> str:
    """Slug is the plan filename without its .md extension."""
    name = Path(path).name
    return name[:-3] if name.endswith(".md") else name


def parse_plan_file(path: str | Path) -> Plan:
    """Read and parse a plan file, filling in file_path and slug."""
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise EtchError.io(f"opening plan file {path}", cause=e) from e
    except UnicodeDecodeError as e:
        raise EtchError.parse(f"plan file {path.name} is not valid UTF-8", cause=e) from e

    plan = parse_plan(text)
    plan.file_path = str(path)
    plan.slug = slug_for_path(path)
    logger.debug(f"Parsed plan {plan.slug}: {sum(len(f.tasks) for f in plan.features)} task(s)")
    return plan
