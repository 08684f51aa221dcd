"""
Session progress store for etch.

Each unit of work on a task is recorded in its own session file:

    .etch/progress/<slug>--task-<id>--<NNN>.md

Session numbers are claimed with exclusive file creation, so two etch
processes starting work on the same task never overwrite each other's
file. Under contention the numbers may skip; they are identifiers, not a
dense sequence.

Session files are created here and then edited in place (status line,
appended bullets, checked criteria). They are never deleted by this
module.
"""

import logging
import re
from datetime import datetime
from pathlib import Path

from etch.lib.config import progress_dir
from etch.lib.errors import CriterionNotFoundError, EtchError, SectionNotFoundError, SessionCollisionError
from etch.lib.lines import read_lines, write_lines
from etch.lib.models import Criterion, Plan, SessionProgress, SessionStatus, Task

logger = logging.getLogger(__name__)

MAX_CREATE_ATTEMPTS = 100
SESSION_NUMBER_RE = re.compile(r'--(\d+)\.md$')
CHECKBOX_ITEM_RE = re.compile(r'^\[[ xX]\]\s')

SECTION_CHANGES = "Changes Made"
SECTION_CRITERIA = "Acceptance Criteria Updates"
SECTION_DECISIONS = "Decisions & Notes"
SECTION_BLOCKERS = "Blockers"
SECTION_NEXT = "Next"

META_TASK = "**Task:**"
META_SESSION = "**Session:**"
META_STATUS = "**Status:**"
META_STARTED = "**Started:**"


def session_filename(plan_slug: str, task_id: str, session: int) -> str:
    return f"{plan_slug}--task-{task_id}--{session:03d}.md"


def session_number_from_path(path: str | Path) -> int:
    """Extract NNN from a '...--NNN.md' filename, 0 if absent."""
    m = SESSION_NUMBER_RE.search(Path(path).name)
    return int(m.group(1)) if m else 0


def _task_session_files(directory: Path, plan_slug: str, task_id: str) -> list[Path]:
    if not directory.exists():
        return []
    return sorted(directory.glob(f"{plan_slug}--task-{task_id}--*.md"))


def next_session_number(directory: Path, plan_slug: str, task_id: str) -> int:
    """One past the highest existing session number for plan+task."""
    numbers = [session_number_from_path(p) for p in _task_session_files(directory, plan_slug, task_id)]
    return max(numbers, default=0) + 1


def render_session(plan: Plan, task: Task, session: int, started: str | None = None) -> str:
    """Fresh session file: metadata, criteria snapshot, placeholder sections."""
    started = started or datetime.now().strftime("%Y-%m-%d %H:%M")
    lines = [
        f"# Session: Task {task.full_id} – {task.title}",
        f"**Plan:** {plan.slug}",
        f"{META_TASK} {task.full_id}",
        f"{META_SESSION} {session:03d}",
        f"{META_STARTED} {started}",
        f"{META_STATUS} {SessionStatus.PENDING.value}",
        "",
        f"## {SECTION_CHANGES}",
        "<!-- List files created or modified -->",
        "",
        f"## {SECTION_CRITERIA}",
    ]
    for criterion in task.criteria:
        check = "x" if criterion.is_met else " "
        lines.append(f"- [{check}] {criterion.description}")
    lines.extend([
        "",
        f"## {SECTION_DECISIONS}",
        "<!-- Design decisions, important context for future sessions -->",
        "",
        f"## {SECTION_BLOCKERS}",
        "<!-- Anything blocking progress -->",
        "",
        f"## {SECTION_NEXT}",
        "<!-- What still needs to happen -->",
    ])
    return "\n".join(lines) + "\n"


def write_session(root: Path, plan: Plan, task: Task) -> Path:
    """Create the next session file for a task and return its path.

    Raises:
        SessionCollisionError: every candidate name was taken
        EtchError: (io) on other filesystem errors
    """
    directory = progress_dir(root)
    try:
        directory.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise EtchError.io("creating progress directory", cause=e) from e

    number = next_session_number(directory, plan.slug, task.full_id)
    for _ in range(MAX_CREATE_ATTEMPTS):
        path = directory / session_filename(plan.slug, task.full_id, number)
        try:
            with open(path, "x", encoding="utf-8") as f:
                f.write(render_session(plan, task, number))
        except FileExistsError:
            logger.debug(f"Session {path.name} already exists, trying next number")
            number += 1
            continue
        except OSError as e:
            raise EtchError.io(f"creating progress file {path.name}", cause=e) from e
        logger.info(f"Created session {path.name}")
        return path

    raise SessionCollisionError(
        f"failed to create progress file for task {task.full_id} after {MAX_CREATE_ATTEMPTS} attempts"
    )


# --- Reading ---

def strip_comments(text: str) -> str:
    """Drop lines that are only an HTML comment (unedited placeholders)."""
    kept = []
    for line in text.split("\n"):
        stripped = line.strip()
        if stripped.startswith("<!--") and stripped.endswith("-->"):
            continue
        kept.append(line)
    return "\n".join(kept).strip()


def parse_list_items(text: str) -> list[str]:
    items = []
    for line in text.split("\n"):
        line = line.strip()
        if not line.startswith("- "):
            continue
        item = line[2:]
        if CHECKBOX_ITEM_RE.match(item) or item.startswith("<!--"):
            continue
        items.append(item)
    return items


def parse_criteria(text: str) -> list[Criterion]:
    criteria = []
    for line in text.split("\n"):
        line = line.strip()
        if line.startswith(("- [x] ", "- [X] ")):
            criteria.append(Criterion(description=line[6:].strip(), is_met=True))
        elif line.startswith("- [ ] "):
            criteria.append(Criterion(description=line[6:].strip(), is_met=False))
    return criteria


def parse_session(text: str, plan_slug: str) -> SessionProgress:
    """Parse session file text.

    Raises:
        EtchError: (parse) if the file has no **Task:** line
    """
    session = SessionProgress(plan_slug=plan_slug)
    section = ""
    body: list[str] = []

    def flush_section() -> None:
        raw = "\n".join(body)
        text = strip_comments(raw)
        if section == SECTION_CHANGES.lower():
            session.changes_made = parse_list_items(raw)
        elif section == SECTION_CRITERIA.lower():
            session.criteria_updates = parse_criteria(raw)
        elif section == SECTION_DECISIONS.lower():
            session.decisions = text
        elif section == SECTION_BLOCKERS.lower():
            session.blockers = text
        elif section == SECTION_NEXT.lower():
            session.next = text
        body.clear()

    for line in text.splitlines():
        if line.startswith(META_TASK):
            session.task_id = line[len(META_TASK):].strip()
            continue
        if line.startswith(META_SESSION):
            value = line[len(META_SESSION):].strip()
            m = re.match(r'\d+', value)
            session.session_number = int(m.group(0)) if m else 0
            continue
        if line.startswith(META_STATUS):
            session.status = line[len(META_STATUS):].strip()
            continue
        if line.startswith(META_STARTED):
            session.started = line[len(META_STARTED):].strip()
            continue

        if line.startswith("## "):
            flush_section()
            section = line[3:].strip().lower()
            continue

        if section:
            body.append(line)

    flush_section()

    if not session.task_id:
        raise EtchError.parse("missing task ID")
    return session


def parse_session_file(path: str | Path, plan_slug: str) -> SessionProgress:
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise EtchError.io(f"reading progress file {path.name}", cause=e) from e
    except UnicodeDecodeError as e:
        raise EtchError.parse(f"progress file {path.name} is not valid UTF-8", cause=e) from e
    session = parse_session(text, plan_slug)
    if not session.session_number:
        session.session_number = session_number_from_path(path)
    session.path = str(path)
    return session


def read_all(root: Path, plan_slug: str) -> dict[str, list[SessionProgress]]:
    """All sessions for a plan, grouped by task ID, sorted by session number.

    Files that fail to parse are logged and skipped; they may be mid-edit.
    """
    directory = progress_dir(root)
    result: dict[str, list[SessionProgress]] = {}
    if not directory.exists():
        return result

    for path in sorted(directory.glob(f"{plan_slug}--task-*.md")):
        try:
            session = parse_session_file(path, plan_slug)
        except EtchError as e:
            logger.warning(f"Skipping progress file {path.name}: {e}")
            continue
        result.setdefault(session.task_id, []).append(session)

    for sessions in result.values():
        sessions.sort(key=lambda s: s.session_number)
    return result


def find_latest_session_path(root: Path, plan_slug: str, task_id: str) -> tuple[Path, int]:
    """Path and number of the highest-numbered session for a task.

    Raises:
        EtchError: (project) if the task has no session yet
    """
    best: tuple[Path, int] | None = None
    for path in _task_session_files(progress_dir(root), plan_slug, task_id):
        number = session_number_from_path(path)
        if number and (best is None or number > best[1]):
            best = (path, number)
    if best is None:
        raise EtchError.project(f"no session file found for task {task_id}").with_hint(
            f"run 'etch progress start {task_id}' first to create a session"
        )
    return best


# --- In-place edits ---

def _read_lines(path: Path) -> tuple[list[str], str]:
    try:
        return read_lines(path)
    except OSError as e:
        raise EtchError.io(f"reading progress file {path.name}", cause=e) from e
    except UnicodeDecodeError as e:
        raise EtchError.parse(f"progress file {path.name} is not valid UTF-8", cause=e) from e


def _write_lines(path: Path, lines: list[str], newline: str) -> None:
    try:
        write_lines(path, lines, newline)
    except OSError as e:
        raise EtchError.io(f"writing progress file {path.name}", cause=e) from e


def _section_bounds(lines: list[str], section_name: str, path: Path) -> tuple[int, int]:
    """(header index, index of next '## ' header or len(lines))."""
    header = f"## {section_name}"
    start = next((i for i, line in enumerate(lines) if line.strip() == header), None)
    if start is None:
        raise SectionNotFoundError(f"section {section_name!r} not found in {path.name}")
    end = start + 1
    while end < len(lines) and not lines[end].strip().startswith("## "):
        end += 1
    return start, end


def append_to_section(path: str | Path, section_name: str, content: str) -> None:
    """Insert a line at the end of a section's content, before trailing blanks."""
    path = Path(path)
    lines, newline = _read_lines(path)
    start, insert_at = _section_bounds(lines, section_name, path)

    while insert_at > start + 1 and not lines[insert_at - 1].strip():
        insert_at -= 1

    lines.insert(insert_at, content)
    _write_lines(path, lines, newline)


def update_status(path: str | Path, new_status: str) -> None:
    """Replace the value on the **Status:** line."""
    path = Path(path)
    lines, newline = _read_lines(path)
    for i, line in enumerate(lines):
        if line.startswith(META_STATUS):
            lines[i] = f"{META_STATUS} {new_status}"
            _write_lines(path, lines, newline)
            return
    raise SectionNotFoundError(f"no {META_STATUS} line found in {path.name}")


def update_criterion(path: str | Path, criterion_text: str, met: bool = True) -> str:
    """Set a checkbox in the Acceptance Criteria Updates section.

    An exact description match wins; otherwise the first line containing
    criterion_text (case-insensitive) is used.

    Returns:
        The full description of the line that was matched.
    """
    path = Path(path)
    lines, newline = _read_lines(path)
    start, end = _section_bounds(lines, SECTION_CRITERIA, path)

    candidates = []
    for i in range(start + 1, end):
        m = re.match(r'^(\s*- \[)([ xX])(\] )(.+)$', lines[i])
        if m:
            candidates.append((i, m))

    needle = criterion_text.lower()
    chosen = next(((i, m) for i, m in candidates if m.group(4).strip() == criterion_text), None)
    if chosen is None:
        chosen = next(((i, m) for i, m in candidates if needle in m.group(4).lower()), None)
    if chosen is None:
        raise CriterionNotFoundError(f"criterion {criterion_text!r} not found in {path.name}")

    i, m = chosen
    lines[i] = m.group(1) + ("x" if met else " ") + lines[i][m.end(2):]
    _write_lines(path, lines, newline)
    return m.group(4).strip()
