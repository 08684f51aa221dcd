"""
Error types for etch.

Every user-facing failure is an EtchError carrying a category, a message,
an optional hint and the underlying cause. The category only affects how
the error is displayed.
"""

import sys

from rich.console import Console
from rich.markup import escape

CATEGORIES = ("config", "api", "parse", "project", "usage", "io")


class EtchError(Exception):
    """Base error with category, hint and cause."""

    category = "project"

    def __init__(self, message: str, category: str | None = None, hint: str | None = None,
                 cause: BaseException | None = None):
        if category is not None:
            if category not in CATEGORIES:
                raise ValueError(f"Unknown error category: {category}")
            self.category = category
        self.message = message
        self.hint = hint
        self.cause = cause
        super().__init__(message)
        if cause is not None:
            self.__cause__ = cause

    def __str__(self) -> str:
        if self.cause is not None:
            return f"{self.message}: {self.cause}"
        return self.message

    def with_hint(self, hint: str) -> "EtchError":
        self.hint = hint
        return self

    @classmethod
    def config(cls, message: str, cause: BaseException | None = None) -> "EtchError":
        return cls(message, "config", cause=cause)

    @classmethod
    def api(cls, message: str, cause: BaseException | None = None) -> "EtchError":
        return cls(message, "api", cause=cause)

    @classmethod
    def parse(cls, message: str, cause: BaseException | None = None) -> "EtchError":
        return cls(message, "parse", cause=cause)

    @classmethod
    def project(cls, message: str, cause: BaseException | None = None) -> "EtchError":
        return cls(message, "project", cause=cause)

    @classmethod
    def usage(cls, message: str, cause: BaseException | None = None) -> "EtchError":
        return cls(message, "usage", cause=cause)

    @classmethod
    def io(cls, message: str, cause: BaseException | None = None) -> "EtchError":
        return cls(message, "io", cause=cause)


class ParseError(EtchError):
    """Plan text has no '# Plan:' heading."""
    category = "parse"


class TaskNotFoundError(EtchError):
    """Targeted mutation could not find the task heading."""
    category = "project"


class CriterionNotFoundError(EtchError):
    """Targeted mutation could not find the criterion line."""
    category = "project"


class SectionNotFoundError(EtchError):
    """Session file is missing the section or metadata line being edited."""
    category = "io"


class SessionCollisionError(EtchError):
    """Could not claim a session file name after repeated collisions."""
    category = "io"


class NoEligibleTaskError(EtchError):
    """Auto-select found no pending task with satisfied dependencies."""
    category = "project"


def format_error(err: BaseException, verbose: bool = False) -> str:
    """Render an error as Rich markup."""
    if isinstance(err, EtchError):
        lines = [f"[bold red]error[/bold red][yellow]\\[{err.category}][/yellow]: {escape(err.message)}"]
        if err.hint:
            lines.append(f"[dim]  hint: {escape(err.hint)}[/dim]")
        if verbose and err.cause is not None:
            lines.append(f"[dim]  cause: {escape(str(err.cause))}[/dim]")
        return "\n".join(lines)
    return f"[bold red]error[/bold red]: {escape(str(err))}"


def render_error(err: BaseException, verbose: bool = False, console: Console | None = None) -> None:
    """Print a formatted error to stderr."""
    console = console or Console(file=sys.stderr, highlight=False)
    console.print(format_error(err, verbose))


def exit_code_for(err: BaseException) -> int:
    """Usage and config mistakes exit 2, everything else 1."""
    if isinstance(err, EtchError) and err.category in ("usage", "config"):
        return 2
    return 1
