"""
Line-array access to plan and session files.

Targeted edits work on a list of lines without their terminators. The
file's line ending is detected on read and used again on write, so a
CRLF file stays CRLF. A file mixing both endings is written back as CRLF.
"""

from pathlib import Path


def split_lines(content: str) -> tuple[list[str], str]:
    """Split text into lines and report its line ending."""
    newline = "\r\n" if "\r\n" in content else "\n"
    return [line.rstrip("\r") for line in content.split("\n")], newline


def join_lines(lines: list[str], newline: str = "\n") -> str:
    return newline.join(lines)


def read_lines(path: str | Path) -> tuple[list[str], str]:
    """Read a UTF-8 file as (lines, newline).

    Raises:
        OSError: the file cannot be read
        UnicodeDecodeError: the file is not valid UTF-8
    """
    with open(path, encoding="utf-8", newline="") as f:
        return split_lines(f.read())


def write_lines(path: str | Path, lines: list[str], newline: str = "\n") -> None:
    with open(path, "w", encoding="utf-8", newline="") as f:
        f.write(join_lines(lines, newline))
