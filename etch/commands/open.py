"""
etch open - Open a plan file in $EDITOR.
"""

import os
import subprocess
from pathlib import Path

from etch.lib.config import plans_dir
from etch.lib.errors import EtchError

DEFAULT_EDITOR = "vi"


def cmd_open(args, root: Path) -> int:
    """Open the plan in $EDITOR and return the editor's exit code."""
    plan_path = plans_dir(root) / f"{args.slug}.md"
    if not plan_path.exists():
        raise EtchError.project(f"plan not found: {args.slug}").with_hint(
            "run 'etch list --all' to see available plans"
        )

    editor = os.environ.get("EDITOR") or DEFAULT_EDITOR
    try:
        result = subprocess.run([editor, str(plan_path)])
    except FileNotFoundError as e:
        raise EtchError.config(f"editor not found: {editor}", cause=e).with_hint(
            "set the EDITOR environment variable to an installed editor"
        ) from e
    return result.returncode
