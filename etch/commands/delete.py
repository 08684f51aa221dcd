"""
etch delete - Delete a plan with its progress and context files.
"""

from pathlib import Path

from etch.lib.config import context_dir, plans_dir, progress_dir
from etch.lib.errors import EtchError
from etch.lib.prompt import prompt_bool


def _related_files(directory: Path, slug: str) -> list[Path]:
    if not directory.exists():
        return []
    return sorted(directory.glob(f"{slug}--*.md"))


def cmd_delete(args, root: Path) -> int:
    """Delete a plan, asking first unless --yes."""
    slug = args.slug
    plan_path = plans_dir(root) / f"{slug}.md"
    if not plan_path.exists():
        raise EtchError.project(f"plan not found: {slug}").with_hint(
            "run 'etch list --all' to see available plans"
        )

    progress_files = _related_files(progress_dir(root), slug)
    context_files = _related_files(context_dir(root), slug)

    if not args.yes:
        print(f"Delete plan '{slug}'?")
        print(f"  Plan file: {plan_path}")
        if progress_files:
            print(f"  Progress files: {len(progress_files)}")
        if context_files:
            print(f"  Context files: {len(context_files)}")
        print()
        if not prompt_bool("Are you sure?"):
            print("Cancelled.")
            return 0

    try:
        plan_path.unlink()
        for path in progress_files + context_files:
            path.unlink(missing_ok=True)
    except OSError as e:
        raise EtchError.io(f"deleting plan {slug}", cause=e) from e

    print(f"Deleted plan '{slug}' ({len(progress_files)} progress files, "
          f"{len(context_files)} context files removed).")
    return 0
