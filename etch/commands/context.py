"""
etch context - Assemble a context prompt for a coding agent.
"""

import os
from pathlib import Path

from etch.lib import context
from etch.lib.errors import EtchError
from etch.lib.models import Plan
from etch.lib.prompt import prompt_choice
from etch.lib.resolver import discover_plans, needs_plan_picker, resolve_feature, resolve_task


def pick_plan(root: Path, plans: list[Plan], slug: str) -> str:
    """Ask which plan to use when auto-select could pick from several."""
    if slug or len(plans) <= 1:
        return slug
    ambiguous, candidates = needs_plan_picker(plans, root)
    if not ambiguous:
        return slug
    return prompt_choice("Which plan?", [(p.slug, p.slug) for p in candidates])


def _print_footer(root: Path, context_path: Path, token_estimate: int, unit: str) -> None:
    print(f"  Token estimate: ~{token_estimate // 1000}k tokens")
    print()
    if token_estimate > context.TOKEN_WARNING_THRESHOLD:
        print(f"  ⚠ Warning: context exceeds 80K tokens, consider trimming the plan overview "
              f"or splitting the {unit}.")
        print()
    print("  Ready to run:")
    print(f"    cat {os.path.relpath(context_path, root)} | claude")


def cmd_context(args, root: Path) -> int:
    """Assemble context for one task (default) or a whole feature (--feature)."""
    if args.task and args.feature is not None:
        raise EtchError.usage("--feature and --task are mutually exclusive").with_hint(
            "use --feature to target an entire feature, or --task for a single task"
        )

    plans = discover_plans(root)
    slug = pick_plan(root, plans, args.plan or "")

    if args.feature is not None:
        plan, feature = resolve_feature(plans, slug, args.feature)
        result = context.assemble_feature(root, plan, feature)
        print(f"Context assembled for Feature {feature.number} – {feature.title} "
              f"({len(result.progress_paths)} tasks, session {result.session_number:03d})")
        print()
        print(f"  Context file:  {os.path.relpath(result.context_path, root)}")
        _print_footer(root, result.context_path, result.token_estimate, "feature")
        return 0

    plan, task = resolve_task(plans, slug, args.task or "", root)
    result = context.assemble(root, plan, task)
    print(f"Context assembled for Task {task.full_id} – {task.title} "
          f"(session {result.session_number:03d})")
    print()
    print(f"  Context file:  {os.path.relpath(result.context_path, root)}")
    print(f"  Progress file: {os.path.relpath(result.progress_path, root)}")
    _print_footer(root, result.context_path, result.token_estimate, "task")
    return 0
