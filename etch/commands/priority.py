"""
etch priority - View or change plan priorities.

Lower numbers come first; plans without a priority sort last.
"""

from pathlib import Path

from etch.lib import serializer
from etch.lib.errors import EtchError
from etch.lib.models import Plan
from etch.lib.reconcile import sort_key
from etch.lib.resolver import discover_plans, find_plan


def sort_plans(plans: list[Plan]) -> list[Plan]:
    return sorted(plans, key=lambda p: sort_key(p.priority, p.title))


def print_priorities(root: Path) -> None:
    for plan in sort_plans(discover_plans(root)):
        tag = f"[{plan.priority}]" if plan.priority > 0 else "[ ]"
        print(f"{tag} {plan.title}")


def cmd_priority(args, root: Path) -> int:
    """List priorities, or set/unset one with --plan."""
    if not args.plan and not args.unset and args.set is None:
        print_priorities(root)
        return 0

    if not args.plan:
        raise EtchError.usage("missing --plan flag").with_hint(
            "usage: etch priority -p <plan-slug> --set <N>"
        )

    if args.unset:
        priority = 0
    elif args.set is None or args.set < 1:
        raise EtchError.usage("missing or invalid --set value").with_hint(
            "priority must be a positive integer (e.g. etch priority -p my-plan --set 1)"
        )
    else:
        priority = args.set

    plan = find_plan(discover_plans(root), args.plan)
    try:
        serializer.update_plan_priority(plan.file_path, priority)
    except EtchError as e:
        raise EtchError.io("updating plan priority", cause=e).with_hint(
            "check that the plan file is writable"
        ) from e

    if priority:
        print(f"Set priority of '{plan.slug}' to {priority}")
    else:
        print(f"Removed priority from '{plan.slug}'")
    print()
    print_priorities(root)
    return 0
