"""
etch list - List plans.
"""

from pathlib import Path

from etch.lib import reconcile
from etch.commands.status import priority_tag, progress_bar


def cmd_list(args, root: Path) -> int:
    """List active plans, or every plan with --all. Plan files are not modified."""
    plans = reconcile.run(root, write=False)
    reconcile.sort_plan_statuses(plans)

    shown = plans if args.all else reconcile.filter_active(plans)
    if not shown:
        if plans:
            print("No active plans. Use 'etch list --all' to see all plans.")
        else:
            print("No plans found in .etch/plans/")
        return 0

    print("Plans" if args.all else "Active plans")
    print("-" * 60)
    for plan in shown:
        title = plan.title[:40] + "..." if len(plan.title) > 40 else plan.title
        print(
            f"  {priority_tag(plan.priority):<5} {plan.slug:<24} {title:<43} "
            f"{plan.completed_tasks}/{plan.total_tasks}  {progress_bar(plan.percentage)}"
        )
    print()

    if not args.all and len(shown) < len(plans):
        print(f"{len(plans) - len(shown)} inactive plan(s) hidden. Use --all to show them.")
    return 0
