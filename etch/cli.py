#!/usr/bin/env python3
"""etch CLI entrypoint."""

import sys
import argparse
import logging

from etch.lib.config import find_project_root
from etch.lib.errors import EtchError, NoEligibleTaskError, exit_code_for, render_error
from etch.lib.validate import ValidationError
from etch.commands import status as cmd_status_module
from etch.commands import list as cmd_list_module
from etch.commands import progress as cmd_progress_module
from etch.commands import priority as cmd_priority_module
from etch.commands import context as cmd_context_module
from etch.commands import delete as cmd_delete_module
from etch.commands import open as cmd_open_module


def cmd_status(args):
    return cmd_status_module.cmd_status(args, find_project_root())


def cmd_list(args):
    return cmd_list_module.cmd_list(args, find_project_root())


def cmd_progress(args):
    handlers = {
        'start': cmd_progress_module.cmd_progress_start,
        'update': cmd_progress_module.cmd_progress_update,
        'done': cmd_progress_module.cmd_progress_done,
        'criteria': cmd_progress_module.cmd_progress_criteria,
        'block': cmd_progress_module.cmd_progress_block,
        'fail': cmd_progress_module.cmd_progress_fail,
    }
    return handlers[args.action](args, find_project_root())


def cmd_priority(args):
    return cmd_priority_module.cmd_priority(args, find_project_root())


def cmd_context(args):
    return cmd_context_module.cmd_context(args, find_project_root())


def cmd_delete(args):
    return cmd_delete_module.cmd_delete(args, find_project_root())


def cmd_open(args):
    return cmd_open_module.cmd_open(args, find_project_root())


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='etch', description='Implementation plans and session progress')
    parser.add_argument('--verbose', '-v', action='store_true', help='Debug logging and error causes')
    subparsers = parser.add_subparsers(dest='command', required=True)

    # etch status
    p_status = subparsers.add_parser('status', help='Reconcile sessions and show plan progress')
    p_status.add_argument('slug', nargs='?', help='Plan slug (all plans if omitted)')
    p_status.add_argument('--json', action='store_true', help='Output JSON')
    p_status.set_defaults(func=cmd_status)

    # etch list
    p_list = subparsers.add_parser('list', help='List plans (read-only, plan files are not reconciled)')
    p_list.add_argument('--all', '-a', action='store_true', help='Include inactive plans')
    p_list.set_defaults(func=cmd_list)

    # etch progress
    p_progress = subparsers.add_parser('progress', help='Report progress on a task')
    progress_sub = p_progress.add_subparsers(dest='action', required=True)

    # etch progress start
    p_start = progress_sub.add_parser('start', help='Mark a task as in progress')
    p_start.add_argument('ids', nargs='*', metavar='[plan-slug] task-id')
    p_start.set_defaults(func=cmd_progress)

    # etch progress update
    p_update = progress_sub.add_parser('update', help='Log a progress update for a task')
    p_update.add_argument('ids', nargs='*', metavar='[plan-slug] task-id')
    p_update.add_argument('--message', '-m', required=True, help='Update message')
    p_update.set_defaults(func=cmd_progress)

    # etch progress done
    p_done = progress_sub.add_parser('done', help='Mark a task as completed')
    p_done.add_argument('ids', nargs='*', metavar='[plan-slug] task-id')
    p_done.set_defaults(func=cmd_progress)

    # etch progress criteria
    p_criteria = progress_sub.add_parser('criteria', help='Check off acceptance criteria')
    p_criteria.add_argument('ids', nargs='*', metavar='[plan-slug] task-id')
    p_criteria.add_argument('--check', action='append', required=True,
                            help='Criterion text (repeatable)')
    p_criteria.set_defaults(func=cmd_progress)

    # etch progress block / fail
    for action, help_text in (('block', 'Mark a task as blocked'), ('fail', 'Mark a task as failed')):
        p_stop = progress_sub.add_parser(action, help=help_text)
        p_stop.add_argument('ids', nargs='*', metavar='[plan-slug] task-id')
        p_stop.add_argument('--reason', required=True, help=f'Reason the task is {action}ed')
        p_stop.set_defaults(func=cmd_progress)

    # etch priority
    p_priority = subparsers.add_parser('priority', help='View or change plan priorities')
    p_priority.add_argument('--plan', '-p', help='Plan slug')
    group = p_priority.add_mutually_exclusive_group()
    group.add_argument('--set', type=int, help='Priority (positive, lower runs first)')
    group.add_argument('--unset', action='store_true', help='Remove the priority')
    p_priority.set_defaults(func=cmd_priority)

    # etch context
    p_context = subparsers.add_parser('context', help='Assemble a context prompt for a coding agent')
    p_context.add_argument('--plan', '-p', help='Plan slug')
    p_context.add_argument('--task', '-t', help='Task ID (e.g. 1.2); auto-selected if omitted')
    p_context.add_argument('--feature', '-f', type=int, help='Feature number, for a whole feature')
    p_context.set_defaults(func=cmd_context)

    # etch delete
    p_delete = subparsers.add_parser('delete', help='Delete a plan and its progress files')
    p_delete.add_argument('slug', help='Plan slug')
    p_delete.add_argument('--yes', '-y', action='store_true', help='Skip confirmation')
    p_delete.set_defaults(func=cmd_delete)

    # etch open
    p_open = subparsers.add_parser('open', help='Open a plan file in $EDITOR')
    p_open.add_argument('slug', help='Plan slug')
    p_open.set_defaults(func=cmd_open)

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format='%(levelname)s %(name)s: %(message)s',
    )

    try:
        return args.func(args)
    except NoEligibleTaskError as e:
        print(f"Nothing to do: {e.message}")
        if e.hint:
            print(f"  {e.hint}")
        return 0
    except (EtchError, ValidationError) as e:
        render_error(e, verbose=args.verbose)
        return exit_code_for(e)


if __name__ == '__main__':
    sys.exit(main())
