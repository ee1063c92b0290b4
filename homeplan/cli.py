#!/usr/bin/env python3
"""homeplan CLI entrypoint."""

import argparse
import logging
import signal
import sys
from contextlib import contextmanager

from homeplan.agents.dispatch import CancelToken, CommandDispatcher, DispatchError
from homeplan.agents.models_config import load_models_config, missing_binaries
from homeplan.commands import chat as cmd_chat_module
from homeplan.commands import project as cmd_project_module
from homeplan.commands import suggestions as cmd_suggestions_module
from homeplan.commands import task as cmd_task_module
from homeplan.lib.config import load_config
from homeplan.lib.locking import LockCancelled, LockTimeout
from homeplan.lib.prompts import PromptError
from homeplan.store import NotFoundError, StoreError, create_store
from homeplan.workflow.engine import PlanningEngine, PlanSchemaError
from homeplan.workflow.state_machine import InvalidTransition

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_USER_ERROR = 1
EXIT_CONFIG_ERROR = 2
EXIT_MODEL_ERROR = 3


def build_engine(args) -> PlanningEngine:
    config = load_config(args.state_dir)
    models_config = load_models_config(config.state_dir)
    for binary, call_sites in missing_binaries(models_config).items():
        logger.warning(f"Model command '{binary}' not found on PATH (used by {', '.join(call_sites)})")
    dispatcher = CommandDispatcher(models_config, timeout=config.dispatch_timeout)
    return PlanningEngine(create_store(config), dispatcher, config)


def resolve_project_id(args, engine: PlanningEngine) -> str:
    """Project from --project, or the only stored project."""
    if args.project:
        return args.project

    projects = engine.store.list_projects()
    if len(projects) == 1:
        return projects[0]
    if not projects:
        raise NotFoundError("project", "(none yet - run 'homeplan init-project')")
    print("ERROR: Multiple projects found. Use --project to specify one:")
    for p in projects:
        print(f"  {p}")
    sys.exit(EXIT_USER_ERROR)


@contextmanager
def interrupt_cancels(token: CancelToken):
    """Route Ctrl-C to the cancel token for the whole command.

    Model calls and conversation-lock waits both poll the token.
    """
    original = signal.signal(signal.SIGINT, lambda *_: token.cancel())
    try:
        yield token
    finally:
        signal.signal(signal.SIGINT, original)


def run(args) -> int:
    """Build the engine, run the selected command, map failures to exit codes."""
    try:
        engine = build_engine(args)
    except (ValueError, OSError) as e:
        print(f"ERROR: Configuration: {e}", file=sys.stderr)
        return EXIT_CONFIG_ERROR

    try:
        with interrupt_cancels(CancelToken()) as token:
            return args.func(args, engine, token)
    except LockCancelled:
        print("Cancelled, nothing saved.")
        return EXIT_OK
    except (DispatchError, PlanSchemaError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return EXIT_MODEL_ERROR
    except (NotFoundError, InvalidTransition, LockTimeout, ValueError, IndexError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return EXIT_USER_ERROR
    except (StoreError, PromptError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return EXIT_CONFIG_ERROR


def _with_project(func):
    """Adapt a command taking project_id to the (args, engine, token) signature."""
    def wrapper(args, engine, token):
        return func(args, engine, resolve_project_id(args, engine), token)
    return wrapper


def main(argv=None):
    parser = argparse.ArgumentParser(prog='homeplan', description='Conversational renovation planner')
    parser.add_argument('--state-dir', '-d', help='State directory (default: $HOMEPLAN_STATE_DIR)')
    parser.add_argument('--project', '-p', help='Project ID')
    parser.add_argument('--verbose', '-v', action='store_true', help='Debug logging')
    subparsers = parser.add_subparsers(dest='command', required=True)

    # homeplan init-project
    p_init = subparsers.add_parser('init-project', help='Create a project')
    p_init.add_argument('name', help='Project (property) name')
    p_init.add_argument('--room', '-r', action='append', default=[], help='Room name (repeatable)')
    p_init.add_argument('--user', '-u', default='', help='Owner user ID')
    p_init.set_defaults(func=cmd_project_module.cmd_init_project)

    # homeplan rooms add
    p_rooms = subparsers.add_parser('rooms', help='Manage rooms')
    rooms_sub = p_rooms.add_subparsers(dest='rooms_cmd', required=True)
    p_rooms_add = rooms_sub.add_parser('add', help='Add a room')
    p_rooms_add.add_argument('name', help='Room name')
    p_rooms_add.add_argument('--photo', action='append', default=[], help='Photo URL (repeatable)')
    p_rooms_add.set_defaults(func=_with_project(cmd_project_module.cmd_rooms_add))

    # homeplan chat project|task
    p_chat = subparsers.add_parser('chat', help='Talk to the assistant')
    chat_sub = p_chat.add_subparsers(dest='chat_cmd', required=True)

    p_chat_project = chat_sub.add_parser('project', help='Project chat (vision, task suggestions)')
    p_chat_project.add_argument('message', help='Your message')
    p_chat_project.add_argument('--image', action='append', default=[], help='Attach an image file (repeatable)')
    p_chat_project.set_defaults(func=_with_project(cmd_chat_module.cmd_chat_project))

    p_chat_task = chat_sub.add_parser('task', help='Task chat (planning, supervision)')
    p_chat_task.add_argument('task', help='Task ID')
    p_chat_task.add_argument('message', help='Your message')
    p_chat_task.add_argument('--image', action='append', default=[], help='Attach an image file (repeatable)')
    p_chat_task.set_defaults(func=_with_project(cmd_chat_module.cmd_chat_task))

    # homeplan suggestions accept|dismiss
    p_sugg = subparsers.add_parser('suggestions', help='Act on task suggestions')
    p_sugg.set_defaults(func=_with_project(cmd_suggestions_module.cmd_suggestions_list))
    sugg_sub = p_sugg.add_subparsers(dest='suggestions_cmd')

    p_sugg_list = sugg_sub.add_parser('list', help='List pending suggestions')
    p_sugg_list.set_defaults(func=_with_project(cmd_suggestions_module.cmd_suggestions_list))

    for name, func, help_text in (
        ('accept', cmd_suggestions_module.cmd_suggestions_accept, 'Create the suggested task'),
        ('dismiss', cmd_suggestions_module.cmd_suggestions_dismiss, 'Dismiss the suggestion'),
    ):
        p = sugg_sub.add_parser(name, help=help_text)
        p.add_argument('turn', type=int, help='Project chat turn index')
        p.add_argument('index', type=int, nargs='?', default=0, help='Suggestion index on that turn')
        p.set_defaults(func=_with_project(func))

    # homeplan task ...
    p_task = subparsers.add_parser('task', help='Manage tasks')
    p_task.set_defaults(func=_with_project(cmd_task_module.cmd_task_list))
    task_sub = p_task.add_subparsers(dest='task_cmd')

    p_task_list = task_sub.add_parser('list', help='List tasks with progress')
    p_task_list.set_defaults(func=_with_project(cmd_task_module.cmd_task_list))

    p_task_add = task_sub.add_parser('add', help='Add a task by hand')
    p_task_add.add_argument('title', help='Task title')
    p_task_add.add_argument('room', help='Room name')
    p_task_add.set_defaults(func=_with_project(cmd_task_module.cmd_task_add))

    p_task_delete = task_sub.add_parser('delete', help='Delete a task')
    p_task_delete.add_argument('task', help='Task ID')
    p_task_delete.add_argument('--yes', '-y', action='store_true', help='Skip confirmation')
    p_task_delete.set_defaults(func=_with_project(cmd_task_module.cmd_task_delete))

    p_task_open = task_sub.add_parser('open', help='Open a task (marks it seen)')
    p_task_open.add_argument('task', help='Task ID')
    p_task_open.set_defaults(func=_with_project(cmd_task_module.cmd_task_open))

    p_task_toggle = task_sub.add_parser('toggle', help='Tick or untick a checklist entry')
    p_task_toggle.add_argument('task', help='Task ID')
    p_task_toggle.add_argument('section', choices=['guide', 'materials', 'tools'])
    p_task_toggle.add_argument('index', type=int, help='Entry number (1-based)')
    p_task_toggle.set_defaults(func=_with_project(cmd_task_module.cmd_task_toggle))

    p_task_move = task_sub.add_parser('move', help='Move a task without a plan to another column')
    p_task_move.add_argument('task', help='Task ID')
    p_task_move.add_argument('status', help="'To Do', 'In Progress' or 'Complete'")
    p_task_move.set_defaults(func=_with_project(cmd_task_module.cmd_task_move))

    p_task_plan = task_sub.add_parser('plan', help='Generate the plan from the task chat')
    p_task_plan.add_argument('task', help='Task ID')
    p_task_plan.set_defaults(func=_with_project(cmd_task_module.cmd_task_plan))

    p_task_show = task_sub.add_parser('show', help='Show a task and its plan')
    p_task_show.add_argument('task', help='Task ID')
    p_task_show.add_argument('--chat', action='store_true', help='Include the conversation')
    p_task_show.set_defaults(func=_with_project(cmd_task_module.cmd_task_show))

    # homeplan summary / vision
    p_summary = subparsers.add_parser('summary', help='Summarize the project')
    p_summary.set_defaults(func=_with_project(cmd_project_module.cmd_summary))

    p_vision = subparsers.add_parser('vision', help='Refresh the vision statement from the project chat')
    p_vision.set_defaults(func=_with_project(cmd_project_module.cmd_vision))

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    return run(args)


if __name__ == '__main__':
    sys.exit(main())
