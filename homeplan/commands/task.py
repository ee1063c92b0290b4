"""
homeplan task - list, add, delete, open, toggle, move, plan, show.
"""

from homeplan.agents.dispatch import CancelToken, render_turn
from homeplan.lib.models import Task, parse_status
from homeplan.workflow.engine import PlanningEngine
from homeplan.workflow.state_machine import PhotoPrompt

PHOTO_PROMPTS = {
    PhotoPrompt.BEFORE: "Take a 'before' photo before you start!",
    PhotoPrompt.AFTER: "All done! Take an 'after' photo of the finished work.",
}


def _progress(task: Task) -> str:
    done, total = task.progress()
    return f"{done}/{total}" if total else "-"


def _mark(flag: bool) -> str:
    return "x" if flag else " "


def cmd_task_list(args, engine: PlanningEngine, project_id: str, token: CancelToken) -> int:
    project = engine.store.load_project(project_id)
    if not project.tasks:
        print("No tasks yet.")
        return 0

    print(f"{'ID':<14} {'STATUS':<12} {'STEPS':<6} {'ROOM':<16} TITLE")
    print("-" * 72)
    for task in project.tasks:
        print(f"{task.id:<14} {task.status.value:<12} {_progress(task):<6} {task.room[:16]:<16} {task.title}")
    return 0


def cmd_task_add(args, engine: PlanningEngine, project_id: str, token: CancelToken) -> int:
    task = engine.add_task(project_id, args.title, args.room, cancel=token)
    if task is None:
        print("Cancelled, nothing saved.")
        return 0
    print(f"Created task {task.id}: {task.title} ({task.room})")
    print()
    print(task.conversation[0].text)
    return 0


def cmd_task_delete(args, engine: PlanningEngine, project_id: str, token: CancelToken) -> int:
    task = engine.store.load_task(project_id, args.task)
    if not args.yes:
        answer = input(f"Delete task '{task.title}' and its conversation? [y/N] ")
        if answer.strip().lower() not in ("y", "yes"):
            print("Aborted.")
            return 1
    engine.delete_task(project_id, args.task, cancel=token)
    print(f"Deleted task {args.task}")
    return 0


def cmd_task_open(args, engine: PlanningEngine, project_id: str, token: CancelToken) -> int:
    outcome = engine.open_task(project_id, args.task, cancel=token)
    print_task(outcome.task)
    if outcome.photo_prompt:
        print()
        print(PHOTO_PROMPTS[outcome.photo_prompt])
    return 0


def cmd_task_toggle(args, engine: PlanningEngine, project_id: str, token: CancelToken) -> int:
    # CLI entries are 1-based
    outcome = engine.toggle_checklist_item(
        project_id, args.task, args.section, args.index - 1, cancel=token
    )
    print(f"Toggled {args.section} {args.index}. Progress: {_progress(outcome.task)}")
    if outcome.status_change and outcome.status_change.changed:
        print(f"Status: {outcome.status_change.to_status.value}")
    if outcome.photo_prompt:
        print(PHOTO_PROMPTS[outcome.photo_prompt])
    return 0


def cmd_task_move(args, engine: PlanningEngine, project_id: str, token: CancelToken) -> int:
    status = parse_status(args.status)
    if status is None:
        print(f"ERROR: Unknown status '{args.status}'")
        return 1
    change = engine.move_task(project_id, args.task, status, cancel=token)
    if change.changed:
        print(f"Moved to {change.to_status.value}")
    else:
        print(f"Already {change.to_status.value}")
    return 0


def cmd_task_plan(args, engine: PlanningEngine, project_id: str, token: CancelToken) -> int:
    outcome = engine.generate_plan(project_id, args.task, cancel=token)
    if outcome.cancelled:
        print("Cancelled, plan unchanged.")
        return 0
    print_task(outcome.task)
    return 0


def cmd_task_show(args, engine: PlanningEngine, project_id: str, token: CancelToken) -> int:
    task = engine.store.load_task(project_id, args.task)
    print_task(task)
    if args.chat:
        print()
        print("Conversation")
        print("-" * 40)
        for turn in task.conversation:
            print(render_turn(turn))
            print()
    return 0


def print_task(task: Task) -> None:
    print(f"Task: {task.title}")
    print("=" * 60)
    print(f"ID:       {task.id}")
    print(f"Room:     {task.room}")
    print(f"Status:   {task.status.value}")
    print(f"Progress: {_progress(task)}")

    if not task.has_plan:
        print()
        print("No plan yet. Keep chatting: homeplan chat task <id> \"...\"")
        return

    print()
    print("Guide")
    for i, step in enumerate(task.guide, 1):
        print(f"  {i:>2}. [{_mark(step.done)}] {step.text}")

    if task.materials:
        print()
        print("Materials")
        for i, item in enumerate(task.materials, 1):
            cost = f" £{item.cost:.2f}" if item.cost is not None else ""
            print(f"  {i:>2}. [{_mark(item.done)}] {item.text}{cost}")
            if item.purchase_link:
                print(f"        {item.purchase_link}")

    if task.tools:
        print()
        print("Tools (x = owned)")
        for i, item in enumerate(task.tools, 1):
            cost = f" £{item.cost:.2f}" if item.cost is not None else ""
            print(f"  {i:>2}. [{_mark(item.owned)}] {item.text}{cost}")
            if item.purchase_link:
                print(f"        {item.purchase_link}")

    if task.safety_notes:
        print()
        print("Safety")
        for note in task.safety_notes:
            print(f"  ! {note}")

    for label, value in (
        ("Cost", task.cost_range),
        ("Time", task.time_estimate),
        ("Hiring a professional", task.professional_hiring_note),
    ):
        if value:
            print()
            print(f"{label}: {value}")
