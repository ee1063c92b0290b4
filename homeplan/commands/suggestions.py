"""
homeplan suggestions list|accept|dismiss
"""

from homeplan.agents.dispatch import CancelToken
from homeplan.lib.models import SuggestionStatus
from homeplan.workflow.engine import PlanningEngine


def cmd_suggestions_list(args, engine: PlanningEngine, project_id: str, token: CancelToken) -> int:
    """List pending suggestions with the indexes accept/dismiss expect."""
    history = engine.store.load_project(project_id).property.project_chat_history
    pending = [
        (turn_index, i, s)
        for turn_index, turn in enumerate(history)
        for i, s in enumerate(turn.suggestions)
        if s.status == SuggestionStatus.PENDING
    ]
    if not pending:
        print("No pending suggestions.")
        return 0

    print(f"{'TURN':<6} {'IDX':<4} {'ROOM':<18} TITLE")
    print("-" * 60)
    for turn_index, i, s in pending:
        print(f"{turn_index:<6} {i:<4} {s.room[:18]:<18} {s.title}")
    return 0


def cmd_suggestions_accept(args, engine: PlanningEngine, project_id: str, token: CancelToken) -> int:
    task = engine.accept_suggestion(project_id, args.turn, args.index, cancel=token)
    if task is None:
        print("Cancelled, nothing saved.")
        return 0
    print(f"Created task {task.id}: {task.title} ({task.room})")
    print()
    print(task.conversation[0].text)
    return 0


def cmd_suggestions_dismiss(args, engine: PlanningEngine, project_id: str, token: CancelToken) -> int:
    suggestion = engine.dismiss_suggestion(project_id, args.turn, args.index, cancel=token)
    print(f"Dismissed: {suggestion.title}")
    return 0
