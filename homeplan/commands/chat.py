"""
homeplan chat project|task - one message, one reply.
"""

import base64
import mimetypes
from pathlib import Path

from homeplan.agents.dispatch import CancelToken
from homeplan.workflow.engine import ChatOutcome, PlanningEngine


def load_images(paths: list[str]) -> list[tuple[str, str]]:
    """Read image files as (mime_type, base64 data) pairs.

    Raises:
        ValueError: If a file is missing or not an image
    """
    images = []
    for raw in paths:
        path = Path(raw).expanduser()
        if not path.is_file():
            raise ValueError(f"Image not found: {raw}")
        mime, _ = mimetypes.guess_type(path.name)
        if not mime or not mime.startswith("image/"):
            raise ValueError(f"Not an image file: {raw}")
        images.append((mime, base64.b64encode(path.read_bytes()).decode("ascii")))
    return images


def print_reply(outcome: ChatOutcome) -> None:
    print(outcome.display_text)
    for i, suggestion in enumerate(outcome.suggestions):
        print(f"  [suggestion {i}] {suggestion.title} ({suggestion.room})")


def cmd_chat_project(args, engine: PlanningEngine, project_id: str, token: CancelToken) -> int:
    outcome = engine.send_project_message(
        project_id, args.message, images=load_images(args.image), cancel=token
    )
    if outcome.cancelled:
        print("Cancelled, nothing saved.")
        return 0

    print_reply(outcome)
    if outcome.suggestions:
        turn = len(engine.store.load_project(project_id).property.project_chat_history) - 1
        print()
        print(f"Accept with: homeplan suggestions accept {turn} <index>")
    return 0


def cmd_chat_task(args, engine: PlanningEngine, project_id: str, token: CancelToken) -> int:
    outcome = engine.send_task_message(
        project_id, args.task, args.message, images=load_images(args.image), cancel=token
    )
    if outcome.cancelled:
        print("Cancelled, nothing saved.")
        return 0

    print_reply(outcome)

    if outcome.plan_updated:
        print("\n(Plan updated)")
    if outcome.generation_cancelled:
        print("\n(Plan generation cancelled. Run 'homeplan task plan' to try again.)")
    if outcome.plan_generated:
        _, total = outcome.task.progress()
        print(f"\nPlan ready: {total} steps. See 'homeplan task show {args.task}'.")
    if outcome.status_change and outcome.status_change.changed:
        print(f"Status: {outcome.status_change.to_status.value}")
    return 0

