"""
Context assembly for model calls.

One builder per call site. Each returns a ModelRequest holding the system
framing, the turns to send and, for structured calls, the output schema.
Builders only read the entities they are given; the turn list in a request
is always a fresh list.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from homeplan.lib import history
from homeplan.lib.config import (
    DEFAULT_PROJECT_CHAT_HISTORY_LIMIT,
    DEFAULT_TASK_CHAT_HISTORY_LIMIT,
    DEFAULT_VISION_HISTORY_LIMIT,
)
from homeplan.lib.models import ConversationTurn, Property, Task
from homeplan.lib.prompts import render_prompt
from homeplan.lib.validate import load_schema

logger = logging.getLogger(__name__)

# Call sites, also the keys of models.yaml
TASK_PLAN = "task_plan"
TASK_CHAT = "task_chat"
PROJECT_CHAT = "project_chat"
TASK_INTRO = "task_intro"
PROJECT_SUMMARY = "project_summary"
VISION_STATEMENT = "vision_statement"

CALL_SITES = (TASK_PLAN, TASK_CHAT, PROJECT_CHAT, TASK_INTRO, PROJECT_SUMMARY, VISION_STATEMENT)

VISION_NOT_SET = "Not defined yet"
NONE_YET = "None yet"


@dataclass
class ModelRequest:
    """Everything the dispatcher needs for one model call."""
    call_site: str
    system_prompt: str
    turns: list[ConversationTurn] = field(default_factory=list)
    output_schema: Optional[dict] = None


def _vision(prop: Property) -> str:
    return prop.vision_statement or VISION_NOT_SET


def build_task_plan_request(task: Task, prop: Property) -> ModelRequest:
    """Structured plan generation. Sends the complete task conversation."""
    system_prompt = render_prompt(
        "task_plan",
        project_name=prop.name,
        room=task.room,
        task_title=task.title,
        vision_statement=_vision(prop),
    )
    return ModelRequest(
        call_site=TASK_PLAN,
        system_prompt=system_prompt,
        turns=history.truncate_turns(task.conversation, None),
        output_schema=load_schema("task_plan"),
    )


def build_task_chat_request(
    task: Task,
    prop: Property,
    history_limit: Optional[int] = DEFAULT_TASK_CHAT_HISTORY_LIMIT,
) -> ModelRequest:
    """Task chat: gathering before a plan exists, supervising afterwards."""
    common = dict(
        project_name=prop.name,
        room=task.room,
        task_title=task.title,
        vision_statement=_vision(prop),
    )
    if task.has_plan:
        system_prompt = render_prompt(
            "task_chat_supervising", plan_summary=history.plan_summary(task), **common
        )
    else:
        system_prompt = render_prompt("task_chat_gathering", **common)

    turns = history.truncate_turns(task.conversation, history_limit)
    if len(turns) < len(task.conversation):
        logger.debug(
            f"[CONTEXT] Task {task.id}: sending {len(turns)} of {len(task.conversation)} turns"
        )
    return ModelRequest(call_site=TASK_CHAT, system_prompt=system_prompt, turns=turns)


def _context_gaps(has_images: bool, has_room_photos: bool, has_detail: bool) -> str:
    gaps = []
    if not has_images and not has_room_photos:
        gaps.append(
            "   - No photos yet: ask the user to share photos of the rooms they want to work on."
        )
    if not has_detail:
        gaps.append(
            "   - Limited context: ask about room condition, preferences, budget and skill level before suggesting tasks."
        )
    return "\n".join(gaps)


def build_project_chat_request(
    prop: Property,
    tasks: list[Task],
    history_limit: Optional[int] = DEFAULT_PROJECT_CHAT_HISTORY_LIMIT,
) -> ModelRequest:
    """Project chat framed with rooms, photo state and the live task digest."""
    turns = history.truncate_turns(prop.project_chat_history, history_limit)

    has_images = history.has_user_images(prop.project_chat_history)
    has_detail = history.user_text_length(turns) > history.DETAILED_CONTEXT_CHARS
    photo_rooms = [r.name for r in prop.rooms if r.photos]

    system_prompt = render_prompt(
        "project_chat",
        project_name=prop.name,
        rooms=", ".join(r.name for r in prop.rooms) or NONE_YET,
        rooms_with_photos=", ".join(photo_rooms) or NONE_YET,
        task_digest=history.task_digest(tasks) or NONE_YET,
        has_images="Yes" if has_images else "No",
        has_detail="Yes" if has_detail else "No",
        context_gaps=_context_gaps(has_images, bool(photo_rooms), has_detail),
    )
    return ModelRequest(call_site=PROJECT_CHAT, system_prompt=system_prompt, turns=turns)


def build_task_intro_request(title: str, room: str, prop: Property) -> ModelRequest:
    system_prompt = render_prompt(
        "task_intro",
        task_title=title,
        room=room,
        project_name=prop.name,
        vision_statement=_vision(prop),
    )
    return ModelRequest(call_site=TASK_INTRO, system_prompt=system_prompt)


def build_project_summary_request(prop: Property, tasks: list[Task]) -> ModelRequest:
    system_prompt = render_prompt(
        "project_summary",
        project_name=prop.name,
        vision_statement=_vision(prop),
        rooms=", ".join(r.name for r in prop.rooms) or NONE_YET,
        task_summary=history.task_summary(tasks) or NONE_YET,
    )
    return ModelRequest(call_site=PROJECT_SUMMARY, system_prompt=system_prompt)


def build_vision_request(prop: Property, history_limit: Optional[int] = DEFAULT_VISION_HISTORY_LIMIT) -> ModelRequest:
    return ModelRequest(
        call_site=VISION_STATEMENT,
        system_prompt=render_prompt("vision_statement"),
        turns=history.truncate_turns(prop.project_chat_history, history_limit),
    )
