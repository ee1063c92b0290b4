"""
Conversation history helpers.

Truncation is turn-atomic and drops the oldest turns first. Nothing here
mutates the turns it is given.
"""

from typing import Optional

from homeplan.lib.models import ROLE_USER, ConversationTurn, Task

# Caps on how many tasks are listed in model framing
PROJECT_CHAT_TASK_CAP = 20
SUMMARY_TASK_CAP = 30

# Total user text above which the project chat counts as "described in detail"
DETAILED_CONTEXT_CHARS = 100


def truncate_turns(turns: list[ConversationTurn], limit: Optional[int]) -> list[ConversationTurn]:
    """Return the most recent `limit` turns as a new list.

    A limit of None keeps the whole history. A turn is kept or dropped whole,
    never split across its segments.
    """
    if limit is None or len(turns) <= limit:
        return list(turns)
    if limit <= 0:
        return []
    return list(turns[-limit:])


def has_user_images(turns: list[ConversationTurn]) -> bool:
    return any(t.role == ROLE_USER and t.has_images for t in turns)


def user_text_length(turns: list[ConversationTurn]) -> int:
    """Characters of user text across turns, joined with single spaces."""
    texts = [t.text for t in turns if t.role == ROLE_USER]
    return len(" ".join(texts))


def task_digest_line(task: Task) -> str:
    done, total = task.progress()
    return f"- {task.title} ({task.room}): {task.status.value}, {done}/{total} steps"


def task_digest(tasks: list[Task], cap: int = PROJECT_CHAT_TASK_CAP) -> str:
    """Live progress digest for project chat framing, one line per task."""
    return "\n".join(task_digest_line(t) for t in tasks[:cap])


def task_summary(tasks: list[Task], cap: int = SUMMARY_TASK_CAP) -> str:
    return "\n".join(f"- {t.title} ({t.status.value})" for t in tasks[:cap])


def plan_summary(task: Task) -> str:
    """Compact rendering of a task's current plan for supervision framing."""
    lines = []
    for i, step in enumerate(task.guide or [], 1):
        mark = "x" if step.done else " "
        lines.append(f"{i}. [{mark}] {step.text}")
    if task.materials:
        lines.append("")
        lines.append("Materials: " + ", ".join(m.text for m in task.materials))
    if task.tools:
        lines.append("Tools: " + ", ".join(t.text for t in task.tools))
    if task.cost_range:
        lines.append(f"Cost: {task.cost_range}")
    if task.time_estimate:
        lines.append(f"Time: {task.time_estimate}")
    return "\n".join(lines)
