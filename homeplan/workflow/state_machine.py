"""Task status derivation and transitions.

Once a task has a guide, its status is derived from checklist completion and
never set independently:

    no guide steps        -> status unchanged
    0 steps done          -> To Do
    some (not all) done   -> In Progress
    all done              -> Complete

Usage:
    from homeplan.workflow.state_machine import sync_status, derive_status

    change = sync_status(task)   # after every guide toggle or plan merge
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from homeplan.lib.models import ChecklistItem, Task, TaskStatus

logger = logging.getLogger(__name__)


class PhotoPrompt(Enum):
    """Moments the UI should invite the user to capture a photo."""
    BEFORE = "before"  # Planned task opened (or first step ticked) before any work
    AFTER = "after"    # Every guide step now complete


class InvalidTransition(Exception):
    """Raised when attempting an invalid status transition."""

    def __init__(self, from_state: TaskStatus, to_state: TaskStatus, task_id: str = "", reason: str = ""):
        self.from_state = from_state
        self.to_state = to_state
        self.task_id = task_id
        super().__init__(
            f"Invalid transition: {from_state.value} -> {to_state.value}"
            + (f" (task: {task_id})" if task_id else "")
            + (f": {reason}" if reason else "")
        )


@dataclass
class StatusChange:
    """Outcome of re-deriving a task's status."""
    from_status: TaskStatus
    to_status: TaskStatus
    trigger: Optional[str] = None

    @property
    def changed(self) -> bool:
        return self.from_status != self.to_status

    @property
    def completed(self) -> bool:
        """True on the edge into Complete."""
        return self.changed and self.to_status == TaskStatus.COMPLETE

    @property
    def started(self) -> bool:
        """True on the edge out of To Do."""
        return self.from_status == TaskStatus.TODO and self.to_status != TaskStatus.TODO


def derive_status(guide: list[ChecklistItem] | None, current: TaskStatus) -> TaskStatus:
    """Map guide completion to a status. Pure and idempotent.

    An empty or missing guide leaves `current` unchanged.
    """
    total = len(guide or [])
    if total == 0:
        return current
    completed = sum(1 for item in guide if item.done)
    if completed == 0:
        return TaskStatus.TODO
    if completed == total:
        return TaskStatus.COMPLETE
    return TaskStatus.IN_PROGRESS


def sync_status(task: Task) -> StatusChange:
    """Re-derive task.status from its guide, driving the FSM.

    Called after every guide mutation. Materials/tools never affect status.
    """
    from homeplan.workflow.fsm import TaskFSM, TRIGGER_FOR, state_name

    current = task.status
    target = derive_status(task.guide, current)
    if target == current:
        return StatusChange(current, current)

    trigger = TRIGGER_FOR[(state_name(current), state_name(target))]
    fsm = TaskFSM(task)
    getattr(fsm, trigger)()
    return StatusChange(current, task.status, trigger)


def move(task: Task, to_status: TaskStatus, reason: str = "") -> StatusChange:
    """Manually move a task (e.g. dragging it across a board).

    Only allowed while the task has no guide; afterwards status is derived.

    Raises:
        InvalidTransition: If the task has a guide or the FSM refuses the move
    """
    from transitions import MachineError
    from homeplan.workflow.fsm import TaskFSM, TRIGGER_FOR, state_name

    current = task.status
    reason_str = f" ({reason})" if reason else ""

    if task.has_plan:
        raise InvalidTransition(current, to_status, task.id, "status is derived from the guide")

    # Self-transition is a no-op
    if current == to_status:
        logger.debug(f"[STATE] {task.id}: already {to_status.value}, no-op")
        return StatusChange(current, current)

    trigger = TRIGGER_FOR.get((state_name(current), state_name(to_status)))
    if trigger is None:
        raise InvalidTransition(current, to_status, task.id)

    try:
        logger.info(f"[STATE] {task.id}: {current.value} -> {to_status.value}{reason_str}")
        getattr(TaskFSM(task), trigger)()
    except MachineError as e:
        raise InvalidTransition(current, to_status, task.id) from e

    return StatusChange(current, task.status, trigger)


def photo_prompt_on_open(task: Task) -> Optional[PhotoPrompt]:
    """BEFORE when a planned, untouched task is opened for the first time."""
    if task.opened_once or not task.has_plan:
        return None
    done, _ = task.progress()
    return PhotoPrompt.BEFORE if done == 0 else None


def photo_prompt_on_toggle(change: StatusChange, opened_once: bool) -> Optional[PhotoPrompt]:
    """Photo prompt for a guide toggle, if this toggle crossed a signal edge.

    AFTER on the edge into Complete; BEFORE on the first start of a task whose
    plan has never been opened.
    """
    if change.completed:
        return PhotoPrompt.AFTER
    if change.started and not opened_once:
        return PhotoPrompt.BEFORE
    return None
