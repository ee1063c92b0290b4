"""Task status state machine using transitions library.

Wraps a Task so status changes go through explicit, named triggers:
- Guards against impossible jumps (e.g. complete -> complete)
- Logs every transition
- Mirrors the machine state onto task.status

Usage:
    from homeplan.workflow.fsm import TaskFSM

    fsm = TaskFSM(task)
    fsm.start()     # todo -> in_progress
    fsm.finish()    # in_progress -> complete
"""

import logging

from transitions import Machine

from homeplan.lib.models import Task, TaskStatus

logger = logging.getLogger(__name__)


# State names are TaskStatus member names, lowercased
STATES = [status.name.lower() for status in TaskStatus]

# Transitions defined as (trigger, source, dest)
# Each trigger becomes a method on the FSM
TRANSITIONS = [
    # Work begins (first guide step ticked, or manual board move)
    {"trigger": "start", "source": "todo", "dest": "in_progress"},

    # All guide steps ticked
    {"trigger": "finish", "source": "in_progress", "dest": "complete"},
    {"trigger": "finish", "source": "todo", "dest": "complete"},  # Single-step guide, or manual move

    # A step was unticked after completion
    {"trigger": "reopen", "source": "complete", "dest": "in_progress"},

    # Every step unticked
    {"trigger": "reset", "source": "in_progress", "dest": "todo"},
    {"trigger": "reset", "source": "complete", "dest": "todo"},
]


def _build_trigger_lookup() -> dict[tuple[str, str], str]:
    """Build lookup from (source, dest) -> trigger name."""
    lookup: dict[tuple[str, str], str] = {}
    for t in TRANSITIONS:
        key = (t["source"], t["dest"])
        if key not in lookup:  # First trigger wins for a given source->dest
            lookup[key] = t["trigger"]
    return lookup


TRIGGER_FOR = _build_trigger_lookup()


def state_name(status: TaskStatus) -> str:
    return status.name.lower()


def status_for(state: str) -> TaskStatus:
    return TaskStatus[state.upper()]


class TaskFSM:
    """State machine for one task's status.

    The machine's state is mirrored onto task.status after each transition.
    """

    def __init__(self, task: Task):
        """Initialize FSM for a task (mutated in place)."""
        self.task = task

        self.machine = Machine(
            model=self,
            states=STATES,
            transitions=TRANSITIONS,
            initial=state_name(task.status),
            auto_transitions=False,  # Only explicit transitions
            send_event=True,  # Pass EventData to callbacks
            after_state_change="on_state_change",
        )

    def on_state_change(self, event) -> None:
        """Callback after any state transition. Mirrors state onto the task."""
        from_status = status_for(event.transition.source)
        to_status = status_for(event.transition.dest)
        trigger = event.event.name

        logger.info(f"[FSM] {self.task.id}: {from_status.value} -> {to_status.value} ({trigger})")

        self.task.status = to_status
