"""Shared fixtures: a scripted model dispatcher and an engine over an in-memory store."""

import itertools
import json

import pytest

from homeplan.agents.dispatch import DispatchResult
from homeplan.lib.config import HomeplanConfig
from homeplan.lib.models import ChecklistItem, ConversationTurn, Task
from homeplan.store.memory import MemoryStore
from homeplan.workflow.engine import PlanningEngine


class FakeDispatcher:
    """Returns scripted replies in order and records every request.

    A reply may be a string (chat text), a dict (structured payload), a
    DispatchResult, an exception instance (raised), or a callable taking the
    request and returning one of those.
    """

    def __init__(self, *replies):
        self.replies = list(replies)
        self.requests = []

    def queue(self, *replies):
        self.replies.extend(replies)

    def dispatch(self, request, cancel=None):
        self.requests.append(request)
        if cancel:
            cancel.raise_if_cancelled()
        if not self.replies:
            raise AssertionError(f"Unexpected model call: {request.call_site}")
        reply = self.replies.pop(0)
        if callable(reply) and not isinstance(reply, Exception):
            reply = reply(request)
        if isinstance(reply, Exception):
            raise reply
        if isinstance(reply, DispatchResult):
            return reply
        if isinstance(reply, dict):
            return DispatchResult(text=json.dumps(reply), payload=reply)
        return DispatchResult(text=reply)


def plan_payload(steps=("Sand the floor", "Vacuum the dust", "Apply varnish")):
    return {
        "guide": [{"text": s, "completed": False} for s in steps],
        "materials": [
            {"text": "Floor varnish", "cost": 34.99, "link": "https://www.amazon.co.uk/s?k=floor+varnish", "completed": False},
        ],
        "tools": [
            {"text": "Orbital sander", "cost": 59.0, "link": "https://www.amazon.co.uk/s?k=orbital+sander", "owned": False},
            {"text": "Dust mask", "owned": True},
        ],
        "safety": ["Wear an FFP2 dust mask while sanding"],
        "cost": "Around £100 in materials",
        "time": "2 days",
        "hiringInfo": "A flooring specialist is worth it for parquet.",
    }


def make_task(task_id="t1", guide=None, **kwargs) -> Task:
    defaults = dict(
        id=task_id,
        title="Sand hallway floor",
        room="Hallway",
        conversation=[ConversationTurn.assistant("Let's plan out how to 'Sand hallway floor'.")],
    )
    defaults.update(kwargs)
    if guide is not None:
        defaults["guide"] = [ChecklistItem(text=f"Step {i + 1}", done=d) for i, d in enumerate(guide)]
    return Task(**defaults)


@pytest.fixture
def config(tmp_path):
    return HomeplanConfig(state_dir=tmp_path)


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def dispatcher():
    return FakeDispatcher()


@pytest.fixture
def engine(store, dispatcher, config):
    counter = itertools.count(1)
    return PlanningEngine(store, dispatcher, config, id_factory=lambda: f"id{next(counter)}")


@pytest.fixture
def project(engine):
    return engine.create_project("Victorian Terrace", user_id="u1", rooms=["Hallway", "Kitchen"])


@pytest.fixture
def task(engine, store, project):
    """A task without a plan, stored in `project`."""
    t = make_task()
    store.save_task(project.id, t)
    return t
