"""
Data models for homeplan.

Conversations, checklists, tasks and projects. Entities serialize to the
camelCase wire format used by stored conversations (to_dict / from_dict).
"""

from copy import deepcopy
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Union

ROLE_USER = "user"
ROLE_ASSISTANT = "assistant"

# Stored conversations tag assistant turns as "model"
_WIRE_ROLES = {ROLE_USER: "user", ROLE_ASSISTANT: "model"}
_ROLES_FROM_WIRE = {"user": ROLE_USER, "model": ROLE_ASSISTANT, "assistant": ROLE_ASSISTANT}


class TaskStatus(Enum):
    """Task lifecycle states, ordered by completion fraction."""
    TODO = "To Do"
    IN_PROGRESS = "In Progress"
    COMPLETE = "Complete"


def parse_status(value: str | None) -> TaskStatus | None:
    """Parse a status string (wire value or enum name) into TaskStatus.

    Returns None if status is unknown.
    """
    if value is None:
        return None
    for status in TaskStatus:
        if value in (status.value, status.name, status.name.lower()):
            return status
    return None


class SuggestionStatus(Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DISMISSED = "dismissed"


@dataclass(frozen=True)
class TextSegment:
    text: str

    def to_dict(self) -> dict:
        return {"text": self.text}


@dataclass(frozen=True)
class ImageSegment:
    """Image attached to a turn. `ref` is a storage URL or base64 payload."""
    mime_type: str
    ref: str

    def to_dict(self) -> dict:
        return {"inlineData": {"mimeType": self.mime_type, "data": self.ref}}


Segment = Union[TextSegment, ImageSegment]


def segment_from_dict(data: dict) -> Segment:
    if "inlineData" in data:
        inline = data["inlineData"] or {}
        return ImageSegment(mime_type=inline.get("mimeType", ""), ref=inline.get("data", ""))
    return TextSegment(text=data.get("text", ""))


@dataclass
class Suggestion:
    """A task suggested by the project assistant, awaiting the user's decision."""
    title: str
    room: str
    status: SuggestionStatus = SuggestionStatus.PENDING
    task_id: Optional[str] = None

    def to_dict(self) -> dict:
        data = {"title": self.title, "room": self.room, "status": self.status.value}
        if self.task_id:
            data["taskId"] = self.task_id
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "Suggestion":
        return cls(
            title=data["title"],
            room=data["room"],
            status=SuggestionStatus(data.get("status", "pending")),
            task_id=data.get("taskId"),
        )


@dataclass
class ConversationTurn:
    """One role-tagged message. Turns are append-only once stored."""
    role: str  # ROLE_USER or ROLE_ASSISTANT
    parts: list[Segment] = field(default_factory=list)
    suggestions: list[Suggestion] = field(default_factory=list)

    @classmethod
    def user(cls, text: str) -> "ConversationTurn":
        return cls(role=ROLE_USER, parts=[TextSegment(text)])

    @classmethod
    def assistant(cls, text: str, suggestions: list[Suggestion] | None = None) -> "ConversationTurn":
        return cls(role=ROLE_ASSISTANT, parts=[TextSegment(text)], suggestions=suggestions or [])

    @property
    def text(self) -> str:
        """Concatenated text of all text segments."""
        return "\n".join(p.text for p in self.parts if isinstance(p, TextSegment))

    @property
    def has_images(self) -> bool:
        return any(isinstance(p, ImageSegment) for p in self.parts)

    def to_dict(self) -> dict:
        data = {"role": _WIRE_ROLES[self.role], "parts": [p.to_dict() for p in self.parts]}
        if self.suggestions:
            data["suggestions"] = [s.to_dict() for s in self.suggestions]
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "ConversationTurn":
        role = _ROLES_FROM_WIRE.get(data.get("role", ""))
        if role is None:
            raise ValueError(f"Unknown turn role: {data.get('role')!r}")
        return cls(
            role=role,
            parts=[segment_from_dict(p) for p in data.get("parts", [])],
            suggestions=[Suggestion.from_dict(s) for s in data.get("suggestions", [])],
        )


@dataclass
class ChecklistItem:
    """A plan step."""
    text: str
    done: bool = False

    def to_dict(self) -> dict:
        return {"text": self.text, "completed": self.done}

    @classmethod
    def from_dict(cls, data: dict) -> "ChecklistItem":
        return cls(text=data["text"], done=bool(data.get("completed", False)))


@dataclass
class MaterialItem:
    text: str
    done: bool = False
    cost: Optional[float] = None
    purchase_link: Optional[str] = None

    def to_dict(self) -> dict:
        data = {"text": self.text, "completed": self.done}
        if self.cost is not None:
            data["cost"] = self.cost
        if self.purchase_link:
            data["link"] = self.purchase_link
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "MaterialItem":
        return cls(
            text=data["text"],
            done=bool(data.get("completed", False)),
            cost=data.get("cost"),
            purchase_link=data.get("link"),
        )


@dataclass
class ToolItem:
    """A tool; `owned` means the user already has it."""
    text: str
    owned: bool = False
    cost: Optional[float] = None
    purchase_link: Optional[str] = None

    def to_dict(self) -> dict:
        data = {"text": self.text, "owned": self.owned}
        if self.cost is not None:
            data["cost"] = self.cost
        if self.purchase_link:
            data["link"] = self.purchase_link
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "ToolItem":
        return cls(
            text=data["text"],
            owned=bool(data.get("owned", False)),
            cost=data.get("cost"),
            purchase_link=data.get("link"),
        )


@dataclass
class Task:
    """A renovation task and its (optional) generated plan."""
    id: str
    title: str
    room: str
    status: TaskStatus = TaskStatus.TODO
    priority: int = 0
    conversation: list[ConversationTurn] = field(default_factory=list)
    guide: Optional[list[ChecklistItem]] = None
    materials: Optional[list[MaterialItem]] = None
    tools: Optional[list[ToolItem]] = None
    safety_notes: Optional[list[str]] = None
    cost_range: Optional[str] = None
    time_estimate: Optional[str] = None
    professional_hiring_note: Optional[str] = None
    opened_once: bool = False

    @property
    def has_plan(self) -> bool:
        return bool(self.guide)

    def progress(self) -> tuple[int, int]:
        """Return (done, total) guide steps."""
        guide = self.guide or []
        return sum(1 for item in guide if item.done), len(guide)

    def copy(self) -> "Task":
        return deepcopy(self)

    def to_dict(self) -> dict:
        data = {
            "id": self.id,
            "title": self.title,
            "room": self.room,
            "status": self.status.value,
            "priority": self.priority,
            "chatHistory": [t.to_dict() for t in self.conversation],
            "hasBeenOpened": self.opened_once,
        }
        if self.guide is not None:
            data["guide"] = [i.to_dict() for i in self.guide]
        if self.materials is not None:
            data["materials"] = [i.to_dict() for i in self.materials]
        if self.tools is not None:
            data["tools"] = [i.to_dict() for i in self.tools]
        if self.safety_notes is not None:
            data["safety"] = list(self.safety_notes)
        if self.cost_range is not None:
            data["cost"] = self.cost_range
        if self.time_estimate is not None:
            data["time"] = self.time_estimate
        if self.professional_hiring_note is not None:
            data["hiringInfo"] = self.professional_hiring_note
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "Task":
        status = parse_status(data.get("status")) or TaskStatus.TODO
        guide = data.get("guide")
        materials = data.get("materials")
        tools = data.get("tools")
        return cls(
            id=data["id"],
            title=data["title"],
            room=data["room"],
            status=status,
            priority=int(data.get("priority", 0)),
            conversation=[ConversationTurn.from_dict(t) for t in data.get("chatHistory", [])],
            guide=[ChecklistItem.from_dict(i) for i in guide] if guide is not None else None,
            materials=[MaterialItem.from_dict(i) for i in materials] if materials is not None else None,
            tools=[ToolItem.from_dict(i) for i in tools] if tools is not None else None,
            safety_notes=list(data["safety"]) if data.get("safety") is not None else None,
            cost_range=data.get("cost"),
            time_estimate=data.get("time"),
            professional_hiring_note=data.get("hiringInfo"),
            opened_once=bool(data.get("hasBeenOpened", False)),
        )


@dataclass
class Room:
    id: str
    name: str
    photos: list[str] = field(default_factory=list)
    ai_summary: Optional[str] = None

    def to_dict(self) -> dict:
        data = {"id": self.id, "name": self.name, "photos": list(self.photos)}
        if self.ai_summary:
            data["aiSummary"] = self.ai_summary
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "Room":
        return cls(
            id=data["id"],
            name=data["name"],
            photos=list(data.get("photos", [])),
            ai_summary=data.get("aiSummary"),
        )


@dataclass
class Property:
    """The place being renovated, with its vision and project-level chat."""
    id: str
    name: str
    rooms: list[Room] = field(default_factory=list)
    vision_statement: Optional[str] = None
    project_chat_history: list[ConversationTurn] = field(default_factory=list)

    def to_dict(self) -> dict:
        data = {
            "id": self.id,
            "name": self.name,
            "rooms": [r.to_dict() for r in self.rooms],
            "projectChatHistory": [t.to_dict() for t in self.project_chat_history],
        }
        if self.vision_statement:
            data["visionStatement"] = self.vision_statement
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "Property":
        return cls(
            id=data["id"],
            name=data["name"],
            rooms=[Room.from_dict(r) for r in data.get("rooms", [])],
            vision_statement=data.get("visionStatement"),
            project_chat_history=[
                ConversationTurn.from_dict(t) for t in data.get("projectChatHistory", [])
            ],
        )


@dataclass
class Project:
    """Top-level container. Owns its tasks exclusively."""
    id: str
    user_id: str
    property: Property
    tasks: list[Task] = field(default_factory=list)

    def get_task(self, task_id: str) -> Optional[Task]:
        for task in self.tasks:
            if task.id == task_id:
                return task
        return None

    def copy(self) -> "Project":
        return deepcopy(self)

    def to_dict(self, include_tasks: bool = True) -> dict:
        data = {"id": self.id, "userId": self.user_id, "property": self.property.to_dict()}
        if include_tasks:
            data["tasks"] = [t.to_dict() for t in self.tasks]
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "Project":
        return cls(
            id=data["id"],
            user_id=data.get("userId", ""),
            property=Property.from_dict(data["property"]),
            tasks=[Task.from_dict(t) for t in data.get("tasks", [])],
        )
