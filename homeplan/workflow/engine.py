"""
Planning engine.

Coordinates one request at a time per conversation:

    user turn -> context -> model dispatch -> directive parser
      -> normalizer -> task state machine -> store

Every operation works on a copy of the stored entities and saves only once
the copy is complete, so a cancelled or failed request leaves storage as it
was. Requests on the same conversation are serialized with a per-conversation
lock; a cancel token passed to an operation also cancels the wait for that
lock (LockCancelled, nothing loaded or saved).

Usage:
    engine = PlanningEngine(store, dispatcher, config)
    outcome = engine.send_task_message(project_id, task_id, "Walls are bare plaster")
"""

import logging
import uuid
from contextlib import ExitStack
from dataclasses import dataclass, field
from typing import Callable, Iterable, Optional

from homeplan.agents.dispatch import CancelToken, DispatchCancelled, DispatchError, ModelDispatcher
from homeplan.lib import context
from homeplan.lib.config import HomeplanConfig
from homeplan.lib.directives import UpdatePlan, parse_response
from homeplan.lib.locking import conversation_lock, project_lock_key, task_lock_key
from homeplan.lib.models import (
    ROLE_ASSISTANT,
    ROLE_USER,
    ChecklistItem,
    ConversationTurn,
    ImageSegment,
    MaterialItem,
    Project,
    Property,
    Room,
    Suggestion,
    SuggestionStatus,
    Task,
    TaskStatus,
    TextSegment,
    ToolItem,
)
from homeplan.lib.normalize import AffiliatePolicy, normalize_plan_payload
from homeplan.lib.validate import ValidationError, validate
from homeplan.store.base import NotFoundError, Store
from homeplan.workflow.state_machine import (
    PhotoPrompt,
    StatusChange,
    move,
    photo_prompt_on_open,
    photo_prompt_on_toggle,
    sync_status,
)

logger = logging.getLogger(__name__)

INTRO_FALLBACK = "Let's plan out how to '{title}'. What's your vision for this task?"

# Checklist sections and the flag each one toggles
TOGGLE_SECTIONS = {"guide": "done", "materials": "done", "tools": "owned"}

# Vision refresh needs at least one exchange
MIN_VISION_TURNS = 2


class PlanSchemaError(Exception):
    """A generated plan did not match the task plan schema. Nothing was merged."""

    def __init__(self, task_id: str, cause: Exception | str):
        self.task_id = task_id
        super().__init__(f"Generated plan for task {task_id} rejected: {cause}")


@dataclass
class ChatOutcome:
    """Result of one chat request."""
    task: Optional[Task] = None  # Task as stored after the request (task chat only)
    reply: Optional[ConversationTurn] = None
    suggestions: list[Suggestion] = field(default_factory=list)
    plan_generated: bool = False
    plan_updated: bool = False
    status_change: Optional[StatusChange] = None
    cancelled: bool = False
    generation_cancelled: bool = False  # Chat saved, plan generation cancelled

    @property
    def display_text(self) -> str:
        return self.reply.text if self.reply else ""


@dataclass
class PlanOutcome:
    task: Task
    status_change: Optional[StatusChange] = None
    cancelled: bool = False


@dataclass
class OpenOutcome:
    task: Task
    photo_prompt: Optional[PhotoPrompt] = None


@dataclass
class ToggleOutcome:
    task: Task
    status_change: Optional[StatusChange] = None
    photo_prompt: Optional[PhotoPrompt] = None


def _new_id() -> str:
    return uuid.uuid4().hex[:12]


def build_user_turn(text: str, images: Iterable[tuple[str, str]] = ()) -> ConversationTurn:
    """User turn with text first, then (mime_type, ref) images."""
    parts = []
    if text:
        parts.append(TextSegment(text))
    parts.extend(ImageSegment(mime, ref) for mime, ref in images)
    if not parts:
        raise ValueError("Message needs text or at least one image")
    return ConversationTurn(role=ROLE_USER, parts=parts)


def merge_plan_fields(task: Task, fields: dict) -> None:
    """Replace the plan fields present in a wire payload. Absent fields are untouched."""
    if "guide" in fields:
        task.guide = [ChecklistItem.from_dict(i) for i in fields["guide"]]
    if "materials" in fields:
        task.materials = [MaterialItem.from_dict(i) for i in fields["materials"]]
    if "tools" in fields:
        task.tools = [ToolItem.from_dict(i) for i in fields["tools"]]
    if "safety" in fields:
        task.safety_notes = list(fields["safety"])
    if "cost" in fields:
        task.cost_range = fields["cost"]
    if "time" in fields:
        task.time_estimate = fields["time"]
    if "hiringInfo" in fields:
        task.professional_hiring_note = fields["hiringInfo"]


def apply_plan_update(task: Task, update: UpdatePlan, policy: AffiliatePolicy) -> StatusChange:
    """Merge an [UPDATE_PLAN] directive into a task and re-derive its status."""
    merge_plan_fields(task, normalize_plan_payload(update.fields, policy))
    logger.info(f"[TASK] {task.id}: plan updated ({', '.join(sorted(update.fields))})")
    return sync_status(task)


class PlanningEngine:

    def __init__(
        self,
        store: Store,
        dispatcher: ModelDispatcher,
        config: HomeplanConfig,
        id_factory: Callable[[], str] = _new_id,
    ):
        self.store = store
        self.dispatcher = dispatcher
        self.config = config
        self.new_id = id_factory

    def _lock(self, key: str, cancel: Optional[CancelToken] = None):
        return conversation_lock(
            self.config.lock_dir, key, timeout=self.config.lock_timeout, cancel=cancel
        )

    def _load_task(self, project: Project, task_id: str) -> Task:
        task = project.get_task(task_id)
        if task is None:
            raise NotFoundError("task", f"{project.id}/{task_id}")
        return task

    # -- project setup ----------------------------------------------------

    def create_project(self, name: str, user_id: str = "", rooms: Iterable[str] = ()) -> Project:
        if not name.strip():
            raise ValueError("Project name must not be empty")
        prop = Property(
            id=self.new_id(),
            name=name.strip(),
            rooms=[Room(id=self.new_id(), name=r.strip()) for r in rooms if r.strip()],
        )
        project = Project(id=self.new_id(), user_id=user_id, property=prop)
        self.store.save_project(project)
        logger.info(f"[ENGINE] Created project {project.id} ({prop.name})")
        return project

    def add_room(
        self,
        project_id: str,
        name: str,
        photos: Iterable[str] = (),
        cancel: Optional[CancelToken] = None,
    ) -> Room:
        if not name.strip():
            raise ValueError("Room name must not be empty")
        with self._lock(project_lock_key(project_id), cancel):
            project = self.store.load_project(project_id)
            room = Room(id=self.new_id(), name=name.strip(), photos=list(photos))
            project.property.rooms.append(room)
            self.store.save_project(project)
        return room

    # -- task chat --------------------------------------------------------

    def send_task_message(
        self,
        project_id: str,
        task_id: str,
        text: str,
        images: Iterable[tuple[str, str]] = (),
        cancel: Optional[CancelToken] = None,
    ) -> ChatOutcome:
        """Send a user message in a task conversation.

        A [GENERATE_PLAN] reply triggers plan generation straight away; the chat
        turns are saved first, so a failed or cancelled generation keeps them.

        Raises:
            DispatchError: The chat or generation call failed
            PlanSchemaError: The generated plan was malformed (chat turns saved)
        """
        user_turn = build_user_turn(text, images)

        with self._lock(task_lock_key(task_id), cancel):
            project = self.store.load_project(project_id)
            stored = self._load_task(project, task_id)
            task = stored.copy()
            task.conversation.append(user_turn)

            request = context.build_task_chat_request(
                task, project.property, self.config.task_chat_history_limit
            )
            try:
                result = self.dispatcher.dispatch(request, cancel)
            except DispatchCancelled:
                logger.info(f"[ENGINE] Task {task_id}: chat cancelled, nothing saved")
                return ChatOutcome(task=stored, cancelled=True)

            parsed = parse_response(result.text, has_plan=task.has_plan)
            suggestions = [Suggestion(title=s.title, room=s.room) for s in parsed.suggestions]
            reply = ConversationTurn.assistant(parsed.display_text, suggestions)
            task.conversation.append(reply)
            outcome = ChatOutcome(reply=reply, suggestions=suggestions)

            if parsed.update_plan is not None:
                outcome.status_change = apply_plan_update(task, parsed.update_plan, self.config.affiliate)
                outcome.plan_updated = True

            self.store.save_task(project_id, task)
            outcome.task = task

            if not parsed.generate_plan:
                return outcome

            logger.info(f"[ENGINE] Task {task_id}: plan requested by assistant")
            planned = task.copy()
            try:
                outcome.status_change = self._generate_plan(planned, project.property, cancel)
            except DispatchCancelled:
                logger.info(f"[ENGINE] Task {task_id}: plan generation cancelled, guide unchanged")
                outcome.generation_cancelled = True
                return outcome

            self.store.save_task(project_id, planned)
            outcome.task = planned
            outcome.plan_generated = True
            return outcome

    def generate_plan(
        self,
        project_id: str,
        task_id: str,
        cancel: Optional[CancelToken] = None,
    ) -> PlanOutcome:
        """Generate (or regenerate) a task's plan from its whole conversation.

        Raises:
            DispatchError: The model call failed
            PlanSchemaError: The result did not match the plan schema
        """
        with self._lock(task_lock_key(task_id), cancel):
            project = self.store.load_project(project_id)
            stored = self._load_task(project, task_id)
            task = stored.copy()
            try:
                change = self._generate_plan(task, project.property, cancel)
            except DispatchCancelled:
                logger.info(f"[ENGINE] Task {task_id}: plan generation cancelled, guide unchanged")
                return PlanOutcome(task=stored, cancelled=True)
            self.store.save_task(project_id, task)
            return PlanOutcome(task=task, status_change=change)

    def _generate_plan(self, task: Task, prop: Property, cancel: Optional[CancelToken]) -> StatusChange:
        """Run the structured generation call and merge the result into `task`."""
        request = context.build_task_plan_request(task, prop)
        result = self.dispatcher.dispatch(request, cancel)

        if result.payload is None:
            raise PlanSchemaError(task.id, "model output was not a JSON object")
        try:
            validate(result.payload, "task_plan")
        except ValidationError as e:
            raise PlanSchemaError(task.id, e) from e

        payload = normalize_plan_payload(result.payload, self.config.affiliate)
        merge_plan_fields(task, payload)
        logger.info(f"[TASK] {task.id}: plan generated ({len(task.guide)} steps)")
        return sync_status(task)

    # -- project chat -----------------------------------------------------

    def send_project_message(
        self,
        project_id: str,
        text: str,
        images: Iterable[tuple[str, str]] = (),
        cancel: Optional[CancelToken] = None,
    ) -> ChatOutcome:
        """Send a user message in the project conversation.

        [SUGGEST_TASK] directives become pending suggestions on the reply turn.
        No task is created until a suggestion is accepted.

        Raises:
            DispatchError: The model call failed (nothing saved)
        """
        user_turn = build_user_turn(text, images)

        with self._lock(project_lock_key(project_id), cancel):
            project = self.store.load_project(project_id)
            prop = project.property
            prop.project_chat_history.append(user_turn)

            request = context.build_project_chat_request(
                prop, project.tasks, self.config.project_chat_history_limit
            )
            try:
                result = self.dispatcher.dispatch(request, cancel)
            except DispatchCancelled:
                logger.info(f"[ENGINE] Project {project_id}: chat cancelled, nothing saved")
                return ChatOutcome(cancelled=True)

            parsed = parse_response(result.text)
            if parsed.generate_plan or parsed.update_plan is not None:
                logger.debug(f"[ENGINE] Project {project_id}: plan directive ignored in project chat")

            suggestions = [Suggestion(title=s.title, room=s.room) for s in parsed.suggestions]
            reply = ConversationTurn.assistant(parsed.display_text, suggestions)
            prop.project_chat_history.append(reply)
            self.store.save_project(project)

            if suggestions:
                logger.info(f"[ENGINE] Project {project_id}: {len(suggestions)} task suggestion(s)")
            return ChatOutcome(reply=reply, suggestions=suggestions)

    def _suggestion_at(self, project: Project, turn_index: int, suggestion_index: int) -> Suggestion:
        history = project.property.project_chat_history
        if not 0 <= turn_index < len(history):
            raise IndexError(f"No project chat turn {turn_index}")
        turn = history[turn_index]
        if turn.role != ROLE_ASSISTANT or not 0 <= suggestion_index < len(turn.suggestions):
            raise IndexError(f"No suggestion {suggestion_index} on turn {turn_index}")
        suggestion = turn.suggestions[suggestion_index]
        if suggestion.status != SuggestionStatus.PENDING:
            raise ValueError(f"Suggestion '{suggestion.title}' already {suggestion.status.value}")
        return suggestion

    def accept_suggestion(
        self,
        project_id: str,
        turn_index: int,
        suggestion_index: int,
        cancel: Optional[CancelToken] = None,
    ) -> Optional[Task]:
        """Create the suggested task. Returns None if cancelled (nothing saved)."""
        with self._lock(project_lock_key(project_id), cancel):
            project = self.store.load_project(project_id)
            suggestion = self._suggestion_at(project, turn_index, suggestion_index)
            try:
                task = self._create_task(project, suggestion.title, suggestion.room, cancel)
            except DispatchCancelled:
                return None
            suggestion.status = SuggestionStatus.ACCEPTED
            suggestion.task_id = task.id
            self.store.save_task(project_id, task)
            self.store.save_project(project)
            return task

    def dismiss_suggestion(
        self,
        project_id: str,
        turn_index: int,
        suggestion_index: int,
        cancel: Optional[CancelToken] = None,
    ) -> Suggestion:
        with self._lock(project_lock_key(project_id), cancel):
            project = self.store.load_project(project_id)
            suggestion = self._suggestion_at(project, turn_index, suggestion_index)
            suggestion.status = SuggestionStatus.DISMISSED
            self.store.save_project(project)
            logger.info(f"[ENGINE] Project {project_id}: dismissed '{suggestion.title}'")
            return suggestion

    # -- task lifecycle ---------------------------------------------------

    def add_task(
        self,
        project_id: str,
        title: str,
        room: str,
        cancel: Optional[CancelToken] = None,
    ) -> Optional[Task]:
        """Create a task by hand. Returns None if cancelled (nothing saved)."""
        if not title.strip():
            raise ValueError("Task title must not be empty")
        with self._lock(project_lock_key(project_id), cancel):
            project = self.store.load_project(project_id)
            try:
                task = self._create_task(project, title.strip(), room.strip(), cancel)
            except DispatchCancelled:
                return None
            self.store.save_task(project_id, task)
            self.store.save_project(project)
            return task

    def _create_task(self, project: Project, title: str, room: str, cancel: Optional[CancelToken]) -> Task:
        intro = self._task_intro(title, room, project.property, cancel)
        priority = sum(1 for t in project.tasks if t.status == TaskStatus.TODO)
        task = Task(
            id=self.new_id(),
            title=title,
            room=room,
            status=TaskStatus.TODO,
            priority=priority,
            conversation=[intro],
        )
        project.tasks.append(task)
        logger.info(f"[TASK] Created {task.id}: {title} ({room})")
        return task

    def _task_intro(self, title: str, room: str, prop: Property, cancel: Optional[CancelToken]) -> ConversationTurn:
        """Opening assistant turn for a new task, with a fixed fallback on model failure."""
        request = context.build_task_intro_request(title, room, prop)
        try:
            text = self.dispatcher.dispatch(request, cancel).text.strip()
        except DispatchError as e:
            logger.warning(f"[ENGINE] Task intro failed, using fallback: {e}")
            text = ""
        return ConversationTurn.assistant(text or INTRO_FALLBACK.format(title=title))

    def delete_task(self, project_id: str, task_id: str, cancel: Optional[CancelToken] = None) -> None:
        """Delete a task. Only ever called on explicit user request."""
        with ExitStack() as stack:
            stack.enter_context(self._lock(project_lock_key(project_id), cancel))
            stack.enter_context(self._lock(task_lock_key(task_id), cancel))
            self.store.delete_task(project_id, task_id)

    def open_task(self, project_id: str, task_id: str, cancel: Optional[CancelToken] = None) -> OpenOutcome:
        """Mark a task opened. BEFORE photo prompt on first open of an untouched plan."""
        with self._lock(task_lock_key(task_id), cancel):
            task = self.store.load_task(project_id, task_id)
            prompt = photo_prompt_on_open(task)
            if not task.opened_once:
                task.opened_once = True
                self.store.save_task(project_id, task)
            return OpenOutcome(task=task, photo_prompt=prompt)

    def toggle_checklist_item(
        self,
        project_id: str,
        task_id: str,
        section: str,
        index: int,
        cancel: Optional[CancelToken] = None,
    ) -> ToggleOutcome:
        """Flip one guide/materials (done) or tools (owned) entry.

        Guide toggles re-derive the task status.

        Raises:
            ValueError: Unknown section
            IndexError: No such entry
        """
        if section not in TOGGLE_SECTIONS:
            raise ValueError(f"Unknown checklist section '{section}' (expected one of {', '.join(TOGGLE_SECTIONS)})")

        with self._lock(task_lock_key(task_id), cancel):
            task = self.store.load_task(project_id, task_id)
            items = getattr(task, section) or []
            if not 0 <= index < len(items):
                raise IndexError(f"Task {task_id} has no {section} entry {index}")

            flag = TOGGLE_SECTIONS[section]
            item = items[index]
            setattr(item, flag, not getattr(item, flag))

            outcome = ToggleOutcome(task=task)
            if section == "guide":
                outcome.status_change = sync_status(task)
                outcome.photo_prompt = photo_prompt_on_toggle(outcome.status_change, task.opened_once)

            self.store.save_task(project_id, task)
            return outcome

    def move_task(
        self,
        project_id: str,
        task_id: str,
        status: TaskStatus,
        cancel: Optional[CancelToken] = None,
    ) -> StatusChange:
        """Manual board move. Refused with InvalidTransition once the task has a guide."""
        with self._lock(task_lock_key(task_id), cancel):
            task = self.store.load_task(project_id, task_id)
            change = move(task, status, reason="manual")
            if change.changed:
                self.store.save_task(project_id, task)
            return change

    # -- summary and vision -----------------------------------------------

    def summarize_project(self, project_id: str, cancel: Optional[CancelToken] = None) -> Optional[str]:
        """Short encouraging summary of the project. None if cancelled."""
        project = self.store.load_project(project_id)
        request = context.build_project_summary_request(project.property, project.tasks)
        try:
            return self.dispatcher.dispatch(request, cancel).text.strip()
        except DispatchCancelled:
            return None

    def refresh_vision_statement(self, project_id: str, cancel: Optional[CancelToken] = None) -> Optional[str]:
        """Distil the recent project chat into a one-sentence vision statement.

        Returns the current statement, or None when skipped or cancelled. The
        project is only saved when the statement changed.
        """
        with self._lock(project_lock_key(project_id), cancel):
            project = self.store.load_project(project_id)
            prop = project.property
            if len(prop.project_chat_history) < MIN_VISION_TURNS:
                logger.debug(f"[ENGINE] Project {project_id}: not enough chat for a vision statement")
                return None

            request = context.build_vision_request(prop, self.config.vision_history_limit)
            try:
                text = self.dispatcher.dispatch(request, cancel).text
            except DispatchCancelled:
                return None

            statement = text.strip().replace('"', "").strip()
            if statement and statement != prop.vision_statement:
                prop.vision_statement = statement
                self.store.save_project(project)
                logger.info(f"[ENGINE] Project {project_id}: vision statement updated")
            return prop.vision_statement
