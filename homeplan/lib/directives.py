"""
Directive parser for assistant replies.

Assistant replies are free text that may embed machine-actionable markers:

    [GENERATE_PLAN]                              - enough detail gathered, build the plan
    [UPDATE_PLAN] {"guide": [...]}               - replace the listed plan fields
    [SUGGEST_TASK:{"title": "...", "room": "..."}] - propose a new task (repeatable)

The marker literals are a wire contract with stored conversations and must
not change.

parse_response() is pure and never raises. A marker whose payload does not
decode and validate is left in the display text verbatim and produces no
directive.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Optional, Union

from homeplan.lib.validate import is_valid

logger = logging.getLogger(__name__)

__all__ = [
    "GENERATE_PLAN_MARKER",
    "UPDATE_PLAN_MARKER",
    "SUGGEST_TASK_MARKER",
    "GeneratePlanRequested",
    "UpdatePlan",
    "SuggestTask",
    "Directive",
    "ParsedResponse",
    "parse_response",
    "format_update_plan",
    "format_suggest_task",
]

GENERATE_PLAN_MARKER = "[GENERATE_PLAN]"
UPDATE_PLAN_MARKER = "[UPDATE_PLAN]"
SUGGEST_TASK_MARKER = "[SUGGEST_TASK:"
SUGGEST_TASK_CLOSE = "]"

MARKER_RE = re.compile(
    "|".join(re.escape(m) for m in (GENERATE_PLAN_MARKER, UPDATE_PLAN_MARKER, SUGGEST_TASK_MARKER))
)

# Horizontal whitespace tolerated around payloads; payloads never span lines
_INLINE_SPACE_RE = re.compile(r'[ \t]*')

_decoder = json.JSONDecoder()


@dataclass(frozen=True)
class GeneratePlanRequested:
    """The assistant has gathered enough detail to generate a plan."""


@dataclass(frozen=True)
class UpdatePlan:
    """Partial plan replacement. Only the keys present in `fields` are merged.

    `fields` holds the validated wire payload, e.g. {"guide": [...], "cost": "..."}.
    """
    fields: dict = field(default_factory=dict)

    @property
    def guide(self) -> Optional[list]:
        return self.fields.get("guide")

    @property
    def materials(self) -> Optional[list]:
        return self.fields.get("materials")

    @property
    def tools(self) -> Optional[list]:
        return self.fields.get("tools")


@dataclass(frozen=True)
class SuggestTask:
    title: str
    room: str


Directive = Union[GeneratePlanRequested, UpdatePlan, SuggestTask]


@dataclass
class ParsedResponse:
    """Displayable prose plus the directives extracted from it, in text order."""
    display_text: str
    directives: list[Directive] = field(default_factory=list)

    @property
    def generate_plan(self) -> bool:
        return any(isinstance(d, GeneratePlanRequested) for d in self.directives)

    @property
    def update_plan(self) -> Optional[UpdatePlan]:
        for d in self.directives:
            if isinstance(d, UpdatePlan):
                return d
        return None

    @property
    def suggestions(self) -> list[SuggestTask]:
        return [d for d in self.directives if isinstance(d, SuggestTask)]


def _decode_object(text: str, pos: int) -> tuple[dict, int] | None:
    """Decode one JSON object starting exactly at pos. Returns (obj, end) or None."""
    if pos >= len(text) or text[pos] != "{":
        return None
    try:
        value, end = _decoder.raw_decode(text, pos)
    except (ValueError, RecursionError):
        return None
    if not isinstance(value, dict):
        return None
    return value, end


def _parse_update_plan(text: str, marker_end: int) -> tuple[UpdatePlan, int] | None:
    """Parse the compact single-line payload following [UPDATE_PLAN]."""
    start = _INLINE_SPACE_RE.match(text, marker_end).end()
    decoded = _decode_object(text, start)
    if decoded is None:
        return None
    payload, end = decoded
    if "\n" in text[start:end] or "\r" in text[start:end]:
        return None
    if not is_valid(payload, "update_plan"):
        return None
    return UpdatePlan(fields=payload), end


def _parse_suggest_task(text: str, marker_end: int) -> tuple[SuggestTask, int] | None:
    """Parse {title, room} and the closing bracket following [SUGGEST_TASK:."""
    start = _INLINE_SPACE_RE.match(text, marker_end).end()
    decoded = _decode_object(text, start)
    if decoded is None:
        return None
    payload, end = decoded
    end = _INLINE_SPACE_RE.match(text, end).end()
    if not text.startswith(SUGGEST_TASK_CLOSE, end):
        return None
    if not is_valid(payload, "suggest_task"):
        return None
    return SuggestTask(title=payload["title"].strip(), room=payload["room"].strip()), end + 1


def _phase_filter(directives: list[Directive], has_plan: bool | None) -> list[Directive]:
    """Keep only the plan directive relevant to the task's phase.

    No plan yet: honor GeneratePlanRequested, ignore UpdatePlan.
    Plan exists: honor UpdatePlan, ignore GeneratePlanRequested.
    """
    if has_plan is None:
        return directives
    drop = GeneratePlanRequested if has_plan else UpdatePlan
    kept = [d for d in directives if not isinstance(d, drop)]
    if len(kept) != len(directives):
        logger.debug(f"[PARSE] Ignoring {drop.__name__} (has_plan={has_plan})")
    return kept


def parse_response(text: str, has_plan: bool | None = None) -> ParsedResponse:
    """Split an assistant reply into display text and directives.

    Args:
        text: Raw reply text from the model
        has_plan: Task phase, if known. When given, only the plan directive
            relevant to the phase is returned (both spans are still cut).

    Returns:
        ParsedResponse. Unparseable input yields (text, []).
    """
    if not isinstance(text, str) or not text:
        return ParsedResponse(display_text=text if isinstance(text, str) else "", directives=[])

    directives: list[Directive] = []
    spans: list[tuple[int, int]] = []
    seen_generate = False
    seen_update = False
    pos = 0

    while True:
        match = MARKER_RE.search(text, pos)
        if match is None:
            break
        marker = match.group(0)

        if marker == GENERATE_PLAN_MARKER:
            spans.append((match.start(), match.end()))
            if not seen_generate:
                directives.append(GeneratePlanRequested())
                seen_generate = True
            pos = match.end()
            continue

        if marker == UPDATE_PLAN_MARKER:
            parsed = None if seen_update else _parse_update_plan(text, match.end())
            if parsed is None:
                logger.debug(f"[PARSE] Dropping {UPDATE_PLAN_MARKER} at offset {match.start()}")
                pos = match.end()
                continue
            directive, end = parsed
            directives.append(directive)
            spans.append((match.start(), end))
            seen_update = True
            pos = end
            continue

        parsed = _parse_suggest_task(text, match.end())
        if parsed is None:
            logger.debug(f"[PARSE] Dropping malformed {SUGGEST_TASK_MARKER} at offset {match.start()}")
            pos = match.end()
            continue
        directive, end = parsed
        directives.append(directive)
        spans.append((match.start(), end))
        pos = end

    if not spans:
        return ParsedResponse(display_text=text, directives=[])

    pieces = []
    cursor = 0
    for start, end in spans:
        pieces.append(text[cursor:start])
        cursor = end
    pieces.append(text[cursor:])
    display_text = "".join(pieces).strip()

    return ParsedResponse(display_text=display_text, directives=_phase_filter(directives, has_plan))


def format_update_plan(fields: dict) -> str:
    """Render an [UPDATE_PLAN] directive in its compact single-line wire form."""
    return f"{UPDATE_PLAN_MARKER} {json.dumps(fields, separators=(',', ':'), ensure_ascii=False)}"


def format_suggest_task(title: str, room: str) -> str:
    """Render a [SUGGEST_TASK:...] directive in wire form."""
    payload = json.dumps({"title": title, "room": room}, ensure_ascii=False)
    return f"{SUGGEST_TASK_MARKER}{payload}{SUGGEST_TASK_CLOSE}"
