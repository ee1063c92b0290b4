"""
Model dispatch.

The engine talks to the model through a ModelDispatcher: give it a
ModelRequest (system framing, turns, optional output schema) and an optional
CancelToken, get back a DispatchResult.

CommandDispatcher is the concrete implementation. It renders the request as
one prompt, runs the configured CLI per call site with the prompt on stdin,
and polls the subprocess so a cancel can kill it mid-flight.
"""

import json
import logging
import os
import subprocess
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional, Protocol

from homeplan.agents.models_config import ModelsConfig, get_call_site_command
from homeplan.lib.context import ModelRequest
from homeplan.lib.models import ROLE_USER, ConversationTurn, ImageSegment, TextSegment

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 0.2


class DispatchError(Exception):
    """The model could not be reached or returned a failure."""
    pass


class DispatchCancelled(Exception):
    """The caller cancelled the request before the model answered."""
    pass


class CancelToken:
    """Cancellation signal shared between the caller and an in-flight dispatch."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise DispatchCancelled("Request cancelled")


@dataclass
class DispatchResult:
    text: str
    payload: Optional[Any] = None  # Parsed JSON when an output schema was requested


class ModelDispatcher(Protocol):
    def dispatch(self, request: ModelRequest, cancel: Optional[CancelToken] = None) -> DispatchResult:
        ...


def strip_markdown_fences(text: str) -> str:
    """Strip markdown code fences from text if present."""
    text = text.strip()
    if text.startswith("```"):
        lines = text.split("\n")
        if lines and lines[0].strip().startswith("```"):
            lines = lines[1:]
        if lines and lines[-1].strip() == "```":
            lines = lines[:-1]
        text = "\n".join(lines)
    return text


def render_turn(turn: ConversationTurn) -> str:
    speaker = "User" if turn.role == ROLE_USER else "Assistant"
    lines = []
    for part in turn.parts:
        if isinstance(part, ImageSegment):
            lines.append(f"[Image {part.mime_type}: {part.ref}]")
        elif isinstance(part, TextSegment):
            lines.append(part.text)
    return f"{speaker}: " + "\n".join(lines)


def render_transcript(turns: list[ConversationTurn]) -> str:
    return "\n\n".join(render_turn(t) for t in turns)


def build_prompt(request: ModelRequest) -> str:
    """Flatten a request into a single prompt for a text-in/text-out CLI."""
    sections = [request.system_prompt.strip()]
    if request.turns:
        sections.append("## Conversation\n\n" + render_transcript(request.turns))
    if request.output_schema is not None:
        sections.append(
            "## Output Schema\n\nRespond with ONLY a JSON object valid against this schema:\n\n"
            + json.dumps(request.output_schema, indent=2)
        )
    return "\n\n".join(sections) + "\n"


class CommandDispatcher:
    """Runs the CLI configured for each call site (see models.yaml)."""

    def __init__(
        self,
        config: ModelsConfig,
        timeout: int = 300,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        cwd: Optional[Path] = None,
    ):
        self.config = config
        self.timeout = timeout
        self.poll_interval = poll_interval
        self.cwd = cwd

    def dispatch(self, request: ModelRequest, cancel: Optional[CancelToken] = None) -> DispatchResult:
        """Run the model for one request.

        Raises:
            DispatchCancelled: If cancel fired before the process finished
            DispatchError: On missing binary, timeout or non-zero exit
        """
        if cancel:
            cancel.raise_if_cancelled()

        prompt = build_prompt(request)
        command = get_call_site_command(self.config, request.call_site, prompt)
        stdout = self._run(command.cmd, command.get_stdin_input(prompt), request.call_site, cancel)

        text = stdout.strip()
        if request.output_schema is None:
            return DispatchResult(text=text)

        try:
            payload = json.loads(strip_markdown_fences(text))
        except json.JSONDecodeError as e:
            logger.warning(f"[DISPATCH] {request.call_site}: output is not valid JSON: {e}")
            payload = None
        return DispatchResult(text=text, payload=payload)

    def _run(
        self,
        cmd: list[str],
        stdin_input: Optional[str],
        call_site: str,
        cancel: Optional[CancelToken],
    ) -> str:
        # Remove ANTHROPIC_API_KEY so Claude uses OAuth credentials instead
        env = {k: v for k, v in os.environ.items() if k != "ANTHROPIC_API_KEY"}

        logger.debug(f"[DISPATCH] {call_site}: {cmd[0]} ({len(stdin_input or '')} chars via stdin)")
        try:
            proc = subprocess.Popen(
                cmd,
                cwd=str(self.cwd) if self.cwd else None,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                env=env,
                # Own session: terminal Ctrl-C reaches us, not the model CLI
                start_new_session=True,
            )
        except FileNotFoundError as e:
            raise DispatchError(f"Model command not found: {cmd[0]}") from e

        start = time.monotonic()
        pending_input = stdin_input
        while True:
            try:
                stdout, stderr = proc.communicate(input=pending_input, timeout=self.poll_interval)
                break
            except subprocess.TimeoutExpired:
                # Input is written on the first call only
                pending_input = None
                if cancel and cancel.cancelled:
                    self._kill(proc)
                    logger.info(f"[DISPATCH] {call_site}: cancelled")
                    raise DispatchCancelled(f"{call_site} request cancelled")
                if time.monotonic() - start > self.timeout:
                    self._kill(proc)
                    raise DispatchError(f"{call_site} timed out after {self.timeout}s")

        if cancel and cancel.cancelled:
            logger.info(f"[DISPATCH] {call_site}: cancelled")
            raise DispatchCancelled(f"{call_site} request cancelled")

        if proc.returncode != 0:
            error_msg = (stderr or "").strip() or (stdout or "").strip() or "(no output)"
            raise DispatchError(f"{cmd[0]} failed (exit {proc.returncode}): {error_msg}")

        elapsed = time.monotonic() - start
        logger.debug(f"[DISPATCH] {call_site}: done in {elapsed:.1f}s")
        return stdout or ""

    @staticmethod
    def _kill(proc: subprocess.Popen) -> None:
        proc.kill()
        proc.communicate()
