"""Tests for homeplan.agents.dispatch module."""

import os
import signal
import subprocess
import threading
import time
from unittest.mock import patch

import pytest

from homeplan.agents.dispatch import (
    CancelToken,
    CommandDispatcher,
    DispatchCancelled,
    DispatchError,
    build_prompt,
    render_transcript,
    strip_markdown_fences,
)
from homeplan.agents.models_config import ModelsConfig
from homeplan.lib.context import ModelRequest
from homeplan.lib.models import ROLE_USER, ConversationTurn, ImageSegment, TextSegment


def _dispatcher(command, call_site="task_chat", **kwargs):
    return CommandDispatcher(ModelsConfig(call_sites={call_site: command}), **kwargs)


class TestStripMarkdownFences:

    def test_json_fence(self):
        assert strip_markdown_fences('```json\n{"a": 1}\n```') == '{"a": 1}'

    def test_plain_fence(self):
        assert strip_markdown_fences('```\n{"a": 1}\n```\n') == '{"a": 1}'

    def test_no_fence(self):
        assert strip_markdown_fences('  {"a": 1}  ') == '{"a": 1}'


class TestBuildPrompt:
    """Tests for flattening a request into one prompt."""

    def test_transcript_speakers_and_images(self):
        turns = [
            ConversationTurn(role=ROLE_USER, parts=[TextSegment("Here is the hall"), ImageSegment("image/jpeg", "gs://hall.jpg")]),
            ConversationTurn.assistant("Nice tiles."),
        ]
        transcript = render_transcript(turns)
        assert transcript == "User: Here is the hall\n[Image image/jpeg: gs://hall.jpg]\n\nAssistant: Nice tiles."

    def test_sections(self):
        request = ModelRequest(
            call_site="task_plan",
            system_prompt="You are a planner.\n",
            turns=[ConversationTurn.user("Sand the floor")],
            output_schema={"type": "object"},
        )
        prompt = build_prompt(request)
        assert prompt.startswith("You are a planner.\n\n## Conversation\n\nUser: Sand the floor")
        assert "## Output Schema" in prompt
        assert '"type": "object"' in prompt

    def test_no_turns_no_schema(self):
        prompt = build_prompt(ModelRequest(call_site="task_intro", system_prompt="Say hi"))
        assert prompt == "Say hi\n"


class TestCommandDispatcher:
    """Tests for running real commands through CommandDispatcher."""

    def test_prompt_on_stdin(self):
        request = ModelRequest(call_site="task_chat", system_prompt="Echo me")
        result = _dispatcher("cat").dispatch(request)
        assert result.text == "Echo me"
        assert result.payload is None

    def test_structured_output_parsed(self):
        request = ModelRequest(call_site="task_plan", system_prompt="x", output_schema={"type": "object"})
        result = _dispatcher("""printf '{"guide": []}'""", "task_plan").dispatch(request)
        assert result.payload == {"guide": []}

    def test_structured_output_not_json(self, caplog):
        request = ModelRequest(call_site="task_plan", system_prompt="x", output_schema={"type": "object"})
        result = _dispatcher("echo 'sorry, I cannot'", "task_plan").dispatch(request)
        assert result.payload is None
        assert result.text == "sorry, I cannot"
        assert "not valid JSON" in caplog.text

    def test_non_zero_exit(self):
        request = ModelRequest(call_site="task_chat", system_prompt="x")
        with pytest.raises(DispatchError, match="exit 3.*boom"):
            _dispatcher("sh -c 'echo boom >&2; exit 3'").dispatch(request)

    def test_missing_binary(self):
        request = ModelRequest(call_site="task_chat", system_prompt="x")
        with pytest.raises(DispatchError, match="not found"):
            _dispatcher("homeplan-no-such-model-binary").dispatch(request)

    def test_timeout(self):
        request = ModelRequest(call_site="task_chat", system_prompt="x")
        with pytest.raises(DispatchError, match="timed out"):
            _dispatcher("sleep 5", timeout=0.3, poll_interval=0.05).dispatch(request)

    def test_cancel_kills_in_flight_process(self):
        request = ModelRequest(call_site="task_chat", system_prompt="x")
        token = CancelToken()
        timer = threading.Timer(0.2, token.cancel)
        timer.start()
        start = time.monotonic()
        try:
            with pytest.raises(DispatchCancelled):
                _dispatcher("sleep 10", poll_interval=0.05).dispatch(request, token)
        finally:
            timer.cancel()
        assert time.monotonic() - start < 5

    def test_cancelled_before_start(self):
        token = CancelToken()
        token.cancel()
        request = ModelRequest(call_site="task_chat", system_prompt="x")
        with pytest.raises(DispatchCancelled):
            _dispatcher("homeplan-no-such-model-binary").dispatch(request, token)

    def test_api_key_not_passed(self, monkeypatch):
        monkeypatch.setenv("ANTHROPIC_API_KEY", "secret")
        request = ModelRequest(call_site="task_chat", system_prompt="x")
        result = _dispatcher("""sh -c 'echo "key=${ANTHROPIC_API_KEY:-unset}"'""").dispatch(request)
        assert result.text == "key=unset"


class TestTerminalInterrupt:
    """Ctrl-C in a terminal cancels the request rather than failing it."""

    @pytest.fixture
    def spawned(self):
        """Record every process the dispatcher starts."""
        procs = []
        real_popen = subprocess.Popen

        def popen(*args, **kwargs):
            proc = real_popen(*args, **kwargs)
            procs.append(proc)
            return proc

        with patch("homeplan.agents.dispatch.subprocess.Popen", side_effect=popen):
            yield procs

    def test_child_killed_by_sigint_while_cancelling(self, spawned):
        request = ModelRequest(call_site="task_chat", system_prompt="x")
        token = CancelToken()
        sessions = []

        def interrupt():
            sessions.append(os.getsid(spawned[0].pid))
            token.cancel()
            os.kill(spawned[0].pid, signal.SIGINT)

        # Poll interval longer than the interrupt delay, so the child exits
        # before the poll loop sees the token
        timer = threading.Timer(0.3, interrupt)
        timer.start()
        try:
            with pytest.raises(DispatchCancelled):
                _dispatcher("sleep 5", poll_interval=2.0).dispatch(request, token)
        finally:
            timer.cancel()
        assert spawned[0].returncode == -signal.SIGINT
        # Own session, so a terminal Ctrl-C is not delivered to the child
        assert sessions == [spawned[0].pid]
