"""Tests for homeplan.lib.config, homeplan.lib.envparse and homeplan.agents.models_config."""

from pathlib import Path
from unittest.mock import patch

import pytest

from homeplan.agents.models_config import (
    DEFAULT_CALL_SITE_COMMANDS,
    ModelsConfig,
    get_call_site_binary,
    get_call_site_command,
    load_models_config,
    missing_binaries,
)
from homeplan.lib import envparse
from homeplan.lib.config import (
    DEFAULT_PROJECT_CHAT_HISTORY_LIMIT,
    DEFAULT_TASK_CHAT_HISTORY_LIMIT,
    HomeplanConfig,
    load_config,
    resolve_state_dir,
)
from homeplan.lib.normalize import AffiliatePolicy


class TestParseEnv:
    """Tests for the safe env parser."""

    def test_basic(self):
        assert envparse.parse_env('A=1\n# comment\n\nB="two words"\n') == {"A": "1", "B": "two words"}

    def test_export_prefix(self):
        assert envparse.parse_env("export STORE_BACKEND=memory") == {"STORE_BACKEND": "memory"}

    def test_missing_equals(self):
        with pytest.raises(ValueError, match="no '='"):
            envparse.parse_env("JUSTAKEY")

    def test_invalid_key(self):
        with pytest.raises(ValueError, match="Invalid key"):
            envparse.parse_env("lower=1")

    @pytest.mark.parametrize("value", ["$(rm -rf /)", "`id`", "a;b", "a && b", "a | b", "${HOME}"])
    def test_forbidden_patterns(self, value):
        with pytest.raises(ValueError, match="Forbidden pattern"):
            envparse.parse_env(f"AFFILIATE_TAG={value}")

    def test_load_env_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            envparse.load_env(tmp_path / "nope.env")


class TestLoadConfig:
    """Tests for load_config()."""

    def test_defaults_without_file(self, tmp_path):
        config = load_config(tmp_path)
        assert config.state_dir == tmp_path
        assert config.store_backend == "file"
        assert config.affiliate == AffiliatePolicy()
        assert config.task_chat_history_limit == DEFAULT_TASK_CHAT_HISTORY_LIMIT
        assert config.lock_dir == tmp_path / "locks"

    def test_reads_file(self, tmp_path):
        (tmp_path / "homeplan.env").write_text(
            "STORE_BACKEND=memory\n"
            "AFFILIATE_TAG=mytag-21\n"
            "AFFILIATE_DOMAINS=amazon.co.uk, amazon.de\n"
            "TASK_CHAT_HISTORY_LIMIT=30\n"
            "DISPATCH_TIMEOUT=60\n"
        )
        config = load_config(tmp_path)
        assert config.store_backend == "memory"
        assert config.affiliate.tag == "mytag-21"
        assert config.affiliate.param == "tag"
        assert config.affiliate.domains == ("amazon.co.uk", "amazon.de")
        assert config.task_chat_history_limit == 30
        assert config.dispatch_timeout == 60

    def test_state_dir_override(self, tmp_path):
        (tmp_path / "homeplan.env").write_text(f"STATE_DIR={tmp_path / 'data'}\n")
        assert load_config(tmp_path).state_dir == tmp_path / "data"

    def test_env_var_state_dir(self, tmp_path, monkeypatch):
        monkeypatch.setenv("HOMEPLAN_STATE_DIR", str(tmp_path))
        assert resolve_state_dir() == tmp_path
        assert resolve_state_dir(tmp_path / "explicit") == tmp_path / "explicit"

    def test_bad_file_raises(self, tmp_path):
        (tmp_path / "homeplan.env").write_text("AFFILIATE_TAG=$(whoami)\n")
        with pytest.raises(ValueError):
            load_config(tmp_path)

    @patch("homeplan.lib.config.envparse.load_env")
    def test_unknown_backend_defaults_to_file(self, mock_load_env, tmp_path, caplog):
        (tmp_path / "homeplan.env").touch()
        mock_load_env.return_value = {"STORE_BACKEND": "postgres"}
        config = load_config(tmp_path)
        assert config.store_backend == "file"
        assert "Unknown STORE_BACKEND 'postgres'" in caplog.text

    @pytest.mark.parametrize("raw", ["0", "-3", "ten", "1.5"])
    @patch("homeplan.lib.config.envparse.load_env")
    def test_invalid_limit_falls_back(self, mock_load_env, raw, tmp_path, caplog):
        (tmp_path / "homeplan.env").touch()
        mock_load_env.return_value = {"PROJECT_CHAT_HISTORY_LIMIT": raw}
        config = load_config(tmp_path)
        assert config.project_chat_history_limit == DEFAULT_PROJECT_CHAT_HISTORY_LIMIT
        assert f"Invalid PROJECT_CHAT_HISTORY_LIMIT '{raw}'" in caplog.text


class TestModelsConfig:
    """Tests for models.yaml loading and command building."""

    def test_defaults_when_missing(self, tmp_path):
        assert load_models_config(tmp_path).call_sites == DEFAULT_CALL_SITE_COMMANDS
        assert load_models_config(None).call_sites == DEFAULT_CALL_SITE_COMMANDS

    def test_override_one_call_site(self, tmp_path):
        (tmp_path / "models.yaml").write_text("call_sites:\n  task_plan: claude --print --model opus\n")
        config = load_models_config(tmp_path)
        assert config.call_sites["task_plan"] == "claude --print --model opus"
        assert config.call_sites["task_chat"] == DEFAULT_CALL_SITE_COMMANDS["task_chat"]

    def test_unknown_call_site_ignored(self, tmp_path, caplog):
        (tmp_path / "models.yaml").write_text("call_sites:\n  review: codex exec\n")
        config = load_models_config(tmp_path)
        assert "review" not in config.call_sites
        assert "unknown call site 'review'" in caplog.text

    def test_invalid_yaml(self, tmp_path, caplog):
        (tmp_path / "models.yaml").write_text("call_sites: [unclosed\n")
        assert load_models_config(tmp_path).call_sites == DEFAULT_CALL_SITE_COMMANDS
        assert "Failed to parse" in caplog.text

    def test_stdin_command(self):
        command = get_call_site_command(ModelsConfig(), "task_chat", "hello")
        assert command.cmd == ["claude", "--print"]
        assert command.get_stdin_input("hello") == "hello"

    def test_prompt_as_argument(self):
        config = ModelsConfig(call_sites={"task_chat": "llm -m mini {prompt}"})
        command = get_call_site_command(config, "task_chat", 'say "hi"; now')
        assert command.cmd == ["llm", "-m", "mini", 'say "hi"; now']
        assert command.get_stdin_input("x") is None

    def test_unknown_call_site(self):
        with pytest.raises(ValueError, match="Unknown call site"):
            get_call_site_command(ModelsConfig(), "nope")

    def test_binary(self):
        assert get_call_site_binary(ModelsConfig(), "project_summary") == "claude"

    def test_missing_binaries(self):
        config = ModelsConfig(call_sites={"task_plan": "homeplan-no-such-binary --json", "task_chat": "sh -c cat"})
        assert missing_binaries(config) == {"homeplan-no-such-binary": ["task_plan"]}


class TestHomeplanConfig:

    def test_lock_dir_under_state_dir(self):
        assert HomeplanConfig(state_dir=Path("/srv/homeplan")).lock_dir == Path("/srv/homeplan/locks")
