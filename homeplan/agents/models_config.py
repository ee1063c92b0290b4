"""
Model command configuration.

Loads models.yaml to determine which CLI command runs each call site.
If no config file exists, returns the defaults below.

COMMAND TEMPLATES
=================

Each call site maps to a CLI command template. If the template contains
{prompt}, the rendered prompt is substituted as a CLI argument; otherwise
it is passed via stdin (the default, and the safe choice for long
multi-line transcripts).

Example models.yaml:

    call_sites:
      task_plan: claude --print --model opus
      project_summary: claude --print --model haiku
"""

import logging
import shlex
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml

from homeplan.lib.context import CALL_SITES

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "models.yaml"

DEFAULT_COMMAND = "claude --print"

DEFAULT_CALL_SITE_COMMANDS = {
    # Structured plan generation (JSON against the task_plan schema)
    "task_plan": DEFAULT_COMMAND,

    # Conversational call sites (free text with embedded directives)
    "task_chat": DEFAULT_COMMAND,
    "project_chat": DEFAULT_COMMAND,

    # Short one-shot generations
    "task_intro": DEFAULT_COMMAND,
    "project_summary": DEFAULT_COMMAND,
    "vision_statement": DEFAULT_COMMAND,
}

_PROMPT_PLACEHOLDER = "__PROMPT_PLACEHOLDER__"


@dataclass
class ModelsConfig:
    """Model command configuration from models.yaml."""
    call_sites: dict[str, str] = field(default_factory=lambda: DEFAULT_CALL_SITE_COMMANDS.copy())


def load_models_config(config_dir: Optional[Path]) -> ModelsConfig:
    """Load models.yaml and return ModelsConfig.

    If config_dir is None or the file doesn't exist, returns defaults.
    Unknown call sites in the file are ignored with a warning.
    """
    if config_dir is None:
        return ModelsConfig()

    config_path = config_dir / CONFIG_FILENAME
    if not config_path.exists():
        return ModelsConfig()

    try:
        data = yaml.safe_load(config_path.read_text())
    except yaml.YAMLError as e:
        logger.warning(f"Failed to parse {config_path}: {e}")
        return ModelsConfig()

    call_sites = DEFAULT_CALL_SITE_COMMANDS.copy()
    overrides = (data or {}).get("call_sites") or {}
    if not isinstance(overrides, dict):
        logger.warning(f"{config_path}: 'call_sites' must be a mapping, using defaults")
        return ModelsConfig()

    for name, command in overrides.items():
        if name not in CALL_SITES:
            logger.warning(f"{config_path}: unknown call site '{name}' ignored")
            continue
        if not isinstance(command, str) or not command.strip():
            logger.warning(f"{config_path}: empty command for '{name}', keeping default")
            continue
        call_sites[name] = command
    return ModelsConfig(call_sites=call_sites)


@dataclass
class CallSiteCommand:
    """Result of building a call site command."""
    cmd: list[str]  # Command ready for subprocess
    prompt_via_stdin: bool  # True if prompt should be passed via stdin

    def get_stdin_input(self, prompt: str) -> str | None:
        """Return prompt if it should be passed via stdin, else None."""
        return prompt if self.prompt_via_stdin else None


def get_call_site_command(config: ModelsConfig, call_site: str, prompt: str | None = None) -> CallSiteCommand:
    """Build the command list for a call site.

    Raises:
        ValueError: If call_site is unknown.
    """
    if call_site not in config.call_sites:
        raise ValueError(f"Unknown call site: {call_site}")

    cmd_template = config.call_sites[call_site]
    prompt_via_stdin = "{prompt}" not in cmd_template

    # Swap the prompt out before shlex parsing to avoid quote issues
    cmd = shlex.split(cmd_template.replace("{prompt}", _PROMPT_PLACEHOLDER))
    if not prompt_via_stdin:
        cmd = [(prompt or "") if arg == _PROMPT_PLACEHOLDER else arg for arg in cmd]

    return CallSiteCommand(cmd=cmd, prompt_via_stdin=prompt_via_stdin)


def get_call_site_binary(config: ModelsConfig, call_site: str) -> str:
    """Get the binary name for a call site (first element of command)."""
    if call_site not in config.call_sites:
        raise ValueError(f"Unknown call site: {call_site}")
    parts = shlex.split(config.call_sites[call_site])
    return parts[0] if parts else ""


def check_binary_available(binary: str) -> bool:
    """Check if a binary is available in PATH."""
    return shutil.which(binary) is not None


def missing_binaries(config: ModelsConfig) -> dict[str, list[str]]:
    """Map each binary not found on PATH to the call sites that need it."""
    binary_to_sites: dict[str, list[str]] = {}
    for call_site in config.call_sites:
        binary = get_call_site_binary(config, call_site)
        binary_to_sites.setdefault(binary, []).append(call_site)
    return {
        binary: sites
        for binary, sites in binary_to_sites.items()
        if not check_binary_available(binary)
    }
