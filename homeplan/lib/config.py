"""
Configuration loader for homeplan.

Settings come from homeplan.env (KEY=value, see envparse) in the state
directory. A missing file means defaults throughout.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

from homeplan.lib import envparse
from homeplan.lib.normalize import (
    AffiliatePolicy,
    DEFAULT_AFFILIATE_DOMAINS,
    DEFAULT_AFFILIATE_PARAM,
    DEFAULT_AFFILIATE_TAG,
)

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "homeplan.env"
STATE_DIR_ENV_VAR = "HOMEPLAN_STATE_DIR"
DEFAULT_STATE_DIR = Path.home() / ".local" / "share" / "homeplan"

VALID_STORE_BACKENDS = ("file", "memory")

# History budgets per call site (number of most recent turns kept).
# Plan generation is never truncated.
DEFAULT_TASK_CHAT_HISTORY_LIMIT = 15
DEFAULT_PROJECT_CHAT_HISTORY_LIMIT = 10
DEFAULT_VISION_HISTORY_LIMIT = 8

DEFAULT_DISPATCH_TIMEOUT = 300
DEFAULT_LOCK_TIMEOUT = 60


@dataclass
class HomeplanConfig:
    """Engine configuration from homeplan.env"""
    state_dir: Path
    store_backend: str = "file"
    affiliate: AffiliatePolicy = field(default_factory=AffiliatePolicy)
    task_chat_history_limit: int = DEFAULT_TASK_CHAT_HISTORY_LIMIT
    project_chat_history_limit: int = DEFAULT_PROJECT_CHAT_HISTORY_LIMIT
    vision_history_limit: int = DEFAULT_VISION_HISTORY_LIMIT
    dispatch_timeout: int = DEFAULT_DISPATCH_TIMEOUT
    lock_timeout: int = DEFAULT_LOCK_TIMEOUT

    @property
    def lock_dir(self) -> Path:
        return self.state_dir / "locks"


def resolve_state_dir(explicit: str | Path | None = None) -> Path:
    """State dir from argument, then $HOMEPLAN_STATE_DIR, then the default."""
    if explicit:
        return Path(explicit).expanduser()
    env_value = os.environ.get(STATE_DIR_ENV_VAR)
    if env_value:
        return Path(env_value).expanduser()
    return DEFAULT_STATE_DIR


def _positive_int(env: dict, key: str, default: int) -> int:
    raw = env.get(key)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning(f"Invalid {key} '{raw}', using default {default}")
        return default
    if value <= 0:
        logger.warning(f"Invalid {key} '{raw}', using default {default}")
        return default
    return value


def _affiliate_policy(env: dict) -> AffiliatePolicy:
    domains = tuple(
        d.strip().lower() for d in env.get("AFFILIATE_DOMAINS", "").split(",") if d.strip()
    )
    return AffiliatePolicy(
        tag=env.get("AFFILIATE_TAG") or DEFAULT_AFFILIATE_TAG,
        param=env.get("AFFILIATE_PARAM") or DEFAULT_AFFILIATE_PARAM,
        domains=domains or DEFAULT_AFFILIATE_DOMAINS,
    )


def config_from_env(env: dict, state_dir: Path) -> HomeplanConfig:
    """Build HomeplanConfig from parsed env values."""
    if env.get("STATE_DIR"):
        state_dir = Path(env["STATE_DIR"]).expanduser()

    store_backend = env.get("STORE_BACKEND", "file").lower()
    if store_backend not in VALID_STORE_BACKENDS:
        logger.warning(f"Unknown STORE_BACKEND '{store_backend}', defaulting to 'file'")
        store_backend = "file"

    return HomeplanConfig(
        state_dir=state_dir,
        store_backend=store_backend,
        affiliate=_affiliate_policy(env),
        task_chat_history_limit=_positive_int(env, "TASK_CHAT_HISTORY_LIMIT", DEFAULT_TASK_CHAT_HISTORY_LIMIT),
        project_chat_history_limit=_positive_int(env, "PROJECT_CHAT_HISTORY_LIMIT", DEFAULT_PROJECT_CHAT_HISTORY_LIMIT),
        vision_history_limit=_positive_int(env, "VISION_HISTORY_LIMIT", DEFAULT_VISION_HISTORY_LIMIT),
        dispatch_timeout=_positive_int(env, "DISPATCH_TIMEOUT", DEFAULT_DISPATCH_TIMEOUT),
        lock_timeout=_positive_int(env, "LOCK_TIMEOUT", DEFAULT_LOCK_TIMEOUT),
    )


def load_config(state_dir: str | Path | None = None) -> HomeplanConfig:
    """Load homeplan.env from the state directory and return HomeplanConfig."""
    resolved = resolve_state_dir(state_dir)
    config_path = resolved / CONFIG_FILENAME
    if not config_path.exists():
        logger.debug(f"No {CONFIG_FILENAME} in {resolved}, using defaults")
        return HomeplanConfig(state_dir=resolved)
    return config_from_env(envparse.load_env(config_path), resolved)
