"""
Model dispatch for homeplan.

Turns a ModelRequest into a model reply by running the CLI configured for
its call site in models.yaml.
"""

from homeplan.agents.dispatch import (
    CancelToken,
    CommandDispatcher,
    DispatchCancelled,
    DispatchError,
    DispatchResult,
    ModelDispatcher,
)
from homeplan.agents.models_config import ModelsConfig, load_models_config

__all__ = [
    "CancelToken",
    "CommandDispatcher",
    "DispatchCancelled",
    "DispatchError",
    "DispatchResult",
    "ModelDispatcher",
    "ModelsConfig",
    "load_models_config",
]
