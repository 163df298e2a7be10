"""A-Train - Google Shared Drive change feed for Autoscan."""

from atrain.core.config import Account, Config, load_config
from atrain.core.errors import (
    AtrainError,
    AutoscanUnavailableError,
    ConfigurationError,
    IndexClientError,
    UnexpectedError,
)
from atrain.orchestrator import TICK_INTERVAL, Atrain, AtrainBuilder
from atrain.supervisor import Supervisor

__version__ = "0.1.0"

__all__ = [
    "Account",
    "Atrain",
    "AtrainBuilder",
    "AtrainError",
    "AutoscanUnavailableError",
    "Config",
    "ConfigurationError",
    "IndexClientError",
    "Supervisor",
    "TICK_INTERVAL",
    "UnexpectedError",
    "load_config",
]
