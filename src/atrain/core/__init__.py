"""Core module - Configuration, errors and logging setup."""

from atrain.core.config import Account, AutoscanConfig, Config, DriveConfig, load_config
from atrain.core.errors import (
    AtrainError,
    AutoscanUnavailableError,
    ConfigurationError,
    IndexClientError,
    UnexpectedError,
)

__all__ = [
    # Config
    "Account",
    "AutoscanConfig",
    "Config",
    "DriveConfig",
    "load_config",
    # Errors
    "AtrainError",
    "AutoscanUnavailableError",
    "ConfigurationError",
    "IndexClientError",
    "UnexpectedError",
]
