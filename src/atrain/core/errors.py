"""Error taxonomy for A-Train.

Every failure surfaced by the orchestrator derives from AtrainError, so a
supervisor can catch one base class and decide whether to keep polling.

Hierarchy::

    AtrainError
    ├── ConfigurationError       - invalid or incomplete configuration
    ├── AutoscanUnavailableError - Autoscan liveness or trigger failure
    ├── IndexClientError         - Drive index client build/sync failure
    └── UnexpectedError          - anything else raised by a collaborator
"""

from __future__ import annotations


class AtrainError(Exception):
    """Base exception for all A-Train errors."""


class ConfigurationError(AtrainError):
    """Configuration could not be loaded or is incomplete."""


class AutoscanUnavailableError(AtrainError):
    """Autoscan is unavailable."""

    def __init__(self, message: str = "Autoscan is unavailable") -> None:
        super().__init__(message)


class IndexClientError(AtrainError):
    """A Drive index client failed to build or synchronize."""

    def __init__(self, message: str, account: str | None = None) -> None:
        super().__init__(message)
        self.account = account


class UnexpectedError(AtrainError):
    """Uncategorized failure from a collaborator."""
