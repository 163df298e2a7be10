"""Configuration loading for A-Train.

This module provides:
- Account: Google service account credentials for one Drive identity
- AutoscanConfig / DriveConfig / Config: parsed a-train.toml sections
- load_config: read and validate a TOML configuration file

Example a-train.toml::

    [autoscan]
    url = "http://autoscan:3030"
    username = "hello"
    password = "there"

    [drive]
    account = "./account.json"
    accounts = "./accounts"
    drives = ["0A1xxxxxxxxxUk9PVA"]
"""

from __future__ import annotations

import json
import logging
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from atrain.autoscan import Authentication
from atrain.core.errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_TOKEN_URI = "https://oauth2.googleapis.com/token"


@dataclass(frozen=True)
class Account:
    """Service account credentials for one Google identity.

    Attributes:
        client_email: Service account email, used as the JWT issuer.
        private_key: PEM encoded RSA private key.
        token_uri: OAuth2 token endpoint.
        source: File the account was loaded from, if any.
    """

    client_email: str
    private_key: str = field(repr=False)
    token_uri: str = DEFAULT_TOKEN_URI
    source: Path | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any], source: Path | None = None) -> Account:
        """Create from a service account key dictionary."""
        try:
            return cls(
                client_email=data["client_email"],
                private_key=data["private_key"],
                token_uri=data.get("token_uri") or DEFAULT_TOKEN_URI,
                source=source,
            )
        except KeyError as e:
            raise ConfigurationError(
                f"Service account {source or '<inline>'} is missing field {e.args[0]!r}"
            ) from None

    @classmethod
    def from_file(cls, path: Path) -> Account:
        """Load a service account JSON key file.

        Raises:
            ConfigurationError: If the file is unreadable or not a key file.
        """
        try:
            data = json.loads(path.read_text())
        except OSError as e:
            raise ConfigurationError(f"Cannot read service account {path}: {e}") from e
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Service account {path} is not valid JSON: {e}") from e
        if not isinstance(data, dict):
            raise ConfigurationError(f"Service account {path} must be a JSON object")
        return cls.from_dict(data, source=path)


@dataclass
class AutoscanConfig:
    """Connection settings for the Autoscan server."""

    url: str
    username: str | None = None
    password: str | None = None

    def __post_init__(self) -> None:
        """Normalize Autoscan URL."""
        self.url = self.url.rstrip("/")

    @property
    def authentication(self) -> Authentication | None:
        """Basic credentials, or None when Autoscan runs without auth."""
        if self.username is None and self.password is None:
            return None
        return Authentication(self.username or "", self.password or "")


@dataclass
class DriveConfig:
    """Drive section: service accounts and the Shared Drives to track."""

    account: Path | None = None
    accounts: Path | None = None
    drives: list[str] = field(default_factory=list)


@dataclass
class Config:
    """Top-level A-Train configuration."""

    autoscan: AutoscanConfig
    drive: DriveConfig

    def account(self) -> Account:
        """Load the primary service account.

        Raises:
            ConfigurationError: If no primary account is configured or it
                cannot be loaded.
        """
        if self.drive.account is None:
            raise ConfigurationError("No service account configured ([drive].account)")
        return Account.from_file(self.drive.account)

    def accounts(self) -> list[Account]:
        """Load the secondary service accounts.

        Every ``*.json`` file of the ``[drive].accounts`` directory is loaded,
        in file name order.

        Returns:
            List of accounts, empty if no directory is configured.
        """
        directory = self.drive.accounts
        if directory is None:
            return []
        if not directory.is_dir():
            raise ConfigurationError(f"Service account directory not found: {directory}")

        accounts = [Account.from_file(path) for path in sorted(directory.glob("*.json"))]
        logger.debug("Loaded %d secondary accounts from %s", len(accounts), directory)
        return accounts

    @classmethod
    def from_dict(cls, data: dict[str, Any], base_path: Path | None = None) -> Config:
        """Build a Config from parsed TOML data.

        Args:
            data: Parsed configuration mapping.
            base_path: Directory relative key paths are resolved against.
        """
        base_path = base_path or Path.cwd()

        autoscan = data.get("autoscan")
        if not isinstance(autoscan, dict) or not autoscan.get("url"):
            raise ConfigurationError("Missing Autoscan URL ([autoscan].url)")

        drive = data.get("drive", {})
        if not isinstance(drive, dict):
            raise ConfigurationError("[drive] must be a table")

        drives = drive.get("drives", [])
        if not isinstance(drives, list) or not all(isinstance(d, str) for d in drives):
            raise ConfigurationError("[drive].drives must be a list of Drive IDs")

        for key in ("username", "password"):
            if not isinstance(autoscan.get(key, ""), str):
                raise ConfigurationError(f"[autoscan].{key} must be a string")

        def resolve(key: str) -> Path | None:
            value = drive.get(key)
            if value is None:
                return None
            if not isinstance(value, str):
                raise ConfigurationError(f"[drive].{key} must be a path")
            path = Path(value).expanduser()
            return path if path.is_absolute() else base_path / path

        return cls(
            autoscan=AutoscanConfig(
                url=str(autoscan["url"]),
                username=autoscan.get("username"),
                password=autoscan.get("password"),
            ),
            drive=DriveConfig(
                account=resolve("account"),
                accounts=resolve("accounts"),
                drives=list(drives),
            ),
        )


def load_config(path: Path) -> Config:
    """Load configuration from a TOML file.

    Args:
        path: Path to a-train.toml.

    Returns:
        Parsed configuration.

    Raises:
        ConfigurationError: If the file is missing or invalid.
    """
    path = Path(path)
    try:
        with path.open("rb") as f:
            data = tomllib.load(f)
    except FileNotFoundError:
        raise ConfigurationError(f"Configuration file not found: {path}") from None
    except OSError as e:
        raise ConfigurationError(f"Cannot read configuration {path}: {e}") from e
    except tomllib.TOMLDecodeError as e:
        raise ConfigurationError(f"Error parsing {path}: {e}") from e

    return Config.from_dict(data, base_path=path.parent)
