"""HTTP client for the Autoscan A-Train trigger.

This module provides:
- AutoscanBuilder: describes an Autoscan client (URL, credentials, proxy)
- AutoscanClient: availability check and scan trigger
- AutoscanError / AutoscanAuthError: failures reported by the client
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

import httpx

if TYPE_CHECKING:
    from atrain.drive import ChangeSet

logger = logging.getLogger(__name__)

TRIGGER_PATH = "/triggers/a-train"


class AutoscanError(Exception):
    """Autoscan request failed or Autoscan is unreachable."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class AutoscanAuthError(AutoscanError):
    """Autoscan rejected the configured credentials."""


@dataclass(frozen=True)
class Authentication:
    """HTTP basic credentials for Autoscan."""

    username: str
    password: str


class AutoscanClient:
    """Client for the Autoscan A-Train trigger endpoint."""

    def __init__(
        self,
        url: str,
        authentication: Authentication | None = None,
        proxy: str | None = None,
        timeout: float = 30.0,
    ) -> None:
        """Initialize the Autoscan client.

        Args:
            url: Base URL of the Autoscan server.
            authentication: Optional basic credentials.
            proxy: Optional outbound proxy URL.
            timeout: Request timeout in seconds.
        """
        self._url = url.rstrip("/")
        auth = None
        if authentication is not None:
            auth = httpx.BasicAuth(authentication.username, authentication.password)
        self._client = httpx.AsyncClient(
            base_url=self._url,
            auth=auth,
            proxy=proxy,
            timeout=timeout,
        )

    @property
    def url(self) -> str:
        """Base URL of the Autoscan server."""
        return self._url

    async def aclose(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()

    async def __aenter__(self) -> AutoscanClient:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.aclose()

    def _check_response(self, response: httpx.Response) -> None:
        if response.status_code == 401:
            raise AutoscanAuthError("Invalid Autoscan credentials", 401)
        if not response.is_success:
            raise AutoscanError(
                f"Autoscan returned HTTP {response.status_code}",
                response.status_code,
            )

    async def available(self) -> None:
        """Check that Autoscan is reachable and accepts our credentials.

        Raises:
            AutoscanError: If Autoscan is unreachable or answers with an error.
        """
        try:
            response = await self._client.head(TRIGGER_PATH)
        except httpx.RequestError as e:
            raise AutoscanError(f"Cannot reach Autoscan at {self._url}: {e}") from e
        self._check_response(response)
        logger.debug("Autoscan is available at %s", self._url)

    async def trigger(self, changes: ChangeSet) -> None:
        """Ask Autoscan to scan the created and deleted paths of a drive.

        Args:
            changes: Paths changed in one Shared Drive.

        Raises:
            AutoscanError: If the request fails.
        """
        payload = {"created": list(changes.created), "deleted": list(changes.deleted)}
        try:
            response = await self._client.post(
                f"{TRIGGER_PATH}/{changes.drive_id}", json=payload
            )
        except httpx.RequestError as e:
            raise AutoscanError(f"Cannot reach Autoscan at {self._url}: {e}") from e
        self._check_response(response)
        logger.info(
            "Sent %d created and %d deleted paths of drive %s to Autoscan",
            len(changes.created),
            len(changes.deleted),
            changes.drive_id,
        )


class AutoscanBuilder:
    """Describes an Autoscan client; build() constructs it without I/O."""

    def __init__(self, url: str, authentication: Authentication | None = None) -> None:
        self.url = url
        self.authentication = authentication
        self.proxy_url: str | None = None

    def proxy(self, url: str) -> AutoscanBuilder:
        """Route requests through an outbound proxy."""
        self.proxy_url = str(url)
        return self

    def build(self) -> AutoscanClient:
        """Create the client."""
        return AutoscanClient(self.url, self.authentication, proxy=self.proxy_url)
