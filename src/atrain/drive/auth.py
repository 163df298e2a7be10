"""OAuth2 access tokens for Google service accounts.

A service account authenticates by signing a short-lived JWT with its RSA
private key (RS256) and exchanging it at the account's token endpoint for a
bearer access token.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import TYPE_CHECKING

import httpx
from jose import JOSEError, jwt

from atrain.drive.api import DriveAuthError, DriveError

if TYPE_CHECKING:
    from atrain.core.config import Account

logger = logging.getLogger(__name__)

DRIVE_SCOPE = "https://www.googleapis.com/auth/drive.readonly"
JWT_BEARER_GRANT = "urn:ietf:params:oauth:grant-type:jwt-bearer"
ASSERTION_LIFETIME = 3600  # seconds, Google's maximum
EXPIRY_MARGIN = 60.0  # refresh this long before the token expires


def sign_assertion(account: Account, scope: str, issued_at: int) -> str:
    """Build an RS256 signed JWT assertion for a service account.

    Args:
        account: Service account credentials.
        scope: OAuth scope requested.
        issued_at: Issue time (Unix seconds).

    Returns:
        Compact serialized JWT.

    Raises:
        DriveAuthError: If the private key cannot be used.
    """
    claims = {
        "iss": account.client_email,
        "scope": scope,
        "aud": account.token_uri,
        "iat": issued_at,
        "exp": issued_at + ASSERTION_LIFETIME,
    }
    try:
        return jwt.encode(claims, account.private_key, algorithm="RS256")
    except JOSEError as e:
        raise DriveAuthError(f"Invalid private key for {account.client_email}: {e}") from e


class ServiceAccountToken:
    """Caches an access token and refreshes it before it expires."""

    def __init__(
        self,
        account: Account,
        client: httpx.AsyncClient,
        scope: str = DRIVE_SCOPE,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._account = account
        self._client = client
        self._scope = scope
        self._clock = clock
        self._access_token: str | None = None
        self._expires_at = 0.0

    @property
    def valid(self) -> bool:
        return self._access_token is not None and self._clock() < self._expires_at

    def invalidate(self) -> None:
        """Forget the cached token so the next call fetches a fresh one."""
        self._access_token = None
        self._expires_at = 0.0

    async def token(self) -> str:
        """Return a valid access token, refreshing it if needed."""
        if self._access_token is not None and self.valid:
            return self._access_token
        return await self.refresh()

    async def refresh(self) -> str:
        """Exchange a freshly signed assertion for an access token.

        Raises:
            DriveAuthError: If the token endpoint rejects the assertion.
            DriveError: If the token endpoint cannot be reached.
        """
        now = self._clock()
        assertion = sign_assertion(self._account, self._scope, int(now))
        try:
            response = await self._client.post(
                self._account.token_uri,
                data={"grant_type": JWT_BEARER_GRANT, "assertion": assertion},
            )
        except httpx.RequestError as e:
            raise DriveError(f"Token endpoint unreachable: {e}") from e

        if response.status_code in (400, 401, 403):
            raise DriveAuthError(
                f"Token request for {self._account.client_email} was rejected",
                response.status_code,
            )
        if response.status_code >= 400:
            raise DriveError(
                f"Token endpoint returned HTTP {response.status_code}",
                response.status_code,
            )

        data = response.json()
        access_token = str(data["access_token"])
        self._access_token = access_token
        self._expires_at = now + float(data.get("expires_in", ASSERTION_LIFETIME)) - EXPIRY_MARGIN
        logger.debug("Refreshed access token for %s", self._account.client_email)
        return access_token
