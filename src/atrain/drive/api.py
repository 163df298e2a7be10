"""Async client for the Google Drive v3 REST API.

This module provides:
- DriveItem / DriveChange: file metadata and change feed entries
- DriveAPI: the handful of Drive endpoints needed to index a Shared Drive
- DriveError / DriveAuthError: failures reported by Google
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import httpx

if TYPE_CHECKING:
    from atrain.drive.auth import ServiceAccountToken

logger = logging.getLogger(__name__)

DRIVE_API_URL = "https://www.googleapis.com/drive/v3"
FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"
PAGE_SIZE = 1000

ITEM_FIELDS = "id,name,parents,mimeType,trashed"


class DriveError(Exception):
    """Base exception for Drive errors."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class DriveAuthError(DriveError):
    """Service account authentication failed."""


@dataclass
class DriveItem:
    """File or folder metadata from Drive."""

    id: str
    name: str
    parent: str | None
    mime_type: str
    trashed: bool = False

    @property
    def is_folder(self) -> bool:
        return self.mime_type == FOLDER_MIME_TYPE

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DriveItem:
        """Create from API response dictionary."""
        parents = data.get("parents") or []
        return cls(
            id=data["id"],
            name=data["name"],
            parent=parents[0] if parents else None,
            mime_type=data.get("mimeType", ""),
            trashed=bool(data.get("trashed", False)),
        )


@dataclass
class DriveChange:
    """One entry of a Drive change feed."""

    file_id: str
    removed: bool
    item: DriveItem | None = None

    @property
    def is_deletion(self) -> bool:
        """True if the item is gone from the drive (removed or trashed)."""
        return self.removed or self.item is None or self.item.trashed

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DriveChange:
        """Create from API response dictionary."""
        file = data.get("file")
        return cls(
            file_id=data["fileId"],
            removed=bool(data.get("removed", False)),
            item=DriveItem.from_dict(file) if file else None,
        )


class DriveAPI:
    """Drive v3 endpoints used to index one Shared Drive at a time."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        tokens: ServiceAccountToken,
        base_url: str = DRIVE_API_URL,
    ) -> None:
        """Initialize the Drive API wrapper.

        Args:
            client: HTTP client (owned by the caller).
            tokens: Access token source for the service account.
            base_url: Drive API root.
        """
        self._client = client
        self._tokens = tokens
        self._base_url = base_url.rstrip("/")

    async def _get(self, path: str, params: dict[str, str]) -> dict[str, Any]:
        token = await self._tokens.token()
        try:
            response = await self._client.get(
                f"{self._base_url}{path}",
                params=params,
                headers={"Authorization": f"Bearer {token}"},
            )
        except httpx.RequestError as e:
            raise DriveError(f"Drive request failed: {e}") from e

        if response.status_code == 401:
            self._tokens.invalidate()
            raise DriveAuthError("Drive rejected the access token", 401)
        if response.status_code >= 400:
            raise DriveError(_error_message(response), response.status_code)

        result: dict[str, Any] = response.json()
        return result

    async def get_start_page_token(self, drive_id: str) -> str:
        """Get the change feed cursor for the current state of a drive."""
        data = await self._get(
            "/changes/startPageToken",
            {"driveId": drive_id, "supportsAllDrives": "true"},
        )
        return str(data["startPageToken"])

    async def list_items(self, drive_id: str) -> AsyncIterator[DriveItem]:
        """Iterate over every non-trashed item of a Shared Drive."""
        params = {
            "driveId": drive_id,
            "corpora": "drive",
            "includeItemsFromAllDrives": "true",
            "supportsAllDrives": "true",
            "q": "trashed = false",
            "pageSize": str(PAGE_SIZE),
            "fields": f"nextPageToken,files({ITEM_FIELDS})",
        }
        while True:
            data = await self._get("/files", params)
            for file in data.get("files", []):
                yield DriveItem.from_dict(file)

            next_page = data.get("nextPageToken")
            if not next_page:
                return
            params = {**params, "pageToken": next_page}

    async def list_changes(
        self, drive_id: str, page_token: str
    ) -> tuple[list[DriveChange], str]:
        """Fetch every change of a drive since page_token.

        Returns:
            Tuple of (changes in feed order, next start page token).
        """
        changes: list[DriveChange] = []
        params = {
            "driveId": drive_id,
            "pageToken": page_token,
            "includeItemsFromAllDrives": "true",
            "supportsAllDrives": "true",
            "includeRemoved": "true",
            "pageSize": str(PAGE_SIZE),
            "fields": (
                "nextPageToken,newStartPageToken,"
                f"changes(changeType,fileId,removed,file({ITEM_FIELDS}))"
            ),
        }
        while True:
            data = await self._get("/changes", params)
            for change in data.get("changes", []):
                # "drive" changes describe the Shared Drive itself
                if change.get("changeType", "file") != "file":
                    continue
                changes.append(DriveChange.from_dict(change))

            if data.get("newStartPageToken"):
                return changes, str(data["newStartPageToken"])
            next_page = data.get("nextPageToken")
            if not next_page:
                raise DriveError("Change feed ended without a new start page token")
            params = {**params, "pageToken": next_page}


def _error_message(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        data = None
    detail = None
    if isinstance(data, dict) and isinstance(data.get("error"), dict):
        detail = data["error"].get("message")
    return detail or f"Drive returned HTTP {response.status_code}"
