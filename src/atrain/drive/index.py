"""Shared Drive index client.

This module provides:
- ChangeSet: paths created and deleted in one drive since the last sync
- DriveIndex: keeps a local index of Shared Drives in step with Google
- DriveIndexBuilder: describes a DriveIndex; build() authenticates

Architecture:
    DriveIndexBuilder ─build()─► DriveIndex ─sync_drive()─► ChangeSet
                                    │    │
                              DriveAPI  DriveState (SQLite)

The first sync of a drive lists every item and stores the change feed
cursor. Later syncs replay the change feed from that cursor and report
what moved, appeared or disappeared. Reported paths are kept in the index
until acknowledge() confirms they were delivered.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

import httpx

from atrain.drive.api import DriveAPI, DriveChange, DriveError
from atrain.drive.auth import ServiceAccountToken
from atrain.drive.state import DriveState

if TYPE_CHECKING:
    from atrain.core.config import Account

logger = logging.getLogger(__name__)


@dataclass
class ChangeSet:
    """Paths changed in one drive during a sync."""

    drive_id: str
    created: list[str] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.created and not self.deleted


@dataclass
class DriveSummary:
    """Read-only view of what is indexed for a drive."""

    drive_id: str
    item_count: int
    page_token: str | None

    @property
    def indexed(self) -> bool:
        return self.page_token is not None


class DriveIndex:
    """Index client for the Shared Drives visible to one service account."""

    def __init__(
        self,
        account: Account,
        client: httpx.AsyncClient,
        api: DriveAPI,
        state: DriveState,
    ) -> None:
        """Initialize the index client.

        Use DriveIndex.builder() to construct a fully authenticated one.

        Args:
            account: Service account this client acts as.
            client: HTTP client, closed by aclose().
            api: Drive API wrapper using client.
            state: Local index database, closed by aclose().
        """
        self._account = account
        self._client = client
        self._api = api
        self._state = state

    @staticmethod
    def builder(database_path: Path | str, account: Account) -> DriveIndexBuilder:
        return DriveIndexBuilder(database_path, account)

    @property
    def account(self) -> Account:
        return self._account

    async def aclose(self) -> None:
        """Close the HTTP client and the database."""
        await self._client.aclose()
        self._state.close()

    async def __aenter__(self) -> DriveIndex:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.aclose()

    def drive_summary(self, drive_id: str) -> DriveSummary:
        """Describe what is indexed for a drive, without network I/O."""
        return DriveSummary(
            drive_id=drive_id,
            item_count=self._state.count_items(drive_id),
            page_token=self._state.get_page_token(drive_id),
        )

    async def sync_drive(self, drive_id: str) -> ChangeSet:
        """Bring the local index of a drive up to date.

        Args:
            drive_id: Shared Drive ID.

        Returns:
            Paths created and deleted since the last acknowledged sync.
            Empty on the first sync of a drive.

        Raises:
            DriveError: If Drive or the local database fails.
        """
        try:
            page_token = self._state.get_page_token(drive_id)
            if page_token is None:
                await self._full_sync(drive_id)
                return ChangeSet(drive_id)
            return await self._partial_sync(drive_id, page_token)
        except sqlite3.Error as e:
            raise DriveError(f"Index database error for drive {drive_id}: {e}") from e

    async def _full_sync(self, drive_id: str) -> None:
        # Take the cursor first so changes made while listing are replayed
        page_token = await self._api.get_start_page_token(drive_id)
        items = [item async for item in self._api.list_items(drive_id)]

        with self._state.transaction():
            self._state.clear_drive(drive_id)
            self._state.upsert_items(drive_id, items)
            self._state.set_page_token(drive_id, page_token)

        logger.info("Indexed drive %s: %d items", drive_id, len(items))

    def acknowledge(self, changes: ChangeSet) -> None:
        """Mark the paths of a ChangeSet as delivered.

        Until a ChangeSet is acknowledged, every later sync_drive() of the
        drive reports its paths again.

        Raises:
            DriveError: If the local database fails.
        """
        try:
            self._state.remove_pending(changes.drive_id, changes.created, changes.deleted)
        except sqlite3.Error as e:
            raise DriveError(f"Index database error for drive {changes.drive_id}: {e}") from e

    async def _partial_sync(self, drive_id: str, page_token: str) -> ChangeSet:
        changes, next_token = await self._api.list_changes(drive_id, page_token)

        with self._state.transaction():
            applied = self._apply_changes(drive_id, changes)
            self._state.add_pending(drive_id, applied.created, applied.deleted)
            self._state.set_page_token(drive_id, next_token)

        created, deleted = self._state.get_pending(drive_id)
        logger.debug(
            "Drive %s: %d changes, %d created, %d deleted pending",
            drive_id,
            len(changes),
            len(created),
            len(deleted),
        )
        return ChangeSet(drive_id=drive_id, created=created, deleted=deleted)

    def _apply_changes(self, drive_id: str, changes: list[DriveChange]) -> ChangeSet:
        deleted: list[str] = []
        touched: list[str] = []

        for change in changes:
            previous = self._state.get_item(drive_id, change.file_id)
            old_path = self._state.path_of(drive_id, change.file_id) if previous else None

            if change.is_deletion:
                if previous is not None:
                    if old_path:
                        deleted.append(old_path)
                    self._state.delete_tree(drive_id, change.file_id)
                continue

            item = change.item
            if item is None:
                continue
            if previous is not None and old_path and (
                previous.name != item.name or previous.parent != item.parent
            ):
                deleted.append(old_path)

            self._state.upsert_items(drive_id, [item])
            touched.append(item.id)

        # Resolve new paths once every change is applied, so an item whose
        # parent arrived later in the feed still gets a path
        created: list[str] = []
        for item_id in dict.fromkeys(touched):
            path = self._state.path_of(drive_id, item_id)
            if path:
                created.append(path)

        return ChangeSet(
            drive_id=drive_id,
            created=created,
            deleted=list(dict.fromkeys(deleted)),
        )


class DriveIndexBuilder:
    """Describes a DriveIndex; build() performs the network handshake."""

    def __init__(self, database_path: Path | str, account: Account) -> None:
        self.database_path = Path(database_path)
        self.account = account
        self.proxy_url: str | None = None
        self.timeout = 30.0

    def proxy(self, url: str) -> DriveIndexBuilder:
        """Route requests through an outbound proxy."""
        self.proxy_url = str(url)
        return self

    async def build(self) -> DriveIndex:
        """Authenticate the service account and open the index database.

        Raises:
            DriveError: If authentication fails or the database cannot be
                opened. Nothing stays open on failure.
        """
        client = httpx.AsyncClient(proxy=self.proxy_url, timeout=self.timeout)
        try:
            tokens = ServiceAccountToken(self.account, client)
            await tokens.refresh()
            try:
                state = DriveState(self.database_path)
            except (sqlite3.Error, OSError) as e:
                raise DriveError(f"Cannot open index database {self.database_path}: {e}") from e
        except BaseException:
            await client.aclose()
            raise

        logger.debug("Built index client for %s", self.account.client_email)
        return DriveIndex(self.account, client, DriveAPI(client, tokens), state)
