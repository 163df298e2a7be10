"""Tests for the Shared Drive index client."""

from __future__ import annotations

from collections.abc import AsyncIterator
from pathlib import Path
from unittest.mock import AsyncMock

import httpx
import pytest
import pytest_asyncio

from atrain.autoscan import AutoscanError
from atrain.core.config import Account
from atrain.core.errors import AutoscanUnavailableError
from atrain.drive import ChangeSet, DriveIndex, DriveIndexBuilder
from atrain.drive.api import FOLDER_MIME_TYPE, DriveAuthError, DriveChange, DriveItem
from atrain.drive.state import DriveState
from atrain.orchestrator import Atrain

DRIVE = "drive-a"
TOKEN_URI = "https://oauth2.googleapis.com/token"


def folder(item_id: str, name: str, parent: str, trashed: bool = False) -> DriveItem:
    return DriveItem(
        id=item_id, name=name, parent=parent, mime_type=FOLDER_MIME_TYPE, trashed=trashed
    )


def file(item_id: str, name: str, parent: str, trashed: bool = False) -> DriveItem:
    return DriveItem(
        id=item_id, name=name, parent=parent, mime_type="video/x-matroska", trashed=trashed
    )


def updated(item: DriveItem) -> DriveChange:
    return DriveChange(file_id=item.id, removed=False, item=item)


def removed(item_id: str) -> DriveChange:
    return DriveChange(file_id=item_id, removed=True)


class FakeDriveAPI:
    """In-memory stand-in for DriveAPI."""

    def __init__(self, items: list[DriveItem], start_token: str = "100") -> None:
        self.items = items
        self.start_token = start_token
        self.feeds: list[tuple[list[DriveChange], str]] = []
        self.change_requests: list[str] = []

    async def get_start_page_token(self, drive_id: str) -> str:
        return self.start_token

    async def list_items(self, drive_id: str) -> AsyncIterator[DriveItem]:
        for item in self.items:
            yield item

    async def list_changes(self, drive_id: str, page_token: str) -> tuple[list[DriveChange], str]:
        self.change_requests.append(page_token)
        return self.feeds.pop(0)


@pytest.fixture
def api() -> FakeDriveAPI:
    """Drive with /Movies/Film (2020)/film.mkv and /TV."""
    return FakeDriveAPI(
        [
            folder("movies", "Movies", DRIVE),
            folder("film", "Film (2020)", "movies"),
            file("film-mkv", "film.mkv", "film"),
            folder("tv", "TV", DRIVE),
        ]
    )


@pytest_asyncio.fixture
async def index(tmp_path: Path, account: Account, api: FakeDriveAPI):  # type: ignore[no-untyped-def]
    """DriveIndex backed by the fake API and a temporary database."""
    client = httpx.AsyncClient()
    drive_index = DriveIndex(account, client, api, DriveState(tmp_path / "a-train.db"))  # type: ignore[arg-type]
    yield drive_index
    await drive_index.aclose()


class TestFullSync:
    """Tests for the first sync of a drive."""

    @pytest.mark.asyncio
    async def test_first_sync_indexes_without_changes(self, index: DriveIndex) -> None:
        """The first sync should index everything and report nothing."""
        changes = await index.sync_drive(DRIVE)

        assert changes == ChangeSet(DRIVE)
        assert changes.is_empty
        summary = index.drive_summary(DRIVE)
        assert summary.item_count == 4
        assert summary.page_token == "100"
        assert summary.indexed is True

    @pytest.mark.asyncio
    async def test_unindexed_summary(self, index: DriveIndex) -> None:
        """A drive never synced has no page token."""
        summary = index.drive_summary("drive-b")

        assert summary.item_count == 0
        assert summary.indexed is False


class TestPartialSync:
    """Tests for syncs replaying the change feed."""

    @pytest.mark.asyncio
    async def test_new_file(self, index: DriveIndex, api: FakeDriveAPI) -> None:
        """A new file should be reported as created."""
        await index.sync_drive(DRIVE)
        api.feeds.append(([updated(file("ep1", "S01E01.mkv", "tv"))], "101"))

        changes = await index.sync_drive(DRIVE)

        assert changes.created == ["/TV/S01E01.mkv"]
        assert changes.deleted == []
        assert api.change_requests == ["100"]
        assert index.drive_summary(DRIVE).page_token == "101"

    @pytest.mark.asyncio
    async def test_rename(self, index: DriveIndex, api: FakeDriveAPI) -> None:
        """A renamed folder should be deleted at its old path and created at the new one."""
        await index.sync_drive(DRIVE)
        api.feeds.append(([updated(folder("film", "Film (2021)", "movies"))], "101"))

        changes = await index.sync_drive(DRIVE)

        assert changes.deleted == ["/Movies/Film (2020)"]
        assert changes.created == ["/Movies/Film (2021)"]

    @pytest.mark.asyncio
    async def test_modified_in_place(self, index: DriveIndex, api: FakeDriveAPI) -> None:
        """A file changed in place should only be reported as created."""
        await index.sync_drive(DRIVE)
        api.feeds.append(([updated(file("film-mkv", "film.mkv", "film"))], "101"))

        changes = await index.sync_drive(DRIVE)

        assert changes.created == ["/Movies/Film (2020)/film.mkv"]
        assert changes.deleted == []

    @pytest.mark.asyncio
    async def test_trashed_folder(self, index: DriveIndex, api: FakeDriveAPI) -> None:
        """A trashed folder should be deleted with its descendants."""
        await index.sync_drive(DRIVE)
        api.feeds.append(([updated(folder("film", "Film (2020)", "movies", trashed=True))], "101"))

        changes = await index.sync_drive(DRIVE)

        assert changes.deleted == ["/Movies/Film (2020)"]
        assert changes.created == []
        assert index.drive_summary(DRIVE).item_count == 2

    @pytest.mark.asyncio
    async def test_removed_unknown_item(self, index: DriveIndex, api: FakeDriveAPI) -> None:
        """Removing an item that was never indexed reports nothing."""
        await index.sync_drive(DRIVE)
        api.feeds.append(([removed("unknown")], "101"))

        changes = await index.sync_drive(DRIVE)

        assert changes.is_empty

    @pytest.mark.asyncio
    async def test_parent_arrives_later_in_feed(
        self, index: DriveIndex, api: FakeDriveAPI
    ) -> None:
        """A file listed before its new parent folder should still get a path."""
        await index.sync_drive(DRIVE)
        api.feeds.append(
            (
                [
                    updated(file("ep1", "S01E01.mkv", "season")),
                    updated(folder("season", "Season 1", "tv")),
                ],
                "101",
            )
        )

        changes = await index.sync_drive(DRIVE)

        assert changes.created == ["/TV/Season 1/S01E01.mkv", "/TV/Season 1"]

    @pytest.mark.asyncio
    async def test_created_then_removed(self, index: DriveIndex, api: FakeDriveAPI) -> None:
        """An item created and removed in the same feed is not reported as created."""
        await index.sync_drive(DRIVE)
        api.feeds.append(
            ([updated(file("tmp", "tmp.part", "tv")), removed("tmp")], "101")
        )

        changes = await index.sync_drive(DRIVE)

        assert changes.created == []
        assert changes.deleted == ["/TV/tmp.part"]


class TestDriveIndexBuilder:
    """Tests for DriveIndexBuilder."""

    def test_proxy(self, tmp_path: Path, account: Account) -> None:
        """proxy() should be recorded, last write wins."""
        builder = DriveIndex.builder(tmp_path / "a-train.db", account)
        builder.proxy("http://proxy-1:3128").proxy("http://proxy-2:3128")

        assert isinstance(builder, DriveIndexBuilder)
        assert builder.proxy_url == "http://proxy-2:3128"

    @pytest.mark.asyncio
    async def test_build_authenticates(self, httpx_mock, tmp_path: Path, account: Account) -> None:  # type: ignore[no-untyped-def]
        """build() should fetch a token and open the database."""
        httpx_mock.add_response(
            method="POST", url=TOKEN_URI, json={"access_token": "tok", "expires_in": 3600}
        )

        index = await DriveIndex.builder(tmp_path / "a-train.db", account).build()

        assert index.account == account
        assert (tmp_path / "a-train.db").exists()
        await index.aclose()

    @pytest.mark.asyncio
    async def test_build_rejected(self, httpx_mock, tmp_path: Path, account: Account) -> None:  # type: ignore[no-untyped-def]
        """A rejected service account should fail the build."""
        httpx_mock.add_response(method="POST", url=TOKEN_URI, status_code=401)

        with pytest.raises(DriveAuthError):
            await DriveIndex.builder(tmp_path / "a-train.db", account).build()

        assert not (tmp_path / "a-train.db").exists()


class TestAcknowledge:
    """Tests for keeping changes until they are delivered."""

    @pytest.mark.asyncio
    async def test_unacknowledged_changes_are_reported_again(
        self, index: DriveIndex, api: FakeDriveAPI
    ) -> None:
        """Changes should be merged into later syncs until acknowledged."""
        await index.sync_drive(DRIVE)
        api.feeds.append(([updated(file("ep1", "S01E01.mkv", "tv"))], "101"))
        api.feeds.append(([removed("film-mkv")], "102"))

        await index.sync_drive(DRIVE)
        changes = await index.sync_drive(DRIVE)

        assert changes.created == ["/TV/S01E01.mkv"]
        assert changes.deleted == ["/Movies/Film (2020)/film.mkv"]
        assert api.change_requests == ["100", "101"]

    @pytest.mark.asyncio
    async def test_acknowledged_changes_are_not_repeated(
        self, index: DriveIndex, api: FakeDriveAPI
    ) -> None:
        """After acknowledge() only newer changes should be reported."""
        await index.sync_drive(DRIVE)
        api.feeds.append(([updated(file("ep1", "S01E01.mkv", "tv"))], "101"))
        api.feeds.append(([updated(file("ep2", "S01E02.mkv", "tv"))], "102"))

        index.acknowledge(await index.sync_drive(DRIVE))
        changes = await index.sync_drive(DRIVE)

        assert changes.created == ["/TV/S01E02.mkv"]
        assert changes.deleted == []


class FlakyAutoscan:
    """Autoscan stand-in that rejects the first few triggers."""

    def __init__(self, failures: int) -> None:
        self.failures = failures
        self.triggered: list[ChangeSet] = []

    async def available(self) -> None:
        pass

    async def trigger(self, changes: ChangeSet) -> None:
        if self.failures > 0:
            self.failures -= 1
            raise AutoscanError("Autoscan returned HTTP 503", 503)
        self.triggered.append(changes)

    async def aclose(self) -> None:
        pass


class TestDeliveryAfterOutage:
    """Ticks against a real index while Autoscan is down, then back."""

    @pytest.mark.asyncio
    async def test_changes_delivered_after_autoscan_recovers(
        self, index: DriveIndex, api: FakeDriveAPI
    ) -> None:
        """A path missed during an outage should be sent on the next tick."""
        autoscan = FlakyAutoscan(failures=1)
        atrain = Atrain(autoscan, index, [index], [DRIVE], sleep=AsyncMock())

        await atrain.tick()
        api.feeds.append(([updated(file("ep1", "S01E01.mkv", "tv"))], "101"))
        with pytest.raises(AutoscanUnavailableError):
            await atrain.tick()
        api.feeds.append(([], "102"))
        await atrain.tick()

        assert [c.created for c in autoscan.triggered] == [["/TV/S01E01.mkv"]]
        assert index.drive_summary(DRIVE).page_token == "102"

    @pytest.mark.asyncio
    async def test_delivered_changes_not_sent_twice(
        self, index: DriveIndex, api: FakeDriveAPI
    ) -> None:
        """Once Autoscan accepts a ChangeSet it should not be sent again."""
        autoscan = FlakyAutoscan(failures=0)
        atrain = Atrain(autoscan, index, [index], [DRIVE], sleep=AsyncMock())

        await atrain.tick()
        api.feeds.append(([updated(file("ep1", "S01E01.mkv", "tv"))], "101"))
        await atrain.tick()
        api.feeds.append(([], "102"))
        await atrain.tick()

        assert len(autoscan.triggered) == 1
