"""A-Train orchestrator: construction and polling of Drive index clients.

This module provides:
- AtrainBuilder: turns a Config into a ready-to-run Atrain, or fails fast
- Atrain: owns the clients, runs the polling tick, selects pool members

Architecture:
    Config ─► AtrainBuilder ─build()─► Atrain ─tick()─► DriveIndex.sync_drive()
                  │                       │                   │
          DriveIndexBuilder x N     AutoscanClient ◄─trigger──┘

Building is two-phase: from_config() and with_proxy() only describe the
clients; build() opens every session, checks Autoscan, and either returns
a usable Atrain or closes everything it opened and raises.
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable, Sequence
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

from atrain.autoscan import AutoscanBuilder, AutoscanError
from atrain.core.errors import (
    AutoscanUnavailableError,
    IndexClientError,
    UnexpectedError,
)
from atrain.drive import DriveError, DriveIndex

if TYPE_CHECKING:
    from atrain.core.config import Account, Config
    from atrain.drive import ChangeSet, DriveSummary

logger = logging.getLogger(__name__)

TICK_INTERVAL = 60.0  # seconds


class IndexClient(Protocol):
    """What the orchestrator needs from a Drive index client."""

    async def sync_drive(self, drive_id: str) -> ChangeSet: ...

    def acknowledge(self, changes: ChangeSet) -> None: ...

    def drive_summary(self, drive_id: str) -> DriveSummary: ...

    async def aclose(self) -> None: ...


class IndexClientBuilder(Protocol):
    account: Account

    def proxy(self, url: str) -> IndexClientBuilder: ...

    async def build(self) -> IndexClient: ...


class NotificationClient(Protocol):
    """What the orchestrator needs from the Autoscan client."""

    async def available(self) -> None: ...

    async def trigger(self, changes: ChangeSet) -> None: ...

    async def aclose(self) -> None: ...


class NotificationClientBuilder(Protocol):
    def proxy(self, url: str) -> NotificationClientBuilder: ...

    def build(self) -> NotificationClient: ...


def _describe(account: Account) -> str:
    return account.client_email


class Atrain:
    """Running orchestrator.

    Holds the Autoscan client, the primary index client and the pool of all
    index clients (primary first). The pool is never empty.
    """

    def __init__(
        self,
        autoscan: NotificationClient,
        primary: IndexClient,
        pool: Sequence[IndexClient],
        drives: Sequence[str],
        rng: random.Random | None = None,
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            autoscan: Autoscan client, already checked for availability.
            primary: Index client driven by tick().
            pool: Every index client, primary included.
            drives: Shared Drive IDs to synchronize, in order.
            rng: Random source for select_index_client().
            sleep: Coroutine function used for the tick delay.

        Raises:
            ValueError: If pool is empty.
        """
        if not pool:
            raise ValueError("Atrain needs at least one index client")
        self._autoscan = autoscan
        self._primary = primary
        self._pool = list(pool)
        self._drives = list(drives)
        self._rng = rng or random.Random()
        self._sleep = sleep

    @property
    def autoscan(self) -> NotificationClient:
        return self._autoscan

    @property
    def primary(self) -> IndexClient:
        return self._primary

    @property
    def pool(self) -> list[IndexClient]:
        return list(self._pool)

    @property
    def drives(self) -> list[str]:
        return list(self._drives)

    async def sync(self) -> list[ChangeSet]:
        """Synchronize every drive with the primary client and notify Autoscan.

        Changes are acknowledged to the index client only once Autoscan has
        accepted them, so a failed trigger is retried by the next sync.

        Returns:
            One ChangeSet per drive, in drive order.

        Raises:
            IndexClientError: If a drive sync fails.
            AutoscanUnavailableError: If Autoscan rejects a trigger.
            UnexpectedError: For any other collaborator failure.
        """
        results: list[ChangeSet] = []
        for drive_id in self._drives:
            try:
                changes = await self._primary.sync_drive(drive_id)
            except DriveError as e:
                raise IndexClientError(f"Failed to sync drive {drive_id}: {e}") from e
            except Exception as e:
                raise UnexpectedError(f"Unexpected error syncing drive {drive_id}: {e}") from e

            if not changes.is_empty:
                try:
                    await self._autoscan.trigger(changes)
                except AutoscanError as e:
                    raise AutoscanUnavailableError(f"Autoscan is unavailable: {e}") from e
                except Exception as e:
                    raise UnexpectedError(f"Unexpected error notifying Autoscan: {e}") from e
                try:
                    self._primary.acknowledge(changes)
                except DriveError as e:
                    raise IndexClientError(
                        f"Failed to acknowledge changes of drive {drive_id}: {e}"
                    ) from e
            results.append(changes)
        return results

    async def tick(self) -> None:
        """Run one sync, then wait TICK_INTERVAL seconds.

        The wait starts once the sync has completed and is skipped if the
        sync fails. Callers loop on tick() to keep polling.
        """
        await self.sync()
        await self._sleep(TICK_INTERVAL)

    def select_index_client(self) -> IndexClient:
        """Pick a pool member uniformly at random."""
        return self._rng.choice(self._pool)

    async def aclose(self) -> None:
        """Close every client owned by the orchestrator."""
        await _close_all([*self._pool, self._autoscan])

    async def __aenter__(self) -> Atrain:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.aclose()


class AtrainBuilder:
    """Describes an Atrain; build() performs all network I/O."""

    def __init__(
        self,
        autoscan: NotificationClientBuilder,
        primary: IndexClientBuilder,
        secondaries: Sequence[IndexClientBuilder],
        drives: Sequence[str],
    ) -> None:
        self.autoscan = autoscan
        self.primary = primary
        self.secondaries = list(secondaries)
        self.drives = list(drives)

    @classmethod
    def from_config(cls, config: Config, database_path: Path | str) -> AtrainBuilder:
        """Describe the clients declared by a configuration.

        Args:
            config: Loaded configuration.
            database_path: SQLite index shared by every index client.

        Raises:
            ConfigurationError: If no primary account is configured or an
                account cannot be loaded. No client is described in that case.
        """
        account = config.account()
        accounts = config.accounts()

        return cls(
            autoscan=AutoscanBuilder(config.autoscan.url, config.autoscan.authentication),
            primary=DriveIndex.builder(database_path, account),
            secondaries=[DriveIndex.builder(database_path, a) for a in accounts],
            drives=config.drive.drives,
        )

    def with_proxy(self, url: str) -> AtrainBuilder:
        """Route Autoscan and every Drive client through the same proxy."""
        self.autoscan = self.autoscan.proxy(url)
        self.primary = self.primary.proxy(url)
        self.secondaries = [builder.proxy(url) for builder in self.secondaries]
        return self

    async def build(self, rng: random.Random | None = None) -> Atrain:
        """Build every client, check Autoscan, and return the orchestrator.

        Index clients are built concurrently. If any of them fails, the
        others are closed and a single error is raised.

        Raises:
            IndexClientError: If an index client fails to build.
            AutoscanUnavailableError: If Autoscan is not reachable.
            UnexpectedError: For any other failure.
        """
        builders = [self.primary, *self.secondaries]
        logger.info("Building %d index clients", len(builders))

        results = await asyncio.gather(
            *(builder.build() for builder in builders),
            return_exceptions=True,
        )
        clients = [r for r in results if not isinstance(r, BaseException)]
        failures = [
            (builder, r)
            for builder, r in zip(builders, results, strict=True)
            if isinstance(r, BaseException)
        ]
        if failures:
            await _close_all(clients)
            builder, error = failures[0]
            if not isinstance(error, Exception):
                raise error
            account = _describe(builder.account)
            if isinstance(error, DriveError):
                raise IndexClientError(
                    f"Failed to build index client for {account}: {error}", account
                ) from error
            raise UnexpectedError(
                f"Unexpected error building index client for {account}: {error}"
            ) from error

        primary, pool = clients[0], clients

        try:
            autoscan = self.autoscan.build()
        except Exception as e:
            await _close_all(pool)
            raise UnexpectedError(f"Failed to build Autoscan client: {e}") from e

        try:
            await autoscan.available()
        except AutoscanError as e:
            await _close_all([*pool, autoscan])
            raise AutoscanUnavailableError(f"Autoscan is unavailable: {e}") from e
        except Exception as e:
            await _close_all([*pool, autoscan])
            raise UnexpectedError(f"Unexpected error checking Autoscan: {e}") from e
        except BaseException:
            await _close_all([*pool, autoscan])
            raise

        logger.info("A-Train ready: %d index clients, %d drives", len(pool), len(self.drives))
        return Atrain(autoscan, primary, pool, self.drives, rng=rng)


async def _close_all(clients: Sequence[IndexClient | NotificationClient]) -> None:
    """Close clients, logging (not raising) close failures."""
    for client in clients:
        try:
            await client.aclose()
        except Exception:
            logger.exception("Error closing %r", client)
