"""Shared Drive index client.

Tracks the change feed of Google Shared Drives into a local SQLite index
and reports which paths were created or deleted between syncs.
"""

from atrain.drive.api import DriveAPI, DriveAuthError, DriveChange, DriveError, DriveItem
from atrain.drive.auth import ServiceAccountToken
from atrain.drive.index import ChangeSet, DriveIndex, DriveIndexBuilder, DriveSummary
from atrain.drive.state import DriveState, StoredItem

__all__ = [
    "ChangeSet",
    "DriveAPI",
    "DriveAuthError",
    "DriveChange",
    "DriveError",
    "DriveIndex",
    "DriveIndexBuilder",
    "DriveItem",
    "DriveState",
    "DriveSummary",
    "ServiceAccountToken",
    "StoredItem",
]
