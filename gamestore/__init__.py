"""Persistence layer for multiplayer game state.

One async contract (`StorageAdapter`) over a single-device local store and a
shared cloud store with conflict detection and push updates.
"""

from gamestore.adapters import CloudStorageAdapter, LocalStorageAdapter, StorageAdapter
from gamestore.channels import Subscription
from gamestore.models import ErrorKind, GameSummary, GameUpdate, SaveResult
from gamestore.preferences import ClientPreferences
from gamestore.registry import AdapterRegistry, StorageType

__all__ = [
    "AdapterRegistry",
    "ClientPreferences",
    "CloudStorageAdapter",
    "ErrorKind",
    "GameSummary",
    "GameUpdate",
    "LocalStorageAdapter",
    "SaveResult",
    "StorageAdapter",
    "StorageType",
    "Subscription",
]
