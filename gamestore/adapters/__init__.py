"""Storage adapters: one async contract, a local and a cloud implementation."""

from gamestore.adapters.base import StorageAdapter
from gamestore.adapters.cloud import CloudStorageAdapter
from gamestore.adapters.local import LocalStorageAdapter

__all__ = ["CloudStorageAdapter", "LocalStorageAdapter", "StorageAdapter"]
