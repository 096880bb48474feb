"""Resolve a configured storage type to a cached adapter instance.

The registry is an ordinary object built once at startup and passed to
whoever needs storage (the FastAPI app keeps it on ``app.state``). Caching one
adapter per type matters for the cloud adapter: it owns the sign-in session
and the open push channels.
"""

from __future__ import annotations

import logging
from datetime import timedelta

from redis.exceptions import RedisError

from gamestore.adapters.base import StorageAdapter
from gamestore.adapters.cloud import CloudStorageAdapter
from gamestore.adapters.local import LocalStorageAdapter
from gamestore.config import StorageSettings
from gamestore.infra.kv_store import FileKeyValueStore, KeyValueStore, RedisKeyValueStore
from gamestore.infra.redis_client import create_redis
from gamestore.infra.remote import RemoteBackend
from gamestore.preferences import ClientPreferences
from gamestore.storage_types import StorageType, normalize_storage_type

__all__ = ["AdapterRegistry", "StorageType", "normalize_storage_type"]

logger = logging.getLogger(__name__)


class AdapterRegistry:
    def __init__(
        self,
        settings: StorageSettings,
        *,
        kv_store: KeyValueStore | None = None,
        remote_backend: RemoteBackend | None = None,
    ) -> None:
        self.settings = settings
        self._kv_store = kv_store
        self._remote_backend = remote_backend
        self._adapters: dict[StorageType, StorageAdapter] = {}

    @property
    def kv_store(self) -> KeyValueStore:
        if self._kv_store is None:
            if self.settings.local_redis_url:
                self._kv_store = RedisKeyValueStore(
                    r=create_redis(self.settings.local_redis_url),
                    namespace=f"{self.settings.key_prefix}:local",
                )
            else:
                self._kv_store = FileKeyValueStore(self.settings.local_path)
        return self._kv_store

    @property
    def preferences(self) -> ClientPreferences:
        return ClientPreferences(self.kv_store)

    def default_type(self) -> StorageType:
        """The saved per-device choice if there is one, else the configured type."""

        configured = normalize_storage_type(self.settings.storage_type)
        try:
            saved = self.preferences.get_saved_storage_type()
        except (OSError, RedisError, ValueError) as e:
            logger.warning("could not read storage preference (%s); using %s", e, configured.value)
            return configured
        return saved or configured

    def resolve_type(self, storage_type: str | StorageType | None = None) -> StorageType:
        """Requested type after normalization and the local fallback."""

        requested = normalize_storage_type(storage_type) if storage_type is not None else self.default_type()
        if requested == StorageType.cloud and not self.settings.cloud_configured:
            logger.warning("cloud storage requested but endpoint/key are not configured; falling back to local")
            return StorageType.local
        return requested

    def get(self, storage_type: str | StorageType | None = None) -> StorageAdapter:
        resolved = self.resolve_type(storage_type)
        adapter = self._adapters.get(resolved)
        if adapter is None:
            adapter = self._create(resolved)
            self._adapters[resolved] = adapter
        return adapter

    def _create(self, storage_type: StorageType) -> StorageAdapter:
        if storage_type == StorageType.cloud:
            logger.info("creating cloud storage adapter")
            return CloudStorageAdapter(
                self.settings.remote_url,
                self.settings.remote_key,
                backend=self._remote_backend,
                key_prefix=self.settings.key_prefix,
                conflict_grace_period=timedelta(seconds=self.settings.conflict_grace_seconds),
            )
        logger.info("creating local storage adapter")
        return LocalStorageAdapter(self.kv_store)

    def override(self, storage_type: str | StorageType, adapter: StorageAdapter) -> None:
        """Pin `adapter` for a type (tests, embedding applications)."""

        self._adapters[normalize_storage_type(storage_type)] = adapter

    async def aclose(self) -> None:
        adapters = list(self._adapters.values())
        self._adapters.clear()
        for adapter in adapters:
            await adapter.aclose()
