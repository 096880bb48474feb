"""Per-device client preferences kept next to local saves.

- which storage type the user picked last
- the current game code for each storage type
- a stable device id (used to tell devices apart in shared games)
"""

from __future__ import annotations

from uuid import uuid4

from gamestore.codes import is_valid_game_code, normalize_game_code
from gamestore.infra.kv_store import KeyValueStore
from gamestore.storage_types import StorageType, normalize_storage_type

STORAGE_PREFERENCE_KEY = "storage_preference"
CURRENT_GAME_KEYS = {
    StorageType.local: "current_game_local",
    StorageType.cloud: "current_game_cloud",
}
DEVICE_ID_KEY = "device_id"


class ClientPreferences:
    def __init__(self, store: KeyValueStore) -> None:
        self._store = store

    def get_saved_storage_type(self) -> StorageType | None:
        """The type the user picked, or None if nothing usable was saved."""

        saved = self._store.get_item(STORAGE_PREFERENCE_KEY)
        return StorageType(saved) if saved in {t.value for t in StorageType} else None

    def get_storage_type(self, default: StorageType = StorageType.local) -> StorageType:
        return self.get_saved_storage_type() or default

    def set_storage_type(self, storage_type: str | StorageType) -> StorageType:
        resolved = normalize_storage_type(storage_type)
        self._store.set_item(STORAGE_PREFERENCE_KEY, resolved.value)
        return resolved

    def get_current_game_code(self, storage_type: str | StorageType) -> str | None:
        code = self._store.get_item(CURRENT_GAME_KEYS[normalize_storage_type(storage_type)])
        return code if is_valid_game_code(code) else None

    def set_current_game_code(self, storage_type: str | StorageType, code: str) -> str:
        if not is_valid_game_code(code):
            raise ValueError(f"Invalid game code format: {code!r}")
        normalized = normalize_game_code(code)
        self._store.set_item(CURRENT_GAME_KEYS[normalize_storage_type(storage_type)], normalized)
        return normalized

    def clear_current_game_code(self, storage_type: str | StorageType) -> None:
        self._store.remove_item(CURRENT_GAME_KEYS[normalize_storage_type(storage_type)])

    def get_device_id(self) -> str:
        device_id = self._store.get_item(DEVICE_ID_KEY)
        if not device_id:
            device_id = str(uuid4())
            self._store.set_item(DEVICE_ID_KEY, device_id)
        return device_id
