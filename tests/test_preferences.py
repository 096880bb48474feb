from __future__ import annotations

import pytest

from gamestore.infra.kv_store import FileKeyValueStore
from gamestore.preferences import ClientPreferences
from gamestore.registry import StorageType


def test_storage_type_defaults_to_local(kv_store: FileKeyValueStore) -> None:
    prefs = ClientPreferences(kv_store)
    assert prefs.get_saved_storage_type() is None
    assert prefs.get_storage_type() == StorageType.local
    assert prefs.get_storage_type(default=StorageType.cloud) == StorageType.cloud

    assert prefs.set_storage_type("supabase") == StorageType.cloud
    assert ClientPreferences(kv_store).get_storage_type() == StorageType.cloud


def test_unknown_saved_storage_type_reads_as_local(kv_store: FileKeyValueStore) -> None:
    kv_store.set_item("storage_preference", "floppy")
    assert ClientPreferences(kv_store).get_storage_type() == StorageType.local


def test_current_game_code_is_tracked_per_storage_type(kv_store: FileKeyValueStore) -> None:
    prefs = ClientPreferences(kv_store)
    assert prefs.set_current_game_code("local", " abcd ") == "ABCD"
    prefs.set_current_game_code(StorageType.cloud, "WXYZQ")

    assert prefs.get_current_game_code("local") == "ABCD"
    assert prefs.get_current_game_code("cloud") == "WXYZQ"

    prefs.clear_current_game_code("local")
    assert prefs.get_current_game_code("local") is None
    assert prefs.get_current_game_code("cloud") == "WXYZQ"


def test_invalid_current_game_code(kv_store: FileKeyValueStore) -> None:
    prefs = ClientPreferences(kv_store)
    with pytest.raises(ValueError):
        prefs.set_current_game_code("local", "AB")

    kv_store.set_item("current_game_local", "12")
    assert prefs.get_current_game_code("local") is None


def test_device_id_is_stable(kv_store: FileKeyValueStore) -> None:
    first = ClientPreferences(kv_store).get_device_id()
    assert first
    assert ClientPreferences(kv_store).get_device_id() == first
