from __future__ import annotations

from typing import Any

from pydantic import BaseModel

from gamestore.models import GameSummary
from gamestore.storage_types import StorageType


class SaveGameRequest(BaseModel):
    # {"G": {...}, "ctx": {...}}; shape is checked by the adapter.
    state: dict[str, Any]
    metadata: dict[str, Any] | None = None
    expected_last_modified: str | None = None


class GameResponse(BaseModel):
    code: str
    state: dict[str, Any]
    metadata: dict[str, Any]
    last_modified: str | None = None


class GameListResponse(BaseModel):
    games: list[GameSummary]


class StoragePreferenceRequest(BaseModel):
    storage_type: str


class PreferencesResponse(BaseModel):
    # Saved choice (or configured default) after the cloud-to-local fallback.
    storage_type: StorageType
    device_id: str
