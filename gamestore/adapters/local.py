"""Single-device backend over a string key-value store.

Three collections live under three store keys, each a JSON array of
``[code, value]`` pairs:

- ``game_state``:    code -> serialized ``{"G", "ctx"}``
- ``game_metadata``: code -> metadata (always has ``lastModified``)
- ``game_initial``:  code -> serialized initial state

Every operation rewrites a whole collection. There is no locking: one process
owns the store.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from typing import Any

from redis.exceptions import RedisError

from gamestore.adapters.base import StorageAdapter, build_summary, sort_summaries
from gamestore.codec import deserialize_state, is_valid_serialized_state, serialize_state
from gamestore.codes import is_valid_game_code, normalize_game_code
from gamestore.errors import CodecError, ErrorKind
from gamestore.infra.kv_store import KeyValueStore
from gamestore.models import GameSummary, SaveResult
from gamestore.timestamps import now_iso

GAME_STATE_KEY = "game_state"
GAME_METADATA_KEY = "game_metadata"
GAME_INITIAL_KEY = "game_initial"

# Browsers cap localStorage around 5 MiB; warn before a value gets that big.
LARGE_VALUE_BYTES = 5 * 1024 * 1024

STORE_ERRORS = (OSError, RedisError)


def decode_collection(raw: str) -> dict[str, Any]:
    """Parse a persisted collection; raises ValueError on any shape problem."""

    parsed = json.loads(raw)
    if not isinstance(parsed, list):
        raise ValueError(f"expected array, got {type(parsed).__name__}")

    out: dict[str, Any] = {}
    for entry in parsed:
        if not isinstance(entry, list) or len(entry) != 2 or not isinstance(entry[0], str):
            raise ValueError("entries must be [key, value] pairs")
        key, value = entry
        if key in out:
            raise ValueError(f"duplicate key {key!r}")
        out[key] = value
    return out


def encode_collection(data: Mapping[str, Any]) -> str:
    return json.dumps([[k, v] for k, v in data.items()])


class LocalStorageAdapter(StorageAdapter):
    name = "LocalStorageAdapter"

    def __init__(self, store: KeyValueStore, *, key_prefix: str = "") -> None:
        super().__init__()
        self._store = store
        self._key_prefix = key_prefix

    def _key(self, collection: str) -> str:
        return f"{self._key_prefix}:{collection}" if self._key_prefix else collection

    # -- collections --------------------------------------------------------

    def _read_collection(self, collection: str) -> dict[str, Any]:
        """Load one collection.

        Corrupted data is discarded (the store key is removed) and an empty
        collection returned. Store I/O errors propagate.
        """

        key = self._key(collection)
        raw: str | None = None
        try:
            # Undecodable bytes surface here as UnicodeDecodeError.
            raw = self._store.get_item(key)
            if not raw:
                return {}
            return decode_collection(raw)
        except (ValueError, RecursionError) as e:
            self.logger.error("[%s] corrupted data for key %r: %s", self.name, key, e)
            if raw is not None:
                self.logger.error("[%s] corrupted data (first 200 chars): %s", self.name, raw[:200])
            try:
                self._store.remove_item(key)
                self.logger.warning("[%s] cleared corrupted data for key %r", self.name, key)
            except STORE_ERRORS as remove_error:
                self.logger.error("[%s] failed to clear corrupted key %r: %s", self.name, key, remove_error)
            return {}

    def _write_collection(self, collection: str, data: Mapping[str, Any]) -> bool:
        key = self._key(collection)
        try:
            serialized = encode_collection(data)
        except (TypeError, ValueError) as e:
            self.logger.error("[%s] failed to encode key %r: %s", self.name, key, e)
            return False

        size = len(serialized.encode("utf-8"))
        if size > LARGE_VALUE_BYTES:
            self.logger.warning("[%s] large data size for key %r: %.2fMB", self.name, key, size / 1024 / 1024)

        try:
            self._store.set_item(key, serialized)
        except STORE_ERRORS as e:
            self.logger.error("[%s] failed to save data for key %r: %s", self.name, key, e)
            return False
        return True

    def _load_slot(self, operation: str, collection: str, code: str) -> dict[str, Any] | None:
        """Validate and decode one entry, evicting it if it can't be read."""

        entries = self._read_collection(collection)
        data = entries.get(code)
        if data is None:
            self.logger.info("[%s.%s] no saved state found for game %s", self.name, operation, code)
            return None

        if is_valid_serialized_state(data):
            try:
                return deserialize_state(data)
            except CodecError as e:
                self.logger.error("[%s.%s] deserialization failed for game %s: %s", self.name, operation, code, e)
        else:
            self.logger.warning(
                "[%s.%s] invalid state format for game %s (%s)",
                self.name,
                operation,
                code,
                type(data).__name__,
            )

        entries.pop(code, None)
        if self._write_collection(collection, entries):
            self.logger.warning("[%s.%s] removed corrupted state for game %s", self.name, operation, code)
        return None

    # -- contract -----------------------------------------------------------

    async def save_game(
        self,
        code: str,
        state: Mapping[str, Any],
        metadata: Mapping[str, Any] | None = None,
        expected_last_modified: str | None = None,
    ) -> SaveResult:
        op = "save_game"
        normalized = self._check_code(op, code)
        if normalized is None or not self._check_state(op, normalized, state):
            return SaveResult.failed(ErrorKind.invalid_input)
        meta = self._check_metadata(op, normalized, metadata)
        if meta is None:
            return SaveResult.failed(ErrorKind.invalid_input)

        try:
            serialized = serialize_state(state["G"], state["ctx"])
        except CodecError as e:
            self.logger.error("[%s.%s] serialization failed for game %s: %s", self.name, op, normalized, e)
            return SaveResult.failed(ErrorKind.invalid_input)

        try:
            states = self._read_collection(GAME_STATE_KEY)
            states[normalized] = serialized
            if not self._write_collection(GAME_STATE_KEY, states):
                return SaveResult.failed(ErrorKind.backend_failure)

            metadata_map = self._read_collection(GAME_METADATA_KEY)
            existing = metadata_map.get(normalized)
            last_modified = meta.get("lastModified") or now_iso()
            metadata_map[normalized] = {
                **(existing if isinstance(existing, Mapping) else {}),
                **meta,
                "lastModified": last_modified,
            }
            if not self._write_collection(GAME_METADATA_KEY, metadata_map):
                self.logger.warning("[%s.%s] state saved but metadata was not for game %s", self.name, op, normalized)
        except STORE_ERRORS as e:
            self.logger.error("[%s.%s] storage error for game %s: %s", self.name, op, normalized, e)
            return SaveResult.failed(ErrorKind.backend_failure)

        return SaveResult.ok(last_modified=last_modified)

    async def load_game(self, code: str) -> dict[str, Any] | None:
        op = "load_game"
        normalized = self._check_code(op, code)
        if normalized is None:
            return None
        try:
            return self._load_slot(op, GAME_STATE_KEY, normalized)
        except STORE_ERRORS as e:
            self.logger.error("[%s.%s] storage error for game %s: %s", self.name, op, normalized, e)
            return None

    async def delete_game(self, code: str) -> bool:
        op = "delete_game"
        normalized = self._check_code(op, code)
        if normalized is None:
            return False

        try:
            states = self._read_collection(GAME_STATE_KEY)
            if normalized not in states:
                self.logger.info("[%s.%s] game not found: %s", self.name, op, normalized)
                return False

            metadata_map = self._read_collection(GAME_METADATA_KEY)
            initial_map = self._read_collection(GAME_INITIAL_KEY)
            states.pop(normalized, None)
            metadata_map.pop(normalized, None)
            initial_map.pop(normalized, None)

            if not self._write_collection(GAME_STATE_KEY, states):
                return False
            metadata_saved = self._write_collection(GAME_METADATA_KEY, metadata_map)
            initial_saved = self._write_collection(GAME_INITIAL_KEY, initial_map)
            if not (metadata_saved and initial_saved):
                self.logger.error(
                    "[%s.%s] game %s deleted but cleanup was partial (metadata=%s, initial=%s)",
                    self.name,
                    op,
                    normalized,
                    metadata_saved,
                    initial_saved,
                )
        except STORE_ERRORS as e:
            self.logger.error("[%s.%s] storage error for game %s: %s", self.name, op, normalized, e)
            return False

        return True

    async def list_games(self) -> list[GameSummary]:
        op = "list_games"
        try:
            states = self._read_collection(GAME_STATE_KEY)
            metadata_map = self._read_collection(GAME_METADATA_KEY)
        except STORE_ERRORS as e:
            self.logger.error("[%s.%s] storage error: %s", self.name, op, e)
            return []

        games: list[GameSummary] = []
        for code, data in states.items():
            if not is_valid_game_code(code) or normalize_game_code(code) != code:
                continue
            if not is_valid_serialized_state(data):
                self.logger.warning("[%s.%s] skipping game %s with invalid state", self.name, op, code)
                continue
            meta = metadata_map.get(code)
            games.append(build_summary(code=code, state=data, metadata=meta if isinstance(meta, Mapping) else None))

        return sort_summaries(games)

    async def get_game_metadata(self, code: str) -> dict[str, Any] | None:
        op = "get_game_metadata"
        normalized = self._check_code(op, code)
        if normalized is None:
            return None
        try:
            meta = self._read_collection(GAME_METADATA_KEY).get(normalized)
        except STORE_ERRORS as e:
            self.logger.error("[%s.%s] storage error for game %s: %s", self.name, op, normalized, e)
            return None
        if not isinstance(meta, Mapping):
            self.logger.info("[%s.%s] no metadata found for game %s", self.name, op, normalized)
            return None
        return dict(meta)

    async def update_game_metadata(self, code: str, metadata: Mapping[str, Any]) -> bool:
        op = "update_game_metadata"
        normalized = self._check_code(op, code)
        if normalized is None:
            return False
        patch = self._check_metadata(op, normalized, metadata)
        if patch is None:
            return False

        try:
            if normalized not in self._read_collection(GAME_STATE_KEY):
                self.logger.error("[%s.%s] game not found: %s", self.name, op, normalized)
                return False

            metadata_map = self._read_collection(GAME_METADATA_KEY)
            existing = metadata_map.get(normalized)
            metadata_map[normalized] = {
                **(existing if isinstance(existing, Mapping) else {}),
                **patch,
                "lastModified": now_iso(),
            }
            return self._write_collection(GAME_METADATA_KEY, metadata_map)
        except STORE_ERRORS as e:
            self.logger.error("[%s.%s] storage error for game %s: %s", self.name, op, normalized, e)
            return False

    async def get_last_modified(self, code: str) -> str | None:
        meta = await self.get_game_metadata(code)
        if meta is None:
            return None
        value = meta.get("lastModified")
        return value if isinstance(value, str) else None

    # -- initial-state slot -------------------------------------------------

    async def save_initial_state(self, code: str, state: Mapping[str, Any]) -> bool:
        op = "save_initial_state"
        normalized = self._check_code(op, code)
        if normalized is None or not self._check_state(op, normalized, state):
            return False
        try:
            serialized = serialize_state(state["G"], state["ctx"])
            initial_map = self._read_collection(GAME_INITIAL_KEY)
            initial_map[normalized] = serialized
            return self._write_collection(GAME_INITIAL_KEY, initial_map)
        except CodecError as e:
            self.logger.error("[%s.%s] serialization failed for game %s: %s", self.name, op, normalized, e)
            return False
        except STORE_ERRORS as e:
            self.logger.error("[%s.%s] storage error for game %s: %s", self.name, op, normalized, e)
            return False

    async def load_initial_state(self, code: str) -> dict[str, Any] | None:
        op = "load_initial_state"
        normalized = self._check_code(op, code)
        if normalized is None:
            return None
        try:
            return self._load_slot(op, GAME_INITIAL_KEY, normalized)
        except STORE_ERRORS as e:
            self.logger.error("[%s.%s] storage error for game %s: %s", self.name, op, normalized, e)
            return None
