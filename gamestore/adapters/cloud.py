"""Shared cloud backend with optimistic conflict detection and push updates.

Conflict handling is last-write-wins: every save overwrites the row. When the
caller passes the timestamp it last observed and the row has since moved on by
more than `conflict_grace_period`, the result is flagged ``conflict=True`` so
the caller can warn or reload. The grace period absorbs clock/replication skew
and a client's own rapid successive saves.
"""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Mapping
from datetime import timedelta
from typing import Any

from redis.exceptions import RedisError

from gamestore.adapters.base import StorageAdapter, build_summary, sort_summaries
from gamestore.channels import Subscription, UpdateCallback
from gamestore.codec import deserialize_state, is_valid_serialized_state, serialize_state
from gamestore.codes import is_valid_game_code, normalize_game_code
from gamestore.config import DEFAULT_CONFLICT_GRACE_SECONDS
from gamestore.errors import CodecError, ErrorKind, RemoteBackendError, StorageConfigurationError
from gamestore.infra.remote import UPDATE_EVENT, RedisRemoteBackend, RemoteBackend, RemoteChannel
from gamestore.models import GameRecord, GameSummary, SaveResult
from gamestore.timestamps import now_iso, parse_timestamp

CONFLICT_GRACE_PERIOD = timedelta(seconds=DEFAULT_CONFLICT_GRACE_SECONDS)

BACKEND_ERRORS = (RemoteBackendError, RedisError, OSError)


class CloudStorageAdapter(StorageAdapter):
    name = "CloudStorageAdapter"

    def __init__(
        self,
        url: str | None,
        api_key: str | None,
        *,
        backend: RemoteBackend | None = None,
        key_prefix: str = "gamestore",
        conflict_grace_period: timedelta = CONFLICT_GRACE_PERIOD,
    ) -> None:
        super().__init__()
        if not url or not api_key:
            raise StorageConfigurationError("CloudStorageAdapter: url and api_key are required")

        self._backend: RemoteBackend = backend or RedisRemoteBackend.from_url(url, api_key=api_key, prefix=key_prefix)
        self._owns_backend = backend is None
        self.conflict_grace_period = conflict_grace_period

        self._initialized = False
        self._init_task: asyncio.Future[None] | None = None
        self._channels: dict[str, tuple[Subscription, RemoteChannel]] = {}

    @property
    def subscribed_codes(self) -> list[str]:
        return sorted(self._channels)

    # -- anonymous sign-in --------------------------------------------------

    async def _ensure_initialized(self) -> None:
        """Sign in once; concurrent callers share the in-flight attempt.

        A failed attempt is dropped so the next call tries again.
        """

        if self._initialized:
            return

        if self._init_task is None:
            self._init_task = asyncio.ensure_future(self._initialize())
        task = self._init_task

        try:
            await asyncio.shield(task)
        except BaseException:
            if self._init_task is task and task.done():
                self._init_task = None
            raise
        self._initialized = True

    async def _initialize(self) -> None:
        try:
            session_id = await self._backend.sign_in_anonymously()
        except BACKEND_ERRORS as e:
            self.logger.error("[%s] initialization error: %s", self.name, e)
            raise
        self.logger.info("[%s] authenticated anonymously (session %s)", self.name, session_id)

    # -- conflict detection -------------------------------------------------

    def _is_conflict(self, code: str, expected: str | None, actual: str | None) -> bool:
        if not expected or not actual or expected == actual:
            return False

        actual_at = parse_timestamp(actual)
        if actual_at is None:
            self.logger.warning("[%s.save_game] stored timestamp for %s is unreadable: %r", self.name, code, actual)
            return False

        expected_at = parse_timestamp(expected)
        if expected_at is None:
            self.logger.warning(
                "[%s.save_game] conflict for %s: expected timestamp %r is unreadable, stored %s",
                self.name,
                code,
                expected,
                actual,
            )
            return True

        gap = actual_at - expected_at
        if gap > self.conflict_grace_period:
            self.logger.warning(
                "[%s.save_game] conflict for %s: expected %s, stored %s (%.1fs newer); overwriting",
                self.name,
                code,
                expected,
                actual,
                gap.total_seconds(),
            )
            return True
        return False

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
            await self._ensure_initialized()
            existing = await self._backend.fetch(normalized)

            conflict = self._is_conflict(normalized, expected_last_modified, existing.updated_at if existing else None)

            existing_meta = existing.metadata if existing is not None and isinstance(existing.metadata, Mapping) else {}
            merged = {**existing_meta, **meta, "lastModified": meta.get("lastModified") or now_iso()}

            stored = await self._backend.upsert(
                GameRecord(
                    code=normalized,
                    state=serialized,
                    metadata=merged,
                    created_at=existing.created_at if existing is not None else None,
                )
            )
        except BACKEND_ERRORS as e:
            self.logger.error("[%s.%s] failed to save game %s: %s", self.name, op, normalized, e)
            return SaveResult.failed(ErrorKind.backend_failure)

        self.logger.info("[%s.%s] saved game %s at %s", self.name, op, normalized, stored.updated_at)
        return SaveResult.ok(last_modified=stored.updated_at, conflict=conflict)

    async def _fetch(self, op: str, code: str) -> GameRecord | None:
        await self._ensure_initialized()
        record = await self._backend.fetch(code)
        if record is None:
            self.logger.info("[%s.%s] no saved game found: %s", self.name, op, code)
        return record

    async def load_game(self, code: str) -> dict[str, Any] | None:
        op = "load_game"
        normalized = self._check_code(op, code)
        if normalized is None:
            return None

        try:
            record = await self._fetch(op, normalized)
        except BACKEND_ERRORS as e:
            self.logger.error("[%s.%s] error loading game %s: %s", self.name, op, normalized, e)
            return None
        if record is None:
            return None

        if not is_valid_serialized_state(record.state):
            self.logger.warning("[%s.%s] invalid state format for game %s", self.name, op, normalized)
            return None
        try:
            return deserialize_state(record.state)
        except CodecError as e:
            self.logger.error("[%s.%s] deserialization failed for game %s: %s", self.name, op, normalized, e)
            return None

    async def delete_game(self, code: str) -> bool:
        op = "delete_game"
        normalized = self._check_code(op, code)
        if normalized is None:
            return False

        await self._teardown_channel(normalized)
        try:
            await self._ensure_initialized()
            deleted = await self._backend.delete(normalized)
        except BACKEND_ERRORS as e:
            self.logger.error("[%s.%s] error deleting game %s: %s", self.name, op, normalized, e)
            return False

        if deleted:
            self.logger.info("[%s.%s] deleted game %s", self.name, op, normalized)
        else:
            self.logger.info("[%s.%s] game not found: %s", self.name, op, normalized)
        return deleted

    async def list_games(self) -> list[GameSummary]:
        op = "list_games"
        try:
            await self._ensure_initialized()
            rows = await self._backend.list_rows()
        except BACKEND_ERRORS as e:
            self.logger.error("[%s.%s] error listing games: %s", self.name, op, e)
            return []

        games: list[GameSummary] = []
        for row in rows:
            if not is_valid_game_code(row.code) or normalize_game_code(row.code) != row.code:
                self.logger.warning("[%s.%s] skipping row with invalid code %r", self.name, op, row.code)
                continue
            if not is_valid_serialized_state(row.state):
                self.logger.warning("[%s.%s] skipping game %s with invalid state", self.name, op, row.code)
                continue
            meta = row.metadata if isinstance(row.metadata, Mapping) else None
            games.append(
                build_summary(code=row.code, state=row.state, metadata=meta, fallback_last_modified=row.updated_at)
            )

        return sort_summaries(games)

    async def get_last_modified(self, code: str) -> str | None:
        op = "get_last_modified"
        normalized = self._check_code(op, code)
        if normalized is None:
            return None
        try:
            record = await self._fetch(op, normalized)
        except BACKEND_ERRORS as e:
            self.logger.error("[%s.%s] error fetching game %s: %s", self.name, op, normalized, e)
            return None
        return record.updated_at if record is not None else None

    async def get_game_metadata(self, code: str) -> dict[str, Any] | None:
        op = "get_game_metadata"
        normalized = self._check_code(op, code)
        if normalized is None:
            return None
        try:
            record = await self._fetch(op, normalized)
        except BACKEND_ERRORS as e:
            self.logger.error("[%s.%s] error fetching game %s: %s", self.name, op, normalized, e)
            return None
        if record is None:
            return None
        return dict(record.metadata) if isinstance(record.metadata, Mapping) else {}

    async def update_game_metadata(self, code: str, metadata: Mapping[str, Any]) -> bool:
        op = "update_game_metadata"
        normalized = self._check_code(op, code)
        if normalized is None:
            return False
        patch = self._check_metadata(op, normalized, metadata)
        if patch is None:
            return False

        try:
            record = await self._fetch(op, normalized)
            if record is None:
                return False
            existing = record.metadata if isinstance(record.metadata, Mapping) else {}
            await self._backend.upsert(
                GameRecord(
                    code=normalized,
                    state=record.state,
                    metadata={**existing, **patch, "lastModified": now_iso()},
                    created_at=record.created_at,
                )
            )
        except BACKEND_ERRORS as e:
            self.logger.error("[%s.%s] error updating metadata for game %s: %s", self.name, op, normalized, e)
            return False
        return True

    # -- push subscriptions -------------------------------------------------

    async def subscribe_to_game(self, code: str, callback: UpdateCallback) -> Subscription:
        op = "subscribe_to_game"
        normalized = self._check_code(op, code)
        if normalized is None:
            return Subscription.inert(normalize_game_code(code))

        # One channel per code: a new subscription replaces the previous one.
        await self._teardown_channel(normalized)

        async def _release() -> None:
            await self._release_channel(normalized, sub)

        sub = Subscription(normalized, on_close=_release)

        async def _on_change(payload: dict[str, Any]) -> None:
            if sub.active:
                await self._deliver(normalized, payload, callback)

        try:
            await self._ensure_initialized()
            channel = await self._backend.subscribe(normalized, _on_change, events=(UPDATE_EVENT,))
        except BACKEND_ERRORS as e:
            self.logger.error("[%s.%s] error subscribing to game %s: %s", self.name, op, normalized, e)
            sub.mark_closed()
            return sub

        # Another subscribe for this code may have finished while we were waiting.
        await self._teardown_channel(normalized)
        self._channels[normalized] = (sub, channel)
        sub.mark_subscribed()
        self.logger.info("[%s.%s] subscribed to real-time updates for game %s", self.name, op, normalized)
        return sub

    async def _deliver(self, code: str, payload: Mapping[str, Any], callback: UpdateCallback) -> None:
        op = "subscribe_to_game"
        row = payload.get("new")
        if not isinstance(row, Mapping) or not is_valid_serialized_state(row.get("state")):
            self.logger.warning("[%s.%s] received invalid state update for game %s", self.name, op, code)
            return

        try:
            state = deserialize_state(row["state"])
        except CodecError as e:
            self.logger.error("[%s.%s] could not decode update for game %s: %s", self.name, op, code, e)
            return

        metadata = row.get("metadata")
        updated_at = row.get("updated_at")
        self.logger.debug("[%s.%s] delivering update for game %s (%s)", self.name, op, code, updated_at)
        try:
            result = callback(
                state,
                dict(metadata) if isinstance(metadata, Mapping) else {},
                updated_at if isinstance(updated_at, str) else None,
            )
            if inspect.isawaitable(result):
                await result
        except Exception:
            self.logger.exception("[%s.%s] update callback failed for game %s", self.name, op, code)

    async def _close_channel(self, code: str, channel: RemoteChannel) -> None:
        try:
            await channel.close()
        except BACKEND_ERRORS as e:
            self.logger.warning("[%s] error closing channel for game %s: %s", self.name, code, e)
        self.logger.info("[%s] unsubscribed from real-time updates for game %s", self.name, code)

    async def _teardown_channel(self, code: str) -> None:
        entry = self._channels.pop(code, None)
        if entry is None:
            return
        sub, channel = entry
        sub.mark_closed()
        await self._close_channel(code, channel)

    async def _release_channel(self, code: str, sub: Subscription) -> None:
        entry = self._channels.get(code)
        if entry is None or entry[0] is not sub:
            # Already replaced or torn down.
            return
        del self._channels[code]
        await self._close_channel(code, entry[1])

    async def cleanup(self) -> None:
        for code in list(self._channels):
            await self._teardown_channel(code)
        self.logger.info("[%s] cleaned up all subscriptions", self.name)

    async def aclose(self) -> None:
        await self.cleanup()
        if self._owns_backend:
            await self._backend.aclose()
