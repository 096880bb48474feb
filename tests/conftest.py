from __future__ import annotations

import asyncio
from collections.abc import Iterable
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

import fakeredis
import pytest

from gamestore.adapters.cloud import CloudStorageAdapter
from gamestore.adapters.local import LocalStorageAdapter
from gamestore.errors import RemoteBackendError
from gamestore.infra.kv_store import FileKeyValueStore
from gamestore.infra.remote import RedisRemoteBackend
from gamestore.models import GameRecord


def make_state(*, phase: str = "setup", turn: int = 1, **ctx: Any) -> dict[str, Any]:
    return {
        "G": {"players": [["0", {"name": "Ada"}], ["1", {"name": "Grace"}]], "contracts": []},
        "ctx": {"phase": phase, "turn": turn, "currentPlayer": "0", "numPlayers": 2, **ctx},
    }


class FakeChannel:
    def __init__(self, code: str, handler: Any, events: frozenset[str]) -> None:
        self.name = f"fake:{code}"
        self.code = code
        self.handler = handler
        self.events = events
        self.closed = False

    async def close(self) -> None:
        self.closed = True


class FakeRemoteBackend:
    """In-process stand-in for the shared games table.

    The clock is manual: every upsert moves it forward 1ms, and tests can jump
    it with `advance()`.
    """

    def __init__(self) -> None:
        self.rows: dict[str, GameRecord] = {}
        self.channels: list[FakeChannel] = []
        self.sign_in_calls = 0
        self.fail_sign_in = 0
        self.closed = False
        self._now = datetime(2024, 1, 1, tzinfo=UTC)

    def advance(self, seconds: float) -> None:
        self._now += timedelta(seconds=seconds)

    def _stamp(self) -> str:
        self._now += timedelta(milliseconds=1)
        return self._now.isoformat()

    async def sign_in_anonymously(self) -> str:
        self.sign_in_calls += 1
        # Yield so concurrent callers really overlap.
        await asyncio.sleep(0.01)
        if self.fail_sign_in:
            self.fail_sign_in -= 1
            raise RemoteBackendError("auth service unavailable")
        return f"session-{self.sign_in_calls}"

    async def fetch(self, code: str) -> GameRecord | None:
        row = self.rows.get(code)
        return row.model_copy(deep=True) if row is not None else None

    async def upsert(self, record: GameRecord) -> GameRecord:
        existing = self.rows.get(record.code)
        now = self._stamp()
        stored = record.model_copy(
            update={
                "updated_at": now,
                "created_at": existing.created_at if existing is not None else (record.created_at or now),
            },
            deep=True,
        )
        self.rows[record.code] = stored
        await self.emit(record.code, {"event": "UPDATE" if existing else "INSERT", "new": stored.model_dump()})
        return stored

    async def delete(self, code: str) -> bool:
        return self.rows.pop(code, None) is not None

    async def list_rows(self) -> list[GameRecord]:
        return sorted(self.rows.values(), key=lambda r: r.updated_at or "", reverse=True)

    async def subscribe(self, code: str, handler: Any, *, events: Iterable[str] = ("UPDATE",)) -> FakeChannel:
        channel = FakeChannel(code, handler, frozenset(events))
        self.channels.append(channel)
        return channel

    async def emit(self, code: str, payload: dict[str, Any]) -> None:
        for channel in list(self.channels):
            if channel.code == code and not channel.closed and payload.get("event") in channel.events:
                await channel.handler(payload)

    def open_channels(self, code: str | None = None) -> list[FakeChannel]:
        return [c for c in self.channels if not c.closed and (code is None or c.code == code)]

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture()
def kv_store(tmp_path: Path) -> FileKeyValueStore:
    return FileKeyValueStore(tmp_path / "local")


@pytest.fixture()
def local_adapter(kv_store: FileKeyValueStore) -> LocalStorageAdapter:
    return LocalStorageAdapter(kv_store)


@pytest.fixture()
def fake_backend() -> FakeRemoteBackend:
    return FakeRemoteBackend()


@pytest.fixture()
def cloud_adapter(fake_backend: FakeRemoteBackend) -> CloudStorageAdapter:
    return CloudStorageAdapter("redis://example.invalid:6379/0", "anon-key", backend=fake_backend)


@pytest.fixture()
def fake_async_redis() -> fakeredis.FakeAsyncRedis:
    return fakeredis.FakeAsyncRedis(server=fakeredis.FakeServer(), decode_responses=True)


@pytest.fixture()
def redis_backend(fake_async_redis: fakeredis.FakeAsyncRedis) -> RedisRemoteBackend:
    return RedisRemoteBackend(r=fake_async_redis, api_key="anon-key", prefix="test", poll_timeout_s=0.05)


@pytest.fixture()
def redis_cloud_adapter(redis_backend: RedisRemoteBackend) -> CloudStorageAdapter:
    return CloudStorageAdapter("redis://example.invalid:6379/0", "anon-key", backend=redis_backend, key_prefix="test")
