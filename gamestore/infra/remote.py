"""Shared remote games table.

The cloud adapter talks to its database only through `RemoteBackend`: an
anonymous sign-in handshake, row upsert/fetch/delete/list, and a push
subscription filtered to one row's change events.

`RedisRemoteBackend` implements it on redis.asyncio:

- row:     HASH  {prefix}:games:{CODE}  (code, state, metadata, created_at, updated_at)
- index:   ZSET  {prefix}:games          (CODE -> updated_at epoch seconds)
- changes: PUB/SUB {prefix}:games:{CODE}:changes  ({"event": ..., "new": row})
- session: HASH  {prefix}:sessions:{uuid} with a TTL

`updated_at` is stamped from the Redis server clock (TIME), never from the
writer, so every client compares against the same authority.
"""

from __future__ import annotations

import asyncio
import hashlib
import inspect
import json
import logging
from collections.abc import Awaitable, Callable, Iterable
from datetime import UTC, datetime
from typing import Any, Protocol
from uuid import uuid4

import redis.asyncio as aioredis
from pydantic import ValidationError
from redis.exceptions import RedisError

from gamestore.errors import RemoteBackendError
from gamestore.infra.redis_client import create_async_redis
from gamestore.models import GameRecord

logger = logging.getLogger(__name__)

ChangeHandler = Callable[[dict[str, Any]], Awaitable[None] | None]

UPDATE_EVENT = "UPDATE"
INSERT_EVENT = "INSERT"
DELETE_EVENT = "DELETE"


class RemoteChannel(Protocol):
    name: str

    async def close(self) -> None:  # pragma: no cover
        ...


class RemoteBackend(Protocol):
    async def sign_in_anonymously(self) -> str:  # pragma: no cover
        ...

    async def fetch(self, code: str) -> GameRecord | None:  # pragma: no cover
        ...

    async def upsert(self, record: GameRecord) -> GameRecord:  # pragma: no cover
        ...

    async def delete(self, code: str) -> bool:  # pragma: no cover
        ...

    async def list_rows(self) -> list[GameRecord]:  # pragma: no cover
        ...

    async def subscribe(
        self,
        code: str,
        handler: ChangeHandler,
        *,
        events: Iterable[str] = (UPDATE_EVENT,),
    ) -> RemoteChannel:  # pragma: no cover
        ...

    async def aclose(self) -> None:  # pragma: no cover
        ...


def _loads_or_none(raw: str | None) -> Any:
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except (TypeError, ValueError, RecursionError):
        return None


def _record_from_hash(raw: dict[str, str]) -> GameRecord:
    return GameRecord(
        code=raw.get("code", ""),
        state=_loads_or_none(raw.get("state")),
        metadata=_loads_or_none(raw.get("metadata")),
        created_at=raw.get("created_at") or None,
        updated_at=raw.get("updated_at") or None,
    )


class RedisChannel:
    def __init__(self, *, name: str, pubsub: Any, task: asyncio.Task[None]) -> None:
        self.name = name
        self._pubsub = pubsub
        self._task = task
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True

        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass

        try:
            await self._pubsub.unsubscribe(self.name)
            await self._pubsub.aclose()
        except RedisError as e:
            logger.warning("channel %s: error while closing pubsub: %s", self.name, e)


class RedisRemoteBackend:
    def __init__(
        self,
        *,
        r: aioredis.Redis,
        api_key: str,
        prefix: str = "gamestore",
        session_ttl_s: int = 3600,
        poll_timeout_s: float = 1.0,
    ) -> None:
        self._r = r
        self._api_key = api_key
        self._prefix = prefix
        self._session_ttl_s = session_ttl_s
        self._poll_timeout_s = poll_timeout_s
        self._session_id: str | None = None

    @classmethod
    def from_url(cls, url: str, *, api_key: str, prefix: str = "gamestore") -> "RedisRemoteBackend":
        # Building the client doesn't connect; the first command does.
        r = create_async_redis(url)
        return cls(r=r, api_key=api_key, prefix=prefix)

    @property
    def session_id(self) -> str | None:
        return self._session_id

    def _index_key(self) -> str:
        return f"{self._prefix}:games"

    def _row_key(self, code: str) -> str:
        return f"{self._prefix}:games:{code}"

    def _changes_channel(self, code: str) -> str:
        return f"{self._prefix}:games:{code}:changes"

    async def _server_now(self) -> datetime:
        seconds, micros = await self._r.time()
        return datetime.fromtimestamp(int(seconds), tz=UTC).replace(microsecond=int(micros))

    async def sign_in_anonymously(self) -> str:
        if self._session_id is not None:
            # Already signed in on this client.
            return self._session_id

        session_id = str(uuid4())
        key = f"{self._prefix}:sessions:{session_id}"
        fingerprint = hashlib.sha256(self._api_key.encode("utf-8")).hexdigest()[:16]
        try:
            await self._r.ping()
            created_at = (await self._server_now()).isoformat()
            await self._r.hset(key, mapping={"key_fingerprint": fingerprint, "created_at": created_at})
            await self._r.expire(key, self._session_ttl_s)
        except RedisError as e:
            raise RemoteBackendError(f"anonymous sign-in failed: {e}") from e

        self._session_id = session_id
        return session_id

    async def fetch(self, code: str) -> GameRecord | None:
        try:
            raw = await self._r.hgetall(self._row_key(code))
        except RedisError as e:
            raise RemoteBackendError(f"fetch {code} failed: {e}") from e
        if not raw:
            return None
        return _record_from_hash(raw)

    async def upsert(self, record: GameRecord) -> GameRecord:
        key = self._row_key(record.code)
        try:
            now = await self._server_now()
            existing_created = await self._r.hget(key, "created_at")
            existed = existing_created is not None or bool(await self._r.exists(key))

            stored = GameRecord(
                code=record.code,
                state=record.state,
                metadata=record.metadata if record.metadata is not None else {},
                created_at=existing_created or record.created_at or now.isoformat(),
                updated_at=now.isoformat(),
            )
            fields = {
                "code": stored.code,
                "state": json.dumps(stored.state, default=str),
                "metadata": json.dumps(stored.metadata, default=str),
                "created_at": stored.created_at or "",
                "updated_at": stored.updated_at or "",
            }
            event = {"event": UPDATE_EVENT if existed else INSERT_EVENT, "new": stored.model_dump()}

            async with self._r.pipeline(transaction=True) as pipe:
                pipe.hset(key, mapping=fields)
                pipe.zadd(self._index_key(), {stored.code: now.timestamp()})
                pipe.publish(self._changes_channel(stored.code), json.dumps(event, default=str))
                await pipe.execute()
        except RedisError as e:
            raise RemoteBackendError(f"upsert {record.code} failed: {e}") from e

        return stored

    async def delete(self, code: str) -> bool:
        try:
            async with self._r.pipeline(transaction=True) as pipe:
                pipe.delete(self._row_key(code))
                pipe.zrem(self._index_key(), code)
                removed, _ = await pipe.execute()
            if removed:
                await self._r.publish(
                    self._changes_channel(code),
                    json.dumps({"event": DELETE_EVENT, "old": {"code": code}}),
                )
        except RedisError as e:
            raise RemoteBackendError(f"delete {code} failed: {e}") from e
        return bool(removed)

    async def list_rows(self) -> list[GameRecord]:
        """All rows, most recently updated first."""

        try:
            codes = await self._r.zrevrange(self._index_key(), 0, -1)
            rows: list[GameRecord] = []
            for code in codes:
                raw = await self._r.hgetall(self._row_key(code))
                if not raw:
                    continue
                try:
                    rows.append(_record_from_hash(raw))
                except ValidationError as e:
                    logger.warning("skipping unreadable row %s: %s", code, e)
        except RedisError as e:
            raise RemoteBackendError(f"list failed: {e}") from e
        return rows

    async def subscribe(
        self,
        code: str,
        handler: ChangeHandler,
        *,
        events: Iterable[str] = (UPDATE_EVENT,),
    ) -> RedisChannel:
        name = self._changes_channel(code)
        pubsub = self._r.pubsub(ignore_subscribe_messages=True)
        try:
            await pubsub.subscribe(name)
        except RedisError as e:
            await pubsub.aclose()
            raise RemoteBackendError(f"subscribe {code} failed: {e}") from e

        task = asyncio.create_task(self._pump(pubsub, name, handler, frozenset(events)), name=f"gamestore:{name}")
        return RedisChannel(name=name, pubsub=pubsub, task=task)

    async def _pump(self, pubsub: Any, name: str, handler: ChangeHandler, events: frozenset[str]) -> None:
        while True:
            try:
                message = await pubsub.get_message(ignore_subscribe_messages=True, timeout=self._poll_timeout_s)
            except RedisError as e:
                logger.error("channel %s: receive failed, channel stopped: %s", name, e)
                return
            if message is None or message.get("type") != "message":
                continue

            payload = _loads_or_none(message.get("data"))
            if not isinstance(payload, dict):
                logger.warning("channel %s: dropping undecodable message", name)
                continue
            if payload.get("event") not in events:
                continue

            try:
                result = handler(payload)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                # A faulty consumer must not tear down the channel.
                logger.exception("channel %s: change handler failed", name)

    async def aclose(self) -> None:
        await self._r.aclose()
