from __future__ import annotations

import asyncio
from collections import defaultdict
from typing import Any

from fastapi import WebSocket

from gamestore.adapters.base import StorageAdapter
from gamestore.channels import Subscription
from gamestore.models import GameUpdate


class GameWebSocketHub:
    """Relays adapter push updates to WebSocket clients, keyed by channel.

    A channel key is ``"{storage_type}:{code}"``. The hub holds exactly one
    adapter subscription per channel while at least one socket is connected
    and drops it when the last one leaves.

    Payloads are JSON-serializable dicts:
    ``{"type": "game_updated", "code", "state", "metadata", "last_modified"}``.
    """

    def __init__(self) -> None:
        self._by_channel: dict[str, set[WebSocket]] = defaultdict(set)
        self._subscriptions: dict[str, Subscription] = {}
        self._lock = asyncio.Lock()
        self._releasing: set[asyncio.Task[None]] = set()

    @property
    def channels(self) -> list[str]:
        return sorted(self._by_channel)

    async def connect(self, channel: str, code: str, websocket: WebSocket, *, adapter: StorageAdapter) -> None:
        await websocket.accept()
        async with self._lock:
            self._by_channel[channel].add(websocket)
            if channel in self._subscriptions:
                return

            async def _relay(state: dict[str, Any], metadata: dict[str, Any], last_modified: str | None) -> None:
                update = GameUpdate(code=code, state=state, metadata=metadata, last_modified=last_modified)
                await self.broadcast(channel, {"type": "game_updated", **update.model_dump()})

            self._subscriptions[channel] = await adapter.subscribe_to_game(code, _relay)

    def _drop(self, channel: str, websockets: list[WebSocket]) -> Subscription | None:
        """Forget sockets; returns the channel's subscription once nobody is left. Caller holds the lock."""

        conns = self._by_channel.get(channel)
        if conns is None:
            return None
        conns.difference_update(websockets)
        if conns:
            return None
        self._by_channel.pop(channel, None)
        return self._subscriptions.pop(channel, None)

    async def disconnect(self, channel: str, websocket: WebSocket) -> None:
        async with self._lock:
            sub = self._drop(channel, [websocket])

        if sub is not None:
            await sub.unsubscribe()

    async def broadcast(self, channel: str, payload: dict[str, object]) -> None:
        async with self._lock:
            conns = list(self._by_channel.get(channel, set()))

        if not conns:
            return

        dead: list[WebSocket] = []
        for ws in conns:
            try:
                await ws.send_json(payload)
            except Exception:
                dead.append(ws)

        if not dead:
            return

        async with self._lock:
            sub = self._drop(channel, dead)
        if sub is not None:
            # Broadcasts run inside the subscription's own delivery, so it is released from a separate task.
            task = asyncio.create_task(sub.unsubscribe(), name=f"gamestore:release:{channel}")
            self._releasing.add(task)
            task.add_done_callback(self._releasing.discard)

    async def close_all(self) -> None:
        async with self._lock:
            subs = list(self._subscriptions.values())
            self._subscriptions.clear()
            self._by_channel.clear()
        for sub in subs:
            await sub.unsubscribe()
        if self._releasing:
            await asyncio.gather(*self._releasing, return_exceptions=True)
