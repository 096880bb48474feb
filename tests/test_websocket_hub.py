from __future__ import annotations

import asyncio
from typing import Any

import pytest

from conftest import FakeRemoteBackend, make_state
from gamestore.adapters.cloud import CloudStorageAdapter
from gamestore.websocket_hub import GameWebSocketHub


class _Socket:
    def __init__(self, *, broken: bool = False) -> None:
        self.broken = broken
        self.sent: list[dict[str, Any]] = []

    async def accept(self) -> None:
        return None

    async def send_json(self, payload: dict[str, Any]) -> None:
        if self.broken:
            raise RuntimeError("socket closed")
        self.sent.append(payload)


@pytest.mark.asyncio
async def test_dead_sockets_are_pruned_and_last_one_releases_subscription(
    cloud_adapter: CloudStorageAdapter, fake_backend: FakeRemoteBackend
) -> None:
    hub = GameWebSocketHub()
    live, dead = _Socket(), _Socket(broken=True)
    await cloud_adapter.save_game("ABCD", make_state())

    await hub.connect("cloud:ABCD", "ABCD", live, adapter=cloud_adapter)  # type: ignore[arg-type]
    await hub.connect("cloud:ABCD", "ABCD", dead, adapter=cloud_adapter)  # type: ignore[arg-type]
    assert len(fake_backend.open_channels("ABCD")) == 1

    await cloud_adapter.save_game("ABCD", make_state(turn=2))
    assert [m["state"]["ctx"]["turn"] for m in live.sent] == [2]
    assert hub.channels == ["cloud:ABCD"]
    assert cloud_adapter.subscribed_codes == ["ABCD"]

    live.broken = True
    await cloud_adapter.save_game("ABCD", make_state(turn=3))
    await asyncio.sleep(0.01)

    assert hub.channels == []
    assert cloud_adapter.subscribed_codes == []
    assert fake_backend.open_channels() == []


@pytest.mark.asyncio
async def test_disconnect_and_close_all(cloud_adapter: CloudStorageAdapter, fake_backend: FakeRemoteBackend) -> None:
    hub = GameWebSocketHub()
    a, b = _Socket(), _Socket()
    await hub.connect("cloud:ABCD", "ABCD", a, adapter=cloud_adapter)  # type: ignore[arg-type]
    await hub.connect("cloud:EFGH", "EFGH", b, adapter=cloud_adapter)  # type: ignore[arg-type]

    await hub.disconnect("cloud:ABCD", a)
    await hub.disconnect("cloud:ABCD", a)
    assert hub.channels == ["cloud:EFGH"]
    assert cloud_adapter.subscribed_codes == ["EFGH"]

    await hub.close_all()
    assert hub.channels == []
    assert fake_backend.open_channels() == []
