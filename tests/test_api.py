from __future__ import annotations

import inspect
from collections.abc import Generator, Mapping
from pathlib import Path
from typing import Any

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from conftest import make_state
from gamestore.adapters.local import LocalStorageAdapter
from gamestore.channels import Subscription, UpdateCallback
from gamestore.config import StorageSettings
from gamestore.infra.kv_store import FileKeyValueStore
from gamestore.main import create_app
from gamestore.models import SaveResult
from gamestore.registry import AdapterRegistry


class PushingLocalAdapter(LocalStorageAdapter):
    """Local adapter that pushes every save to subscribers, like the cloud one."""

    def __init__(self, store: FileKeyValueStore) -> None:
        super().__init__(store)
        self.callbacks: dict[str, UpdateCallback] = {}

    async def save_game(
        self,
        code: str,
        state: Mapping[str, Any],
        metadata: Mapping[str, Any] | None = None,
        expected_last_modified: str | None = None,
    ) -> SaveResult:
        result = await super().save_game(code, state, metadata, expected_last_modified)
        callback = self.callbacks.get(code.strip().upper())
        if result.success and callback is not None:
            pushed = callback(
                await self.load_game(code) or {},
                await self.get_game_metadata(code) or {},
                result.last_modified,
            )
            if inspect.isawaitable(pushed):
                await pushed
        return result

    async def subscribe_to_game(self, code: str, callback: UpdateCallback) -> Subscription:
        normalized = code.strip().upper()

        async def _release() -> None:
            self.callbacks.pop(normalized, None)

        self.callbacks[normalized] = callback
        sub = Subscription(normalized, on_close=_release)
        sub.mark_subscribed()
        return sub


@pytest.fixture()
def adapter(tmp_path: Path) -> PushingLocalAdapter:
    return PushingLocalAdapter(FileKeyValueStore(tmp_path / "saves"))


@pytest.fixture()
def client(tmp_path: Path, adapter: PushingLocalAdapter) -> Generator[TestClient, None, None]:
    registry = AdapterRegistry(StorageSettings(local_path=tmp_path / "default"))
    registry.override("local", adapter)
    with TestClient(create_app(registry=registry)) as c:
        yield c


def test_healthcheck_and_info(client: TestClient) -> None:
    assert client.get("/healthcheck").json() == {"status": "ok"}
    assert client.get("/info").json()["name"] == "gamestore"


def test_save_load_list_delete(client: TestClient) -> None:
    res = client.put("/games/abcd", json={"state": make_state(), "metadata": {"host": "Ada"}})
    assert res.status_code == 200
    saved = res.json()
    assert saved["success"] is True and saved["conflict"] is False

    res = client.get("/games/ABCD")
    assert res.status_code == 200
    body = res.json()
    assert body["code"] == "ABCD"
    assert body["state"] == make_state()
    assert body["metadata"]["host"] == "Ada"
    assert body["last_modified"] == saved["last_modified"]

    games = client.get("/games", params={"storage": "local"}).json()["games"]
    assert [(g["code"], g["phase"], g["player_names"]) for g in games] == [("ABCD", "setup", ["Ada", "Grace"])]

    assert client.delete("/games/ABCD").status_code == 204
    assert client.delete("/games/ABCD").status_code == 404
    assert client.get("/games/ABCD").status_code == 404


def test_invalid_requests(client: TestClient) -> None:
    assert client.get("/games/AB").status_code == 422
    assert client.put("/games/AB1D", json={"state": make_state()}).status_code == 422
    assert client.put("/games/ABCD", json={"state": {"G": {}}}).status_code == 422
    assert client.put("/games/ABCD", json={"metadata": {}}).status_code == 422


def test_metadata_routes(client: TestClient) -> None:
    assert client.patch("/games/ABCD/metadata", json={"a": 1}).status_code == 404
    assert client.get("/games/ABCD/metadata").status_code == 404

    client.put("/games/ABCD", json={"state": make_state()})
    assert client.patch("/games/ABCD/metadata", json={"a": 1}).status_code == 200
    res = client.patch("/games/ABCD/metadata", json={"b": 2})
    assert res.status_code == 200
    meta = res.json()
    assert meta["a"] == 1 and meta["b"] == 2 and "lastModified" in meta
    assert client.get("/games/ABCD/metadata").json() == meta


def test_ws_game_updates_broadcast(client: TestClient) -> None:
    client.put("/games/WXYZ", json={"state": make_state()})

    with client.websocket_connect("/ws/games/wxyz?storage=local") as ws:
        hello = ws.receive_json()
        assert hello == {"type": "subscribed", "code": "WXYZ", "storage": "local"}

        res = client.put("/games/WXYZ", json={"state": make_state(turn=2), "metadata": {"by": "Grace"}})
        assert res.status_code == 200

        msg = ws.receive_json()
        assert msg["type"] == "game_updated"
        assert msg["code"] == "WXYZ"
        assert msg["state"] == make_state(turn=2)
        assert msg["metadata"]["by"] == "Grace"
        assert msg["last_modified"] == res.json()["last_modified"]


def test_ws_rejects_invalid_code(client: TestClient) -> None:
    with pytest.raises(WebSocketDisconnect):
        with client.websocket_connect("/ws/games/A1") as ws:
            ws.receive_json()


def test_storage_preference_routes(client: TestClient) -> None:
    prefs = client.get("/preferences").json()
    assert prefs["storage_type"] == "local"
    assert prefs["device_id"]

    # Cloud isn't configured for this app, so the effective type stays local.
    res = client.put("/preferences/storage-type", json={"storage_type": "cloud"})
    assert res.status_code == 200
    assert res.json() == {"storage_type": "local", "device_id": prefs["device_id"]}
    assert client.get("/preferences").json()["device_id"] == prefs["device_id"]
