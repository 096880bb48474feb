from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException, Response, WebSocket, WebSocketDisconnect, status

from gamestore.adapters.base import StorageAdapter
from gamestore.api.deps import get_adapter, get_registry
from gamestore.api.models import (
    GameListResponse,
    GameResponse,
    PreferencesResponse,
    SaveGameRequest,
    StoragePreferenceRequest,
)
from gamestore.codes import is_valid_game_code, normalize_game_code
from gamestore.errors import ErrorKind
from gamestore.models import SaveResult
from gamestore.registry import AdapterRegistry

router = APIRouter()


def _require_code(code: str) -> str:
    if not is_valid_game_code(code):
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="Invalid game code format")
    return normalize_game_code(code)


@router.websocket("/ws/games/{code}")
async def game_updates_ws(websocket: WebSocket, code: str, storage: str | None = None) -> None:
    if not is_valid_game_code(code):
        await websocket.close(code=1008)
        return

    registry: AdapterRegistry = websocket.app.state.registry
    hub = websocket.app.state.hub
    storage_type = registry.resolve_type(storage)
    normalized = normalize_game_code(code)
    channel = f"{storage_type.value}:{normalized}"

    await hub.connect(channel, normalized, websocket, adapter=registry.get(storage_type))
    try:
        await websocket.send_json({"type": "subscribed", "code": normalized, "storage": storage_type.value})
        # Keep the socket open; client can optionally send pings.
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        await hub.disconnect(channel, websocket)
    except Exception:
        await hub.disconnect(channel, websocket)
        raise


@router.get("/healthcheck")
async def healthcheck() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/games", response_model=GameListResponse)
async def list_games_route(adapter: StorageAdapter = Depends(get_adapter)) -> GameListResponse:
    return GameListResponse(games=await adapter.list_games())


@router.get("/games/{code}", response_model=GameResponse)
async def get_game_route(code: str, adapter: StorageAdapter = Depends(get_adapter)) -> GameResponse:
    normalized = _require_code(code)
    state = await adapter.load_game(normalized)
    if state is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Game not found")
    return GameResponse(
        code=normalized,
        state=state,
        metadata=await adapter.get_game_metadata(normalized) or {},
        last_modified=await adapter.get_last_modified(normalized),
    )


@router.put("/games/{code}", response_model=SaveResult)
async def save_game_route(
    code: str,
    payload: SaveGameRequest,
    adapter: StorageAdapter = Depends(get_adapter),
) -> SaveResult:
    normalized = _require_code(code)
    result = await adapter.save_game(
        normalized,
        payload.state,
        payload.metadata,
        expected_last_modified=payload.expected_last_modified,
    )
    if not result.success:
        if result.error == ErrorKind.invalid_input:
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="Invalid game state")
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Storage unavailable")
    return result


@router.delete("/games/{code}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_game_route(code: str, adapter: StorageAdapter = Depends(get_adapter)) -> Response:
    normalized = _require_code(code)
    if not await adapter.delete_game(normalized):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Game not found")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/games/{code}/metadata")
async def get_metadata_route(code: str, adapter: StorageAdapter = Depends(get_adapter)) -> dict[str, Any]:
    normalized = _require_code(code)
    metadata = await adapter.get_game_metadata(normalized)
    if metadata is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Game not found")
    return metadata


@router.patch("/games/{code}/metadata")
async def update_metadata_route(
    code: str,
    patch: dict[str, Any] = Body(...),
    adapter: StorageAdapter = Depends(get_adapter),
) -> dict[str, Any]:
    normalized = _require_code(code)
    if not await adapter.game_exists(normalized):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Game not found")
    if not await adapter.update_game_metadata(normalized, patch):
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Storage unavailable")
    return await adapter.get_game_metadata(normalized) or {}


def _preferences_response(registry: AdapterRegistry) -> PreferencesResponse:
    return PreferencesResponse(
        storage_type=registry.resolve_type(),
        device_id=registry.preferences.get_device_id(),
    )


@router.get("/preferences", response_model=PreferencesResponse)
async def get_preferences_route(registry: AdapterRegistry = Depends(get_registry)) -> PreferencesResponse:
    return _preferences_response(registry)


@router.put("/preferences/storage-type", response_model=PreferencesResponse)
async def set_storage_preference_route(
    payload: StoragePreferenceRequest,
    registry: AdapterRegistry = Depends(get_registry),
) -> PreferencesResponse:
    registry.preferences.set_storage_type(payload.storage_type)
    return _preferences_response(registry)
