"""Game state (de)serialization.

The rules engine hands us two live objects, `G` (game state) and `ctx` (turn
context: phase, turn, currentPlayer, numPlayers, ...). Persisted snapshots are
plain JSON objects of the form ``{"G": {...}, "ctx": {...}}``.

`is_valid_serialized_state` is the shape predicate every adapter runs on
persisted (untrusted) input before decoding it. Values must be JSON-portable:
NaN and +/-Infinity are rejected with `CodecError` rather than written as null.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, ValidationError
from pydantic_core import PydanticSerializationError

from gamestore.errors import CodecError


class SerializedState(BaseModel):
    G: dict[str, Any]
    ctx: dict[str, Any]


def _public_ctx(ctx: Mapping[str, Any]) -> dict[str, Any]:
    # Keys starting with "_" are engine internals and aren't persisted.
    return {k: v for k, v in ctx.items() if not str(k).startswith("_")}


def is_valid_serialized_state(data: object) -> bool:
    if not isinstance(data, Mapping):
        return False
    return isinstance(data.get("G"), Mapping) and isinstance(data.get("ctx"), Mapping)


def _dump(snapshot: SerializedState) -> str:
    """JSON text for a snapshot; raises CodecError for anything not JSON-portable."""

    try:
        text = snapshot.model_dump_json()
        # pydantic writes NaN and +/-Infinity as null; refuse them instead of losing them.
        json.dumps(snapshot.model_dump(), allow_nan=False, default=str)
    except (ValidationError, PydanticSerializationError) as e:
        raise CodecError(f"state is not serializable: {e}") from e
    except ValueError as e:
        raise CodecError(f"state contains non-finite numbers: {e}") from e
    except RecursionError as e:
        raise CodecError("state is nested too deeply") from e
    return text


def serialize_state_to_json(G: object, ctx: object) -> str:
    if not isinstance(G, Mapping):
        raise CodecError(f"G must be a mapping, got {type(G).__name__}")
    if not isinstance(ctx, Mapping):
        raise CodecError(f"ctx must be a mapping, got {type(ctx).__name__}")

    try:
        snapshot = SerializedState(G=dict(G), ctx=_public_ctx(ctx))
    except ValidationError as e:
        raise CodecError(f"state is not serializable: {e}") from e
    return _dump(snapshot)


def serialize_state(G: object, ctx: object) -> dict[str, Any]:
    """Return a deep, JSON-portable copy of ``{"G": G, "ctx": ctx}``."""

    return json.loads(serialize_state_to_json(G, ctx))


def deserialize_state(data: object) -> dict[str, Any]:
    """Validate a persisted snapshot and return an independent copy of it."""

    if not is_valid_serialized_state(data):
        raise CodecError("serialized state must be an object with object-typed G and ctx")

    try:
        snapshot = SerializedState.model_validate({"G": data["G"], "ctx": data["ctx"]})  # type: ignore[index]
    except ValidationError as e:
        raise CodecError(f"serialized state is malformed: {e}") from e
    except RecursionError as e:
        raise CodecError("serialized state is nested too deeply") from e
    # Round-trip through JSON so callers never share structure with storage.
    text = _dump(snapshot)
    try:
        return json.loads(text)
    except RecursionError as e:
        raise CodecError("serialized state is nested too deeply") from e


def deserialize_state_from_json(text: str) -> dict[str, Any]:
    if not isinstance(text, str):
        raise CodecError("serialized state must be a JSON string")
    try:
        parsed = json.loads(text)
    except (ValueError, RecursionError) as e:
        raise CodecError(f"invalid JSON: {e}") from e
    return deserialize_state(parsed)
