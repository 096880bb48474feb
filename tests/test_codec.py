from __future__ import annotations

import pytest

from gamestore.codec import (
    deserialize_state,
    deserialize_state_from_json,
    is_valid_serialized_state,
    serialize_state,
    serialize_state_to_json,
)
from gamestore.errors import CodecError


def test_serialize_then_deserialize_is_deep_copy() -> None:
    G = {"players": [["0", {"name": "Ada", "hand": [1, 2]}]], "board": {"a": None}}
    ctx = {"phase": "play", "turn": 3, "currentPlayer": "0", "numPlayers": 1}

    data = serialize_state(G, ctx)
    restored = deserialize_state(data)

    assert restored == {"G": G, "ctx": ctx}
    restored["G"]["players"][0][1]["hand"].append(3)
    assert G["players"][0][1]["hand"] == [1, 2]
    assert data["G"]["players"][0][1]["hand"] == [1, 2]


def test_engine_internal_ctx_keys_are_dropped() -> None:
    data = serialize_state({}, {"phase": "setup", "_random": {"seed": 1}, "_stateID": 4})
    assert data["ctx"] == {"phase": "setup"}


def test_json_round_trip() -> None:
    text = serialize_state_to_json({"x": [1, "two"]}, {"turn": 1})
    assert deserialize_state_from_json(text) == {"G": {"x": [1, "two"]}, "ctx": {"turn": 1}}


@pytest.mark.parametrize(
    "data",
    [None, "state", [], {"G": {}}, {"ctx": {}}, {"G": [], "ctx": {}}, {"G": {}, "ctx": "play"}],
)
def test_shape_predicate_rejects(data: object) -> None:
    assert not is_valid_serialized_state(data)
    with pytest.raises(CodecError):
        deserialize_state(data)


def test_shape_predicate_accepts_extra_keys() -> None:
    assert is_valid_serialized_state({"G": {}, "ctx": {}, "extra": 1})


def test_serialize_rejects_non_mapping_parts() -> None:
    with pytest.raises(CodecError):
        serialize_state([], {})
    with pytest.raises(CodecError):
        serialize_state({}, None)


def test_serialize_rejects_unserializable_values() -> None:
    with pytest.raises(CodecError):
        serialize_state({"fn": object()}, {})


def test_deserialize_from_bad_json() -> None:
    with pytest.raises(CodecError):
        deserialize_state_from_json("{not json")
    with pytest.raises(CodecError):
        deserialize_state_from_json('{"G": 1, "ctx": {}}')


@pytest.mark.parametrize("value", [float("nan"), float("inf"), float("-inf")])
def test_non_finite_numbers_are_rejected(value: float) -> None:
    with pytest.raises(CodecError):
        serialize_state({"score": value}, {})
    with pytest.raises(CodecError):
        serialize_state({}, {"nested": {"list": [1, value]}})


def test_non_finite_numbers_in_persisted_json_are_rejected() -> None:
    with pytest.raises(CodecError):
        deserialize_state_from_json('{"G": {"score": NaN}, "ctx": {}}')
    with pytest.raises(CodecError):
        deserialize_state({"G": {"score": float("inf")}, "ctx": {}})


def test_deeply_nested_json_is_rejected() -> None:
    with pytest.raises(CodecError):
        deserialize_state_from_json("[" * 200_000)
