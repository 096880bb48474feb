from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from gamestore.errors import ErrorKind

__all__ = ["ErrorKind", "GameRecord", "GameSummary", "GameUpdate", "SaveResult"]


class SaveResult(BaseModel):
    success: bool
    # Cloud only: the row was newer than the caller's expected timestamp (advisory).
    conflict: bool = False
    # Timestamp assigned by this save; callers pass it back as expected_last_modified.
    last_modified: str | None = None
    error: ErrorKind | None = None

    def __bool__(self) -> bool:
        return self.success

    @classmethod
    def ok(cls, *, last_modified: str | None = None, conflict: bool = False) -> "SaveResult":
        return cls(success=True, conflict=conflict, last_modified=last_modified)

    @classmethod
    def failed(cls, error: ErrorKind) -> "SaveResult":
        return cls(success=False, error=error)


class GameSummary(BaseModel):
    code: str
    phase: str = "unknown"
    turn: int = 0
    num_players: int = 0
    last_modified: str
    player_names: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)


class GameRecord(BaseModel):
    """One row of the shared games table.

    `state` and `metadata` come straight from storage and are not trusted; the
    cloud adapter validates them before use.
    """

    code: str
    state: Any = None
    metadata: Any = None
    created_at: str | None = None
    updated_at: str | None = None


class GameUpdate(BaseModel):
    code: str
    state: dict[str, Any]
    metadata: dict[str, Any] = Field(default_factory=dict)
    last_modified: str | None = None
