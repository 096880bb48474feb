"""The storage contract shared by every backend.

Callers (game runtime, UI, the HTTP layer) only ever see `StorageAdapter`.
Every method is a coroutine, validates the game code before touching storage,
and reports failures as values (`SaveResult`, `False`, `None`, `[]`) instead
of raising. The only exception that may escape is a configuration error at
construction time.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import Any

from gamestore.channels import Subscription, UpdateCallback
from gamestore.codes import is_valid_game_code, normalize_game_code
from gamestore.models import GameSummary, SaveResult
from gamestore.timestamps import EPOCH, sort_key


def player_names_from_state(state: Mapping[str, Any]) -> list[str]:
    """Player names from ``G.players``.

    The rules engine stores players either as ``[id, player]`` pairs or as
    plain player objects; both are accepted.
    """

    G = state.get("G")
    players = G.get("players") if isinstance(G, Mapping) else None
    if not isinstance(players, list):
        return []

    names: list[str] = []
    for entry in players:
        player = entry[1] if isinstance(entry, (list, tuple)) and len(entry) == 2 else entry
        if isinstance(player, Mapping) and isinstance(player.get("name"), str):
            names.append(player["name"])
    return names


def _int_or_zero(value: object) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        return 0
    return value


def build_summary(
    *,
    code: str,
    state: Mapping[str, Any],
    metadata: Mapping[str, Any] | None,
    fallback_last_modified: str | None = None,
) -> GameSummary:
    ctx = state.get("ctx")
    ctx = ctx if isinstance(ctx, Mapping) else {}
    meta = dict(metadata or {})

    last_modified = meta.get("lastModified")
    if not isinstance(last_modified, str) or not last_modified:
        last_modified = fallback_last_modified or EPOCH.isoformat()

    phase = ctx.get("phase")
    names = player_names_from_state(state)
    if not names and isinstance(meta.get("playerNames"), list):
        names = [n for n in meta["playerNames"] if isinstance(n, str)]

    return GameSummary(
        code=code,
        phase=phase if isinstance(phase, str) and phase else "unknown",
        turn=_int_or_zero(ctx.get("turn")),
        num_players=_int_or_zero(ctx.get("numPlayers")),
        last_modified=last_modified,
        player_names=names,
        metadata=meta,
    )


def sort_summaries(games: list[GameSummary]) -> list[GameSummary]:
    """Most recently modified first."""

    return sorted(games, key=lambda g: sort_key(g.last_modified), reverse=True)


class StorageAdapter(ABC):
    name = "StorageAdapter"

    def __init__(self) -> None:
        self.logger = logging.getLogger(type(self).__module__)

    # -- validation helpers -------------------------------------------------

    def _check_code(self, operation: str, code: object) -> str | None:
        """Normalized code, or None (logged) when the code is malformed."""

        if not is_valid_game_code(code):
            self.logger.error("[%s.%s] invalid game code format: %r", self.name, operation, code)
            return None
        return normalize_game_code(code)

    def _check_state(self, operation: str, code: str, state: object) -> bool:
        if not isinstance(state, Mapping):
            self.logger.error(
                "[%s.%s] invalid state for game %s: expected object, got %s",
                self.name,
                operation,
                code,
                type(state).__name__,
            )
            return False
        for part in ("G", "ctx"):
            if not isinstance(state.get(part), Mapping):
                self.logger.error(
                    "[%s.%s] invalid %s for game %s: expected object, got %s",
                    self.name,
                    operation,
                    part,
                    code,
                    type(state.get(part)).__name__,
                )
                return False
        return True

    def _check_metadata(self, operation: str, code: str, metadata: object) -> dict[str, Any] | None:
        if metadata is None:
            return {}
        if not isinstance(metadata, Mapping):
            self.logger.error(
                "[%s.%s] invalid metadata for game %s: expected object, got %s",
                self.name,
                operation,
                code,
                type(metadata).__name__,
            )
            return None
        try:
            json.dumps(metadata)
        except (TypeError, ValueError) as e:
            self.logger.error("[%s.%s] metadata for game %s is not JSON-serializable: %s", self.name, operation, code, e)
            return None
        return dict(metadata)

    # -- contract -----------------------------------------------------------

    @abstractmethod
    async def save_game(
        self,
        code: str,
        state: Mapping[str, Any],
        metadata: Mapping[str, Any] | None = None,
        expected_last_modified: str | None = None,
    ) -> SaveResult:
        """Persist ``{"G", "ctx"}`` under `code` and return a `SaveResult`.

        `expected_last_modified` is the timestamp the caller last observed;
        conflict-aware backends use it to flag (not block) stale writes.
        """

    @abstractmethod
    async def load_game(self, code: str) -> dict[str, Any] | None:
        """Decoded ``{"G", "ctx"}``, or None if absent or unreadable."""

    @abstractmethod
    async def delete_game(self, code: str) -> bool:
        """True only if a record existed and was removed."""

    @abstractmethod
    async def list_games(self) -> list[GameSummary]:
        """Summaries of every readable game, most recently modified first."""

    @abstractmethod
    async def get_game_metadata(self, code: str) -> dict[str, Any] | None:
        ...

    @abstractmethod
    async def update_game_metadata(self, code: str, metadata: Mapping[str, Any]) -> bool:
        """Shallow-merge `metadata` over the stored metadata and refresh lastModified."""

    async def subscribe_to_game(self, code: str, callback: UpdateCallback) -> Subscription:
        # No push support by default.
        return Subscription.inert(normalize_game_code(code))

    async def game_exists(self, code: str) -> bool:
        return await self.load_game(code) is not None

    async def get_last_modified(self, code: str) -> str | None:
        return None

    async def cleanup(self) -> None:
        """Release subscriptions and other per-adapter resources."""

        return None

    async def aclose(self) -> None:
        """Dispose of the adapter: cleanup plus any clients it owns."""

        await self.cleanup()
