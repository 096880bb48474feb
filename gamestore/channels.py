from __future__ import annotations

from collections.abc import Awaitable, Callable
from enum import StrEnum
from typing import Any

from statemachine import State, StateMachine

# (state, metadata, last_modified); may be a plain function or a coroutine function.
UpdateCallback = Callable[[dict[str, Any], dict[str, Any], str | None], Awaitable[None] | None]


class ChannelStatus(StrEnum):
    opening = "opening"
    subscribed = "subscribed"
    closed = "closed"


class ChannelLifecycle(StateMachine):
    """opening -> subscribed -> closed; a channel may also close before it opens."""

    opening = State(ChannelStatus.opening.value, value=ChannelStatus.opening.value, initial=True)
    subscribed = State(ChannelStatus.subscribed.value, value=ChannelStatus.subscribed.value)
    closed = State(ChannelStatus.closed.value, value=ChannelStatus.closed.value, final=True)

    mark_subscribed = opening.to(subscribed)
    mark_closed = opening.to(closed) | subscribed.to(closed)


class Subscription:
    """Handle returned by `subscribe_to_game`.

    `unsubscribe()` is the only cancellation action and can be called any
    number of times, including after the adapter already tore the channel down.
    """

    def __init__(self, code: str, *, on_close: Callable[[], Awaitable[None]] | None = None) -> None:
        self.code = code
        self._on_close = on_close
        self._lifecycle = ChannelLifecycle()

    @classmethod
    def inert(cls, code: str) -> "Subscription":
        """A handle for backends without push support; it never delivers anything."""

        sub = cls(code)
        sub._lifecycle.mark_closed()
        return sub

    @property
    def status(self) -> ChannelStatus:
        return ChannelStatus(str(self._lifecycle.current_state.value))

    @property
    def active(self) -> bool:
        return self.status != ChannelStatus.closed

    def mark_subscribed(self) -> None:
        if self.status == ChannelStatus.opening:
            self._lifecycle.mark_subscribed()

    def mark_closed(self) -> None:
        if self.status != ChannelStatus.closed:
            self._lifecycle.mark_closed()
        self._on_close = None

    async def unsubscribe(self) -> None:
        if self.status == ChannelStatus.closed:
            return
        on_close = self._on_close
        self.mark_closed()
        if on_close is not None:
            await on_close()

    def __repr__(self) -> str:
        return f"Subscription(code={self.code!r}, status={self.status.value})"
