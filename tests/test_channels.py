from __future__ import annotations

import pytest

from gamestore.channels import ChannelStatus, Subscription


@pytest.mark.asyncio
async def test_lifecycle_and_single_release() -> None:
    calls: list[str] = []

    async def _on_close() -> None:
        calls.append("closed")

    sub = Subscription("ABCD", on_close=_on_close)
    assert sub.status == ChannelStatus.opening and sub.active

    sub.mark_subscribed()
    sub.mark_subscribed()
    assert sub.status == ChannelStatus.subscribed

    await sub.unsubscribe()
    await sub.unsubscribe()
    assert sub.status == ChannelStatus.closed
    assert calls == ["closed"]
    assert "closed" in repr(sub)


@pytest.mark.asyncio
async def test_closed_by_owner_skips_release() -> None:
    calls: list[str] = []

    async def _on_close() -> None:
        calls.append("closed")

    sub = Subscription("ABCD", on_close=_on_close)
    sub.mark_closed()
    sub.mark_subscribed()
    await sub.unsubscribe()
    assert sub.status == ChannelStatus.closed
    assert calls == []


def test_inert_handle() -> None:
    sub = Subscription.inert("ABCD")
    assert not sub.active
