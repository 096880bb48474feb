from __future__ import annotations

from fastapi import Depends, Query, Request

from gamestore.adapters.base import StorageAdapter
from gamestore.registry import AdapterRegistry


def get_registry(request: Request) -> AdapterRegistry:
    return request.app.state.registry


def get_adapter(
    storage: str | None = Query(default=None, description="local or cloud; defaults to the configured type"),
    registry: AdapterRegistry = Depends(get_registry),
) -> StorageAdapter:
    return registry.get(storage)
