from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI

from gamestore.api.routes import router
from gamestore.config import settings_from_env
from gamestore.registry import AdapterRegistry
from gamestore.websocket_hub import GameWebSocketHub

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

_project_root = Path(__file__).resolve().parents[1]


def create_app(*, registry: AdapterRegistry | None = None) -> FastAPI:
    if registry is None:
        registry = AdapterRegistry(settings_from_env(env_file=_project_root / ".env"))

    @asynccontextmanager
    async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
        logger.info("storage type: %s", registry.resolve_type().value)
        yield
        await app.state.hub.close_all()
        await registry.aclose()

    app = FastAPI(title="gamestore", version="0.1.0", lifespan=_lifespan)
    app.state.registry = registry
    app.state.hub = GameWebSocketHub()
    app.include_router(router)

    @app.get("/info")
    async def info() -> dict[str, str]:
        return {"name": "gamestore", "version": "0.1.0"}

    return app


app = create_app()
