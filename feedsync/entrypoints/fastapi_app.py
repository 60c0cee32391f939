# feedsync/entrypoints/fastapi_app.py
from __future__ import annotations

from fastapi import FastAPI

from ..config import VERSION
from ..db import engine
from ..models import Base
from .api.routers import debug, health, images, properties, sync


def create_app() -> FastAPI:
    app = FastAPI(title="feedsync - property feed sync", version=VERSION)

    @app.on_event("startup")
    async def _startup() -> None:
        # Single place where DB tables are created in dev.
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    # Routers
    app.include_router(health.router)
    app.include_router(properties.router)
    app.include_router(sync.router)
    app.include_router(images.router)
    app.include_router(debug.router)

    return app
