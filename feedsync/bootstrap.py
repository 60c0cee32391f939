# feedsync/bootstrap.py
from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .adapters.clients.http import HttpFeedFetcher, build_client_factory
from .adapters.kv_store import KeyValueStore, SqlAlchemyKeyValueStore
from .adapters.storage import LocalImageStorage
from .config import settings
from .db import AsyncSessionLocal
from .service_layer.images import ImageQueueConfig, ImageQueueManager, validate_image_settings
from .service_layer.sync import SyncConfig, SyncOrchestrator


def build_kv_store(session_factory: async_sessionmaker[AsyncSession] = AsyncSessionLocal) -> KeyValueStore:
    return SqlAlchemyKeyValueStore(session_factory)


def build_image_queue(session_factory: async_sessionmaker[AsyncSession] = AsyncSessionLocal) -> ImageQueueManager:
    config = validate_image_settings(ImageQueueConfig.from_settings())["validated"]
    return ImageQueueManager(
        session_factory,
        build_client_factory(),
        LocalImageStorage(settings.IMAGE_STORAGE_DIR),
        config,
    )


def build_orchestrator(
    session_factory: async_sessionmaker[AsyncSession] = AsyncSessionLocal,
    kv: KeyValueStore | None = None,
    image_queue: ImageQueueManager | None = None,
) -> SyncOrchestrator:
    return SyncOrchestrator(
        session_factory,
        kv or build_kv_store(session_factory),
        HttpFeedFetcher(),
        SyncConfig.from_settings(),
        image_queue or build_image_queue(session_factory),
    )
