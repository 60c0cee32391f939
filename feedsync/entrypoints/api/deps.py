# feedsync/entrypoints/api/deps.py
from __future__ import annotations

from fastapi import Depends, Header, HTTPException

from ...bootstrap import build_image_queue, build_kv_store, build_orchestrator
from ...adapters.kv_store import KeyValueStore
from ...config import settings
from ...service_layer.images import ImageQueueManager
from ...service_layer.sync import SyncOrchestrator


def require_api_key(x_api_key: str | None = Header(default=None, alias="X-API-Key")) -> None:
    if settings.API_KEY:
        if not x_api_key or x_api_key != settings.API_KEY:
            raise HTTPException(status_code=401, detail="Invalid API key")


def get_kv_store() -> KeyValueStore:
    return build_kv_store()


def get_image_queue() -> ImageQueueManager:
    return build_image_queue()


def get_orchestrator(
    kv: KeyValueStore = Depends(get_kv_store),
    image_queue: ImageQueueManager = Depends(get_image_queue),
) -> SyncOrchestrator:
    return build_orchestrator(kv=kv, image_queue=image_queue)
