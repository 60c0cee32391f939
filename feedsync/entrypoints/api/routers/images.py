# feedsync/entrypoints/api/routers/images.py
from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from ..deps import get_image_queue, require_api_key
from ....db import get_session
from ....models import ImageQueueStatus
from ....schemas import BatchResultOut, QueueItemOut, QueueStatusOut
from ....service_layer.images import ImageQueueManager
from ....service_layer.jobruns import run_tracked

router = APIRouter(tags=["images"])


@router.get("/images/queue", dependencies=[Depends(require_api_key)])
async def images_queue(
    status: ImageQueueStatus | None = Query(None),
    limit: int = Query(100, ge=1, le=1000),
    queue: ImageQueueManager = Depends(get_image_queue),
) -> dict[str, Any]:
    counts = QueueStatusOut(**(await queue.queue_status()))
    items = await queue.queue_items(status=status, limit=limit)
    return {
        "status": counts.model_dump(),
        "items": [QueueItemOut.model_validate(i).model_dump(mode="json") for i in items],
    }


@router.get("/images/failed", response_model=list[QueueItemOut], dependencies=[Depends(require_api_key)])
async def images_failed(
    limit: int = Query(100, ge=1, le=1000),
    queue: ImageQueueManager = Depends(get_image_queue),
) -> list[QueueItemOut]:
    return [QueueItemOut.model_validate(i) for i in await queue.failed_items(limit=limit)]


@router.post("/images/process", response_model=BatchResultOut, dependencies=[Depends(require_api_key)])
async def images_process(
    limit: int | None = Query(None, ge=1, le=500),
    session: AsyncSession = Depends(get_session),
    queue: ImageQueueManager = Depends(get_image_queue),
) -> BatchResultOut:
    res = await run_tracked(
        session,
        "images_batch_api",
        lambda: queue.process_batch(limit),
        lambda r: r.to_dict(),
        meta={"limit": limit},
    )
    return BatchResultOut(**res.to_dict())


@router.post("/images/retry-failed", dependencies=[Depends(require_api_key)])
async def images_retry_failed(queue: ImageQueueManager = Depends(get_image_queue)) -> dict[str, int]:
    return await queue.retry_failed()


@router.post("/images/clear", dependencies=[Depends(require_api_key)])
async def images_clear(queue: ImageQueueManager = Depends(get_image_queue)) -> dict[str, int]:
    return await queue.clear_queue()


@router.post("/images/maintenance", dependencies=[Depends(require_api_key)])
async def images_maintenance(
    session: AsyncSession = Depends(get_session),
    queue: ImageQueueManager = Depends(get_image_queue),
) -> dict[str, Any]:
    return await run_tracked(session, "images_maintenance_api", queue.daily_maintenance, lambda r: r)


@router.get("/images/health", dependencies=[Depends(require_api_key)])
async def images_health(queue: ImageQueueManager = Depends(get_image_queue)) -> dict[str, Any]:
    return await queue.queue_health()


@router.post("/images/test-urls", dependencies=[Depends(require_api_key)])
async def images_test_urls(
    limit: int = Query(5, ge=1, le=50),
    queue: ImageQueueManager = Depends(get_image_queue),
) -> dict[str, Any]:
    return await queue.test_image_urls(limit)
