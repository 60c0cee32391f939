# feedsync/entrypoints/api/routers/sync.py
from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ..deps import get_orchestrator, require_api_key
from ....db import get_session
from ....schemas import FeedTestOut, FeedTestRequest, ManualSyncRequest, SyncReportOut
from ....service_layer.jobruns import run_tracked
from ....service_layer.sync import ImportType, SyncOptions, SyncOrchestrator

router = APIRouter(tags=["sync"])


@router.post("/sync/manual", response_model=SyncReportOut, dependencies=[Depends(require_api_key)])
async def sync_manual(
    body: ManualSyncRequest | None = None,
    session: AsyncSession = Depends(get_session),
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
) -> SyncReportOut:
    body = body or ManualSyncRequest()
    options = SyncOptions(force_update=body.force_update, import_type=ImportType(body.import_type))
    report = await run_tracked(
        session,
        "sync_manual_api",
        lambda: orchestrator.manual_sync(options),
        lambda r: r.to_dict(),
        meta=body.model_dump(),
    )
    return SyncReportOut(**report.to_dict())


@router.post("/sync/test-feed", response_model=FeedTestOut, dependencies=[Depends(require_api_key)])
async def sync_test_feed(
    body: FeedTestRequest | None = None,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
) -> FeedTestOut:
    res = await orchestrator.test_feed_connectivity((body.url if body else None) or None)
    return FeedTestOut(
        success=res.success,
        message=res.message,
        response_time_ms=res.response_time_ms,
        content_length=res.content_length,
        status_code=res.status_code,
    )


@router.get("/sync/history", dependencies=[Depends(require_api_key)])
async def sync_history(orchestrator: SyncOrchestrator = Depends(get_orchestrator)) -> dict[str, Any]:
    items = await orchestrator.history()
    # newest first for display
    return {"items": list(reversed(items)), "count": len(items)}


@router.get("/sync/status", dependencies=[Depends(require_api_key)])
async def sync_status(orchestrator: SyncOrchestrator = Depends(get_orchestrator)) -> dict[str, Any]:
    return await orchestrator.status()


@router.post("/sync/clear-locks", dependencies=[Depends(require_api_key)])
async def sync_clear_locks(orchestrator: SyncOrchestrator = Depends(get_orchestrator)) -> dict[str, Any]:
    await orchestrator.clear_locks()
    return {"cleared": True}
