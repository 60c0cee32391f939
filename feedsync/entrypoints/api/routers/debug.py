# feedsync/entrypoints/api/routers/debug.py
from __future__ import annotations

import json
from typing import Any

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from ..deps import require_api_key
from ....config import settings
from ....db import get_session
from ....models import JobRun
from ....service_layer.images import ImageQueueConfig, validate_image_settings
from ....service_layer.jobruns import latest_job_runs

router = APIRouter(tags=["debug"])


def _redact(v: str | None) -> str | None:
    if not v:
        return v
    if len(v) <= 8:
        return "***"
    return v[:4] + "***" + v[-4:]


@router.get("/debug/config", dependencies=[Depends(require_api_key)])
def debug_config() -> dict[str, Any]:
    """
    Reads the *running server's* settings, not your shell's.
    Secrets are redacted.
    """
    checked = validate_image_settings(ImageQueueConfig.from_settings())
    return {
        "ENV": settings.ENV,
        "FEEDSYNC_DB_URL": settings.FEEDSYNC_DB_URL,
        "FEED_URL": settings.FEED_URL,
        "FEED_VERIFY_SSL": settings.FEED_VERIFY_SSL,
        "FEED_CA_BUNDLE": settings.FEED_CA_BUNDLE,
        "AUTO_SYNC_ENABLED": settings.AUTO_SYNC_ENABLED,
        "AUTO_SYNC_INTERVAL_MINUTES": settings.AUTO_SYNC_INTERVAL_MINUTES,
        "IMAGE_MODE": settings.IMAGE_MODE,
        "IMAGE_STORAGE_DIR": settings.IMAGE_STORAGE_DIR,
        "API_KEY": _redact(settings.API_KEY),
        "image_settings": {k: checked[k] for k in ("is_valid", "errors", "warnings")},
    }


@router.get("/debug/job_runs/latest", dependencies=[Depends(require_api_key)])
async def debug_job_runs_latest(
    limit: int = Query(default=5, ge=1, le=50),
    job_name: str | None = Query(default=None),
    session: AsyncSession = Depends(get_session),
) -> dict[str, Any]:
    rows = await latest_job_runs(session, limit=int(limit), job_name=job_name)

    def _row(r: JobRun) -> dict[str, Any]:
        return {
            "id": r.id,
            "job_name": r.job_name,
            "status": r.status.value,
            "started_at": str(r.started_at),
            "finished_at": str(r.finished_at) if r.finished_at else None,
            "error": (r.error or "")[:1200],
            "summary": json.loads(r.summary_json) if r.summary_json else None,
        }

    return {"items": [_row(r) for r in rows]}
