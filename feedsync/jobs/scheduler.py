# feedsync/jobs/scheduler.py
from __future__ import annotations

import asyncio
import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from ..bootstrap import build_image_queue, build_orchestrator
from ..config import settings
from ..db import async_session
from ..service_layer.jobruns import run_tracked

log = logging.getLogger(__name__)


async def _run_auto_sync() -> None:
    orchestrator = build_orchestrator()
    if not orchestrator.config.auto_sync_enabled:
        return  # quiet

    async with async_session() as session:
        await run_tracked(
            session,
            "auto_sync",
            orchestrator.auto_sync,
            lambda r: r.to_dict() if r is not None else {"skipped": True},
        )


async def _run_image_queue_quiet() -> None:
    """
    Quiet-by-default posture:
    - external image mode never downloads
    - an empty pending queue records no job run
    """
    queue = build_image_queue()
    if queue.config.image_mode == "external":
        return
    if (await queue.queue_status())["pending"] == 0:
        return

    async with async_session() as session:
        await run_tracked(session, "image_queue", queue.process_continuously, lambda r: r)


async def _run_image_maintenance() -> None:
    queue = build_image_queue()
    async with async_session() as session:
        await run_tracked(session, "image_maintenance", queue.daily_maintenance, lambda r: r)


def build_scheduler() -> AsyncIOScheduler:
    sched = AsyncIOScheduler()

    # feed sync cadence
    sched.add_job(
        lambda: asyncio.create_task(_run_auto_sync()),
        "interval",
        minutes=int(settings.AUTO_SYNC_INTERVAL_MINUTES),
    )

    # image download cadence
    sched.add_job(
        lambda: asyncio.create_task(_run_image_queue_quiet()),
        "interval",
        minutes=int(settings.IMAGE_INTERVAL_MINUTES),
    )

    # daily queue + storage maintenance
    sched.add_job(lambda: asyncio.create_task(_run_image_maintenance()), "cron", hour=3, minute=15)

    return sched
