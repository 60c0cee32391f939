# feedsync/service_layer/jobruns.py
from __future__ import annotations

import json
from typing import Any, Awaitable, Callable, TypeVar

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import JobRun, JobRunStatus, utcnow_naive

T = TypeVar("T")


async def start_job(session: AsyncSession, job_name: str, meta: dict[str, Any] | None = None) -> JobRun:
    jr = JobRun(
        job_name=job_name,
        started_at=utcnow_naive(),
        status=JobRunStatus.running,
        meta_json=json.dumps(meta or {}),
    )
    session.add(jr)
    await session.flush()
    return jr


async def finish_job_success(session: AsyncSession, jr: JobRun, summary: dict[str, Any]) -> None:
    jr.status = JobRunStatus.success
    jr.finished_at = utcnow_naive()
    jr.summary_json = json.dumps(summary, default=str)
    jr.error = None
    await session.flush()


async def finish_job_fail(session: AsyncSession, jr: JobRun, err: Exception) -> None:
    jr.status = JobRunStatus.failed
    jr.finished_at = utcnow_naive()
    jr.error = str(err)
    await session.flush()


async def run_tracked(
    session: AsyncSession,
    job_name: str,
    fn: Callable[[], Awaitable[T]],
    summarize: Callable[[T], dict[str, Any]],
    meta: dict[str, Any] | None = None,
) -> T:
    """
    Wrap a use-case that manages its own sessions in a JobRun. The "running" row is
    committed first so the use-case never waits on this session's write lock.
    """
    jr = await start_job(session, job_name, meta)
    await session.commit()
    try:
        res = await fn()
    except Exception as e:
        await finish_job_fail(session, jr, e)
        await session.commit()
        raise
    await finish_job_success(session, jr, summarize(res))
    await session.commit()
    return res


async def latest_job_runs(session: AsyncSession, limit: int = 20, job_name: str | None = None) -> list[JobRun]:
    q = select(JobRun).order_by(JobRun.id.desc()).limit(limit)
    if job_name:
        q = q.where(JobRun.job_name == job_name)
    return list((await session.execute(q)).scalars().all())
