# feedsync/service_layer/images.py
from __future__ import annotations

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from io import BytesIO
from typing import Any, AsyncIterator, Callable, Iterable, Mapping

import httpx
from PIL import Image
from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..adapters.clients.http import ClientFactory
from ..adapters.feed.field_mapper import is_url, url_basename
from ..adapters.storage import ImageStorage
from ..config import settings
from ..domain.records import NormalizedRecord
from ..errors import ImageError, ImageErrorReason
from ..models import ImageQueueItem, ImageQueueStatus, ImportedImage, StoredProperty, utcnow_naive

log = logging.getLogger(__name__)

IMAGE_MODES = ("local", "external")

DEFAULT_BATCH_SIZE = 20
DEFAULT_DOWNLOAD_TIMEOUT_S = 30
DEFAULT_MAX_FILE_SIZE = 10 * 1024 * 1024

_MB = 1024 * 1024

STUCK_AFTER_HOURS = 2
OLD_AFTER_HOURS = 24


@dataclass(frozen=True)
class ImageQueueConfig:
    image_mode: str = "local"
    batch_size: int = DEFAULT_BATCH_SIZE
    download_timeout_s: float = DEFAULT_DOWNLOAD_TIMEOUT_S
    head_timeout_s: float = 10
    max_file_size: int = DEFAULT_MAX_FILE_SIZE
    max_retries: int = 3
    continuous_max_minutes: float = 10
    failed_retention_days: int = 7
    pause_s: float = 0.1

    @classmethod
    def from_settings(cls) -> "ImageQueueConfig":
        return cls(
            image_mode=settings.IMAGE_MODE,
            batch_size=int(settings.IMAGE_BATCH_SIZE),
            download_timeout_s=float(settings.IMAGE_DOWNLOAD_TIMEOUT_S),
            head_timeout_s=float(settings.IMAGE_HEAD_TIMEOUT_S),
            max_file_size=int(settings.IMAGE_MAX_FILE_SIZE),
            max_retries=int(settings.IMAGE_MAX_RETRIES),
            continuous_max_minutes=float(settings.IMAGE_CONTINUOUS_MAX_MINUTES),
            failed_retention_days=int(settings.IMAGE_FAILED_RETENTION_DAYS),
        )


@dataclass(frozen=True)
class ImageRef:
    name: str
    url: str


@dataclass
class BatchResult:
    processed: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)
    remaining: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {"processed": self.processed, "failed": self.failed, "errors": self.errors, "remaining": self.remaining}


def validate_image_settings(config: ImageQueueConfig) -> dict[str, Any]:
    """
    Out-of-range numbers fall back to defaults (warning); an unknown image mode is an
    error and falls back to "local".
    """
    errors: list[str] = []
    warnings: list[str] = []
    valid = config

    if config.image_mode not in IMAGE_MODES:
        errors.append('Invalid image mode. Must be "local" or "external"')
        valid = replace(valid, image_mode="local")

    if not 1 <= config.batch_size <= 100:
        warnings.append("Batch size should be between 1 and 100. Using default.")
        valid = replace(valid, batch_size=DEFAULT_BATCH_SIZE)

    if not 5 <= config.download_timeout_s <= 300:
        warnings.append("Download timeout should be between 5 and 300 seconds. Using default.")
        valid = replace(valid, download_timeout_s=DEFAULT_DOWNLOAD_TIMEOUT_S)

    if not _MB <= config.max_file_size <= 50 * _MB:
        warnings.append("Max file size should be between 1MB and 50MB. Using default.")
        valid = replace(valid, max_file_size=DEFAULT_MAX_FILE_SIZE)

    if errors:
        log.error("image settings invalid: %s", "; ".join(errors + warnings))
    elif warnings:
        log.warning("image settings adjusted: %s", "; ".join(warnings))

    return {"is_valid": not errors, "errors": errors, "warnings": warnings, "validated": valid}


def _image_ref(item: Any) -> ImageRef | None:
    if isinstance(item, str):
        url = item.strip()
        return ImageRef(name=url_basename(url), url=url) if url else None
    if isinstance(item, Mapping):
        url = item.get("url")
        if not isinstance(url, str) or not url.strip():
            return None
        name = item.get("name")
        return ImageRef(name=name if isinstance(name, str) and name else url_basename(url), url=url.strip())
    return None


def extract_images(source: Mapping[str, Any] | NormalizedRecord) -> list[ImageRef]:
    """
    Image refs for one property: `original_images` when the mapping has any, else
    `images`. A NormalizedRecord contributes its media images.
    """
    if isinstance(source, NormalizedRecord):
        raw: Iterable[Any] = ({"url": m.url} for m in source.media.images)
    else:
        raw = source.get("original_images") or source.get("images") or []

    out: list[ImageRef] = []
    seen: set[str] = set()
    for item in raw:
        ref = _image_ref(item)
        if ref and ref.url not in seen:
            out.append(ref)
            seen.add(ref.url)
    return out


class ImageQueueManager:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        http_client_factory: ClientFactory,
        storage: ImageStorage,
        config: ImageQueueConfig | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime] = utcnow_naive,
        sleep: Callable[[float], Any] = asyncio.sleep,
    ):
        self.session_factory = session_factory
        self.http_client_factory = http_client_factory
        self.storage = storage
        self.config = config or ImageQueueConfig.from_settings()
        self.clock = clock
        self.now = now
        self.sleep = sleep

    @asynccontextmanager
    async def _session(self, session: AsyncSession | None = None) -> AsyncIterator[AsyncSession]:
        # caller-owned sessions are flushed, never committed, here
        if session is not None:
            yield session
            return
        async with self.session_factory() as s:
            yield s
            await s.commit()

    # -------------------------
    # enqueue
    # -------------------------

    async def enqueue(
        self,
        entity_id: str,
        images: Iterable[ImageRef],
        bypass_existing: bool = False,
        *,
        session: AsyncSession | None = None,
    ) -> int:
        """
        Queue downloads for one entity. Skips URLs already queued for it (unless
        bypass_existing, which first drops its queued rows) and names already imported.
        Returns how many rows were added.
        """
        async with self._session(session) as s:
            queued_urls: set[str] = set()
            if bypass_existing:
                await s.execute(delete(ImageQueueItem).where(ImageQueueItem.entity_id == entity_id))
            else:
                queued_urls = set(
                    (
                        await s.execute(select(ImageQueueItem.image_url).where(ImageQueueItem.entity_id == entity_id))
                    ).scalars()
                )

            imported_names = set(
                (await s.execute(select(ImportedImage.image_name).where(ImportedImage.entity_id == entity_id))).scalars()
            )

            added = 0
            skipped_queued = 0
            skipped_imported = 0
            now = self.now()
            for ref in images:
                if ref.url in queued_urls:
                    skipped_queued += 1
                    continue
                if ref.name in imported_names:
                    skipped_imported += 1
                    continue
                queued_urls.add(ref.url)
                s.add(
                    ImageQueueItem(
                        entity_id=entity_id,
                        image_name=ref.name,
                        image_url=ref.url,
                        status=ImageQueueStatus.pending,
                        attempts=0,
                        added_at=now,
                        updated_at=now,
                    )
                )
                added += 1

            await s.flush()

        if skipped_queued or skipped_imported:
            log.info(
                "image enqueue entity=%s added=%d skipped_queued=%d skipped_imported=%d",
                entity_id,
                added,
                skipped_queued,
                skipped_imported,
            )
        return added

    # -------------------------
    # processing
    # -------------------------

    async def _download(self, url: str) -> bytes:
        cfg = self.config
        if not is_url(url):
            raise ImageError(ImageErrorReason.invalid_url, f"Invalid URL: {url}")

        async with self.http_client_factory(cfg.download_timeout_s) as client:
            try:
                head = await client.head(url, timeout=cfg.head_timeout_s)
            except (httpx.HTTPError, httpx.InvalidURL) as e:
                raise ImageError(ImageErrorReason.size_check_failed, f"Failed to check file size: {e}") from e

            length = head.headers.get("content-length", "")
            if head.is_success and length.isdigit() and int(length) > cfg.max_file_size:
                raise ImageError(ImageErrorReason.too_large, f"File too large: {url} ({int(length)} bytes)")

            try:
                r = await client.get(url, timeout=cfg.download_timeout_s)
            except (httpx.HTTPError, httpx.InvalidURL) as e:
                raise ImageError(ImageErrorReason.download_failed, f"Download failed: {e}") from e

        if r.status_code != 200:
            raise ImageError(ImageErrorReason.http_status, f"HTTP {r.status_code} response from: {url}")
        body = r.content
        if not body:
            raise ImageError(ImageErrorReason.empty_body, f"Empty response from: {url}")
        if len(body) > cfg.max_file_size:
            raise ImageError(ImageErrorReason.too_large, f"File too large: {url} ({len(body)} bytes)")
        return body

    @staticmethod
    def _verify_image(body: bytes, url: str) -> str:
        """Returns the Pillow format name ("JPEG", "PNG", ...)."""
        try:
            with Image.open(BytesIO(body)) as img:
                fmt = img.format or ""
                img.verify()
        except (OSError, SyntaxError, ValueError, Image.DecompressionBombError) as e:
            raise ImageError(ImageErrorReason.invalid_image, f"Invalid image format: {url}") from e
        return fmt

    async def _process_item(self, item: ImageQueueItem) -> str:
        body = await self._download(item.image_url)
        fmt = self._verify_image(body, item.image_url)

        name = item.image_name
        if "." not in name and fmt:
            name = f"{name}.{fmt.lower()}"
        try:
            return self.storage.save(body, name, item.entity_id)
        except OSError as e:
            raise ImageError(ImageErrorReason.storage_failed, f"Storage failed: {e}") from e

    async def _record_import(self, session: AsyncSession, item: ImageQueueItem, asset_id: str) -> None:
        existing = (
            await session.execute(
                select(ImportedImage).where(
                    ImportedImage.entity_id == item.entity_id,
                    ImportedImage.image_name == item.image_name,
                )
            )
        ).scalars().first()
        if existing is None:
            existing = ImportedImage(entity_id=item.entity_id, image_name=item.image_name)
            session.add(existing)
        existing.image_url = item.image_url
        existing.asset_id = asset_id
        existing.imported_at = self.now()
        await session.delete(item)

    def _record_failure(self, item: ImageQueueItem, err: ImageError) -> None:
        item.attempts = (item.attempts or 0) + 1
        item.last_error = str(err)
        item.updated_at = self.now()
        if item.attempts >= self.config.max_retries:
            item.status = ImageQueueStatus.failed
        log.warning(
            "image failed entity=%s name=%s reason=%s attempts=%d: %s",
            item.entity_id,
            item.image_name,
            err.reason.value,
            item.attempts,
            err,
        )

    async def process_batch(self, limit: int | None = None) -> BatchResult:
        """
        Work through up to `limit` pending items in id order. Each item is committed on
        its own; image errors are recorded on the row and never raised.
        """
        limit = limit or self.config.batch_size
        result = BatchResult()

        async with self.session_factory() as session:
            stmt = (
                select(ImageQueueItem)
                .where(ImageQueueItem.status == ImageQueueStatus.pending)
                .order_by(ImageQueueItem.id.asc())
                .limit(limit)
            )
            items = (await session.execute(stmt)).scalars().all()
            await session.commit()

            for item in items:
                try:
                    asset_id = await self._process_item(item)
                except ImageError as e:
                    self._record_failure(item, e)
                    result.failed += 1
                    result.errors.append(str(e))
                except Exception as e:
                    log.exception("unexpected image failure entity=%s url=%s", item.entity_id, item.image_url)
                    err = ImageError(ImageErrorReason.unexpected, f"Unexpected error: {type(e).__name__}: {e}")
                    self._record_failure(item, err)
                    result.failed += 1
                    result.errors.append(str(err))
                else:
                    await self._record_import(session, item, asset_id)
                    result.processed += 1
                await session.commit()

            result.remaining = await self._count(session, ImageQueueStatus.pending)

        return result

    async def process_continuously(self, max_minutes: float | None = None) -> dict[str, Any]:
        """
        Batches until the queue has nothing pending, the time budget is spent, or a
        batch makes no progress.
        """
        budget_s = float(max_minutes if max_minutes is not None else self.config.continuous_max_minutes) * 60
        start = self.clock()
        processed = 0
        failed = 0
        errors: list[str] = []
        batches = 0

        while self.clock() - start < budget_s:
            async with self.session_factory() as session:
                if await self._count(session, ImageQueueStatus.pending) == 0:
                    break

            r = await self.process_batch()
            batches += 1
            processed += r.processed
            failed += r.failed
            errors.extend(r.errors)

            if r.processed == 0 and r.failed == 0:
                break
            await self.sleep(self.config.pause_s)

        async with self.session_factory() as session:
            remaining = await self._count(session, ImageQueueStatus.pending)

        return {
            "processed": processed,
            "failed": failed,
            "errors": errors,
            "remaining": remaining,
            "batches": batches,
            "time_elapsed": round(self.clock() - start, 3),
        }

    # -------------------------
    # admin
    # -------------------------

    @staticmethod
    async def _count(session: AsyncSession, status: ImageQueueStatus | None = None) -> int:
        q = select(func.count()).select_from(ImageQueueItem)
        if status is not None:
            q = q.where(ImageQueueItem.status == status)
        return int((await session.execute(q)).scalar_one())

    async def queue_status(self) -> dict[str, int]:
        async with self.session_factory() as session:
            pending = await self._count(session, ImageQueueStatus.pending)
            failed = await self._count(session, ImageQueueStatus.failed)
            total = await self._count(session)
        return {"pending": pending, "failed": failed, "total": total}

    async def queue_items(self, status: ImageQueueStatus | None = None, limit: int = 100) -> list[ImageQueueItem]:
        async with self.session_factory() as session:
            q = select(ImageQueueItem).order_by(ImageQueueItem.id.asc()).limit(limit)
            if status is not None:
                q = q.where(ImageQueueItem.status == status)
            return list((await session.execute(q)).scalars().all())

    async def failed_items(self, limit: int = 100) -> list[ImageQueueItem]:
        return await self.queue_items(ImageQueueStatus.failed, limit)

    async def retry_failed(self) -> dict[str, int]:
        async with self._session() as s:
            res = await s.execute(
                update(ImageQueueItem)
                .where(ImageQueueItem.status == ImageQueueStatus.failed)
                .values(status=ImageQueueStatus.pending, attempts=0, updated_at=self.now())
            )
        return {"retried": int(res.rowcount or 0)}

    async def clear_queue(self) -> dict[str, int]:
        async with self._session() as s:
            res = await s.execute(delete(ImageQueueItem))
        return {"removed": int(res.rowcount or 0)}

    async def cleanup_queue(self) -> dict[str, int]:
        """Drop queue rows whose image name is already imported for the same entity."""
        async with self._session() as s:
            original = await self._count(s)
            imported = select(ImportedImage.id).where(
                ImportedImage.entity_id == ImageQueueItem.entity_id,
                ImportedImage.image_name == ImageQueueItem.image_name,
            )
            res = await s.execute(delete(ImageQueueItem).where(imported.exists()))
            removed = int(res.rowcount or 0)
        return {"original_count": original, "removed_count": removed, "remaining_count": original - removed}

    # -------------------------
    # health + per-entity status
    # -------------------------

    async def queue_health(self) -> dict[str, Any]:
        """
        0-100 score for the admin view. Failed rows cost up to 50 points, rows pending
        longer than STUCK_AFTER_HOURS up to 30, and a row older than OLD_AFTER_HOURS 20.
        """
        async with self.session_factory() as session:
            items = list((await session.execute(select(ImageQueueItem).order_by(ImageQueueItem.id))).scalars())

        total = len(items)
        if not total:
            return {"status": "empty", "health_score": 100, "total_items": 0, "message": "Queue is empty"}

        now = self.now()
        pending = failed = stuck = 0
        oldest_h = 0.0
        per_entity: dict[str, int] = {}
        failed_rows: list[dict[str, Any]] = []
        for item in items:
            per_entity[item.entity_id] = per_entity.get(item.entity_id, 0) + 1
            age_h = max(0.0, (now - item.added_at).total_seconds() / 3600)
            oldest_h = max(oldest_h, age_h)
            if item.status is ImageQueueStatus.failed:
                failed += 1
                failed_rows.append(
                    {
                        "entity_id": item.entity_id,
                        "image_name": item.image_name,
                        "attempts": item.attempts,
                        "last_error": item.last_error,
                        "age_hours": round(age_h, 1),
                    }
                )
            else:
                pending += 1
                if age_h > STUCK_AFTER_HOURS:
                    stuck += 1

        score = 100.0 - (failed / total) * 50 - (stuck / total) * 30
        if oldest_h > OLD_AFTER_HOURS:
            score -= 20
        score = max(0.0, score)

        if score < 50:
            status = "critical"
        elif score < 75:
            status = "warning"
        elif stuck or failed:
            status = "attention"
        else:
            status = "healthy"

        return {
            "status": status,
            "health_score": round(score),
            "total_items": total,
            "pending_count": pending,
            "failed_count": failed,
            "stuck_count": stuck,
            "properties_count": len(per_entity),
            "oldest_item_hours": round(oldest_h, 1),
            "failed_items": failed_rows[:10],
            "properties_breakdown": per_entity,
        }

    async def entity_status(self, entity_id: str) -> dict[str, Any]:
        """Every image the queue knows for one entity: imported, still pending, or parked as failed."""
        async with self.session_factory() as session:
            imported = list(
                (
                    await session.execute(
                        select(ImportedImage).where(ImportedImage.entity_id == entity_id).order_by(ImportedImage.id)
                    )
                ).scalars()
            )
            queued = list(
                (
                    await session.execute(
                        select(ImageQueueItem).where(ImageQueueItem.entity_id == entity_id).order_by(ImageQueueItem.id)
                    )
                ).scalars()
            )

        images: list[dict[str, Any]] = [
            {"name": i.image_name, "url": i.image_url, "status": "imported", "asset_id": i.asset_id}
            for i in imported
        ]
        images.extend(
            {
                "name": q.image_name,
                "url": q.image_url,
                "status": q.status.value,
                "attempts": q.attempts,
                "last_error": q.last_error,
            }
            for q in queued
        )

        total = len(images)
        return {
            "entity_id": entity_id,
            "total_images": total,
            "imported_images": len(imported),
            "pending_images": sum(1 for q in queued if q.status is ImageQueueStatus.pending),
            "failed_images": sum(1 for q in queued if q.status is ImageQueueStatus.failed),
            "import_percentage": round(len(imported) / total * 100) if total else 0,
            "all_imported": total > 0 and not queued,
            "has_imported_images": bool(imported),
            "images": images,
        }

    async def test_image_urls(self, limit: int = 5) -> dict[str, Any]:
        """HEAD the first few queued URLs. Nothing is downloaded and no row changes."""
        items = await self.queue_items(limit=limit)
        if not items:
            return {"success": False, "error": "No images in queue to test"}

        results: list[dict[str, Any]] = []
        accessible = 0
        async with self.http_client_factory(self.config.head_timeout_s) as client:
            for item in items:
                url = item.image_url
                if not is_url(url):
                    results.append({"url": url, "status": "error", "message": f"Invalid URL: {url}"})
                    continue
                try:
                    r = await client.head(url, timeout=self.config.head_timeout_s)
                except (httpx.HTTPError, httpx.InvalidURL) as e:
                    results.append({"url": url, "status": "error", "message": f"{type(e).__name__}: {e}"})
                    continue

                length = r.headers.get("content-length", "")
                ok = r.status_code == 200 and length.isdigit() and int(length) > 0
                accessible += ok
                results.append(
                    {
                        "url": url,
                        "status": "accessible" if ok else "inaccessible",
                        "response_code": r.status_code,
                        "content_length": int(length) if length.isdigit() else None,
                        "content_type": r.headers.get("content-type"),
                    }
                )

        return {
            "success": True,
            "total": len(items),
            "accessible": accessible,
            "inaccessible": len(items) - accessible,
            "results": results,
        }

    async def _orphaned_entities(self) -> list[str]:
        folders = self.storage.list_entities()
        if not folders:
            return []
        async with self.session_factory() as session:
            known = set((await session.execute(select(StoredProperty.external_id))).scalars())
        return sorted(f for f in folders if f not in known)

    async def daily_maintenance(self) -> dict[str, Any]:
        queue_cleanup = await self.cleanup_queue()

        cutoff = self.now() - timedelta(days=self.config.failed_retention_days)
        async with self._session() as s:
            res = await s.execute(
                delete(ImageQueueItem).where(
                    ImageQueueItem.status == ImageQueueStatus.failed,
                    ImageQueueItem.added_at < cutoff,
                )
            )
            failed_removed = int(res.rowcount or 0)

        results = {
            "queue_cleanup": queue_cleanup,
            "failed_items_removed": failed_removed,
            "orphaned_folders": await self._orphaned_entities(),
        }
        log.info("image maintenance: %s", results)
        return results
