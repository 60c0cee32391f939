# feedsync/service_layer/sync.py
from __future__ import annotations

import asyncio
import enum
import logging
import time
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Protocol

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..adapters.clients.http import FetchResponse
from ..adapters.feed.field_mapper import map_fields
from ..adapters.feed.xml_extractor import RawFeedItem, extract_element_map, item_external_id, parse_document, parse_feed
from ..adapters.kv_store import KeyValueStore
from ..adapters.repos.properties import PropertyRepository
from ..config import settings
from ..errors import FeedParseError, FeedSyncError, TransportError
from ..services.normalize import normalize
from .images import ImageQueueManager, extract_images
from .reconcile import ReconcileAction, ReconciliationEngine

log = logging.getLogger(__name__)

LOCK_KEY = "sync_running"
LOCK_TIME_KEY = "sync_running_time"
HISTORY_KEY = "sync_logs"
LAST_SYNC_KEY = "last_sync"

MSG_ALREADY_RUNNING = "Sync already in progress. Please wait for the current sync to complete."
MSG_NO_URL = "No feed URL configured."
MSG_FETCH_FAILED = "Failed to fetch XML feed. Please check the feed URL and try again."
MSG_EMPTY_RESPONSE = "Empty response received."
MSG_FEED_OK = "Feed is accessible and contains valid XML."


class SyncType(str, enum.Enum):
    manual = "manual"
    auto = "auto"


class RunStatus(str, enum.Enum):
    success = "success"
    error = "error"


class ImportType(str, enum.Enum):
    properties_and_images = "properties_and_images"
    properties_only = "properties_only"


class FeedFetcher(Protocol):
    async def fetch(self, url: str, timeout: float) -> FetchResponse: ...


@dataclass(frozen=True)
class SyncConfig:
    feed_url: str | None = None
    request_timeout_s: float = 30
    batch_size: int = 50
    batch_pause_s: float = 0.1
    lock_ttl_s: int = 300
    lock_stale_s: int = 600
    history_limit: int = 100
    auto_sync_enabled: bool = False
    image_mode: str = "local"

    @classmethod
    def from_settings(cls) -> "SyncConfig":
        return cls(
            feed_url=settings.FEED_URL,
            request_timeout_s=float(settings.FEED_REQUEST_TIMEOUT_S),
            batch_size=int(settings.SYNC_BATCH_SIZE),
            batch_pause_s=float(settings.SYNC_BATCH_PAUSE_S),
            lock_ttl_s=int(settings.SYNC_LOCK_TTL_S),
            lock_stale_s=int(settings.SYNC_LOCK_STALE_S),
            history_limit=int(settings.SYNC_HISTORY_LIMIT),
            auto_sync_enabled=bool(settings.AUTO_SYNC_ENABLED),
            image_mode=settings.IMAGE_MODE,
        )


@dataclass(frozen=True)
class SyncOptions:
    force_update: bool = False
    import_type: ImportType = ImportType.properties_and_images

    @property
    def import_images(self) -> bool:
        return self.import_type is ImportType.properties_and_images


@dataclass
class SyncRunReport:
    type: SyncType
    status: RunStatus
    started_at: str
    duration: float = 0.0
    total_items: int = 0
    added: int = 0
    updated: int = 0
    removed: int = 0
    skipped: int = 0
    error: str | None = None
    message: str = ""

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        d["type"] = self.type.value
        d["status"] = self.status.value
        return d


@dataclass(frozen=True)
class FeedTestResult:
    success: bool
    message: str
    response_time_ms: int | None = None
    content_length: int | None = None
    status_code: int | None = None


class _RunFailed(FeedSyncError):
    """Aborts a run; `message` is for humans, `detail` is the underlying cause."""

    def __init__(self, message: str, detail: str | None = None):
        super().__init__(message)
        self.message = message
        self.detail = detail


class SyncOrchestrator:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        kv: KeyValueStore,
        fetcher: FeedFetcher,
        config: SyncConfig | None = None,
        image_queue: ImageQueueManager | None = None,
        *,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Any] = asyncio.sleep,
    ):
        self.session_factory = session_factory
        self.kv = kv
        self.fetcher = fetcher
        self.config = config or SyncConfig.from_settings()
        self.image_queue = image_queue
        self.clock = clock
        self.sleep = sleep

    # -------------------------
    # entrypoints
    # -------------------------

    async def auto_sync(self) -> SyncRunReport | None:
        """
        Scheduled run. Returns None when disabled or when another run holds a fresh lock.
        A lock older than lock_stale_s is assumed abandoned and cleared.
        """
        if not self.config.auto_sync_enabled:
            return None

        started = self.clock()
        if await self.kv.get(LOCK_KEY):
            locked_at = await self.kv.get(LOCK_TIME_KEY)
            age = self.clock() - float(locked_at) if locked_at is not None else None
            if age is None or age <= self.config.lock_stale_s:
                log.info("auto sync skipped: another sync is running")
                return None
            log.warning("clearing stale sync lock (held for %.0fs)", age)
            await self.clear_locks()

        import_type = ImportType.properties_only if self.config.image_mode == "external" else ImportType.properties_and_images
        await self._acquire_lock()
        try:
            return await self._run(SyncType.auto, SyncOptions(import_type=import_type), started)
        finally:
            await self.clear_locks()

    async def manual_sync(self, options: SyncOptions | None = None) -> SyncRunReport:
        started = self.clock()
        options = options or SyncOptions()
        if await self.kv.get(LOCK_KEY):
            # contention is reported, not recorded; the holder keeps its lock
            return SyncRunReport(
                type=SyncType.manual,
                status=RunStatus.error,
                started_at=self._iso(started),
                duration=round(self.clock() - started, 3),
                error=MSG_ALREADY_RUNNING,
                message=MSG_ALREADY_RUNNING,
            )

        await self._acquire_lock()
        try:
            return await self._run(SyncType.manual, options, started)
        finally:
            await self.clear_locks()

    async def test_feed_connectivity(self, url: str | None = None) -> FeedTestResult:
        """Fetch + parse check only. Never touches the store."""
        url = url or self.config.feed_url
        if not url:
            return FeedTestResult(False, MSG_NO_URL)

        start = time.monotonic()
        try:
            resp = await self.fetcher.fetch(url, self.config.request_timeout_s)
        except TransportError as e:
            return FeedTestResult(False, f"Connection failed: {e}", self._elapsed_ms(start))
        elapsed = self._elapsed_ms(start)

        if resp.status != 200:
            return FeedTestResult(False, f"HTTP {resp.status}: {resp.reason}", elapsed, len(resp.body), resp.status)
        if not resp.body.strip():
            return FeedTestResult(False, MSG_EMPTY_RESPONSE, elapsed, 0, resp.status)
        try:
            parse_document(resp.body)
        except FeedParseError as e:
            return FeedTestResult(False, str(e), elapsed, len(resp.body), resp.status)
        return FeedTestResult(True, MSG_FEED_OK, elapsed, len(resp.body), resp.status)

    # -------------------------
    # lock + history
    # -------------------------

    async def _acquire_lock(self) -> None:
        await self.kv.set(LOCK_KEY, True, ttl_s=self.config.lock_ttl_s)
        await self.kv.set(LOCK_TIME_KEY, self.clock())

    async def clear_locks(self) -> None:
        await self.kv.delete(LOCK_KEY)
        await self.kv.delete(LOCK_TIME_KEY)

    async def history(self) -> list[dict[str, Any]]:
        return list(await self.kv.get(HISTORY_KEY, []) or [])

    async def status(self) -> dict[str, Any]:
        running = bool(await self.kv.get(LOCK_KEY))
        started = await self.kv.get(LOCK_TIME_KEY) if running else None
        return {
            "running": running,
            "running_since": self._iso(started) if started is not None else None,
            "last_sync": await self.kv.get(LAST_SYNC_KEY),
            "auto_sync_enabled": self.config.auto_sync_enabled,
        }

    async def _record(self, report: SyncRunReport) -> None:
        entry = report.to_dict()
        history = await self.history()
        history.append(entry)
        # oldest first; keep the newest history_limit entries
        history = history[-self.config.history_limit :]
        await self.kv.set(HISTORY_KEY, history)
        await self.kv.set(LAST_SYNC_KEY, entry)

    # -------------------------
    # run
    # -------------------------

    def _iso(self, ts: float) -> str:
        return datetime.fromtimestamp(float(ts), tz=timezone.utc).isoformat()

    @staticmethod
    def _elapsed_ms(start: float) -> int:
        return int((time.monotonic() - start) * 1000)

    async def _fetch(self) -> bytes:
        url = self.config.feed_url
        if not url:
            raise _RunFailed(MSG_NO_URL)
        try:
            resp = await self.fetcher.fetch(url, self.config.request_timeout_s)
        except TransportError as e:
            raise _RunFailed(MSG_FETCH_FAILED, str(e)) from e
        if resp.status != 200:
            raise _RunFailed(MSG_FETCH_FAILED, f"HTTP {resp.status}: {resp.reason}")
        if not resp.body or not resp.body.strip():
            raise _RunFailed(MSG_FETCH_FAILED, MSG_EMPTY_RESPONSE)
        return resp.body

    async def _run(self, sync_type: SyncType, options: SyncOptions, started: float) -> SyncRunReport:
        """`started` is taken by the caller so lock handling counts toward duration."""
        report = SyncRunReport(type=sync_type, status=RunStatus.success, started_at=self._iso(started))

        try:
            body = await self._fetch()
            try:
                items = parse_feed(body)
            except FeedParseError as e:
                raise _RunFailed(str(e), str(e.__cause__ or e)) from e
            report.total_items = len(items)
            await self._process_items(items, options, report)
            report.message = (
                f"Sync completed. Added: {report.added}, Updated: {report.updated}, Skipped: {report.skipped}"
            )
        except _RunFailed as e:
            report.status = RunStatus.error
            report.message = e.message
            report.error = e.detail or e.message
        except Exception as e:
            # unexpected (store down, etc.): still report, then surface in logs
            log.exception("sync run failed")
            report.status = RunStatus.error
            report.message = f"Sync failed: {e}"
            report.error = f"{type(e).__name__}: {e}"

        report.duration = round(self.clock() - started, 3)
        await self._record(report)
        log.info(
            "sync %s %s total=%d added=%d updated=%d skipped=%d duration=%.2fs%s",
            report.type.value,
            report.status.value,
            report.total_items,
            report.added,
            report.updated,
            report.skipped,
            report.duration,
            f" error={report.error}" if report.error else "",
        )
        return report

    async def _process_items(self, items: list[RawFeedItem], options: SyncOptions, report: SyncRunReport) -> None:
        size = max(1, self.config.batch_size)
        for start in range(0, len(items), size):
            batch = items[start : start + size]
            async with self.session_factory() as session:
                engine = ReconciliationEngine(PropertyRepository(session))
                for item in batch:
                    await self._process_item(session, engine, item, options, report)
                await session.commit()

            if start + size < len(items):
                await self.sleep(self.config.batch_pause_s)

    async def _process_item(
        self,
        session: AsyncSession,
        engine: ReconciliationEngine,
        item: RawFeedItem,
        options: SyncOptions,
        report: SyncRunReport,
    ) -> None:
        external_id = item_external_id(item)
        try:
            async with session.begin_nested():
                mapping = map_fields(extract_element_map(item))
                record = normalize(mapping)
                result = await engine.reconcile(record.meta.external_id, record, mapping, force_update=options.force_update)
        except Exception as e:
            # one bad item never sinks the batch
            report.skipped += 1
            log.warning("skipped feed item %s: %s: %s", external_id or "<no id>", type(e).__name__, e)
            return

        if result.action is ReconcileAction.insert:
            report.added += 1
        elif result.action is ReconcileAction.update:
            report.updated += 1
        else:
            report.skipped += 1
            return

        # external image mode serves feed URLs directly; nothing to download
        if options.import_images and self.config.image_mode != "external" and self.image_queue is not None:
            try:
                async with session.begin_nested():
                    await self.image_queue.enqueue(record.meta.external_id, extract_images(mapping), session=session)
            except Exception as e:
                log.warning("image enqueue failed for %s: %s", record.meta.external_id, e)
