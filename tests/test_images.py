import os
from datetime import datetime, timedelta

import httpx
import pytest
from PIL import Image
from sqlalchemy import select

from feedsync.adapters.clients.http import build_client_factory
from feedsync.adapters.repos.properties import PropertyRepository
from feedsync.adapters.storage import LocalImageStorage
from feedsync.models import ImageQueueItem, ImageQueueStatus, ImportedImage, utcnow_naive
from feedsync.service_layer.images import (
    ImageQueueConfig,
    ImageQueueManager,
    ImageRef,
    extract_images,
    validate_image_settings,
)
from feedsync.services.normalize import normalize

MB = 1024 * 1024


class FakeImageServer:
    """MockTransport handler: url -> (status, body, head content-length)."""

    def __init__(self):
        self.routes: dict[str, tuple[int, bytes, str | None]] = {}
        self.requests: list[tuple[str, str]] = []

    def add(self, url: str, body: bytes, status: int = 200, head_length: str | None = None) -> None:
        self.routes[url] = (status, body, head_length)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        self.requests.append((request.method, url))
        status, body, head_length = self.routes.get(url, (404, b"", None))
        if request.method == "HEAD":
            headers = {"content-length": head_length or str(len(body))}
            return httpx.Response(status, headers=headers)
        return httpx.Response(status, content=body)


class RecordingSleep:
    async def __call__(self, seconds: float) -> None:
        return None


@pytest.fixture
def server():
    return FakeImageServer()


@pytest.fixture
def make_queue(async_session_maker, server, tmp_path):
    def _make(storage=None, **config):
        return ImageQueueManager(
            async_session_maker,
            build_client_factory(transport=httpx.MockTransport(server)),
            storage or LocalImageStorage(str(tmp_path)),
            ImageQueueConfig(**config),
            sleep=RecordingSleep(),
        )

    return _make


async def _items(session_maker) -> list[ImageQueueItem]:
    async with session_maker() as session:
        return list((await session.execute(select(ImageQueueItem).order_by(ImageQueueItem.id))).scalars().all())


FRONT = ImageRef("front.jpg", "https://img.example.com/E1/front.jpg")
REAR = ImageRef("rear.jpg", "https://img.example.com/E1/rear.jpg")


async def test_enqueue_skips_already_queued_urls(make_queue, async_session_maker):
    q = make_queue()

    assert await q.enqueue("E1", [FRONT, REAR, FRONT]) == 2
    assert await q.enqueue("E1", [FRONT, REAR]) == 0
    # another entity may queue the same url
    assert await q.enqueue("E2", [FRONT]) == 1

    items = await _items(async_session_maker)
    assert [(i.entity_id, i.image_name, i.status, i.attempts) for i in items] == [
        ("E1", "front.jpg", ImageQueueStatus.pending, 0),
        ("E1", "rear.jpg", ImageQueueStatus.pending, 0),
        ("E2", "front.jpg", ImageQueueStatus.pending, 0),
    ]


async def test_enqueue_bypass_existing_requeues(make_queue, async_session_maker):
    q = make_queue()
    await q.enqueue("E1", [FRONT, REAR])

    assert await q.enqueue("E1", [FRONT], bypass_existing=True) == 1
    assert [i.image_name for i in await _items(async_session_maker)] == ["front.jpg"]


async def test_enqueue_skips_imported_names(make_queue, async_session_maker):
    async with async_session_maker() as session:
        session.add(ImportedImage(entity_id="E1", image_name="front.jpg", image_url=FRONT.url, asset_id="E1/front.jpg"))
        await session.commit()

    assert await make_queue().enqueue("E1", [FRONT, REAR]) == 1


async def test_successful_download_is_stored_and_dequeued(make_queue, server, png_bytes, async_session_maker, tmp_path):
    server.add(FRONT.url, png_bytes)
    q = make_queue()
    await q.enqueue("E1", [FRONT])

    result = await q.process_batch()

    assert (result.processed, result.failed, result.remaining) == (1, 0, 0)
    assert await _items(async_session_maker) == []
    async with async_session_maker() as session:
        imported = (await session.execute(select(ImportedImage))).scalars().one()
    assert imported.asset_id == "E1/front.jpg"
    with open(os.path.join(tmp_path, "E1", "front.jpg"), "rb") as f:
        assert f.read() == png_bytes


async def test_extension_is_added_from_image_format(make_queue, server, png_bytes, tmp_path):
    ref = ImageRef("photo", "https://img.example.com/E1/photo")
    server.add(ref.url, png_bytes)
    q = make_queue()
    await q.enqueue("E1", [ref])

    await q.process_batch()

    assert os.path.exists(os.path.join(tmp_path, "E1", "photo.png"))


async def test_invalid_url_fails_until_max_retries(make_queue, server, async_session_maker):
    q = make_queue(max_retries=3)
    await q.enqueue("E1", [ImageRef("x.jpg", "not-a-url")])

    first = await q.process_batch()
    assert (first.processed, first.failed) == (0, 1)
    assert first.errors == ["Invalid URL: not-a-url"]
    (item,) = await _items(async_session_maker)
    assert (item.status, item.attempts) == (ImageQueueStatus.pending, 1)

    await q.process_batch()
    await q.process_batch()
    (item,) = await _items(async_session_maker)
    assert (item.status, item.attempts) == (ImageQueueStatus.failed, 3)
    assert item.last_error == "Invalid URL: not-a-url"

    # failed rows are parked, not retried automatically
    idle = await q.process_batch()
    assert (idle.processed, idle.failed) == (0, 0)
    assert server.requests == []


async def test_oversized_file_rejected_before_download(make_queue, server, png_bytes):
    server.add(FRONT.url, png_bytes, head_length=str(2 * MB))
    q = make_queue(max_file_size=MB)
    await q.enqueue("E1", [FRONT])

    result = await q.process_batch()

    assert result.failed == 1
    assert result.errors[0].startswith("File too large")
    assert [m for m, _ in server.requests] == ["HEAD"]


async def test_http_status_failure(make_queue, server):
    server.add(FRONT.url, b"gone", status=410)
    q = make_queue()
    await q.enqueue("E1", [FRONT])

    result = await q.process_batch()
    assert result.errors == [f"HTTP 410 response from: {FRONT.url}"]


async def test_empty_body_and_invalid_image(make_queue, server):
    server.add(FRONT.url, b"")
    server.add(REAR.url, b"definitely not a jpeg")
    q = make_queue()
    await q.enqueue("E1", [FRONT, REAR])

    result = await q.process_batch()

    assert result.failed == 2
    assert result.errors == [
        f"Empty response from: {FRONT.url}",
        f"Invalid image format: {REAR.url}",
    ]


class BrokenStorage:
    def save(self, data: bytes, suggested_name: str, entity_id: str) -> str:
        raise PermissionError("read-only file system")

    def list_entities(self) -> list[str]:
        return []


async def test_storage_failure_is_an_image_error(make_queue, server, png_bytes, async_session_maker):
    server.add(FRONT.url, png_bytes)
    q = make_queue(storage=BrokenStorage())
    await q.enqueue("E1", [FRONT])

    result = await q.process_batch()

    assert result.failed == 1
    assert result.errors[0].startswith("Storage failed")
    (item,) = await _items(async_session_maker)
    assert item.attempts == 1


async def test_process_continuously_drains_queue(make_queue, server, png_bytes):
    refs = [ImageRef(f"{n}.png", f"https://img.example.com/E1/{n}.png") for n in ("a", "b", "c")]
    for r in refs:
        server.add(r.url, png_bytes)
    q = make_queue(batch_size=2)
    await q.enqueue("E1", refs)

    out = await q.process_continuously(max_minutes=1)

    assert (out["processed"], out["failed"], out["remaining"], out["batches"]) == (3, 0, 0, 2)
    assert await q.queue_status() == {"pending": 0, "failed": 0, "total": 0}


async def test_retry_failed_and_clear(make_queue, async_session_maker):
    q = make_queue(max_retries=1)
    await q.enqueue("E1", [ImageRef("x.jpg", "not-a-url"), FRONT])
    await q.process_batch(limit=1)

    assert await q.queue_status() == {"pending": 1, "failed": 1, "total": 2}
    assert [i.image_name for i in await q.failed_items()] == ["x.jpg"]

    assert await q.retry_failed() == {"retried": 1}
    items = await _items(async_session_maker)
    assert all(i.status is ImageQueueStatus.pending and i.attempts == 0 for i in items)

    assert await q.clear_queue() == {"removed": 2}
    assert await q.queue_status() == {"pending": 0, "failed": 0, "total": 0}


async def test_cleanup_queue_drops_already_imported(make_queue, async_session_maker):
    async with async_session_maker() as session:
        session.add(ImageQueueItem(entity_id="E1", image_name="front.jpg", image_url=FRONT.url))
        session.add(ImageQueueItem(entity_id="E1", image_name="rear.jpg", image_url=REAR.url))
        session.add(ImportedImage(entity_id="E1", image_name="front.jpg", image_url=FRONT.url, asset_id="E1/front.jpg"))
        await session.commit()

    out = await make_queue().cleanup_queue()

    assert out == {"original_count": 2, "removed_count": 1, "remaining_count": 1}


async def test_daily_maintenance(make_queue, async_session_maker, tmp_path):
    async with async_session_maker() as session:
        await PropertyRepository(session).upsert(normalize({"id": "E1"}), {"id": "E1"})
        session.add(
            ImageQueueItem(
                entity_id="E1",
                image_name="old.jpg",
                image_url="https://img.example.com/old.jpg",
                status=ImageQueueStatus.failed,
                added_at=datetime(2020, 1, 1),
            )
        )
        session.add(ImageQueueItem(entity_id="E1", image_name="new.jpg", image_url="https://img.example.com/new.jpg"))
        await session.commit()
    os.makedirs(tmp_path / "E1")
    os.makedirs(tmp_path / "ghost")

    out = await make_queue().daily_maintenance()

    assert out["failed_items_removed"] == 1
    assert out["queue_cleanup"]["removed_count"] == 0
    assert out["orphaned_folders"] == ["ghost"]
    assert [i.image_name for i in await _items(async_session_maker)] == ["new.jpg"]


def test_validate_image_settings():
    ok = validate_image_settings(ImageQueueConfig())
    assert ok["is_valid"] is True and ok["warnings"] == []

    bad = validate_image_settings(ImageQueueConfig(image_mode="s3", batch_size=500, max_file_size=100))
    assert bad["is_valid"] is False
    assert bad["errors"] == ['Invalid image mode. Must be "local" or "external"']
    assert len(bad["warnings"]) == 2
    assert bad["validated"].image_mode == "local"
    assert bad["validated"].batch_size == 20
    assert bad["validated"].max_file_size == 10 * MB


def test_extract_images_prefers_original_images():
    mapping = {
        "original_images": [{"name": "front.jpg", "url": "https://img.example.com/o/front.jpg"}],
        "images": ["https://img.example.com/small.jpg"],
    }
    assert extract_images(mapping) == [ImageRef("front.jpg", "https://img.example.com/o/front.jpg")]

    fallback = {"original_images": [], "images": ["https://img.example.com/a.jpg", "https://img.example.com/a.jpg"]}
    assert extract_images(fallback) == [ImageRef("a.jpg", "https://img.example.com/a.jpg")]


async def test_malformed_url_is_recorded_not_raised(make_queue, server, png_bytes, async_session_maker):
    server.add(FRONT.url, png_bytes)
    q = make_queue()
    await q.enqueue("E1", [ImageRef("x.jpg", "http://[bad/x.jpg"), FRONT])

    result = await q.process_batch()

    assert (result.processed, result.failed) == (1, 1)
    assert result.errors == ["Invalid URL: http://[bad/x.jpg"]
    (item,) = await _items(async_session_maker)
    assert (item.image_name, item.status, item.attempts) == ("x.jpg", ImageQueueStatus.pending, 1)


async def test_decompression_bomb_is_an_invalid_image(make_queue, server, png_bytes, monkeypatch):
    # the 4x4 fixture image is over twice this limit
    monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 4)
    server.add(FRONT.url, png_bytes)
    q = make_queue()
    await q.enqueue("E1", [FRONT])

    result = await q.process_batch()

    assert result.failed == 1
    assert result.errors == [f"Invalid image format: {FRONT.url}"]


class ExplodingStorage(BrokenStorage):
    def save(self, data: bytes, suggested_name: str, entity_id: str) -> str:
        raise RuntimeError("disk driver went away")


async def test_unexpected_error_counts_as_attempt_and_queue_moves_on(make_queue, server, png_bytes, async_session_maker):
    server.add(FRONT.url, png_bytes)
    server.add(REAR.url, png_bytes)
    q = make_queue(storage=ExplodingStorage(), max_retries=2)
    await q.enqueue("E1", [FRONT, REAR])

    first = await q.process_batch()
    assert (first.processed, first.failed) == (0, 2)
    assert first.errors[0] == "Unexpected error: RuntimeError: disk driver went away"

    await q.process_batch()
    items = await _items(async_session_maker)
    assert [(i.status, i.attempts) for i in items] == [(ImageQueueStatus.failed, 2)] * 2

    out = await q.process_continuously(max_minutes=1)
    assert out["batches"] == 0


async def test_queue_health_empty(make_queue):
    health = await make_queue().queue_health()
    assert health == {"status": "empty", "health_score": 100, "total_items": 0, "message": "Queue is empty"}


async def test_queue_health_scores_failed_and_stuck_rows(make_queue, async_session_maker):
    now = utcnow_naive()
    async with async_session_maker() as session:
        session.add(ImageQueueItem(entity_id="E1", image_name="fresh.jpg", image_url="https://i.example.com/f.jpg", added_at=now))
        session.add(
            ImageQueueItem(
                entity_id="E1", image_name="stuck.jpg", image_url="https://i.example.com/s.jpg", added_at=now - timedelta(hours=3)
            )
        )
        session.add(
            ImageQueueItem(
                entity_id="E2",
                image_name="dead.jpg",
                image_url="https://i.example.com/d.jpg",
                status=ImageQueueStatus.failed,
                attempts=3,
                last_error="HTTP 404 response from: https://i.example.com/d.jpg",
                added_at=now - timedelta(hours=1),
            )
        )
        await session.commit()

    health = await make_queue().queue_health()

    # 100 - 50/3 - 30/3
    assert health["health_score"] == 73
    assert health["status"] == "warning"
    assert (health["pending_count"], health["failed_count"], health["stuck_count"]) == (2, 1, 1)
    assert health["properties_breakdown"] == {"E1": 2, "E2": 1}
    assert health["oldest_item_hours"] == 3.0
    assert [f["image_name"] for f in health["failed_items"]] == ["dead.jpg"]


async def test_queue_health_penalises_day_old_rows(make_queue, async_session_maker):
    async with async_session_maker() as session:
        session.add(
            ImageQueueItem(
                entity_id="E1",
                image_name="old.jpg",
                image_url="https://i.example.com/o.jpg",
                added_at=utcnow_naive() - timedelta(hours=30),
            )
        )
        await session.commit()

    health = await make_queue().queue_health()

    # stuck (30) plus older than a day (20)
    assert (health["health_score"], health["status"]) == (50, "warning")


async def test_entity_status_tracks_imported_and_queued(make_queue, server, png_bytes):
    server.add(FRONT.url, png_bytes)
    q = make_queue(max_retries=1)
    await q.enqueue("E1", [FRONT, REAR])
    await q.process_batch()

    status = await q.entity_status("E1")

    assert (status["total_images"], status["imported_images"], status["failed_images"], status["pending_images"]) == (2, 1, 1, 0)
    assert status["import_percentage"] == 50
    assert status["all_imported"] is False
    assert status["has_imported_images"] is True
    assert [(i["name"], i["status"]) for i in status["images"]] == [("front.jpg", "imported"), ("rear.jpg", "failed")]

    assert (await q.entity_status("nobody"))["total_images"] == 0


async def test_test_image_urls_heads_without_touching_rows(make_queue, server, png_bytes, async_session_maker):
    assert (await make_queue().test_image_urls()) == {"success": False, "error": "No images in queue to test"}

    server.add(FRONT.url, png_bytes)
    q = make_queue()
    await q.enqueue("E1", [FRONT, REAR, ImageRef("x.jpg", "not-a-url")])

    out = await q.test_image_urls()

    assert (out["total"], out["accessible"], out["inaccessible"]) == (3, 1, 2)
    assert [r["status"] for r in out["results"]] == ["accessible", "inaccessible", "error"]
    assert all(m == "HEAD" for m, _ in server.requests)
    assert all(i.attempts == 0 for i in await _items(async_session_maker))
