# feedsync/errors.py
from __future__ import annotations

import enum


class FeedSyncError(Exception):
    """Base for everything the sync pipeline raises on purpose."""


class TransportError(FeedSyncError):
    """Feed (or image) fetch failed before a usable response arrived."""


class FeedParseError(FeedSyncError):
    pass


class EmptyFeedError(FeedParseError):
    pass


class ItemError(FeedSyncError):
    """One feed item could not be extracted, normalized or reconciled."""

    def __init__(self, message: str, external_id: str | None = None) -> None:
        super().__init__(message)
        self.external_id = external_id


class MissingExternalId(ItemError):
    def __init__(self) -> None:
        super().__init__("feed item has no external id")


class ClassificationError(FeedSyncError):
    pass


class ImageErrorReason(str, enum.Enum):
    invalid_url = "invalid_url"
    size_check_failed = "size_check_failed"
    too_large = "too_large"
    download_failed = "download_failed"
    http_status = "http_status"
    empty_body = "empty_body"
    invalid_image = "invalid_image"
    storage_failed = "storage_failed"
    unexpected = "unexpected"


class ImageError(FeedSyncError):
    def __init__(self, reason: ImageErrorReason, message: str) -> None:
        super().__init__(message)
        self.reason = reason
