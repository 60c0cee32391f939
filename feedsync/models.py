# feedsync/models.py
from __future__ import annotations

import enum
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


def utcnow_naive() -> datetime:
    """SQLite stores naive datetimes; everything we write is UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


# -----------------------------
# Core enums
# -----------------------------
class MediaKind(str, enum.Enum):
    image = "image"
    brochure = "brochure"
    floorplan = "floorplan"
    video = "video"


class ImageQueueStatus(str, enum.Enum):
    pending = "pending"
    failed = "failed"


class JobRunStatus(str, enum.Enum):
    running = "running"
    success = "success"
    failed = "failed"


# -----------------------------
# Models
# -----------------------------
class StoredProperty(Base):
    __tablename__ = "properties"
    __table_args__ = (UniqueConstraint("external_id", name="uq_property_external_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    external_id: Mapped[str] = mapped_column(String(64), index=True)

    # feed modification stamp, parsed (naive UTC) and verbatim
    last_modified: Mapped[datetime | None] = mapped_column(DateTime, nullable=True, index=True)
    last_modified_raw: Mapped[str | None] = mapped_column(String(64), nullable=True)

    title: Mapped[str] = mapped_column(String(255))
    slug: Mapped[str] = mapped_column(String(255), index=True)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    status: Mapped[str | None] = mapped_column(String(80), nullable=True, index=True)
    property_type: Mapped[str | None] = mapped_column(String(120), nullable=True)

    address1: Mapped[str | None] = mapped_column(String(255), nullable=True)
    address2: Mapped[str | None] = mapped_column(String(255), nullable=True)
    town: Mapped[str | None] = mapped_column(String(120), nullable=True)
    city: Mapped[str | None] = mapped_column(String(120), nullable=True)
    county: Mapped[str | None] = mapped_column(String(120), nullable=True)
    postcode: Mapped[str | None] = mapped_column(String(16), nullable=True)
    outward_postcode: Mapped[str | None] = mapped_column(String(8), nullable=True, index=True)

    lat: Mapped[float | None] = mapped_column(Float, nullable=True)
    lng: Mapped[float | None] = mapped_column(Float, nullable=True)

    size_min: Mapped[int | None] = mapped_column(Integer, nullable=True)
    size_max: Mapped[int | None] = mapped_column(Integer, nullable=True)
    total_size_min: Mapped[int | None] = mapped_column(Integer, nullable=True)
    total_size_max: Mapped[int | None] = mapped_column(Integer, nullable=True)
    area_size_unit: Mapped[str] = mapped_column(String(16), default="sqft")

    price_min: Mapped[float | None] = mapped_column(Float, nullable=True)
    price_max: Mapped[float | None] = mapped_column(Float, nullable=True)
    price_type: Mapped[str | None] = mapped_column(String(32), nullable=True)

    is_featured: Mapped[bool] = mapped_column(Boolean, default=False)
    is_archived: Mapped[bool] = mapped_column(Boolean, default=False)

    # full NormalizedRecord + the FieldMapping it came from
    normalized_json: Mapped[str] = mapped_column(Text, default="{}")
    original_json: Mapped[str] = mapped_column(Text, default="{}")
    payload_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow_naive)
    imported_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow_naive)


class PropertyUnit(Base):
    __tablename__ = "property_units"
    __table_args__ = (UniqueConstraint("property_id", "unit_external_id", name="uq_unit_property_ext"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    property_id: Mapped[int] = mapped_column(ForeignKey("properties.id", ondelete="CASCADE"), index=True)
    unit_external_id: Mapped[str] = mapped_column(String(64))

    floor_label: Mapped[str | None] = mapped_column(String(120), nullable=True)
    size_sqft: Mapped[str | None] = mapped_column(String(64), nullable=True)
    rent_min: Mapped[str | None] = mapped_column(String(64), nullable=True)
    rent_max: Mapped[str | None] = mapped_column(String(64), nullable=True)
    rent_metric: Mapped[str | None] = mapped_column(String(64), nullable=True)
    rates_text: Mapped[str | None] = mapped_column(String(255), nullable=True)
    status: Mapped[str | None] = mapped_column(String(80), nullable=True)
    availability_date: Mapped[str | None] = mapped_column(String(64), nullable=True)
    sort_order: Mapped[int | None] = mapped_column(Integer, nullable=True)
    raw_json: Mapped[str] = mapped_column(Text, default="{}")


class PropertyMedia(Base):
    __tablename__ = "property_media"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    property_id: Mapped[int] = mapped_column(ForeignKey("properties.id", ondelete="CASCADE"), index=True)
    kind: Mapped[MediaKind] = mapped_column(Enum(MediaKind), index=True)
    url: Mapped[str] = mapped_column(Text)
    title: Mapped[str | None] = mapped_column(String(255), nullable=True)
    sort_order: Mapped[int | None] = mapped_column(Integer, nullable=True)


class PropertyContact(Base):
    __tablename__ = "property_contacts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    property_id: Mapped[int] = mapped_column(ForeignKey("properties.id", ondelete="CASCADE"), index=True)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(64), nullable=True)
    company: Mapped[str | None] = mapped_column(String(255), nullable=True)
    role: Mapped[str] = mapped_column(String(40), default="agent")
    is_primary: Mapped[bool] = mapped_column(Boolean, default=False)
    sort_order: Mapped[int | None] = mapped_column(Integer, nullable=True)


class PropertyClassification(Base):
    __tablename__ = "property_classifications"
    __table_args__ = (UniqueConstraint("property_id", "taxonomy", "term", name="uq_classification"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    property_id: Mapped[int] = mapped_column(ForeignKey("properties.id", ondelete="CASCADE"), index=True)
    taxonomy: Mapped[str] = mapped_column(String(40), index=True)  # property_type|location|availability
    term: Mapped[str] = mapped_column(String(120), index=True)


class ImageQueueItem(Base):
    """
    Pending image downloads. Rows leave the table on success, clear or maintenance;
    repeated failures park them as `failed`.
    """
    __tablename__ = "image_queue"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    entity_id: Mapped[str] = mapped_column(String(64), index=True)
    image_name: Mapped[str] = mapped_column(String(255))
    image_url: Mapped[str] = mapped_column(Text)

    status: Mapped[ImageQueueStatus] = mapped_column(
        Enum(ImageQueueStatus), default=ImageQueueStatus.pending, index=True
    )
    attempts: Mapped[int] = mapped_column(Integer, default=0)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    added_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow_naive)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow_naive)


class ImportedImage(Base):
    __tablename__ = "imported_images"
    __table_args__ = (UniqueConstraint("entity_id", "image_name", name="uq_imported_image"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    entity_id: Mapped[str] = mapped_column(String(64), index=True)
    image_name: Mapped[str] = mapped_column(String(255))
    image_url: Mapped[str] = mapped_column(Text)
    asset_id: Mapped[str] = mapped_column(String(512))
    imported_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow_naive)


class JobRun(Base):
    """
    Tracks job executions (sync, image processing, maintenance).
    feedsync/service_layer/jobruns.py writes these.
    """
    __tablename__ = "job_runs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    job_name: Mapped[str] = mapped_column(String(80), index=True)

    status: Mapped[JobRunStatus] = mapped_column(Enum(JobRunStatus), default=JobRunStatus.running, index=True)

    started_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow_naive, index=True)
    finished_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    # store error stack or message
    error: Mapped[str | None] = mapped_column(Text, nullable=True)

    # optional metadata: {"force_update": true, "import_type": ...}
    meta_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    summary_json: Mapped[str | None] = mapped_column(Text, nullable=True)


class KeyValueEntry(Base):
    __tablename__ = "kv_store"

    key: Mapped[str] = mapped_column(String(120), primary_key=True)
    value_json: Mapped[str] = mapped_column(Text)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
