from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime
from typing import Any, Literal

from .models import ImageQueueStatus, MediaKind

ImportTypeLit = Literal["properties_and_images", "properties_only"]


class PropertyOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    external_id: str
    title: str
    slug: str
    name: str | None = None
    status: str | None = None
    property_type: str | None = None

    address1: str | None = None
    address2: str | None = None
    town: str | None = None
    city: str | None = None
    county: str | None = None
    postcode: str | None = None
    outward_postcode: str | None = None
    lat: float | None = None
    lng: float | None = None

    size_min: int | None = None
    size_max: int | None = None
    total_size_min: int | None = None
    total_size_max: int | None = None
    area_size_unit: str = "sqft"

    price_min: float | None = None
    price_max: float | None = None
    price_type: str | None = None

    is_featured: bool = False
    last_modified: datetime | None = None
    imported_at: datetime | None = None


class UnitOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    unit_external_id: str
    floor_label: str | None = None
    size_sqft: str | None = None
    rent_min: str | None = None
    rent_max: str | None = None
    rent_metric: str | None = None
    status: str | None = None
    sort_order: int | None = None


class MediaOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    kind: MediaKind
    url: str
    title: str | None = None
    sort_order: int | None = None


class ContactOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    name: str | None = None
    email: str | None = None
    phone: str | None = None
    company: str | None = None
    role: str = "agent"
    is_primary: bool = False


class PropertyDetailOut(PropertyOut):
    units: list[UnitOut] = Field(default_factory=list)
    media: list[MediaOut] = Field(default_factory=list)
    contacts: list[ContactOut] = Field(default_factory=list)
    classifications: dict[str, list[str]] = Field(default_factory=dict)
    record: dict[str, Any] = Field(default_factory=dict)


class PropertyPage(BaseModel):
    items: list[PropertyOut]
    total: int
    limit: int
    offset: int


class ManualSyncRequest(BaseModel):
    force_update: bool = False
    import_type: ImportTypeLit = "properties_and_images"


class SyncReportOut(BaseModel):
    type: Literal["manual", "auto"]
    status: Literal["success", "error"]
    started_at: str
    duration: float = Field(..., ge=0)
    total_items: int = Field(..., ge=0)
    added: int = Field(..., ge=0)
    updated: int = Field(..., ge=0)
    removed: int = Field(..., ge=0)
    skipped: int = Field(..., ge=0)
    error: str | None = None
    message: str = ""


class FeedTestRequest(BaseModel):
    url: str | None = None


class FeedTestOut(BaseModel):
    success: bool
    message: str
    response_time_ms: int | None = None
    content_length: int | None = None
    status_code: int | None = None


class QueueItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    entity_id: str
    image_name: str
    image_url: str
    status: ImageQueueStatus
    attempts: int
    last_error: str | None = None
    added_at: datetime


class QueueStatusOut(BaseModel):
    pending: int
    failed: int
    total: int


class BatchResultOut(BaseModel):
    processed: int
    failed: int
    errors: list[str]
    remaining: int
