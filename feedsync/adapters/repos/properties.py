# feedsync/adapters/repos/properties.py
from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Iterable, Mapping

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ...domain.address import build_title, slugify
from ...domain.parsing import parse_timestamp
from ...domain.records import NormalizedRecord
from ...models import (
    MediaKind,
    PropertyClassification,
    PropertyContact,
    PropertyMedia,
    PropertyUnit,
    StoredProperty,
    utcnow_naive,
)
from ...services.normalize import canonical_json

_CHILD_MODELS = (PropertyUnit, PropertyMedia, PropertyContact, PropertyClassification)


def _naive_utc(dt: datetime | None) -> datetime | None:
    return dt.replace(tzinfo=None) if dt is not None else None


class PropertyRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def find_by_external_id(self, external_id: str) -> StoredProperty | None:
        q = select(StoredProperty).where(StoredProperty.external_id == external_id)
        return (await self.session.execute(q)).scalars().first()

    async def get(self, property_id: int) -> StoredProperty | None:
        return await self.session.get(StoredProperty, property_id)

    def _filtered(self, q, status: str | None, property_type: str | None):
        if status:
            q = q.where(StoredProperty.status == status)
        if property_type:
            q = q.where(
                StoredProperty.id.in_(
                    select(PropertyClassification.property_id).where(
                        PropertyClassification.taxonomy == "property_type",
                        PropertyClassification.term == property_type,
                    )
                )
            )
        return q

    async def list(
        self,
        *,
        limit: int = 50,
        offset: int = 0,
        status: str | None = None,
        property_type: str | None = None,
    ) -> list[StoredProperty]:
        q = self._filtered(select(StoredProperty), status, property_type)
        q = q.order_by(StoredProperty.id.asc()).offset(offset).limit(limit)
        return list((await self.session.execute(q)).scalars().all())

    async def count(self, *, status: str | None = None, property_type: str | None = None) -> int:
        q = self._filtered(select(func.count()).select_from(StoredProperty), status, property_type)
        return int((await self.session.execute(q)).scalar_one())

    async def upsert(
        self,
        record: NormalizedRecord,
        original: Mapping[str, Any],
        *,
        now: datetime | None = None,
    ) -> StoredProperty:
        """
        Insert or update by exact external_id. Denormalized columns, the full
        record and the original mapping are rewritten; child rows are replaced wholesale.
        """
        now = now or utcnow_naive()
        prop = await self.find_by_external_id(record.meta.external_id)
        if prop is None:
            prop = StoredProperty(external_id=record.meta.external_id, created_at=now)
            self.session.add(prop)

        stamped = record.stamped(imported_at=now, payload_hash=record.meta.payload_hash or "")

        title = record.property.title or build_title(dict(original))
        loc = record.location
        size = record.size
        pricing = record.pricing

        prop.last_modified = _naive_utc(parse_timestamp(record.meta.last_updated))
        prop.last_modified_raw = record.meta.last_updated
        prop.title = title
        prop.slug = slugify(title) or record.meta.external_id
        prop.name = record.property.name
        prop.status = record.property.status
        prop.property_type = record.property.property_type

        prop.address1 = loc.address1
        prop.address2 = loc.address2
        prop.town = loc.town
        prop.city = loc.city
        prop.county = loc.county
        prop.postcode = loc.postcode
        prop.outward_postcode = loc.outward_postcode
        prop.lat = loc.lat
        prop.lng = loc.lng

        prop.size_min = size.size_min
        prop.size_max = size.size_max
        prop.total_size_min = size.total_property_size_min
        prop.total_size_max = size.total_property_size_max
        prop.area_size_unit = size.area_size_unit or "sqft"

        prop.price_min = pricing.price_min
        prop.price_max = pricing.price_max
        prop.price_type = getattr(pricing.price_type, "value", pricing.price_type)

        prop.is_featured = record.meta.is_featured
        prop.is_archived = record.meta.is_archived

        prop.normalized_json = canonical_json(stamped.to_dict())
        prop.original_json = json.dumps(dict(original), default=str)
        prop.payload_hash = record.meta.payload_hash
        prop.imported_at = now
        prop.updated_at = now

        await self.session.flush()
        await self._replace_children(prop.id, record)
        return prop

    async def _replace_children(self, property_id: int, record: NormalizedRecord) -> None:
        for model in (PropertyUnit, PropertyMedia, PropertyContact):
            await self.session.execute(delete(model).where(model.property_id == property_id))

        seen_units: set[str] = set()
        for u in record.units:
            # duplicate fingerprints collapse onto the first unit
            if u.unit_external_id in seen_units:
                continue
            seen_units.add(u.unit_external_id)
            self.session.add(
                PropertyUnit(
                    property_id=property_id,
                    unit_external_id=u.unit_external_id,
                    floor_label=u.floor_label,
                    size_sqft=u.size_sqft,
                    rent_min=u.rent_min,
                    rent_max=u.rent_max,
                    rent_metric=u.rent_metric,
                    rates_text=u.rates_text,
                    status=u.status,
                    availability_date=u.availability_date,
                    sort_order=u.sort_order,
                    raw_json=json.dumps(u.raw, default=str),
                )
            )

        media = record.media
        for kind, items in (
            (MediaKind.image, media.images),
            (MediaKind.brochure, media.brochures),
            (MediaKind.floorplan, media.floorplans),
            (MediaKind.video, media.videos),
        ):
            for i, m in enumerate(items):
                self.session.add(
                    PropertyMedia(
                        property_id=property_id,
                        kind=kind,
                        url=m.url,
                        title=m.title,
                        sort_order=m.sort_order if m.sort_order is not None else i,
                    )
                )

        for i, c in enumerate(record.contacts):
            self.session.add(
                PropertyContact(
                    property_id=property_id,
                    name=c.name,
                    email=c.email,
                    phone=c.phone,
                    company=c.company,
                    role=c.role,
                    is_primary=c.is_primary,
                    sort_order=c.sort_order if c.sort_order is not None else i,
                )
            )
        await self.session.flush()

    async def set_classifications(self, prop: StoredProperty, terms: Mapping[str, Iterable[str]]) -> None:
        """Replace the property's terms for each taxonomy given; other taxonomies are left alone."""
        for taxonomy, values in terms.items():
            await self.session.execute(
                delete(PropertyClassification).where(
                    PropertyClassification.property_id == prop.id,
                    PropertyClassification.taxonomy == taxonomy,
                )
            )
            seen: set[str] = set()
            for term in values:
                if not term or term in seen:
                    continue
                seen.add(term)
                self.session.add(PropertyClassification(property_id=prop.id, taxonomy=taxonomy, term=term))
        await self.session.flush()

    async def children(self, prop: StoredProperty) -> dict[str, list[Any]]:
        out: dict[str, list[Any]] = {}
        for key, model in (
            ("units", PropertyUnit),
            ("media", PropertyMedia),
            ("contacts", PropertyContact),
            ("classifications", PropertyClassification),
        ):
            q = select(model).where(model.property_id == prop.id).order_by(model.id.asc())
            out[key] = list((await self.session.execute(q)).scalars().all())
        return out

    async def remove(self, external_id: str) -> bool:
        prop = await self.find_by_external_id(external_id)
        if prop is None:
            return False
        for model in _CHILD_MODELS:
            await self.session.execute(delete(model).where(model.property_id == prop.id))
        await self.session.delete(prop)
        await self.session.flush()
        return True

    async def remove_all(self) -> int:
        n = await self.count()
        for model in _CHILD_MODELS:
            await self.session.execute(delete(model))
        await self.session.execute(delete(StoredProperty))
        await self.session.flush()
        return n
