# feedsync/services/normalize.py
from __future__ import annotations

import hashlib
import json
from dataclasses import replace
from typing import Any, Iterable

from ..domain.address import outward_postcode
from ..domain.parsing import get_first, parse_int, parse_number, to_snake_case_keys, tri_state_bool
from ..domain.ranges import PriceType
from ..domain.records import (
    AdminSection,
    AmenitySpec,
    BusinessFinancialSection,
    CertificationsSection,
    ContactRecord,
    LegalRegulatorySection,
    LocationSection,
    MarketingSection,
    MediaRecord,
    MediaSection,
    NormalizedRecord,
    PhysicalFeaturesSection,
    PricingSection,
    PropertySection,
    RecordMeta,
    RentTerms,
    SellingPointsSection,
    ServiceCharge,
    SizeSection,
    UnitRecord,
)
from ..errors import MissingExternalId

FILE_TYPE_BROCHURE = "11"
FILE_TYPE_FLOORPLAN = "15"


class _Source:
    """
    Read-tracking view over the snake_cased mapping. Whatever scalar nobody asked for
    ends up in the record's extras.
    """

    def __init__(self, data: dict[str, Any]):
        self._data = data
        self._used: set[str] = set()

    def get(self, key: str) -> Any:
        self._used.add(key)
        v = self._data.get(key)
        if v is None or v == "":
            return None
        return v

    def first(self, *keys: str) -> Any:
        self._used.update(keys)
        return get_first(self._data, *keys)

    def number(self, key: str) -> float | None:
        return parse_number(self.get(key))

    def flag(self, key: str) -> bool | None:
        return tri_state_bool(self.get(key))

    def leftovers(self) -> dict[str, str]:
        return {
            k: v
            for k, v in self._data.items()
            if k not in self._used and isinstance(v, str) and v.strip()
        }


def _str_or_none(v: Any) -> str | None:
    if v is None or v == "":
        return None
    if isinstance(v, dict):
        return _term_name(v)
    return str(v)


def _term_name(v: Any) -> str | None:
    """Taxonomy terms come through as {"name", "id"}; plain strings pass."""
    if isinstance(v, dict):
        name = v.get("name")
        return str(name).strip() if name not in (None, "") else None
    if isinstance(v, str):
        return v.strip() or None
    return None


def _items(value: Any, wrapper_key: str | None = None) -> list[Any]:
    if value is None or value == "":
        return []
    if isinstance(value, dict):
        if wrapper_key and wrapper_key in value:
            value = value[wrapper_key]
        else:
            return [value]
    if isinstance(value, list):
        return value
    return [value]


def _strings(values: Iterable[Any]) -> tuple[str, ...]:
    return tuple(v.strip() for v in values if isinstance(v, str) and v.strip())


def _names(value: Any, wrapper_key: str) -> tuple[str, ...]:
    out = []
    for item in _items(value, wrapper_key):
        name = _term_name(item)
        if name:
            out.append(name)
    return tuple(out)


# -------------------------
# units
# -------------------------


def unit_fingerprint(unit: dict[str, Any]) -> str:
    """Stable id for a unit the feed didn't identify. Same unit data -> same id, every import."""
    parts = [
        unit.get("floor") or "",
        unit.get("level") or "",
        unit.get("size_sqft") or unit.get("size") or "",
        unit.get("rent_metric") or "",
        unit.get("status") or "",
        unit.get("sort_order") or "",
    ]
    return hashlib.sha1("|".join(str(p) for p in parts).encode("utf-8")).hexdigest()[:16]


def normalize_unit(raw: dict[str, Any]) -> UnitRecord:
    u = to_snake_case_keys(raw)
    unit_id = get_first(u, "unit_id", "id", "meta_id") or unit_fingerprint(u)
    return UnitRecord(
        unit_external_id=str(unit_id),
        floor_label=_str_or_none(get_first(u, "floor", "level", "floor_unit", "floorunit")),
        size_sqft=_str_or_none(get_first(u, "size_sqft", "size")),
        rent_min=_str_or_none(get_first(u, "rent_min", "rent_price")),
        rent_max=_str_or_none(get_first(u, "rent_max", "rent_price")),
        rent_metric=_str_or_none(u.get("rent_metric")),
        rates_text=_str_or_none(get_first(u, "rates_sqft", "rates_text")),
        status=_str_or_none(u.get("status")),
        availability_date=_str_or_none(u.get("availability_date")),
        sort_order=parse_int(u.get("sort_order")),
        raw=u,
    )


# -------------------------
# media
# -------------------------


def _media_entry(value: Any, *, url_keys: tuple[str, ...], title_keys: tuple[str, ...]) -> MediaRecord | None:
    if isinstance(value, str):
        value = {"url": value}
    if not isinstance(value, dict):
        return None
    d = to_snake_case_keys(value)
    url = get_first(d, *url_keys)
    if not isinstance(url, str) or not url.strip():
        return None
    title = get_first(d, *title_keys)
    return MediaRecord(
        url=url.strip(),
        title=_str_or_none(title),
        sort_order=parse_int(d.get("sort_order")),
        raw=d,
    )


def normalize_media(src: _Source) -> MediaSection:
    images = []
    for i in _items(src.get("images"), "image"):
        rec = _media_entry(i, url_keys=("url", "src"), title_keys=("alt", "name"))
        if rec:
            images.append(rec)

    brochures: list[MediaRecord] = []
    floorplans: list[MediaRecord] = []
    for f in _items(src.get("files"), "file"):
        if not isinstance(f, dict):
            continue
        rec = _media_entry(f, url_keys=("url",), title_keys=("name",))
        if rec is None:
            continue
        kind = str(f.get("type", ""))
        if kind == FILE_TYPE_BROCHURE:
            brochures.append(rec)
        elif kind == FILE_TYPE_FLOORPLAN:
            floorplans.append(rec)

    for b in _items(src.get("brochures"), "brochure"):
        rec = _media_entry(b, url_keys=("url",), title_keys=("title",))
        if rec:
            brochures.append(rec)
    for f in _items(src.get("floor_plans"), "floor_plan"):
        rec = _media_entry(f, url_keys=("url",), title_keys=("title",))
        if rec:
            floorplans.append(rec)

    # videos without a url are dropped
    videos = []
    for v in _items(src.get("videos"), "video"):
        rec = _media_entry(v, url_keys=("url",), title_keys=("title",))
        if rec:
            videos.append(rec)

    return MediaSection(
        images=tuple(images),
        brochures=tuple(brochures),
        floorplans=tuple(floorplans),
        videos=tuple(videos),
        videos_detail=_strings(_items(src.get("videos_detail"), "video")),
    )


# -------------------------
# contacts
# -------------------------


def normalize_contact(raw: dict[str, Any]) -> ContactRecord:
    c = to_snake_case_keys(raw)
    email = c.get("email")
    return ContactRecord(
        name=_str_or_none(c.get("name")),
        email=email.strip().lower() if isinstance(email, str) and email.strip() else None,
        phone=_str_or_none(get_first(c, "phone", "telephone", "tel")),
        company=_str_or_none(get_first(c, "company", "office")),
        role=_str_or_none(c.get("role")) or "agent",
        is_primary=tri_state_bool(c.get("is_primary")) or False,
        sort_order=parse_int(c.get("sort_order")),
        raw=c,
    )


def normalize_contacts(src: _Source) -> tuple[ContactRecord, ...]:
    raw = src.first("contacts", "agent", "agents")
    contacts = [normalize_contact(c) for c in _items(raw, "contact") if isinstance(c, dict)]
    if contacts:
        return tuple(contacts)

    # flat agent_* fields as a last resort
    flat = {
        "name": src.get("agent_name"),
        "email": src.get("agent_email"),
        "phone": src.get("agent_phone"),
        "company": src.get("agent_company"),
    }
    if any(flat.values()):
        return (normalize_contact({**{k: v for k, v in flat.items() if v}, "is_primary": True}),)
    return ()


# -------------------------
# pricing blocks
# -------------------------


def normalize_rent(src: _Source) -> RentTerms:
    block = src.get("rent_components")
    rc = to_snake_case_keys(block) if isinstance(block, dict) else {}

    def pick(nested: str, flat: str) -> Any:
        v = rc.get(nested)
        if v is None or v == "":
            return src.get(flat)
        return v

    return RentTerms(
        rent_from=parse_number(pick("from", "rent_from")),
        rent_to=parse_number(pick("to", "rent_to")),
        metric=_str_or_none(pick("metric", "rent_metric")),
        rates=pick("rates", "rent_rates"),
        comment=_str_or_none(pick("comment", "rent_comment")),
        on_application=tri_state_bool(pick("on_application", "rent_on_application")),
    )


def normalize_service_charge(src: _Source) -> ServiceCharge:
    block = src.get("service_charge")
    if isinstance(block, dict):
        sc = to_snake_case_keys(block)
        flat_amount = None
    else:
        sc = {}
        flat_amount = block

    def pick(nested: str, flat: str) -> Any:
        v = sc.get(nested)
        if v is None or v == "":
            return src.get(flat)
        return v

    amount = sc.get("service_charge")
    if amount is None or amount == "":
        amount = sc.get("amount", flat_amount)

    return ServiceCharge(
        amount=parse_number(amount),
        period=_str_or_none(pick("service_charge_period", "service_charge_period")),
        text=_str_or_none(pick("service_charge_text", "service_charge_text")),
        rates=pick("service_charge_rates", "service_charge_rates"),
    )


def _price_type(v: Any) -> PriceType | str | None:
    if v is None or v == "":
        return None
    try:
        return PriceType(str(v))
    except ValueError:
        return str(v)


# -------------------------
# hashing
# -------------------------


def canonical_json(data: Any) -> str:
    return json.dumps(data, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)


def compute_payload_hash(record: NormalizedRecord) -> str:
    """sha256 of the record minus the import bookkeeping, so re-imports of the same data hash equal."""
    d = record.to_dict()
    d["meta"].pop("imported_at", None)
    d["meta"].pop("payload_hash", None)
    return hashlib.sha256(canonical_json(d).encode("utf-8")).hexdigest()


# -------------------------
# entrypoint
# -------------------------


def normalize(mapping: dict[str, Any]) -> NormalizedRecord:
    """
    FieldMapping -> NormalizedRecord. Pure; absent optional fields become None/empty.

    Raises MissingExternalId when neither `id` nor `external_id` carries a value.
    """
    src = _Source(to_snake_case_keys(mapping))

    external_id = src.first("id", "external_id")
    if external_id is None or not str(external_id).strip():
        raise MissingExternalId()
    external_id = str(external_id).strip()

    name = _str_or_none(src.get("name"))
    postcode = _str_or_none(src.get("postcode"))
    street_view = src.get("street_view_data")

    meta = RecordMeta(
        external_id=external_id,
        created_at=_str_or_none(src.first("created", "created_at")),
        last_updated=_str_or_none(src.first("last_updated", "updated")),
        is_featured=src.flag("featured") or False,
    )

    prop = PropertySection(
        name=name,
        title=_str_or_none(src.get("title")) or name,
        status=_str_or_none(src.get("status")),
        types=_names(src.get("types"), "type"),
        availabilities=_names(src.get("availabilities"), "type"),
        specification_summary=_str_or_none(src.get("specification_summary")),
        specification_promo=_str_or_none(src.get("specification_promo")),
        description=_str_or_none(src.first("specification_description", "description")),
        features=src.get("features"),
        fitted=src.flag("fitted"),
        fitted_comment=_str_or_none(src.get("fitted_comment")),
        property_type=_str_or_none(src.get("property_type")),
        url=_str_or_none(src.get("url")),
        particulars_url=_str_or_none(src.get("particulars_url")),
    )

    location = LocationSection(
        name=name,
        address1=_str_or_none(src.get("address1")),
        address2=_str_or_none(src.get("address2")),
        city=_str_or_none(src.get("city")),
        town=_str_or_none(src.get("town")),
        county=_str_or_none(src.first("county", "location_county")),
        postcode=postcode,
        outward_postcode=outward_postcode(postcode),
        lat=parse_number(src.first("lat", "latitude")),
        lng=parse_number(src.first("lng", "longitude", "lon")),
        location_text=_str_or_none(src.get("location")),
        street_view=to_snake_case_keys(street_view) if isinstance(street_view, dict) else None,
        submarkets=_names(src.get("submarkets"), "submarket"),
        travel_times=src.get("travel_times"),
    )

    pricing = PricingSection(
        price_min=src.number("price_min"),
        price_max=src.number("price_max"),
        price_type=_price_type(src.first("price_type", "price_metric")),
        price=src.number("price"),
        total_price=src.number("total_price"),
        price_per_sqft=src.number("price_per_sqft"),
        price_per_sqft_min=src.number("price_per_sqft_min"),
        price_per_sqft_max=src.number("price_per_sqft_max"),
        total_monthly_min=src.number("total_monthly_min"),
        total_monthly_max=src.number("total_monthly_max"),
        total_yearly_min=src.number("total_yearly_min"),
        total_yearly_max=src.number("total_yearly_max"),
        rent=normalize_rent(src),
        service_charge=normalize_service_charge(src),
        initial_yield=src.number("initial_yield"),
        premium=src.number("premium"),
        premium_nil=src.flag("premium_nil"),
        parking_ratio=_str_or_none(src.get("parking_ratio")),
    )

    business = BusinessFinancialSection(
        turnover=src.number("turnover"),
        turnover_pa=src.number("turnover_pa"),
        profit_gross=src.number("profit_gross"),
        profit_net=src.number("profit_net"),
        tenancy_passing_giy=src.number("tenancy_passing_giy"),
        tenancy_passing_niy=src.number("tenancy_passing_niy"),
        tenancy_status=_str_or_none(src.get("tenancy_status")),
    )

    legal = LegalRegulatorySection(
        sale_type=_str_or_none(src.get("sale_type")),
        class_of_use=_str_or_none(src.get("class_of_use")),
        legal_fees_applicable=src.flag("legal_fees_applicable"),
        lease_length=_str_or_none(src.get("lease_length")),
        protected_act=src.flag("protected_act"),
        insurance_type=_str_or_none(src.get("insurance_type")),
        availability_reasons=_str_or_none(src.get("availability_reasons")),
        togc=src.flag("togc"),
    )

    physical = PhysicalFeaturesSection(
        shop_frontage_ft=src.number("shop_frontage_ft"),
        shop_frontage_m=src.number("shop_frontage_m"),
        shop_frontage_inches=src.number("shop_frontage_inches"),
        land_size_from=src.number("land_size_from"),
        land_size_to=src.number("land_size_to"),
        land_size_metric=_str_or_none(src.get("land_size_metric")),
        total_property_size=src.number("total_property_size"),
        total_property_size_metric=_str_or_none(src.get("total_property_size_metric")),
        area_size_type=_str_or_none(src.get("area_size_type")),
        size_measure=_str_or_none(src.get("size_measure")),
    )

    size = SizeSection(
        size_min=parse_int(src.first("size_min", "total_size_min", "size_from")),
        size_max=parse_int(src.first("size_max", "total_size_max", "size_to")),
        area_size_unit=_str_or_none(src.first("area_size_unit", "unit")) or "sqft",
        total_size_sqft=parse_int(src.first("total_size_sqft", "size_sqft")),
        size_from_sqft=parse_int(src.get("size_from_sqft")),
        size_to_sqft=parse_int(src.get("size_to_sqft")),
        total_property_size_min=parse_int(src.get("total_property_size_min")),
        total_property_size_max=parse_int(src.get("total_property_size_max")),
    )

    marketing = MarketingSection(
        titles=tuple(_str_or_none(src.get(f"marketing_title_{i}")) for i in range(1, 6)),
        texts=tuple(_str_or_none(src.get(f"marketing_text_{i}")) for i in range(1, 6)),
        transport_title=_str_or_none(src.get("marketing_title_transport")),
        transport_text=_str_or_none(src.get("marketing_text_transport")),
    )

    amenities = tuple(
        AmenitySpec(label=str(a["label"]).strip(), value=str(a["value"]).strip())
        for a in _items(src.get("amenities_specifications"), "amenities_specification")
        if isinstance(a, dict) and a.get("label") is not None and a.get("value") is not None
    )
    selling_points = SellingPointsSection(
        key_selling_points=_strings(_items(src.get("key_selling_points"), "key_selling_point")),
        amenities_specifications=amenities,
    )

    epcs = []
    for e in _items(src.get("epcs"), "epc"):
        if isinstance(e, dict):
            e = get_first(e, "url", "name")
        if isinstance(e, str) and e.strip():
            epcs.append(e.strip())
    certifications = CertificationsSection(epcs=tuple(epcs), tags=src.get("tags"))

    raw_units = src.first("units", "floor_units")
    units = tuple(normalize_unit(u) for u in _items(raw_units, "floor_unit") if isinstance(u, dict))

    media = normalize_media(src)
    contacts = normalize_contacts(src)

    # already consumed upstream into size/price ranges or the image queue
    for key in ("original_images", "rent"):
        src.get(key)

    record = NormalizedRecord(
        meta=meta,
        property=prop,
        location=location,
        pricing=pricing,
        business_financial=business,
        legal_regulatory=legal,
        physical_features=physical,
        size=size,
        marketing=marketing,
        selling_points=selling_points,
        certifications=certifications,
        units=units,
        media=media,
        contacts=contacts,
        admin=AdminSection(),
        extras=src.leftovers(),
    )
    return replace(record, meta=replace(record.meta, payload_hash=compute_payload_hash(record)))
