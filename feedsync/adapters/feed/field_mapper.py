# feedsync/adapters/feed/field_mapper.py
from __future__ import annotations

import json
import posixpath
import re
from typing import Any, Iterable
from urllib.parse import urlparse

from ...domain.parsing import clean_unicode_string, is_numeric
from ...domain.ranges import calculate_price_range, calculate_size_range, extract_total_property_size
from .xml_extractor import ElementMap, as_list, child_list

FieldMapping = dict[str, Any]

BASIC_FIELDS = (
    "id",
    "object_id",
    "name",
    "property_type",
    "status",
    "description",
    "features",
    "created_at",
    "last_updated",
    "featured",
    "fitted",
    "fitted_comment",
    "specification_summary",
    "specification_promo",
    "specification_description",
    "url",
    "particulars_url",
    "togc",
    "sale_type",
    "tenancy_passing_giy",
    "tenancy_passing_niy",
    "turnover_pa",
    "tenancy_status",
    "class_of_use",
    "legal_fees_applicable",
    "lease_length",
    "protected_act",
    "insurance_type",
    "availability_reasons",
    "shop_frontage_ft",
    "shop_frontage_m",
    "shop_frontage_inches",
    "travel_times",
    "tags",
    *(f"marketing_title_{i}" for i in range(1, 6)),
    *(f"marketing_text_{i}" for i in range(1, 6)),
    "marketing_title_transport",
    "marketing_text_transport",
)

LOCATION_FIELDS = (
    "address1",
    "address2",
    "town",
    "city",
    "county",
    "postcode",
    "location",
    "street_view_data",
    "submarkets",
)
# only copied when non-empty so numeric strings like "-0.1131" survive untouched
COORDINATE_FIELDS = ("lat", "lon", "latitude", "longitude")

PRICING_FIELDS = (
    "price",
    "rent",
    "price_per_sqft",
    "price_per_sqft_min",
    "price_per_sqft_max",
    "total_price",
    "total_monthly_min",
    "total_monthly_max",
    "total_yearly_min",
    "total_yearly_max",
    "turnover",
    "profit_gross",
    "profit_net",
    "initial_yield",
    "premium",
    "premium_nil",
    "parking_ratio",
    "rent_components",
    "service_charge",
)

SPECIFICATION_FIELDS = (
    "size_sqft",
    "size_from",
    "size_to",
    "total_property_size",
    "total_property_size_metric",
    "area_size_unit",
    "area_size_type",
    "size_from_sqft",
    "size_to_sqft",
    "size_measure",
    "land_size_from",
    "land_size_to",
    "land_size_metric",
)

AGENT_FIELDS = ("agent_name", "agent_email", "agent_phone", "agent_company", "joint_agents")

# feed file type codes
FILE_TYPE_BROCHURE = "11"
FILE_TYPE_FLOORPLAN = "15"

# consumed by dedicated extractors below; never passed through raw
STRUCTURED_ELEMENTS = frozenset(
    {
        "contacts",
        "images",
        "original_images",
        "files",
        "epcs",
        "videos",
        "videos_detail",
        "types",
        "availabilities",
        "key_selling_points",
        "amenities_specifications",
        "floor_units",
    }
)

_HAS_AMOUNT_RE = re.compile(r"£?\d+\.?\d*")


# -------------------------
# small helpers
# -------------------------


def is_url(value: Any) -> bool:
    if not isinstance(value, str):
        return False
    try:
        parsed = urlparse(value.strip())
    except ValueError:
        # urlparse rejects things like an unclosed "[" in the host
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def url_basename(url: str) -> str:
    try:
        path = urlparse(url).path
    except ValueError:
        path = url.split("?", 1)[0].split("#", 1)[0]
    return posixpath.basename(path) or posixpath.basename(url.rstrip("/"))


def _pick(elements: ElementMap, fields: Iterable[str]) -> FieldMapping:
    return {f: elements.get(f, "") for f in fields}


def _dedupe(values: Iterable[str]) -> list[str]:
    out: list[str] = []
    seen: set[str] = set()
    for v in values:
        if v and v not in seen:
            out.append(v)
            seen.add(v)
    return out


def _flexible_list(value: Any) -> list[Any]:
    """
    epcs/videos/videos_detail arrive as nested elements, JSON strings or comma lists.
    """
    if isinstance(value, list):
        return value
    if isinstance(value, dict):
        if len(value) == 1:
            return as_list(next(iter(value.values())))
        return [value]
    if isinstance(value, str):
        s = value.strip()
        if not s:
            return []
        try:
            decoded = json.loads(s)
        except ValueError:
            return [p.strip() for p in s.split(",") if p.strip()]
        if isinstance(decoded, list):
            return decoded
        return [decoded]
    return []


# -------------------------
# field groups
# -------------------------


def map_basic_fields(elements: ElementMap) -> FieldMapping:
    return _pick(elements, BASIC_FIELDS)


def map_location_fields(elements: ElementMap) -> FieldMapping:
    out = _pick(elements, LOCATION_FIELDS)
    for f in COORDINATE_FIELDS:
        v = elements.get(f)
        if v is not None and v != "":
            out[f] = v
    return out


def map_pricing_fields(elements: ElementMap) -> FieldMapping:
    return _pick(elements, PRICING_FIELDS)


def map_specification_fields(elements: ElementMap) -> FieldMapping:
    return _pick(elements, SPECIFICATION_FIELDS)


def map_agent_fields(elements: ElementMap) -> FieldMapping:
    out = _pick(elements, AGENT_FIELDS)
    out["contacts"] = [c for c in child_list(elements.get("contacts"), "contact") if isinstance(c, dict)]
    return out


def extract_images(elements: ElementMap) -> list[Any]:
    images: list[Any] = []
    for image in child_list(elements.get("images"), "image"):
        if isinstance(image, str):
            if image.strip():
                images.append(image.strip())
        elif isinstance(image, dict):
            if image.get("url"):
                images.append(image["url"])
            elif image.get("name"):
                images.append(image)
    return images


def extract_original_images(elements: ElementMap) -> list[dict[str, str]]:
    out: list[dict[str, str]] = []
    for image in child_list(elements.get("original_images"), "original_image"):
        if isinstance(image, str):
            if is_url(image):
                out.append({"name": url_basename(image.strip()), "url": image.strip()})
            continue
        if not isinstance(image, dict):
            continue
        name, url = image.get("name"), image.get("url")
        if name and url:
            out.append({"name": name, "url": url})
        elif name and is_url(name):
            out.append({"name": url_basename(name), "url": name})
        elif url:
            out.append({"name": url_basename(url), "url": url})
    return out


def extract_files(elements: ElementMap) -> list[dict[str, Any]]:
    raw = elements.get("files")
    if not raw:
        return []

    if isinstance(raw, str):
        if is_url(raw):
            return [{"url": raw, "name": url_basename(raw), "type": FILE_TYPE_BROCHURE, "description": "File"}]
        return []

    if isinstance(raw, dict) and "file" not in raw:
        if raw.get("url"):
            return [
                {"url": raw["url"], "name": url_basename(raw["url"]), "type": FILE_TYPE_BROCHURE, "description": "Brochure"}
            ]
        return []

    files: list[dict[str, Any]] = []
    for f in child_list(raw, "file") if isinstance(raw, dict) else as_list(raw):
        if isinstance(f, str) and is_url(f):
            files.append({"url": f, "name": url_basename(f), "type": FILE_TYPE_BROCHURE})
        elif isinstance(f, dict) and f.get("url"):
            files.append(f)
    return files


def map_media_fields(elements: ElementMap) -> FieldMapping:
    return {
        "images": extract_images(elements),
        "original_images": extract_original_images(elements),
        "files": extract_files(elements),
        "epcs": _flexible_list(elements.get("epcs")),
        "videos": _flexible_list(elements.get("videos")),
        "videos_detail": _flexible_list(elements.get("videos_detail")),
    }


# -------------------------
# repeatable structures
# -------------------------


def _taxonomy_names(wrapper: Any, *child_tags: str) -> list[str]:
    names: list[str] = []
    for tag in child_tags:
        for item in child_list(wrapper, tag):
            if isinstance(item, dict):
                name = item.get("name")
                if isinstance(name, str):
                    names.append(name.strip())
            elif isinstance(item, str):
                names.append(item.strip())
    return _dedupe(names)


def extract_types(elements: ElementMap) -> list[str]:
    return _taxonomy_names(elements.get("types"), "type")


def extract_availabilities(elements: ElementMap) -> list[str]:
    return _taxonomy_names(elements.get("availabilities"), "type", "availability")


def extract_key_selling_points(elements: ElementMap) -> list[str]:
    return [
        p.strip()
        for p in child_list(elements.get("key_selling_points"), "key_selling_point")
        if isinstance(p, str) and p.strip()
    ]


def extract_amenities_specifications(elements: ElementMap) -> list[dict[str, str]]:
    out: list[dict[str, str]] = []
    for spec in child_list(elements.get("amenities_specifications"), "amenities_specification"):
        if not isinstance(spec, dict):
            continue
        label, value = spec.get("label"), spec.get("value")
        if isinstance(label, str) and isinstance(value, str):
            out.append({"label": label.strip(), "value": value.strip()})
    return out


def format_rent_price(value: Any) -> str:
    """
    Display value for a unit's rent: "POA" for on-application / non-numeric text,
    "£" prefixed for bare numbers, anything else kept verbatim.
    """
    s = clean_unicode_string(str(value)).strip()
    low = s.lower()
    if low == "on application" or "application" in low:
        return "POA"
    if is_numeric(s):
        return f"£{s}"
    if not _HAS_AMOUNT_RE.search(s):
        return "POA"
    return s


def process_floor_unit(unit: dict[str, Any]) -> dict[str, Any]:
    processed = {k: clean_unicode_string(v) if isinstance(v, str) else v for k, v in unit.items()}
    if "rent_price" in unit:
        processed["rent_sqft"] = format_rent_price(unit["rent_price"])
    return processed


def extract_floor_units(elements: ElementMap) -> list[dict[str, Any]]:
    return [
        process_floor_unit(u) for u in child_list(elements.get("floor_units"), "floor_unit") if isinstance(u, dict)
    ]


def _passthrough(elements: ElementMap, mapped: FieldMapping) -> FieldMapping:
    """Unknown scalar elements are kept under their own name for the normalizer's extras."""
    return {
        k: v
        for k, v in elements.items()
        if k not in mapped and k not in STRUCTURED_ELEMENTS and isinstance(v, str) and v != ""
    }


def map_fields(elements: ElementMap) -> FieldMapping:
    """
    Apply every field group, the repeatable-structure extractors and the range
    cascades to one extracted item. Missing optional keys map to "".
    """
    data: FieldMapping = {}
    data.update(map_basic_fields(elements))
    data.update(map_location_fields(elements))
    data.update(map_pricing_fields(elements))
    data.update(map_specification_fields(elements))
    data.update(map_agent_fields(elements))
    data.update(map_media_fields(elements))

    data["types"] = extract_types(elements)
    data["availabilities"] = extract_availabilities(elements)
    data["key_selling_points"] = extract_key_selling_points(elements)
    data["amenities_specifications"] = extract_amenities_specifications(elements)
    data["floor_units"] = extract_floor_units(elements)

    size = calculate_size_range(elements, data["floor_units"])
    data["size_min"] = size.min
    data["size_max"] = size.max

    total = extract_total_property_size(elements)
    if total:
        data["total_property_size_min"] = total.min
        data["total_property_size_max"] = total.max

    price = calculate_price_range(elements, data["floor_units"], data["availabilities"])
    data["price_min"] = price.min
    data["price_max"] = price.max
    data["price_type"] = price.type.value

    data.update(_passthrough(elements, data))
    return data
