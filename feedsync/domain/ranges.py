# feedsync/domain/ranges.py
from __future__ import annotations

import enum
import re
from dataclasses import dataclass
from typing import Any, Iterable, Mapping

from .parsing import parse_number

# "29205840sqft" -> 2920 / 5840 (feed quirk: range emitted with no delimiter)
_CONCAT_SIZE_RE = re.compile(r"^(\d{4,})(\d{4})sqft?$", re.IGNORECASE)
_RANGE_SIZE_RE = re.compile(r"(\d+)\s*[-–]\s*(\d+)")
_DIGITS_ONLY_RE = re.compile(r"[^0-9]")
_THOUSANDS_RE = re.compile(r"(?<=\d),(?=\d{3}\b)")

_POA_RE = re.compile(r"on\s+application|poa|price\s+on\s+application", re.IGNORECASE)
_PRICE_TOKEN_RE = re.compile(r"£?(\d+(?:,\d{3})*(?:\.\d{2})?)")

UNIT_SIZE_FIELDS = ("size_from_sqft", "size_to_sqft", "size_from", "size_to", "unit_size_range")
UNIT_SIZE_PAIRS = (("size_from_sqft", "size_to_sqft"), ("size_from", "size_to"))
PRICE_FIELDS = ("rent", "price", "rent_components", "price_components")

TO_LET_MARKERS = ("To Let", "tolet")
FOR_SALE_MARKERS = ("For Sale", "forsale")


class PriceType(str, enum.Enum):
    per_sqft = "per_sqft"
    per_annum = "per_annum"
    total = "total"
    poa = "poa"


@dataclass(frozen=True)
class SizeRange:
    min: int | None = None
    max: int | None = None

    @property
    def is_empty(self) -> bool:
        return self.min is None and self.max is None


@dataclass(frozen=True)
class PriceRange:
    min: int | None = None
    max: int | None = None
    type: PriceType = PriceType.poa


POA = PriceRange(None, None, PriceType.poa)


def _as_text(v: Any) -> str:
    """Flatten a scalar or nested element value into one searchable string."""
    if v is None:
        return ""
    if isinstance(v, str):
        return v
    if isinstance(v, Mapping):
        return " ".join(_as_text(x) for x in v.values() if x not in (None, ""))
    if isinstance(v, (list, tuple)):
        return " ".join(_as_text(x) for x in v if x not in (None, ""))
    return str(v)


def parse_size_value(value: Any) -> SizeRange | None:
    """
    Parse one size field. Tries, in order:
      1) concatenated digits with no delimiter ("29205840sqft"), split roughly in half
      2) explicit "a - b" / "a–b" range
      3) a single number (min == max)
    """
    s = _THOUSANDS_RE.sub("", _as_text(value).strip())
    if not s:
        return None

    m = _CONCAT_SIZE_RE.match(s)
    if m:
        digits = m.group(1) + m.group(2)
        if len(digits) >= 8:
            split = len(digits) // 2
            lo, hi = int(digits[:split]), int(digits[split:])
            if 0 < lo <= hi:
                return SizeRange(lo, hi)

    m = _RANGE_SIZE_RE.search(s)
    if m:
        lo, hi = int(m.group(1)), int(m.group(2))
        if 0 < lo <= hi:
            return SizeRange(lo, hi)

    digits = _DIGITS_ONLY_RE.sub("", s)
    if digits and int(digits) > 0:
        n = int(digits)
        return SizeRange(n, n)
    return None


def _unit_size(unit: Mapping[str, Any]) -> float | None:
    for key in ("size_sqft", "total_sqft", "size"):
        n = parse_number(unit.get(key))
        if n is not None and n > 0:
            return n
    return None


def _unit_rent_per_sqft(unit: Mapping[str, Any]) -> float | None:
    for key in ("rent_price", "rent_sqft"):
        n = parse_number(unit.get(key))
        if n is not None and n > 0:
            return n
    return None


def calculate_size_range(elements: Mapping[str, Any], floor_units: Iterable[Mapping[str, Any]]) -> SizeRange:
    """
    Unit size range, finest data first:
      1) min/max across floor units
      2) explicit from/to fields on the item
      3) nothing
    total_property_size is deliberately NOT consulted here.
    """
    sizes = [int(n) for n in (_unit_size(u) for u in floor_units) if n is not None]
    if sizes:
        return SizeRange(min(sizes), max(sizes))

    for lo_key, hi_key in UNIT_SIZE_PAIRS:
        lo = parse_size_value(elements.get(lo_key))
        hi = parse_size_value(elements.get(hi_key))
        if lo and hi and lo.min is not None and hi.max is not None and lo.min <= hi.max:
            return SizeRange(lo.min, hi.max)

    for field in UNIT_SIZE_FIELDS:
        parsed = parse_size_value(elements.get(field))
        if parsed:
            return parsed

    return SizeRange()


def extract_total_property_size(elements: Mapping[str, Any]) -> SizeRange | None:
    return parse_size_value(elements.get("total_property_size"))


def availability_flags(availabilities: Iterable[str]) -> tuple[bool, bool]:
    """Returns (is_to_let, is_for_sale)."""
    names = set(availabilities)
    is_to_let = any(m in names for m in TO_LET_MARKERS)
    is_for_sale = any(m in names for m in FOR_SALE_MARKERS)
    return is_to_let, is_for_sale


def parse_price_value(value: Any, is_to_let: bool, is_for_sale: bool) -> PriceRange | None:
    """
    Best-effort price parse of free text. Known limitation: any unrelated number in the
    string (a unit count, a year) is picked up as a price token.
    """
    s = _as_text(value).strip()
    if not s:
        return None

    if _POA_RE.search(s):
        return POA

    low = s.lower()
    if "per sq ft" in low or "per sqft" in low:
        price_type = PriceType.per_sqft
    elif "per annum" in low or "annually" in low:
        price_type = PriceType.per_annum
    elif is_for_sale and not is_to_let:
        price_type = PriceType.total
    elif is_to_let:
        price_type = PriceType.per_sqft
    else:
        price_type = PriceType.poa

    numbers: list[int] = []
    for token in _PRICE_TOKEN_RE.findall(s):
        n = float(token.replace(",", ""))
        if n > 0:
            numbers.append(int(n))

    if not numbers:
        return None
    return PriceRange(min(numbers), max(numbers), price_type)


def calculate_price_range(
    elements: Mapping[str, Any],
    floor_units: Iterable[Mapping[str, Any]],
    availabilities: Iterable[str],
) -> PriceRange:
    rents = [int(n) for n in (_unit_rent_per_sqft(u) for u in floor_units) if n is not None]
    if rents:
        return PriceRange(min(rents), max(rents), PriceType.per_sqft)

    is_to_let, is_for_sale = availability_flags(availabilities)
    for field in PRICE_FIELDS:
        parsed = parse_price_value(elements.get(field), is_to_let, is_for_sale)
        if parsed:
            return parsed

    return POA
