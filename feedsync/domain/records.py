# feedsync/domain/records.py
from __future__ import annotations

from dataclasses import asdict, dataclass, field, replace
from datetime import datetime
from typing import Any

from .ranges import PriceType

SCHEMA_VERSION = 1


@dataclass(frozen=True)
class MediaRecord:
    url: str
    title: str | None = None
    sort_order: int | None = None
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class UnitRecord:
    unit_external_id: str
    floor_label: str | None = None
    size_sqft: str | None = None
    rent_min: str | None = None
    rent_max: str | None = None
    rent_metric: str | None = None
    rates_text: str | None = None
    status: str | None = None
    availability_date: str | None = None
    sort_order: int | None = None
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ContactRecord:
    name: str | None = None
    email: str | None = None
    phone: str | None = None
    company: str | None = None
    role: str = "agent"
    is_primary: bool = False
    sort_order: int | None = None
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class AmenitySpec:
    label: str
    value: str


@dataclass(frozen=True)
class RecordMeta:
    external_id: str
    created_at: str | None = None
    last_updated: str | None = None
    imported_at: str | None = None
    payload_hash: str | None = None
    schema_version: int = SCHEMA_VERSION
    is_archived: bool = False
    is_featured: bool = False


@dataclass(frozen=True)
class PropertySection:
    name: str | None = None
    title: str | None = None
    status: str | None = None
    types: tuple[str, ...] = ()
    availabilities: tuple[str, ...] = ()
    specification_summary: str | None = None
    specification_promo: str | None = None
    description: str | None = None
    features: Any = None
    fitted: bool | None = None
    fitted_comment: str | None = None
    property_type: str | None = None
    url: str | None = None
    particulars_url: str | None = None


@dataclass(frozen=True)
class LocationSection:
    name: str | None = None
    address1: str | None = None
    address2: str | None = None
    city: str | None = None
    town: str | None = None
    county: str | None = None
    postcode: str | None = None
    outward_postcode: str | None = None
    lat: float | None = None
    lng: float | None = None
    location_text: str | None = None
    street_view: dict[str, Any] | None = None
    submarkets: tuple[str, ...] = ()
    travel_times: Any = None


@dataclass(frozen=True)
class RentTerms:
    rent_from: float | None = None
    rent_to: float | None = None
    metric: str | None = None
    rates: Any = None
    comment: str | None = None
    on_application: bool | None = None


@dataclass(frozen=True)
class ServiceCharge:
    amount: float | None = None
    period: str | None = None
    text: str | None = None
    rates: Any = None


@dataclass(frozen=True)
class PricingSection:
    price_min: float | None = None
    price_max: float | None = None
    price_type: PriceType | str | None = None
    price: float | None = None
    total_price: float | None = None
    price_per_sqft: float | None = None
    price_per_sqft_min: float | None = None
    price_per_sqft_max: float | None = None
    total_monthly_min: float | None = None
    total_monthly_max: float | None = None
    total_yearly_min: float | None = None
    total_yearly_max: float | None = None
    rent: RentTerms = field(default_factory=RentTerms)
    service_charge: ServiceCharge = field(default_factory=ServiceCharge)
    initial_yield: float | None = None
    premium: float | None = None
    premium_nil: bool | None = None
    parking_ratio: str | None = None


@dataclass(frozen=True)
class BusinessFinancialSection:
    turnover: float | None = None
    turnover_pa: float | None = None
    profit_gross: float | None = None
    profit_net: float | None = None
    tenancy_passing_giy: float | None = None
    tenancy_passing_niy: float | None = None
    tenancy_status: str | None = None


@dataclass(frozen=True)
class LegalRegulatorySection:
    sale_type: str | None = None
    class_of_use: str | None = None
    legal_fees_applicable: bool | None = None
    lease_length: str | None = None
    protected_act: bool | None = None
    insurance_type: str | None = None
    availability_reasons: str | None = None
    togc: bool | None = None


@dataclass(frozen=True)
class PhysicalFeaturesSection:
    shop_frontage_ft: float | None = None
    shop_frontage_m: float | None = None
    shop_frontage_inches: float | None = None
    land_size_from: float | None = None
    land_size_to: float | None = None
    land_size_metric: str | None = None
    total_property_size: float | None = None
    total_property_size_metric: str | None = None
    area_size_type: str | None = None
    size_measure: str | None = None


@dataclass(frozen=True)
class SizeSection:
    size_min: int | None = None
    size_max: int | None = None
    area_size_unit: str = "sqft"
    total_size_sqft: int | None = None
    size_from_sqft: int | None = None
    size_to_sqft: int | None = None
    total_property_size_min: int | None = None
    total_property_size_max: int | None = None


@dataclass(frozen=True)
class MarketingSection:
    titles: tuple[str | None, ...] = ()
    texts: tuple[str | None, ...] = ()
    transport_title: str | None = None
    transport_text: str | None = None


@dataclass(frozen=True)
class SellingPointsSection:
    key_selling_points: tuple[str, ...] = ()
    amenities_specifications: tuple[AmenitySpec, ...] = ()


@dataclass(frozen=True)
class CertificationsSection:
    epcs: tuple[str, ...] = ()
    tags: Any = None


@dataclass(frozen=True)
class MediaSection:
    images: tuple[MediaRecord, ...] = ()
    brochures: tuple[MediaRecord, ...] = ()
    floorplans: tuple[MediaRecord, ...] = ()
    videos: tuple[MediaRecord, ...] = ()
    videos_detail: tuple[str, ...] = ()


@dataclass(frozen=True)
class AdminSection:
    source_name: str = "agents-society"
    sync_run_id: str | None = None


@dataclass(frozen=True)
class NormalizedRecord:
    meta: RecordMeta
    property: PropertySection = field(default_factory=PropertySection)
    location: LocationSection = field(default_factory=LocationSection)
    pricing: PricingSection = field(default_factory=PricingSection)
    business_financial: BusinessFinancialSection = field(default_factory=BusinessFinancialSection)
    legal_regulatory: LegalRegulatorySection = field(default_factory=LegalRegulatorySection)
    physical_features: PhysicalFeaturesSection = field(default_factory=PhysicalFeaturesSection)
    size: SizeSection = field(default_factory=SizeSection)
    marketing: MarketingSection = field(default_factory=MarketingSection)
    selling_points: SellingPointsSection = field(default_factory=SellingPointsSection)
    certifications: CertificationsSection = field(default_factory=CertificationsSection)
    units: tuple[UnitRecord, ...] = ()
    media: MediaSection = field(default_factory=MediaSection)
    contacts: tuple[ContactRecord, ...] = ()
    admin: AdminSection = field(default_factory=AdminSection)
    extras: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    def stamped(self, *, imported_at: datetime, payload_hash: str) -> "NormalizedRecord":
        """New record carrying import bookkeeping; the original stays untouched."""
        meta = replace(self.meta, imported_at=imported_at.isoformat(), payload_hash=payload_hash)
        return replace(self, meta=meta)
