from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal


Recommendation = Literal["BUY", "ANALYZE", "AVOID"]

MARKETPLACES: dict[int, str] = {1: "Copart", 2: "IAAI"}


def marketplace_name(site: int) -> str:
    return MARKETPLACES.get(site, "Unknown")


@dataclass(frozen=True)
class Lot:
    lot_id: str
    site: int
    year: int
    make: str
    model: str
    vin: str | None = None
    series: str = ""
    trim: str = ""
    odometer: int | None = None
    primary_damage: str = ""
    secondary_damage: str = ""
    title_status: str = ""
    current_bid: float = 0.0
    sale_date: str | None = None
    auction_date: str | None = None
    location: str = ""
    photo_urls: tuple[str, ...] = ()
    status: str = ""
    transmission: str = ""
    engine: str = ""

    @property
    def marketplace(self) -> str:
        return marketplace_name(self.site)

    @property
    def vehicle(self) -> str:
        return f"{self.year} {self.make} {self.model} {self.series}".strip()

    @property
    def is_available(self) -> bool:
        return self.status == "available"


@dataclass(frozen=True)
class VinHistoryRecord:
    vin: str
    lot_id: str
    marketplace: str
    sold_price: float = 0.0
    sale_date: str | None = None
    damage: str = ""
    location: str = ""
    year: int | None = None
    make: str = ""
    model: str = ""
    mileage: int | None = None
    site: int | None = None
    source: str = "marketplace"


@dataclass(frozen=True)
class ComparableVehicle:
    lot_id: str
    site: int | None
    vin: str
    year: int
    make: str
    model: str
    sale_status: str
    purchase_price: float
    series: str = ""
    trim: str = ""
    transmission: str = ""
    engine: str = ""
    mileage: int | None = None
    damage: str = ""
    auction_location: str = ""
    buyer_state: str = ""
    sale_date: str | None = None
    match_priority: int = 8
    exact_year: bool = False
    location_match: bool = False
    spec_score: int = 0


@dataclass(frozen=True)
class ComparableMatch:
    comparables: tuple[ComparableVehicle, ...] = ()
    regional_average_price: float = 0.0
    region_code: str = ""
    candidates_considered: int = 0


@dataclass(frozen=True)
class ImageExclusion:
    url: str
    reason: str


@dataclass(frozen=True)
class ImageSelection:
    accepted: tuple[str, ...] = ()
    excluded: tuple[ImageExclusion, ...] = ()


@dataclass(frozen=True)
class DamageAssessment:
    damage_description: str
    overall_condition: str
    recommendation: str
    confidence_level: str
    confidence: int
    has_images: bool
    image_count: int = 0
    damage_areas: tuple[str, ...] = ()
    repair_estimate: str = ""
    key_findings: tuple[str, ...] = ()
    excluded_images: tuple[ImageExclusion, ...] = ()
    error: str | None = None


@dataclass(frozen=True)
class BidStatistics:
    count: int = 0
    average: float = 0.0
    minimum: float = 0.0
    maximum: float = 0.0


@dataclass(frozen=True)
class DataQuality:
    has_vin_history: bool
    has_internal_comparables: bool
    has_active_listings: bool
    degraded_sources: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class MarketData:
    historical_avg_price: float
    internal_avg_price: float
    regional_avg_price: float
    current_bid: float
    estimated_value: float
    bid_to_value_ratio: float
    similar_lot_bids: BidStatistics
    competitive_range: tuple[float, float]
    historical_records: int
    internal_comparable_records: int
    similar_lots_count: int
    data_quality: DataQuality


@dataclass(frozen=True)
class MarketIntelligence:
    recommendation: Recommendation
    confidence: int
    suggestion: str
    market_data: MarketData


@dataclass(frozen=True)
class AnalysisResult:
    lot: Lot
    vin_history: tuple[VinHistoryRecord, ...]
    damage_assessment: DamageAssessment
    similar_active_lots: tuple[Lot, ...]
    market_intelligence: MarketIntelligence
    comparables: tuple[ComparableVehicle, ...] = ()
