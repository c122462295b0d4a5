from __future__ import annotations

from typing import Mapping, Sequence

import numpy as np

from lotintel.config import PipelineConfig
from lotintel.data_models import (
    BidStatistics,
    ComparableVehicle,
    DataQuality,
    Lot,
    MarketData,
    MarketIntelligence,
    Recommendation,
    VinHistoryRecord,
)


def _mean(values: Sequence[float]) -> float:
    if not values:
        return 0.0
    return float(np.mean(np.asarray(values, dtype=float)))


def bid_statistics(active_lots: Sequence[Lot]) -> BidStatistics:
    bids = np.asarray([lot.current_bid for lot in active_lots if lot.current_bid > 0], dtype=float)
    if bids.size == 0:
        return BidStatistics()
    return BidStatistics(
        count=int(bids.size),
        average=round(float(bids.mean()), 2),
        minimum=round(float(bids.min()), 2),
        maximum=round(float(bids.max()), 2),
    )


def decide(
    ratio: float,
    *,
    has_estimate: bool,
    has_bid: bool,
    base_confidence: int,
    config: PipelineConfig,
) -> tuple[Recommendation, int]:
    if not (has_estimate and has_bid):
        return "ANALYZE", config.insufficient_data_confidence
    if ratio < config.buy_ratio_threshold:
        return "BUY", min(base_confidence + config.buy_confidence_bonus, config.buy_confidence_cap)
    if ratio > config.avoid_ratio_threshold:
        return "AVOID", min(base_confidence + config.avoid_confidence_bonus, config.avoid_confidence_cap)
    return "ANALYZE", base_confidence


def suggestion_text(
    recommendation: Recommendation,
    *,
    ratio: float,
    estimated_value: float,
    has_estimate: bool,
    has_bid: bool,
    config: PipelineConfig,
) -> str:
    if not has_estimate:
        return "Insufficient pricing data: research comparable sales manually before bidding."
    if not has_bid:
        return (
            f"No bids yet. Estimated value is ${estimated_value:,.0f}; "
            f"consider opening below ${estimated_value * config.buy_max_bid_pct:,.0f}."
        )
    if recommendation == "BUY":
        return (
            f"Current bid is {ratio * 100:.0f}% of estimated value. "
            f"Suggested maximum bid: ${estimated_value * config.buy_max_bid_pct:,.0f}."
        )
    if recommendation == "AVOID":
        return (
            f"Current bid exceeds estimated value by {(ratio - 1) * 100:.0f}%. "
            f"Avoid unless the vehicle has value not reflected in past sales."
        )
    return (
        f"Current bid is {ratio * 100:.0f}% of estimated value. "
        f"Set a bid ceiling of ${estimated_value * config.analyze_ceiling_pct:,.0f} and verify condition."
    )


def synthesize_market_intelligence(
    lot: Lot,
    vin_history: Sequence[VinHistoryRecord],
    comparables: Sequence[ComparableVehicle],
    active_lots: Sequence[Lot],
    *,
    regional_average_price: float = 0.0,
    degraded_sources: Mapping[str, str] | None = None,
    config: PipelineConfig | None = None,
) -> MarketIntelligence:
    """Fuse every price signal into a recommendation.

    VIN history wins over internal comparables for the value estimate; live
    listings only inform the competitive range.
    """
    cfg = config or PipelineConfig()

    historical_avg = _mean([r.sold_price for r in vin_history if r.sold_price > 0])
    sold = [c for c in comparables if c.purchase_price > 0]
    internal_avg = _mean([c.purchase_price for c in sold])
    current_bid = max(float(lot.current_bid or 0.0), 0.0)
    estimated_value = historical_avg or internal_avg or 0.0

    has_estimate = estimated_value > 0
    has_bid = current_bid > 0
    ratio = current_bid / estimated_value if has_estimate else 0.0

    base = cfg.base_confidence
    if vin_history:
        base += cfg.vin_history_confidence_bonus
    if len(sold) >= cfg.min_comparables_for_bonus:
        base += cfg.comparable_confidence_bonus

    recommendation, confidence = decide(
        ratio, has_estimate=has_estimate, has_bid=has_bid, base_confidence=base, config=cfg,
    )
    confidence = max(0, min(100, confidence))

    bids = bid_statistics(active_lots)
    spread = bids.average * cfg.competitive_range_pct
    competitive_range = (round(max(bids.average - spread, 0.0), 2), round(bids.average + spread, 2))

    market_data = MarketData(
        historical_avg_price=round(historical_avg),
        internal_avg_price=round(internal_avg),
        regional_avg_price=round(max(regional_average_price, 0.0)),
        current_bid=current_bid,
        estimated_value=round(estimated_value),
        bid_to_value_ratio=round(ratio, 4),
        similar_lot_bids=bids,
        competitive_range=competitive_range,
        historical_records=len(vin_history),
        internal_comparable_records=len(sold),
        similar_lots_count=len(active_lots),
        data_quality=DataQuality(
            has_vin_history=bool(vin_history),
            has_internal_comparables=bool(sold),
            has_active_listings=bool(active_lots),
            degraded_sources=dict(degraded_sources or {}),
        ),
    )
    return MarketIntelligence(
        recommendation=recommendation,
        confidence=confidence,
        suggestion=suggestion_text(
            recommendation,
            ratio=ratio,
            estimated_value=estimated_value,
            has_estimate=has_estimate,
            has_bid=has_bid,
            config=cfg,
        ),
        market_data=market_data,
    )
