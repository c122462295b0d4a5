from __future__ import annotations

from typing import Any

from lotintel.data_models import (
    AnalysisResult,
    ComparableVehicle,
    DamageAssessment,
    Lot,
    MarketIntelligence,
    VinHistoryRecord,
)


def lot_info(lot: Lot) -> dict[str, Any]:
    return {
        "lotId": lot.lot_id,
        "vin": lot.vin,
        "vehicle": lot.vehicle,
        "year": lot.year,
        "make": lot.make,
        "model": lot.model,
        "series": lot.series,
        "trim": lot.trim,
        "mileage": lot.odometer,
        "damage": lot.primary_damage,
        "secondaryDamage": lot.secondary_damage,
        "titleStatus": lot.title_status,
        "status": lot.status,
        "currentBid": lot.current_bid,
        "auctionDate": lot.auction_date,
        "location": lot.location,
        "site": lot.marketplace,
        "siteId": lot.site,
        "images": list(lot.photo_urls),
        "imageCount": len(lot.photo_urls),
    }


def vin_history_entry(record: VinHistoryRecord) -> dict[str, Any]:
    return {
        "saleDate": record.sale_date,
        "price": record.sold_price,
        "damage": record.damage,
        "platform": record.marketplace,
        "lotId": record.lot_id,
        "location": record.location,
        "year": record.year,
        "make": record.make,
        "model": record.model,
        "mileage": record.mileage,
        "source": record.source,
    }


def ai_analysis(assessment: DamageAssessment) -> dict[str, Any]:
    body: dict[str, Any] = {
        "damageAssessment": assessment.damage_description,
        "damageAreas": list(assessment.damage_areas),
        "repairEstimate": assessment.repair_estimate,
        "overallCondition": assessment.overall_condition,
        "investmentRecommendation": assessment.recommendation,
        "confidenceLevel": assessment.confidence_level,
        "confidence": assessment.confidence,
        "keyFindings": list(assessment.key_findings),
        "hasImages": assessment.has_images,
        "imageCount": assessment.image_count,
        "excludedImages": [{"url": e.url, "reason": e.reason} for e in assessment.excluded_images],
    }
    if assessment.error:
        body["error"] = assessment.error
    return body


def similar_lot(lot: Lot) -> dict[str, Any]:
    return {
        "lotId": lot.lot_id,
        "vehicle": lot.vehicle,
        "damage": lot.primary_damage,
        "mileage": lot.odometer,
        "currentBid": lot.current_bid,
        "auctionDate": lot.auction_date,
        "location": lot.location,
        "hasImages": bool(lot.photo_urls),
    }


def comparable_entry(comp: ComparableVehicle) -> dict[str, Any]:
    return {
        "lotId": comp.lot_id,
        "vin": comp.vin,
        "vehicle": f"{comp.year} {comp.make} {comp.model} {comp.series}".strip(),
        "salePrice": comp.purchase_price,
        "saleStatus": comp.sale_status,
        "saleDate": comp.sale_date,
        "mileage": comp.mileage,
        "damage": comp.damage,
        "location": comp.auction_location,
        "buyerState": comp.buyer_state,
        "matchPriority": comp.match_priority,
        "exactYear": comp.exact_year,
        "locationMatch": comp.location_match,
        "specScore": comp.spec_score,
    }


def market_intelligence(
    intel: MarketIntelligence,
    comparables: tuple[ComparableVehicle, ...] = (),
) -> dict[str, Any]:
    md = intel.market_data
    dq = md.data_quality
    return {
        "recommendation": intel.recommendation,
        "confidence": intel.confidence,
        "suggestion": intel.suggestion,
        "marketData": {
            "historicalAvgPrice": md.historical_avg_price,
            "internalAvgPrice": md.internal_avg_price,
            "regionalAvgPrice": md.regional_avg_price,
            "currentBid": md.current_bid,
            "estimatedValue": md.estimated_value,
            "bidToValueRatio": md.bid_to_value_ratio,
            "similarLotBids": {
                "count": md.similar_lot_bids.count,
                "average": md.similar_lot_bids.average,
                "min": md.similar_lot_bids.minimum,
                "max": md.similar_lot_bids.maximum,
            },
            "competitiveRange": {"low": md.competitive_range[0], "high": md.competitive_range[1]},
            "historicalRecords": md.historical_records,
            "internalComparableRecords": md.internal_comparable_records,
            "similarLotsCount": md.similar_lots_count,
        },
        "dataQuality": {
            "hasVinHistory": dq.has_vin_history,
            "hasInternalComparables": dq.has_internal_comparables,
            "hasActiveListings": dq.has_active_listings,
            "degradedSources": dict(dq.degraded_sources),
        },
        "internalComparables": [comparable_entry(c) for c in comparables],
    }


def analysis_payload(result: AnalysisResult) -> dict[str, Any]:
    return {
        "lotInfo": lot_info(result.lot),
        "vinHistory": [vin_history_entry(r) for r in result.vin_history],
        "aiAnalysis": ai_analysis(result.damage_assessment),
        "similarActiveLots": [similar_lot(lot) for lot in result.similar_active_lots],
        "marketIntelligence": market_intelligence(result.market_intelligence, result.comparables),
    }
