import pytest

from lotintel.config import PipelineConfig
from lotintel.data_models import ComparableVehicle, Lot, VinHistoryRecord
from lotintel.market import bid_statistics, decide, synthesize_market_intelligence


def _lot(bid, **kw):
    return Lot(lot_id=kw.pop("lot_id", "58411805"), site=1, year=2019, make="TOYOTA", model="CAMRY", current_bid=bid, **kw)


def _history(*prices):
    return [
        VinHistoryRecord(vin="4T1B11HK5KU000001", lot_id=str(i), marketplace="Copart", sold_price=p)
        for i, p in enumerate(prices)
    ]


def _comparable(price, lot_id="c"):
    return ComparableVehicle(
        lot_id=lot_id, site=1, vin="X", year=2019, make="TOYOTA", model="CAMRY",
        sale_status="Sold", purchase_price=price,
    )


def test_reference_lot_scenario():
    intel = synthesize_market_intelligence(_lot(5_000.0), _history(7_000, 8_000, 9_000), [], [])
    md = intel.market_data
    assert md.estimated_value == 8_000
    assert md.historical_avg_price == 8_000
    assert md.bid_to_value_ratio == pytest.approx(0.625)
    assert intel.recommendation == "BUY"
    assert intel.confidence == 95
    assert md.data_quality.has_vin_history
    assert not md.data_quality.has_internal_comparables
    assert "$6,400" in intel.suggestion


@pytest.mark.parametrize(
    "bid, expected, min_conf",
    [(6_000.0, "BUY", 85), (13_000.0, "AVOID", 80), (9_500.0, "ANALYZE", 70)],
)
def test_decision_thresholds(bid, expected, min_conf):
    intel = synthesize_market_intelligence(_lot(bid), _history(10_000), [], [])
    assert intel.recommendation == expected
    assert intel.confidence >= min_conf
    assert 0 <= intel.confidence <= 100


def test_boundaries_are_analyze():
    cfg = PipelineConfig()
    assert decide(0.7, has_estimate=True, has_bid=True, base_confidence=70, config=cfg) == ("ANALYZE", 70)
    assert decide(1.2, has_estimate=True, has_bid=True, base_confidence=70, config=cfg) == ("ANALYZE", 70)


def test_confidence_caps():
    cfg = PipelineConfig()
    assert decide(0.1, has_estimate=True, has_bid=True, base_confidence=85, config=cfg) == ("BUY", 95)
    assert decide(3.0, has_estimate=True, has_bid=True, base_confidence=85, config=cfg) == ("AVOID", 90)


def test_internal_comparables_used_without_history():
    comps = [_comparable(p, str(i)) for i, p in enumerate([4_000, 5_000, 6_000, 7_000, 8_000])]
    intel = synthesize_market_intelligence(_lot(9_000.0), [], comps, [])
    md = intel.market_data
    assert md.historical_avg_price == 0
    assert md.internal_avg_price == 6_000
    assert md.estimated_value == 6_000
    assert intel.recommendation == "AVOID"
    # base 70 + 5 for five comparables, +10 for AVOID
    assert intel.confidence == 85


def test_history_wins_over_comparables():
    intel = synthesize_market_intelligence(_lot(1_000.0), _history(10_000), [_comparable(2_000)], [])
    assert intel.market_data.estimated_value == 10_000


def test_insufficient_data_is_analyze_fifty():
    no_data = synthesize_market_intelligence(_lot(5_000.0), [], [], [])
    assert no_data.recommendation == "ANALYZE"
    assert no_data.confidence == 50
    assert no_data.market_data.bid_to_value_ratio == 0.0

    no_bid = synthesize_market_intelligence(_lot(0.0), _history(8_000), [], [])
    assert no_bid.recommendation == "ANALYZE"
    assert no_bid.confidence == 50


def test_zero_priced_history_is_ignored_for_average():
    intel = synthesize_market_intelligence(_lot(4_000.0), _history(0, 8_000), [], [])
    assert intel.market_data.historical_avg_price == 8_000
    assert intel.market_data.historical_records == 2


def test_bid_statistics_and_competitive_range():
    active = [_lot(b, lot_id=str(i)) for i, b in enumerate([0.0, 1_000.0, 2_000.0, 3_000.0])]
    stats = bid_statistics(active)
    assert (stats.count, stats.average, stats.minimum, stats.maximum) == (3, 2_000.0, 1_000.0, 3_000.0)

    intel = synthesize_market_intelligence(_lot(5_000.0), [], [], active)
    assert intel.market_data.competitive_range == (1_800.0, 2_200.0)
    assert intel.market_data.similar_lots_count == 4
    assert intel.market_data.data_quality.has_active_listings


def test_degraded_sources_are_reported():
    intel = synthesize_market_intelligence(
        _lot(5_000.0), [], [], [], degraded_sources={"vin_history": "timeout"},
    )
    assert intel.market_data.data_quality.degraded_sources == {"vin_history": "timeout"}


def test_regional_average_passthrough():
    intel = synthesize_market_intelligence(_lot(5_000.0), [], [], [], regional_average_price=7_321.4)
    assert intel.market_data.regional_avg_price == 7_321
