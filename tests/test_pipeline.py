import asyncio

import pytest

from lotintel.data_models import DamageAssessment, Lot, VinHistoryRecord
from lotintel.errors import BranchServiceError, LotNotFoundError
from lotservice.pipeline import LotIntelligencePipeline
from lotservice.vision import FORMAT_ERROR_CONDITION, format_error_assessment

VIN = "4T1B11HK5KU000001"

TARGET = Lot(
    lot_id="58411805",
    site=1,
    year=2019,
    make="TOYOTA",
    model="CAMRY",
    vin=VIN,
    current_bid=5_000.0,
    location="TX - DALLAS",
    photo_urls=("https://cs.copart.com/1.jpg",),
)


class FakeFetcher:
    def __init__(self, lot=TARGET):
        self.lot = lot
        self.calls = 0

    async def fetch(self, lot_id, site):
        self.calls += 1
        if self.lot is None:
            raise LotNotFoundError(lot_id, "Copart")
        return self.lot


class FakeVinSearcher:
    def __init__(self, records=None, error=None, delay=0.0):
        self.records = records if records is not None else [
            VinHistoryRecord(vin=VIN, lot_id=str(i), marketplace="Copart", sold_price=p, site=1)
            for i, p in enumerate([7_000, 8_000, 9_000])
        ]
        self.error = error
        self.delay = delay
        self.calls = []

    async def search(self, vin):
        self.calls.append(vin)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return [] if not vin else list(self.records)


class FakeActiveFinder:
    def __init__(self, lots=(), error=None):
        self.lots = list(lots)
        self.error = error

    async def find(self, target):
        if self.error:
            raise self.error
        return list(self.lots)


class FakeArchive:
    def __init__(self, rows=(), error=None):
        self.rows = list(rows)
        self.error = error

    async def find_comparable_candidates(self, *, make, model, year, year_window=2, limit=500):
        if self.error:
            raise self.error
        return list(self.rows)


GOOD_ASSESSMENT = DamageAssessment(
    damage_description="Front: light scuffs.",
    overall_condition="good",
    recommendation="buy",
    confidence_level="high",
    confidence=85,
    has_images=True,
    image_count=1,
)


class FakeVision:
    def __init__(self, result=GOOD_ASSESSMENT, error=None):
        self.result = result
        self.error = error

    async def assess_or_degrade(self, lot):
        if self.error:
            raise self.error
        return self.result


def _pipeline(**overrides):
    parts = {
        "fetcher": FakeFetcher(),
        "vin_searcher": FakeVinSearcher(),
        "active_finder": FakeActiveFinder(),
        "archive": FakeArchive(),
        "vision": FakeVision(),
        "branch_timeout_seconds": 5.0,
    }
    parts.update(overrides)
    return LotIntelligencePipeline(**parts)


@pytest.mark.asyncio
async def test_reference_lot_is_buy():
    result = await _pipeline().analyze("58411805", 1)
    intel = result.market_intelligence
    assert result.lot.lot_id == "58411805"
    assert intel.market_data.estimated_value == 8_000
    assert intel.market_data.bid_to_value_ratio == pytest.approx(0.625)
    assert intel.recommendation == "BUY"
    assert intel.market_data.data_quality.degraded_sources == {}
    assert result.damage_assessment == GOOD_ASSESSMENT


@pytest.mark.asyncio
async def test_lot_not_found_aborts_before_branches():
    searcher = FakeVinSearcher()
    with pytest.raises(LotNotFoundError):
        await _pipeline(fetcher=FakeFetcher(lot=None), vin_searcher=searcher).analyze("1", 1)
    assert searcher.calls == []


@pytest.mark.asyncio
async def test_missing_vin_yields_empty_history():
    lot = Lot(lot_id="2", site=1, year=2019, make="TOYOTA", model="CAMRY", current_bid=1_000.0)
    result = await _pipeline(fetcher=FakeFetcher(lot)).analyze("2", 1)
    assert result.vin_history == ()
    assert not result.market_intelligence.market_data.data_quality.has_vin_history


@pytest.mark.asyncio
async def test_failing_branches_are_isolated():
    active = [Lot(lot_id="a", site=1, year=2019, make="TOYOTA", model="CAMRY", current_bid=4_000.0)]
    pipeline = _pipeline(
        active_finder=FakeActiveFinder(lots=active),
        archive=FakeArchive(error=RuntimeError("db down")),
        vision=FakeVision(error=BranchServiceError("vision_assessment", "vision_not_configured")),
    )
    result = await pipeline.analyze("58411805", 1)

    degraded = result.market_intelligence.market_data.data_quality.degraded_sources
    assert set(degraded) == {"internal_comparables", "vision_assessment"}
    assert degraded["vision_assessment"] == "vision_not_configured"
    assert len(result.vin_history) == 3
    assert [lot.lot_id for lot in result.similar_active_lots] == ["a"]
    assert result.comparables == ()
    assert not result.damage_assessment.has_images
    assert result.damage_assessment.confidence == 0
    assert result.damage_assessment.error == "vision_not_configured"


@pytest.mark.asyncio
async def test_slow_branch_times_out_without_blocking_others():
    pipeline = _pipeline(vin_searcher=FakeVinSearcher(delay=1.0), branch_timeout_seconds=0.05)
    result = await pipeline.analyze("58411805", 1)
    degraded = result.market_intelligence.market_data.data_quality.degraded_sources
    assert degraded == {"vin_history": "timeout"}
    assert result.vin_history == ()
    assert result.market_intelligence.recommendation == "ANALYZE"
    assert result.market_intelligence.confidence == 50


@pytest.mark.asyncio
async def test_vision_format_error_is_recorded_but_kept():
    degraded_report = format_error_assessment("Invalid image format", image_count=1)
    result = await _pipeline(vision=FakeVision(result=degraded_report)).analyze("58411805", 1)
    assert result.damage_assessment.overall_condition == FORMAT_ERROR_CONDITION
    assert result.damage_assessment.has_images
    degraded = result.market_intelligence.market_data.data_quality.degraded_sources
    assert degraded == {"vision_assessment": "Invalid image format"}


@pytest.mark.asyncio
async def test_comparables_flow_into_result():
    rows = [
        {"lot_id": "s1", "year": 2019, "make": "TOYOTA", "model": "CAMRY", "sale_status": "Sold",
         "purchase_price": 6_000, "auction_location": "TX - HOUSTON"},
        {"lot_id": "s2", "year": 2018, "make": "TOYOTA", "model": "CAMRY", "sale_status": "Not Sold",
         "purchase_price": 6_500},
    ]
    result = await _pipeline(archive=FakeArchive(rows=rows)).analyze("58411805", 1)
    assert [c.lot_id for c in result.comparables] == ["s1"]
    assert result.comparables[0].match_priority == 2
    md = result.market_intelligence.market_data
    assert md.internal_avg_price == 6_000
    assert md.regional_avg_price == 6_000


@pytest.mark.asyncio
async def test_identical_inputs_give_identical_results():
    first = await _pipeline().analyze("58411805", 1)
    second = await _pipeline().analyze("58411805", 1)
    assert first == second


@pytest.mark.asyncio
async def test_cancellation_propagates():
    pipeline = _pipeline(vin_searcher=FakeVinSearcher(delay=10.0), branch_timeout_seconds=30.0)
    task = asyncio.create_task(pipeline.analyze("58411805", 1))
    await asyncio.sleep(0.05)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
