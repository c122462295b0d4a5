import dataclasses

import pytest

from lotintel.data_models import Lot, VinHistoryRecord, marketplace_name
from lotintel.errors import (
    BranchServiceError,
    InputValidationError,
    LotNotFoundError,
    VisionFormatError,
)


def test_lot_shape():
    lot = Lot(
        lot_id="58411805",
        site=1,
        year=2019,
        make="TOYOTA",
        model="CAMRY",
        series="SE",
        vin="4T1B11HK5KU000001",
        status="available",
    )
    assert lot.marketplace == "Copart"
    assert lot.vehicle == "2019 TOYOTA CAMRY SE"
    assert lot.is_available
    with pytest.raises(dataclasses.FrozenInstanceError):
        lot.current_bid = 100.0


def test_vehicle_label_without_series():
    lot = Lot(lot_id="1", site=2, year=2020, make="HONDA", model="CIVIC")
    assert lot.vehicle == "2020 HONDA CIVIC"
    assert lot.marketplace == "IAAI"
    assert not lot.is_available


def test_marketplace_names():
    assert marketplace_name(1) == "Copart"
    assert marketplace_name(2) == "IAAI"
    assert marketplace_name(7) == "Unknown"


def test_history_record_defaults():
    rec = VinHistoryRecord(vin="4T1B11HK5KU000001", lot_id="111", marketplace="Copart")
    assert rec.sold_price == 0.0
    assert rec.source == "marketplace"
    assert rec.sale_date is None


def test_error_taxonomy():
    not_found = LotNotFoundError("58411805", "Copart")
    assert str(not_found) == "Lot 58411805 not found on Copart"
    assert isinstance(not_found, LookupError)
    assert isinstance(InputValidationError("Lot ID is required"), ValueError)

    fmt = VisionFormatError("Invalid image format")
    assert isinstance(fmt, BranchServiceError)
    assert fmt.branch == "vision_assessment"
    assert fmt.reason == "Invalid image format"
