from __future__ import annotations

from typing import Any, Iterable

import numpy as np
import pandas as pd

from lotintel.config import PipelineConfig
from lotintel.data_models import ComparableMatch, ComparableVehicle, Lot
from lotintel.regions import UNKNOWN_REGION, extract_region, normalize_region


_COLUMNS = [
    "lot_id", "site", "vin", "year", "make", "model", "series", "trim",
    "transmission", "engine", "vehicle_mileage", "vehicle_damage",
    "auction_location", "buyer_state", "sale_status", "sale_date", "purchase_price",
]


def is_completed_sale(status: Any, config: PipelineConfig) -> bool:
    if not isinstance(status, str):
        return False
    return status.strip().lower() in config.completed_sale_statuses


def _text_match(target: str, candidate: Any) -> bool:
    if not target or not target.strip() or not isinstance(candidate, str) or not candidate.strip():
        return False
    a = target.strip().lower()
    b = candidate.strip().lower()
    return a in b or b in a


def _matches(series: pd.Series, target: str) -> np.ndarray:
    return np.array([_text_match(target, v) for v in series], dtype=bool)


def assign_priority(exact_year: Any, location_match: Any, spec_score: Any) -> np.ndarray:
    """Map match flags onto priority tiers 1 (best) through 8 (baseline).

    Conditions are evaluated in order; the first that holds wins.
    """
    exact = np.asarray(exact_year, dtype=bool)
    loc = np.asarray(location_match, dtype=bool)
    spec = np.asarray(spec_score, dtype=int)
    conditions = [
        exact & loc & (spec >= 3),
        exact & loc,
        exact & (spec >= 2),
        loc & (spec >= 2),
        exact,
        loc,
        spec >= 2,
    ]
    return np.select(conditions, [1, 2, 3, 4, 5, 6, 7], default=8)


def candidate_frame(rows: Iterable[dict[str, Any]], config: PipelineConfig) -> pd.DataFrame:
    """Completed, positively priced archive sales as a frame."""
    frame = pd.DataFrame(list(rows), columns=_COLUMNS)
    if frame.empty:
        return frame
    frame["purchase_price"] = pd.to_numeric(frame["purchase_price"], errors="coerce")
    frame["year"] = pd.to_numeric(frame["year"], errors="coerce")
    completed = np.array([is_completed_sale(s, config) for s in frame["sale_status"]], dtype=bool)
    keep = completed & (frame["purchase_price"] > 0).to_numpy() & frame["year"].notna().to_numpy()
    return frame[keep].reset_index(drop=True)


def score_candidates(frame: pd.DataFrame, target: Lot, config: PipelineConfig) -> pd.DataFrame:
    scored = frame.copy()
    region = extract_region(target.location)

    scored["exact_year"] = (scored["year"] == target.year).to_numpy(dtype=bool)

    if region == UNKNOWN_REGION:
        scored["location_match"] = np.zeros(len(scored), dtype=bool)
    else:
        auction = np.array([extract_region(v if isinstance(v, str) else None) == region for v in scored["auction_location"]], dtype=bool)
        buyer = np.array([normalize_region(v if isinstance(v, str) else None) == region for v in scored["buyer_state"]], dtype=bool)
        scored["location_match"] = auction | buyer

    trim_target = target.trim or target.series
    spec = np.zeros(len(scored), dtype=int)
    spec += 2 * _matches(scored["transmission"], target.transmission)
    spec += 2 * _matches(scored["engine"], target.engine)
    spec += 2 * (_matches(scored["trim"], trim_target) | _matches(scored["series"], trim_target))
    if target.odometer is not None:
        mileage = pd.to_numeric(scored["vehicle_mileage"], errors="coerce")
        spec += ((mileage - target.odometer).abs() <= config.mileage_tolerance).to_numpy(dtype=int)
    scored["spec_score"] = spec

    scored["match_priority"] = assign_priority(scored["exact_year"], scored["location_match"], scored["spec_score"])
    return scored


def _str(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and np.isnan(value):
        return ""
    return str(value)


def _opt_int(value: Any) -> int | None:
    if value is None or pd.isna(value):
        return None
    return int(value)


def _date_str(value: Any) -> str | None:
    if value is None or (not isinstance(value, str) and pd.isna(value)):
        return None
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return str(value) or None


def _to_comparable(row: dict[str, Any]) -> ComparableVehicle:
    return ComparableVehicle(
        lot_id=_str(row["lot_id"]),
        site=_opt_int(row.get("site")),
        vin=_str(row.get("vin")),
        year=int(row["year"]),
        make=_str(row.get("make")),
        model=_str(row.get("model")),
        sale_status=_str(row.get("sale_status")),
        purchase_price=float(row["purchase_price"]),
        series=_str(row.get("series")),
        trim=_str(row.get("trim")),
        transmission=_str(row.get("transmission")),
        engine=_str(row.get("engine")),
        mileage=_opt_int(row.get("vehicle_mileage")),
        damage=_str(row.get("vehicle_damage")),
        auction_location=_str(row.get("auction_location")),
        buyer_state=_str(row.get("buyer_state")),
        sale_date=_date_str(row.get("sale_date")),
        match_priority=int(row["match_priority"]),
        exact_year=bool(row["exact_year"]),
        location_match=bool(row["location_match"]),
        spec_score=int(row["spec_score"]),
    )


def match_comparables(
    target: Lot,
    rows: Iterable[dict[str, Any]],
    config: PipelineConfig | None = None,
) -> ComparableMatch:
    """Rank archive sales against the target lot.

    Returns at most ``comparable_limit`` completed sales ordered by match
    priority, together with the mean price of every location-matched sale.
    """
    cfg = config or PipelineConfig()
    region = extract_region(target.location)
    frame = candidate_frame(rows, cfg)
    if frame.empty:
        return ComparableMatch(region_code=region)

    scored = score_candidates(frame, target, cfg)
    located = scored.loc[scored["location_match"], "purchase_price"]
    regional_avg = round(float(located.mean()), 2) if not located.empty else 0.0

    ranked = scored.sort_values("match_priority", kind="stable").head(cfg.comparable_limit)
    comparables = tuple(_to_comparable(row) for row in ranked.to_dict(orient="records"))
    return ComparableMatch(
        comparables=comparables,
        regional_average_price=regional_avg,
        region_code=region,
        candidates_considered=len(scored),
    )
