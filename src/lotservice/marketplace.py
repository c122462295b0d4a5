from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

import httpx
from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from lotintel.data_models import Lot, VinHistoryRecord, marketplace_name
from lotservice.retry import call_with_retry

logger = logging.getLogger(__name__)

T = TypeVar("T")

NOT_FOUND = "not_found"
NOT_CONFIGURED = "marketplace_not_configured"
MALFORMED = "malformed_payload"


@dataclass
class CallResult(Generic[T]):
    """Outcome of one marketplace call: ``value`` on success, ``error`` otherwise."""

    value: T | None = None
    error: str | None = None
    status_code: int | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


# ── Response schemas ────────────────────────────────────────────────

_TEXT_FIELDS = (
    "lot_id", "vin", "make", "model", "series", "trim", "damage_pr", "damage_sec",
    "document", "title", "sale_date", "auction_date", "location", "status",
    "sale_status", "transmission", "engine",
)


def _parse_number(value: Any) -> float | None:
    """Lenient numeric read: "$12,500" -> 12500.0; "N/A", "" and junk -> None."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) else None
    if isinstance(value, str):
        cleaned = value.replace("$", "").replace(",", "").strip()
        try:
            amount = float(cleaned)
        except ValueError:
            return None
        return amount if math.isfinite(amount) else None
    return None


class LotPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    lot_id: str
    site: int | None = None
    vin: str | None = None
    year: int | None = None
    make: str | None = None
    model: str | None = None
    series: str | None = None
    trim: str | None = None
    odometer: int | None = None
    damage_pr: str | None = None
    damage_sec: str | None = None
    document: str | None = None
    title: str | None = None
    current_bid: float | None = None
    purchase_price: float | None = None
    price: float | None = None
    sale_date: str | None = None
    auction_date: str | None = None
    location: str | None = None
    status: str | None = None
    sale_status: str | None = None
    transmission: str | None = None
    engine: str | None = None
    link_img_hd: list[str] | None = None
    link_img_small: list[str] | None = None

    @field_validator(*_TEXT_FIELDS, mode="before")
    @classmethod
    def _as_text(cls, value: Any) -> Any:
        if value is None or isinstance(value, str):
            return value
        if isinstance(value, (int, float)):
            return str(int(value)) if float(value).is_integer() else str(value)
        return str(value)

    @field_validator("odometer", "year", mode="before")
    @classmethod
    def _as_int(cls, value: Any) -> int | None:
        amount = _parse_number(value)
        return None if amount is None else int(amount)

    @field_validator("current_bid", "purchase_price", "price", mode="before")
    @classmethod
    def _as_amount(cls, value: Any) -> float | None:
        return _parse_number(value)

    @field_validator("link_img_hd", "link_img_small", mode="before")
    @classmethod
    def _as_url_list(cls, value: Any) -> Any:
        if value is None:
            return None
        if isinstance(value, str):
            return [value]
        return [u for u in value if isinstance(u, str)]

    def to_lot(self, site: int) -> Lot:
        photos = self.link_img_hd or self.link_img_small or []
        return Lot(
            lot_id=self.lot_id,
            site=self.site or site,
            year=self.year or 0,
            make=(self.make or "").strip(),
            model=(self.model or "").strip(),
            vin=(self.vin or "").strip().upper() or None,
            series=(self.series or "").strip(),
            trim=(self.trim or "").strip(),
            odometer=self.odometer,
            primary_damage=self.damage_pr or "",
            secondary_damage=self.damage_sec or "",
            title_status=self.document or self.title or "",
            current_bid=max(self.current_bid or 0.0, 0.0),
            sale_date=self.sale_date,
            auction_date=self.auction_date,
            location=self.location or "",
            photo_urls=tuple(photos),
            status=(self.status or "").strip().lower(),
            transmission=self.transmission or "",
            engine=self.engine or "",
        )

    def to_history_record(self) -> VinHistoryRecord:
        sold = self.purchase_price if self.purchase_price is not None else self.price
        return VinHistoryRecord(
            vin=(self.vin or "").strip().upper(),
            lot_id=self.lot_id,
            marketplace=marketplace_name(self.site or 0),
            sold_price=max(sold or 0.0, 0.0),
            sale_date=self.sale_date,
            damage=self.damage_pr or "",
            location=self.location or "",
            year=self.year,
            make=self.make or "",
            model=self.model or "",
            mileage=self.odometer,
            site=self.site,
            source="marketplace",
        )


class LotSearchPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    data: list[LotPayload] = []

    @field_validator("data", mode="before")
    @classmethod
    def _none_as_empty(cls, value: Any) -> Any:
        return [] if value is None else value


# ── Client ──────────────────────────────────────────────────────────

class MarketplaceClient:
    """Async client for the auction marketplace API.

    Lot lookup:    GET /cars/{lot_id}?site=
    Lot search:    GET /cars?site&make&model&year_from&year_to&status&size
    VIN history:   GET /history-cars?vin&size
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.apicar.store/api",
        timeout_seconds: float = 10.0,
        retry_backoff_seconds: float = 0.5,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.retry_backoff_seconds = retry_backoff_seconds
        self._transport = transport
        self._enabled = bool(api_key)

    async def _get(self, path: str, params: dict[str, Any]) -> httpx.Response:
        async def _request() -> httpx.Response:
            async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self._transport) as client:
                resp = await client.get(
                    f"{self.base_url}{path}",
                    params=params,
                    headers={"api-key": self.api_key, "Accept": "application/json"},
                )
            if resp.status_code != 404:
                resp.raise_for_status()
            return resp

        return await call_with_retry(_request, label=f"GET {path}", backoff_seconds=self.retry_backoff_seconds)

    async def get_lot(self, lot_id: str, site: int) -> CallResult[Lot]:
        if not self._enabled:
            return CallResult(error=NOT_CONFIGURED)
        try:
            resp = await self._get(f"/cars/{lot_id}", {"site": site})
            if resp.status_code == 404 or not resp.content:
                return CallResult(error=NOT_FOUND, status_code=resp.status_code)
            body = resp.json()
            if isinstance(body, dict) and isinstance(body.get("data"), dict):
                body = body["data"]
            if not body:
                return CallResult(error=NOT_FOUND, status_code=resp.status_code)
            lot = LotPayload.model_validate(body).to_lot(site)
        except ValidationError as exc:
            logger.warning("Malformed lot payload for %s: %s", lot_id, exc)
            return CallResult(error=MALFORMED)
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Lot lookup failed for %s: %s", lot_id, exc)
            return CallResult(error=str(exc) or type(exc).__name__)

        if lot.lot_id != str(lot_id):
            return CallResult(error=NOT_FOUND, status_code=resp.status_code)
        return CallResult(value=lot, status_code=resp.status_code)

    async def search_lots(
        self,
        *,
        site: int,
        make: str,
        model: str,
        year_from: int,
        year_to: int,
        status: str | None = None,
        size: int = 20,
    ) -> CallResult[list[Lot]]:
        if not self._enabled:
            return CallResult(error=NOT_CONFIGURED)
        params: dict[str, Any] = {
            "site": site,
            "make": make,
            "model": model,
            "year_from": year_from,
            "year_to": year_to,
            "size": size,
        }
        if status:
            params["status"] = status
        try:
            resp = await self._get("/cars", params)
            if resp.status_code == 404 or not resp.content:
                return CallResult(value=[], status_code=resp.status_code)
            payload = LotSearchPayload.model_validate(resp.json())
        except ValidationError as exc:
            logger.warning("Malformed lot search payload: %s", exc)
            return CallResult(error=MALFORMED)
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Lot search failed for %s %s: %s", make, model, exc)
            return CallResult(error=str(exc) or type(exc).__name__)
        return CallResult(value=[p.to_lot(site) for p in payload.data], status_code=resp.status_code)

    async def search_history(self, vin: str, size: int = 50) -> CallResult[list[VinHistoryRecord]]:
        if not self._enabled:
            return CallResult(error=NOT_CONFIGURED)
        try:
            resp = await self._get("/history-cars", {"vin": vin, "size": size})
            if resp.status_code == 404 or not resp.content:
                return CallResult(value=[], status_code=resp.status_code)
            payload = LotSearchPayload.model_validate(resp.json())
        except ValidationError as exc:
            logger.warning("Malformed VIN history payload for %s: %s", vin, exc)
            return CallResult(error=MALFORMED)
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("VIN history search failed for %s: %s", vin, exc)
            return CallResult(error=str(exc) or type(exc).__name__)
        records = [p.to_history_record() for p in payload.data if (p.vin or "").strip().upper() == vin]
        return CallResult(value=records, status_code=resp.status_code)
