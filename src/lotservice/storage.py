from __future__ import annotations

import asyncio
import json
import logging
import time
from collections import OrderedDict
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Callable, Iterable

import redis.asyncio as redis
from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    Text,
    func,
    select,
)
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

logger = logging.getLogger(__name__)


metadata = MetaData()

# Read contract for the historical sales archive. The pipeline never writes here.
sales_history_table = Table(
    "sales_history",
    metadata,
    Column("id", Text, primary_key=True),
    Column("lot_id", Integer, nullable=False),
    Column("site", Integer, nullable=False),
    Column("base_site", Text, nullable=False),
    Column("vin", Text, nullable=False, index=True),
    Column("sale_status", Text, nullable=False),
    Column("sale_date", DateTime, nullable=False),
    Column("purchase_price", Numeric, nullable=True),
    Column("buyer_state", Text, nullable=True),
    Column("buyer_country", Text, nullable=True),
    Column("auction_location", Text, nullable=True),
    Column("vehicle_mileage", Integer, nullable=True),
    Column("vehicle_damage", Text, nullable=True),
    Column("vehicle_title", Text, nullable=True),
    Column("vehicle_has_keys", Boolean, nullable=True),
    Column("year", Integer, nullable=True),
    Column("make", Text, nullable=True),
    Column("model", Text, nullable=True),
    Column("series", Text, nullable=True),
    Column("trim", Text, nullable=True),
    Column("transmission", Text, nullable=True),
    Column("engine", Text, nullable=True),
    Column("drive", Text, nullable=True),
    Column("fuel", Text, nullable=True),
    Column("color", String(64), nullable=True),
)


class MemoryTTLStore:
    """Bounded in-process key/value store.

    Expired entries are dropped first; when still full the least recently
    used entry is evicted.
    """

    def __init__(self, max_entries: int = 2048, clock: Callable[[], float] = time.monotonic) -> None:
        self.max_entries = max(1, max_entries)
        self._clock = clock
        self._entries: OrderedDict[str, tuple[str, float]] = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: str) -> str | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        payload, expires_at = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return None
        self._entries.move_to_end(key)
        return payload

    def put(self, key: str, payload: str, ttl_seconds: float) -> None:
        if ttl_seconds <= 0:
            self._entries.pop(key, None)
            return
        self._entries[key] = (payload, self._clock() + ttl_seconds)
        self._entries.move_to_end(key)
        self.evict()

    def evict(self) -> int:
        now = self._clock()
        removed = 0
        for key in [k for k, (_, exp) in self._entries.items() if now >= exp]:
            del self._entries[key]
            removed += 1
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)
            removed += 1
        return removed


class RedisCache:
    def __init__(
        self,
        redis_url: str,
        namespace: str = "lotintel",
        max_entries: int = 2048,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.redis_url = redis_url
        self.namespace = namespace
        self._client: Any = None
        self._mem = MemoryTTLStore(max_entries=max_entries, clock=clock)

    def _build_key(self, key: str) -> str:
        return f"{self.namespace}:{key}"

    async def connect(self) -> None:
        self._client = redis.from_url(self.redis_url, decode_responses=True)
        try:
            await asyncio.wait_for(self._client.ping(), timeout=0.75)
        except Exception as exc:
            logger.info("Redis unavailable (%s); using in-memory cache", exc)
            self._client = None

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()

    async def get(self, key: str) -> Any | None:
        full_key = self._build_key(key)
        if self._client is not None:
            try:
                raw = await self._client.get(full_key)
                return None if raw is None else json.loads(raw)
            except Exception as exc:
                logger.warning("Cache read failed for %s: %s", full_key, exc)
                return None
        raw = self._mem.get(full_key)
        return None if raw is None else json.loads(raw)

    async def put(self, key: str, value: Any, ttl_seconds: int) -> None:
        full_key = self._build_key(key)
        payload = json.dumps(value, default=str)
        if self._client is not None:
            try:
                await self._client.set(full_key, payload, ex=ttl_seconds)
                return
            except Exception as exc:
                logger.warning("Cache write failed for %s: %s", full_key, exc)
        self._mem.put(full_key, payload, ttl_seconds)


def _plain(value: Any) -> Any:
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


def _row_dict(row: Any) -> dict[str, Any]:
    return {k: _plain(v) for k, v in row._mapping.items()}


def _sale_date_key(row: dict[str, Any]) -> str:
    value = row.get("sale_date")
    return _plain(value) or ""


class SalesArchive:
    """Read-only access to the historical sales archive.

    Falls back to an in-memory row list when the database is unreachable.
    """

    def __init__(self, dsn: str) -> None:
        self.dsn = dsn
        self.engine: AsyncEngine | None = None
        self._fallback_mode = False
        self._mem_sales: list[dict[str, Any]] = []

    async def connect(self) -> None:
        try:
            self.engine = create_async_engine(self.dsn, future=True)
            async with self.engine.connect() as conn:
                await conn.execute(select(1))
        except Exception as exc:
            logger.info("Sales archive unavailable (%s); using in-memory fallback", exc)
            if self.engine is not None:
                await self.engine.dispose()
            self._fallback_mode = True
            self.engine = None

    async def close(self) -> None:
        if self.engine is not None:
            await self.engine.dispose()

    def load_fallback_records(self, rows: Iterable[dict[str, Any]]) -> None:
        self._mem_sales.extend(dict(r) for r in rows)

    async def find_by_vin(self, vin: str, limit: int = 50) -> list[dict[str, Any]]:
        if self.engine is None:
            rows = [r for r in self._mem_sales if r.get("vin") == vin]
            rows.sort(key=_sale_date_key, reverse=True)
            return [{k: _plain(v) for k, v in r.items()} for r in rows[:limit]]

        stmt = (
            select(sales_history_table)
            .where(sales_history_table.c.vin == vin)
            .order_by(sales_history_table.c.sale_date.desc())
            .limit(limit)
        )
        async with self.engine.connect() as conn:
            rows = (await conn.execute(stmt)).all()
        return [_row_dict(r) for r in rows]

    async def find_comparable_candidates(
        self,
        *,
        make: str,
        model: str,
        year: int,
        year_window: int = 2,
        limit: int = 500,
    ) -> list[dict[str, Any]]:
        if self.engine is None:
            make_l, model_l = make.lower(), model.lower()
            rows = [
                r for r in self._mem_sales
                if str(r.get("make") or "").lower() == make_l
                and str(r.get("model") or "").lower() == model_l
                and r.get("year") is not None
                and abs(int(r["year"]) - year) <= year_window
                and r.get("purchase_price") is not None
            ]
            rows.sort(key=_sale_date_key, reverse=True)
            return [{k: _plain(v) for k, v in r.items()} for r in rows[:limit]]

        t = sales_history_table
        stmt = (
            select(t)
            .where(func.lower(t.c.make) == make.lower())
            .where(func.lower(t.c.model) == model.lower())
            .where(t.c.year.between(year - year_window, year + year_window))
            .where(t.c.purchase_price.is_not(None))
            .order_by(t.c.sale_date.desc())
            .limit(limit)
        )
        async with self.engine.connect() as conn:
            rows = (await conn.execute(stmt)).all()
        return [_row_dict(r) for r in rows]
