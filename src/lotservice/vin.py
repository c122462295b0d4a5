from __future__ import annotations

import logging
from dataclasses import asdict
from typing import Any

from lotintel.config import PipelineConfig
from lotintel.data_models import VinHistoryRecord, marketplace_name
from lotintel.errors import BranchServiceError
from lotservice.marketplace import MarketplaceClient
from lotservice.storage import RedisCache, SalesArchive

logger = logging.getLogger(__name__)

_SITE_BY_BASE = {"copart": 1, "iaai": 2}


def normalize_vin(vin: str | None) -> str:
    return (vin or "").strip().upper()


def _archive_record(row: dict[str, Any]) -> VinHistoryRecord:
    site = row.get("site") or _SITE_BY_BASE.get(str(row.get("base_site") or "").lower())
    price = row.get("purchase_price")
    return VinHistoryRecord(
        vin=normalize_vin(row.get("vin")),
        lot_id=str(row.get("lot_id")),
        marketplace=marketplace_name(int(site)) if site else "Unknown",
        sold_price=max(float(price or 0.0), 0.0),
        sale_date=row.get("sale_date"),
        damage=row.get("vehicle_damage") or "",
        location=row.get("auction_location") or "",
        year=row.get("year"),
        make=row.get("make") or "",
        model=row.get("model") or "",
        mileage=row.get("vehicle_mileage"),
        site=int(site) if site else None,
        source="archive",
    )


def merge_history(
    archive: list[VinHistoryRecord],
    external: list[VinHistoryRecord],
    limit: int,
) -> list[VinHistoryRecord]:
    """Archive rows win over marketplace rows for the same (site, lot)."""
    merged = list(archive)
    seen = {(r.site, r.lot_id) for r in archive}
    for record in external:
        key = (record.site, record.lot_id)
        if key in seen:
            continue
        seen.add(key)
        merged.append(record)
    dated = sorted((r for r in merged if r.sale_date), key=lambda r: str(r.sale_date), reverse=True)
    undated = [r for r in merged if not r.sale_date]
    return (dated + undated)[:limit]


class VinHistorySearcher:
    def __init__(
        self,
        client: MarketplaceClient,
        archive: SalesArchive,
        cache: RedisCache,
        ttl_seconds: int,
        config: PipelineConfig | None = None,
    ) -> None:
        self.client = client
        self.archive = archive
        self.cache = cache
        self.ttl_seconds = ttl_seconds
        self.config = config or PipelineConfig()

    async def search(self, vin: str | None) -> list[VinHistoryRecord]:
        vin = normalize_vin(vin)
        if not vin:
            logger.info("No VIN on lot; skipping history lookup")
            return []

        cache_key = f"vin_history:{vin}"
        cached = await self.cache.get(cache_key)
        if cached is not None:
            return [VinHistoryRecord(**r) for r in cached]

        limit = self.config.vin_history_limit
        errors: list[str] = []

        external: list[VinHistoryRecord] = []
        result = await self.client.search_history(vin, size=limit)
        if result.ok:
            external = result.value or []
        else:
            errors.append(f"marketplace: {result.error}")

        archive: list[VinHistoryRecord] = []
        try:
            archive = [_archive_record(r) for r in await self.archive.find_by_vin(vin, limit=limit)]
        except Exception as exc:
            logger.warning("Archive VIN lookup failed for %s: %s", vin, exc)
            errors.append(f"archive: {exc}")

        if len(errors) == 2:
            raise BranchServiceError("vin_history", "; ".join(errors))

        history = merge_history(archive, external, limit)
        logger.info("VIN %s: %d history records (%d archive, %d marketplace)", vin, len(history), len(archive), len(external))
        if not errors:
            await self.cache.put(cache_key, [asdict(r) for r in history], ttl_seconds=self.ttl_seconds)
        return history
