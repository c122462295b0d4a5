from __future__ import annotations

import logging

from lotintel.config import PipelineConfig
from lotintel.data_models import MARKETPLACES, Lot, marketplace_name
from lotintel.errors import (
    BranchServiceError,
    InputValidationError,
    LotNotFoundError,
    MarketplaceUnavailableError,
)
from lotservice.marketplace import NOT_FOUND, MarketplaceClient

logger = logging.getLogger(__name__)


def validate_lot_request(lot_id: object, site: object) -> tuple[str, int]:
    if not isinstance(lot_id, str) or not lot_id.strip():
        raise InputValidationError("Lot ID is required")
    if isinstance(site, bool) or not isinstance(site, int) or site not in MARKETPLACES:
        raise InputValidationError("Site must be 1 (Copart) or 2 (IAAI)")
    return lot_id.strip(), site


class LotFetcher:
    def __init__(self, client: MarketplaceClient) -> None:
        self.client = client

    async def fetch(self, lot_id: str, site: int) -> Lot:
        lot_id, site = validate_lot_request(lot_id, site)
        result = await self.client.get_lot(lot_id, site)
        if result.error == NOT_FOUND:
            raise LotNotFoundError(lot_id, marketplace_name(site))
        if not result.ok or result.value is None:
            raise MarketplaceUnavailableError(result.error or "empty_response")
        lot = result.value
        logger.info(
            "Fetched lot %s on %s: %s, VIN %s, %d photos",
            lot.lot_id, lot.marketplace, lot.vehicle, lot.vin or "N/A", len(lot.photo_urls),
        )
        return lot


class ActiveListingFinder:
    """Currently listed lots of the same make/model within the year window."""

    def __init__(self, client: MarketplaceClient, config: PipelineConfig | None = None) -> None:
        self.client = client
        self.config = config or PipelineConfig()

    def _is_similar(self, target: Lot, candidate: Lot) -> bool:
        return (
            candidate.site == target.site
            and candidate.lot_id != target.lot_id
            and candidate.make.lower() == target.make.lower()
            and candidate.model.lower() == target.model.lower()
            and abs(candidate.year - target.year) <= self.config.year_window
            and candidate.is_available
        )

    async def find(self, target: Lot) -> list[Lot]:
        if not target.make or not target.model:
            return []
        window = self.config.year_window
        result = await self.client.search_lots(
            site=target.site,
            make=target.make,
            model=target.model,
            year_from=target.year - window,
            year_to=target.year + window,
            status="available",
            size=self.config.active_listing_limit,
        )
        if not result.ok:
            raise BranchServiceError("active_listings", result.error or "unknown")

        similar = [lot for lot in result.value or [] if self._is_similar(target, lot)]
        logger.info("Found %d similar active lots for %s", len(similar), target.vehicle)
        return similar[: self.config.active_listing_limit]
