from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable

from lotintel.comparables import match_comparables
from lotintel.config import PipelineConfig
from lotintel.data_models import (
    AnalysisResult,
    ComparableMatch,
    DamageAssessment,
    Lot,
    VinHistoryRecord,
)
from lotintel.errors import BranchServiceError
from lotintel.market import synthesize_market_intelligence
from lotservice.logging_config import lot_scope
from lotservice.lots import ActiveListingFinder, LotFetcher
from lotservice.storage import SalesArchive
from lotservice.vin import VinHistorySearcher
from lotservice.vision import VisionDamageAssessor, unavailable_assessment

logger = logging.getLogger(__name__)

VIN_HISTORY = "vin_history"
COMPARABLES = "internal_comparables"
ACTIVE_LISTINGS = "active_listings"
VISION = "vision_assessment"


@dataclass
class BranchOutcomes:
    """Per-branch results. A failed branch keeps its empty value and a reason in ``degraded``."""

    vin_history: list[VinHistoryRecord] = field(default_factory=list)
    comparables: ComparableMatch = field(default_factory=ComparableMatch)
    active_lots: list[Lot] = field(default_factory=list)
    damage: DamageAssessment | None = None
    degraded: dict[str, str] = field(default_factory=dict)
    timings_ms: dict[str, float] = field(default_factory=dict)


class LotIntelligencePipeline:
    """Fetch a lot, fan out to the enrichment branches, and fuse the results.

    The lot fetch is the only blocking step. The four branches run
    concurrently and each one fails on its own: an error or timeout in one
    never changes what the others return.
    """

    def __init__(
        self,
        fetcher: LotFetcher,
        vin_searcher: VinHistorySearcher,
        active_finder: ActiveListingFinder,
        archive: SalesArchive,
        vision: VisionDamageAssessor,
        config: PipelineConfig | None = None,
        branch_timeout_seconds: float = 60.0,
    ) -> None:
        self.fetcher = fetcher
        self.vin_searcher = vin_searcher
        self.active_finder = active_finder
        self.archive = archive
        self.vision = vision
        self.config = config or PipelineConfig()
        self.branch_timeout_seconds = branch_timeout_seconds

    async def find_comparables(self, lot: Lot) -> ComparableMatch:
        if not lot.make or not lot.model:
            return ComparableMatch()
        rows = await self.archive.find_comparable_candidates(
            make=lot.make,
            model=lot.model,
            year=lot.year,
            year_window=self.config.year_window,
            limit=self.config.candidate_pool_limit,
        )
        match = match_comparables(lot, rows, self.config)
        logger.info(
            "Matched %d comparables for %s from %d candidates (region %s)",
            len(match.comparables), lot.vehicle, match.candidates_considered, match.region_code or "unknown",
        )
        return match

    async def _isolate(self, name: str, work: Awaitable[Any], outcomes: BranchOutcomes) -> Any:
        t0 = time.monotonic()
        try:
            return await asyncio.wait_for(work, timeout=self.branch_timeout_seconds)
        except TimeoutError:
            logger.warning("Branch %s timed out after %.1fs", name, self.branch_timeout_seconds)
            outcomes.degraded[name] = "timeout"
        except BranchServiceError as exc:
            logger.warning("Branch %s degraded: %s", name, exc.reason)
            outcomes.degraded[name] = exc.reason
        except Exception as exc:
            logger.exception("Branch %s failed", name)
            outcomes.degraded[name] = str(exc) or type(exc).__name__
        finally:
            outcomes.timings_ms[name] = round((time.monotonic() - t0) * 1000, 1)
        return None

    async def run_branches(self, lot: Lot) -> BranchOutcomes:
        outcomes = BranchOutcomes()
        history, match, active, damage = await asyncio.gather(
            self._isolate(VIN_HISTORY, self.vin_searcher.search(lot.vin), outcomes),
            self._isolate(COMPARABLES, self.find_comparables(lot), outcomes),
            self._isolate(ACTIVE_LISTINGS, self.active_finder.find(lot), outcomes),
            self._isolate(VISION, self.vision.assess_or_degrade(lot), outcomes),
        )
        if history is not None:
            outcomes.vin_history = list(history)
        if match is not None:
            outcomes.comparables = match
        if active is not None:
            outcomes.active_lots = list(active)

        if damage is None:
            damage = unavailable_assessment(outcomes.degraded.get(VISION, "unknown"))
        elif damage.error:
            outcomes.degraded[VISION] = damage.error
        outcomes.damage = damage
        logger.debug("Branch timings for lot %s: %s", lot.lot_id, outcomes.timings_ms)
        return outcomes

    async def analyze(self, lot_id: str, site: int) -> AnalysisResult:
        with lot_scope(site, lot_id):
            t0 = time.monotonic()
            lot = await self.fetcher.fetch(lot_id, site)
            outcomes = await self.run_branches(lot)
            intelligence = synthesize_market_intelligence(
                lot,
                outcomes.vin_history,
                outcomes.comparables.comparables,
                outcomes.active_lots,
                regional_average_price=outcomes.comparables.regional_average_price,
                degraded_sources=outcomes.degraded,
                config=self.config,
            )
            logger.info(
                "Analyzed lot %s in %.0fms: %s (%d%%), degraded=%s",
                lot.lot_id,
                (time.monotonic() - t0) * 1000,
                intelligence.recommendation,
                intelligence.confidence,
                sorted(outcomes.degraded) or "none",
            )
            return AnalysisResult(
                lot=lot,
                vin_history=tuple(outcomes.vin_history),
                damage_assessment=outcomes.damage or unavailable_assessment("unknown"),
                similar_active_lots=tuple(outcomes.active_lots),
                market_intelligence=intelligence,
                comparables=outcomes.comparables.comparables,
            )
