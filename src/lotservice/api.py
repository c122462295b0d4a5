from __future__ import annotations

import asyncio
import logging
import time
import uuid
from collections import defaultdict, deque
from contextlib import asynccontextmanager
from typing import Any, Awaitable

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, StrictInt, StrictStr, field_validator

from lotintel.config import PipelineConfig
from lotintel.data_models import MARKETPLACES, AnalysisResult
from lotintel.errors import InputValidationError, LotNotFoundError
from lotservice.logging_config import configure_logging, correlation_id
from lotservice.lots import ActiveListingFinder, LotFetcher
from lotservice.marketplace import MarketplaceClient
from lotservice.messaging import KafkaBus
from lotservice.pipeline import LotIntelligencePipeline
from lotservice.responses import analysis_payload
from lotservice.settings import ServiceSettings
from lotservice.storage import RedisCache, SalesArchive
from lotservice.vin import VinHistorySearcher
from lotservice.vision import VisionDamageAssessor

logger = logging.getLogger(__name__)

LOT_ID_REQUIRED = "Lot ID is required"
SITE_INVALID = "Site must be 1 (Copart) or 2 (IAAI)"


# ── Request Models ──────────────────────────────────────────────────

class AnalyzeRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    lot_id: StrictStr = Field(alias="lotId")
    site: StrictInt

    @field_validator("lot_id")
    @classmethod
    def _lot_id_present(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError(LOT_ID_REQUIRED)
        return value

    @field_validator("site")
    @classmethod
    def _known_site(cls, value: int) -> int:
        if value not in MARKETPLACES:
            raise ValueError(SITE_INVALID)
        return value


def _validation_message(exc: RequestValidationError) -> str:
    fields = {str(part) for err in exc.errors() for part in err.get("loc", ())}
    if "lotId" in fields or "lot_id" in fields or fields <= {"body"}:
        return LOT_ID_REQUIRED
    if "site" in fields:
        return SITE_INVALID
    return LOT_ID_REQUIRED


# ── Prometheus-style Metrics ────────────────────────────────────────

# Latency summaries are computed over the most recent samples only.
LATENCY_SAMPLE_LIMIT = 5_000

_prom_counters: dict[str, int] = defaultdict(int)
_prom_histograms: dict[str, deque[float]] = defaultdict(lambda: deque(maxlen=LATENCY_SAMPLE_LIMIT))


def _record_latency(name: str, seconds: float) -> None:
    _prom_histograms[name].append(seconds)
    _prom_counters[f"{name}_count"] += 1


def _record_result(result: AnalysisResult) -> None:
    intel = result.market_intelligence
    _prom_counters[f"recommendation_{intel.recommendation.lower()}"] += 1
    for branch in intel.market_data.data_quality.degraded_sources:
        _prom_counters[f"branch_degraded_{branch}"] += 1


def _prometheus_text() -> str:
    """Render metrics in Prometheus exposition format."""
    lines: list[str] = []
    for k, v in sorted(_prom_counters.items()):
        safe = k.replace(".", "_").replace("-", "_")
        lines.append(f"# TYPE lotintel_{safe} counter")
        lines.append(f"lotintel_{safe} {v}")

    for name, vals in sorted(_prom_histograms.items()):
        if not vals:
            continue
        safe = name.replace(".", "_").replace("-", "_")
        sorted_vals = sorted(vals)
        n = len(sorted_vals)
        lines.append(f"# TYPE lotintel_{safe}_seconds summary")
        for q in (0.5, 0.9, 0.95, 0.99):
            idx = min(int(n * q), n - 1)
            lines.append(f'lotintel_{safe}_seconds{{quantile="{q}"}} {sorted_vals[idx]:.6f}')
        lines.append(f"lotintel_{safe}_seconds_count {n}")
        lines.append(f"lotintel_{safe}_seconds_sum {sum(sorted_vals):.6f}")

    return "\n".join(lines) + "\n"


# ── Wiring ──────────────────────────────────────────────────────────

def build_pipeline(
    settings: ServiceSettings,
    cache: RedisCache,
    archive: SalesArchive,
    config: PipelineConfig | None = None,
) -> LotIntelligencePipeline:
    cfg = config or PipelineConfig()
    client = MarketplaceClient(
        api_key=settings.marketplace_api_key,
        base_url=settings.marketplace_base_url,
        timeout_seconds=settings.marketplace_timeout_seconds,
        retry_backoff_seconds=settings.retry_backoff_seconds,
    )
    vision = VisionDamageAssessor(
        api_key=settings.openai_api_key,
        model=settings.vision_model,
        max_tokens=settings.vision_max_tokens,
        timeout_seconds=settings.vision_timeout_seconds,
        retry_backoff_seconds=settings.retry_backoff_seconds,
        config=cfg,
        max_images=settings.vision_max_images,
    )
    return LotIntelligencePipeline(
        fetcher=LotFetcher(client),
        vin_searcher=VinHistorySearcher(
            client, archive, cache, ttl_seconds=settings.vin_history_cache_ttl_seconds, config=cfg,
        ),
        active_finder=ActiveListingFinder(client, cfg),
        archive=archive,
        vision=vision,
        config=cfg,
        branch_timeout_seconds=settings.branch_timeout_seconds,
    )


async def run_until_disconnect(request: Request, work: Awaitable[Any], poll_seconds: float) -> Any:
    """Await ``work``, cancelling it if the client goes away first."""
    task = asyncio.ensure_future(work)

    async def _watch() -> None:
        while not task.done():
            await asyncio.sleep(poll_seconds)
            if await request.is_disconnected():
                logger.info("Client disconnected; cancelling analysis")
                task.cancel()
                return

    watcher = asyncio.create_task(_watch())
    try:
        return await task
    finally:
        watcher.cancel()


# ── App Factory ─────────────────────────────────────────────────────

def create_app(
    settings: ServiceSettings | None = None,
    pipeline: LotIntelligencePipeline | None = None,
    kafka: KafkaBus | None = None,
) -> FastAPI:
    settings = settings or ServiceSettings()
    configure_logging(level=settings.log_level, fmt=settings.log_format)

    cache = RedisCache(redis_url=settings.redis_url, max_entries=settings.cache_max_entries)
    archive = SalesArchive(dsn=settings.postgres_dsn)
    owns_stores = pipeline is None
    pipeline = pipeline or build_pipeline(settings, cache, archive)
    kafka = kafka or KafkaBus(
        bootstrap_servers=settings.kafka_bootstrap_servers,
        client_id=settings.kafka_client_id,
        max_queued=settings.kafka_fallback_queue_size,
    )

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        if owns_stores:
            await cache.connect()
            await archive.connect()
        await kafka.connect()
        try:
            yield
        finally:
            if owns_stores:
                await cache.close()
                await archive.close()
            await kafka.close()

    app = FastAPI(title="Lot Intelligence API", version="1.0.0", lifespan=lifespan)

    @app.middleware("http")
    async def correlation_id_middleware(request: Request, call_next: Any) -> Response:
        cid = request.headers.get("X-Correlation-ID") or uuid.uuid4().hex[:12]
        correlation_id.set(cid)
        response = await call_next(request)
        response.headers["X-Correlation-ID"] = cid
        return response

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(_: Request, exc: RequestValidationError) -> JSONResponse:
        _prom_counters["analyze_rejected"] += 1
        return JSONResponse(status_code=400, content={"success": False, "message": _validation_message(exc)})

    @app.exception_handler(InputValidationError)
    async def input_validation_handler(_: Request, exc: InputValidationError) -> JSONResponse:
        _prom_counters["analyze_rejected"] += 1
        return JSONResponse(status_code=400, content={"success": False, "message": str(exc)})

    async def _publish(event: Awaitable[None], key: str) -> None:
        try:
            await event
        except Exception as exc:
            logger.warning("Dropping analysis event for lot %s: %s", key, exc)

    # ── Analysis ────────────────────────────────────────────────────

    @app.post("/analyze")
    async def analyze(payload: AnalyzeRequest, request: Request) -> JSONResponse:
        t0 = time.monotonic()
        _prom_counters["analyze_requests"] += 1
        key = f"{payload.site}:{payload.lot_id}"
        await _publish(kafka.publish_analysis_request(payload.lot_id, payload.site), key)

        try:
            result: AnalysisResult = await run_until_disconnect(
                request,
                pipeline.analyze(payload.lot_id, payload.site),
                settings.disconnect_poll_seconds,
            )
        except LotNotFoundError as exc:
            _prom_counters["analyze_not_found"] += 1
            logger.info("%s", exc)
            return JSONResponse(content={"success": False, "message": str(exc)})
        except InputValidationError:
            raise
        except Exception:
            _prom_counters["analyze_failed"] += 1
            logger.exception("Analysis failed for lot %s", key)
            return JSONResponse(status_code=500, content={"success": False, "message": "Analysis failed"})

        _record_latency("analyze", time.monotonic() - t0)
        _record_result(result)
        await _publish(kafka.publish_analysis_result(result), key)
        return JSONResponse(content={"success": True, "data": analysis_payload(result)})

    # ── Operational Endpoints ───────────────────────────────────────

    @app.get("/metrics")
    async def get_metrics() -> dict[str, Any]:
        latencies = sorted(_prom_histograms.get("analyze", []))
        return {
            "counters": dict(_prom_counters),
            "analyze_latency": {
                "count": len(latencies),
                "p50_ms": round(latencies[len(latencies) // 2] * 1000, 1) if latencies else 0,
                "p95_ms": round(latencies[int(len(latencies) * 0.95)] * 1000, 1) if latencies else 0,
                "p99_ms": round(latencies[int(len(latencies) * 0.99)] * 1000, 1) if latencies else 0,
            },
        }

    @app.get("/metrics/prometheus")
    async def get_prometheus_metrics() -> Response:
        return Response(content=_prometheus_text(), media_type="text/plain; charset=utf-8")

    return app


app = create_app()
