from __future__ import annotations

import asyncio
import json
import logging
from collections import defaultdict
from typing import Any

from aiokafka import AIOKafkaProducer

from lotintel.data_models import AnalysisResult
from lotservice.logging_config import get_correlation_id

logger = logging.getLogger(__name__)

LOT_ANALYSIS_REQUESTS_TOPIC = "lot_analysis_requests"
LOT_ANALYSIS_RESULTS_TOPIC = "lot_analysis_results"


class KafkaBus:
    """Publishes analysis events; queues them in-process when Kafka is down."""

    def __init__(self, bootstrap_servers: str, client_id: str, max_queued: int = 1000) -> None:
        self.bootstrap_servers = bootstrap_servers
        self.client_id = client_id
        self.max_queued = max_queued
        self._producer: AIOKafkaProducer | None = None
        self._queues: dict[str, asyncio.Queue[dict[str, Any]]] = defaultdict(
            lambda: asyncio.Queue(maxsize=self.max_queued)
        )

    async def connect(self) -> None:
        producer = AIOKafkaProducer(
            bootstrap_servers=self.bootstrap_servers,
            client_id=self.client_id,
            value_serializer=lambda v: json.dumps(v, default=str).encode("utf-8"),
        )
        try:
            await asyncio.wait_for(producer.start(), timeout=1.0)
            self._producer = producer
        except Exception as exc:
            logger.info("Kafka unavailable (%s); queueing events in memory", exc)
            self._producer = None
            try:
                await producer.stop()
            except Exception as stop_exc:
                logger.debug("Producer stop after failed start: %s", stop_exc)

    async def close(self) -> None:
        if self._producer is not None:
            await self._producer.stop()
            self._producer = None

    async def publish(self, topic: str, value: dict[str, Any], key: str | None = None) -> None:
        if self._producer is not None:
            try:
                encoded_key = None if key is None else key.encode("utf-8")
                await self._producer.send_and_wait(topic, value=value, key=encoded_key)
                return
            except Exception as exc:
                logger.warning("Kafka publish to %s failed (%s); queueing in memory", topic, exc)
        queue = self._queues[topic]
        if queue.full():
            queue.get_nowait()
            logger.warning("In-memory queue for %s full (%d); dropped oldest event", topic, self.max_queued)
        queue.put_nowait(value)

    def drain(self, topic: str) -> list[dict[str, Any]]:
        """Pop every event queued in memory for ``topic``."""
        queue = self._queues[topic]
        events: list[dict[str, Any]] = []
        while not queue.empty():
            events.append(queue.get_nowait())
        return events

    # ── Analysis events ─────────────────────────────────────────────

    async def publish_analysis_request(self, lot_id: str, site: int) -> None:
        await self.publish(
            LOT_ANALYSIS_REQUESTS_TOPIC,
            {"lotId": lot_id, "site": site, "correlationId": get_correlation_id()},
            key=f"{site}:{lot_id}",
        )

    async def publish_analysis_result(self, result: AnalysisResult) -> None:
        intel = result.market_intelligence
        await self.publish(
            LOT_ANALYSIS_RESULTS_TOPIC,
            {
                "lotId": result.lot.lot_id,
                "site": result.lot.site,
                "recommendation": intel.recommendation,
                "confidence": intel.confidence,
                "estimatedValue": intel.market_data.estimated_value,
                "degradedSources": sorted(intel.market_data.data_quality.degraded_sources),
                "correlationId": get_correlation_id(),
            },
            key=f"{result.lot.site}:{result.lot.lot_id}",
        )
