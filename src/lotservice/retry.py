from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

import httpx
import openai

logger = logging.getLogger(__name__)

T = TypeVar("T")


def is_transient(exc: BaseException) -> bool:
    """Timeouts, dropped connections and 5xx responses are worth one more try."""
    if isinstance(exc, (httpx.TimeoutException, httpx.TransportError, asyncio.TimeoutError)):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code >= 500
    if isinstance(exc, (openai.APITimeoutError, openai.APIConnectionError, openai.InternalServerError)):
        return True
    return False


async def call_with_retry(
    operation: Callable[[], Awaitable[T]],
    *,
    label: str,
    retries: int = 1,
    backoff_seconds: float = 0.5,
) -> T:
    attempt = 0
    while True:
        try:
            return await operation()
        except Exception as exc:
            if attempt >= retries or not is_transient(exc):
                raise
            delay = backoff_seconds * (2 ** attempt)
            logger.warning("%s failed (%s), retrying in %.2fs", label, exc, delay)
            await asyncio.sleep(delay)
            attempt += 1
