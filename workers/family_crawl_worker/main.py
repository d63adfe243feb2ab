from __future__ import annotations

import asyncio
import logging
import random
from typing import Any

import httpx
from opentelemetry import trace

from family_crawl.core.observability import configure_logging, start_tracing, stop_tracing
from family_crawl_worker.core.config import get_settings
from family_crawl_worker.services.refresh_client import RefreshClient

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


async def run_refresh_cycle(client: RefreshClient) -> dict[str, Any]:
    with tracer.start_as_current_span("worker.refresh_cycle") as span:
        summary = await client.refresh()
        for key in ("processed", "completed", "failed", "pending"):
            span.set_attribute(f"refresh.{key}", int(summary.get(key, 0)))
    if summary.get("processed"):
        logger.info(
            "refresh cycle processed=%s completed=%s failed=%s pending=%s events=%s places=%s",
            summary.get("processed"),
            summary.get("completed"),
            summary.get("failed"),
            summary.get("pending"),
            summary.get("insertedEvents"),
            summary.get("insertedPlaces"),
        )
    return summary


def next_backoff(previous: float, max_backoff: float, jitter: float | None = None) -> float:
    if jitter is None:
        jitter = random.uniform(0.0, 0.5)
    return min(previous * (2.0 + jitter), max_backoff)


async def run_worker() -> None:
    settings = get_settings()
    configure_logging()
    telemetry_runtime = start_tracing(settings)
    client = RefreshClient(settings.api_base_url, timeout_seconds=settings.request_timeout_seconds)

    backoff = settings.refresh_interval_seconds
    try:
        while True:
            try:
                await run_refresh_cycle(client)
            except (httpx.HTTPError, ValueError) as exc:
                sleep_for = next_backoff(backoff, settings.max_backoff_seconds)
                logger.exception("refresh cycle failed: %s; retry in %.1fs", exc, sleep_for)
                await asyncio.sleep(sleep_for)
                backoff = sleep_for
                continue

            backoff = settings.refresh_interval_seconds
            await asyncio.sleep(settings.refresh_interval_seconds)
    finally:
        stop_tracing(telemetry_runtime)


if __name__ == "__main__":
    asyncio.run(run_worker())
