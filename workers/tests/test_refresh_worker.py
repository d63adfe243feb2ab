from __future__ import annotations

import asyncio

import httpx
import pytest

from family_crawl.core.observability import start_tracing, stop_tracing
from family_crawl_worker.core.config import Settings
from family_crawl_worker.main import next_backoff, run_refresh_cycle
from family_crawl_worker.services.refresh_client import RefreshClient

SUMMARY = {
    "processed": 2,
    "completed": 1,
    "failed": 0,
    "pending": 1,
    "insertedEvents": 4,
    "insertedPlaces": 0,
}


def _client(handler) -> RefreshClient:
    return RefreshClient(
        "http://crawl-api.test/",
        client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )


def test_refresh_cycle_posts_to_refresh_endpoint() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=SUMMARY)

    summary = asyncio.run(run_refresh_cycle(_client(handler)))

    assert summary == SUMMARY
    [request] = seen
    assert request.method == "POST"
    assert str(request.url) == "http://crawl-api.test/crawl/refresh"


def test_refresh_cycle_raises_on_api_error() -> None:
    client = _client(lambda request: httpx.Response(500, json={"detail": "Missing FIRECRAWL_API_KEY"}))

    with pytest.raises(httpx.HTTPStatusError):
        asyncio.run(run_refresh_cycle(client))


def test_backoff_grows_and_is_capped() -> None:
    assert next_backoff(10.0, 300.0, jitter=0.0) == 20.0
    assert next_backoff(10.0, 300.0, jitter=0.5) == 25.0
    assert next_backoff(200.0, 300.0, jitter=0.0) == 300.0


def test_backoff_jitter_stays_in_range() -> None:
    for _ in range(20):
        assert 20.0 <= next_backoff(10.0, 300.0) <= 25.0


def test_worker_settings_drive_shared_tracing_setup() -> None:
    runtime = start_tracing(Settings(otel_enabled=False))

    assert runtime.enabled is False
    assert runtime.provider is None
    stop_tracing(runtime)
