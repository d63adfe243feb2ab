from __future__ import annotations

import asyncio
import os
from collections.abc import Coroutine
from pathlib import Path
from typing import Any, TypeVar

import asyncpg  # type: ignore[import-untyped]
import pytest

from family_crawl.services.ingestion import normalize
from family_crawl.services.repository import PostgresRepository, RepositoryConflictError

MIGRATION_PATH = Path(__file__).resolve().parents[2] / "supabase" / "migrations" / "0001_crawl_core.sql"
URL = "https://aquarium.example.org/events"

T = TypeVar("T")


@pytest.fixture(scope="session")
def database_url() -> str:
    url = os.getenv("FC_DATABASE_URL") or os.getenv("DATABASE_URL")
    if not url:
        pytest.skip("integration tests require FC_DATABASE_URL or DATABASE_URL")
    return url


@pytest.fixture(autouse=True)
def reset_tables(database_url: str) -> None:
    _run(_prepare_schema(database_url))


def test_claim_is_exclusive_until_terminal(database_url: str) -> None:
    async def scenario() -> None:
        repository = PostgresRepository(database_url, 1, 2)
        try:
            claimed = await repository.claim_source(URL, "events")
            assert claimed is not None
            assert claimed.crawl_status == "pending"
            assert await repository.claim_source(URL, "events") is None

            await repository.record_crawl_failure(URL, "events", "Extraction transport failure: timed out")
            failed = await repository.get_source(URL, "events")
            assert failed.crawl_status == "failed"
            assert failed.error_message == "Extraction transport failure: timed out"

            reclaimed = await repository.claim_source(URL, "events")
            assert reclaimed is not None
            assert reclaimed.id == claimed.id
            assert reclaimed.error_message is None
        finally:
            await repository.close()

    _run(scenario())


def test_async_job_completes_once_with_records(database_url: str) -> None:
    async def scenario() -> None:
        repository = PostgresRepository(database_url, 1, 2)
        try:
            await repository.claim_source(URL, "events")
            job = await repository.record_crawl_queued(URL, "events", "fc-job-77")
            assert (await repository.get_source(URL, "events")).crawl_status == "crawling"
            assert [pending.id for pending in await repository.list_pending_jobs(10)] == [job.id]

            records = normalize(
                [{"title": "Shark Feeding", "start_time": "2024-08-03 11:00", "tags": ["animals"]}],
                "events",
                URL,
            )
            inserted = await repository.record_crawl_success(URL, "events", records, job_id=job.id)
            assert inserted == {"events": 1, "places": 0}

            source = await repository.get_source(URL, "events")
            assert source.crawl_status == "completed"
            assert source.last_crawled_at is not None
            assert await repository.list_pending_jobs(10) == []
            [completed] = await repository.list_jobs(status="completed", limit=10, offset=0)
            assert completed.completed_at is not None

            with pytest.raises(RepositoryConflictError):
                await repository.record_crawl_failure(URL, "events", "late failure", job_id=job.id)
        finally:
            await repository.close()

        conn = await asyncpg.connect(database_url)
        try:
            row = await conn.fetchrow("select title, approved, tags from events where source_url = $1", URL)
        finally:
            await conn.close()
        assert row["title"] == "Shark Feeding"
        assert row["approved"] is False
        assert list(row["tags"]) == ["animals"]

    _run(scenario())


@pytest.mark.parametrize(
    ("crawl_status", "error_message"),
    [("failed", None), ("completed", "stale reason")],
)
def test_error_message_is_present_only_on_failed_sources(
    database_url: str, crawl_status: str, error_message: str | None
) -> None:
    async def scenario() -> None:
        conn = await asyncpg.connect(database_url)
        try:
            with pytest.raises(asyncpg.CheckViolationError):
                await conn.execute(
                    """
                    insert into crawl_sources (source_url, source_type, crawl_status, error_message)
                    values ($1, 'events', $2, $3)
                    """,
                    URL,
                    crawl_status,
                    error_message,
                )
        finally:
            await conn.close()

    _run(scenario())


def _run(coro: Coroutine[Any, Any, T]) -> T:
    return asyncio.run(coro)


async def _prepare_schema(database_url: str) -> None:
    conn = await asyncpg.connect(database_url)
    try:
        await conn.execute(MIGRATION_PATH.read_text())
        await conn.execute("truncate table events, places, crawl_jobs, crawl_sources")
    finally:
        await conn.close()
