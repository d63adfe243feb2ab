from __future__ import annotations

import copy
import json
import os
from datetime import datetime, timezone
from collections.abc import Callable
from typing import Any
from uuid import uuid4

import httpx
import pytest

# Keep the test process from installing a global tracer provider on app import.
os.environ.setdefault("FC_OTEL_ENABLED", "false")

from family_crawl.services.gateway import FirecrawlGateway  # noqa: E402
from family_crawl.services.repository import PostgresRepository  # noqa: E402
from family_crawl.services.store import InMemoryRepository  # noqa: E402

Handler = Callable[[httpx.Request], httpx.Response]


class RecordingHandler:
    """Mock transport handler that records every request it answers."""

    def __init__(self, respond: Handler) -> None:
        self.respond = respond
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.respond(request)

    def json_bodies(self) -> list[dict[str, Any]]:
        return [json.loads(request.content) for request in self.requests if request.content]


@pytest.fixture
def memory_repository() -> InMemoryRepository:
    return InMemoryRepository()


@pytest.fixture
def make_gateway() -> Callable[..., tuple[FirecrawlGateway, RecordingHandler]]:
    def factory(
        respond: Handler,
        *,
        mode: str = "sync",
        api_key: str | None = "fc-test-key",
        timeout_seconds: float = 30.0,
    ) -> tuple[FirecrawlGateway, RecordingHandler]:
        handler = RecordingHandler(respond)
        gateway = FirecrawlGateway(
            api_key=api_key,
            mode=mode,
            sync_endpoint="https://firecrawl.test/v1/extract",
            async_endpoint="https://firecrawl.test/v2/extract",
            timeout_seconds=timeout_seconds,
            client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        )
        return gateway, handler

    return factory


InsertFailure = Callable[[str, list[tuple[Any, ...]]], BaseException | None]


class FakeDatabase:
    """Dict-backed stand-in for the asyncpg pool behind ``PostgresRepository``.

    Understands only the statements the repository issues. A transaction
    snapshots every table on entry and restores the snapshot when the block
    raises, like a Postgres rollback.
    """

    def __init__(self) -> None:
        self.sources: dict[tuple[str, str], dict[str, Any]] = {}
        self.jobs: dict[str, dict[str, Any]] = {}
        self.events: list[tuple[Any, ...]] = []
        self.places: list[tuple[Any, ...]] = []
        self.insert_failure: InsertFailure | None = None
        self.read_failure: BaseException | None = None
        self.acquire_failure: BaseException | None = None
        self.rollbacks = 0

    async def close(self) -> None:
        return None

    def acquire(self) -> FakeAcquire:
        return FakeAcquire(self)

    async def fetchrow(self, sql: str, *args: Any) -> dict[str, Any] | None:
        self._raise_read_failure()
        return self.row_for(sql, args)

    async def fetch(self, sql: str, *args: Any) -> list[dict[str, Any]]:
        self._raise_read_failure()
        statement = _flatten(sql)
        if "from crawl_sources" in statement:
            crawl_status, crawl_type, limit, offset = args
            rows = [
                row
                for row in self.sources.values()
                if (crawl_status is None or row["crawl_status"] == crawl_status)
                and (crawl_type is None or row["source_type"] == crawl_type)
            ]
            rows.sort(key=lambda row: row["created_at"], reverse=True)
            return [dict(row) for row in rows[offset : offset + limit]]
        if "where status = 'pending'" in statement:
            (limit,) = args
            rows = sorted(
                (job for job in self.jobs.values() if job["status"] == "pending"),
                key=lambda job: job["created_at"],
            )
            return [dict(row) for row in rows[:limit]]
        status, limit, offset = args
        rows = [job for job in self.jobs.values() if status is None or job["status"] == status]
        rows.sort(key=lambda job: job["created_at"], reverse=True)
        return [dict(row) for row in rows[offset : offset + limit]]

    def row_for(self, sql: str, args: tuple[Any, ...]) -> dict[str, Any] | None:
        statement = _flatten(sql)
        if statement.startswith("insert into crawl_sources"):
            url, crawl_type, claimable = args
            row = self.sources.get((url, crawl_type))
            if row is None:
                row = {
                    "id": str(uuid4()),
                    "source_url": url,
                    "source_type": crawl_type,
                    "crawl_status": "pending",
                    "error_message": None,
                    "created_at": _now(),
                    "last_crawled_at": None,
                }
                self.sources[(url, crawl_type)] = row
                return dict(row)
            if row["crawl_status"] not in claimable:
                return None
            row.update(crawl_status="pending", error_message=None)
            return dict(row)
        if statement.startswith("insert into crawl_jobs"):
            external_job_id, url, crawl_type = args
            job = {
                "id": str(uuid4()),
                "firecrawl_job_id": external_job_id,
                "source_url": url,
                "crawl_type": crawl_type,
                "status": "pending",
                "error_message": None,
                "created_at": _now(),
                "completed_at": None,
            }
            self.jobs[job["id"]] = job
            return dict(job)
        if statement.startswith("update crawl_jobs"):
            job_id, status, error_message = args
            job = self.jobs.get(job_id)
            if job is None or job["status"] != "pending":
                return None
            job.update(status=status, error_message=error_message, completed_at=_now())
            return {"id": job_id}
        if "from crawl_sources" in statement:
            row = self.sources.get((args[0], args[1]))
            return dict(row) if row else None
        raise AssertionError(f"unexpected statement: {statement}")

    def _raise_read_failure(self) -> None:
        if self.read_failure is not None:
            raise self.read_failure


class FakeAcquire:
    def __init__(self, database: FakeDatabase) -> None:
        self.database = database

    async def __aenter__(self) -> FakeConnection:
        if self.database.acquire_failure is not None:
            raise self.database.acquire_failure
        return FakeConnection(self.database)

    async def __aexit__(self, *exc_info: object) -> bool:
        return False


class FakeTransaction:
    def __init__(self, database: FakeDatabase) -> None:
        self.database = database
        self.snapshot: tuple[Any, ...] | None = None

    async def __aenter__(self) -> FakeTransaction:
        db = self.database
        self.snapshot = copy.deepcopy((db.sources, db.jobs, db.events, db.places))
        return self

    async def __aexit__(self, exc_type: type[BaseException] | None, *exc_info: object) -> bool:
        if exc_type is not None and self.snapshot is not None:
            db = self.database
            db.sources, db.jobs, db.events, db.places = self.snapshot
            db.rollbacks += 1
        return False


class FakeConnection:
    def __init__(self, database: FakeDatabase) -> None:
        self.database = database

    def transaction(self) -> FakeTransaction:
        return FakeTransaction(self.database)

    async def fetchrow(self, sql: str, *args: Any) -> dict[str, Any] | None:
        return self.database.row_for(sql, args)

    async def fetchval(self, sql: str, *args: Any) -> int | None:
        return 1 if args[0] in self.database.jobs else None

    async def execute(self, sql: str, *args: Any) -> str:
        url, crawl_type, status, error_message, predecessors = args
        row = self.database.sources.get((url, crawl_type))
        if row is None or row["crawl_status"] not in predecessors:
            return "UPDATE 0"
        row.update(crawl_status=status, error_message=error_message)
        if status == "completed":
            row["last_crawled_at"] = _now()
        return "UPDATE 1"

    async def executemany(self, sql: str, rows: list[tuple[Any, ...]]) -> None:
        table = "events" if _flatten(sql).startswith("insert into events") else "places"
        if self.database.insert_failure is not None:
            error = self.database.insert_failure(table, rows)
            if error is not None:
                raise error
        getattr(self.database, table).extend(rows)


def _flatten(sql: str) -> str:
    return " ".join(sql.split())


def _now() -> datetime:
    return datetime.now(timezone.utc)


@pytest.fixture
def fake_database() -> FakeDatabase:
    return FakeDatabase()


@pytest.fixture
def postgres_repository(fake_database: FakeDatabase) -> PostgresRepository:
    repository = PostgresRepository("postgresql://crawl@db.test/crawl", 1, 1)
    repository._pool = fake_database
    return repository
