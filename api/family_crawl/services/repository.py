from __future__ import annotations

from collections.abc import Sequence
from typing import Any, Protocol

import asyncpg  # type: ignore[import-untyped]

from family_crawl.services.models import (
    EventRecord,
    ExtractedRecord,
    ExtractionJob,
    PlaceRecord,
    SourceEntry,
    statuses_leading_to,
)


class RepositoryError(Exception):
    """Base repository error."""


class RepositoryUnavailableError(RepositoryError):
    """Raised when the database is unavailable or not configured."""


class RepositoryNotFoundError(RepositoryError):
    """Raised when the requested entity does not exist."""


class RepositoryConflictError(RepositoryError):
    """Raised when an operation violates state transition rules."""


class CrawlRepository(Protocol):
    async def close(self) -> None: ...

    async def get_source(self, url: str, crawl_type: str) -> SourceEntry | None: ...

    async def claim_source(self, url: str, crawl_type: str) -> SourceEntry | None: ...

    async def list_sources(
        self,
        *,
        crawl_status: str | None,
        crawl_type: str | None,
        limit: int,
        offset: int,
    ) -> list[SourceEntry]: ...

    async def record_crawl_queued(self, url: str, crawl_type: str, external_job_id: str) -> ExtractionJob: ...

    async def record_crawl_success(
        self,
        url: str,
        crawl_type: str,
        records: Sequence[ExtractedRecord],
        *,
        job_id: str | None = None,
    ) -> dict[str, int]: ...

    async def record_crawl_failure(
        self,
        url: str,
        crawl_type: str,
        error_message: str,
        *,
        job_id: str | None = None,
    ) -> None: ...

    async def list_pending_jobs(self, limit: int) -> list[ExtractionJob]: ...

    async def list_jobs(self, *, status: str | None, limit: int, offset: int) -> list[ExtractionJob]: ...


# Server-side failures, client-side connection failures (closed connection,
# protocol misuse) and socket errors while acquiring a connection.
DATABASE_ERRORS: tuple[type[BaseException], ...] = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError)

SOURCE_COLUMNS = """
  id::text as id,
  source_url,
  source_type,
  crawl_status,
  error_message,
  created_at,
  last_crawled_at
"""

JOB_COLUMNS = """
  id::text as id,
  firecrawl_job_id,
  source_url,
  crawl_type,
  status,
  error_message,
  created_at,
  completed_at
"""


class PostgresRepository:
    def __init__(self, database_url: str | None, min_pool_size: int, max_pool_size: int) -> None:
        self.database_url = database_url
        self.min_pool_size = min_pool_size
        self.max_pool_size = max_pool_size
        self._pool: asyncpg.Pool | None = None

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    async def get_source(self, url: str, crawl_type: str) -> SourceEntry | None:
        pool = await self._get_pool()
        try:
            row = await pool.fetchrow(
                f"""
                select {SOURCE_COLUMNS}
                from crawl_sources
                where source_url = $1 and source_type = $2
                """,
                url,
                crawl_type,
            )
        except DATABASE_ERRORS as exc:
            raise RepositoryError(f"failed to read crawl source: {exc}") from exc
        return self._source_row_to_entry(row) if row else None

    async def claim_source(self, url: str, crawl_type: str) -> SourceEntry | None:
        """Move the source to ``pending`` unless an attempt is already in flight.

        Returns ``None`` when the row exists and is ``pending`` or ``crawling``.
        The status check and the write are one statement, so two racing
        submissions cannot both claim the same source.
        """
        pool = await self._get_pool()
        try:
            row = await pool.fetchrow(
                f"""
                insert into crawl_sources (source_url, source_type, crawl_status, error_message)
                values ($1, $2, 'pending', null)
                on conflict (source_url, source_type) do update
                set
                  crawl_status = 'pending',
                  error_message = null
                where crawl_sources.crawl_status = any($3::text[])
                returning {SOURCE_COLUMNS}
                """,
                url,
                crawl_type,
                list(statuses_leading_to("pending")),
            )
        except DATABASE_ERRORS as exc:
            raise RepositoryError(f"failed to claim crawl source: {exc}") from exc
        return self._source_row_to_entry(row) if row else None

    async def list_sources(
        self,
        *,
        crawl_status: str | None,
        crawl_type: str | None,
        limit: int,
        offset: int,
    ) -> list[SourceEntry]:
        pool = await self._get_pool()
        try:
            rows = await pool.fetch(
                f"""
                select {SOURCE_COLUMNS}
                from crawl_sources
                where ($1::text is null or crawl_status = $1)
                  and ($2::text is null or source_type = $2)
                order by created_at desc
                limit $3
                offset $4
                """,
                crawl_status,
                crawl_type,
                limit,
                offset,
            )
        except DATABASE_ERRORS as exc:
            raise RepositoryError(f"failed to list crawl sources: {exc}") from exc
        return [self._source_row_to_entry(row) for row in rows]

    async def record_crawl_queued(self, url: str, crawl_type: str, external_job_id: str) -> ExtractionJob:
        pool = await self._get_pool()
        try:
            async with pool.acquire() as conn:
                async with conn.transaction():
                    await self._set_source_status(
                        conn,
                        url=url,
                        crawl_type=crawl_type,
                        status="crawling",
                        error_message=None,
                    )
                    row = await conn.fetchrow(
                        f"""
                        insert into crawl_jobs (firecrawl_job_id, source_url, crawl_type, status)
                        values ($1, $2, $3, 'pending')
                        returning {JOB_COLUMNS}
                        """,
                        external_job_id,
                        url,
                        crawl_type,
                    )
                    return self._job_row_to_job(row)
        except DATABASE_ERRORS as exc:
            raise RepositoryError(f"failed to record extraction job: {exc}") from exc

    async def record_crawl_success(
        self,
        url: str,
        crawl_type: str,
        records: Sequence[ExtractedRecord],
        *,
        job_id: str | None = None,
    ) -> dict[str, int]:
        """Insert the records, finish the job and complete the source in one transaction.

        Any failure rolls back every write of the attempt, including rows
        already inserted for the other category.
        """
        events = [record for record in records if isinstance(record, EventRecord)]
        places = [record for record in records if isinstance(record, PlaceRecord)]
        pool = await self._get_pool()
        try:
            async with pool.acquire() as conn:
                async with conn.transaction():
                    if events:
                        await conn.executemany(
                            """
                            insert into events (
                              source_url,
                              title,
                              description,
                              start_time,
                              end_time,
                              location_name,
                              address,
                              website,
                              price,
                              age_range,
                              image_url,
                              tags,
                              approved
                            )
                            values ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12::text[], $13)
                            """,
                            [
                                (
                                    event.source_url,
                                    event.title,
                                    event.description,
                                    event.start_time,
                                    event.end_time,
                                    event.location_name,
                                    event.address,
                                    event.website,
                                    event.price,
                                    event.age_range,
                                    event.image_url,
                                    event.tags,
                                    event.approved,
                                )
                                for event in events
                            ],
                        )
                    if places:
                        await conn.executemany(
                            """
                            insert into places (
                              source_url,
                              name,
                              description,
                              category,
                              address,
                              website,
                              family_friendly,
                              tags,
                              approved
                            )
                            values ($1, $2, $3, $4, $5, $6, $7, $8::text[], $9)
                            """,
                            [
                                (
                                    place.source_url,
                                    place.name,
                                    place.description,
                                    place.category,
                                    place.address,
                                    place.website,
                                    place.family_friendly,
                                    place.tags,
                                    place.approved,
                                )
                                for place in places
                            ],
                        )
                    if job_id is not None:
                        await self._finish_job(conn, job_id=job_id, status="completed", error_message=None)
                    await self._set_source_status(
                        conn,
                        url=url,
                        crawl_type=crawl_type,
                        status="completed",
                        error_message=None,
                    )
        except DATABASE_ERRORS as exc:
            raise RepositoryError(f"failed to store extracted records: {exc}") from exc
        return {"events": len(events), "places": len(places)}

    async def record_crawl_failure(
        self,
        url: str,
        crawl_type: str,
        error_message: str,
        *,
        job_id: str | None = None,
    ) -> None:
        pool = await self._get_pool()
        try:
            async with pool.acquire() as conn:
                async with conn.transaction():
                    if job_id is not None:
                        await self._finish_job(conn, job_id=job_id, status="failed", error_message=error_message)
                    await self._set_source_status(
                        conn,
                        url=url,
                        crawl_type=crawl_type,
                        status="failed",
                        error_message=error_message,
                    )
        except DATABASE_ERRORS as exc:
            raise RepositoryError(f"failed to record crawl failure: {exc}") from exc

    async def list_pending_jobs(self, limit: int) -> list[ExtractionJob]:
        pool = await self._get_pool()
        try:
            rows = await pool.fetch(
                f"""
                select {JOB_COLUMNS}
                from crawl_jobs
                where status = 'pending'
                order by created_at asc
                limit $1
                """,
                max(1, min(limit, 1000)),
            )
        except DATABASE_ERRORS as exc:
            raise RepositoryError(f"failed to list pending extraction jobs: {exc}") from exc
        return [self._job_row_to_job(row) for row in rows]

    async def list_jobs(self, *, status: str | None, limit: int, offset: int) -> list[ExtractionJob]:
        pool = await self._get_pool()
        try:
            rows = await pool.fetch(
                f"""
                select {JOB_COLUMNS}
                from crawl_jobs
                where ($1::text is null or status = $1)
                order by created_at desc
                limit $2
                offset $3
                """,
                status,
                limit,
                offset,
            )
        except DATABASE_ERRORS as exc:
            raise RepositoryError(f"failed to list extraction jobs: {exc}") from exc
        return [self._job_row_to_job(row) for row in rows]

    async def _set_source_status(
        self,
        conn: asyncpg.Connection,
        *,
        url: str,
        crawl_type: str,
        status: str,
        error_message: str | None,
    ) -> None:
        # A missing row means the source was deleted by an admin mid-crawl; the
        # terminal write is then a no-op rather than a resurrection.
        await conn.execute(
            """
            update crawl_sources
            set
              crawl_status = $3,
              error_message = $4,
              last_crawled_at = case when $3::text = 'completed' then now() else last_crawled_at end
            where source_url = $1
              and source_type = $2
              and crawl_status = any($5::text[])
            """,
            url,
            crawl_type,
            status,
            error_message,
            list(statuses_leading_to(status)),
        )

    async def _finish_job(
        self,
        conn: asyncpg.Connection,
        *,
        job_id: str,
        status: str,
        error_message: str | None,
    ) -> None:
        row = await conn.fetchrow(
            """
            update crawl_jobs
            set
              status = $2,
              error_message = $3,
              completed_at = now()
            where id = $1::uuid and status = 'pending'
            returning id::text as id
            """,
            job_id,
            status,
            error_message,
        )
        if not row:
            exists = await conn.fetchval("select 1 from crawl_jobs where id = $1::uuid", job_id)
            if not exists:
                raise RepositoryNotFoundError("extraction job not found")
            raise RepositoryConflictError("extraction job is already terminal")

    async def _get_pool(self) -> asyncpg.Pool:
        if not self.database_url:
            raise RepositoryUnavailableError("FC_DATABASE_URL is required")

        if self._pool is not None:
            return self._pool

        try:
            self._pool = await asyncpg.create_pool(
                dsn=self.database_url,
                min_size=self.min_pool_size,
                max_size=self.max_pool_size,
                command_timeout=15,
            )
            return self._pool
        except Exception as exc:  # pragma: no cover - depends on environment
            raise RepositoryUnavailableError("database unavailable") from exc

    @staticmethod
    def _source_row_to_entry(row: Any) -> SourceEntry:
        return SourceEntry(
            id=row["id"],
            url=row["source_url"],
            crawl_type=row["source_type"],
            crawl_status=row["crawl_status"],
            error_message=row["error_message"],
            created_at=row["created_at"],
            last_crawled_at=row["last_crawled_at"],
        )

    @staticmethod
    def _job_row_to_job(row: Any) -> ExtractionJob:
        return ExtractionJob(
            id=row["id"],
            external_job_id=row["firecrawl_job_id"],
            source_url=row["source_url"],
            crawl_type=row["crawl_type"],
            status=row["status"],
            error_message=row["error_message"],
            created_at=row["created_at"],
            completed_at=row["completed_at"],
        )
