from __future__ import annotations

from collections.abc import Sequence
from dataclasses import replace
from datetime import datetime, timezone
from uuid import uuid4

from family_crawl.services.models import (
    EventRecord,
    ExtractedRecord,
    ExtractionJob,
    PlaceRecord,
    SourceEntry,
    can_transition,
)
from family_crawl.services.repository import RepositoryConflictError, RepositoryNotFoundError


class InMemoryRepository:
    """Process-local store for development and tests.

    Methods never await between reading and writing a row, so each call is
    atomic with respect to other coroutines on the same event loop.
    """

    def __init__(self) -> None:
        self.sources: dict[tuple[str, str], SourceEntry] = {}
        self.jobs: dict[str, ExtractionJob] = {}
        self.events: list[EventRecord] = []
        self.places: list[PlaceRecord] = []

    async def close(self) -> None:
        return None

    async def get_source(self, url: str, crawl_type: str) -> SourceEntry | None:
        source = self.sources.get((url, crawl_type))
        return replace(source) if source else None

    async def claim_source(self, url: str, crawl_type: str) -> SourceEntry | None:
        key = (url, crawl_type)
        source = self.sources.get(key)
        if source is None:
            source = SourceEntry(
                id=str(uuid4()),
                url=url,
                crawl_type=crawl_type,
                crawl_status="pending",
                error_message=None,
                created_at=_now(),
            )
            self.sources[key] = source
            return replace(source)
        if not can_transition(source.crawl_status, "pending"):
            return None
        source.crawl_status = "pending"
        source.error_message = None
        return replace(source)

    async def list_sources(
        self,
        *,
        crawl_status: str | None,
        crawl_type: str | None,
        limit: int,
        offset: int,
    ) -> list[SourceEntry]:
        rows = sorted(self.sources.values(), key=lambda source: source.created_at, reverse=True)
        if crawl_status:
            rows = [row for row in rows if row.crawl_status == crawl_status]
        if crawl_type:
            rows = [row for row in rows if row.crawl_type == crawl_type]
        return [replace(row) for row in rows[offset : offset + limit]]

    async def record_crawl_queued(self, url: str, crawl_type: str, external_job_id: str) -> ExtractionJob:
        self._set_source_status(url, crawl_type, status="crawling", error_message=None)
        job = ExtractionJob(
            id=str(uuid4()),
            external_job_id=external_job_id,
            source_url=url,
            crawl_type=crawl_type,
            status="pending",
            error_message=None,
            created_at=_now(),
        )
        self.jobs[job.id] = job
        return replace(job)

    async def record_crawl_success(
        self,
        url: str,
        crawl_type: str,
        records: Sequence[ExtractedRecord],
        *,
        job_id: str | None = None,
    ) -> dict[str, int]:
        if job_id is not None:
            self._require_pending_job(job_id)

        created_at = _now()
        events = [replace(record, created_at=created_at) for record in records if isinstance(record, EventRecord)]
        places = [replace(record, created_at=created_at) for record in records if isinstance(record, PlaceRecord)]
        self.events.extend(events)
        self.places.extend(places)

        if job_id is not None:
            self._finish_job(job_id, status="completed", error_message=None)
        self._set_source_status(
            url,
            crawl_type,
            status="completed",
            error_message=None,
        )
        return {"events": len(events), "places": len(places)}

    async def record_crawl_failure(
        self,
        url: str,
        crawl_type: str,
        error_message: str,
        *,
        job_id: str | None = None,
    ) -> None:
        if job_id is not None:
            self._require_pending_job(job_id)
            self._finish_job(job_id, status="failed", error_message=error_message)
        self._set_source_status(
            url,
            crawl_type,
            status="failed",
            error_message=error_message,
        )

    async def list_pending_jobs(self, limit: int) -> list[ExtractionJob]:
        pending = [job for job in self.jobs.values() if job.status == "pending"]
        pending.sort(key=lambda job: job.created_at)
        return [replace(job) for job in pending[: max(1, min(limit, 1000))]]

    async def list_jobs(self, *, status: str | None, limit: int, offset: int) -> list[ExtractionJob]:
        rows = sorted(self.jobs.values(), key=lambda job: job.created_at, reverse=True)
        if status:
            rows = [row for row in rows if row.status == status]
        return [replace(row) for row in rows[offset : offset + limit]]

    def _set_source_status(
        self,
        url: str,
        crawl_type: str,
        *,
        status: str,
        error_message: str | None,
    ) -> None:
        source = self.sources.get((url, crawl_type))
        if source is None or not can_transition(source.crawl_status, status):
            return
        source.crawl_status = status
        source.error_message = error_message
        if status == "completed":
            source.last_crawled_at = _now()

    def _require_pending_job(self, job_id: str) -> ExtractionJob:
        job = self.jobs.get(job_id)
        if job is None:
            raise RepositoryNotFoundError("extraction job not found")
        if job.status != "pending":
            raise RepositoryConflictError("extraction job is already terminal")
        return job

    def _finish_job(self, job_id: str, *, status: str, error_message: str | None) -> None:
        job = self._require_pending_job(job_id)
        job.status = status
        job.error_message = error_message
        job.completed_at = _now()


def _now() -> datetime:
    return datetime.now(timezone.utc)
