from __future__ import annotations

import logging

from opentelemetry import trace

from family_crawl.services.gateway import (
    MISSING_API_KEY_MESSAGE,
    ExtractionError,
    ExtractionHTTPError,
    ExtractionSemanticError,
    ExtractionTransportError,
    FirecrawlGateway,
)
from family_crawl.services.ingestion import normalize, records_from_payload
from family_crawl.services.models import CRAWL_TYPES, ErrorKind, JobHandle, SourceEntry, SubmitOutcome
from family_crawl.services.repository import CrawlRepository, RepositoryError

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class CrawlOrchestrator:
    """Drives one crawl source from submission to a terminal status.

    Holds no state between calls. The gateway's configured mode decides
    whether a submission finishes inline or leaves an extraction job for the
    refresh sweep.
    """

    def __init__(self, repository: CrawlRepository, gateway: FirecrawlGateway) -> None:
        self.repository = repository
        self.gateway = gateway

    async def submit_crawl(self, url: str, crawl_type: str) -> SubmitOutcome:
        if crawl_type not in CRAWL_TYPES:
            raise ValueError(f"unsupported crawl type: {crawl_type!r}")

        with tracer.start_as_current_span("crawl.submit") as span:
            span.set_attribute("crawl.url", url)
            span.set_attribute("crawl.type", crawl_type)

            existing = await self.repository.get_source(url, crawl_type)
            if existing is not None and existing.in_flight:
                logger.info(
                    "crawl rejected url=%s type=%s status=%s",
                    url,
                    crawl_type,
                    existing.crawl_status,
                )
                return SubmitOutcome(status="rejected", source=existing)

            claimed = await self.repository.claim_source(url, crawl_type)
            if claimed is None:
                current = await self.repository.get_source(url, crawl_type)
                logger.info("crawl rejected after losing claim url=%s type=%s", url, crawl_type)
                return SubmitOutcome(status="rejected", source=current)

            if not self.gateway.configured:
                return await self.record_failure(url, crawl_type, "configuration", MISSING_API_KEY_MESSAGE)

            try:
                result = await self.gateway.submit(url, crawl_type)
            except ExtractionError as exc:
                return await self.record_failure(url, crawl_type, "gateway", describe_extraction_error(exc))

            if isinstance(result, JobHandle):
                return await self._queue(url, crawl_type, result)

            return await self.ingest(url, crawl_type, result.payload)

    async def ingest(
        self,
        url: str,
        crawl_type: str,
        payload: dict | None,
        *,
        job_id: str | None = None,
    ) -> SubmitOutcome:
        """Normalize a successful payload and commit it with the completed status."""
        records = normalize(records_from_payload(payload, crawl_type), crawl_type, url)
        try:
            inserted = await self.repository.record_crawl_success(url, crawl_type, records, job_id=job_id)
        except RepositoryError as exc:
            logger.exception("storing extracted records failed url=%s type=%s", url, crawl_type)
            return await self.record_failure(
                url,
                crawl_type,
                "store",
                f"failed to store extracted records: {exc}",
                job_id=job_id,
            )

        logger.info(
            "crawl completed url=%s type=%s events=%s places=%s",
            url,
            crawl_type,
            inserted["events"],
            inserted["places"],
        )
        return SubmitOutcome(
            status="completed",
            source=await self.repository.get_source(url, crawl_type),
            inserted=inserted,
        )

    async def _queue(self, url: str, crawl_type: str, handle: JobHandle) -> SubmitOutcome:
        try:
            job = await self.repository.record_crawl_queued(url, crawl_type, handle.external_job_id)
        except RepositoryError as exc:
            logger.exception("recording extraction job failed url=%s type=%s", url, crawl_type)
            return await self.record_failure(url, crawl_type, "store", f"failed to record extraction job: {exc}")

        logger.info(
            "crawl queued url=%s type=%s external_job_id=%s job_id=%s",
            url,
            crawl_type,
            handle.external_job_id,
            job.id,
        )
        return SubmitOutcome(
            status="queued",
            source=await self.repository.get_source(url, crawl_type),
            external_job_id=handle.external_job_id,
        )

    async def record_failure(
        self,
        url: str,
        crawl_type: str,
        error_kind: ErrorKind,
        error_message: str,
        *,
        job_id: str | None = None,
    ) -> SubmitOutcome:
        # A failed source always carries a reason.
        error_message = error_message or f"{error_kind} failure"
        logger.warning(
            "crawl failed url=%s type=%s kind=%s error=%s",
            url,
            crawl_type,
            error_kind,
            error_message,
        )
        # Raises if the store cannot record the failure either; there is no
        # definite state left to report in that case.
        await self.repository.record_crawl_failure(url, crawl_type, error_message, job_id=job_id)
        source: SourceEntry | None = await self.repository.get_source(url, crawl_type)
        return SubmitOutcome(
            status="failed",
            source=source,
            error_kind=error_kind,
            error_message=error_message,
        )


def describe_extraction_error(exc: ExtractionError) -> str:
    if isinstance(exc, ExtractionSemanticError):
        return exc.reason
    if isinstance(exc, ExtractionHTTPError):
        return f"Extraction request failed: HTTP {exc.status_code}"
    if isinstance(exc, ExtractionTransportError):
        return f"Extraction transport failure: {exc}"
    return str(exc)
