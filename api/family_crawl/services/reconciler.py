from __future__ import annotations

import asyncio
import logging

from opentelemetry import trace

from family_crawl.services.gateway import MISSING_API_KEY_MESSAGE, ExtractionConfigurationError, ExtractionError
from family_crawl.services.models import ExtractionJob, JobHandle, SweepSummary
from family_crawl.services.orchestrator import CrawlOrchestrator, describe_extraction_error
from family_crawl.services.repository import RepositoryError

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class RefreshReconciler:
    """Advances outstanding extraction jobs to a terminal status.

    Only ``pending`` jobs are fetched, so a sweep with nothing new to report
    changes nothing. Each job touches its own job/source pair, which makes
    ``concurrency > 1`` safe.
    """

    def __init__(self, orchestrator: CrawlOrchestrator, *, batch_size: int = 100, concurrency: int = 1) -> None:
        self.orchestrator = orchestrator
        self.repository = orchestrator.repository
        self.gateway = orchestrator.gateway
        self.batch_size = max(1, batch_size)
        self.concurrency = max(1, concurrency)

    async def run_sweep(self) -> SweepSummary:
        if not self.gateway.configured:
            raise ExtractionConfigurationError(MISSING_API_KEY_MESSAGE)

        summary = SweepSummary()
        with tracer.start_as_current_span("crawl.refresh_sweep") as span:
            jobs = await self.repository.list_pending_jobs(self.batch_size)
            span.set_attribute("crawl.pending_jobs", len(jobs))

            if self.concurrency == 1:
                for job in jobs:
                    await self._process_job(job, summary)
            else:
                semaphore = asyncio.Semaphore(self.concurrency)

                async def bounded(job: ExtractionJob) -> None:
                    async with semaphore:
                        await self._process_job(job, summary)

                await asyncio.gather(*(bounded(job) for job in jobs))

        logger.info(
            "refresh sweep processed=%s completed=%s failed=%s pending=%s events=%s places=%s",
            summary.processed,
            summary.completed,
            summary.failed,
            summary.still_pending,
            summary.inserted_by_category["events"],
            summary.inserted_by_category["places"],
        )
        return summary

    async def _process_job(self, job: ExtractionJob, summary: SweepSummary) -> None:
        summary.processed += 1
        with tracer.start_as_current_span("crawl.refresh_job") as span:
            span.set_attribute("crawl.job_id", job.id)
            span.set_attribute("crawl.external_job_id", job.external_job_id)
            try:
                await self._advance(job, summary)
            except RepositoryError:
                # Recording the outcome itself failed; the job stays pending
                # for the next sweep.
                summary.failed += 1
                logger.exception("refresh job bookkeeping failed job_id=%s", job.id)

    async def _advance(self, job: ExtractionJob, summary: SweepSummary) -> None:
        try:
            poll = await self.gateway.poll_status(JobHandle(external_job_id=job.external_job_id))
        except ExtractionError as exc:
            await self.orchestrator.record_failure(
                job.source_url,
                job.crawl_type,
                "gateway",
                describe_extraction_error(exc),
                job_id=job.id,
            )
            summary.failed += 1
            return

        if poll.status == "processing":
            summary.still_pending += 1
            return

        if poll.status == "failed":
            await self.orchestrator.record_failure(
                job.source_url,
                job.crawl_type,
                "gateway",
                poll.error or "extraction job failed",
                job_id=job.id,
            )
            summary.failed += 1
            return

        outcome = await self.orchestrator.ingest(job.source_url, job.crawl_type, poll.payload, job_id=job.id)
        if outcome.status == "completed":
            summary.completed += 1
            for category, count in outcome.inserted.items():
                summary.inserted_by_category[category] = summary.inserted_by_category.get(category, 0) + count
        else:
            summary.failed += 1
