from dataclasses import asdict

from fastapi import APIRouter, Depends, HTTPException, Query, status

from family_crawl.api.deps import get_orchestrator, get_reconciler, get_repository
from family_crawl.schemas.crawl import (
    CrawlCompletedOut,
    CrawlQueuedOut,
    CrawlRequest,
    ExtractionJobOut,
    JobStatusField,
    RefreshOut,
)
from family_crawl.services.gateway import ExtractionConfigurationError
from family_crawl.services.orchestrator import CrawlOrchestrator
from family_crawl.services.reconciler import RefreshReconciler
from family_crawl.services.repository import RepositoryError

router = APIRouter()

FAILURE_STATUS_CODES = {
    "configuration": status.HTTP_500_INTERNAL_SERVER_ERROR,
    "gateway": status.HTTP_502_BAD_GATEWAY,
    "store": status.HTTP_500_INTERNAL_SERVER_ERROR,
}


@router.post("", response_model=CrawlCompletedOut | CrawlQueuedOut)
async def submit_crawl(
    payload: CrawlRequest,
    orchestrator: CrawlOrchestrator = Depends(get_orchestrator),
) -> CrawlCompletedOut | CrawlQueuedOut:
    try:
        outcome = await orchestrator.submit_crawl(payload.url, payload.type)
    except RepositoryError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc

    if outcome.status == "rejected":
        current_status = outcome.source.crawl_status if outcome.source else "unknown"
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"crawl already in progress (status={current_status})",
        )
    if outcome.status == "failed":
        raise HTTPException(
            status_code=FAILURE_STATUS_CODES.get(outcome.error_kind or "", status.HTTP_500_INTERNAL_SERVER_ERROR),
            detail=outcome.error_message,
        )
    if outcome.status == "queued":
        return CrawlQueuedOut(queued=True, job_id=outcome.external_job_id or "")

    return CrawlCompletedOut(
        success=True,
        inserted_events=outcome.inserted.get("events", 0),
        inserted_places=outcome.inserted.get("places", 0),
    )


@router.api_route("/refresh", methods=["GET", "POST"], response_model=RefreshOut)
async def refresh_jobs(reconciler: RefreshReconciler = Depends(get_reconciler)) -> RefreshOut:
    try:
        summary = await reconciler.run_sweep()
    except ExtractionConfigurationError as exc:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc)) from exc
    except RepositoryError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc

    return RefreshOut(
        processed=summary.processed,
        completed=summary.completed,
        failed=summary.failed,
        pending=summary.still_pending,
        inserted_events=summary.inserted_by_category.get("events", 0),
        inserted_places=summary.inserted_by_category.get("places", 0),
    )


@router.get("/jobs", response_model=list[ExtractionJobOut])
async def list_jobs(
    repository=Depends(get_repository),
    job_status: JobStatusField | None = Query(default=None, alias="status"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
) -> list[ExtractionJobOut]:
    try:
        jobs = await repository.list_jobs(status=job_status, limit=limit, offset=offset)
    except RepositoryError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc

    return [ExtractionJobOut(**asdict(job)) for job in jobs]
