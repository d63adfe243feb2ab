from dataclasses import asdict

from fastapi import APIRouter, Depends, HTTPException, Query, status

from family_crawl.api.deps import get_repository
from family_crawl.schemas.crawl import CrawlStatusField, CrawlTypeField, SourceOut
from family_crawl.services.repository import RepositoryError

router = APIRouter()


@router.get("", response_model=list[SourceOut])
async def list_sources(
    repository=Depends(get_repository),
    crawl_status: CrawlStatusField | None = Query(default=None),
    crawl_type: CrawlTypeField | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
) -> list[SourceOut]:
    try:
        rows = await repository.list_sources(
            crawl_status=crawl_status,
            crawl_type=crawl_type,
            limit=limit,
            offset=offset,
        )
    except RepositoryError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc

    return [SourceOut(**asdict(row)) for row in rows]
