from fastapi import APIRouter, Depends

from family_crawl.api.deps import get_gateway
from family_crawl.core.config import Settings, get_settings
from family_crawl.services.gateway import FirecrawlGateway

router = APIRouter()


@router.get("/")
async def root(settings: Settings = Depends(get_settings)) -> dict[str, str]:
    return {"status": "ok", "service": settings.app_name}


@router.get("/healthz")
async def healthz() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/readyz")
async def readyz(gateway: FirecrawlGateway = Depends(get_gateway)) -> dict[str, str | bool]:
    return {
        "status": "ok" if gateway.configured else "degraded",
        "extraction_configured": gateway.configured,
        "extraction_mode": gateway.mode,
    }
