from fastapi import APIRouter

from family_crawl.api.routes import crawl, health, sources

api_router = APIRouter()
api_router.include_router(health.router, tags=["health"])
api_router.include_router(crawl.router, prefix="/crawl", tags=["crawl"])
api_router.include_router(sources.router, prefix="/sources", tags=["sources"])
