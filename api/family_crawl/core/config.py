from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "family-crawl-api"
    environment: str = "dev"
    store_backend: Literal["postgres", "memory"] = "postgres"
    database_url: str | None = None
    database_pool_min_size: int = 1
    database_pool_max_size: int = 10
    firecrawl_api_key: str | None = None
    firecrawl_extract_url_sync: str = "https://api.firecrawl.dev/v1/extract"
    firecrawl_extract_url_async: str = "https://api.firecrawl.dev/v2/extract"
    extraction_mode: Literal["sync", "async"] = "async"
    extraction_timeout_seconds: float = 30.0
    refresh_batch_size: int = 100
    refresh_concurrency: int = 1
    allowed_origins: str = "http://localhost:5173"
    otel_enabled: bool = True
    otel_service_name: str = "family-crawl-api"
    otel_exporter_otlp_endpoint: str | None = None
    otel_exporter_otlp_headers: str | None = None
    otel_trace_sample_ratio: float = 1.0
    otel_log_correlation: bool = True

    model_config = SettingsConfigDict(env_prefix="FC_", extra="ignore")

    @property
    def allowed_origin_list(self) -> list[str]:
        return [origin.strip() for origin in self.allowed_origins.split(",") if origin.strip()]


@lru_cache
def get_settings() -> Settings:
    return Settings()
