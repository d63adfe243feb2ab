from datetime import datetime
from typing import Literal
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, field_validator

CrawlTypeField = Literal["events", "places"]
CrawlStatusField = Literal["idle", "pending", "crawling", "completed", "failed"]
JobStatusField = Literal["pending", "completed", "failed"]


class CrawlRequest(BaseModel):
    url: str
    type: CrawlTypeField

    @field_validator("url")
    @classmethod
    def _validate_url(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("url must be a non-empty string")
        parsed = urlparse(stripped)
        if parsed.scheme.lower() not in {"http", "https"} or not parsed.netloc:
            raise ValueError("url must be an absolute http(s) URL")
        return stripped


class CrawlCompletedOut(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool
    inserted_events: int = Field(alias="insertedEvents")
    inserted_places: int = Field(alias="insertedPlaces")


class CrawlQueuedOut(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    queued: bool
    job_id: str = Field(alias="jobId")


class RefreshOut(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    processed: int
    completed: int
    failed: int
    pending: int
    inserted_events: int = Field(alias="insertedEvents")
    inserted_places: int = Field(alias="insertedPlaces")


class SourceOut(BaseModel):
    id: str
    url: str
    crawl_type: CrawlTypeField
    crawl_status: CrawlStatusField
    error_message: str | None = None
    created_at: datetime
    last_crawled_at: datetime | None = None


class ExtractionJobOut(BaseModel):
    id: str
    external_job_id: str
    source_url: str
    crawl_type: CrawlTypeField
    status: JobStatusField
    error_message: str | None = None
    created_at: datetime
    completed_at: datetime | None = None
