from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal

CrawlType = Literal["events", "places"]
CrawlStatus = Literal["idle", "pending", "crawling", "completed", "failed"]
JobStatus = Literal["pending", "completed", "failed"]
PollStatus = Literal["processing", "completed", "failed"]
ErrorKind = Literal["configuration", "gateway", "store"]

CRAWL_TYPES: tuple[str, ...] = ("events", "places")
IN_FLIGHT_STATUSES = frozenset({"pending", "crawling"})

# pending may skip crawling: synchronous extraction and pre-gateway failures
# go straight to a terminal status.
ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    "idle": frozenset({"pending"}),
    "pending": frozenset({"crawling", "completed", "failed"}),
    "crawling": frozenset({"completed", "failed"}),
    "completed": frozenset({"pending"}),
    "failed": frozenset({"pending"}),
}


def can_transition(current: str, target: str) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def statuses_leading_to(target: str) -> tuple[str, ...]:
    """Statuses a source may hold immediately before moving to ``target``, sorted."""
    return tuple(sorted(status for status, targets in ALLOWED_TRANSITIONS.items() if target in targets))


@dataclass(slots=True)
class SourceEntry:
    id: str
    url: str
    crawl_type: str
    crawl_status: str
    error_message: str | None
    created_at: datetime
    last_crawled_at: datetime | None = None

    @property
    def in_flight(self) -> bool:
        return self.crawl_status in IN_FLIGHT_STATUSES


@dataclass(slots=True)
class ExtractionJob:
    id: str
    external_job_id: str
    source_url: str
    crawl_type: str
    status: str
    error_message: str | None
    created_at: datetime
    completed_at: datetime | None = None


@dataclass(slots=True)
class EventRecord:
    source_url: str
    title: str
    description: str
    start_time: datetime | None
    end_time: datetime | None
    location_name: str
    address: str
    website: str
    price: str
    age_range: str
    image_url: str
    tags: list[str] = field(default_factory=list)
    approved: bool = False
    created_at: datetime | None = None
    kind: Literal["events"] = "events"


@dataclass(slots=True)
class PlaceRecord:
    source_url: str
    name: str
    description: str
    category: str
    address: str
    website: str
    family_friendly: bool
    tags: list[str] = field(default_factory=list)
    approved: bool = False
    created_at: datetime | None = None
    kind: Literal["places"] = "places"


ExtractedRecord = EventRecord | PlaceRecord


@dataclass(slots=True)
class SyncResult:
    """Extraction finished inside the submit call."""

    payload: dict[str, Any]


@dataclass(slots=True)
class JobHandle:
    """Extraction accepted for later polling."""

    external_job_id: str


@dataclass(slots=True)
class PollResult:
    status: PollStatus
    payload: dict[str, Any] | None = None
    error: str | None = None


@dataclass(slots=True)
class SubmitOutcome:
    status: Literal["rejected", "queued", "completed", "failed"]
    source: SourceEntry | None
    external_job_id: str | None = None
    inserted: dict[str, int] = field(default_factory=lambda: {"events": 0, "places": 0})
    error_kind: ErrorKind | None = None
    error_message: str | None = None


@dataclass(slots=True)
class SweepSummary:
    processed: int = 0
    completed: int = 0
    failed: int = 0
    still_pending: int = 0
    inserted_by_category: dict[str, int] = field(default_factory=lambda: {"events": 0, "places": 0})
