"""Normalization of loosely-typed extraction payloads into typed records.

Everything here is pure: no network, no store, no clock. The same input
always produces the same records field for field.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any

from family_crawl.services.models import EventRecord, ExtractedRecord, PlaceRecord

LOCAL_TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M"


def normalize(raw_records: Any, category: str, source_url: str) -> list[ExtractedRecord]:
    if category not in ("events", "places"):
        raise ValueError(f"unsupported crawl type: {category!r}")
    if not isinstance(raw_records, list):
        return []

    mapper = _map_event if category == "events" else _map_place
    return [mapper(raw, source_url) for raw in raw_records if isinstance(raw, Mapping)]


def records_from_payload(payload: Any, category: str) -> list[Any]:
    """Pull the per-category list out of a provider ``data`` object."""
    if not isinstance(payload, Mapping):
        return []
    items = payload.get(category)
    return items if isinstance(items, list) else []


def _map_event(raw: Mapping[str, Any], source_url: str) -> EventRecord:
    return EventRecord(
        source_url=source_url,
        title=_as_text(raw.get("title")),
        description=_as_text(raw.get("description")),
        start_time=_parse_timestamp(raw.get("start_time")),
        end_time=_parse_timestamp(raw.get("end_time")),
        location_name=_as_text(raw.get("location_name")),
        address=_as_text(raw.get("address")),
        website=_as_text(raw.get("website")),
        price=_as_text(raw.get("price")),
        age_range=_as_text(raw.get("age_range")),
        image_url=_as_text(raw.get("image_url")),
        tags=_as_text_list(raw.get("tags")),
        approved=False,
    )


def _map_place(raw: Mapping[str, Any], source_url: str) -> PlaceRecord:
    return PlaceRecord(
        source_url=source_url,
        name=_as_text(raw.get("name")),
        description=_as_text(raw.get("description")),
        category=_as_text(raw.get("category")),
        address=_as_text(raw.get("address")),
        website=_as_text(raw.get("website")),
        family_friendly=bool(raw.get("family_friendly")),
        tags=_as_text_list(raw.get("tags")),
        approved=False,
    )


def _as_text(value: Any) -> str:
    return value if isinstance(value, str) else ""


def _as_text_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(item) for item in value]


def _parse_timestamp(value: Any) -> datetime | None:
    if not isinstance(value, str):
        return None
    raw = value.strip()
    if not raw:
        return None

    if "T" in raw:
        try:
            parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        try:
            parsed = datetime.strptime(raw, LOCAL_TIMESTAMP_FORMAT)
        except ValueError:
            return None

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed
