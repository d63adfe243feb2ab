from __future__ import annotations

import logging
from typing import Any

import httpx

from family_crawl.services.models import JobHandle, PollResult, SyncResult

logger = logging.getLogger(__name__)

MISSING_API_KEY_MESSAGE = "Missing FIRECRAWL_API_KEY"
ERROR_BODY_EXCERPT_CHARS = 300

_STRING = {"type": "string"}
_STRING_LIST = {"type": "array", "items": {"type": "string"}}

EXTRACTION_SCHEMAS: dict[str, dict[str, Any]] = {
    "events": {
        "type": "object",
        "properties": {
            "events": {
                "type": "array",
                "items": {
                    "type": "object",
                    "properties": {
                        "title": _STRING,
                        "description": _STRING,
                        "start_time": _STRING,
                        "end_time": _STRING,
                        "location_name": _STRING,
                        "address": _STRING,
                        "website": _STRING,
                        "price": _STRING,
                        "age_range": _STRING,
                        "image_url": _STRING,
                        "tags": _STRING_LIST,
                    },
                },
            },
        },
    },
    "places": {
        "type": "object",
        "properties": {
            "places": {
                "type": "array",
                "items": {
                    "type": "object",
                    "properties": {
                        "name": _STRING,
                        "description": _STRING,
                        "category": _STRING,
                        "address": _STRING,
                        "website": _STRING,
                        "family_friendly": {"type": "boolean"},
                        "tags": _STRING_LIST,
                    },
                },
            },
        },
    },
}


class ExtractionError(Exception):
    """Base extraction gateway error."""


class ExtractionConfigurationError(ExtractionError):
    """Raised when the gateway has no credential to call the service with."""


class ExtractionTransportError(ExtractionError):
    """Raised when no response arrived (network failure or timeout)."""


class ExtractionHTTPError(ExtractionError):
    """Raised when the service answered with a non-success HTTP status."""

    def __init__(self, status_code: int, body: str) -> None:
        self.status_code = status_code
        self.body = body
        super().__init__(f"extraction service returned HTTP {status_code}")


class ExtractionSemanticError(ExtractionError):
    """Raised when a well-formed response reports its own failure."""

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(reason)


class FirecrawlGateway:
    def __init__(
        self,
        *,
        api_key: str | None,
        mode: str = "async",
        sync_endpoint: str = "https://api.firecrawl.dev/v1/extract",
        async_endpoint: str = "https://api.firecrawl.dev/v2/extract",
        timeout_seconds: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        if mode not in {"sync", "async"}:
            raise ValueError(f"unsupported extraction mode: {mode!r}")
        self.api_key = api_key or None
        self.mode = mode
        self.sync_endpoint = sync_endpoint.rstrip("/")
        self.async_endpoint = async_endpoint.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self._client = client

    @property
    def configured(self) -> bool:
        return self.api_key is not None

    async def submit(self, url: str, crawl_type: str) -> SyncResult | JobHandle:
        schema = EXTRACTION_SCHEMAS[crawl_type]
        if self.mode == "sync":
            body = await self._request("POST", self.sync_endpoint, json={"url": url, "schema": schema})
            _raise_for_provider_failure(body, default_reason="extraction failed")
            data = body.get("data")
            if not isinstance(data, dict):
                raise ExtractionSemanticError("empty extraction response")
            return SyncResult(payload=data)

        body = await self._request("POST", self.async_endpoint, json={"urls": [url], "schema": schema})
        _raise_for_provider_failure(body, default_reason="extraction request rejected")
        job_id = body.get("id")
        if not isinstance(job_id, str) or not job_id:
            raise ExtractionSemanticError("extraction service did not return a job id")
        return JobHandle(external_job_id=job_id)

    async def poll_status(self, handle: JobHandle) -> PollResult:
        body = await self._request("GET", f"{self.async_endpoint}/{handle.external_job_id}")
        status = body.get("status")
        if status == "processing":
            return PollResult(status="processing")
        if status == "completed":
            data = body.get("data")
            return PollResult(status="completed", payload=data if isinstance(data, dict) else {})
        if status == "failed":
            error = body.get("error")
            reason = error if isinstance(error, str) and error else "extraction job failed"
            return PollResult(status="failed", error=reason)

        _raise_for_provider_failure(body, default_reason="extraction status check failed")
        raise ExtractionSemanticError(f"unexpected extraction job status: {status!r}")

    async def _request(self, method: str, url: str, *, json: dict[str, Any] | None = None) -> dict[str, Any]:
        if not self.configured:
            raise ExtractionConfigurationError(MISSING_API_KEY_MESSAGE)

        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}",
        }
        try:
            if self._client is not None:
                response = await self._client.request(method, url, json=json, headers=headers)
            else:
                async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                    response = await client.request(method, url, json=json, headers=headers)
        except httpx.TimeoutException as exc:
            raise ExtractionTransportError(f"extraction service timed out after {self.timeout_seconds:g}s") from exc
        except httpx.HTTPError as exc:
            raise ExtractionTransportError(f"extraction service unreachable: {exc}") from exc

        if not response.is_success:
            body_excerpt = response.text[:ERROR_BODY_EXCERPT_CHARS]
            logger.warning(
                "extraction request failed method=%s url=%s status=%s body=%s",
                method,
                url,
                response.status_code,
                body_excerpt,
            )
            raise ExtractionHTTPError(response.status_code, body_excerpt)

        try:
            body = response.json()
        except ValueError as exc:
            raise ExtractionSemanticError("extraction service returned a non-JSON body") from exc
        if not isinstance(body, dict):
            raise ExtractionSemanticError("extraction service returned an unexpected body")
        return body


def _raise_for_provider_failure(body: dict[str, Any], *, default_reason: str) -> None:
    if body.get("success") is False:
        error = body.get("error")
        raise ExtractionSemanticError(error if isinstance(error, str) and error else default_reason)

