from __future__ import annotations

from typing import Any

import httpx


class RefreshClient:
    """Triggers refresh sweeps on the crawl API."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout_seconds: float = 120.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self._client = client

    async def refresh(self) -> dict[str, Any]:
        url = f"{self.base_url}/crawl/refresh"
        if self._client is not None:
            response = await self._client.post(url)
        else:
            async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                response = await client.post(url)
        response.raise_for_status()
        return response.json()
