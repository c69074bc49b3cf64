"""HTTP fetcher for the project/session listing."""

import logging
from typing import Optional

import httpx

from ..transport import SnapshotFetcher

logger = logging.getLogger(__name__)


class HttpSnapshotFetcher(SnapshotFetcher):
    """Fetches ``GET /api/projects`` from the backend.

    Raises ``httpx.HTTPError`` on transport or status failures; callers
    decide whether a failed refresh matters.
    """

    def __init__(self, base_url: str, client: Optional[httpx.AsyncClient] = None, timeout: float = 10.0):
        self.base_url = base_url
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)

    async def fetch_listing(self) -> list[dict]:
        response = await self._client.get("/api/projects")
        response.raise_for_status()
        data = response.json()
        # Some backends wrap the list as {"projects": [...], "total": n}.
        if isinstance(data, dict):
            data = data.get("projects", [])
        logger.debug("Fetched listing with %d projects", len(data) if isinstance(data, list) else 0)
        return data

    async def aclose(self) -> None:
        await self._client.aclose()
