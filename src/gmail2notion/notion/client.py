"""Async Notion API client."""

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from typing import Any

import httpx

from gmail2notion.exceptions import NotionAPIError, RateLimitError

logger = logging.getLogger(__name__)

NOTION_API_VERSION = "2022-06-28"
NOTION_BASE_URL = "https://api.notion.com/v1"


class NotionClient:
    """Async client for the Notion endpoints gmail2notion uses."""

    def __init__(
        self,
        token: str,
        rate_limit_delay: float = 0.35,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.token = token
        self.rate_limit_delay = rate_limit_delay
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._last_request_time: float = 0

    def _get_headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.token}",
            "Notion-Version": NOTION_API_VERSION,
            "Content-Type": "application/json",
        }

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=NOTION_BASE_URL,
                headers=self._get_headers(),
                timeout=30.0,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()

    async def _rate_limit(self) -> None:
        """Keep at least ``rate_limit_delay`` seconds between requests."""
        elapsed = time.monotonic() - self._last_request_time
        if elapsed < self.rate_limit_delay:
            await asyncio.sleep(self.rate_limit_delay - elapsed)
        self._last_request_time = time.monotonic()

    async def _request(
        self,
        method: str,
        endpoint: str,
        json: dict[str, Any] | None = None,
        retries: int = 3,
    ) -> dict[str, Any]:
        """Make an API request, retrying rate limits and transport errors."""
        client = await self._get_client()

        for attempt in range(retries):
            await self._rate_limit()
            try:
                response = await client.request(method, endpoint, json=json)
            except httpx.HTTPError as e:
                if attempt < retries - 1:
                    logger.debug("%s %s failed (%s), retrying", method, endpoint, e)
                    await asyncio.sleep(2**attempt)
                    continue
                raise NotionAPIError(0, str(e)) from e

            if response.status_code == 429:
                retry_after = int(response.headers.get("retry-after", "1"))
                if attempt < retries - 1:
                    logger.debug("Rate limited on %s %s, waiting %ss", method, endpoint, retry_after)
                    await asyncio.sleep(retry_after)
                    continue
                raise RateLimitError(retry_after)

            if response.status_code >= 400:
                try:
                    message = response.json().get("message", "Unknown error")
                except ValueError:
                    message = response.text or "Unknown error"
                raise NotionAPIError(response.status_code, message)

            return response.json()

        raise NotionAPIError(0, "Max retries exceeded")

    async def get_database(self, database_id: str) -> dict[str, Any]:
        """Get database metadata including schema."""
        return await self._request("GET", f"/databases/{database_id}")

    async def update_database(
        self,
        database_id: str,
        properties: dict[str, Any],
    ) -> dict[str, Any]:
        """Update database schema (add properties)."""
        return await self._request(
            "PATCH", f"/databases/{database_id}", json={"properties": properties}
        )

    async def query_database(
        self,
        database_id: str,
        start_cursor: str | None = None,
        page_size: int = 100,
        filter: dict[str, Any] | None = None,
        sorts: list[dict[str, Any]] | None = None,
    ) -> dict[str, Any]:
        """Query one page of database results."""
        payload: dict[str, Any] = {"page_size": page_size}
        if start_cursor:
            payload["start_cursor"] = start_cursor
        if filter:
            payload["filter"] = filter
        if sorts:
            payload["sorts"] = sorts

        return await self._request("POST", f"/databases/{database_id}/query", json=payload)

    async def query_database_all(
        self,
        database_id: str,
        filter: dict[str, Any] | None = None,
    ) -> AsyncIterator[dict[str, Any]]:
        """Query all pages from a database, handling pagination."""
        start_cursor = None
        while True:
            result = await self.query_database(database_id, start_cursor, filter=filter)
            for page in result.get("results", []):
                yield page

            if not result.get("has_more"):
                break
            start_cursor = result.get("next_cursor")

    async def find_page_by_text(
        self,
        database_id: str,
        property_name: str,
        value: str,
    ) -> dict[str, Any] | None:
        """First page whose rich text property equals ``value``."""
        result = await self.query_database(
            database_id,
            page_size=1,
            filter={"property": property_name, "rich_text": {"equals": value}},
        )
        pages = result.get("results", [])
        return pages[0] if pages else None

    async def create_page(
        self,
        database_id: str,
        properties: dict[str, Any],
    ) -> dict[str, Any]:
        """Create a new page in a database."""
        payload = {
            "parent": {"database_id": database_id},
            "properties": properties,
        }
        return await self._request("POST", "/pages", json=payload)
