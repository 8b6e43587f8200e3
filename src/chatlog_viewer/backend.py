"""Client for the log backend HTTP API."""

from typing import List, Optional
from urllib.parse import quote

import httpx

from .records import MessageRecord


class BackendError(Exception):
    """Raised when a backend request fails or returns unusable data."""

    pass


def parse_records(data) -> List[MessageRecord]:
    """Parse a JSON list of message records.

    Records that cannot be parsed are skipped so that one bad message does
    not hide the rest of the day.
    """
    if not isinstance(data, list):
        raise BackendError("Expected a list of messages")
    records = []
    for item in data:
        try:
            records.append(MessageRecord.from_json(item))
        except ValueError as e:
            print(f"Skipping malformed message: {e}")
    return records


class HttpBackend:
    """Fetch dates, logs and search results from a remote backend.

    ``base_url`` is the prefix the three endpoints live under, for example
    ``http://localhost:3030/api``.
    """

    def __init__(
        self,
        base_url: str,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
    ):
        self.base_url = base_url.rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def _get_json(self, path: str, params: Optional[dict] = None):
        try:
            response = await self._client.get(f"{self.base_url}{path}", params=params)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise BackendError(
                f"Request failed: {e.response.status_code} {e.response.reason_phrase}"
            ) from e
        except httpx.HTTPError as e:
            raise BackendError(f"Request failed: {e}") from e
        try:
            return response.json()
        except ValueError as e:
            raise BackendError(f"Invalid JSON from {path}") from e

    async def fetch_dates(self) -> List[str]:
        data = await self._get_json("/dates")
        if not isinstance(data, list):
            raise BackendError("Expected a list of dates")
        return [str(date) for date in data]

    async def fetch_logs(self, date: Optional[str] = None) -> List[MessageRecord]:
        """Fetch one day of logs; None means the latest day."""
        segment = quote(date or "latest", safe="")
        return parse_records(await self._get_json(f"/logs/{segment}"))

    async def search(self, query: str) -> List[MessageRecord]:
        return parse_records(await self._get_json("/search", params={"q": query}))

    async def aclose(self):
        await self._client.aclose()
