"""HTTP client for the remote entry service."""

import logging
from typing import Dict, List, Optional

import httpx

from shared.config import get_remote_config
from shared.errors import CapacityError, TransientNetworkError
from shared.models import Entry

logger = logging.getLogger(__name__)

CAPACITY_STATUS_CODES = (413, 507)


def create_http_client(base_url: Optional[str] = None, timeout: Optional[float] = None) -> httpx.AsyncClient:
    """Build the AsyncClient used for every remote call; all requests carry a timeout."""
    remote_config = get_remote_config()
    return httpx.AsyncClient(
        base_url=base_url or remote_config["base_url"],
        timeout=timeout or remote_config["timeout"],
    )


class RemoteEntryClient:
    """Talks to the authoritative remote store: uploads, commits and the recent-entries view."""

    def __init__(self, client: httpx.AsyncClient):
        """
        Initialize the remote client.

        Args:
            client: HTTP client bound to the entry service base URL
        """
        self.client = client

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            response = await self.client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            raise TransientNetworkError(f"{method} {url} timed out: {e}")
        except httpx.RequestError as e:
            raise TransientNetworkError(f"{method} {url} failed: {e}")

        if response.status_code in CAPACITY_STATUS_CODES:
            raise CapacityError(
                f"{method} {url} rejected for capacity: {response.text}",
                status_code=response.status_code
            )
        if response.status_code >= 400:
            raise TransientNetworkError(
                f"{method} {url} returned {response.status_code}: {response.text}",
                status_code=response.status_code
            )
        return response

    async def upload_attachment(self, attachment_id: str, mime_type: str, payload: bytes) -> str:
        """
        Upload one binary payload keyed by the attachment's own id.

        Returns:
            The remote key, which is the attachment id
        """
        await self._request(
            "POST",
            "/upload",
            params={"key": attachment_id, "type": mime_type},
            content=payload,
            headers={"Content-Type": mime_type or "application/octet-stream"},
        )
        return attachment_id

    async def create_entry(self, entry: Entry) -> Dict:
        """Idempotent remote commit keyed by the entry id."""
        response = await self._request("POST", "/internal/entries", json=entry.to_remote_dict())
        return response.json()

    async def get_recent_entries(self, limit: int) -> List[Entry]:
        """
        Fetch the remote service's most recent entries.

        Records that cannot be parsed are logged and dropped.
        """
        response = await self._request("GET", "/internal/entries/recent", params={"limit": limit})
        try:
            body = response.json()
        except ValueError as e:
            raise TransientNetworkError(f"Recent entries response is not JSON: {e}")
        items = body.get("entries") if isinstance(body, dict) else None
        if not isinstance(items, list):
            logger.error("Recent entries response has no entries list, ignoring it")
            return []

        entries = []
        for item in items:
            try:
                entries.append(Entry.from_remote_dict(item))
            except ValueError as e:
                logger.error(f"Dropping malformed remote entry: {e}")
        return entries

    async def health(self) -> bool:
        """Reachability probe."""
        try:
            response = await self.client.get("/health")
        except httpx.HTTPError as e:
            logger.debug(f"Health probe failed: {e}")
            return False
        return response.status_code == 200
