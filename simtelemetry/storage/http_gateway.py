"""
HTTP Gateway

Forwards records to a REST document store:

    POST {base_url}/{collection}   body: record as JSON
    -> 2xx {"id": "..."}

Write-only: history queries are not offered, so session lookups fall back
to live memory when this gateway is in use.
"""

from __future__ import annotations
from typing import Any, Dict, Mapping, Optional
import logging
import uuid

import httpx

from ..contracts.base import PersistenceError
from .gateway import PersistenceGateway

logger = logging.getLogger(__name__)


class HttpGateway(PersistenceGateway):
    """Persistence gateway for a REST document endpoint."""

    supports_history = False

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        headers: Optional[Dict[str, str]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self._base_url = base_url.rstrip('/')
        self._timeout = timeout
        self._headers = dict(headers or {})
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=self._timeout,
                headers=self._headers,
                transport=self._transport
            )
        return self._client

    async def save(self, collection: str, record: Mapping[str, Any]) -> str:
        if not collection:
            raise PersistenceError("Collection name must be non-empty", collection)
        url = f"{self._base_url}/{collection}"

        try:
            response = await self._get_client().post(url, json=dict(record))
        except httpx.TimeoutException as e:
            raise PersistenceError(f"Timed out posting to {url}", collection) from e
        except httpx.HTTPError as e:
            raise PersistenceError(f"Request to {url} failed: {e}", collection) from e

        if response.status_code >= 400:
            raise PersistenceError(
                f"{url} answered HTTP {response.status_code}", collection
            )

        doc_id = None
        try:
            body = response.json()
            if isinstance(body, dict) and body.get('id'):
                doc_id = str(body['id'])
        except ValueError:
            logger.debug("Non-JSON response from %s", url)

        # Some stores acknowledge without echoing an id
        return doc_id or f"{collection}_{uuid.uuid4().hex[:16]}"

    async def close(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
        self._client = None
