from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional

import aiohttp
from pydantic import ValidationError

from dealscout.errors import UpstreamError
from dealscout.models import SearchEnvelope, SearchPayload, SearchRequestDescriptor

logger = logging.getLogger(__name__)


class SearchClient:
    """Thin wrapper around the deals API ``/search`` endpoint."""

    def __init__(
        self,
        session: aiohttp.ClientSession,
        *,
        base_url: str,
        search_path: str = "/search",
        timeout_s: float = 20.0,
        user_agent: str = "dealscout",
        token: Optional[str] = None,
    ) -> None:
        self.session = session
        self.url = base_url.rstrip("/") + "/" + search_path.lstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=timeout_s)
        self.user_agent = user_agent
        self.token = token

    def _headers(self) -> Dict[str, str]:
        headers = {"User-Agent": self.user_agent, "Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def search(self, descriptor: SearchRequestDescriptor) -> SearchPayload:
        """Fetch one page of results. Anything short of a usable payload is an UpstreamError."""
        params = descriptor.to_params()
        try:
            async with self.session.get(self.url, params=params, headers=self._headers(), timeout=self.timeout) as resp:
                status = resp.status
                try:
                    data: Any = await resp.json(content_type=None)
                except ValueError:
                    data = None
        except asyncio.TimeoutError as e:
            raise UpstreamError("Search request timed out") from e
        except aiohttp.ClientError as e:
            raise UpstreamError(f"Search request failed: {e}") from e

        if not 200 <= status < 300:
            detail = ""
            if isinstance(data, dict):
                detail = data.get("error") or data.get("message") or ""
            raise UpstreamError(f"HTTP {status}: {detail}".rstrip(": "), status=status)
        if not isinstance(data, dict):
            raise UpstreamError("Search response is not a JSON object", status=status)

        try:
            if "success" in data:
                envelope = SearchEnvelope.model_validate(data)
                if not envelope.success:
                    raise UpstreamError(envelope.error or envelope.message or "Search failed", status=status)
                return envelope.data or SearchPayload()
            # Some deployments return the data object without the envelope.
            return SearchPayload.model_validate(data)
        except ValidationError as e:
            logger.warning("Unparseable search response: %s", e)
            raise UpstreamError("Search response did not match the expected shape", status=status) from e
