"""Image search proxy: forwards queries to the configured search API with the server-side key."""

import logging
from typing import Any, Dict, Optional

import httpx

from imagefy_backend.core.errors import ServiceUnavailableError, UpstreamError, UpstreamTimeoutError


logger = logging.getLogger("imagefy.images")

MAX_PER_PAGE = 80


class ImageSearchClient:
    def __init__(
        self,
        api_url: str,
        api_key: Optional[str],
        *,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_url = api_url
        self.api_key = api_key
        self.timeout = timeout
        self.transport = transport

    async def search(self, query: str, page: int = 1, per_page: int = 20) -> Dict[str, Any]:
        """
        Return the upstream JSON response unchanged.

        Raises:
            ServiceUnavailableError: No API key configured
            UpstreamTimeoutError: Upstream did not answer in time
            UpstreamError: Upstream returned an error or invalid JSON
        """
        if not self.api_key:
            raise ServiceUnavailableError("Image search is not configured", code="image_search_disabled")

        params = {
            "query": query,
            "page": max(1, page),
            "per_page": min(max(1, per_page), MAX_PER_PAGE),
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                resp = await client.get(self.api_url, params=params, headers={"Authorization": self.api_key})
                resp.raise_for_status()
                return resp.json()
        except httpx.TimeoutException as e:
            raise UpstreamTimeoutError("Image search timed out") from e
        except httpx.HTTPStatusError as e:
            logger.error("images.upstream_error", extra={"status": e.response.status_code})
            raise UpstreamError("Image search failed") from e
        except (httpx.HTTPError, ValueError) as e:
            logger.error("images.upstream_error", extra={"reason": str(e)})
            raise UpstreamError("Image search failed") from e
