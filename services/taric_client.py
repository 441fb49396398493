# WORKFLOW: Async HTTP client for the remote classification API (XI tariff API v2).
# Used by: services/rate_sources.py, services/hierarchy.py, services/taric_engine.py
# Functions:
# 1. get_json() - GET a path, None on 404, UpstreamUnavailable on anything else unusable
# 2. commodity() / heading() / chapter() - nomenclature documents
# 3. search() / geographical_areas() - search and area listings
#
# Request flow: path -> httpx.AsyncClient GET (per-call timeout) -> status check -> JSON -> schema gate
# Callers treat None as "absent upstream"; network problems always surface as UpstreamUnavailable.

import logging
from typing import Any, Dict, Optional

import httpx

from api.schemas.validation import validate_taric_document
from core.config import settings
from core.exceptions import UpstreamUnavailable

logger = logging.getLogger(__name__)


class TaricClient:
    """Thin JSON:API client. One instance per engine; the underlying AsyncClient is shared."""

    def __init__(self, base_url: Optional[str] = None, timeout: Optional[float] = None,
                 http_client: Optional[httpx.AsyncClient] = None):
        self.base_url = (base_url or settings.taric_api_base).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.taric_request_timeout
        self._client = http_client

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                headers={
                    "Accept": "application/json",
                    "User-Agent": settings.taric_user_agent,
                },
            )
        return self._client

    async def get_json(self, path: str, params: Optional[Dict[str, Any]] = None,
                       timeout: Optional[float] = None) -> Optional[Dict[str, Any]]:
        """
        GET ``{base_url}/{path}``.

        Args:
            path: Path relative to the API base, e.g. ``commodities/8471300000``
            params: Query parameters
            timeout: Overrides the configured per-call timeout

        Returns:
            Decoded document, or None when upstream answers 404
        """
        url = f"{self.base_url}/{path.lstrip('/')}"
        try:
            response = await self._get_client().get(url, params=params, timeout=timeout or self.timeout)
        except httpx.TimeoutException as e:
            raise UpstreamUnavailable(f"Request timed out: {url}", url=url) from e
        except httpx.HTTPError as e:
            raise UpstreamUnavailable(f"Request failed: {url}: {e}", url=url) from e

        if response.status_code == 404:
            return None
        if response.status_code != 200:
            raise UpstreamUnavailable(f"HTTP {response.status_code} from {url}", url=url)

        try:
            document = response.json()
        except ValueError as e:
            raise UpstreamUnavailable(f"Undecodable JSON from {url}", url=url) from e

        validate_taric_document(document, url=url)
        return document

    async def commodity(self, code10: str, origin: Optional[str] = None) -> Optional[Dict[str, Any]]:
        params = {"filter[geographical_area_id]": origin} if origin else None
        return await self.get_json(f"commodities/{code10}", params=params)

    async def heading(self, code4: str) -> Optional[Dict[str, Any]]:
        return await self.get_json(f"headings/{code4}")

    async def chapter(self, code2: str, timeout: Optional[float] = None) -> Optional[Dict[str, Any]]:
        return await self.get_json(f"chapters/{code2}", timeout=timeout)

    async def search(self, query: str) -> Optional[Dict[str, Any]]:
        return await self.get_json("search", params={"q": query})

    async def resource(self, endpoint: str, item_id: str) -> Optional[Dict[str, Any]]:
        return await self.get_json(f"{endpoint}/{item_id}")

    async def geographical_areas(self) -> Optional[Dict[str, Any]]:
        return await self.get_json("geographical_areas")

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
