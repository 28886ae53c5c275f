"""
Cloudflare CDN cache purge client.

Purges cached copies of files served from a static website after they are
written, moved or deleted in storage.
"""

from typing import Any, Optional

import httpx
import structlog

logger = structlog.get_logger(__name__)

BASE_URL = "https://api.cloudflare.com/client/v4"


class CloudflareCdnService:
    """Purges a Cloudflare zone cache through the v4 API."""

    def __init__(
        self,
        api_token: str,
        zone_id: str,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        if not api_token:
            raise ValueError("api_token is required")
        if not zone_id:
            raise ValueError("zone_id is required")

        self.zone_id = zone_id
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(base_url=BASE_URL, timeout=timeout)
        self.client.headers.update(
            {
                "Authorization": f"Bearer {api_token}",
                "Content-Type": "application/json",
            }
        )

    async def purge_all(self) -> bool:
        """Purge every cached file in the zone."""
        return await self._purge({"purge_everything": True})

    async def purge_by_urls(self, *urls: str) -> bool:
        """Purge specific URLs."""
        if not urls:
            raise ValueError("At least one URL must be provided")
        return await self._purge({"files": list(urls)})

    async def purge_by_tags(self, *tags: str) -> bool:
        """Purge by cache tag."""
        if not tags:
            raise ValueError("At least one tag must be provided")
        return await self._purge({"tags": list(tags)})

    async def purge_by_hosts(self, *hosts: str) -> bool:
        """Purge every cached file for the given hosts."""
        if not hosts:
            raise ValueError("At least one host must be provided")
        return await self._purge({"hosts": list(hosts)})

    async def close(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def _purge(self, body: dict[str, Any]) -> bool:
        try:
            response = await self.client.post(f"/zones/{self.zone_id}/purge_cache", json=body)
        except httpx.TimeoutException as e:
            logger.warning("CDN purge timed out", zone_id=self.zone_id, error=str(e))
            return False
        except httpx.RequestError as e:
            logger.warning("CDN purge request failed", zone_id=self.zone_id, error=str(e))
            return False

        if response.status_code >= 400:
            logger.warning("CDN purge rejected", zone_id=self.zone_id, status_code=response.status_code)
            return False

        try:
            result = response.json()
        except ValueError:
            logger.warning("CDN purge returned a non-JSON body", zone_id=self.zone_id)
            return False
        return result.get("success") is True
