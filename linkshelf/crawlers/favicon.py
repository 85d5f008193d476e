"""Favicon candidate validation via lightweight HEAD probes"""

from typing import Iterable, Optional
from urllib.parse import urlsplit

import httpx

from linkshelf.config.settings import settings
from linkshelf.crawlers.base import BaseHttpCrawler

# Substring matches, so "image/png; charset=binary" is accepted
IMAGE_CONTENT_TYPES = (
    "image/png",
    "image/jpeg",
    "image/jpg",
    "image/gif",
    "image/x-icon",
    "image/vnd.microsoft.icon",
    "image/ico",
    "image/icon",
    "image/svg+xml",
    "image/webp",
    "image/avif",
    "image/bmp",
)
IMAGE_EXTENSIONS = (".png", ".jpg", ".jpeg", ".gif", ".ico", ".svg", ".webp", ".avif", ".bmp")


def is_image_response(url: str, content_type: Optional[str]) -> bool:
    """Accept by content-type when the server sends one, else by file extension"""
    if content_type and content_type.strip():
        lowered = content_type.lower()
        return any(image_type in lowered for image_type in IMAGE_CONTENT_TYPES)

    path = urlsplit(url).path.lower()
    return path.endswith(IMAGE_EXTENSIONS)


class FaviconValidator(BaseHttpCrawler):
    """Picks the first favicon candidate that exists and looks like an image"""

    def __init__(self, *, timeout_seconds: Optional[float] = None, **kwargs):
        super().__init__(timeout_seconds=timeout_seconds or settings.PROBE_TIMEOUT_SECONDS, **kwargs)

    async def validate_candidates(self, candidates: Iterable[str]) -> Optional[str]:
        """
        Try each candidate in order and return the first valid one

        Args:
            candidates: Absolute favicon URLs in priority order

        Returns:
            The first valid favicon URL, or None if every candidate fails
        """
        ordered = list(candidates)
        if not ordered:
            return None

        probed: set[str] = set()
        async with self.build_client() as client:
            for candidate in ordered:
                if candidate in probed:
                    continue
                probed.add(candidate)
                if await self._probe(client, candidate):
                    return candidate

        self.logger.debug(f"No valid favicon among {len(probed)} candidates")
        return None

    async def is_valid_favicon(self, url: str) -> bool:
        async with self.build_client() as client:
            return await self._probe(client, url)

    async def _probe(self, client: httpx.AsyncClient, url: str) -> bool:
        try:
            response = await client.head(url)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            self.logger.debug(f"Favicon probe failed for {url}: {e}")
            return False

        if not response.is_success:
            return False

        return is_image_response(url, response.headers.get("content-type"))
