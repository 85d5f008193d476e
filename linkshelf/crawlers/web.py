"""Web page metadata scraper and link health checker"""

from typing import Optional

import httpx

from linkshelf.config.settings import settings
from linkshelf.crawlers.base import BaseHttpCrawler, validate_url
from linkshelf.crawlers.contracts import ScrapedMetadata
from linkshelf.crawlers.favicon import FaviconValidator
from linkshelf.crawlers.log_utils import redact_secrets
from linkshelf.errors import ExternalServiceError
from linkshelf.services.html_metadata import extract_html_metadata


class WebScraper(BaseHttpCrawler):
    """Scrapes title, description and favicon from arbitrary web pages"""

    def __init__(self, *, favicon_validator: Optional[FaviconValidator] = None, **kwargs):
        super().__init__(**kwargs)
        self.favicon_validator = favicon_validator or FaviconValidator(
            user_agent=self.user_agent,
            max_redirects=self.max_redirects,
            transport=self._transport,
        )

    async def scrape(self, url: str) -> ScrapedMetadata:
        """
        Scrape metadata from a URL

        Anything reachable returns a value: non-HTML responses and pages
        without metadata produce empty ScrapedMetadata.

        Args:
            url: The URL to scrape

        Returns:
            ScrapedMetadata (fields may be None if not found)

        Raises:
            ValidationError: malformed URL
            ExternalServiceError: unreachable host or transport failure
            InternalError: HTTP client could not be created
        """
        target = validate_url(url)

        async with self.build_client() as client:
            try:
                response = await client.get(target)
            except (httpx.HTTPError, httpx.InvalidURL) as e:
                raise ExternalServiceError(f"Failed to fetch URL: {redact_secrets(str(e))}") from e

            content_type = response.headers.get("content-type", "")
            if "text/html" not in content_type.lower():
                self.logger.debug(f"Non-HTML response, content-type: {content_type}")
                return ScrapedMetadata()

            html = response.text
            base_url = str(response.url)

        # Parsing finishes (and the tree is released) before favicon probes start
        extracted = extract_html_metadata(html, base_url)
        favicon = await self.favicon_validator.validate_candidates(extracted.favicon_candidates)

        return ScrapedMetadata(
            title=extracted.title,
            description=extracted.description,
            favicon=favicon,
        )


class LinkHealthChecker(BaseHttpCrawler):
    """HEAD-based existence probe used to detect broken links"""

    def __init__(self, *, timeout_seconds: Optional[float] = None, **kwargs):
        super().__init__(timeout_seconds=timeout_seconds or settings.PROBE_TIMEOUT_SECONDS, **kwargs)

    async def check_health(self, url: str) -> bool:
        """
        Check whether a URL is accessible

        Returns:
            True for 2xx/3xx responses, False for any other status or transport failure

        Raises:
            InternalError: HTTP client could not be created
        """
        async with self.build_client() as client:
            try:
                response = await client.head(url)
            except (httpx.HTTPError, httpx.InvalidURL) as e:
                self.logger.debug(f"Health check failed for {redact_secrets(url)}: {e}")
                return False

        return 200 <= response.status_code < 400
