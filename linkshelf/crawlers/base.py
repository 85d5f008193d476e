"""Base HTTP crawler with the shared client policy"""

from typing import Optional, Dict, Any
import logging

import httpx

from linkshelf.config.settings import settings
from linkshelf.errors import InternalError, ValidationError

logger = logging.getLogger(__name__)


def validate_url(url: Any) -> str:
    """
    Validate a user-submitted URL before any network I/O.

    Args:
        url: URL to validate

    Returns:
        The normalized absolute URL

    Raises:
        ValidationError: if the URL is empty, unparseable, not http(s) or has no host
    """
    if not isinstance(url, str) or not url.strip():
        raise ValidationError("url", "Invalid URL: URL must not be empty")

    try:
        parsed = httpx.URL(url.strip())
    except httpx.InvalidURL as e:
        raise ValidationError("url", f"Invalid URL: {e}") from e

    if parsed.scheme not in ("http", "https"):
        raise ValidationError("url", "Invalid URL: only http and https URLs are supported")
    if not parsed.host:
        raise ValidationError("url", "URL must have a domain")

    return str(parsed)


class BaseHttpCrawler:
    """
    Base class for components that talk to untrusted web servers

    Every outbound request goes through `build_client`, which enforces a
    timeout, a redirect cap and an identifying user agent.
    """

    def __init__(
        self,
        *,
        user_agent: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        max_redirects: Optional[int] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.logger = logging.getLogger(self.__class__.__name__)
        self.user_agent = user_agent or settings.USER_AGENT
        self.timeout_seconds = timeout_seconds or settings.SCRAPE_TIMEOUT_SECONDS
        self.max_redirects = max_redirects if max_redirects is not None else settings.MAX_REDIRECTS
        self._transport = transport

    def build_client(self, headers: Optional[Dict[str, str]] = None) -> httpx.AsyncClient:
        """Create an async client with the crawler's timeout and redirect policy"""
        client_headers = {"User-Agent": self.user_agent}
        if headers:
            client_headers.update(headers)

        try:
            return httpx.AsyncClient(
                timeout=self.timeout_seconds,
                follow_redirects=True,
                max_redirects=self.max_redirects,
                headers=client_headers,
                transport=self._transport,
            )
        except (TypeError, ValueError) as e:
            raise InternalError(f"Failed to create HTTP client: {e}") from e
