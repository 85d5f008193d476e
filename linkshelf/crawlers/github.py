"""GitHub REST API client for repository metadata."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any, Optional

import httpx
from dateutil import parser as date_parser
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from linkshelf.config.settings import settings
from linkshelf.crawlers.contracts import GitHubRepoMetadata
from linkshelf.crawlers.log_utils import sanitize_log_extra
from linkshelf.errors import ExternalServiceError, NotFoundError, RateLimitedError, ValidationError
from linkshelf.services.url_classifier import parse_repo_from_url

logger = logging.getLogger(__name__)


class GitHubFetcher:
    """Fetches repository metadata with rate-limit and not-found handling.

    Transport failures are retried with exponential backoff; HTTP statuses
    (including rate limits) are never retried, callers get a typed error.
    """

    ACCEPT_JSON = "application/vnd.github+json"

    def __init__(
        self,
        *,
        token: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        max_retries: Optional[int] = None,
        backoff_base_seconds: Optional[float] = None,
        backoff_max_seconds: Optional[float] = None,
        base_url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._token = token if token is not None else settings.GITHUB_TOKEN
        self._timeout_seconds = timeout_seconds or settings.GITHUB_TIMEOUT_SECONDS
        self._max_retries = max_retries if max_retries is not None else settings.GITHUB_MAX_RETRIES
        self._backoff_base_seconds = backoff_base_seconds if backoff_base_seconds is not None else settings.GITHUB_BACKOFF_BASE_SECONDS
        self._backoff_max_seconds = backoff_max_seconds if backoff_max_seconds is not None else settings.GITHUB_BACKOFF_MAX_SECONDS
        self._base_url = base_url or settings.GITHUB_API_BASE_URL
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self) -> "GitHubFetcher":
        await self._ensure_client()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def fetch_repo_metadata(self, owner: str, repo: str) -> GitHubRepoMetadata:
        """Fetch metadata for `owner/repo`.

        Raises:
            RateLimitedError: 403 with `x-ratelimit-remaining: 0`
            NotFoundError: 404, resource "GitHub repository", id "owner/repo"
            ExternalServiceError: any other non-2xx status or transport failure
        """
        full_name = f"{owner}/{repo}"
        logger.info("Fetching GitHub repository metadata", extra=sanitize_log_extra(repo=full_name))

        response = await self._get(f"/repos/{owner}/{repo}")

        if response.status_code == 403 and response.headers.get("x-ratelimit-remaining") == "0":
            logger.warning(
                "GitHub API rate limit exceeded",
                extra=sanitize_log_extra(repo=full_name, reset_at=response.headers.get("x-ratelimit-reset")),
            )
            raise RateLimitedError()

        if response.status_code == 404:
            logger.warning("GitHub repository not found", extra=sanitize_log_extra(repo=full_name))
            raise NotFoundError("GitHub repository", full_name)

        if not response.is_success:
            logger.error(
                "GitHub API request failed",
                extra=sanitize_log_extra(repo=full_name, status_code=response.status_code),
            )
            raise ExternalServiceError(
                f"GitHub API request failed with status: {response.status_code}",
                status=response.status_code,
            )

        try:
            payload = response.json()
        except ValueError as exc:
            raise ExternalServiceError(f"GitHub API returned invalid JSON: {exc}", status=response.status_code) from exc

        metadata = map_repo_payload(payload if isinstance(payload, dict) else {})
        logger.info(
            "GitHub repository metadata fetched successfully",
            extra=sanitize_log_extra(repo=full_name, stars=metadata.stars, archived=metadata.archived),
        )
        return metadata

    async def fetch_repo_metadata_for_url(self, url: str) -> GitHubRepoMetadata:
        parsed = parse_repo_from_url(url)
        if parsed is None:
            raise ValidationError("url", "URL is not a GitHub repository")
        return await self.fetch_repo_metadata(*parsed)

    async def _get(self, path: str) -> httpx.Response:
        client = await self._ensure_client()
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self._max_retries + 1),
                wait=wait_exponential(multiplier=self._backoff_base_seconds, max=self._backoff_max_seconds),
                retry=retry_if_exception_type(httpx.TransportError),
                reraise=True,
            ):
                with attempt:
                    return await client.get(path)
        except httpx.HTTPError as exc:
            logger.warning("GitHub request failed", extra=sanitize_log_extra(path=path, error=str(exc)))
            raise ExternalServiceError(f"GitHub API request failed: {exc}") from exc

        raise ExternalServiceError("Unknown GitHub request failure")

    async def _ensure_client(self) -> httpx.AsyncClient:
        if self._client:
            return self._client

        headers = {
            "Accept": self.ACCEPT_JSON,
            "User-Agent": settings.GITHUB_USER_AGENT,
            "X-GitHub-Api-Version": settings.GITHUB_API_VERSION,
        }
        if self._token:
            logger.debug("Using GitHub token for authentication")
            headers["Authorization"] = f"Bearer {self._token}"

        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            headers=headers,
            timeout=self._timeout_seconds,
            transport=self._transport,
        )
        return self._client


def map_repo_payload(payload: dict[str, Any]) -> GitHubRepoMetadata:
    """Map a `/repos/{owner}/{repo}` payload onto GitHubRepoMetadata."""
    license_payload = payload.get("license")
    license_name = license_payload.get("name") if isinstance(license_payload, dict) else None

    return GitHubRepoMetadata(
        stars=_as_int(payload.get("stargazers_count")),
        description=payload.get("description") if isinstance(payload.get("description"), str) else None,
        archived=bool(payload.get("archived", False)),
        last_commit=parse_timestamp(payload.get("pushed_at")),
        license=license_name if isinstance(license_name, str) else None,
        language=payload.get("language") if isinstance(payload.get("language"), str) else None,
    )


def parse_timestamp(raw: Any) -> Optional[datetime]:
    """Parse an RFC3339 timestamp to an aware UTC datetime; None on failure."""
    if not isinstance(raw, str) or not raw.strip():
        return None
    try:
        parsed = date_parser.isoparse(raw)
    except (ValueError, OverflowError):
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def _as_int(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0
