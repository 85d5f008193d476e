"""Per-link metadata refresh shared by the scheduler and HTTP handlers."""

from __future__ import annotations

import logging
from typing import Any, Optional

from linkshelf.crawlers.github import GitHubFetcher
from linkshelf.crawlers.log_utils import sanitize_log_extra
from linkshelf.crawlers.web import LinkHealthChecker, WebScraper
from linkshelf.errors import ExternalServiceError, NotFoundError
from linkshelf.models.link import LinkStatus
from linkshelf.services.url_classifier import GitHubRepoLink, resolve_link_kind

logger = logging.getLogger(__name__)


class LinkEnricher:
    """Refreshes one link: health check, then GitHub fetch or web scrape.

    Errors propagate to the caller. The scheduler swallows them per item;
    interactive callers surface them to the user.
    """

    def __init__(
        self,
        repository: Any,
        *,
        scraper: Optional[WebScraper] = None,
        github_fetcher: Optional[GitHubFetcher] = None,
        health_checker: Optional[LinkHealthChecker] = None,
    ) -> None:
        self._repository = repository
        self._scraper = scraper or WebScraper()
        self._github_fetcher = github_fetcher or GitHubFetcher()
        self._health_checker = health_checker or LinkHealthChecker()

    @property
    def scraper(self) -> WebScraper:
        return self._scraper

    async def aclose(self) -> None:
        await self._github_fetcher.aclose()

    async def refresh_link(self, link: Any) -> Any:
        """Refresh metadata for a persisted link and return the updated row.

        Every attempt ends in exactly one repository write, which always
        stamps `last_checked`: a failure record, a status change with no
        metadata, or the merged metadata with its refresh stamps.

        Raises:
            ExternalServiceError: link unreachable, or the upstream fetch failed
            NotFoundError: GitHub repository no longer exists (link is marked repo_unavailable)
        """
        log_extra = sanitize_log_extra(link_id=str(link.id), url=link.url)
        logger.debug("Refreshing link", extra=log_extra)

        if not await self._health_checker.check_health(link.url):
            updated = self._repository.record_failure(link.id)
            logger.warning(
                "Link is not accessible, recording failure",
                extra={**log_extra, "consecutive_failures": updated.consecutive_failures},
            )
            raise ExternalServiceError(f"Link is not accessible: {link.url}")

        try:
            kind = resolve_link_kind(link)
            if isinstance(kind, GitHubRepoLink):
                metadata = await self._github_fetcher.fetch_repo_metadata(kind.owner, kind.repo)
            else:
                scraped = await self._scraper.scrape(link.url)
        except NotFoundError:
            logger.warning("GitHub repository not found, marking as repo_unavailable", extra=log_extra)
            self._repository.mark_checked(link.id, status=LinkStatus.REPO_UNAVAILABLE)
            raise
        except Exception:
            self._repository.mark_checked(link.id)
            raise

        if link.status == LinkStatus.INACCESSIBLE.value:
            logger.info("Link is accessible again, restoring to active status", extra=log_extra)

        if isinstance(kind, GitHubRepoLink):
            updated = self._repository.update_github_metadata(link.id, link.user_id, metadata)
        else:
            updated = self._repository.update_scraped_metadata(
                link.id, link.user_id, scraped, stamp_refreshed=True
            )

        logger.info("Link refreshed successfully", extra=log_extra)
        return updated
