"""SQLAlchemy persistence for the link fields written by enrichment."""

from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime, timedelta
import logging
from typing import Any, Callable, Iterator, Optional, Union
import uuid

import httpx
from sqlalchemy import or_, text
from sqlalchemy.exc import SQLAlchemyError

from linkshelf.config.database import SessionLocal
from linkshelf.config.settings import settings
from linkshelf.crawlers.base import validate_url
from linkshelf.crawlers.contracts import GitHubRepoMetadata, ScrapedMetadata
from linkshelf.errors import DatabaseError, NotFoundError, ValidationError
from linkshelf.models.link import Link, LinkStatus, utcnow
from linkshelf.services.url_classifier import is_github_repo

logger = logging.getLogger(__name__)

LinkId = Union[uuid.UUID, str]

REFRESHABLE_STATUSES = (LinkStatus.ACTIVE.value, LinkStatus.INACCESSIBLE.value)


class SQLAlchemyLinkRepository:
    """Row-level link reads and partial updates.

    Every method runs in its own session and commits once, so the fields a
    single call writes become visible together. Optional metadata fields
    follow COALESCE semantics: `None` leaves the stored value unchanged.
    """

    def __init__(
        self,
        session_factory: Callable[[], Any] = SessionLocal,
        *,
        failure_threshold: Optional[int] = None,
    ) -> None:
        self._session_factory = session_factory
        self._failure_threshold = failure_threshold or settings.FAILURE_THRESHOLD

    def create_link(
        self,
        user_id: LinkId,
        url: str,
        *,
        title: Optional[str] = None,
        description: Optional[str] = None,
        logo: Optional[str] = None,
    ) -> Link:
        """Insert a link, computing domain, path and `is_github_repo` once."""
        normalized = validate_url(url)
        parsed = httpx.URL(normalized)
        path = parsed.path if parsed.path not in ("", "/") else None

        link = Link(
            id=uuid.uuid4(),
            user_id=_as_uuid(user_id, field="user_id"),
            url=url.strip(),
            domain=parsed.host,
            path=path,
            title=title,
            description=description,
            logo=logo,
            is_github_repo=is_github_repo(url.strip()),
            status=LinkStatus.ACTIVE.value,
            consecutive_failures=0,
        )
        with self._session() as db:
            db.add(link)

        logger.info("Link created", extra={"link_id": str(link.id), "domain": link.domain})
        return link

    def get_by_id(self, link_id: LinkId, user_id: LinkId) -> Link:
        with self._session() as db:
            return self._get_owned(db, link_id, user_id)

    def get_stale_links(self, stale_days: int, limit: int, *, now: Optional[datetime] = None) -> list[Link]:
        """Links never refreshed or refreshed more than `stale_days` ago.

        Ordered by the last refresh attempt, never-checked first; links whose
        attempts keep failing rotate to the back.
        """
        threshold = (now or utcnow()) - timedelta(days=stale_days)
        with self._session() as db:
            return (
                db.query(Link)
                .filter(
                    Link.status.in_(REFRESHABLE_STATUSES),
                    or_(Link.refreshed_at.is_(None), Link.refreshed_at < threshold),
                )
                .order_by(
                    Link.last_checked.asc().nulls_first(),
                    Link.refreshed_at.asc().nulls_first(),
                    Link.created_at.asc(),
                )
                .limit(limit)
                .all()
            )

    def update_scraped_metadata(
        self,
        link_id: LinkId,
        user_id: LinkId,
        metadata: ScrapedMetadata,
        *,
        stamp_refreshed: bool = False,
    ) -> Link:
        """Merge scraped fields into a link.

        With `stamp_refreshed` the write records a successful refresh: in the
        same transaction `refreshed_at` and `last_checked` are stamped, the
        failure counter is cleared and an `inaccessible` link returns to active.
        """
        with self._session() as db:
            link = self._get_owned(db, link_id, user_id)
            if metadata.title is not None:
                link.title = metadata.title
            if metadata.description is not None:
                link.description = metadata.description
            if metadata.favicon is not None:
                link.logo = metadata.favicon

            now = utcnow()
            link.updated_at = now
            if stamp_refreshed:
                _mark_refreshed(link, now)
            return link

    def update_github_metadata(self, link_id: LinkId, user_id: LinkId, metadata: GitHubRepoMetadata) -> Link:
        """Write GitHub fields and record a successful refresh in one transaction.

        A `repo_unavailable` or `inaccessible` link returns to active.

        Raises:
            ValidationError: the link is not a GitHub repository (nothing is written)
        """
        with self._session() as db:
            link = self._get_owned(db, link_id, user_id)
            if not link.is_github_repo:
                raise ValidationError("link", "This link is not a GitHub repository")

            link.github_stars = metadata.stars
            link.github_archived = metadata.archived
            link.github_last_commit = metadata.last_commit
            if metadata.description is not None:
                link.description = metadata.description
            if link.status == LinkStatus.REPO_UNAVAILABLE.value:
                link.status = LinkStatus.ACTIVE.value

            now = utcnow()
            link.updated_at = now
            _mark_refreshed(link, now)
            return link

    def mark_checked(self, link_id: LinkId, *, status: Optional[Union[LinkStatus, str]] = None) -> Link:
        """Stamp `last_checked` for an attempt that wrote no metadata, optionally setting status."""
        value = _status_value(status) if status is not None else None
        with self._session() as db:
            link = self._get(db, link_id)
            now = utcnow()
            link.last_checked = now
            if value is not None and link.status != value:
                link.status = value
                link.updated_at = now
            return link

    def mark_refreshed(self, link_id: LinkId, user_id: LinkId) -> Link:
        with self._session() as db:
            link = self._get_owned(db, link_id, user_id)
            _mark_refreshed(link, utcnow())
            return link

    def update_status(self, link_id: LinkId, status: Union[LinkStatus, str]) -> Link:
        value = _status_value(status)
        with self._session() as db:
            link = self._get(db, link_id)
            link.status = value
            link.updated_at = utcnow()
            return link

    def record_failure(self, link_id: LinkId) -> Link:
        """Count a failed health check; active links become inaccessible at the threshold."""
        with self._session() as db:
            link = self._get(db, link_id)
            link.last_checked = utcnow()
            link.consecutive_failures = (link.consecutive_failures or 0) + 1
            if (
                link.consecutive_failures >= self._failure_threshold
                and link.status == LinkStatus.ACTIVE.value
            ):
                link.status = LinkStatus.INACCESSIBLE.value
                logger.info(
                    "Link marked inaccessible",
                    extra={"link_id": str(link.id), "consecutive_failures": link.consecutive_failures},
                )
            link.updated_at = utcnow()
            return link

    def ping(self) -> bool:
        try:
            with self._session() as db:
                db.execute(text("SELECT 1"))
            return True
        except DatabaseError:
            return False

    @contextmanager
    def _session(self) -> Iterator[Any]:
        db = self._session_factory()
        try:
            yield db
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            logger.error("Database operation failed", extra={"error": str(exc)})
            raise DatabaseError(str(exc)) from exc
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def _get(self, db: Any, link_id: LinkId) -> Link:
        identifier = _as_uuid(link_id, field="id")
        link = db.query(Link).filter_by(id=identifier).first()
        if link is None:
            raise NotFoundError("link", str(identifier))
        return link

    def _get_owned(self, db: Any, link_id: LinkId, user_id: LinkId) -> Link:
        identifier = _as_uuid(link_id, field="id")
        link = db.query(Link).filter_by(id=identifier, user_id=_as_uuid(user_id, field="user_id")).first()
        if link is None:
            raise NotFoundError("link", str(identifier))
        return link


def _mark_refreshed(link: Link, now: datetime) -> None:
    link.refreshed_at = now
    link.last_checked = now
    link.consecutive_failures = 0
    if link.status == LinkStatus.INACCESSIBLE.value:
        link.status = LinkStatus.ACTIVE.value


def _status_value(status: Union[LinkStatus, str]) -> str:
    value = status.value if isinstance(status, LinkStatus) else status
    if value not in {member.value for member in LinkStatus}:
        raise ValidationError(
            "status",
            "Status must be one of: active, archived, inaccessible, repo_unavailable",
        )
    return value


def _as_uuid(value: LinkId, *, field: str) -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError as exc:
        raise ValidationError(field, "Invalid identifier") from exc
