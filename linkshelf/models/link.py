"""Link model: the bookmark fields touched by metadata enrichment."""

from datetime import UTC, datetime
import enum
import uuid

from sqlalchemy import Boolean, Column, DateTime, Index, Integer, String, Text, Uuid

from linkshelf.config.database import Base


def utcnow() -> datetime:
    return datetime.now(UTC)


class LinkStatus(str, enum.Enum):
    """Link status values; stored as plain strings."""

    ACTIVE = "active"
    ARCHIVED = "archived"
    INACCESSIBLE = "inaccessible"
    REPO_UNAVAILABLE = "repo_unavailable"


class Link(Base):
    """Bookmarked link mapped to `links` table."""

    __tablename__ = "links"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, nullable=False, index=True)

    url = Column(String(2048), nullable=False)
    domain = Column(String(255), nullable=False)
    path = Column(Text, nullable=True)
    title = Column(Text, nullable=True)
    description = Column(Text, nullable=True)
    logo = Column(Text, nullable=True)

    # Decided once at creation from the URL classifier; never changed by enrichment
    is_github_repo = Column(Boolean, nullable=False, default=False)
    github_stars = Column(Integer, nullable=True)
    github_archived = Column(Boolean, nullable=True)
    github_last_commit = Column(DateTime(timezone=True), nullable=True)

    status = Column(String(32), nullable=False, default=LinkStatus.ACTIVE.value)
    consecutive_failures = Column(Integer, nullable=False, default=0)

    # Stamped only by successful enrichment; updated_at covers any edit
    refreshed_at = Column(DateTime(timezone=True), nullable=True)
    # Stamped on every refresh attempt, successful or not; drives batch rotation
    last_checked = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("idx_links_refreshed_at", "refreshed_at"),
        Index("idx_links_last_checked", "last_checked"),
        Index("idx_links_is_github", "is_github_repo"),
    )

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "user_id": str(self.user_id),
            "url": self.url,
            "domain": self.domain,
            "path": self.path,
            "title": self.title,
            "description": self.description,
            "logo": self.logo,
            "is_github_repo": self.is_github_repo,
            "github_stars": self.github_stars,
            "github_archived": self.github_archived,
            "github_last_commit": _isoformat(self.github_last_commit),
            "status": self.status,
            "consecutive_failures": self.consecutive_failures,
            "refreshed_at": _isoformat(self.refreshed_at),
            "last_checked": _isoformat(self.last_checked),
            "created_at": _isoformat(self.created_at),
            "updated_at": _isoformat(self.updated_at),
        }

    def __repr__(self):
        return f"<Link {self.id} {self.url}>"


def _isoformat(value):
    return value.isoformat() if value else None
