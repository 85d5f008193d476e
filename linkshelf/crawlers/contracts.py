"""Value types produced by the scraper and the GitHub fetcher."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Optional


@dataclass(frozen=True)
class ScrapedMetadata:
    """Metadata scraped from a web page. Every field is optional."""

    title: Optional[str] = None
    description: Optional[str] = None
    favicon: Optional[str] = None

    def is_empty(self) -> bool:
        return self.title is None and self.description is None and self.favicon is None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class GitHubRepoMetadata:
    """Repository metadata from the GitHub REST API.

    `last_commit` is the repository's `pushed_at` timestamp; GitHub exposes no
    separate last-commit time at the repository level.
    """

    stars: int
    description: Optional[str] = None
    archived: bool = False
    last_commit: Optional[datetime] = None
    license: Optional[str] = None
    language: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["last_commit"] = self.last_commit.isoformat() if self.last_commit else None
        return payload
