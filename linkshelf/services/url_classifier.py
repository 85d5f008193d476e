"""GitHub repository URL classification.

Recognized shapes:
- https://github.com/owner/repo
- https://github.com/owner/repo.git
- https://github.com/owner/repo/tree/main (any extra path suffix)
- git@github.com:owner/repo.git
"""

from __future__ import annotations

from dataclasses import dataclass
import re
from typing import Any, Optional, Union

from linkshelf.errors import InternalError

_GITHUB_REPO_RE = re.compile(
    r"^(?:https?://github\.com/|git@github\.com:)([^/]+)/([^/\s]+?)(?:\.git)?(?:/.*)?$"
)


@dataclass(frozen=True)
class GitHubRepoLink:
    owner: str
    repo: str


@dataclass(frozen=True)
class GenericLink:
    pass


LinkKind = Union[GitHubRepoLink, GenericLink]


def parse_repo_from_url(url: Any) -> Optional[tuple[str, str]]:
    """Return `(owner, repo)` for a GitHub repository URL, else None."""
    if not isinstance(url, str):
        return None
    match = _GITHUB_REPO_RE.match(url)
    if match is None:
        return None
    return match.group(1), match.group(2)


def is_github_repo(url: Any) -> bool:
    return parse_repo_from_url(url) is not None


def classify_url(url: Any) -> LinkKind:
    parsed = parse_repo_from_url(url)
    if parsed is None:
        return GenericLink()
    return GitHubRepoLink(owner=parsed[0], repo=parsed[1])


def resolve_link_kind(link: Any) -> LinkKind:
    """Resolve the kind of a persisted link from its stored classification.

    `is_github_repo` was decided when the link was created; this only recovers
    the owner/repo pair for links already flagged as repositories.
    """
    if not link.is_github_repo:
        return GenericLink()

    parsed = parse_repo_from_url(link.url)
    if parsed is None:
        raise InternalError(f"Link {link.id} is flagged as a GitHub repository but its URL does not parse")
    return GitHubRepoLink(owner=parsed[0], repo=parsed[1])
