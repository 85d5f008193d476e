"""Database models"""

from linkshelf.models.link import Link, LinkStatus

__all__ = [
    "Link",
    "LinkStatus",
]
