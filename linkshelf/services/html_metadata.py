"""Title, description and favicon candidate extraction from HTML."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional
from urllib.parse import urljoin

from bs4 import BeautifulSoup

FAVICON_RELS = (
    "icon",
    "shortcut icon",
    "apple-touch-icon",
    "apple-touch-icon-precomposed",
)
DEFAULT_FAVICON_PATH = "/favicon.ico"


@dataclass
class HtmlMetadata:
    title: Optional[str] = None
    description: Optional[str] = None
    favicon_candidates: list[str] = field(default_factory=list)


def extract_html_metadata(html: str, base_url: str) -> HtmlMetadata:
    """
    Parse an HTML document and extract metadata as plain values.

    The parsed tree never leaves this function, so callers can start network
    I/O on the result without holding parser state.

    Args:
        html: Raw HTML document
        base_url: URL the document was fetched from, used to absolutize hrefs

    Returns:
        HtmlMetadata with title, description and ordered favicon candidates
    """
    soup = BeautifulSoup(html, "lxml")
    try:
        return HtmlMetadata(
            title=extract_title(soup),
            description=extract_description(soup),
            favicon_candidates=extract_favicon_candidates(soup, base_url),
        )
    finally:
        soup.decompose()


def extract_title(soup: BeautifulSoup) -> Optional[str]:
    og_title = _meta_content(soup, property="og:title")
    if og_title:
        return og_title

    title_tag = soup.find("title")
    if title_tag:
        title = title_tag.get_text().strip()
        if title:
            return title

    return None


def extract_description(soup: BeautifulSoup) -> Optional[str]:
    return _meta_content(soup, property="og:description") or _meta_content(soup, name="description")


def extract_favicon_candidates(soup: BeautifulSoup, base_url: str) -> list[str]:
    link_tags = soup.find_all("link", href=True)
    candidates: list[str] = []
    for rel in FAVICON_RELS:
        element = next((tag for tag in link_tags if _rel_value(tag) == rel), None)
        if element is None:
            continue
        href = element["href"].strip()
        if href:
            candidates.append(urljoin(base_url, href))

    # Conventional location, always tried last
    candidates.append(urljoin(base_url, DEFAULT_FAVICON_PATH))
    return candidates


def _meta_content(soup: BeautifulSoup, **attrs: str) -> Optional[str]:
    element = soup.find("meta", attrs=attrs)
    if element is None:
        return None
    content = (element.get("content") or "").strip()
    return content or None


def _rel_value(tag) -> str:
    # bs4 splits rel into tokens ("shortcut icon" -> ["shortcut", "icon"]); compare the whole value
    value = tag.get("rel")
    if not value:
        return ""
    tokens = value.split() if isinstance(value, str) else list(value)
    return " ".join(tokens).lower()
