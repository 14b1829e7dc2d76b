"""Pull scannable pieces out of HTML: URL attributes, inline scripts, inline styles."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional
from urllib.parse import urljoin, urlsplit

from bs4 import BeautifulSoup  # type: ignore

from .harvest_config import URL_ATTRIBUTES

logger = logging.getLogger(__name__)

SUBRESOURCE_LIMIT = 50


@dataclass
class DocumentParts:
    attribute_urls: List[str] = field(default_factory=list)
    scripts: List[str] = field(default_factory=list)
    styles: List[str] = field(default_factory=list)
    subresources: List[str] = field(default_factory=list)


def _soup(html: str) -> BeautifulSoup:
    return BeautifulSoup(html or "", "lxml")


def _has_url_attribute(tag) -> bool:
    return any(tag.has_attr(attr) for attr in URL_ATTRIBUTES)


def attribute_urls(soup: BeautifulSoup) -> List[str]:
    """Values of href/src/action/data-url on every element, in document order."""

    urls: List[str] = []
    for tag in soup.find_all(_has_url_attribute):
        for attr in URL_ATTRIBUTES:
            value = tag.get(attr)
            if isinstance(value, list):
                value = " ".join(value)
            value = (value or "").strip()
            if value:
                urls.append(value)
    return urls


def subresource_urls(soup: BeautifulSoup, base_url: Optional[str], limit: int = SUBRESOURCE_LIMIT) -> List[str]:
    """Absolute http(s) URLs of external scripts and stylesheets a browser would load."""

    if not base_url:
        return []
    found: List[str] = []
    seen = set()
    candidates = [tag.get("src") for tag in soup.find_all("script", src=True)]
    for link in soup.find_all("link", href=True):
        rel = link.get("rel") or []
        if isinstance(rel, str):
            rel = rel.split()
        if "stylesheet" in [r.lower() for r in rel]:
            candidates.append(link.get("href"))
    for raw in candidates:
        href = (raw or "").strip()
        if not href:
            continue
        absolute = urljoin(base_url, href)
        if urlsplit(absolute).scheme not in {"http", "https"}:
            continue
        if absolute in seen:
            continue
        seen.add(absolute)
        found.append(absolute)
        if len(found) >= limit:
            break
    return found


def extract_document(html: str, base_url: Optional[str] = None) -> DocumentParts:
    soup = _soup(html)
    parts = DocumentParts(attribute_urls=attribute_urls(soup))
    for script in soup.find_all("script"):
        text = script.string or script.get_text()
        if text and text.strip():
            parts.scripts.append(text)
    for style in soup.find_all("style"):
        text = style.string or style.get_text()
        if text and text.strip():
            parts.styles.append(text)
    parts.subresources = subresource_urls(soup, base_url)
    logger.debug(
        "document parts: %d urls, %d scripts, %d styles, %d subresources",
        len(parts.attribute_urls),
        len(parts.scripts),
        len(parts.styles),
        len(parts.subresources),
    )
    return parts


def extract_fragment_urls(html: str) -> List[str]:
    """Attribute URLs from a markup fragment added after page load."""

    return attribute_urls(_soup(html))
