"""
Manifest URL extraction, best-candidate selection and page metadata.

Candidates are collected in four passes that share one ordered set:
DOM attributes, inline script text, the raw HTML, then URLs the browser
requested while rendering (rendered mode only).
"""

import logging
import re
from dataclasses import dataclass
from typing import Iterable, Iterator, List, Optional
from urllib.parse import urljoin, urlparse

from bs4 import BeautifulSoup

logger = logging.getLogger(__name__)

MANIFEST_MARKER = ".m3u8"

# Absolute .m3u8 URL with an optional query string; never crosses whitespace,
# quotes or angle brackets.
MANIFEST_URL_RE = re.compile(
    r"https?://[^\s'\"<>]+?\.m3u8(?:\?[^\s'\"<>]*)?",
    re.IGNORECASE,
)

PRIORITY_RE = re.compile(r"master|index|playlist", re.IGNORECASE)


class CandidateSet:
    """Insertion-ordered set of manifest URLs. Entries are never removed."""

    def __init__(self):
        self._urls = {}

    def add(self, url):
        if url and url not in self._urls:
            self._urls[url] = None

    def update(self, urls: Iterable[str]):
        for url in urls:
            self.add(url)

    def __contains__(self, url):
        return url in self._urls

    def __iter__(self) -> Iterator[str]:
        return iter(self._urls)

    def __len__(self):
        return len(self._urls)

    def as_list(self) -> List[str]:
        return list(self._urls)


def resolve(base_url, ref) -> Optional[str]:
    """Resolve ``ref`` against ``base_url``; None when the result is not a usable URL."""
    try:
        absolute = urljoin(base_url, ref.strip())
        p = urlparse(absolute)
        if p.scheme not in ("http", "https") or not p.hostname:
            return None
    except ValueError:
        return None
    return absolute


def scan_text(text) -> List[str]:
    """Find absolute manifest URLs in free text (script bodies, raw HTML)."""
    if not text:
        return []
    # JSON-encoded player configs escape slashes as "\/".
    return MANIFEST_URL_RE.findall(text.replace("\\/", "/"))


def _add_resolved(candidates, base_url, refs):
    for ref in refs:
        url = resolve(base_url, ref)
        if url is None:
            logger.debug("Dropping malformed candidate %r", ref)
            continue
        candidates.add(url)


def _attribute_refs(soup):
    for el in soup.find_all(True):
        for attr in ("src", "href"):
            value = el.get(attr)
            if isinstance(value, str) and MANIFEST_MARKER in value.lower():
                yield value


def _script_refs(soup):
    for script in soup.find_all("script"):
        yield from scan_text(script.string or script.get_text())


def extract_manifest_urls(html, base_url, network_urls=(), soup=None) -> List[str]:
    """
    Collect candidate manifest URLs from a page, deduplicated in first-seen order.
    Malformed references are skipped silently.
    """
    if soup is None:
        soup = BeautifulSoup(html or "", "html.parser")
    candidates = CandidateSet()
    _add_resolved(candidates, base_url, _attribute_refs(soup))
    _add_resolved(candidates, base_url, _script_refs(soup))
    _add_resolved(candidates, base_url, scan_text(html))
    _add_resolved(candidates, base_url, network_urls)
    return candidates.as_list()


def select_best(candidates) -> Optional[str]:
    """First candidate naming a master/index/playlist, else the first one, else None."""
    for url in candidates:
        if PRIORITY_RE.search(url):
            return url
    for url in candidates:
        return url
    return None


@dataclass(frozen=True)
class PageMetadata:
    title: Optional[str] = None
    og_title: Optional[str] = None
    og_video: Optional[str] = None
    og_description: Optional[str] = None

    def to_dict(self):
        return {
            "title": self.title,
            "ogTitle": self.og_title,
            "ogVideo": self.og_video,
            "ogDescription": self.og_description,
        }


def _meta_content(soup, prop):
    tag = soup.find("meta", attrs={"property": prop})
    if tag is None:
        return None
    content = tag.get("content")
    return content or None


def extract_metadata(html, soup=None) -> PageMetadata:
    if soup is None:
        soup = BeautifulSoup(html or "", "html.parser")
    title_tag = soup.find("title")
    title = title_tag.get_text().strip() if title_tag else ""
    return PageMetadata(
        title=title or None,
        og_title=_meta_content(soup, "og:title"),
        og_video=_meta_content(soup, "og:video"),
        og_description=_meta_content(soup, "og:description"),
    )
