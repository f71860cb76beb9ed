"""
Discovery pipeline: validate -> fetch -> extract -> select.

Each stage consumes the previous stage's output and any failure stops the
pipeline; nothing is retried here.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional, Tuple

from bs4 import BeautifulSoup

from .allowlist import check_target
from .errors import ValidationError
from .extract import PageMetadata, extract_manifest_urls, extract_metadata, select_best

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DiscoveryResult:
    page: str
    meta: PageMetadata = field(default_factory=PageMetadata)
    candidates: Tuple[str, ...] = ()
    best: Optional[str] = None

    def __post_init__(self):
        if self.best is not None and self.best not in self.candidates:
            raise ValueError(f"selected URL {self.best!r} is not a candidate")

    def to_dict(self):
        return {
            "ok": True,
            "page": self.page,
            "meta": self.meta.to_dict(),
            "m3u8Urls": list(self.candidates),
            "best": self.best,
        }


def discover(target, settings, fetcher) -> DiscoveryResult:
    if not target:
        raise ValidationError("Missing ?url=")
    check_target(target, settings.allowed_domains)

    snapshot = fetcher.fetch(target)

    soup = BeautifulSoup(snapshot.html or "", "html.parser")
    candidates = extract_manifest_urls(
        snapshot.html, snapshot.url, snapshot.network_urls, soup=soup
    )
    meta = extract_metadata(snapshot.html, soup=soup)

    best = select_best(candidates)
    logger.info("Found %d manifest candidate(s) on %s, best=%s", len(candidates), snapshot.url, best)
    return DiscoveryResult(page=snapshot.url, meta=meta, candidates=tuple(candidates), best=best)
