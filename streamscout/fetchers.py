"""
Page fetch strategies
---------------------
Two interchangeable ways to obtain a page snapshot, picked once at startup:

- StaticFetcher: one plain HTTP GET through requests.
- RenderedFetcher: a headless Chromium session (Playwright) that executes
  page scripts and records manifest URLs requested while the page loads.
"""

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Tuple

import requests
from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import TimeoutError as PlaywrightTimeoutError
from playwright.sync_api import sync_playwright

from .errors import RenderTimeoutError, UpstreamFetchError
from .extract import MANIFEST_MARKER

logger = logging.getLogger(__name__)

BROWSER_ARGS = ["--no-sandbox", "--disable-setuid-sandbox"]
SETTLE_POLL_MS = 250
STATIC_CHUNK_SIZE = 65536
HTML_PREVIEW_CHARS = 500


@dataclass(frozen=True)
class PageSnapshot:
    url: str
    html: str
    network_urls: Tuple[str, ...] = ()


class PageFetcher(ABC):
    """Capability interface: turn a target URL into a PageSnapshot."""

    def __init__(self, settings):
        self.settings = settings

    @abstractmethod
    def fetch(self, url) -> PageSnapshot:
        """Fetch ``url``; raise UpstreamFetchError on any failure."""


class StaticFetcher(PageFetcher):
    def _session(self):
        session = requests.Session()
        session.max_redirects = self.settings.max_redirects
        session.headers.update({
            "User-Agent": self.settings.user_agent,
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
        })
        return session

    def fetch(self, url) -> PageSnapshot:
        logger.info("Fetching %s", url)
        deadline = time.monotonic() + self.settings.static_timeout
        with self._session() as session:
            try:
                r = session.get(url, stream=True, timeout=self.settings.static_timeout)
            except requests.RequestException as e:
                raise UpstreamFetchError(str(e)) from e
            try:
                r.raise_for_status()
                body = self._read_body(r, deadline)
            except requests.RequestException as e:
                raise UpstreamFetchError(str(e)) from e
            finally:
                r.close()
            if r.url != url:
                logger.warning("Redirected from %s to %s", url, r.url)
            return PageSnapshot(url=r.url, html=body.decode(r.encoding or "utf-8", errors="replace"))

    def _read_body(self, r, deadline):
        """
        Read the page in chunks. The socket timeout only bounds each read, so
        the total time and size are checked here.
        """
        content = []
        read = 0
        for chunk in r.iter_content(chunk_size=STATIC_CHUNK_SIZE):
            if time.monotonic() > deadline:
                raise UpstreamFetchError(
                    f"Timed out after {self.settings.static_timeout:g}s reading {r.url}"
                )
            if not chunk:
                continue
            read += len(chunk)
            if read > self.settings.static_max_bytes:
                raise UpstreamFetchError(f"Page larger than {self.settings.static_max_bytes} bytes")
            content.append(chunk)
        return b"".join(content)


class RenderedFetcher(PageFetcher):
    """
    Render the page in an isolated Chromium instance. The browser is always
    closed before returning, whether navigation succeeded, timed out or raised.
    """

    def fetch(self, url) -> PageSnapshot:
        logger.info("Rendering %s", url)
        try:
            with sync_playwright() as p:
                browser = p.chromium.launch(headless=self.settings.headless, args=BROWSER_ARGS)
                try:
                    return self._render(browser, url)
                finally:
                    browser.close()
        except PlaywrightTimeoutError as e:
            raise RenderTimeoutError(f"Timed out rendering {url}: {e.message}") from e
        except PlaywrightError as e:
            raise UpstreamFetchError(e.message) from e

    def _render(self, browser, url):
        context = browser.new_context(user_agent=self.settings.user_agent)
        page = context.new_page()
        seen = []
        last_seen = [time.monotonic()]

        def on_request(req):
            u = req.url
            if MANIFEST_MARKER in u.lower() and u not in seen:
                seen.append(u)
                last_seen[0] = time.monotonic()

        page.on("request", on_request)
        deadline = time.monotonic() + self.settings.navigation_timeout
        page.goto(
            url,
            wait_until="load",
            timeout=self.settings.navigation_timeout * 1000,
        )
        self._wait_for_idle(page, deadline)
        self._settle(page, seen, last_seen)

        final_url = page.url
        html = page.content()
        if final_url != url:
            logger.warning("Redirected from %s to %s", url, final_url)
        if html.lstrip()[:9].lower() == "<!doctype":
            # Usually an error or interstitial page rather than a player; candidates
            # may still be present so this is only reported.
            logger.warning("Received HTML page instead of stream content from %s", final_url)
            logger.debug("%s", html[:HTML_PREVIEW_CHARS])
        return PageSnapshot(url=final_url, html=html, network_urls=tuple(seen))

    def _wait_for_idle(self, page, deadline):
        # A playing stream keeps fetching segments and may never go idle.
        remaining_ms = int((deadline - time.monotonic()) * 1000)
        if remaining_ms <= 0:
            return
        try:
            page.wait_for_load_state("networkidle", timeout=remaining_ms)
        except PlaywrightTimeoutError:
            logger.info("Network never went idle on %s, continuing", page.url)

    def _settle(self, page, seen, last_seen):
        """
        Give late asynchronous requests up to ``settle_delay`` seconds to fire.
        Stops early once a manifest was observed and nothing new arrived for
        ``quiet_window`` seconds.
        """
        deadline = time.monotonic() + self.settings.settle_delay
        while True:
            now = time.monotonic()
            if now >= deadline:
                return
            if seen and now - last_seen[0] >= self.settings.quiet_window:
                return
            step = min(SETTLE_POLL_MS, int((deadline - now) * 1000) + 1)
            page.wait_for_timeout(step)


FETCHERS = {
    "static": StaticFetcher,
    "rendered": RenderedFetcher,
}


def build_fetcher(settings) -> PageFetcher:
    return FETCHERS[settings.fetch_mode](settings)
