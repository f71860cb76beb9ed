"""
Stream relay
------------
Forwards a GET for an upstream resource, keeping byte-range semantics and a
fixed set of content/caching headers, and streams the body back in chunks
without buffering the whole payload.
"""

import logging
from typing import Dict, Iterator
from urllib.parse import urlparse

import requests

from .allowlist import check_target
from .errors import UpstreamFetchError, ValidationError

logger = logging.getLogger(__name__)

PASSTHROUGH_HEADERS = (
    "Content-Type",
    "Content-Length",
    "Accept-Ranges",
    "Content-Range",
    "ETag",
    "Last-Modified",
    "Cache-Control",
    "Access-Control-Allow-Origin",
)


def origin_of(u):
    p = urlparse(u)
    return f"{p.scheme}://{p.netloc}"


def upstream_headers(src, user_agent, range_header=None) -> Dict[str, str]:
    headers = {
        "User-Agent": user_agent,
        "Referer": origin_of(src),
        # Keep bytes verbatim so a mirrored Content-Length stays correct.
        "Accept-Encoding": "identity",
    }
    if range_header:
        headers["Range"] = range_header
    return headers


class RelaySession:
    """
    One upstream response owned by one proxy request. The upstream connection
    is released when the body is exhausted, on error, or when close() is called
    because the client went away.
    """

    def __init__(self, response, chunk_size, session=None):
        self.response = response
        self.chunk_size = chunk_size
        self._session = session
        self.closed = False

    @property
    def status_code(self):
        return self.response.status_code

    @property
    def headers(self) -> Dict[str, str]:
        mirrored = {}
        for name in PASSTHROUGH_HEADERS:
            value = self.response.headers.get(name)
            if value:
                mirrored[name] = value
        mirrored["Access-Control-Allow-Origin"] = "*"
        return mirrored

    def iter_chunks(self) -> Iterator[bytes]:
        try:
            for chunk in self.response.iter_content(chunk_size=self.chunk_size):
                if chunk:
                    yield chunk
        finally:
            self.close()

    def close(self):
        if self.closed:
            return
        self.closed = True
        self.response.close()
        if self._session is not None:
            self._session.close()


def open_relay(src, range_header, settings, session_factory=requests.Session) -> RelaySession:
    """
    Open the upstream stream for ``src``. Statuses outside [200, 400) and any
    requests failure raise UpstreamFetchError.
    """
    if not src:
        raise ValidationError("Missing ?src=")
    check_target(src, settings.allowed_domains)

    session = session_factory()
    session.max_redirects = settings.max_redirects

    logger.info("Relaying %s (range=%s)", src, range_header or "-")
    try:
        r = session.get(
            src,
            stream=True,
            timeout=(settings.connect_timeout, settings.relay_timeout),
            headers=upstream_headers(src, settings.user_agent, range_header),
        )
    except requests.RequestException as e:
        session.close()
        raise UpstreamFetchError(str(e)) from e

    if not 200 <= r.status_code < 400:
        r.close()
        session.close()
        raise UpstreamFetchError(f"Request failed with status code {r.status_code}")

    return RelaySession(r, settings.chunk_size, session=session)
