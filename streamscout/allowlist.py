"""Hostname allowlist checks for scrape targets and relay sources."""

from urllib.parse import urlparse

from .errors import ForbiddenError, ValidationError


def parse_http_target(u: str):
    """Return the lower-cased hostname of an http(s) URL, or None if unparseable."""
    try:
        p = urlparse(u)
        host = p.hostname
    except (TypeError, ValueError, AttributeError):
        return None
    if p.scheme not in ("http", "https") or not host:
        return None
    return host.lower()


def host_matches(host, domain):
    # "example.com" admits example.com and *.example.com, never example.com.evil.com
    # or evil-example.com.
    return host == domain or host.endswith("." + domain)


def is_allowed(u, allowed_domains=()):
    host = parse_http_target(u)
    if host is None:
        return False
    if not allowed_domains:
        return True
    return any(host_matches(host, d) for d in allowed_domains)


def check_target(u, allowed_domains=()):
    """Raise ValidationError / ForbiddenError unless ``u`` may be fetched."""
    if parse_http_target(u) is None:
        raise ValidationError(f"Invalid URL: {u}")
    if not is_allowed(u, allowed_domains):
        raise ForbiddenError("Domain not allowed")
