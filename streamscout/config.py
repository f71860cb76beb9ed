"""
Process-wide configuration, read once from the environment at startup.
"""

import multiprocessing
import os
from dataclasses import dataclass, field
from typing import Tuple

from fake_useragent import UserAgent

FETCH_MODES = ("static", "rendered")

FALLBACK_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/126.0.0.0 Safari/537.36"
)


def browser_user_agent():
    """Pick a desktop Chrome UA string, falling back to a fixed one."""
    try:
        return UserAgent().chrome
    except Exception:
        return FALLBACK_USER_AGENT


def parse_allowlist(raw):
    """
    Turn a comma-separated ALLOWLIST value into normalised domain suffixes.
    "*.example.com", ".example.com" and "Example.com" all become "example.com".
    """
    domains = []
    for item in (raw or "").split(","):
        d = item.strip().lower()
        if d.startswith("*."):
            d = d[2:]
        d = d.lstrip(".")
        if d and d not in domains:
            domains.append(d)
    return tuple(domains)


def _env_bool(env, name, default):
    value = env.get(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    """Immutable settings shared read-only by every request."""

    port: int = 5173
    allowed_domains: Tuple[str, ...] = ()
    fetch_mode: str = "rendered"
    user_agent: str = FALLBACK_USER_AGENT
    chunk_size: int = 131072  # 128 KB per relayed chunk
    connect_timeout: float = 5.0
    relay_timeout: float = 20.0
    static_timeout: float = 15.0
    static_max_bytes: int = 10 * 1024 * 1024  # 10 MB max page
    navigation_timeout: float = 20.0
    settle_delay: float = 5.0
    quiet_window: float = 1.5
    max_redirects: int = 5
    headless: bool = True
    log_level: str = "info"
    use_gunicorn: bool = False
    workers: int = field(default_factory=multiprocessing.cpu_count)

    def __post_init__(self):
        if self.fetch_mode not in FETCH_MODES:
            raise ValueError(
                f"FETCH_MODE must be one of {', '.join(FETCH_MODES)}, got {self.fetch_mode!r}"
            )
        if self.chunk_size <= 0:
            raise ValueError("CHUNK_SIZE must be positive")

    @classmethod
    def from_env(cls, env=None):
        env = os.environ if env is None else env
        return cls(
            port=int(env.get("PORT", 5173)),
            allowed_domains=parse_allowlist(env.get("ALLOWLIST", "")),
            fetch_mode=env.get("FETCH_MODE", "rendered").strip().lower(),
            user_agent=env.get("USER_AGENT") or browser_user_agent(),
            chunk_size=int(env.get("CHUNK_SIZE", 131072)),
            connect_timeout=float(env.get("CONNECT_TIMEOUT", 5.0)),
            relay_timeout=float(env.get("RELAY_TIMEOUT", 20.0)),
            static_timeout=float(env.get("STATIC_TIMEOUT", 15.0)),
            static_max_bytes=int(env.get("STATIC_MAX_BYTES", 10 * 1024 * 1024)),
            navigation_timeout=float(env.get("NAVIGATION_TIMEOUT", 20.0)),
            settle_delay=float(env.get("SETTLE_DELAY", 5.0)),
            quiet_window=float(env.get("QUIET_WINDOW", 1.5)),
            headless=_env_bool(env, "HEADLESS", True),
            log_level=env.get("LOG_LEVEL", "info"),
            use_gunicorn=_env_bool(env, "USE_GUNICORN", False),
            workers=int(env.get("WORKERS", multiprocessing.cpu_count())),
        )
