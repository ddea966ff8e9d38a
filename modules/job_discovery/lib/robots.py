"""
robots.txt policy for the discovery crawler.

Fail-open: a URL is refused only when a robots.txt was fetched and parsed
and explicitly disallows it. A missing file, an HTML error page served in
its place, or a timeout all allow the URL.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from urllib.parse import urlparse
from urllib.robotparser import RobotFileParser

from .http_client import HttpClient

LOG = logging.getLogger(__name__)

ROBOTS_CACHE_SECONDS = 12 * 60 * 60


def robots_url_for(url: str) -> str:
    parsed = urlparse(url)
    return f"{parsed.scheme}://{parsed.netloc}/robots.txt"


class RobotsPolicy:
    def __init__(
        self,
        client: HttpClient,
        user_agent: str = "*",
        ttl_seconds: float = ROBOTS_CACHE_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._client = client
        self.user_agent = user_agent
        self._ttl = float(ttl_seconds)
        self._clock = clock
        # origin -> (fetched_at, parser or None when robots.txt is unusable)
        self._cache: dict[str, tuple[float, RobotFileParser | None]] = {}
        self._lock = threading.Lock()

    def is_allowed(self, url: str) -> bool:
        parser = self._parser_for(robots_url_for(url))
        if parser is None:
            return True
        try:
            return parser.can_fetch(self.user_agent, url)
        except Exception:
            LOG.debug("robots can_fetch failed for %s; allowing", url, exc_info=True)
            return True

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()

    # ---- internals ----
    def _parser_for(self, robots_url: str) -> RobotFileParser | None:
        now = self._clock()
        with self._lock:
            hit = self._cache.get(robots_url)
        if hit is not None and now - hit[0] < self._ttl:
            return hit[1]

        parser = self._load(robots_url)
        with self._lock:
            self._cache[robots_url] = (now, parser)
        return parser

    def _load(self, robots_url: str) -> RobotFileParser | None:
        try:
            text = self._client.get_text(robots_url)
        except Exception as e:
            LOG.debug("robots.txt unavailable at %s (%s); treating as allowed", robots_url, e)
            return None

        try:
            parser = RobotFileParser(robots_url)
            parser.parse(text.splitlines())
        except Exception:
            LOG.debug("robots.txt at %s could not be parsed; treating as allowed", robots_url, exc_info=True)
            return None
        return parser
