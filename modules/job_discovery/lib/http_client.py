# job_discovery/http_client.py
from __future__ import annotations

import itertools
import logging
import threading
import time
from collections.abc import Callable, Mapping, Sequence
from typing import Any

import requests
from requests.adapters import HTTPAdapter

from .models import FetchResult

LOG = logging.getLogger(__name__)

USER_AGENTS: tuple[str, ...] = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:121.0) Gecko/20100101 Firefox/121.0",
)

BROWSER_HEADERS: dict[str, str] = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.5",
    "Accept-Encoding": "gzip, deflate",
    "Connection": "keep-alive",
    "Upgrade-Insecure-Requests": "1",
    "Cache-Control": "max-age=0",
    "DNT": "1",
    "Pragma": "no-cache",
}


class HttpClient:
    """
    Shared HTTP client for polite page fetching.

    Retries live in `fetch_html`, not in a urllib3 Retry: every attempt gets
    the next User-Agent and an empty body counts as a failed attempt.
    """

    def __init__(
        self,
        timeout: float = 15.0,
        max_retries: int = 3,
        backoff_base: float = 2.0,
        user_agents: Sequence[str] = USER_AGENTS,
        session: requests.Session | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if max_retries < 1:
            raise ValueError("max_retries must be >= 1")
        if not user_agents:
            raise ValueError("user_agents cannot be empty")
        self.timeout = float(timeout)
        self.max_retries = int(max_retries)
        self.backoff_base = float(backoff_base)
        self.user_agents = tuple(user_agents)
        self._ua_cycle = itertools.cycle(self.user_agents)
        self._ua_lock = threading.Lock()
        self._sleep = sleep

        if session is None:
            session = requests.Session()
            adapter = HTTPAdapter(pool_connections=10, pool_maxsize=20)
            session.mount("http://", adapter)
            session.mount("https://", adapter)
        self.session = session

    # ---- headers ----
    def next_user_agent(self) -> str:
        with self._ua_lock:
            return next(self._ua_cycle)

    def _headers(self, extra: Mapping[str, str] | None = None) -> dict[str, str]:
        headers = dict(BROWSER_HEADERS)
        headers["User-Agent"] = self.next_user_agent()
        if extra:
            headers.update(extra)
        return headers

    def backoff_delay(self, attempt: int) -> float:
        """Delay before `attempt` (1-based): 0, base, 2*base, 4*base, ..."""
        if attempt <= 1:
            return 0.0
        return self.backoff_base * (2 ** (attempt - 2))

    # ---- fetching ----
    def fetch_html(self, url: str) -> FetchResult:
        """
        GET `url` with timeout, retry and exponential backoff.

        Never raises for network trouble: a timeout, connection error, non-2xx
        status or empty body is a failed attempt, and exhausting the retry
        budget returns a FetchResult carrying the last error.
        """
        last_error: str | None = None
        last_status: int | None = None

        for attempt in range(1, self.max_retries + 1):
            delay = self.backoff_delay(attempt)
            if delay > 0:
                LOG.info("Retry %d/%d for %s after %.1fs", attempt, self.max_retries, url, delay)
                self._sleep(delay)

            try:
                resp = self.session.get(url, headers=self._headers(), timeout=self.timeout)
            except requests.Timeout:
                last_error = f"timeout after {self.timeout:g}s"
                LOG.debug("Attempt %d for %s timed out", attempt, url)
                continue
            except requests.RequestException as e:
                last_error = f"{type(e).__name__}: {e}"
                LOG.debug("Attempt %d for %s failed: %s", attempt, url, last_error)
                continue

            last_status = resp.status_code
            if not resp.ok:
                last_error = f"HTTP {resp.status_code}"
                continue

            if not resp.encoding and resp.apparent_encoding:
                resp.encoding = resp.apparent_encoding
            text = resp.text or ""
            if not text.strip():
                last_error = "Empty response"
                continue

            return FetchResult(url=url, html=text, attempts=attempt, status_code=resp.status_code)

        LOG.warning("Giving up on %s after %d attempt(s): %s", url, self.max_retries, last_error)
        return FetchResult(
            url=url,
            error=last_error or "unknown error",
            attempts=self.max_retries,
            status_code=last_status,
        )

    def fetch(self, url: str) -> str | None:
        """HTML text, or None once retries are exhausted."""
        return self.fetch_html(url).html

    def get_text(
        self,
        url: str,
        *,
        headers: Mapping[str, str] | None = None,
        timeout: float | None = None,
        **kwargs: Any,
    ) -> str:
        """Single-shot GET returning decoded text; raises on HTTP errors."""
        resp = self.session.get(url, headers=self._headers(headers), timeout=timeout or self.timeout, **kwargs)
        resp.raise_for_status()
        if not resp.encoding and resp.apparent_encoding:
            resp.encoding = resp.apparent_encoding
        return resp.text

    def close(self) -> None:
        try:
            self.session.close()
        except Exception:
            LOG.debug("HttpClient.close() swallow", exc_info=True)
