"""
Static registry of recruitment websites polled by the discovery pipeline.

The registry is loaded once at start-up and never mutated. The scheduler walks
it in fixed-size windows, wrapping around the end, so every source is visited
within ceil(len / batch_size) batches.
"""

from __future__ import annotations

import json
from collections.abc import Iterable, Iterator, Sequence
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlparse

from .config import ConfigError

JOB_CATEGORIES: tuple[str, ...] = (
    "Central Government",
    "State Government",
    "Public Sector Undertaking (PSU)",
    "Defence",
    "Railways",
    "Banking",
    "Police",
    "Judiciary",
    "Teaching / Education",
    "Health / Medical",
    "Engineering / Technical",
    "Administrative / Civil Services",
    "Apprenticeship",
    "Other",
)

# Aggregators that republish official notices; never crawl these.
BLACKLISTED_DOMAINS: tuple[str, ...] = (
    "sarkariresult.com",
    "freejobalert.com",
    "mysarkarinaukri.com",
    "sarkarinaukri.com",
    "govtjobs.co.in",
    "jagranjosh.com",
)


@dataclass(frozen=True)
class Source:
    name: str
    base_url: str
    category: str


DEFAULT_SOURCES: tuple[Source, ...] = (
    Source("UPSC", "https://www.upsc.gov.in", "Administrative / Civil Services"),
    Source("SSC", "https://www.ssc.nic.in", "Central Government"),
    Source("RRB", "https://www.rrbcdg.gov.in", "Railways"),
    Source("IBPS", "https://www.ibps.in", "Banking"),
    Source("RBI", "https://opportunities.rbi.org.in", "Banking"),
    Source("SBI", "https://sbi.co.in/careers", "Banking"),
    Source("India Post", "https://indiapostgdsonline.gov.in", "Central Government"),
    Source("DRDO", "https://www.drdo.gov.in", "Defence"),
    Source("ISRO", "https://www.isro.gov.in/Careers.html", "Defence"),
    Source("BARC", "https://recruit.barc.gov.in", "Defence"),
    Source("AIIMS", "https://www.aiimsexams.ac.in", "Health / Medical"),
    Source("ESIC", "https://www.esic.nic.in", "Health / Medical"),
    Source("Coal India", "https://coalindia.in/en-us/careers", "Public Sector Undertaking (PSU)"),
    Source("BSNL", "https://www.bsnl.co.in/opportunities", "Public Sector Undertaking (PSU)"),
    Source("LIC", "https://www.licindia.in/careers", "Public Sector Undertaking (PSU)"),
)


# ---- Round-robin arithmetic -------------------------------------------------


def batch_indices(start: int, size: int, length: int) -> list[int]:
    """
    Indices of the contiguous window beginning at `start`, wrapping at `length`.
    A window never repeats a source, so it holds min(size, length) indices.
    """
    if length <= 0:
        raise ValueError("registry length must be >= 1")
    if size <= 0:
        raise ValueError("batch size must be >= 1")
    start = start % length
    return [(start + i) % length for i in range(min(size, length))]


def next_index(current: int, size: int, length: int) -> int:
    """Advance the round-robin cursor; result is always in [0, length)."""
    if length <= 0:
        raise ValueError("registry length must be >= 1")
    return (current + size) % length


def is_blacklisted(url: str) -> bool:
    host = (urlparse(url).hostname or "").lower()
    return any(host == d or host.endswith("." + d) for d in BLACKLISTED_DOMAINS)


# ---- Registry ---------------------------------------------------------------


class SourceRegistry:
    """Immutable, validated, ordered collection of Sources."""

    def __init__(self, sources: Iterable[Source]):
        self._sources: tuple[Source, ...] = tuple(sources)
        _validate(self._sources)

    def __len__(self) -> int:
        return len(self._sources)

    def __iter__(self) -> Iterator[Source]:
        return iter(self._sources)

    def __getitem__(self, idx: int) -> Source:
        return self._sources[idx]

    def __repr__(self) -> str:
        return f"SourceRegistry({len(self._sources)} sources)"

    def names(self) -> list[str]:
        return [s.name for s in self._sources]

    def batch(self, start: int, size: int) -> list[Source]:
        return [self._sources[i] for i in batch_indices(start, size, len(self._sources))]

    def advance(self, index: int, size: int) -> int:
        return next_index(index, size, len(self._sources))

    # ------------- constructors -------------
    @classmethod
    def defaults(cls) -> SourceRegistry:
        return cls(DEFAULT_SOURCES)

    @classmethod
    def from_list(cls, items: Sequence[Any]) -> SourceRegistry:
        """
        Accepts [{"name": "...", "base_url": "...", "category": "..."}, ...].
        `baseUrl` and `url` are accepted as aliases for `base_url`.
        """
        if not isinstance(items, (list, tuple)):
            raise ConfigError("Expected a list of source objects.")
        out: list[Source] = []
        for i, item in enumerate(items):
            if isinstance(item, Source):
                out.append(item)
                continue
            if not isinstance(item, dict):
                raise ConfigError(f"Source[{i}] must be an object.")
            name = str(item.get("name") or "").strip()
            url = str(item.get("base_url") or item.get("baseUrl") or item.get("url") or "").strip()
            category = str(item.get("category") or "").strip()
            if not name or not url or not category:
                raise ConfigError(f"Source[{i}] requires 'name', 'base_url' and 'category'.")
            out.append(Source(name=name, base_url=url, category=category))
        return cls(out)

    @classmethod
    def from_file(cls, path: str) -> SourceRegistry:
        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError as e:
            raise ConfigError(f"sources file not found: {path}") from e
        except json.JSONDecodeError as e:
            raise ConfigError(f"sources file is invalid JSON: {path}") from e
        return cls.from_list(data)


def _validate(sources: Sequence[Source]) -> None:
    if not sources:
        raise ConfigError("Source registry cannot be empty.")
    seen: set[str] = set()
    for s in sources:
        if s.name in seen:
            raise ConfigError(f"Duplicate source name {s.name!r}.")
        seen.add(s.name)
        parsed = urlparse(s.base_url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ConfigError(f"Source {s.name!r}: base_url must be an absolute http(s) URL.")
        if is_blacklisted(s.base_url):
            raise ConfigError(f"Source {s.name!r}: {parsed.netloc} is a blacklisted aggregator.")
        if s.category not in JOB_CATEGORIES:
            raise ConfigError(f"Source {s.name!r}: unknown category {s.category!r}.")
