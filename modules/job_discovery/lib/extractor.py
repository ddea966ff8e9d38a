"""
AI-backed extraction of job postings from arbitrary recruitment pages.

The model's answer is untrusted input. Everything after the completion call
is fail-soft: malformed, truncated or hallucinated output becomes an
ExtractionResult with zero records, never an exception. The one exception that
does escape is AIConfigError, raised when no AI client could be configured.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Callable
from datetime import date, datetime, timedelta, timezone
from typing import Any, Protocol

from bs4 import BeautifulSoup, Comment

from modules._shared.utils import AIConfigError

from .models import ExtractionResult, JobRecord
from .utils import clip

LOG = logging.getLogger(__name__)

TITLE_MAX = 100
COMPANY_MAX = 100
LOCATION_MAX = 100
TYPE_MAX = 50
DESCRIPTION_MAX = 200
SALARY_MAX = 100

# Raw page prefix handed to the HTML parser, as a multiple of the prompt budget.
RAW_HTML_FACTOR = 50

DEFAULT_TYPE = "Full-time"
DEFAULT_SALARY = "Varies"

_NOISE_TAGS = ("script", "style", "noscript", "svg", "template")
_ARRAY_RE = re.compile(r"\[[\s\S]*\]")
_FENCE_RE = re.compile(r"^\s*```(?:json)?\s*([\s\S]*?)\s*```\s*$", re.I)
_ISO_DATE_RE = re.compile(r"^\s*(\d{4}-\d{2}-\d{2})")
_DEADLINE_FORMATS = (
    "%d/%m/%Y",
    "%d-%m-%Y",
    "%d.%m.%Y",
    "%d %B %Y",
    "%d %b %Y",
    "%B %d, %Y",
    "%b %d, %Y",
)

_PROMPT = """Extract ALL job postings from this raw HTML content of the {source} recruitment portal ({category}). Return ONLY a valid JSON array.

Return this exact format (return [] if no jobs found):
[
  {{
    "title": "Job Title",
    "company": "Company/Organization Name",
    "location": "City/Location",
    "type": "Full-time or Part-time or Contract",
    "deadline": "YYYY-MM-DD (estimate if not clear)",
    "description": "Brief 1-2 sentence job description",
    "salary": "Salary range or 'Varies' or 'Competitive'"
  }}
]

Rules:
- Extract EVERY job posting visible on the page
- If dates are unclear, estimate a reasonable deadline (30-60 days out)
- If information is missing, use reasonable defaults
- Return ONLY the JSON array, no other text
- Ensure all fields are strings

HTML Content:
{html}"""


class CompletionClient(Protocol):
    def generate(self, prompt: str, image_bytes: bytes | None = None) -> str: ...


# ---- Pure helpers -----------------------------------------------------------


def prepare_html(html: str, limit: int = 12000) -> str:
    """
    Drop non-content markup, then keep the first `limit` characters.

    Only the first `RAW_HTML_FACTOR * limit` characters of the page are parsed.
    """
    soup = BeautifulSoup(html[: limit * RAW_HTML_FACTOR], "html.parser")
    for tag in soup(_NOISE_TAGS):
        tag.decompose()
    for comment in soup.find_all(string=lambda s: isinstance(s, Comment)):
        comment.extract()
    cleaned = re.sub(r"\n\s*\n+", "\n", str(soup)).strip()
    return cleaned[:limit]


def build_prompt(html_snippet: str, source_name: str, category: str) -> str:
    return _PROMPT.format(source=source_name, category=category, html=html_snippet)


def parse_deadline(value: Any, today: date, default_days: int = 60) -> date:
    """Best-effort date parse; anything unusable becomes today + default_days."""
    fallback = today + timedelta(days=default_days)
    if value is None:
        return fallback
    text = str(value).strip()
    if not text:
        return fallback

    m = _ISO_DATE_RE.match(text)
    if m:
        try:
            return date.fromisoformat(m.group(1))
        except ValueError:
            return fallback

    for fmt in _DEADLINE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return fallback


def _utc_today() -> date:
    return datetime.now(timezone.utc).date()


def _strip_fence(text: str) -> str:
    m = _FENCE_RE.match(text)
    return m.group(1) if m else text


def _locate_payload(text: str) -> tuple[Any, str | None]:
    """
    Return (parsed JSON, None) or (None, reason).

    A reply that is itself valid JSON is taken whole, so an object reply is
    reported as "not an array" rather than mined for a nested list.
    """
    body = _strip_fence(text.strip())
    try:
        return json.loads(body), None
    except ValueError:
        pass

    m = _ARRAY_RE.search(text)
    if not m:
        return None, "no JSON array in response"
    try:
        return json.loads(m.group(0)), None
    except ValueError as e:
        return None, f"invalid JSON: {e}"


def _field(value: Any, limit: int, default: str = "") -> str:
    """Clipped text for one reply field; only strings and plain numbers count as present."""
    if isinstance(value, bool) or not isinstance(value, (str, int, float)):
        value = None
    return clip(value, limit, default=default)


def _has_title_and_company(item: Any) -> bool:
    return (
        isinstance(item, dict)
        and bool(_field(item.get("title"), TITLE_MAX))
        and bool(_field(item.get("company"), COMPANY_MAX))
    )


def _to_record(raw: dict[str, Any], source_name: str, category: str, today: date, default_days: int) -> JobRecord:
    return JobRecord(
        title=_field(raw.get("title"), TITLE_MAX),
        company=_field(raw.get("company"), COMPANY_MAX),
        location=_field(raw.get("location"), LOCATION_MAX, default=source_name),
        type=_field(raw.get("type"), TYPE_MAX, default=DEFAULT_TYPE),
        category=category,
        deadline=parse_deadline(raw.get("deadline"), today, default_days),
        description=_field(raw.get("description"), DESCRIPTION_MAX, default=f"Jobs from {source_name}"),
        salary=_field(raw.get("salary"), SALARY_MAX, default=DEFAULT_SALARY),
    )


def parse_jobs(
    text: str | None,
    source_name: str,
    category: str,
    *,
    max_jobs: int = 5,
    default_deadline_days: int = 60,
    today: date | None = None,
) -> ExtractionResult:
    """Validate a model reply into at most `max_jobs` JobRecords."""
    if not text or not text.strip():
        return ExtractionResult(status="parse_failed", error="empty response")

    payload, reason = _locate_payload(text)
    if reason:
        LOG.info("No usable JSON for %s: %s", source_name, reason)
        return ExtractionResult(status="parse_failed", error=reason)
    if not isinstance(payload, list):
        LOG.info("Response for %s is %s, not an array", source_name, type(payload).__name__)
        return ExtractionResult(status="parse_failed", error=f"expected array, got {type(payload).__name__}")

    day = today or _utc_today()
    valid = [item for item in payload if _has_title_and_company(item)]
    dropped = len(payload) - len(valid)
    if dropped:
        LOG.debug("Dropped %d entries without title/company for %s", dropped, source_name)

    records = tuple(_to_record(item, source_name, category, day, default_deadline_days) for item in valid[:max_jobs])
    if not records:
        return ExtractionResult(status="no_jobs")
    return ExtractionResult(status="jobs", records=records)


# ---- Extractor --------------------------------------------------------------


class Extractor:
    def __init__(
        self,
        client: CompletionClient | None,
        *,
        html_char_limit: int = 12000,
        max_jobs: int = 5,
        default_deadline_days: int = 60,
        unavailable_reason: str | None = None,
        today: Callable[[], date] = _utc_today,
    ):
        self._client = client
        self.html_char_limit = html_char_limit
        self.max_jobs = max_jobs
        self.default_deadline_days = default_deadline_days
        self._unavailable_reason = unavailable_reason
        self._today = today

    @property
    def available(self) -> bool:
        return self._client is not None

    @property
    def unavailable_reason(self) -> str | None:
        if self._client is not None:
            return None
        return self._unavailable_reason or "AI client not initialized"

    def extract(self, html: str, source_name: str, category: str) -> ExtractionResult:
        if self._client is None:
            raise AIConfigError(self.unavailable_reason or "AI client not initialized")

        snippet = prepare_html(html, self.html_char_limit)
        LOG.info("Sending %d chars to the model for %s", len(snippet), source_name)
        try:
            text = self._client.generate(build_prompt(snippet, source_name, category))
        except AIConfigError:
            raise
        except Exception as e:
            LOG.warning("AI completion failed for %s: %s", source_name, e)
            return ExtractionResult(status="ai_error", error=f"{type(e).__name__}: {e}")

        result = parse_jobs(
            text,
            source_name,
            category,
            max_jobs=self.max_jobs,
            default_deadline_days=self.default_deadline_days,
            today=self._today(),
        )
        LOG.info("Extracted %d job(s) from %s (%s)", len(result.records), source_name, result.status)
        return result
