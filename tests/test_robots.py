# tests/test_robots.py
import requests
from conftest import FakeResponse, FakeSession

from modules.job_discovery.lib.http_client import HttpClient
from modules.job_discovery.lib.robots import RobotsPolicy, robots_url_for

ROBOTS = "https://portal.example.gov.in/robots.txt"


def _policy(routes, clock=None, **kw):
    session = FakeSession(routes)
    client = HttpClient(session=session, sleep=lambda s: None)
    if clock is not None:
        kw["clock"] = clock
    return RobotsPolicy(client, **kw), session


def test_robots_url_for_uses_origin():
    assert robots_url_for("https://a.gov.in/x/y?z=1") == "https://a.gov.in/robots.txt"
    assert robots_url_for("http://a.gov.in:8080/") == "http://a.gov.in:8080/robots.txt"


def test_explicit_disallow_blocks():
    policy, _ = _policy({ROBOTS: [FakeResponse(200, "User-agent: *\nDisallow: /careers\n")]})
    assert policy.is_allowed("https://portal.example.gov.in/careers") is False
    assert policy.is_allowed("https://portal.example.gov.in/about") is True


def test_agent_specific_rules():
    text = "User-agent: Googlebot\nDisallow: /\n\nUser-agent: *\nAllow: /\n"
    policy, _ = _policy({ROBOTS: [FakeResponse(200, text)]})
    assert policy.is_allowed("https://portal.example.gov.in/careers") is True

    strict, _ = _policy({ROBOTS: [FakeResponse(200, text)]}, user_agent="Googlebot")
    assert strict.is_allowed("https://portal.example.gov.in/careers") is False


def test_missing_or_unreachable_robots_fails_open():
    policy, _ = _policy({ROBOTS: [FakeResponse(404, "nope")]})
    assert policy.is_allowed("https://portal.example.gov.in/careers") is True

    policy, _ = _policy({ROBOTS: [requests.ConnectionError("down")]})
    assert policy.is_allowed("https://portal.example.gov.in/careers") is True


def test_html_error_page_in_place_of_robots_is_allowed():
    policy, _ = _policy({ROBOTS: [FakeResponse(200, "<html><body>Server error</body></html>")]})
    assert policy.is_allowed("https://portal.example.gov.in/careers") is True


def test_results_are_cached_per_origin_until_ttl():
    now = [1000.0]
    policy, session = _policy(
        {ROBOTS: [FakeResponse(200, "User-agent: *\nDisallow: /private\n")]},
        clock=lambda: now[0],
        ttl_seconds=60,
    )
    for _ in range(3):
        policy.is_allowed("https://portal.example.gov.in/careers")
    assert session.urls().count(ROBOTS) == 1

    now[0] += 61
    policy.is_allowed("https://portal.example.gov.in/careers")
    assert session.urls().count(ROBOTS) == 2

    policy.clear()
    policy.is_allowed("https://portal.example.gov.in/careers")
    assert session.urls().count(ROBOTS) == 3
