# tests/conftest.py
import json
import os
import tempfile
from typing import Any

import pytest
import requests
from freezegun import freeze_time

from modules.job_aggregator.lib import config as ja_config


# ---------------------------------------------------------------------
# Live tests are opt-in: use --live or RUN_LIVE_TESTS=1
# ---------------------------------------------------------------------
def pytest_addoption(parser: pytest.Parser) -> None:
    parser.addoption(
        "--live",
        action="store_true",
        default=False,
        help="Run tests marked as 'live' (network calls or external services).",
    )


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line(
        "markers",
        "live: marks tests that perform live network calls or hit external services (skipped by default).",
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    run_live = config.getoption("--live") or os.getenv("RUN_LIVE_TESTS") == "1"
    if run_live:
        return
    skip_live = pytest.mark.skip(reason="live tests disabled (use --live or RUN_LIVE_TESTS=1)")
    for item in items:
        if "live" in item.keywords:
            item.add_marker(skip_live)


# ---------------------------------------------------------------------
# Test-wide env defaults (autouse, function-scoped)
# ---------------------------------------------------------------------
_CREDENTIAL_ENVS = (
    "RELIEFWEB_APPNAME",
    "GOOGLE_CSE_API_KEY",
    "GOOGLE_CSE_CX",
    "SERPER_API_KEY",
    "OPENAI_API_KEY",
    "OPENAI_MODEL_JOBS",
    "NICHE_ID",
    "NICHE_CONFIG_DIR",
    "JOBS_SQLITE_PATH",
    "CONFIG_PATH",
    "LLM_MD_ENABLE",
)


@pytest.fixture(autouse=True)
def _env_defaults(monkeypatch, request):
    # Throwaway log dir per test so real logs stay clean
    monkeypatch.setenv("LOG_DIR", tempfile.mkdtemp(prefix="ja-pytest-logs-"))
    monkeypatch.setenv("ACTIVITY_LOG_PREFIX", "activity-test")
    monkeypatch.setenv("ERROR_LOG_PREFIX", "error-test")

    # Unit tests never see real credentials; live tests keep the caller's env
    if "live" not in request.keywords:
        for name in _CREDENTIAL_ENVS:
            monkeypatch.delenv(name, raising=False)

    ja_config.clear_niche_cache()
    yield
    ja_config.clear_niche_cache()


@pytest.fixture
def frozen_utc():
    with freeze_time("2025-01-01T00:00:00Z"):
        yield


# ---------------------------------------------------------------------
# Fake HTTP layer
# ---------------------------------------------------------------------
class FakeResponse:
    """Just enough of requests.Response for the adapters."""

    def __init__(self, status_code: int = 200, body: Any = None, *, text: str | None = None, url: str = ""):
        self.status_code = status_code
        self._body = body
        self.text = text if text is not None else (json.dumps(body) if body is not None else "")
        self.url = url
        self.encoding = "utf-8"
        self.apparent_encoding = "utf-8"

    def json(self) -> Any:
        if self._body is None:
            return json.loads(self.text)
        return self._body

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            resp = requests.Response()
            resp.status_code = self.status_code
            raise requests.HTTPError(f"{self.status_code} Error for url: {self.url}", response=resp)


class FakeHttpClient:
    """
    Serves canned responses keyed by URL (query params ignored).
    A route value may be a FakeResponse, an Exception to raise, a callable
    (method, url, kwargs) -> FakeResponse, or a list consumed in order.
    Every call is recorded in `calls`.
    """

    def __init__(self, routes: dict[str, Any] | None = None):
        self.routes: dict[str, Any] = dict(routes or {})
        self.calls: list[tuple[str, str, dict]] = []
        self.closed = False

    def _serve(self, method: str, url: str, kwargs: dict) -> FakeResponse:
        self.calls.append((method, url, kwargs))
        if url not in self.routes:
            raise AssertionError(f"unexpected {method} {url}")
        route = self.routes[url]
        if isinstance(route, list):
            route = route.pop(0) if len(route) > 1 else route[0]
        if isinstance(route, Exception):
            raise route
        if callable(route):
            route = route(method, url, kwargs)
        route.url = route.url or url
        return route

    def get(self, url, *, params=None, headers=None, timeout=None, **kwargs):
        return self._serve("GET", url, {"params": params, "headers": headers, "timeout": timeout})

    def post(self, url, *, json_body=None, params=None, headers=None, timeout=None, **kwargs):
        return self._serve(
            "POST", url, {"json_body": json_body, "params": params, "headers": headers, "timeout": timeout}
        )

    def get_text(self, url, *, params=None, headers=None, timeout=None, encoding=None, **kwargs):
        resp = self.get(url, params=params, headers=headers, timeout=timeout)
        resp.raise_for_status()
        return resp.text

    def close(self) -> None:
        self.closed = True


class FakeChat:
    """LLM stand-in: replies are served in order (the last one repeats)."""

    def __init__(self, *replies: str):
        self.replies = list(replies)
        self.prompts: list[str] = []

    def complete(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if isinstance(self.replies[0], Exception):
            raise self.replies[0]
        return self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]


@pytest.fixture
def fake_response():
    return FakeResponse


@pytest.fixture
def fake_http():
    return FakeHttpClient


@pytest.fixture
def fake_chat():
    return FakeChat


# ---------------------------------------------------------------------
# Niche + settings fixtures
# ---------------------------------------------------------------------
TEST_NICHE = {
    "id": "testniche",
    "name": "Test Niche",
    "domain": "jobs.test",
    "tagline": "Jobs for tests",
    "keywords": ["ngo"],
    "serp_queries": ["ngo program manager jobs"],
    "ats_boards": {
        "greenhouse": ["rescue"],
        "lever": ["sierra-club"],
        "ashby": [],
        "smartrecruiters": [],
    },
    "scraper_urls": [],
    "api_sources": [],
    "tags": {
        "humanitarian": ["humanitarian", "refugee"],
        "finance": ["finance", "accountant"],
        "policy": ["policy", "advocacy"],
    },
    "theme": {"primary_color": "#000000", "accent_color": "#ffffff"},
    "seo": {"title_template": "%s | Test", "description": "test"},
}


@pytest.fixture
def niche_dir(tmp_path, monkeypatch):
    """Override dir holding the 'testniche' config; NICHE_CONFIG_DIR points at it."""
    d = tmp_path / "niches"
    d.mkdir()
    (d / "testniche.json").write_text(json.dumps(TEST_NICHE), encoding="utf-8")
    monkeypatch.setenv("NICHE_CONFIG_DIR", str(d))
    ja_config.clear_niche_cache()
    return d


@pytest.fixture
def niche(niche_dir):
    return ja_config.load_niche("testniche")


@pytest.fixture
def make_niche():
    """Build an ad-hoc NicheConfig from overrides on top of TEST_NICHE."""

    def _make(**overrides):
        data = {**TEST_NICHE, **overrides}
        return ja_config.NicheConfig.from_dict(data, origin="<test>")

    return _make


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "state" / "jobs.db")


@pytest.fixture
def settings(niche_dir, db_path):
    return ja_config.Settings.from_env_and_kwargs({
        "niche_id": "testniche",
        "sqlite_path": db_path,
        "scrape_delay_ms": 0,
    })
