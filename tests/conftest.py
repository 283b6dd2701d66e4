"""
Pytest fixtures and configuration for seedcrawl tests.

=============================================================================
Test Classification
=============================================================================

Primary Markers:
- @pytest.mark.unit: Single class/function, no external dependencies
  - DEFAULT: Tests without marker are auto-classified as unit

- @pytest.mark.integration: Multiple components wired together
  - Scheduler + selector + pool + cookie store, with fake transports

=============================================================================
Mock Strategy
=============================================================================

- Network: never used. FakeHTTPTransport stands in for curl_cffi.
- Browser: never launched. FakeSessionFactory hands out FakeBrowserSession
  objects that serve scripted page content.
- Settings: built in-process; SEEDCRAWL_CONFIG_DIR points at an empty
  temp directory so no repository YAML leaks into tests.
"""

import asyncio
from collections.abc import Callable
from typing import Any

import pytest

from seedcrawl.crawler.browser_session import InSessionResponse
from seedcrawl.crawler.cookie_store import CookieData, CookieStore
from seedcrawl.crawler.errors import TransportError
from seedcrawl.crawler.http_transport import HTTPResponse
from seedcrawl.crawler.request import FetchDescriptor, ProxySpec
from seedcrawl.crawler.session_pool import InterceptionRules, SessionKey, SessionPool
from seedcrawl.utils.config import BrowserConfig, SchedulerConfig, Settings, get_settings
from seedcrawl.utils.logging import configure_logging

CHALLENGE_HTML = """<!DOCTYPE html>
<html>
<head>
<title>Just a moment...</title>
<meta name="robots" content="noindex,nofollow">
</head>
<body>
<div id="challenge-body-text">Checking your browser before accessing example.test.</div>
<script src="/cdn-cgi/challenge-platform/h/b/orchestrate/chl_page/v1?ray=8a1b"></script>
</body>
</html>
"""

NORMAL_HTML = "<html><head><title>Example</title></head><body>ok</body></html>"


# =============================================================================
# Pytest Hooks for Test Classification
# =============================================================================


def pytest_configure(config):
    """Register custom markers for test classification."""
    config.addinivalue_line(
        "markers", "unit: Unit tests with no external dependencies (fast, <1s/test)"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests wiring several components with fakes"
    )


def pytest_collection_modifyitems(config, items):
    """Tests without an explicit classification marker are unit tests."""
    for item in items:
        has_classification = any(
            marker.name in ("unit", "integration") for marker in item.iter_markers()
        )
        if not has_classification:
            item.add_marker(pytest.mark.unit)


# =============================================================================
# Fakes
# =============================================================================


class FakeHTTPTransport:
    """Scripted HTTPTransport.

    Responses are queued per URL; the last one is repeated once the queue
    runs down. An Exception instance in the queue is raised as a
    TransportError.
    """

    def __init__(self, delay: float = 0.0) -> None:
        self.delay = delay
        self.calls: list[tuple[FetchDescriptor, str | None]] = []
        self.closed = False
        self.in_flight = 0
        self.max_in_flight = 0
        self._responses: dict[str, list[HTTPResponse | Exception]] = {}

    def set_response(self, url: str, *responses: HTTPResponse | Exception) -> None:
        self._responses[url] = list(responses)

    def respond(
        self,
        url: str,
        body: str = NORMAL_HTML,
        *,
        status: int = 200,
        headers: dict[str, str] | None = None,
        cookies: list[CookieData] | None = None,
    ) -> None:
        self.set_response(
            url,
            HTTPResponse(
                status=status,
                body=body,
                final_url=url,
                headers=headers or {},
                cookies=cookies or [],
            ),
        )

    def calls_for(self, url: str) -> list[tuple[FetchDescriptor, str | None]]:
        return [call for call in self.calls if call[0].url == url]

    async def execute(self, descriptor: FetchDescriptor, cookie_header: str | None) -> HTTPResponse:
        self.calls.append((descriptor, cookie_header))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            queue = self._responses.get(descriptor.url)
            if not queue:
                return HTTPResponse(status=200, body=NORMAL_HTML, final_url=descriptor.url)
            response = queue.pop(0) if len(queue) > 1 else queue[0]
            if isinstance(response, Exception):
                raise TransportError(str(response), descriptor=descriptor) from response
            return response
        finally:
            self.in_flight -= 1

    async def close(self) -> None:
        self.closed = True


class FakeBrowserPage:
    """BrowserPage serving content scripted on its session."""

    def __init__(self, session: "FakeBrowserSession") -> None:
        self._session = session
        self._url = "about:blank"

    @property
    def url(self) -> str:
        return self._url

    async def navigate(self, url: str, timeout: float) -> int | None:
        self._session.navigations.append(url)
        if self._session.navigate_error is not None:
            raise self._session.navigate_error
        self._url = url
        return 200

    async def wait_for_dom(self, timeout: float) -> None:
        return None

    async def content(self) -> str:
        return self._session.content_for(self._url)

    async def title(self) -> str:
        return self._session.title_for(self._url)

    async def request_in_session(
        self,
        url: str,
        method: str,
        headers: dict[str, str],
        body: str | None,
    ) -> InSessionResponse:
        self._session.in_session_calls.append(
            {"url": url, "method": method, "headers": headers, "body": body, "from": self._url}
        )
        return self._session.in_session_response or InSessionResponse(
            status=200, url=url, text='{"ok": true}'
        )

    async def csrf_token(self) -> str | None:
        return self._session.csrf

    async def close(self) -> None:
        self._session.pages_closed += 1


class FakeBrowserSession:
    """BrowserSession with scripted pages and a cookie list."""

    def __init__(self) -> None:
        self.pages: dict[str, str] = {}
        self.titles: dict[str, str] = {}
        self.default_content = "<html><head><title>Rendered</title></head><body>rendered</body></html>"
        self.browser_cookies: list[dict[str, Any]] = []
        self.added_cookies: list[dict[str, Any]] = []
        self.navigations: list[str] = []
        self.in_session_calls: list[dict[str, Any]] = []
        self.in_session_response: InSessionResponse | None = None
        self.csrf: str | None = None
        self.navigate_error: Exception | None = None
        self.close_error: Exception | None = None
        self.pages_opened = 0
        self.pages_closed = 0
        self.closed = False

    def content_for(self, url: str) -> str:
        return self.pages.get(url, self.default_content)

    def title_for(self, url: str) -> str:
        return self.titles.get(url, "Rendered")

    @property
    def is_closed(self) -> bool:
        return self.closed

    async def new_page(self) -> FakeBrowserPage:
        self.pages_opened += 1
        return FakeBrowserPage(self)

    async def cookies(self, url: str) -> list[dict[str, Any]]:
        return list(self.browser_cookies)

    async def add_cookies(self, cookies: list[dict[str, Any]]) -> None:
        self.added_cookies.extend(cookies)

    async def close(self) -> None:
        self.closed = True
        if self.close_error is not None:
            raise self.close_error


class FakeSessionFactory:
    """SessionFactory recording every launch.

    ``setup`` is applied to each new session before it is handed out.
    """

    def __init__(self, setup: Callable[[FakeBrowserSession], None] | None = None) -> None:
        self.setup = setup
        self.launches: list[dict[str, Any]] = []
        self.sessions: list[FakeBrowserSession] = []
        self.closed = False

    async def __call__(
        self,
        key: SessionKey,
        proxy: ProxySpec,
        rules: InterceptionRules,
        extra_headers: dict[str, str],
    ) -> FakeBrowserSession:
        await asyncio.sleep(0)
        session = FakeBrowserSession()
        if self.setup is not None:
            self.setup(session)
        self.launches.append(
            {"key": key, "proxy": proxy, "rules": rules, "headers": extra_headers}
        )
        self.sessions.append(session)
        return session

    async def close(self) -> None:
        self.closed = True


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture(scope="session", autouse=True)
def structured_logging():
    """Route structured logs to stderr so stdout only carries program output."""
    configure_logging(log_level="DEBUG", json_format=True)


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    """Point settings loading at an empty directory."""
    monkeypatch.setenv("SEEDCRAWL_CONFIG_DIR", str(tmp_path / "config"))
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def fast_browser_config() -> BrowserConfig:
    """Browser settings with the shortest settle pauses."""
    return BrowserConfig(extra_wait=0.0, max_steps=2, settle_total=0.2, fast_nav_timeout=0.2)


@pytest.fixture
def test_settings(fast_browser_config: BrowserConfig) -> Settings:
    """Settings for scheduler tests."""
    return Settings(
        scheduler=SchedulerConfig(max_concurrent=10, max_connections=5),
        browser=fast_browser_config,
    )


@pytest.fixture
def fake_http() -> FakeHTTPTransport:
    return FakeHTTPTransport()


@pytest.fixture
def fake_factory() -> FakeSessionFactory:
    return FakeSessionFactory()


@pytest.fixture
def session_pool(fake_factory: FakeSessionFactory) -> SessionPool:
    return SessionPool(fake_factory)


@pytest.fixture
def cookie_store() -> CookieStore:
    return CookieStore()


@pytest.fixture
def challenge_response() -> Callable[[str], HTTPResponse]:
    """Build a Cloudflare challenge response for a URL."""

    def _make(url: str) -> HTTPResponse:
        return HTTPResponse(
            status=403,
            body=CHALLENGE_HTML,
            final_url=url,
            headers={"Server": "cloudflare"},
        )

    return _make


@pytest.fixture
def challenge_html() -> str:
    return CHALLENGE_HTML


@pytest.fixture
def normal_html() -> str:
    return NORMAL_HTML


@pytest.fixture
def make_factory() -> Callable[..., FakeSessionFactory]:
    """Build a FakeSessionFactory with a per-session setup hook."""
    return FakeSessionFactory


@pytest.fixture
def make_http() -> Callable[..., FakeHTTPTransport]:
    """Build a FakeHTTPTransport (e.g. with a per-call delay)."""
    return FakeHTTPTransport
