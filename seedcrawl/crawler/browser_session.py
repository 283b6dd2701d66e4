"""
Browser-rendering transport for seedcrawl.

Defines the session/page interface the transport selector drives, and the
Playwright implementation behind it:
- one persistent Chromium context per (host, proxy), with an on-disk
  profile so challenge clearance survives restarts
- commit-first navigation that tolerates slow challenge responses
- in-page ``fetch`` for non-GET requests, reusing the session identity
- request interception from the pool's InterceptionRules
"""

import re
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol
from urllib.parse import unquote

from seedcrawl.crawler.request import ProxySpec
from seedcrawl.utils.config import BrowserConfig, get_project_root
from seedcrawl.utils.logging import get_logger, short_url

if TYPE_CHECKING:
    from playwright.async_api import BrowserContext, Page, Playwright, Route

    from seedcrawl.crawler.session_pool import InterceptionRules, SessionKey

logger = get_logger(__name__)

_CSRF_COOKIE_PATTERN = re.compile(r"xsrf|csrf", re.IGNORECASE)

_LAUNCH_ARGS = [
    "--no-sandbox",
    "--disable-dev-shm-usage",
    "--disable-background-networking",
    "--disable-background-timer-throttling",
    "--disable-renderer-backgrounding",
    "--disable-features=IsolateOrigins,site-per-process,Translate",
]

# Headers the browser sets itself; forwarding ours would break the fingerprint.
BROWSER_OWNED_HEADERS = {"user-agent", "referer", "origin"}

_IN_PAGE_FETCH = """
async ({ url, method, headers, body }) => {
    const r = await fetch(url, {
        method,
        headers,
        body: body === null ? undefined : body,
        credentials: 'include',
        redirect: 'follow'
    });
    const text = await r.text();
    return { status: r.status, url: r.url, text };
}
"""

_CSRF_FROM_DOM = """
() => {
    const meta = document.querySelector('meta[name="csrf-token"], meta[name="_token"]');
    if (meta && meta.getAttribute('content')) return meta.getAttribute('content');
    const input = document.querySelector('input[name="_token"]');
    if (input && input.getAttribute('value')) return input.getAttribute('value');
    return null;
}
"""


@dataclass
class InSessionResponse:
    """Result of a network call issued from inside a browser page."""

    status: int
    url: str
    text: str


class BrowserPage(Protocol):
    """One tab inside a browser session."""

    @property
    def url(self) -> str:
        ...

    async def navigate(self, url: str, timeout: float) -> int | None:
        ...

    async def wait_for_dom(self, timeout: float) -> None:
        ...

    async def content(self) -> str:
        ...

    async def title(self) -> str:
        ...

    async def request_in_session(
        self,
        url: str,
        method: str,
        headers: dict[str, str],
        body: str | None,
    ) -> InSessionResponse:
        ...

    async def csrf_token(self) -> str | None:
        ...

    async def close(self) -> None:
        ...


class BrowserSession(Protocol):
    """A long-lived browser identity (cookies, profile, proxy)."""

    @property
    def is_closed(self) -> bool:
        ...

    async def new_page(self) -> BrowserPage:
        ...

    async def cookies(self, url: str) -> list[dict[str, Any]]:
        ...

    async def add_cookies(self, cookies: list[dict[str, Any]]) -> None:
        ...

    async def close(self) -> None:
        ...


class SessionFactory(Protocol):
    """Creates browser sessions for the pool."""

    async def __call__(
        self,
        key: "SessionKey",
        proxy: ProxySpec,
        rules: "InterceptionRules",
        extra_headers: dict[str, str],
    ) -> BrowserSession:
        ...

    async def close(self) -> None:
        ...


def without_browser_owned(headers: dict[str, str]) -> dict[str, str]:
    """Drop headers the browser must own (User-Agent, Referer, Origin)."""
    return {k: v for k, v in headers.items() if k.lower() not in BROWSER_OWNED_HEADERS}


class PlaywrightPage:
    """BrowserPage backed by a Playwright page."""

    def __init__(self, page: "Page") -> None:
        self._page = page

    @property
    def url(self) -> str:
        return self._page.url

    async def navigate(self, url: str, timeout: float) -> int | None:
        """Navigate and return as soon as the response commits.

        A commit timeout is tolerated: challenge pages often answer slowly
        and the settle loop polls the page afterwards anyway.
        """
        from playwright.async_api import TimeoutError as PlaywrightTimeoutError

        try:
            response = await self._page.goto(url, wait_until="commit", timeout=timeout * 1000)
        except PlaywrightTimeoutError:
            logger.debug("Commit navigation timed out, continuing", url=short_url(url))
            return None
        return response.status if response is not None else None

    async def wait_for_dom(self, timeout: float) -> None:
        from playwright.async_api import TimeoutError as PlaywrightTimeoutError

        try:
            await self._page.wait_for_load_state("domcontentloaded", timeout=timeout * 1000)
        except PlaywrightTimeoutError:
            pass

    async def content(self) -> str:
        return await self._page.content()

    async def title(self) -> str:
        return await self._page.title()

    async def request_in_session(
        self,
        url: str,
        method: str,
        headers: dict[str, str],
        body: str | None,
    ) -> InSessionResponse:
        result = await self._page.evaluate(
            _IN_PAGE_FETCH,
            {"url": url, "method": method, "headers": headers, "body": body},
        )
        return InSessionResponse(
            status=int(result["status"]),
            url=result.get("url") or url,
            text=result.get("text") or "",
        )

    async def csrf_token(self) -> str | None:
        """CSRF token from the DOM, else from an xsrf/csrf cookie."""
        token = await self._page.evaluate(_CSRF_FROM_DOM)
        if token:
            return token
        cookies = await self._page.context.cookies(self._page.url)
        for cookie in cookies:
            if _CSRF_COOKIE_PATTERN.search(cookie.get("name", "")):
                return unquote(cookie.get("value", ""))
        return None

    async def close(self) -> None:
        await self._page.close()


class PlaywrightSession:
    """BrowserSession backed by a persistent Playwright context."""

    def __init__(self, context: "BrowserContext") -> None:
        self._context = context
        self._closed = False
        context.on("close", self._on_close)

    def _on_close(self, *_: Any) -> None:
        self._closed = True

    @property
    def is_closed(self) -> bool:
        return self._closed

    async def new_page(self) -> PlaywrightPage:
        return PlaywrightPage(await self._context.new_page())

    async def cookies(self, url: str) -> list[dict[str, Any]]:
        return [dict(c) for c in await self._context.cookies(url)]

    async def add_cookies(self, cookies: list[dict[str, Any]]) -> None:
        await self._context.add_cookies(cookies)  # type: ignore[arg-type]

    async def close(self) -> None:
        self._closed = True
        await self._context.close()


def _safe_path_part(value: str) -> str:
    return re.sub(r"[^a-zA-Z0-9.\-]+", "_", value)


def build_user_data_dir(base: str | Path, host: str, proxy_identity: str) -> Path:
    """Profile directory for one (host, proxy) session.

    Relative bases resolve against the project root.
    """
    base_path = Path(base)
    if not base_path.is_absolute():
        base_path = get_project_root() / base_path
    name = f".pw-{_safe_path_part(host)}"
    if proxy_identity:
        name += f"-{_safe_path_part(proxy_identity)}"
    return base_path / name


class PlaywrightSessionFactory:
    """Launches one persistent Chromium context per session key.

    Playwright itself is started on first use and stopped by close().
    """

    def __init__(self, config: BrowserConfig) -> None:
        self._config = config
        self._playwright: Playwright | None = None

    async def _ensure_playwright(self) -> "Playwright":
        if self._playwright is None:
            from playwright.async_api import async_playwright

            self._playwright = await async_playwright().start()
            logger.debug("Playwright started")
        return self._playwright

    async def __call__(
        self,
        key: "SessionKey",
        proxy: ProxySpec,
        rules: "InterceptionRules",
        extra_headers: dict[str, str],
    ) -> PlaywrightSession:
        playwright = await self._ensure_playwright()
        config = self._config

        user_data_dir = build_user_data_dir(config.user_data_dir, key.host, key.proxy_identity)
        user_data_dir.mkdir(parents=True, exist_ok=True)

        headers = {"Accept-Language": config.accept_language}
        headers.update(without_browser_owned(extra_headers))

        context = await playwright.chromium.launch_persistent_context(
            str(user_data_dir),
            headless=config.headless,
            args=_LAUNCH_ARGS,
            proxy=proxy.to_playwright(),  # type: ignore[arg-type]
            viewport={"width": config.viewport_width, "height": config.viewport_height},
            locale=config.locale,
            user_agent=config.user_agent,
            ignore_https_errors=True,
            service_workers="block",
            extra_http_headers=headers,
        )

        async def handle_route(route: "Route") -> None:
            request = route.request
            if rules.should_block(request.url, request.resource_type):
                await route.abort()
            else:
                await route.continue_()

        await context.route("**/*", handle_route)

        default_timeout_ms = min(20.0, config.timeout) * 1000
        context.set_default_timeout(default_timeout_ms)
        context.set_default_navigation_timeout(default_timeout_ms)

        logger.info(
            "Browser session created",
            host=key.host,
            proxy=key.proxy_identity or None,
            user_data_dir=str(user_data_dir),
        )
        return PlaywrightSession(context)

    async def close(self) -> None:
        if self._playwright is None:
            return
        playwright, self._playwright = self._playwright, None
        await playwright.stop()
