"""
Tiered transport selection for seedcrawl.

Every dispatch starts on the plain HTTP transport. When the response is a
bot challenge, the dispatch escalates to a pooled browser session for the
same (host, proxy), warming the origin once, re-issuing the request inside
the browser, and copying the resulting cookies back into the shared store.

Per-dispatch state machine:

    DIRECT ──challenge──▶ ESCALATING ──rendered──▶ ESCALATED
       │                      │
       └─ no challenge        └─ failure → EscalationError (retryable)
          → result (http)
"""

import asyncio
import json
from dataclasses import dataclass
from enum import Enum
from typing import Any
from urllib.parse import urlencode, urlparse

from seedcrawl.crawler.browser_session import BrowserPage, without_browser_owned
from seedcrawl.crawler.challenge_detector import (
    is_challenge_page,
    is_rendered_challenge,
    still_challenged,
)
from seedcrawl.crawler.cookie_store import CookieStore
from seedcrawl.crawler.errors import ChallengeBlocked, EscalationError, SeedcrawlError
from seedcrawl.crawler.http_transport import HTTPTransport
from seedcrawl.crawler.request import FetchDescriptor, HttpMethod
from seedcrawl.crawler.session_pool import SessionEntry, SessionPool
from seedcrawl.utils.config import BrowserConfig
from seedcrawl.utils.logging import get_logger, short_url

logger = get_logger(__name__)


class EscalationState(str, Enum):
    """Where a dispatch stands in the transport tiers."""

    DIRECT = "direct"
    ESCALATING = "escalating"
    ESCALATED = "escalated"


class TransportRoute(str, Enum):
    """Transport that produced a result."""

    HTTP = "http"
    BROWSER = "browser"


@dataclass
class FetchResult:
    """Body handed to the completion callback, plus provenance."""

    body: str
    final_url: str
    route: TransportRoute
    status: int | None = None
    state: EscalationState = EscalationState.DIRECT


def _origin(url: str) -> str:
    parsed = urlparse(url)
    return f"{parsed.scheme}://{parsed.netloc}"


class TransportSelector:
    """Runs one descriptor through the HTTP tier, escalating on challenge.

    Args:
        http: HTTP transport.
        cookie_store: Shared jar, read and written by both tiers.
        session_pool: Browser sessions; None disables escalation.
        config: Browser escalation settings.
    """

    def __init__(
        self,
        http: HTTPTransport,
        cookie_store: CookieStore,
        session_pool: SessionPool | None,
        config: BrowserConfig | None = None,
    ) -> None:
        self._http = http
        self._cookies = cookie_store
        self._pool = session_pool
        self._config = config or BrowserConfig()

    @property
    def escalation_enabled(self) -> bool:
        return self._config.escalation_enabled and self._pool is not None

    async def fetch(self, descriptor: FetchDescriptor) -> FetchResult:
        """Fetch a descriptor.

        Returns:
            FetchResult from whichever tier served the content.

        Raises:
            TransportError: HTTP tier failure (retryable).
            ChallengeBlocked: Challenge served and escalation disabled.
            EscalationError: Browser tier failure (retryable).
        """
        cookie_header = None
        if descriptor.reinject_cookies:
            cookie_header = self._cookies.cookie_header(descriptor.url)

        response = await self._http.execute(descriptor, cookie_header)

        if descriptor.reinject_cookies and response.cookies:
            self._cookies.update(response.cookies)

        if not is_challenge_page(response.body, response.headers):
            return FetchResult(
                body=response.body,
                final_url=response.final_url,
                route=TransportRoute.HTTP,
                status=response.status,
            )

        logger.info(
            "Challenge detected",
            url=short_url(descriptor.url),
            status=response.status,
            escalation=self.escalation_enabled,
        )
        if not self.escalation_enabled:
            raise ChallengeBlocked("bot challenge blocked the request", descriptor=descriptor)

        return await self._escalate(descriptor)

    async def _escalate(self, descriptor: FetchDescriptor) -> FetchResult:
        pool = self._pool
        if pool is None:
            raise EscalationError("no browser session pool configured", descriptor=descriptor)
        state = EscalationState.ESCALATING
        try:
            entry = await pool.acquire(descriptor.host, descriptor.proxy, descriptor.headers)
            if descriptor.reinject_cookies:
                await self._push_cookies(entry, descriptor.url)
            result = await self._fetch_in_browser(entry, descriptor)
        except SeedcrawlError:
            raise
        except Exception as e:
            logger.warning(
                "Browser fetch failed",
                url=short_url(descriptor.url),
                state=state.value,
                error=str(e),
            )
            raise EscalationError(str(e) or type(e).__name__, descriptor=descriptor) from e

        result.state = EscalationState.ESCALATED
        await self._pull_cookies(entry, result.final_url)
        logger.info(
            "Browser fetch success",
            url=short_url(descriptor.url),
            final_url=short_url(result.final_url),
            content_length=len(result.body),
        )
        return result

    async def _fetch_in_browser(self, entry: SessionEntry, descriptor: FetchDescriptor) -> FetchResult:
        config = self._config
        nav_timeout = min(config.fast_nav_timeout, config.timeout)
        settle_total = min(config.settle_total, config.timeout)
        origin = descriptor.origin

        page = await entry.session.new_page()
        try:
            if not entry.is_warmed(origin):
                await page.navigate(origin + "/", nav_timeout)
                await self._settle(page, settle_total)
                entry.mark_warmed(origin)
                logger.debug("Origin warmed", origin=origin)

            if descriptor.method == HttpMethod.GET:
                status = await page.navigate(descriptor.url, nav_timeout)
                await self._settle(page, settle_total)
                body = await page.content()
                if is_rendered_challenge(body):
                    entry.reset_warm(origin)
                    raise EscalationError("challenge not cleared in browser", descriptor=descriptor)
                return FetchResult(
                    body=body,
                    final_url=page.url or descriptor.url,
                    route=TransportRoute.BROWSER,
                    status=status,
                )

            if _origin(page.url) != origin:
                await page.navigate(origin + "/", nav_timeout)
                await self._settle(page, settle_total)

            csrf = await page.csrf_token() if config.inject_csrf_token else None
            headers, body = self._browser_side_request(descriptor, csrf)
            response = await page.request_in_session(
                descriptor.url, descriptor.method.value, headers, body
            )
            if response.status >= 400:
                raise EscalationError(
                    f"HTTP {descriptor.method.value} failed in browser: "
                    f"{response.status} {response.text[:300]}",
                    descriptor=descriptor,
                )
            return FetchResult(
                body=response.text,
                final_url=response.url,
                route=TransportRoute.BROWSER,
                status=response.status,
            )
        finally:
            try:
                await page.close()
            except Exception as e:
                logger.debug("Page close failed", error=str(e))

    async def _settle(self, page: BrowserPage, total: float) -> bool:
        """Poll the page until the challenge fingerprint clears.

        Bounded by max_steps and the total time budget.

        Returns:
            True if the page cleared, False if the budget ran out.
        """
        config = self._config
        loop = asyncio.get_running_loop()
        deadline = loop.time() + total
        pause = max(0.05, min(config.extra_wait, 0.6))

        for _ in range(config.max_steps):
            await page.wait_for_dom(min(1.0, total))
            await asyncio.sleep(pause)
            content = await self._read(page.content)
            title = await self._read(page.title)
            if not still_challenged(content, title):
                return True
            if loop.time() > deadline:
                break
        return False

    @staticmethod
    async def _read(getter: Any) -> str:
        try:
            return await getter()
        except Exception as e:
            logger.debug("Page read failed during settle", error=str(e))
            return ""

    def _browser_side_request(
        self,
        descriptor: FetchDescriptor,
        csrf: str | None,
    ) -> tuple[dict[str, str], str | None]:
        """Headers and serialized body for an in-page fetch."""
        headers = without_browser_owned(descriptor.headers)
        headers.setdefault("X-Requested-With", "XMLHttpRequest")
        if csrf:
            headers["X-CSRF-TOKEN"] = csrf

        if descriptor.has_json_body:
            payload = descriptor.json_data
            if csrf and isinstance(payload, dict):
                payload = {**payload, "_token": csrf}
            headers["Content-Type"] = "application/json"
            return headers, json.dumps(payload)

        if descriptor.has_form_body or csrf:
            form = dict(descriptor.form_data or {})
            if csrf:
                form["_token"] = csrf
            headers["Content-Type"] = "application/x-www-form-urlencoded;charset=UTF-8"
            return headers, urlencode(form, doseq=True)

        return headers, None

    async def _push_cookies(self, entry: SessionEntry, url: str) -> None:
        cookies = self._cookies.to_browser_cookies(url)
        if not cookies:
            return
        try:
            await entry.session.add_cookies(cookies)
        except Exception as e:
            logger.warning("Cookie injection into browser failed", url=short_url(url), error=str(e))

    async def _pull_cookies(self, entry: SessionEntry, url: str) -> None:
        try:
            cookies = await entry.session.cookies(url)
        except Exception as e:
            logger.warning("Reading browser cookies failed", url=short_url(url), error=str(e))
            return
        self._cookies.merge_browser_cookies(cookies, url)
