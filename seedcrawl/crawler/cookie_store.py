"""
Shared cookie store for seedcrawl.

One store is owned by each Scheduler and shared by both transports:
- the HTTP transport reads it to build the Cookie header and writes the
  cookies set by each response;
- the browser transport pushes matching cookies into its session before
  an escalated fetch and copies the session's cookies back afterwards,
  so plain HTTP requests benefit from a solved challenge.
"""

import time
from collections.abc import Iterable, Iterator
from http.cookiejar import Cookie as JarCookie
from typing import Any
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field

from seedcrawl.utils.logging import get_logger, short_url

logger = get_logger(__name__)

_SAME_SITE_VALUES = {"strict": "Strict", "lax": "Lax", "none": "None"}


class CookieData(BaseModel):
    """A single cookie.

    A cookie is identified by (name, domain, path); storing a cookie with
    the same identity replaces the previous one.
    """

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="Cookie name")
    value: str = Field(..., description="Cookie value")
    domain: str = Field(..., description="Cookie domain")
    path: str = Field(default="/", description="Cookie path")
    secure: bool = Field(default=False, description="Secure flag")
    http_only: bool = Field(default=False, description="HttpOnly flag")
    same_site: str = Field(default="Lax", description="SameSite attribute")
    expires: float | None = Field(default=None, description="Expiration as Unix timestamp")

    @property
    def key(self) -> tuple[str, str, str]:
        return (self.name, self.domain.lower().lstrip("."), self.path)

    def is_expired(self, now: float | None = None) -> bool:
        """Check if cookie has expired. Session cookies never expire here."""
        if self.expires is None:
            return False
        return (now if now is not None else time.time()) > self.expires

    def matches_domain(self, target_domain: str) -> bool:
        """Check if cookie is valid for the target host (exact or subdomain)."""
        target = target_domain.lower()
        cookie_domain = self.domain.lower().lstrip(".")
        if not cookie_domain:
            return False
        return target == cookie_domain or target.endswith("." + cookie_domain)

    def matches_path(self, target_path: str) -> bool:
        target = target_path or "/"
        if target == self.path or self.path == "/":
            return True
        prefix = self.path if self.path.endswith("/") else self.path + "/"
        return target.startswith(prefix)

    def matches_url(self, url: str) -> bool:
        parsed = urlparse(url)
        if self.secure and parsed.scheme != "https":
            return False
        return self.matches_domain(parsed.hostname or "") and self.matches_path(parsed.path)

    def to_header_value(self) -> str:
        return f"{self.name}={self.value}"

    def to_playwright_cookie(self) -> dict[str, Any]:
        """Convert to the dict shape Playwright's add_cookies expects."""
        return {
            "name": self.name,
            "value": self.value,
            "domain": self.domain,
            "path": self.path,
            "secure": self.secure,
            "httpOnly": self.http_only,
            "sameSite": self.same_site,
            "expires": self.expires if self.expires is not None else -1,
        }

    @classmethod
    def from_playwright_cookie(cls, cookie: dict[str, Any], default_domain: str = "") -> "CookieData":
        """Create from Playwright cookie format (expires == -1 is a session cookie)."""
        expires = cookie.get("expires")
        if expires is not None and expires <= 0:
            expires = None
        same_site = _SAME_SITE_VALUES.get(str(cookie.get("sameSite", "Lax")).lower(), "Lax")
        return cls(
            name=cookie.get("name", ""),
            value=cookie.get("value", ""),
            domain=cookie.get("domain") or default_domain,
            path=cookie.get("path") or "/",
            secure=bool(cookie.get("secure", False)),
            http_only=bool(cookie.get("httpOnly", False)),
            same_site=same_site,
            expires=expires,
        )

    @classmethod
    def from_jar_cookie(cls, cookie: JarCookie, default_domain: str = "") -> "CookieData":
        """Create from an http.cookiejar cookie (what HTTP clients hand back)."""
        http_only = cookie.has_nonstandard_attr("HttpOnly") or cookie.has_nonstandard_attr(
            "httponly"
        )
        same_site = cookie.get_nonstandard_attr("SameSite") or "Lax"
        return cls(
            name=cookie.name,
            value=cookie.value or "",
            domain=cookie.domain or default_domain,
            path=cookie.path or "/",
            secure=bool(cookie.secure),
            http_only=bool(http_only),
            same_site=_SAME_SITE_VALUES.get(str(same_site).lower(), "Lax"),
            expires=float(cookie.expires) if cookie.expires else None,
        )


class CookieStore:
    """In-memory cookie jar shared by the HTTP and browser transports.

    Mutated only from the scheduler's event loop, so no locking.
    """

    def __init__(self) -> None:
        self._cookies: dict[tuple[str, str, str], CookieData] = {}

    def __len__(self) -> int:
        return len(self._cookies)

    def __iter__(self) -> Iterator[CookieData]:
        return iter(list(self._cookies.values()))

    def set(self, cookie: CookieData) -> None:
        """Store a cookie, replacing any with the same identity.

        A cookie that is already expired deletes the stored one, which is
        how servers clear cookies.
        """
        if cookie.is_expired():
            self._cookies.pop(cookie.key, None)
            return
        self._cookies[cookie.key] = cookie

    def update(self, cookies: Iterable[CookieData]) -> int:
        count = 0
        for cookie in cookies:
            self.set(cookie)
            count += 1
        return count

    def get(self, name: str, url: str | None = None) -> CookieData | None:
        """Find a cookie by name, optionally restricted to a URL."""
        for cookie in self._cookies.values():
            if cookie.name != name or cookie.is_expired():
                continue
            if url is None or cookie.matches_url(url):
                return cookie
        return None

    def cookies_for_url(self, url: str) -> list[CookieData]:
        """Unexpired cookies that apply to the URL, longest path first."""
        now = time.time()
        valid = [c for c in self._cookies.values() if not c.is_expired(now) and c.matches_url(url)]
        return sorted(valid, key=lambda c: len(c.path), reverse=True)

    def cookie_header(self, url: str) -> str | None:
        """Cookie header value for the URL, or None if no cookie applies."""
        cookies = self.cookies_for_url(url)
        if not cookies:
            return None
        return "; ".join(c.to_header_value() for c in cookies)

    def merge_browser_cookies(self, cookies: Iterable[dict[str, Any]], url: str) -> int:
        """Copy cookies read from a browser session into the store.

        Args:
            cookies: Playwright-format cookie dicts.
            url: Final URL of the escalated fetch (default domain for
                cookies without one).

        Returns:
            Number of cookies merged.
        """
        host = urlparse(url).hostname or ""
        merged = self.update(CookieData.from_playwright_cookie(c, host) for c in cookies)
        logger.debug("Browser cookies merged", url=short_url(url), count=merged)
        return merged

    def to_browser_cookies(self, url: str) -> list[dict[str, Any]]:
        """Cookies for the URL in Playwright format."""
        return [c.to_playwright_cookie() for c in self.cookies_for_url(url)]

    def clear(self) -> None:
        self._cookies.clear()
