"""
Browser session pool for seedcrawl.

Keeps one long-lived browser session per (hostname, proxy identity),
created lazily on the first escalation for that key and released by
close_all() at job end. Each entry remembers which origins have already
had their challenge solved ("warmed") so later escalations skip the
warm-up navigation.
"""

import asyncio
from collections.abc import Iterable
from dataclasses import dataclass, field

from seedcrawl.crawler.browser_session import BrowserSession, SessionFactory
from seedcrawl.crawler.request import ProxySpec
from seedcrawl.utils.config import BrowserConfig
from seedcrawl.utils.logging import get_logger

logger = get_logger(__name__)

# The challenge platform's own endpoints must always load.
CHALLENGE_PLATFORM_PATTERNS = ("/cdn-cgi/", "challenges.cloudflare.com")


@dataclass(frozen=True)
class SessionKey:
    """Identity of a pooled session."""

    host: str
    proxy_identity: str = ""


@dataclass(frozen=True)
class InterceptionRules:
    """Which in-page requests a session aborts."""

    blocked_resource_types: frozenset[str] = frozenset()
    blocked_hosts: tuple[str, ...] = ()

    @classmethod
    def from_config(cls, config: BrowserConfig) -> "InterceptionRules":
        return cls(
            blocked_resource_types=frozenset(t.lower() for t in config.block_resources),
            blocked_hosts=tuple(config.tracker_hosts) if config.block_trackers else (),
        )

    def should_block(self, url: str, resource_type: str) -> bool:
        """Decide whether to abort a request.

        Challenge platform URLs are never blocked, whatever their type.
        """
        if any(pattern in url for pattern in CHALLENGE_PLATFORM_PATTERNS):
            return False
        if resource_type.lower() in self.blocked_resource_types:
            return True
        return any(host in url for host in self.blocked_hosts)


@dataclass(eq=False)
class SessionEntry:
    """One pooled session plus its warm-up state."""

    key: SessionKey
    session: BrowserSession
    rules: InterceptionRules
    warmed_origins: set[str] = field(default_factory=set)

    @property
    def warmed(self) -> bool:
        return bool(self.warmed_origins)

    def is_warmed(self, origin: str) -> bool:
        return origin in self.warmed_origins

    def mark_warmed(self, origin: str) -> None:
        self.warmed_origins.add(origin)

    def reset_warm(self, origin: str) -> None:
        self.warmed_origins.discard(origin)


class SessionPool:
    """Keyed cache of browser sessions.

    Creation of a given key is serialized with a per-key lock, since
    launching a session suspends and two dispatches to the same new host
    would otherwise launch two contexts on one profile directory.
    """

    def __init__(self, factory: SessionFactory, rules: InterceptionRules | None = None) -> None:
        self._factory = factory
        self._rules = rules or InterceptionRules()
        self._entries: dict[SessionKey, SessionEntry] = {}
        self._locks: dict[SessionKey, asyncio.Lock] = {}

    @classmethod
    def from_config(cls, config: BrowserConfig) -> "SessionPool":
        from seedcrawl.crawler.browser_session import PlaywrightSessionFactory

        return cls(PlaywrightSessionFactory(config), InterceptionRules.from_config(config))

    @property
    def rules(self) -> InterceptionRules:
        return self._rules

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def keys(self) -> Iterable[SessionKey]:
        return list(self._entries)

    def get(self, host: str, proxy_identity: str = "") -> SessionEntry | None:
        entry = self._entries.get(SessionKey(host, proxy_identity))
        if entry is None or entry.session.is_closed:
            return None
        return entry

    async def acquire(
        self,
        host: str,
        proxy: ProxySpec | None = None,
        extra_headers: dict[str, str] | None = None,
    ) -> SessionEntry:
        """Return the session for (host, proxy), creating it on a miss.

        A session found closed is dropped and recreated.

        Args:
            host: Target hostname.
            proxy: Proxy wiring; the proxy identity is part of the key.
            extra_headers: Request headers to carry into a new session.

        Returns:
            The pooled SessionEntry.
        """
        proxy = proxy or ProxySpec()
        key = SessionKey(host, proxy.identity)

        entry = self._entries.get(key)
        if entry is not None and not entry.session.is_closed:
            return entry

        lock = self._locks.setdefault(key, asyncio.Lock())
        async with lock:
            entry = self._entries.get(key)
            if entry is not None:
                if not entry.session.is_closed:
                    return entry
                logger.info("Pooled session was closed, recreating", host=host)
                del self._entries[key]

            session = await self._factory(key, proxy, self._rules, dict(extra_headers or {}))
            entry = SessionEntry(key=key, session=session, rules=self._rules)
            self._entries[key] = entry
            return entry

    async def close_all(self) -> None:
        """Close every session, then the factory. Failures are logged only."""
        entries = list(self._entries.values())
        self._entries.clear()
        self._locks.clear()

        results = await asyncio.gather(
            *(entry.session.close() for entry in entries),
            return_exceptions=True,
        )
        for entry, result in zip(entries, results):
            if isinstance(result, BaseException):
                logger.warning(
                    "Session close failed",
                    host=entry.key.host,
                    error=str(result),
                )

        try:
            await self._factory.close()
        except Exception as e:
            logger.warning("Session factory close failed", error=str(e))

        if entries:
            logger.info("Browser sessions closed", count=len(entries))
