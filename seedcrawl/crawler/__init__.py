"""
seedcrawl crawler module.

Provides fetch descriptors, the HTTP and browser transports, challenge
detection, the shared cookie store and the browser session pool.
"""

from seedcrawl.crawler.challenge_detector import (
    is_challenge_page,
    is_rendered_challenge,
    still_challenged,
)
from seedcrawl.crawler.cookie_store import CookieData, CookieStore
from seedcrawl.crawler.errors import (
    CallbackError,
    ChallengeBlocked,
    EscalationError,
    InvalidTransitionError,
    RetryExhausted,
    RetryRequested,
    SeedcrawlError,
    TransportError,
)
from seedcrawl.crawler.http_transport import CurlHTTPTransport, HTTPResponse, HTTPTransport
from seedcrawl.crawler.request import FetchDescriptor, HttpMethod, ProxySpec, build_descriptor
from seedcrawl.crawler.session_pool import InterceptionRules, SessionEntry, SessionKey, SessionPool
from seedcrawl.crawler.transport_selector import (
    EscalationState,
    FetchResult,
    TransportRoute,
    TransportSelector,
)

__all__ = [
    # Requests
    "FetchDescriptor",
    "HttpMethod",
    "ProxySpec",
    "build_descriptor",
    # Transports
    "HTTPTransport",
    "HTTPResponse",
    "CurlHTTPTransport",
    "TransportSelector",
    "FetchResult",
    "TransportRoute",
    "EscalationState",
    # Sessions and cookies
    "SessionPool",
    "SessionEntry",
    "SessionKey",
    "InterceptionRules",
    "CookieData",
    "CookieStore",
    # Challenge detection
    "is_challenge_page",
    "is_rendered_challenge",
    "still_challenged",
    # Errors
    "SeedcrawlError",
    "TransportError",
    "ChallengeBlocked",
    "CallbackError",
    "RetryRequested",
    "EscalationError",
    "RetryExhausted",
    "InvalidTransitionError",
]
