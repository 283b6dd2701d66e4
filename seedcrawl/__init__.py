"""
seedcrawl: bounded-concurrency URL fetching with challenge escalation.

Fetches queued URLs over plain HTTP, shares one cookie jar per job, and
re-issues requests through a pooled browser session when a bot challenge
is served.
"""

from seedcrawl.crawler.errors import (
    CallbackError,
    ChallengeBlocked,
    EscalationError,
    RetryExhausted,
    RetryRequested,
    SeedcrawlError,
    TransportError,
)
from seedcrawl.crawler.request import FetchDescriptor, HttpMethod, ProxySpec, build_descriptor
from seedcrawl.scheduler.scheduler import RetryPolicy, Scheduler

__version__ = "0.1.0"

__all__ = [
    "Scheduler",
    "RetryPolicy",
    "FetchDescriptor",
    "HttpMethod",
    "ProxySpec",
    "build_descriptor",
    "SeedcrawlError",
    "TransportError",
    "ChallengeBlocked",
    "CallbackError",
    "RetryRequested",
    "EscalationError",
    "RetryExhausted",
]
