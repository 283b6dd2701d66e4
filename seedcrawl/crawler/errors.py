"""
Fetch error taxonomy for seedcrawl.

Every error raised along a dispatch carries the FetchDescriptor that
produced it. The ``retryable`` class flag decides what the scheduler does:

- retryable errors (TransportError, RetryRequested, EscalationError) are
  handled inside the scheduler by requeueing the item and are never
  surfaced to the job author;
- terminal errors (ChallengeBlocked, CallbackError, RetryExhausted) end
  the item and are reported through the exception callback.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from seedcrawl.crawler.request import FetchDescriptor


class SeedcrawlError(Exception):
    """Base exception for fetch and dispatch errors."""

    retryable: bool = False

    def __init__(self, message: str, *, descriptor: FetchDescriptor | None = None):
        super().__init__(message)
        self.message = message
        self.descriptor = descriptor

    def __str__(self) -> str:
        if self.descriptor is None:
            return self.message
        return f"{self.message} ({self.descriptor.method.value} {self.descriptor.url})"


class TransportError(SeedcrawlError):
    """Network failure or timeout in the HTTP transport."""

    retryable = True


class ChallengeBlocked(SeedcrawlError):
    """A bot challenge was served and browser escalation is disabled."""


class CallbackError(SeedcrawlError):
    """The completion callback raised.

    The callback's own exception is available as ``original`` and is
    chained as ``__cause__``.
    """

    def __init__(
        self,
        original: BaseException,
        *,
        descriptor: FetchDescriptor | None = None,
    ):
        super().__init__(f"completion callback failed: {original!r}", descriptor=descriptor)
        self.original = original
        self.__cause__ = original


class RetryRequested(SeedcrawlError):
    """The completion callback asked for the item to be fetched again.

    Callbacks may raise this directly or return ``False``.
    """

    retryable = True

    def __init__(
        self,
        message: str = "retry requested by callback",
        *,
        descriptor: FetchDescriptor | None = None,
    ):
        super().__init__(message, descriptor=descriptor)


class EscalationError(SeedcrawlError):
    """Browser transport failed while solving a challenge or rendering."""

    retryable = True


class RetryExhausted(SeedcrawlError):
    """The retry limit was reached; ``last_error`` is the final retryable error."""

    def __init__(
        self,
        attempts: int,
        last_error: SeedcrawlError | None,
        *,
        descriptor: FetchDescriptor | None = None,
    ):
        super().__init__(f"gave up after {attempts} attempts", descriptor=descriptor)
        self.attempts = attempts
        self.last_error = last_error
        if last_error is not None:
            self.__cause__ = last_error


class InvalidTransitionError(Exception):
    """A queue item was moved along an edge its lifecycle does not allow."""
