"""
Fetch scheduler for seedcrawl.

Drives a FetchQueue to completion on one asyncio event loop:
- keeps at most ``max_concurrent`` items TREATING, each dispatched as its
  own task through the TransportSelector
- re-runs the pull loop after every dispatch, whatever its outcome
- requeues retryable failures (transport, retry-requested, escalation)
  under a RetryPolicy, ends and reports everything else
- fires the end-of-work callback once per drain

Example:
    scheduler = Scheduler()
    scheduler.on_exception = lambda error, descriptor: print(error)
    scheduler.add_url("https://example.test/", callback=handle)
    await scheduler.run()
"""

import asyncio
import inspect
import uuid
from collections.abc import Callable
from typing import Any

from seedcrawl.crawler.cookie_store import CookieStore
from seedcrawl.crawler.errors import (
    CallbackError,
    RetryExhausted,
    RetryRequested,
    SeedcrawlError,
    TransportError,
)
from seedcrawl.crawler.http_transport import CurlHTTPTransport, HTTPTransport
from seedcrawl.crawler.request import FetchDescriptor, build_descriptor
from seedcrawl.crawler.session_pool import SessionPool
from seedcrawl.crawler.transport_selector import TransportSelector
from seedcrawl.scheduler.queue import FetchQueue, QueueItem
from seedcrawl.utils.backoff import BackoffConfig, calculate_backoff
from seedcrawl.utils.config import RequestConfig, SchedulerConfig, Settings, get_settings
from seedcrawl.utils.logging import LogContext, get_logger, short_url

logger = get_logger(__name__)

CompletionCallback = Callable[[str, Any], Any]
ExceptionCallback = Callable[[SeedcrawlError, FetchDescriptor | None], Any]
EndCallback = Callable[[], Any]


class RetryPolicy:
    """How retryable failures are handled.

    Args:
        max_retries: Retries allowed after the first attempt. None means
            unlimited.
        backoff: Delay schedule between attempts. None means the item is
            requeued immediately.
    """

    def __init__(self, max_retries: int | None = None, backoff: BackoffConfig | None = None) -> None:
        if max_retries is not None and max_retries < 0:
            raise ValueError("max_retries must be non-negative")
        self.max_retries = max_retries
        self.backoff = backoff

    @classmethod
    def from_config(cls, config: SchedulerConfig) -> "RetryPolicy":
        backoff = None
        if config.backoff_enabled:
            backoff = BackoffConfig(
                base_delay=config.backoff_base_delay,
                max_delay=config.backoff_max_delay,
            )
        return cls(max_retries=config.max_retries, backoff=backoff)

    def allows(self, attempts: int) -> bool:
        """Whether another attempt may follow ``attempts`` started ones."""
        return self.max_retries is None or attempts <= self.max_retries

    def delay_for(self, attempts: int) -> float:
        if self.backoff is None:
            return 0.0
        return calculate_backoff(max(0, attempts - 1), self.backoff)


async def _resolve(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class Scheduler:
    """Bounded-concurrency fetch scheduler.

    The cookie store, session pool and transports belong to the instance;
    pass them in to share or fake them.

    Args:
        settings: Settings; loaded with get_settings() when None.
        http_transport: HTTP tier; CurlHTTPTransport when None.
        session_pool: Browser sessions; built from settings when None and
            escalation is enabled.
        cookie_store: Shared cookie jar.
        retry_policy: Retry handling; built from settings when None.
        max_concurrent: Max items TREATING at once.
        max_connections: Connection pool hint for the default HTTP transport.
        escalation_enabled: Override for browser escalation.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        http_transport: HTTPTransport | None = None,
        session_pool: SessionPool | None = None,
        cookie_store: CookieStore | None = None,
        retry_policy: RetryPolicy | None = None,
        max_concurrent: int | None = None,
        max_connections: int | None = None,
        escalation_enabled: bool | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        scheduler_config = self._settings.scheduler

        if max_concurrent is None:
            max_concurrent = scheduler_config.max_concurrent
        if max_connections is None:
            max_connections = scheduler_config.max_connections
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be >= 1")
        if max_connections < 1:
            raise ValueError("max_connections must be >= 1")
        self.max_concurrent = max_concurrent
        self.max_connections = max_connections

        browser_config = self._settings.browser
        if escalation_enabled is not None:
            browser_config = browser_config.model_copy(
                update={"escalation_enabled": escalation_enabled}
            )
        if session_pool is None and browser_config.escalation_enabled:
            session_pool = SessionPool.from_config(browser_config)

        self.job_id = uuid.uuid4().hex[:12]
        self.cookie_store = cookie_store or CookieStore()
        self.session_pool = session_pool
        self.retry_policy = retry_policy or RetryPolicy.from_config(scheduler_config)
        self._http = http_transport or CurlHTTPTransport(max_connections=self.max_connections)
        self._selector = TransportSelector(
            self._http, self.cookie_store, session_pool, browser_config
        )
        self.queue = FetchQueue()

        self.on_complete: CompletionCallback | None = None
        self.on_exception: ExceptionCallback | None = None
        self.on_end: EndCallback | None = None

        self._tasks: set[asyncio.Task[None]] = set()
        self._end_tasks: set[asyncio.Task[None]] = set()
        self._started = False
        self._closed = False
        self._drain_armed = True
        self._drained = asyncio.Event()

    @property
    def request_defaults(self) -> RequestConfig:
        return self._settings.request

    # =========================================================================
    # Enqueueing
    # =========================================================================

    def enqueue(
        self,
        descriptor: FetchDescriptor,
        callback: CompletionCallback | None = None,
        context: Any = None,
        force: bool | None = None,
    ) -> QueueItem | None:
        """Queue a descriptor.

        Args:
            descriptor: Request to perform.
            callback: Completion callback ``(body, context)``; falls back to
                ``on_complete``. Return False (or raise RetryRequested) to
                have the item fetched again.
            context: Opaque value handed back to the callback.
            force: Bypass URL dedup; defaults to the request defaults.

        Returns:
            The new QueueItem, or None if the URL was already queued.
        """
        if force is None:
            force = self.request_defaults.force_enqueue
        item = QueueItem(
            descriptor=descriptor,
            callback=callback,
            context=context,
            force_enqueue=force,
        )
        if not self.queue.enqueue(item):
            return None

        self._drain_armed = True
        self._drained.clear()
        if self._started:
            self._check_and_process()
        return item

    def add_url(
        self,
        url: str,
        callback: CompletionCallback | None = None,
        params: dict[str, Any] | None = None,
        context: Any = None,
    ) -> QueueItem | None:
        """Queue a URL, merging ``params`` over the request defaults."""
        descriptor, force = build_descriptor(url, params, self.request_defaults)
        return self.enqueue(descriptor, callback, context, force=force)

    # =========================================================================
    # Processing loop
    # =========================================================================

    def start(self) -> None:
        """Begin processing. Must be called from a running event loop."""
        self._started = True
        self._drain_armed = True
        self._drained.clear()
        logger.info(
            "Scheduler started",
            job_id=self.job_id,
            queued=len(self.queue),
            max_concurrent=self.max_concurrent,
        )
        self._check_and_process()

    def _check_and_process(self) -> None:
        if self._closed:
            return
        waiting, treating = self.queue.counts()
        while waiting and treating < self.max_concurrent:
            item = self.queue.take_next_waiting()
            if item is None:
                break
            waiting -= 1
            treating += 1
            self._spawn(item)

        if waiting == 0 and treating == 0:
            self._notify_drained()

    def _spawn(self, item: QueueItem) -> None:
        task = asyncio.create_task(self._dispatch(item), name=f"seedcrawl-{item.item_id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _dispatch(self, item: QueueItem) -> None:
        item.attempts += 1
        with LogContext(job_id=self.job_id, url=short_url(item.url)):
            logger.debug("Dispatching", attempt=item.attempts, method=item.descriptor.method.value)
            try:
                await self._attempt(item)
            except SeedcrawlError as e:
                await self._handle_failure(item, e)
            except Exception as e:
                logger.exception("Unexpected dispatch error", attempt=item.attempts)
                error = TransportError(str(e) or type(e).__name__, descriptor=item.descriptor)
                await self._handle_failure(item, error)
        self._check_and_process()

    async def _attempt(self, item: QueueItem) -> None:
        result = await self._selector.fetch(item.descriptor)

        callback = item.callback or self.on_complete
        if callback is not None:
            try:
                outcome = await _resolve(callback(result.body, item.context))
            except RetryRequested as e:
                if e.descriptor is None:
                    e.descriptor = item.descriptor
                raise
            except Exception as e:
                raise CallbackError(e, descriptor=item.descriptor) from e
            if outcome is False:
                raise RetryRequested(descriptor=item.descriptor)

        self.queue.complete(item)
        logger.info(
            "Fetch completed",
            attempt=item.attempts,
            route=result.route.value,
            status=result.status,
        )

    async def _handle_failure(self, item: QueueItem, error: SeedcrawlError) -> None:
        item.last_error = error

        if error.retryable:
            if self.retry_policy.allows(item.attempts):
                delay = self.retry_policy.delay_for(item.attempts)
                logger.info(
                    "Requeueing after retryable failure",
                    attempt=item.attempts,
                    error_type=type(error).__name__,
                    error=error.message,
                    delay=round(delay, 2),
                )
                if delay > 0:
                    await asyncio.sleep(delay)
                self.queue.requeue(item)
                return
            error = RetryExhausted(item.attempts, error, descriptor=item.descriptor)

        self.queue.complete(item)
        logger.warning(
            "Fetch failed",
            attempt=item.attempts,
            error_type=type(error).__name__,
            error=error.message,
        )
        await self._report(error, item.descriptor)

    async def _report(self, error: SeedcrawlError, descriptor: FetchDescriptor) -> None:
        if self.on_exception is None:
            return
        try:
            await _resolve(self.on_exception(error, descriptor))
        except Exception as e:
            logger.error("Exception callback failed", error=str(e))

    def _notify_drained(self) -> None:
        if not self._drain_armed:
            return
        self._drain_armed = False
        self._drained.set()
        logger.info("Queue drained", job_id=self.job_id, ended=self.queue.ended_count)

        if self.on_end is None:
            return
        try:
            outcome = self.on_end()
        except Exception as e:
            logger.error("End callback failed", error=str(e))
            return
        if inspect.isawaitable(outcome):
            task = asyncio.ensure_future(self._await_end(outcome))
            self._end_tasks.add(task)
            task.add_done_callback(self._end_tasks.discard)

    async def _await_end(self, outcome: Any) -> None:
        try:
            await outcome
        except Exception as e:
            logger.error("End callback failed", error=str(e))

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def wait_drained(self) -> None:
        """Wait for the current drain, including an async end callback."""
        await self._drained.wait()
        if self._end_tasks:
            await asyncio.gather(*self._end_tasks)

    async def run(self) -> None:
        """Start, wait for the queue to drain, then release resources."""
        try:
            self.start()
            await self.wait_drained()
        finally:
            await self.close()

    async def close(self) -> None:
        """Cancel in-flight dispatches and close sessions and transports."""
        if self._closed:
            return
        self._closed = True

        pending = [t for t in self._tasks if not t.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            logger.info("In-flight dispatches cancelled", count=len(pending))

        if self.session_pool is not None:
            await self.session_pool.close_all()
        await self._http.close()
        logger.info("Scheduler closed", job_id=self.job_id)

    async def __aenter__(self) -> "Scheduler":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
