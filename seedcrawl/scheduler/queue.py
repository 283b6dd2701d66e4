"""
Fetch queue for seedcrawl.

An insertion-ordered list of QueueItems with URL deduplication. Items are
never removed; ENDED items stay until the job (and its queue) is dropped.

Item lifecycle:

    WAITING ──take──▶ TREATING ──complete──▶ ENDED
       ▲                 │
       └────requeue──────┘
"""

import uuid
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from seedcrawl.crawler.errors import InvalidTransitionError, SeedcrawlError
from seedcrawl.crawler.request import FetchDescriptor
from seedcrawl.utils.logging import get_logger, short_url

logger = get_logger(__name__)


class ItemState(str, Enum):
    """Queue item states."""

    WAITING = "waiting"
    TREATING = "treating"
    ENDED = "ended"


@dataclass(eq=False)
class QueueItem:
    """One descriptor plus its callback, user context and lifecycle state."""

    descriptor: FetchDescriptor
    callback: Callable[..., Any] | None = None
    context: Any = None
    force_enqueue: bool = False
    state: ItemState = ItemState.WAITING
    attempts: int = 0
    last_error: SeedcrawlError | None = None
    item_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])

    @property
    def url(self) -> str:
        return self.descriptor.url


class FetchQueue:
    """Insertion-ordered queue with exact-URL dedup.

    At most one non-forced item per URL is ever inserted; force-enqueued
    items bypass the check in both directions.

    Args:
        on_queued: Optional listener called with each inserted item.
    """

    def __init__(self, on_queued: Callable[[QueueItem], None] | None = None) -> None:
        self._items: list[QueueItem] = []
        self._by_url: dict[str, QueueItem] = {}
        self._on_queued = on_queued

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[QueueItem]:
        return iter(list(self._items))

    def __contains__(self, url: object) -> bool:
        return url in self._by_url

    def enqueue(self, item: QueueItem) -> bool:
        """Insert an item unless a non-forced item already holds its URL.

        Returns:
            True if the item was inserted.
        """
        if item.state != ItemState.WAITING:
            raise InvalidTransitionError(f"cannot enqueue an item in state {item.state.value}")

        if not item.force_enqueue:
            if item.url in self._by_url:
                logger.debug("Duplicate URL skipped", url=short_url(item.url))
                return False
            self._by_url[item.url] = item

        self._items.append(item)
        logger.info(
            "Added to queue",
            url=short_url(item.url),
            method=item.descriptor.method.value,
            forced=item.force_enqueue,
            queue_size=len(self._items),
        )
        if self._on_queued is not None:
            self._on_queued(item)
        return True

    def take_next_waiting(self) -> QueueItem | None:
        """Move the first WAITING item to TREATING and return it."""
        for item in self._items:
            if item.state == ItemState.WAITING:
                item.state = ItemState.TREATING
                return item
        return None

    def requeue(self, item: QueueItem) -> None:
        self._transition(item, ItemState.TREATING, ItemState.WAITING)

    def complete(self, item: QueueItem) -> None:
        self._transition(item, ItemState.TREATING, ItemState.ENDED)

    def _transition(self, item: QueueItem, expected: ItemState, target: ItemState) -> None:
        if item.state != expected:
            raise InvalidTransitionError(
                f"item {item.item_id}: {item.state.value} -> {target.value} not allowed"
            )
        item.state = target

    def _count(self, state: ItemState) -> int:
        return sum(1 for item in self._items if item.state == state)

    @property
    def waiting_count(self) -> int:
        return self._count(ItemState.WAITING)

    @property
    def treating_count(self) -> int:
        return self._count(ItemState.TREATING)

    @property
    def ended_count(self) -> int:
        return self._count(ItemState.ENDED)

    def counts(self) -> tuple[int, int]:
        """Return (waiting, treating) counts."""
        waiting = treating = 0
        for item in self._items:
            if item.state == ItemState.WAITING:
                waiting += 1
            elif item.state == ItemState.TREATING:
                treating += 1
        return waiting, treating
