"""
seedcrawl scheduler module.
Provides the fetch queue and the bounded-concurrency scheduler.
"""

from seedcrawl.scheduler.queue import FetchQueue, ItemState, QueueItem
from seedcrawl.scheduler.scheduler import RetryPolicy, Scheduler

__all__ = [
    "FetchQueue",
    "ItemState",
    "QueueItem",
    "RetryPolicy",
    "Scheduler",
]
