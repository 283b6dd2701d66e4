"""
seedcrawl utilities module.
"""

from seedcrawl.utils.backoff import BackoffConfig, calculate_backoff
from seedcrawl.utils.config import Settings, get_project_root, get_settings
from seedcrawl.utils.logging import (
    LogContext,
    bind_context,
    configure_logging,
    get_logger,
    unbind_context,
)

__all__ = [
    "BackoffConfig",
    "calculate_backoff",
    "Settings",
    "get_settings",
    "get_project_root",
    "LogContext",
    "bind_context",
    "unbind_context",
    "configure_logging",
    "get_logger",
]
