"""
Configuration management for seedcrawl.
Loads and validates settings from YAML files and environment variables.
"""

import os
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/126.0.0.0 Safari/537.36"
)

BROWSER_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/126.0.0.0 Safari/537.36"
)

DEFAULT_TRACKER_HOSTS = [
    "www.google-analytics.com",
    "ssl.google-analytics.com",
    "analytics.google.com",
    "www.googletagmanager.com",
    "stats.g.doubleclick.net",
    "connect.facebook.net",
    "static.hotjar.com",
    "cdn.segment.com",
    "cdn.matomo.cloud",
    "stats.grafana.org",
]


class ProxyConfig(BaseModel):
    """Proxy defaults applied to every request unless overridden."""

    model_config = ConfigDict(extra="forbid")

    enabled: bool = False
    host: str = "localhost"
    port: int = 9050
    username: str = ""
    password: str = ""
    protocol: str = "socks5"


class RequestConfig(BaseModel):
    """Job-wide request defaults (merged under per-URL params)."""

    model_config = ConfigDict(extra="forbid")

    method: str = "GET"
    reinject_cookies: bool = True
    headers: dict[str, str] = Field(default_factory=lambda: {"User-Agent": DEFAULT_USER_AGENT})
    form_data: dict[str, Any] | None = None
    json_data: Any = None
    timeout: float = 30.0
    force_enqueue: bool = False
    proxy: ProxyConfig = Field(default_factory=ProxyConfig)


class SchedulerConfig(BaseModel):
    """Scheduler budgets and retry policy.

    max_retries of None means retry forever.
    Backoff is off by default, so retries are requeued immediately.
    """

    model_config = ConfigDict(extra="forbid")

    max_concurrent: int = Field(default=200, ge=1, description="Max items TREATING at once")
    max_connections: int = Field(default=50, ge=1, description="HTTP connection pool size")
    max_retries: int | None = Field(default=None, ge=0, description="None = unlimited")
    backoff_enabled: bool = False
    backoff_base_delay: float = Field(default=1.0, gt=0)
    backoff_max_delay: float = Field(default=60.0, gt=0)


class BrowserConfig(BaseModel):
    """Browser escalation configuration.

    Times are in seconds.
    """

    model_config = ConfigDict(extra="forbid")

    escalation_enabled: bool = True
    headless: bool = True
    user_agent: str = BROWSER_USER_AGENT
    locale: str = "fr-FR"
    accept_language: str = "fr-FR,fr;q=0.9,en;q=0.8"
    viewport_width: int = 1366
    viewport_height: int = 768
    timeout: float = Field(default=60.0, gt=0)
    extra_wait: float = Field(default=0.3, ge=0)
    max_steps: int = Field(default=4, ge=1)
    fast_nav_timeout: float = Field(default=5.0, gt=0)
    settle_total: float = Field(default=5.0, gt=0)
    block_resources: list[str] = Field(
        default_factory=lambda: ["image", "font", "media", "stylesheet"]
    )
    block_trackers: bool = True
    tracker_hosts: list[str] = Field(default_factory=lambda: list(DEFAULT_TRACKER_HOSTS))
    user_data_dir: str = "data/profiles"
    inject_csrf_token: bool = True


class GeneralConfig(BaseModel):
    """General configuration."""

    project_name: str = "seedcrawl"
    version: str = "0.1.0"
    log_level: str = "INFO"
    logs_dir: str = "logs"


class Settings(BaseModel):
    """Main settings container."""

    general: GeneralConfig = Field(default_factory=GeneralConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    request: RequestConfig = Field(default_factory=RequestConfig)
    browser: BrowserConfig = Field(default_factory=BrowserConfig)


def _deep_merge(base: dict, override: dict) -> dict:
    """Deep merge two dictionaries.

    Args:
        base: Base dictionary.
        override: Override dictionary.

    Returns:
        Merged dictionary.
    """
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _load_yaml_file(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    with open(path, encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def _load_yaml_config(config_dir: Path) -> dict[str, Any]:
    """Load settings.yaml with local.yaml overrides.

    local.yaml holds per-machine overrides under a top-level ``settings`` key:

        settings:
          scheduler:
            max_concurrent: 10

    Args:
        config_dir: Configuration directory path.

    Returns:
        Merged configuration dictionary.
    """
    config = _load_yaml_file(config_dir / "settings.yaml")
    local = _load_yaml_file(config_dir / "local.yaml")
    if isinstance(local.get("settings"), dict):
        config = _deep_merge(config, local["settings"])
    return config


def _apply_env_overrides(config: dict[str, Any]) -> dict[str, Any]:
    """Apply environment variable overrides.

    Environment variables should be prefixed with SEEDCRAWL_ and use
    double underscores for nested keys.

    Example:
        SEEDCRAWL_SCHEDULER__MAX_CONCURRENT=20

    Args:
        config: Configuration dictionary.

    Returns:
        Configuration with environment overrides.
    """
    prefix = "SEEDCRAWL_"

    for key, value in os.environ.items():
        if not key.startswith(prefix) or "__" not in key:
            continue

        key_path = key[len(prefix) :].lower().split("__")

        current = config
        for part in key_path[:-1]:
            if not isinstance(current.get(part), dict):
                current[part] = {}
            current = current[part]

        final_key = key_path[-1]
        try:
            if value.lower() in ("true", "false"):
                current[final_key] = value.lower() == "true"
            elif "." in value:
                current[final_key] = float(value)
            else:
                current[final_key] = int(value)
        except ValueError:
            current[final_key] = value

    return config


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get application settings.

    Settings are loaded from:
    1. Default values
    2. YAML configuration files
    3. Environment variables (highest priority)

    Returns:
        Settings instance.
    """
    config_dir = Path(os.environ.get("SEEDCRAWL_CONFIG_DIR", "config"))
    config = _load_yaml_config(config_dir)
    config = _apply_env_overrides(config)
    return Settings(**config)


def get_project_root() -> Path:
    """Get the project root directory."""
    return Path(__file__).parent.parent.parent
