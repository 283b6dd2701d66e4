"""Fetch descriptor and request defaults for seedcrawl."""

from enum import Enum
from typing import Any
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, field_validator

from seedcrawl.utils.config import RequestConfig


class HttpMethod(str, Enum):
    """Methods a FetchDescriptor may carry."""

    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    PATCH = "PATCH"
    DELETE = "DELETE"


class ProxySpec(BaseModel):
    """Proxy wiring for one request.

    ``identity`` is what keys browser sessions; it never includes
    credentials.
    """

    model_config = ConfigDict(frozen=True)

    enabled: bool = False
    host: str = "localhost"
    port: int = 9050
    username: str = ""
    password: str = ""
    protocol: str = "socks5"

    @property
    def server(self) -> str:
        """Proxy server URL without credentials."""
        return f"{self.protocol}://{self.host}:{self.port}"

    @property
    def identity(self) -> str:
        """Stable key component; empty when the proxy is off."""
        return self.server if self.enabled else ""

    def to_url(self) -> str | None:
        """Proxy URL with credentials, for the HTTP transport."""
        if not self.enabled:
            return None
        if self.username:
            return f"{self.protocol}://{self.username}:{self.password}@{self.host}:{self.port}"
        return self.server

    def to_playwright(self) -> dict[str, str] | None:
        """Proxy settings in Playwright's launch format."""
        if not self.enabled:
            return None
        proxy = {"server": self.server}
        if self.username:
            proxy["username"] = self.username
            proxy["password"] = self.password
        return proxy


class FetchDescriptor(BaseModel):
    """Immutable description of one request to perform.

    When both bodies are set, ``json_data`` wins over ``form_data``.
    """

    model_config = ConfigDict(frozen=True)

    url: str
    method: HttpMethod = HttpMethod.GET
    headers: dict[str, str] = Field(default_factory=dict)
    form_data: dict[str, Any] | None = None
    json_data: Any = None
    timeout: float = 30.0
    reinject_cookies: bool = True
    proxy: ProxySpec = Field(default_factory=ProxySpec)

    @field_validator("url")
    @classmethod
    def _check_absolute(cls, value: str) -> str:
        parsed = urlparse(value)
        if parsed.scheme not in ("http", "https") or not parsed.hostname:
            raise ValueError(f"URL must be absolute http(s): {value!r}")
        return value

    @field_validator("method", mode="before")
    @classmethod
    def _upper_method(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.upper()
        return value

    @field_validator("timeout")
    @classmethod
    def _positive_timeout(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("timeout must be positive")
        return value

    @property
    def host(self) -> str:
        return urlparse(self.url).hostname or ""

    @property
    def origin(self) -> str:
        parsed = urlparse(self.url)
        return f"{parsed.scheme}://{parsed.netloc}"

    @property
    def has_json_body(self) -> bool:
        return self.json_data is not None

    @property
    def has_form_body(self) -> bool:
        return self.json_data is None and self.form_data is not None


def build_descriptor(
    url: str,
    params: dict[str, Any] | None = None,
    defaults: RequestConfig | None = None,
) -> tuple[FetchDescriptor, bool]:
    """Merge per-URL params over job defaults.

    Scalars replace the default when present (``None`` means "not given"),
    headers merge key by key and proxy fields merge field by field.

    Args:
        url: Target URL.
        params: Per-URL overrides. Accepted keys: method, headers,
            form_data, json_data, timeout, reinject_cookies, proxy,
            force_enqueue.
        defaults: Job defaults; a fresh RequestConfig when None.

    Returns:
        Tuple of (descriptor, force_enqueue flag).
    """
    defaults = defaults or RequestConfig()
    params = params or {}

    def pick(key: str) -> Any:
        value = params.get(key)
        return getattr(defaults, key) if value is None else value

    headers = dict(defaults.headers)
    headers.update(params.get("headers") or {})

    proxy_fields = defaults.proxy.model_dump()
    proxy_fields.update(
        {k: v for k, v in (params.get("proxy") or {}).items() if v is not None}
    )

    descriptor = FetchDescriptor(
        url=url,
        method=pick("method"),
        headers=headers,
        form_data=pick("form_data"),
        json_data=pick("json_data"),
        timeout=pick("timeout"),
        reinject_cookies=pick("reinject_cookies"),
        proxy=ProxySpec(**proxy_fields),
    )
    return descriptor, bool(pick("force_enqueue"))
