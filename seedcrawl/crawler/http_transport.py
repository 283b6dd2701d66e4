"""HTTP transport for seedcrawl (curl_cffi with Chrome impersonation)."""

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol

from seedcrawl.crawler.cookie_store import CookieData
from seedcrawl.crawler.errors import TransportError
from seedcrawl.crawler.request import FetchDescriptor
from seedcrawl.utils.logging import get_logger, short_url

if TYPE_CHECKING:
    from curl_cffi.requests import AsyncSession

logger = get_logger(__name__)


@dataclass
class HTTPResponse:
    """What the HTTP transport hands back to the selector."""

    status: int
    body: str
    final_url: str
    headers: dict[str, str] = field(default_factory=dict)
    cookies: list[CookieData] = field(default_factory=list)


class HTTPTransport(Protocol):
    """Plain HTTP collaborator.

    Implementations own connection pooling, TLS and redirects, and raise
    TransportError for network failures and timeouts.
    """

    async def execute(self, descriptor: FetchDescriptor, cookie_header: str | None) -> HTTPResponse:
        ...

    async def close(self) -> None:
        ...


class CurlHTTPTransport:
    """HTTP transport using curl_cffi.

    Features:
    - Chrome impersonation for fingerprint consistency with the browser tier
    - One pooled AsyncSession, capped at ``max_connections`` handles
    - Cookies come from the caller's store only; the session's own jar is
      cleared after each response so a request with reinjection disabled
      never sees cookies from another request
    """

    def __init__(self, max_connections: int = 50, impersonate: str = "chrome") -> None:
        self._max_connections = max_connections
        self._impersonate = impersonate
        self._session: AsyncSession | None = None

    def _get_session(self) -> "AsyncSession":
        if self._session is None:
            from curl_cffi.requests import AsyncSession

            self._session = AsyncSession(
                max_clients=self._max_connections,
                impersonate=self._impersonate,
            )
        return self._session

    def _build_kwargs(self, descriptor: FetchDescriptor, cookie_header: str | None) -> dict[str, Any]:
        headers = dict(descriptor.headers)
        if cookie_header:
            existing = headers.get("Cookie")
            headers["Cookie"] = f"{existing}; {cookie_header}" if existing else cookie_header

        kwargs: dict[str, Any] = {
            "headers": headers,
            "timeout": descriptor.timeout,
            "allow_redirects": True,
        }
        if descriptor.has_json_body:
            kwargs["json"] = descriptor.json_data
        elif descriptor.has_form_body:
            kwargs["data"] = descriptor.form_data

        proxy = descriptor.proxy.to_url()
        if proxy:
            kwargs["proxy"] = proxy
        return kwargs

    async def execute(self, descriptor: FetchDescriptor, cookie_header: str | None) -> HTTPResponse:
        """Perform one request.

        Args:
            descriptor: Request to perform.
            cookie_header: Cookie header built from the shared store, if any.

        Returns:
            HTTPResponse for any status code.

        Raises:
            TransportError: On network failure or timeout.
        """
        session = self._get_session()
        kwargs = self._build_kwargs(descriptor, cookie_header)

        try:
            response = await session.request(descriptor.method.value, descriptor.url, **kwargs)
        except Exception as e:
            logger.warning(
                "HTTP fetch error",
                url=short_url(descriptor.url),
                method=descriptor.method.value,
                error=str(e),
            )
            raise TransportError(str(e) or type(e).__name__, descriptor=descriptor) from e
        finally:
            session.cookies.clear()

        final_url = str(response.url)
        cookies = [CookieData.from_jar_cookie(c, descriptor.host) for c in response.cookies.jar]

        logger.info(
            "HTTP fetch done",
            url=short_url(descriptor.url),
            status=response.status_code,
            content_length=len(response.content),
        )

        return HTTPResponse(
            status=response.status_code,
            body=response.text,
            final_url=final_url,
            headers=dict(response.headers),
            cookies=cookies,
        )

    async def close(self) -> None:
        if self._session is None:
            return
        session, self._session = self._session, None
        try:
            await session.close()
        except Exception as e:
            logger.debug("HTTP session close failed", error=str(e))
