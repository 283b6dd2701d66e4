"""Bot challenge fingerprint for fetched pages."""

import re
from collections.abc import Mapping

_TITLE_PATTERN = re.compile(r"<title>\s*Just a moment", re.IGNORECASE)
_TITLE_TEXT_PATTERN = re.compile(r"Just a moment", re.IGNORECASE)
_ROBOTS_PATTERN = re.compile(r"noindex,\s*nofollow", re.IGNORECASE)

CHALLENGE_MARKERS = (
    "/cdn-cgi/challenge-platform/",
    "__cf_chl_",
    "cf_chl_",
)


def _server_header(headers: Mapping[str, str] | None) -> str:
    if not headers:
        return ""
    for name, value in headers.items():
        if name.lower() == "server":
            return str(value).lower()
    return ""


def is_challenge_page(content: str | None, headers: Mapping[str, str] | None = None) -> bool:
    """Check whether a page is an interactive bot challenge.

    All three conditions must hold. Pages that only mention the marker
    strings (articles about Cloudflare, cookie banners) are not challenges.

    1. The title starts with "Just a moment".
    2. At least one challenge-platform markup marker is present.
    3. The Server header names cloudflare, or the page carries a
       noindex,nofollow robots directive.

    Args:
        content: Page HTML.
        headers: Response headers (name lookup is case-insensitive).

    Returns:
        True if the page is a challenge.
    """
    if not content:
        return False
    if not _TITLE_PATTERN.search(content):
        return False
    if not any(marker in content for marker in CHALLENGE_MARKERS):
        return False
    return "cloudflare" in _server_header(headers) or bool(_ROBOTS_PATTERN.search(content))


def is_challenge_title(title: str | None) -> bool:
    """Check a rendered page title against the challenge title."""
    return bool(title) and bool(_TITLE_TEXT_PATTERN.search(title))


def is_rendered_challenge(content: str | None) -> bool:
    """Check rendered HTML for a challenge that never cleared.

    A rendered page exposes no response headers, so the title pattern and
    a challenge-platform marker must both be present. A title that merely
    contains "Just a moment" is not enough.
    """
    if not content:
        return False
    if not _TITLE_PATTERN.search(content):
        return False
    return any(marker in content for marker in CHALLENGE_MARKERS)


def still_challenged(content: str | None, title: str | None) -> bool:
    """Settle-loop poll on a rendered page.

    Looser than is_rendered_challenge: the title alone keeps the loop
    polling, since some challenge pages swap markup before the title.
    Only used to decide whether to keep waiting.
    """
    return is_rendered_challenge(content) or is_challenge_title(title)
