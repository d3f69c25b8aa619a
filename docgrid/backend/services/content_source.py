"""
Content source for fetching document bytes from their locators.

Handles:
- HTTP(S) download with a per-call timeout
- Mapping of non-2xx answers and network failures to ContentUnavailableError
"""

import logging
from typing import Protocol, runtime_checkable

import httpx

from ..config import get_settings
from .exceptions import ContentUnavailableError

logger = logging.getLogger(__name__)


@runtime_checkable
class ContentSource(Protocol):
    """Fetches raw document bytes for an opaque content locator."""

    async def fetch_content(self, locator: str) -> bytes:
        ...


class HttpContentSource:
    """
    Content source backed by httpx.

    Every call opens a short-lived AsyncClient so that no connection state
    outlives a processing run.
    """

    def __init__(self, timeout: float | None = None, transport: httpx.AsyncBaseTransport | None = None):
        """
        Initialize the content source.

        Args:
            timeout: Per-request timeout in seconds. Defaults to settings.
            transport: Optional httpx transport (used by tests).
        """
        if timeout is None:
            timeout = get_settings().content_fetch_timeout_seconds
        self.timeout = timeout
        self._transport = transport

    async def fetch_content(self, locator: str) -> bytes:
        """
        Download the bytes behind `locator`.

        Raises:
            ContentUnavailableError: On timeout, connection failure or non-2xx status.
        """
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout,
                transport=self._transport,
                follow_redirects=True,
            ) as client:
                resp = await client.get(locator)
                resp.raise_for_status()
                content = resp.content
        except httpx.HTTPStatusError as e:
            logger.warning(
                "Content fetch returned HTTP %d for %s",
                e.response.status_code,
                locator,
            )
            raise ContentUnavailableError(
                f"Content source returned HTTP {e.response.status_code}"
            ) from e
        except httpx.TimeoutException as e:
            logger.warning("Content fetch timed out after %.1fs: %s", self.timeout, locator)
            raise ContentUnavailableError(
                f"Content fetch timed out after {self.timeout:.0f}s"
            ) from e
        except httpx.RequestError as e:
            logger.warning("Content fetch failed for %s: %s", locator, e)
            raise ContentUnavailableError(f"Content source unreachable: {e}") from e

        logger.info("Fetched %d bytes from content source", len(content))
        return content


# Singleton instance for convenience
_content_source: HttpContentSource | None = None


def get_content_source() -> HttpContentSource:
    """Get or create the content source singleton."""
    global _content_source
    if _content_source is None:
        _content_source = HttpContentSource()
    return _content_source
