"""
Outbound HTTP helpers shared by the OAuth and Gmail layers.

Every call to Google goes through request_with_timeout(), which bounds the
request and turns httpx transport errors into two recognizable kinds:
RequestTimeout ("aborted") and NetworkError. Callers decide whether to retry;
nothing here retries on its own.
"""

import logging

import httpx

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 10.0


class TransportFailure(Exception):
    """Base exception for requests that never produced an HTTP response."""
    pass


class RequestTimeout(TransportFailure):
    """Request was aborted because it exceeded its timeout."""

    def __init__(self, url: str, timeout: float):
        self.url = url
        self.timeout = timeout
        super().__init__(f"Request aborted: no response from {url} within {timeout:g}s")


class NetworkError(TransportFailure):
    """Connection-level failure (DNS, refused, reset, TLS)."""
    pass


async def request_with_timeout(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
    **kwargs,
) -> httpx.Response:
    """
    Execute an HTTP request bounded by a timeout.

    Args:
        client: Shared httpx.AsyncClient
        method: HTTP method
        url: Absolute URL
        timeout: Seconds before the request is aborted
        **kwargs: Passed through to client.request()

    Returns:
        httpx.Response (any status code)

    Raises:
        RequestTimeout: If the request timed out
        NetworkError: For other transport failures
    """
    try:
        return await client.request(method, url, timeout=timeout, **kwargs)
    except httpx.TimeoutException as e:
        logger.warning(
            "Outbound request timed out",
            extra={"method": method, "url": url.split("?")[0], "timeout": timeout}
        )
        raise RequestTimeout(url.split("?")[0], timeout) from e
    except httpx.TransportError as e:
        logger.warning(
            "Outbound request failed",
            extra={"method": method, "url": url.split("?")[0], "error_type": type(e).__name__}
        )
        raise NetworkError(f"Network error calling {url.split('?')[0]}: {e}") from e
