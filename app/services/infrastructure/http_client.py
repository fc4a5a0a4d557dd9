"""
Outbound HTTP with retry/backoff, shared by the OAuth, places, search and
notification clients.
"""

import asyncio

import httpx

from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

REQUEST_TIMEOUT = 10  # seconds
MAX_RETRIES = 3
BACKOFF_FACTOR = 2  # 2, 4 seconds
RETRY_STATUS_CODES = {429, 500, 502, 503, 504}


async def request_with_retry(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    operation: str,
    max_retries: int = MAX_RETRIES,
    backoff_factor: float = BACKOFF_FACTOR,
    **kwargs,
) -> httpx.Response:
    """
    Perform a request, retrying transient statuses and transport errors.

    Args:
        client: Shared AsyncClient
        method: HTTP method
        url: Target URL
        operation: Operation name for logging context
        max_retries: Total attempts before giving up
        backoff_factor: Base of the exponential wait between attempts

    Returns:
        The last response received; non-retryable error statuses are returned as-is
    """
    for attempt in range(1, max_retries + 1):
        try:
            response = await client.request(method, url, **kwargs)

            if response.status_code in RETRY_STATUS_CODES and attempt < max_retries:
                wait_time = backoff_factor**attempt
                logger.warning(
                    "Transient HTTP status, retrying",
                    operation=operation,
                    status_code=response.status_code,
                    attempt=attempt,
                    wait_time=wait_time,
                )
                await asyncio.sleep(wait_time)
                continue

            return response

        except httpx.RequestError as exc:
            if attempt == max_retries:
                logger.error(
                    "HTTP request failed after all retries",
                    operation=operation,
                    attempts=attempt,
                    error=str(exc),
                )
                raise

            wait_time = backoff_factor**attempt
            logger.warning(
                "HTTP request error, retrying",
                operation=operation,
                attempt=attempt,
                wait_time=wait_time,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            await asyncio.sleep(wait_time)

    raise RuntimeError(f"{operation} failed without a response")
