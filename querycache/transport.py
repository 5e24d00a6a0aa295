"""
HTTP fetch adapter.

Builds the async fetch callables the cache consumes from plain URLs, and
translates HTTP failures into the cache's failure taxonomy.
"""
import asyncio
import logging
from typing import Any, Callable, Awaitable, Dict, Optional

import requests
from dotenv import load_dotenv

from config.settings import settings
from querycache.cache.errors import (
    AuthFailure,
    FetchError,
    TransientFailure,
    ValidationFailure,
)
from querycache.cache.retry import AUTH_STATUS_CODES, VALIDATION_STATUS_CODES

load_dotenv()

logger = logging.getLogger("querycache.transport")

ON_401_THROW = "throw"
ON_401_RETURN_NONE = "return_none"


def _resolve_url(url: str) -> str:
    """Prefix relative paths with the configured base URL."""
    if url.startswith(("http://", "https://")) or not settings.api_base_url:
        return url
    return f"{settings.api_base_url.rstrip('/')}/{url.lstrip('/')}"


def error_for_response(response: requests.Response) -> FetchError:
    """
    Build the failure for a non-2xx response.

    The message follows the "<status>: <body>" form so it stays
    classifiable even if the type is lost on the way.
    """
    status = response.status_code
    text = response.text or response.reason or ""
    message = f"{status}: {text}"

    if status in AUTH_STATUS_CODES:
        return AuthFailure(message, status_code=status)
    if status in VALIDATION_STATUS_CODES:
        return ValidationFailure(message, status_code=status)
    return TransientFailure(message, status_code=status)


def raise_if_not_ok(response: requests.Response) -> None:
    if not response.ok:
        raise error_for_response(response)


def http_fetcher(
    url: str,
    params: Optional[Dict[str, Any]] = None,
    on_401: str = ON_401_THROW,
    session: Optional[requests.Session] = None,
    timeout: Optional[float] = None,
) -> Callable[[], Awaitable[Any]]:
    """
    Create a fetch function for a GET endpoint returning JSON.

    Args:
        url: Absolute URL, or a path joined to settings.api_base_url
        params: Query parameters
        on_401: "throw" raises AuthFailure, "return_none" resolves to None
        session: requests session to reuse (defaults to module-level requests)
        timeout: Request timeout in seconds (defaults from settings)

    Returns:
        Async callable suitable as a cache fetch function
    """
    if on_401 not in (ON_401_THROW, ON_401_RETURN_NONE):
        raise ValueError(f"Unknown on_401 behaviour '{on_401}'")

    full_url = _resolve_url(url)
    client = session or requests
    request_timeout = timeout if timeout is not None else settings.request_timeout_seconds

    def _get() -> Any:
        try:
            response = client.get(full_url, params=params, timeout=request_timeout)
        except requests.RequestException as e:
            raise TransientFailure(f"Request to {full_url} failed: {e}") from e

        if on_401 == ON_401_RETURN_NONE and response.status_code == 401:
            logger.debug(f"Unauthorized for {full_url}, returning None")
            return None

        raise_if_not_ok(response)
        return response.json()

    async def fetch() -> Any:
        # requests is blocking; keep the event loop free
        return await asyncio.to_thread(_get)

    return fetch
