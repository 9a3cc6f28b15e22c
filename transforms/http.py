"""Shared HTTP boundary for provider clients."""

from typing import Any, Dict, Optional

import httpx

from core.config import settings
from core.errors import UpstreamError


def default_timeout(seconds: Optional[float] = None) -> httpx.Timeout:
    seconds = seconds or settings.HTTP_TIMEOUT_SECONDS
    return httpx.Timeout(seconds, connect=min(seconds, 5.0))


def make_client(transport: Optional[httpx.AsyncBaseTransport] = None,
                timeout: Optional[float] = None,
                headers: Optional[Dict[str, str]] = None) -> httpx.AsyncClient:
    """
    One short-lived client per lookup. `transport` is the seam tests use to
    plug in httpx.MockTransport.
    """
    return httpx.AsyncClient(
        headers={"User-Agent": settings.USER_AGENT, **(headers or {})},
        timeout=default_timeout(timeout),
        follow_redirects=True,
        transport=transport,
    )


async def _get(client: httpx.AsyncClient, provider: str, url: str,
               allow_not_found: bool, **kwargs) -> Optional[httpx.Response]:
    try:
        response = await client.get(url, **kwargs)
    except httpx.TimeoutException as e:
        raise UpstreamError(provider, "request timed out") from e
    except httpx.HTTPError as e:
        raise UpstreamError(provider, f"request failed ({type(e).__name__})") from e

    if allow_not_found and response.status_code == 404:
        return None
    if response.status_code == 401 or response.status_code == 403:
        raise UpstreamError(provider, "API key rejected", response.status_code)
    if response.status_code == 429:
        raise UpstreamError(provider, "provider rate limit hit", response.status_code)
    if not response.is_success:
        raise UpstreamError(provider, f"API error {response.status_code}", response.status_code)
    return response


async def fetch_json(client: httpx.AsyncClient, provider: str, url: str, *,
                     allow_not_found: bool = False, **kwargs) -> Any:
    """
    GETs `url` and decodes JSON. Every transport problem, non-2xx status and
    undecodable body becomes an UpstreamError. With `allow_not_found`, a 404 is
    returned as None instead.
    """
    response = await _get(client, provider, url, allow_not_found, **kwargs)
    if response is None:
        return None
    try:
        return response.json()
    except ValueError as e:
        raise UpstreamError(provider, "malformed JSON payload", response.status_code) from e


async def fetch_text(client: httpx.AsyncClient, provider: str, url: str, **kwargs) -> httpx.Response:
    """GETs a web page. Same error mapping as fetch_json; the caller reads text and headers."""
    return await _get(client, provider, url, False, **kwargs)
