"""HTTP client factory for the licensing service."""

from typing import Optional

import httpx

from devtls import __version__

DEFAULT_TIMEOUT = 30.0


def create_http_client(
    base_url: str,
    token: Optional[str] = None,
    timeout: float = DEFAULT_TIMEOUT,
    transport: Optional[httpx.BaseTransport] = None,
) -> httpx.Client:
    """
    Create an httpx client with JSON and bearer-token headers.

    Args:
        base_url: Service root, e.g. http://localhost:8081
        token: Personal access token
        timeout: Request timeout in seconds
        transport: Optional transport (tests use httpx.MockTransport)
    """
    headers = {
        "Content-Type": "application/json",
        "User-Agent": f"devtls/{__version__}",
    }
    if token:
        headers["Authorization"] = f"Bearer {token}"

    kwargs = {}
    if transport is not None:
        kwargs["transport"] = transport

    return httpx.Client(
        base_url=base_url.rstrip("/"),
        headers=headers,
        timeout=timeout,
        follow_redirects=True,
        **kwargs,
    )
