"""
Loopguard — httpx adapter

Turns HTTP failures into OperationError so the retry loop sees the status
code and any Retry-After hint.

Usage:
    async with httpx.AsyncClient(timeout=30) as client:
        resp = await guard.call(lambda: send(client, "POST", url, json=payload), "webhook")
"""
import httpx

from resilience.errors import OperationError, error_from_response


def raise_for_status(response: httpx.Response) -> httpx.Response:
    """Raise OperationError for 4xx/5xx responses, otherwise return the response."""
    if response.status_code >= 400:
        raise error_from_response(response)
    return response


async def send(client: httpx.AsyncClient, method: str, url: str, **kwargs) -> httpx.Response:
    try:
        response = await client.request(method, url, **kwargs)
    except httpx.TimeoutException as e:
        raise OperationError(f"timeout: {method} {url} ({e})") from e
    except httpx.TransportError as e:
        raise OperationError(f"network error: {method} {url} ({e})") from e
    return raise_for_status(response)
