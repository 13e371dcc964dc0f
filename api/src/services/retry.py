"""
Bounded retry for calls to collaborating services.

2xx succeeds, 4xx fails immediately, 5xx and transport errors are retried
with exponential backoff.
"""

import asyncio
import logging
from typing import Any, Optional

import httpx

from api.src.services import clients

logger = logging.getLogger(__name__)

_sleep = asyncio.sleep

class UpstreamError(Exception):
    """A collaborating service did not accept a request."""
    pass

class ClientRequestError(UpstreamError):
    """The service answered 4xx; retrying would not help."""

    def __init__(self, status_code: int, message: str):
        self.status_code = status_code
        self.message = message
        super().__init__(f"HTTP {status_code}: {message}")

class RetryExhaustedError(UpstreamError):
    def __init__(self, attempts: int, last_error: str):
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"{last_error} (after {attempts} attempts)")

def error_message(response: httpx.Response) -> str:
    """Best description of a failed response: its JSON error field or its text."""
    try:
        body = response.json()
    except ValueError:
        return response.text[:500] or response.reason_phrase
    if isinstance(body, dict):
        for key in ("error", "detail", "message"):
            if body.get(key):
                return str(body[key])
    return str(body)[:500]

async def request_with_retry(
    method: str,
    url: str,
    *,
    json: Optional[Any] = None,
    attempts: int,
    base_delay: float,
    timeout: float,
) -> httpx.Response:
    last_error = ""

    for attempt in range(1, attempts + 1):
        try:
            async with clients.http_client(timeout) as client:
                response = await client.request(method, url, json=json)
        except httpx.TimeoutException:
            last_error = f"timed out after {timeout}s"
        except httpx.HTTPError as e:
            last_error = f"{type(e).__name__}: {e}"
        else:
            if response.status_code < 400:
                return response
            if response.status_code < 500:
                raise ClientRequestError(response.status_code, error_message(response))
            last_error = f"HTTP {response.status_code}: {error_message(response)}"

        logger.warning(f"{method} {url} attempt {attempt}/{attempts} failed: {last_error}")
        if attempt < attempts:
            await _sleep(base_delay * 2 ** (attempt - 1))

    raise RetryExhaustedError(attempts, last_error)
