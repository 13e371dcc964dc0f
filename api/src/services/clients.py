"""
HTTP clients for the build worker and the deploy engine.
"""

import httpx

def http_client(timeout: float) -> httpx.AsyncClient:
    """New client with an explicit per-request timeout."""
    return httpx.AsyncClient(timeout=timeout)
