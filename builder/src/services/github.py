"""
GitHub App installation tokens for cloning private repositories.
"""

import base64
import binascii
import logging
import time

import httpx
from jose import jwt

from builder.src.config import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()

class GitHubAuthError(Exception):
    """Raised when an installation token cannot be obtained."""
    pass

def load_private_key(value: str) -> str:
    """Accept the key as PEM text or base64-encoded PEM."""
    if "-----BEGIN" in value:
        return value.replace("\\n", "\n")
    try:
        return base64.b64decode(value).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        return value

def generate_app_jwt() -> str:
    """Short-lived RS256 token identifying the GitHub App."""
    if not settings.github_app_id or not settings.github_private_key:
        raise GitHubAuthError("Missing GITHUB_APP_ID or GITHUB_PRIVATE_KEY")

    now = int(time.time())
    payload = {
        "iat": now - 60,  # allow for clock drift
        "exp": now + 10 * 60,
        "iss": settings.github_app_id,
    }
    return jwt.encode(payload, load_private_key(settings.github_private_key), algorithm="RS256")

async def get_installation_token(installation_id: int) -> str:
    """Exchange the app JWT for an installation access token. Never persisted."""
    app_jwt = generate_app_jwt()
    url = f"{settings.github_api_url}/app/installations/{installation_id}/access_tokens"

    try:
        async with httpx.AsyncClient(timeout=settings.request_timeout) as client:
            response = await client.post(
                url,
                headers={
                    "Authorization": f"Bearer {app_jwt}",
                    "Accept": "application/vnd.github+json",
                },
            )
    except httpx.HTTPError as e:
        raise GitHubAuthError(f"Failed to reach GitHub: {e}")

    if response.status_code >= 400:
        logger.error(f"Installation token request failed: {response.status_code} {response.text}")
        raise GitHubAuthError(f"Failed to get installation token: HTTP {response.status_code}")

    return response.json()["token"]
