"""
Report build status to the control plane.
"""

import logging
from typing import Optional

import httpx

from builder.src.config import get_settings
from builder.src.models.job import BuildStatus

logger = logging.getLogger(__name__)
settings = get_settings()

async def update_build_status(
    build_id: str,
    status: BuildStatus,
    artifact_id: Optional[str] = None,
) -> bool:
    """
    PUT the build's status. Failures are logged and reported through the
    return value only; they never fail the build.
    """
    payload = {"status": status.value}
    if artifact_id:
        payload["artifact_id"] = artifact_id

    try:
        async with httpx.AsyncClient(timeout=settings.status_timeout) as client:
            response = await client.put(
                f"{settings.control_api_url}/builds/{build_id}",
                json=payload,
            )
            response.raise_for_status()
    except httpx.HTTPError as e:
        logger.error(f"Failed to report status {status.value} for build {build_id}: {e}")
        return False

    logger.info(f"Reported build {build_id} status {status.value}")
    return True
