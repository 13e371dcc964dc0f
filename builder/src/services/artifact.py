"""
Package build output and ship it to the deploy engine.
"""

import asyncio
import logging
import tarfile
from pathlib import Path
from typing import AsyncIterator, List

import httpx

from builder.src.config import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()

CHUNK_SIZE = 64 * 1024

OUTPUT_PATHS = {
    "server": [
        ".next",
        "public",
        "package.json",
        "bun.lockb",
        "bun.lock",
        "package-lock.json",
        "pnpm-lock.yaml",
        "yarn.lock",
        "next.config.mjs",
        "next.config.js",
        "out",
    ],
    "static": ["dist"],
}

class NoBuildOutputError(Exception):
    """Raised when none of the expected output paths exist."""

    def __init__(self):
        super().__init__("No build output found to package")

class UploadError(Exception):
    """Raised when the deploy engine rejects or never receives an artifact."""
    pass

def collect_output_paths(project_dir: Path, runtime_kind: str) -> List[str]:
    """Expected output paths for the runtime kind that exist in project_dir."""
    return [p for p in OUTPUT_PATHS.get(runtime_kind, []) if (project_dir / p).exists()]

def _create_tarball(project_dir: Path, paths: List[str], archive: Path):
    with tarfile.open(archive, "w:gz") as tar:
        for p in paths:
            tar.add(project_dir / p, arcname=p)

async def package_output(project_dir: Path, runtime_kind: str, archive: Path) -> List[str]:
    """
    Write the build output to a gzip tarball.
    Returns the packaged paths; raises NoBuildOutputError if there are none.
    """
    paths = collect_output_paths(project_dir, runtime_kind)
    if not paths:
        raise NoBuildOutputError()

    archive.parent.mkdir(parents=True, exist_ok=True)
    logger.info(f"Packaging {paths} into {archive}")
    await asyncio.to_thread(_create_tarball, project_dir, paths, archive)
    return paths

async def _read_chunks(archive: Path) -> AsyncIterator[bytes]:
    with open(archive, "rb") as f:
        while True:
            chunk = await asyncio.to_thread(f.read, CHUNK_SIZE)
            if not chunk:
                break
            yield chunk

async def upload_artifact(build_id: str, archive: Path) -> str:
    """Stream the archive to the deploy engine. Returns the artifact id."""
    url = f"{settings.deploy_engine_url}/artifacts/upload"
    logger.info(f"Uploading {archive} ({archive.stat().st_size} bytes) to {url}")

    try:
        async with httpx.AsyncClient(timeout=settings.upload_timeout) as client:
            response = await client.post(
                url,
                params={"buildId": build_id},
                content=_read_chunks(archive),
                headers={"Content-Type": "application/gzip"},
            )
    except httpx.HTTPError as e:
        raise UploadError(f"Failed to upload artifact: {e}")

    if response.status_code >= 400:
        raise UploadError(f"Failed to upload artifact: HTTP {response.status_code} {response.text}")

    return response.json().get("artifact_id", build_id)
