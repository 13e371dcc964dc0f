"""
Artifact store - build output tarballs keyed by build id.
"""

import asyncio
import logging
import os
import tarfile
from pathlib import Path
from typing import AsyncIterable

from engine.src.config import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()

class ArtifactNotFoundError(Exception):
    """Raised when no artifact exists for a build."""

    def __init__(self, build_id: str):
        self.build_id = build_id
        super().__init__(f"Artifact not found for build {build_id}")

class ArtifactExtractError(Exception):
    """Raised when an artifact cannot be unpacked."""
    pass

def artifacts_dir() -> Path:
    path = Path(settings.artifacts_dir)
    path.mkdir(parents=True, exist_ok=True)
    return path

def path_for(build_id: str) -> Path:
    """Location of the tarball for a build."""
    return artifacts_dir() / f"{build_id}.tar.gz"

def exists(build_id: str) -> bool:
    return path_for(build_id).is_file()

async def save(build_id: str, chunks: AsyncIterable[bytes]) -> int:
    """
    Stream an uploaded artifact to disk.
    The file only appears under its final name once fully written.
    Returns the number of bytes stored.
    """
    target = path_for(build_id)
    partial = target.with_name(target.name + ".partial")
    size = 0

    try:
        with open(partial, "wb") as f:
            async for chunk in chunks:
                if chunk:
                    f.write(chunk)
                    size += len(chunk)
        os.replace(partial, target)
    finally:
        if partial.exists():
            partial.unlink()

    logger.info(f"Stored artifact for build {build_id} ({size} bytes)")
    return size

def _extract(archive: Path, target_dir: Path):
    with tarfile.open(archive, "r:gz") as tar:
        tar.extractall(target_dir, filter="data")

async def extract(build_id: str, target_dir: Path):
    """Unpack a build's artifact into target_dir."""
    archive = path_for(build_id)
    if not archive.is_file():
        raise ArtifactNotFoundError(build_id)

    target_dir.mkdir(parents=True, exist_ok=True)
    logger.info(f"Extracting {archive} to {target_dir}")

    try:
        await asyncio.wait_for(
            asyncio.to_thread(_extract, archive, target_dir),
            timeout=settings.extract_timeout,
        )
    except asyncio.TimeoutError:
        raise ArtifactExtractError(
            f"Extracting artifact for build {build_id} timed out after {settings.extract_timeout}s"
        )
    except (tarfile.TarError, OSError) as e:
        raise ArtifactExtractError(f"Failed to extract artifact for build {build_id}: {e}")

def delete(build_id: str) -> bool:
    """Remove a build's artifact. Returns True if something was deleted."""
    archive = path_for(build_id)
    try:
        archive.unlink()
        logger.info(f"Deleted artifact {archive}")
        return True
    except FileNotFoundError:
        return False
