"""
Source checkout.
"""

import asyncio
import logging
import os
import shutil
from pathlib import Path
from typing import Optional
from urllib.parse import urlsplit, urlunsplit

from builder.src.config import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()

class CloneError(Exception):
    """Raised when the repository cannot be cloned."""
    pass

def authenticated_url(repo_url: str, token: Optional[str]) -> str:
    """Embed an installation token into an https clone URL."""
    if not token:
        return repo_url
    parts = urlsplit(repo_url)
    if parts.scheme != "https":
        return repo_url
    host = parts.hostname or ""
    if parts.port:
        host = f"{host}:{parts.port}"
    return urlunsplit(parts._replace(netloc=f"x-access-token:{token}@{host}"))

def scrub(text: str, token: Optional[str]) -> str:
    return text.replace(token, "***") if token else text

async def clone(
    repo_url: str,
    target_dir: Path,
    branch: Optional[str] = None,
    token: Optional[str] = None,
):
    """Shallow-clone a repository into target_dir, replacing anything there."""
    if target_dir.exists():
        shutil.rmtree(target_dir)
    target_dir.parent.mkdir(parents=True, exist_ok=True)

    args = ["git", "clone", "--depth", "1"]
    if branch:
        args += ["--branch", branch]
    args += [authenticated_url(repo_url, token), str(target_dir)]

    env = {**os.environ, "GIT_TERMINAL_PROMPT": "0"}
    logger.info(f"Cloning {repo_url} ({branch or 'default branch'}) into {target_dir}")

    try:
        proc = await asyncio.create_subprocess_exec(
            *args,
            env=env,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
        )
    except FileNotFoundError:
        raise CloneError("git is not installed")

    try:
        output, _ = await asyncio.wait_for(proc.communicate(), timeout=settings.clone_timeout)
    except asyncio.TimeoutError:
        proc.kill()
        await proc.wait()
        raise CloneError(f"Clone timed out after {settings.clone_timeout}s")

    if proc.returncode != 0:
        message = scrub(output.decode(errors="replace").strip(), token)
        raise CloneError(f"git clone failed: {message}")
