"""
Shell command execution with output streamed to a build log.
"""

import asyncio
import codecs
import logging
import os
import signal
from pathlib import Path
from typing import Dict, Optional

from builder.src.config import get_settings
from builder.src.services.log_streamer import LogStreamer

logger = logging.getLogger(__name__)
settings = get_settings()

READ_CHUNK_SIZE = 8192

class CommandError(Exception):
    """Raised when a build command exits non-zero or times out."""
    pass

def kill_process_group(pgid: int):
    try:
        os.killpg(pgid, signal.SIGKILL)
    except ProcessLookupError:
        pass

def build_env(env_vars: Optional[Dict[str, str]] = None) -> Dict[str, str]:
    """The worker's environment with the project's variables layered on top."""
    env = dict(os.environ)
    env.update(env_vars or {})
    env["CI"] = env.get("CI", "true")
    return env

async def run_command(
    command: str,
    cwd: Path,
    build_id: str,
    streamer: LogStreamer,
    env_vars: Optional[Dict[str, str]] = None,
    timeout: Optional[float] = None,
):
    """
    Run a shell command, forwarding stdout and stderr to the build log as
    they arrive. Raises CommandError on a non-zero exit or timeout.

    The command leads its own process group; unless it completes normally
    the whole group is killed, including anything the shell started.
    """
    timeout = settings.command_timeout if timeout is None else timeout
    logger.info(f"[{build_id}] $ {command} (cwd: {cwd})")

    proc = await asyncio.create_subprocess_shell(
        command,
        cwd=cwd,
        env=build_env(env_vars),
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.STDOUT,
        start_new_session=True,
    )

    async def forward() -> int:
        # Fixed-size reads: output lines may be arbitrarily long
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        while True:
            chunk = await proc.stdout.read(READ_CHUNK_SIZE)
            if not chunk:
                break
            await streamer.write(build_id, decoder.decode(chunk))
        await streamer.write(build_id, decoder.decode(b"", final=True))
        return await proc.wait()

    completed = False
    try:
        code = await asyncio.wait_for(forward(), timeout=timeout)
        completed = True
    except asyncio.TimeoutError:
        raise CommandError(f"Command timed out after {timeout}s: {command}")
    finally:
        if not completed:
            kill_process_group(proc.pid)
            await proc.wait()

    if code != 0:
        raise CommandError(f"Command exited with code {code}: {command}")
