"""
Port ownership - availability probes, listener discovery and process termination.
"""

import asyncio
import logging
import os
import re
import signal
import socket
from typing import List

import httpx

from engine.src.config import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()

SS_PID_PATTERN = re.compile(r"pid=(\d+)")

class SelfTerminationError(Exception):
    """Raised when the only process holding a port is the engine itself."""
    pass

class PortInUseError(Exception):
    """Raised when a port could not be freed."""
    pass

def is_port_available(port: int) -> bool:
    """True if nothing is bound to the port on this host."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        try:
            sock.bind(("0.0.0.0", port))
        except OSError:
            return False
    return True

async def _command_output(*args: str) -> str:
    try:
        proc = await asyncio.create_subprocess_exec(
            *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.DEVNULL,
        )
    except FileNotFoundError:
        logger.debug(f"{args[0]} is not installed")
        return ""
    output, _ = await proc.communicate()
    return output.decode(errors="replace")

def parse_lsof_pids(output: str) -> List[int]:
    return [int(line) for line in output.split() if line.strip().isdigit()]

def parse_ss_pids(output: str) -> List[int]:
    return [int(pid) for pid in SS_PID_PATTERN.findall(output)]

async def find_listeners(port: int) -> List[int]:
    """
    PIDs listening on a TCP port, discovered with lsof and falling back to ss.
    """
    pids = parse_lsof_pids(await _command_output("lsof", "-t", f"-i:{port}", "-sTCP:LISTEN"))
    if not pids:
        pids = parse_ss_pids(await _command_output("ss", "-lptn", f"sport = :{port}"))

    # Preserve discovery order, drop duplicates
    return list(dict.fromkeys(pids))

def _reap(pid: int):
    # Collect our own exited children so they do not linger as zombies
    try:
        os.waitpid(pid, os.WNOHANG)
    except ChildProcessError:
        pass

def is_process_running(pid: int) -> bool:
    """True for a live process; zombies count as gone."""
    _reap(pid)
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True

    try:
        with open(f"/proc/{pid}/stat") as f:
            state = f.read().rsplit(")", 1)[1].split()[0]
        return state != "Z"
    except (OSError, IndexError):
        return True

def _signal(pid: int, sig: int):
    # Detached apps lead their own process group
    try:
        if os.getpgid(pid) == pid and pid != os.getpgrp():
            os.killpg(pid, sig)
            return
    except ProcessLookupError:
        return
    except PermissionError:
        pass
    os.kill(pid, sig)

async def terminate_process(pid: int, grace: float = None) -> bool:
    """
    SIGTERM, wait up to the grace period, then SIGKILL.
    Never signals the engine's own process. Returns True once the process is gone.
    """
    if pid == os.getpid():
        raise SelfTerminationError(f"Refusing to terminate own process {pid}")

    grace = settings.kill_grace_seconds if grace is None else grace

    if not is_process_running(pid):
        return True

    try:
        _signal(pid, signal.SIGTERM)
    except ProcessLookupError:
        return True

    loop = asyncio.get_running_loop()
    deadline = loop.time() + grace
    while loop.time() < deadline:
        if not is_process_running(pid):
            logger.info(f"Process {pid} exited after SIGTERM")
            return True
        await asyncio.sleep(0.1)

    logger.warning(f"Process {pid} ignored SIGTERM, sending SIGKILL")
    try:
        _signal(pid, signal.SIGKILL)
    except ProcessLookupError:
        return True

    for _ in range(20):
        if not is_process_running(pid):
            return True
        await asyncio.sleep(0.1)
    return False

async def probe_http(port: int, timeout: float = None) -> bool:
    """True if something answers HTTP on the port with a non-5xx status."""
    timeout = settings.health_check_timeout if timeout is None else timeout
    try:
        async with httpx.AsyncClient(timeout=timeout) as client:
            response = await client.get(f"http://127.0.0.1:{port}/")
        return response.status_code < 500
    except httpx.HTTPError:
        return False

async def kill_listeners(port: int) -> int:
    """
    Terminate every process listening on the port except this one.
    Returns the number of processes signalled.
    """
    pids = await find_listeners(port)
    if not pids:
        logger.info(f"No process found on port {port}")
        return 0

    own_pid = os.getpid()
    targets = [pid for pid in pids if pid != own_pid]
    logger.info(f"PIDs on port {port}: {pids} (own PID {own_pid})")

    if not targets:
        raise SelfTerminationError(
            f"Port {port} is held by the deploy engine itself (PID {own_pid}); check the configuration"
        )

    for pid in targets:
        await terminate_process(pid)
    return len(targets)

async def ensure_port_free(port: int):
    """
    Kill whatever listens on the port and verify it is released, both by
    socket inspection and by an HTTP probe.
    """
    logger.info(f"Ensuring port {port} is free")
    await kill_listeners(port)

    for attempt in range(settings.port_free_retries):
        if not await find_listeners(port) and not await probe_http(port):
            logger.info(f"Verified port {port} is free")
            return

        logger.info(f"Port {port} still in use, retrying cleanup ({attempt + 1}/{settings.port_free_retries})")
        await kill_listeners(port)
        await asyncio.sleep(settings.port_free_interval)

    raise PortInUseError(f"Could not free port {port} after {settings.port_free_retries} attempts")
