"""
Buffered delivery of build log output to the control plane.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Optional

import httpx

from builder.src.config import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()

LogSender = Callable[[str, str], Awaitable[None]]

async def post_logs(build_id: str, text: str):
    """Append a chunk to the build's log on the control plane."""
    async with httpx.AsyncClient(timeout=settings.request_timeout) as client:
        response = await client.post(
            f"{settings.control_api_url}/builds/{build_id}/logs",
            json={"logs": text},
        )
        response.raise_for_status()

@dataclass
class _Buffer:
    chunks: List[str] = field(default_factory=list)
    size: int = 0
    timer: Optional[asyncio.Task] = None

class LogStreamer:
    """
    Per-build log buffers. A buffer is flushed once it holds `flush_bytes`
    or `flush_interval` seconds after its first unflushed write, whichever
    comes first.
    """

    def __init__(
        self,
        sender: Optional[LogSender] = None,
        flush_bytes: Optional[int] = None,
        flush_interval: Optional[float] = None,
    ):
        self.sender = sender or post_logs
        self.flush_bytes = flush_bytes or settings.log_flush_bytes
        self.flush_interval = settings.log_flush_interval if flush_interval is None else flush_interval
        self._buffers: Dict[str, _Buffer] = {}
        self._lock = asyncio.Lock()

    def pending(self, build_id: str) -> int:
        """Bytes buffered and not yet sent for a build."""
        buffer = self._buffers.get(build_id)
        return buffer.size if buffer else 0

    def tracked(self) -> List[str]:
        return list(self._buffers)

    async def write(self, build_id: str, text: str):
        if not text:
            return

        buffer = self._buffers.setdefault(build_id, _Buffer())
        buffer.chunks.append(text)
        buffer.size += len(text.encode())

        if buffer.size >= self.flush_bytes:
            await self.flush(build_id)
        elif buffer.timer is None:
            buffer.timer = asyncio.create_task(self._flush_later(build_id))

    async def log(self, build_id: str, line: str):
        """Write one line, newline-terminated."""
        await self.write(build_id, line if line.endswith("\n") else line + "\n")

    async def _flush_later(self, build_id: str):
        await asyncio.sleep(self.flush_interval)
        buffer = self._buffers.get(build_id)
        if buffer is not None:
            # This task is the timer; clear it so flush() does not cancel us
            buffer.timer = None
        await self.flush(build_id)

    async def flush(self, build_id: str):
        buffer = self._buffers.get(build_id)
        if buffer is None:
            return

        if buffer.timer is not None:
            buffer.timer.cancel()
            buffer.timer = None

        if not buffer.chunks:
            return
        text = "".join(buffer.chunks)
        buffer.chunks = []
        buffer.size = 0

        # Sends for one streamer are serialized to keep chunks in order
        async with self._lock:
            try:
                await self.sender(build_id, text)
            except Exception as e:
                logger.error(f"Failed to send logs for build {build_id}: {e}")

    async def ensure_flushed(self, build_id: str):
        """Send whatever is buffered for a build and forget it."""
        await self.flush(build_id)
        self._buffers.pop(build_id, None)
