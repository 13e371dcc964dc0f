"""
Queue worker - pulls build jobs from Redis and executes them one at a time.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from redis.exceptions import RedisError

from builder.src.config import get_settings
from builder.src.models.job import BuildJob, QueuedJob
from builder.src.services.executor import execute_build
from builder.src.services.log_streamer import LogStreamer
from builder.src.services.queue import JobQueue

logger = logging.getLogger(__name__)
settings = get_settings()

Executor = Callable[[BuildJob, LogStreamer], Awaitable[bool]]

class Worker:
    def __init__(
        self,
        queue: JobQueue,
        streamer: Optional[LogStreamer] = None,
        executor: Optional[Executor] = None,
    ):
        self.queue = queue
        self.streamer = streamer or LogStreamer()
        self.executor = executor or execute_build
        self.current: Optional[QueuedJob] = None
        self._last_sweep: Optional[float] = None

    async def _heartbeat(self, entry: QueuedJob, build: asyncio.Task) -> bool:
        interval = max(self.queue.lease_seconds / 3, 1)
        while True:
            await asyncio.sleep(interval)
            try:
                alive = await self.queue.heartbeat(entry)
            except RedisError as e:
                logger.warning(f"Heartbeat for build {entry.job.build_id} failed: {e}")
                continue
            if not alive:
                logger.warning(f"Lost lease for build {entry.job.build_id}, stopping it")
                build.cancel()
                return True

    async def process(self, entry: QueuedJob) -> bool:
        """Run one claimed job, keeping its lease alive until it finishes.

        If the lease is lost the job now belongs to another consumer, so the
        build is cancelled and the entry is left for its new owner.
        """
        build_id = entry.job.build_id
        logger.info(f"Received job for build {build_id}")
        self.current = entry
        build = asyncio.create_task(self.executor(entry.job, self.streamer))
        heartbeat = asyncio.create_task(self._heartbeat(entry, build))
        shutting_down = False

        try:
            return await build
        except asyncio.CancelledError:
            if heartbeat.done() and not heartbeat.cancelled():
                logger.warning(f"Abandoned build {build_id}")
                return False
            shutting_down = True
            build.cancel()
            raise
        except Exception as e:
            logger.exception(f"Failed to execute build {build_id}: {e}")
            return False
        finally:
            heartbeat.cancel()
            self.current = None
            if not shutting_down:
                await self.queue.complete(entry)

    async def sweep(self):
        loop = asyncio.get_running_loop()
        if self._last_sweep is not None and loop.time() - self._last_sweep < settings.stalled_sweep_interval:
            return
        self._last_sweep = loop.time()
        requeued = await self.queue.requeue_stalled()
        if requeued:
            logger.warning(f"Requeued {requeued} stalled build job(s)")

    async def run_once(self, timeout: Optional[int] = None) -> bool:
        """Process at most one job. Returns True if a job was handled."""
        await self.sweep()
        entry = await self.queue.dequeue(timeout=timeout)
        if entry is None:
            return False
        await self.process(entry)
        return True

    async def run(self):
        """Main worker loop."""
        logger.info("Worker started, waiting for jobs...")

        while True:
            try:
                await self.run_once()
            except asyncio.CancelledError:
                logger.info("Worker shutting down...")
                raise
            except Exception as e:
                logger.exception(f"Worker error: {e}")
                await asyncio.sleep(5)
