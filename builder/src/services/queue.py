"""
Redis job queue for build jobs.

Jobs move from the pending list to a processing list when claimed, and each
claimed job holds a lease in a sorted set (score = deadline). A consumer that
stops heartbeating loses its lease and the job is redelivered. Every claim
carries a token; only the current claimant can extend or complete a job.
"""

import json
import logging
import time
import uuid
from datetime import datetime, timezone
from typing import Optional

import redis.asyncio as redis
from pydantic import ValidationError
from redis.exceptions import WatchError

from builder.src.config import get_settings
from builder.src.models.job import BuildJob, QueuedJob

logger = logging.getLogger(__name__)
settings = get_settings()

PENDING_KEY = "launchpad:builds:pending"
PROCESSING_KEY = "launchpad:builds:processing"
DEADLINES_KEY = "launchpad:builds:deadlines"
CLAIM_KEY_PREFIX = "launchpad:builds:claim:"

def claim_key(entry_id: str) -> str:
    return CLAIM_KEY_PREFIX + entry_id

def get_redis_client() -> redis.Redis:
    return redis.from_url(settings.redis_url, decode_responses=True)

class JobQueue:
    def __init__(self, client: Optional[redis.Redis] = None, lease_seconds: Optional[int] = None):
        self.client = client or get_redis_client()
        self.lease_seconds = lease_seconds or settings.queue_lease_seconds

    def _deadline(self) -> float:
        return time.time() + self.lease_seconds

    async def enqueue(self, job: BuildJob) -> str:
        """Add a build job to the pending list. Returns its queue entry id."""
        entry_id = uuid.uuid4().hex
        entry = {
            "entry_id": entry_id,
            "queued_at": datetime.now(timezone.utc).isoformat(),
            "job": job.model_dump(),
        }
        await self.client.lpush(PENDING_KEY, json.dumps(entry))
        logger.info(f"Enqueued build {job.build_id} (entry {entry_id})")
        return entry_id

    async def dequeue(self, timeout: Optional[int] = None) -> Optional[QueuedJob]:
        """
        Claim the oldest pending job and start its lease.
        Blocks for `timeout` seconds if the queue is empty.
        """
        timeout = settings.queue_poll_timeout if timeout is None else timeout
        raw = await self.client.blmove(PENDING_KEY, PROCESSING_KEY, timeout, "RIGHT", "LEFT")
        if raw is None:
            return None

        try:
            data = json.loads(raw)
            entry = QueuedJob(
                entry_id=data["entry_id"],
                queued_at=data["queued_at"],
                job=BuildJob(**data["job"]),
                raw=raw,
                claim=uuid.uuid4().hex,
            )
        except (ValueError, KeyError, TypeError, ValidationError) as e:
            logger.error(f"Dropping malformed queue entry: {e}")
            await self._remove(raw)
            return None

        async with self.client.pipeline(transaction=True) as pipe:
            pipe.zadd(DEADLINES_KEY, {raw: self._deadline()})
            pipe.set(claim_key(entry.entry_id), entry.claim)
            await pipe.execute()
        return entry

    async def _owns(self, pipe, entry: QueuedJob) -> bool:
        await pipe.watch(claim_key(entry.entry_id))
        owner = await pipe.get(claim_key(entry.entry_id))
        if owner != entry.claim:
            await pipe.unwatch()
            return False
        return True

    async def heartbeat(self, entry: QueuedJob) -> bool:
        """
        Extend the lease of a job in progress. False if the lease was lost,
        either to a stall sweep or to another consumer's claim.
        """
        while True:
            async with self.client.pipeline(transaction=True) as pipe:
                try:
                    if not await self._owns(pipe, entry):
                        return False
                    pipe.multi()
                    pipe.zadd(DEADLINES_KEY, {entry.raw: self._deadline()}, xx=True, ch=True)
                    changed, = await pipe.execute()
                    return bool(changed)
                except WatchError:
                    continue

    async def complete(self, entry: QueuedJob) -> bool:
        """Remove a finished job, whatever its outcome. A stale claimant removes nothing."""
        while True:
            async with self.client.pipeline(transaction=True) as pipe:
                try:
                    if not await self._owns(pipe, entry):
                        logger.warning(
                            f"Queue entry {entry.entry_id} was claimed elsewhere, not completing it"
                        )
                        return False
                    pipe.multi()
                    pipe.lrem(PROCESSING_KEY, 1, entry.raw)
                    pipe.zrem(DEADLINES_KEY, entry.raw)
                    pipe.delete(claim_key(entry.entry_id))
                    await pipe.execute()
                    break
                except WatchError:
                    continue

        logger.info(f"Completed queue entry {entry.entry_id} (build {entry.job.build_id})")
        return True

    async def _remove(self, raw: str):
        async with self.client.pipeline(transaction=True) as pipe:
            pipe.lrem(PROCESSING_KEY, 1, raw)
            pipe.zrem(DEADLINES_KEY, raw)
            await pipe.execute()

    async def requeue_stalled(self) -> int:
        """
        Move jobs whose lease expired back to the head of the pending list.
        Returns the number of jobs requeued.
        """
        now = time.time()
        requeued = 0

        for raw in await self.client.lrange(PROCESSING_KEY, 0, -1):
            async with self.client.pipeline(transaction=True) as pipe:
                try:
                    await pipe.watch(DEADLINES_KEY)
                    deadline = await pipe.zscore(DEADLINES_KEY, raw)

                    if deadline is None:
                        # Claimed but the lease was never started
                        pipe.multi()
                        pipe.zadd(DEADLINES_KEY, {raw: now + self.lease_seconds}, nx=True)
                        await pipe.execute()
                        continue
                    if deadline > now:
                        await pipe.unwatch()
                        continue

                    pipe.multi()
                    pipe.lrem(PROCESSING_KEY, 1, raw)
                    pipe.zrem(DEADLINES_KEY, raw)
                    pipe.rpush(PENDING_KEY, raw)
                    removed, _, _ = await pipe.execute()
                except WatchError:
                    # Heartbeat or completion raced the sweep
                    continue

            if removed:
                requeued += 1
                logger.warning(f"Requeued stalled job: {raw[:120]}")

        return requeued

    async def length(self) -> int:
        """Number of pending jobs."""
        return await self.client.llen(PENDING_KEY)

    async def processing(self) -> int:
        return await self.client.llen(PROCESSING_KEY)

    async def close(self):
        await self.client.aclose()
