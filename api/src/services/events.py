"""
Build and deployment notifications over Redis pub/sub.
"""

import json
import logging
from typing import Any, AsyncIterator, Dict, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from api.src.config import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()

def project_channel(project_id) -> str:
    return f"launchpad:project:{project_id}"

def build_channel(build_id) -> str:
    return f"launchpad:build:{build_id}"

class EventPublisher:
    def __init__(self, client: Optional[redis.Redis] = None):
        self._client = client

    @property
    def client(self) -> redis.Redis:
        if self._client is None:
            self._client = redis.from_url(settings.redis_url, decode_responses=True)
        return self._client

    async def publish(self, channel: str, event: Dict[str, Any]):
        """Best effort: subscribers are optional."""
        try:
            await self.client.publish(channel, json.dumps(event, default=str))
        except RedisError as e:
            logger.warning(f"Failed to publish {event.get('type')} on {channel}: {e}")

    async def project_event(self, project_id, event_type: str, **data):
        await self.publish(project_channel(project_id), {"type": event_type, "project_id": str(project_id), **data})

    async def build_event(self, build_id, event_type: str, **data):
        await self.publish(build_channel(build_id), {"type": event_type, "build_id": str(build_id), **data})

    async def subscribe(self, channel: str) -> AsyncIterator[Dict[str, Any]]:
        pubsub = self.client.pubsub()
        await pubsub.subscribe(channel)
        try:
            async for message in pubsub.listen():
                if message["type"] != "message":
                    continue
                yield json.loads(message["data"])
        finally:
            await pubsub.unsubscribe(channel)
            await pubsub.aclose()

    async def close(self):
        if self._client is not None:
            await self._client.aclose()
            self._client = None

publisher = EventPublisher()
