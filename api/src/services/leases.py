"""
Per-project mutual exclusion for activate, stop and delete.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Dict

logger = logging.getLogger(__name__)

class ProjectLeases:
    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}

    def _lock(self, project_id) -> asyncio.Lock:
        key = str(project_id)
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    @asynccontextmanager
    async def hold(self, project_id):
        lock = self._lock(project_id)
        if lock.locked():
            logger.info(f"Waiting for lease on project {project_id}")
        async with lock:
            yield

project_leases = ProjectLeases()
