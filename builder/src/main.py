"""
Launchpad build worker - Main entry point.
"""

import asyncio
import logging
import sys
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI

from builder.src.config import get_settings
from builder.src.routes import health_router, build_router
from builder.src.services.queue import JobQueue
from builder.src.worker import Worker

settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)]
)

logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting Launchpad build worker")
    logger.info(f"Redis URL: {settings.redis_url}")

    queue = JobQueue()
    worker = Worker(queue)
    app.state.queue = queue
    app.state.worker = worker
    task = asyncio.create_task(worker.run())

    yield

    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass
    await queue.close()
    logger.info("Build worker stopped")

app = FastAPI(
    title="Launchpad Builder",
    description="Build job queue and executor",
    version="0.1.0",
    lifespan=lifespan
)

app.include_router(health_router)
app.include_router(build_router)

def run():
    """Console entry point."""
    uvicorn.run(app, host=settings.builder_host, port=settings.builder_port)

if __name__ == "__main__":
    run()
