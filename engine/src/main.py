"""
Launchpad deploy engine - Main entry point.
"""

import logging
import os
import sys
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI

from engine.src.config import get_settings
from engine.src.routes import health_router, artifacts_router, deploy_router

settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)]
)

logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    os.makedirs(settings.artifacts_dir, exist_ok=True)
    logger.info("Starting Launchpad deploy engine")
    logger.info(f"Apps directory: {os.path.abspath(settings.apps_dir)}")
    yield
    logger.info("Shutting down Launchpad deploy engine")

app = FastAPI(
    title="Launchpad Engine",
    description="Artifact store, process supervisor and proxy configurator",
    version="0.1.0",
    lifespan=lifespan
)

app.include_router(health_router)
app.include_router(artifacts_router)
app.include_router(deploy_router)

def run():
    """Console entry point."""
    uvicorn.run(app, host=settings.engine_host, port=settings.engine_port)

if __name__ == "__main__":
    run()
