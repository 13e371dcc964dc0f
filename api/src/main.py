"""
Launchpad control plane - Main entry point.
"""

import logging
import sys
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.src.config import get_settings
from api.src.db.database import close_db, init_db
from api.src.routes import builds_router, deployments_router, health_router, projects_router
from api.src.services.events import publisher

settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)]
)

logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting Launchpad API")
    logger.info(f"Build worker: {settings.builder_url}, deploy engine: {settings.deploy_engine_url}")
    await init_db()
    yield
    await publisher.close()
    await close_db()
    logger.info("Shutting down Launchpad API")

app = FastAPI(
    title="Launchpad",
    description="Self-hosted build and deploy platform",
    version="0.1.0",
    lifespan=lifespan
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(health_router)
app.include_router(projects_router, prefix="/api")
app.include_router(builds_router, prefix="/api")
app.include_router(deployments_router, prefix="/api")

@app.get("/")
async def root():
    return {
        "name": "Launchpad",
        "version": "0.1.0",
        "docs": "/docs"
    }

def run():
    """Console entry point."""
    uvicorn.run(app, host=settings.api_host, port=settings.api_port)

if __name__ == "__main__":
    run()
