from fastapi import APIRouter
import os
import shutil

from engine.src.config import get_settings
from engine.src.models.requests import PortCheckRequest
from engine.src.services.ports import is_port_available

settings = get_settings()

router = APIRouter(tags=["health"])

@router.get("/health")
async def health_check():
    return {"status": "healthy", "service": "launchpad-engine"}

@router.get("/health/host")
async def host_health_check():
    """Report the host tools the supervisor relies on."""
    tools = {name: shutil.which(name) is not None for name in ("lsof", "ss", "nginx")}
    free_bytes = None
    if os.path.isdir(settings.apps_dir):
        free_bytes = shutil.disk_usage(settings.apps_dir).free
    return {
        "status": "healthy" if tools["lsof"] or tools["ss"] else "degraded",
        "tools": tools,
        "free_bytes": free_bytes,
    }

@router.post("/ports/check")
async def check_port(body: PortCheckRequest):
    return {"port": body.port, "available": is_port_available(body.port)}
