from fastapi import APIRouter, HTTPException, Query, Request
import logging

from engine.src.services import artifacts

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/artifacts", tags=["artifacts"])

@router.post("/upload")
async def upload_artifact(request: Request, build_id: str = Query(..., alias="buildId")):
    """Receive a build's compressed output as a raw request body."""
    if not build_id or "/" in build_id or build_id.startswith("."):
        raise HTTPException(status_code=400, detail="Invalid buildId")

    logger.info(f"Receiving artifact for build {build_id}")
    size = await artifacts.save(build_id, request.stream())

    if size == 0:
        artifacts.delete(build_id)
        raise HTTPException(status_code=400, detail="Missing body")

    return {"success": True, "artifact_id": build_id, "size": size}

@router.head("/{build_id}")
async def artifact_exists(build_id: str):
    if not artifacts.exists(build_id):
        raise HTTPException(status_code=404, detail="Artifact not found")
    return None
