from fastapi import APIRouter, Request
import logging

from builder.src.models.job import BuildJob

logger = logging.getLogger(__name__)

router = APIRouter(tags=["build"])

@router.post("/build", status_code=202)
async def trigger_build(job: BuildJob, request: Request):
    """Accept a build job; completion is reported through status callbacks."""
    entry_id = await request.app.state.queue.enqueue(job)
    logger.info(f"Accepted build {job.build_id} for project {job.project_id}")
    return {"accepted": True, "build_id": job.build_id, "entry_id": entry_id}
