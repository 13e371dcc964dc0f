from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from uuid import UUID

from api.src.db.database import get_db
from api.src.models.schemas import DeploymentResponse
from api.src.routes.errors import HANDLED_ERRORS, http_error
from api.src.services import build_service, deployment_service

router = APIRouter(prefix="/deploy", tags=["deployments"])

@router.post("/builds/{build_id}/activate", response_model=DeploymentResponse)
async def activate_build(build_id: UUID, db: AsyncSession = Depends(get_db)):
    """Manually (re)activate a successful build."""
    try:
        build = await build_service.get_build(db, build_id)
        return await deployment_service.activate_build(db, build.project_id, build.id)
    except HANDLED_ERRORS as e:
        raise http_error(e)
