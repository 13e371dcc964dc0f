from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession
from sse_starlette.sse import EventSourceResponse
from typing import Dict, List
from uuid import UUID
import asyncio
import json
import logging

from api.src.db.database import get_db
from api.src.models.schemas import (
    BuildResponse,
    DeploymentResponse,
    EnvVarsUpdate,
    ProjectCreate,
    ProjectResponse,
    ProjectUpdate,
)
from api.src.routes.errors import HANDLED_ERRORS, http_error
from api.src.services import build_service, deployment_service, events, project_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/projects", tags=["projects"])

@router.post("", response_model=ProjectResponse, status_code=201)
async def create_project(body: ProjectCreate, db: AsyncSession = Depends(get_db)):
    """Register a project and allocate its port."""
    try:
        return await project_service.create_project(db, body)
    except HANDLED_ERRORS as e:
        raise http_error(e)

@router.get("", response_model=List[ProjectResponse])
async def list_projects(db: AsyncSession = Depends(get_db)):
    return await project_service.list_projects(db)

@router.get("/{project_id}", response_model=ProjectResponse)
async def get_project(project_id: UUID, db: AsyncSession = Depends(get_db)):
    try:
        return await project_service.get_project(db, project_id)
    except HANDLED_ERRORS as e:
        raise http_error(e)

@router.put("/{project_id}", response_model=ProjectResponse)
async def update_project(project_id: UUID, body: ProjectUpdate, db: AsyncSession = Depends(get_db)):
    try:
        return await project_service.update_project(db, project_id, body)
    except HANDLED_ERRORS as e:
        raise http_error(e)

@router.delete("/{project_id}")
async def delete_project(project_id: UUID, db: AsyncSession = Depends(get_db)):
    """Delete a project; host cleanup problems are reported but do not block it."""
    try:
        errors = await project_service.delete_project(db, project_id)
    except HANDLED_ERRORS as e:
        raise http_error(e)
    return {"success": True, "cleanup_errors": errors}

@router.get("/{project_id}/env", response_model=Dict[str, str])
async def get_env_vars(project_id: UUID, db: AsyncSession = Depends(get_db)):
    try:
        await project_service.get_project(db, project_id)
    except HANDLED_ERRORS as e:
        raise http_error(e)
    return await project_service.get_env_vars(db, project_id)

@router.put("/{project_id}/env", response_model=Dict[str, str])
async def set_env_vars(project_id: UUID, body: EnvVarsUpdate, db: AsyncSession = Depends(get_db)):
    try:
        return await project_service.set_env_vars(db, project_id, body.env_vars)
    except HANDLED_ERRORS as e:
        raise http_error(e)

@router.post("/{project_id}/builds", response_model=BuildResponse, status_code=201)
async def create_build(project_id: UUID, db: AsyncSession = Depends(get_db)):
    """Start a build of the project's branch."""
    try:
        project = await project_service.get_project(db, project_id)
    except HANDLED_ERRORS as e:
        raise http_error(e)
    return await build_service.create_build(db, project)

@router.get("/{project_id}/builds", response_model=List[BuildResponse])
async def list_builds(project_id: UUID, db: AsyncSession = Depends(get_db)):
    try:
        return await build_service.list_builds(db, project_id)
    except HANDLED_ERRORS as e:
        raise http_error(e)

@router.post("/{project_id}/stop", response_model=DeploymentResponse)
async def stop_project(project_id: UUID, db: AsyncSession = Depends(get_db)):
    try:
        return await deployment_service.stop_deployment(db, project_id)
    except HANDLED_ERRORS as e:
        raise http_error(e)

@router.get("/{project_id}/deployments/active", response_model=DeploymentResponse)
async def get_active_deployment(project_id: UUID, db: AsyncSession = Depends(get_db)):
    try:
        await project_service.get_project(db, project_id)
        deployment = await deployment_service.get_active_deployment(db, project_id)
        if deployment is None:
            raise deployment_service.NoActiveDeploymentError(
                f"No active deployment for project {project_id}"
            )
    except HANDLED_ERRORS as e:
        raise http_error(e)
    return deployment

@router.get("/{project_id}/events")
async def project_events(project_id: UUID, request: Request, db: AsyncSession = Depends(get_db)):
    """Stream build and deployment updates for a project (SSE)."""
    try:
        await project_service.get_project(db, project_id)
    except HANDLED_ERRORS as e:
        raise http_error(e)

    async def event_generator():
        yield {"event": "connected", "data": str(project_id)}
        subscription = events.publisher.subscribe(events.project_channel(project_id))
        try:
            async for event in subscription:
                if await request.is_disconnected():
                    break
                yield {"event": event.get("type", "message"), "data": json.dumps(event)}
        except asyncio.CancelledError:
            logger.debug(f"Event stream for project {project_id} closed")
            raise
        finally:
            await subscription.aclose()

    return EventSourceResponse(event_generator())
