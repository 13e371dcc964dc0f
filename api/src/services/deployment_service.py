"""
Deployment orchestration - cut a project over to a build, stop it, and
track which deployment is live.
"""

import logging
from typing import Optional
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from api.src.config import get_settings
from api.src.models.project import Build, Deployment, utcnow
from api.src.services import events, project_service
from api.src.services.leases import project_leases
from api.src.services.retry import UpstreamError, request_with_retry

logger = logging.getLogger(__name__)
settings = get_settings()

class DeploymentError(Exception):
    """Base class for deployment failures."""
    pass

class InvalidBuildError(DeploymentError):
    """The build cannot be deployed (unknown, foreign or not successful)."""
    pass

class ActivationError(DeploymentError):
    """The engine did not bring the build up."""
    pass

class NoActiveDeploymentError(DeploymentError):
    pass

async def get_active_deployment(db: AsyncSession, project_id: UUID) -> Optional[Deployment]:
    result = await db.execute(
        select(Deployment)
        .where(Deployment.project_id == project_id)
        .where(Deployment.status == "active")
    )
    return result.scalars().first()

async def _set_status(db: AsyncSession, deployment: Deployment, status: str, error: Optional[str] = None):
    deployment.status = status
    deployment.error = error
    await db.commit()
    await events.publisher.project_event(
        deployment.project_id,
        "deployment.updated",
        deployment_id=str(deployment.id),
        build_id=str(deployment.build_id),
        status=status,
        error=error,
    )

async def _promote(db: AsyncSession, deployment: Deployment):
    """Demote every other active deployment and promote this one, in one transaction."""
    now = utcnow()
    await db.execute(
        update(Deployment)
        .where(Deployment.project_id == deployment.project_id)
        .where(Deployment.status == "active")
        .where(Deployment.id != deployment.id)
        .values(status="inactive", updated_at=now)
    )
    await db.execute(
        update(Deployment)
        .where(Deployment.id == deployment.id)
        .values(status="active", activated_at=now, error=None, updated_at=now)
    )
    await db.commit()
    await db.refresh(deployment)

async def activate_build(db: AsyncSession, project_id: UUID, build_id: UUID) -> Deployment:
    """
    Make a successful build the project's live deployment.
    On failure the deployment is marked failed and whatever was active stays active.
    """
    async with project_leases.hold(project_id):
        project = await project_service.get_project(db, project_id)
        if project.port is None:
            raise DeploymentError(f"Project {project_id} has no port assigned")

        build = await db.get(Build, build_id)
        if build is None or build.project_id != project.id:
            raise InvalidBuildError(f"Build {build_id} not found for project {project_id}")
        if build.status != "success":
            raise InvalidBuildError(
                f"Build {build_id} is {build.status}; only successful builds can be deployed"
            )

        # One deployment record per build; re-activation reuses it
        result = await db.execute(select(Deployment).where(Deployment.build_id == build.id))
        deployment = result.scalars().first()
        if deployment is None:
            deployment = Deployment(project_id=project.id, build_id=build.id, status="activating")
            db.add(deployment)
        await _set_status(db, deployment, "activating")

        logger.info(f"Activating build {build_id} for project {project.name} on port {project.port}")
        env_vars = await project_service.get_env_vars(db, project.id)
        payload = {
            "projectId": str(project.id),
            "buildId": str(build.id),
            "port": project.port,
            "runtimeKind": project.runtime_kind,
            "subdomain": project.subdomain,
            "envVars": env_vars,
        }

        try:
            await request_with_retry(
                "POST",
                f"{settings.deploy_engine_url}/activate",
                json=payload,
                attempts=settings.activation_attempts,
                base_delay=settings.activation_base_delay,
                timeout=settings.activation_timeout,
            )
        except UpstreamError as e:
            logger.error(f"Activation of build {build_id} failed: {e}")
            await _set_status(db, deployment, "failed", error=str(e))
            raise ActivationError(str(e))

        try:
            await _promote(db, deployment)
        except SQLAlchemyError as e:
            logger.exception(f"Failed to record activation of build {build_id}")
            await db.rollback()
            await db.refresh(deployment)
            await _set_status(db, deployment, "failed", error=f"Failed to record activation: {e}")
            raise ActivationError(f"Failed to record activation: {e}")

    logger.info(f"Build {build_id} is live for project {project.name}")
    await events.publisher.project_event(
        project.id,
        "deployment.updated",
        deployment_id=str(deployment.id),
        build_id=str(deployment.build_id),
        status="active",
    )
    return deployment

async def stop_deployment(db: AsyncSession, project_id: UUID) -> Deployment:
    """Stop the project's running process and mark its deployment inactive."""
    async with project_leases.hold(project_id):
        project = await project_service.get_project(db, project_id)
        deployment = await get_active_deployment(db, project_id)
        if deployment is None:
            raise NoActiveDeploymentError(f"No active deployment for project {project_id}")

        try:
            await request_with_retry(
                "POST",
                f"{settings.deploy_engine_url}/stop",
                json={
                    "port": project.port,
                    "projectId": str(project.id),
                    "buildId": str(deployment.build_id),
                },
                attempts=settings.activation_attempts,
                base_delay=settings.activation_base_delay,
                timeout=settings.control_timeout,
            )
        except UpstreamError as e:
            logger.error(f"Failed to stop project {project_id}: {e}")
            raise DeploymentError(f"Failed to stop deployment: {e}")

        await _set_status(db, deployment, "inactive")

    logger.info(f"Stopped deployment {deployment.id} of project {project_id}")
    return deployment
