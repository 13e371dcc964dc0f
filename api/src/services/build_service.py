"""
Build orchestration - build records, the build worker trigger and status
transitions.
"""

import logging
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from api.src.config import get_settings
from api.src.models.project import Build, Deployment, Project, utcnow
from api.src.models.schemas import BuildResponse
from api.src.services import deployment_service, events, project_service
from api.src.services.retry import UpstreamError, request_with_retry

logger = logging.getLogger(__name__)
settings = get_settings()

TERMINAL_STATUSES = {"success", "failed"}

# pending -> building -> success | failed
STATUS_RANK = {"pending": 0, "building": 1, "success": 2, "failed": 2}

class BuildNotFoundError(Exception):
    def __init__(self, build_id):
        self.build_id = build_id
        super().__init__(f"Build {build_id} not found")

class InvalidTransitionError(Exception):
    """Raised when a status update would move a build backwards."""
    pass

def check_transition(current: str, new: str) -> bool:
    """
    True if the build should move from current to new, False for a repeated
    status. Raises InvalidTransitionError for anything else.
    """
    if new not in STATUS_RANK:
        raise InvalidTransitionError(f"Unknown build status '{new}'")
    if current == new:
        return False
    if current in TERMINAL_STATUSES:
        raise InvalidTransitionError(f"Build is already {current}; cannot move to {new}")
    if STATUS_RANK[new] <= STATUS_RANK[current]:
        raise InvalidTransitionError(f"Build cannot move from {current} back to {new}")
    return True

def build_job(project: Project, build: Build, env_vars: Dict[str, str]) -> Dict[str, Any]:
    """The job description the build worker consumes."""
    return {
        "build_id": str(build.id),
        "project_id": str(project.id),
        "source_url": project.repo_url,
        "build_command": project.build_command,
        "root_directory": project.root_directory,
        "runtime_kind": project.runtime_kind,
        "env_vars": env_vars,
        "installation_id": project.installation_id,
        "branch": project.branch,
    }

async def get_build(db: AsyncSession, build_id: UUID) -> Build:
    build = await db.get(Build, build_id)
    if build is None:
        raise BuildNotFoundError(build_id)
    return build

async def trigger_build(job: Dict[str, Any]):
    """Hand a job to the build worker, with bounded retry."""
    await request_with_retry(
        "POST",
        f"{settings.builder_url}/build",
        json=job,
        attempts=settings.build_trigger_attempts,
        base_delay=settings.build_trigger_base_delay,
        timeout=settings.build_trigger_timeout,
    )

async def create_build(db: AsyncSession, project: Project) -> Build:
    """
    Insert a pending build and start it on the build worker.
    If the worker cannot be reached the build fails without ever building.
    """
    build = Build(project_id=project.id, status="pending", logs="")
    db.add(build)
    await db.commit()
    logger.info(f"Created build {build.id} for project {project.name}")
    await events.publisher.project_event(project.id, "build.created", build_id=str(build.id))

    env_vars = await project_service.get_env_vars(db, project.id)

    try:
        await trigger_build(build_job(project, build, env_vars))
    except UpstreamError as e:
        logger.error(f"Failed to trigger build {build.id}: {e}")
        await db.execute(
            update(Build)
            .where(Build.id == build.id)
            .where(Build.status == "pending")
            .values(status="failed", logs=f"Build trigger failed: {e}", completed_at=utcnow())
        )
        await db.commit()
        await db.refresh(build)
        await _publish_status(build)

    return build

async def _publish_status(build: Build):
    await events.publisher.project_event(
        build.project_id, "build.updated", build_id=str(build.id), status=build.status
    )
    await events.publisher.build_event(build.id, "status", status=build.status)

async def update_build_status(
    db: AsyncSession,
    build_id: UUID,
    status: str,
    artifact_id: Optional[str] = None,
) -> Build:
    """
    Apply a status reported by the build worker. A successful build is
    activated before this returns.
    """
    build = await get_build(db, build_id)
    current = build.status

    if not check_transition(current, status):
        logger.info(f"Build {build_id} is already {status}")
        return build

    values = {"status": status}
    if artifact_id:
        values["artifact_id"] = artifact_id
    if status in TERMINAL_STATUSES:
        values["completed_at"] = utcnow()

    # Compare-and-set on the status we validated against
    result = await db.execute(
        update(Build)
        .where(Build.id == build_id)
        .where(Build.status == current)
        .values(**values)
    )
    if result.rowcount == 0:
        await db.rollback()
        raise InvalidTransitionError(f"Build {build_id} changed status concurrently")
    await db.commit()
    await db.refresh(build)

    logger.info(f"Build {build_id}: {current} -> {status}")
    await _publish_status(build)

    if status == "success":
        await activate_successful_build(db, build)
    return build

async def activate_successful_build(db: AsyncSession, build: Build):
    """Deploy a build that just succeeded. Failures are written to its log, never raised."""
    await append_logs(db, build.id, f"\n[deploy] Activating build {build.id}...\n")
    try:
        deployment = await deployment_service.activate_build(db, build.project_id, build.id)
    except (deployment_service.DeploymentError, project_service.ProjectError) as e:
        logger.error(f"Automatic activation of build {build.id} failed: {e}")
        await append_logs(
            db,
            build.id,
            f"[deploy:error] Activation failed: {e}\n"
            f"[deploy:error] The build succeeded; retry with POST /api/deploy/builds/{build.id}/activate\n",
        )
        return None

    await append_logs(db, build.id, f"[deploy] Deployment {deployment.id} is active\n")
    return deployment

async def append_logs(db: AsyncSession, build_id: UUID, text: str):
    """Append a chunk to a build's log in one statement."""
    if not text:
        return
    result = await db.execute(
        update(Build)
        .where(Build.id == build_id)
        .values(logs=func.coalesce(Build.logs, "") + text)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        await db.rollback()
        raise BuildNotFoundError(build_id)
    await db.commit()
    await events.publisher.build_event(build_id, "log", data=text)

async def get_logs(db: AsyncSession, build_id: UUID) -> str:
    result = await db.execute(select(Build.logs).where(Build.id == build_id))
    row = result.first()
    if row is None:
        raise BuildNotFoundError(build_id)
    return row[0] or ""

async def list_builds(db: AsyncSession, project_id: UUID) -> List[BuildResponse]:
    """A project's builds, newest first, with the status of each build's deployment."""
    await project_service.get_project(db, project_id)
    result = await db.execute(
        select(Build, Deployment.status)
        .outerjoin(Deployment, Deployment.build_id == Build.id)
        .where(Build.project_id == project_id)
        .order_by(Build.created_at.desc())
    )
    return [
        BuildResponse.model_validate(build).model_copy(update={"deployment_status": deployment_status})
        for build, deployment_status in result.all()
    ]
