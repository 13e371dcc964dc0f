"""
Project records: creation with port allocation, env vars and deletion.
"""

import logging
import re
from typing import Dict, List, Optional
from uuid import UUID

import httpx
from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from api.src.config import get_settings
from api.src.models.project import Build, Deployment, EnvironmentVariable, Project
from api.src.models.schemas import ProjectCreate, ProjectUpdate
from api.src.services import clients, events
from api.src.services.leases import project_leases

logger = logging.getLogger(__name__)
settings = get_settings()

RESERVED_SUBDOMAINS = frozenset([
    "www", "api", "admin", "dashboard", "deploy",
    "git", "db", "mail", "staging", "dev",
])

SUBDOMAIN_PATTERN = re.compile(r"^[a-z0-9-]+$")

DANGEROUS_COMMAND_PATTERNS = [
    "rm -rf", "sudo", "wget", "curl", "eval", "|", ";", "&&", ">", "<",
    "/etc/passwd", "/etc/shadow", "/bin/sh", "/bin/bash",
]
ALLOWED_COMMAND_PREFIXES = ["npm", "yarn", "pnpm", "bun", "echo", "ls"]

class ProjectError(Exception):
    """Raised for invalid project input."""
    pass

class ProjectNotFoundError(ProjectError):
    def __init__(self, project_id):
        self.project_id = project_id
        super().__init__(f"Project {project_id} not found")

class ProjectConflictError(ProjectError):
    """Raised when a subdomain or port is already taken."""
    pass

class PortAllocationError(ProjectError):
    pass

def validate_subdomain(subdomain: Optional[str]) -> Optional[str]:
    """Normalized subdomain, None when not set; raises ProjectError when invalid."""
    if subdomain is None or not subdomain.strip():
        return None

    sub = subdomain.strip().lower()
    if sub in RESERVED_SUBDOMAINS:
        raise ProjectError(f"Subdomain '{sub}' is reserved")
    if len(sub) > 63 or not SUBDOMAIN_PATTERN.match(sub):
        raise ProjectError(
            f"Subdomain '{sub}' may only contain lowercase letters, digits and hyphens (max 63)"
        )
    if sub.startswith("-") or sub.endswith("-"):
        raise ProjectError(f"Subdomain '{sub}' cannot start or end with a hyphen")
    return sub

def validate_build_command(command: str):
    for pattern in DANGEROUS_COMMAND_PATTERNS:
        if pattern in command:
            raise ProjectError(f'Build command contains dangerous pattern: "{pattern}"')
    if not any(command.strip().startswith(prefix) for prefix in ALLOWED_COMMAND_PREFIXES):
        raise ProjectError(
            f"Build command must start with one of: {', '.join(ALLOWED_COMMAND_PREFIXES)}"
        )

async def get_project(db: AsyncSession, project_id: UUID) -> Project:
    project = await db.get(Project, project_id)
    if project is None:
        raise ProjectNotFoundError(project_id)
    return project

async def list_projects(db: AsyncSession) -> List[Project]:
    result = await db.execute(select(Project).order_by(Project.created_at.desc()))
    return list(result.scalars().all())

async def is_port_free(port: int) -> bool:
    """Ask the deploy engine whether a port is bindable on its host."""
    try:
        async with clients.http_client(settings.control_timeout) as client:
            response = await client.post(
                f"{settings.deploy_engine_url}/ports/check",
                json={"port": port},
            )
            response.raise_for_status()
    except httpx.HTTPError as e:
        logger.error(f"Port check for {port} failed: {e}")
        raise PortAllocationError("Deploy engine unreachable for port check")

    return bool(response.json().get("available"))

async def allocate_port(db: AsyncSession) -> int:
    """Next port after the highest assigned one that the engine reports free."""
    highest = (await db.execute(select(func.max(Project.port)))).scalar()
    start = highest + 1 if highest else settings.base_port

    for port in range(start, start + settings.port_probe_limit):
        if await is_port_free(port):
            return port
        logger.info(f"Port {port} is in use on the deploy engine, checking next...")

    raise PortAllocationError(
        f"No free port in {start}-{start + settings.port_probe_limit - 1}"
    )

async def _ensure_subdomain_free(db: AsyncSession, subdomain: Optional[str], project_id=None):
    if subdomain is None:
        return
    query = select(Project.id).where(Project.subdomain == subdomain)
    if project_id is not None:
        query = query.where(Project.id != project_id)
    if (await db.execute(query)).first():
        raise ProjectConflictError(f"Subdomain '{subdomain}' is already taken")

async def create_project(db: AsyncSession, data: ProjectCreate) -> Project:
    validate_build_command(data.build_command)
    subdomain = validate_subdomain(data.subdomain)
    await _ensure_subdomain_free(db, subdomain)

    port = await allocate_port(db)
    project = Project(
        name=data.name,
        repo_url=data.repo_url,
        branch=data.branch,
        root_directory=data.root_directory,
        build_command=data.build_command,
        runtime_kind=data.runtime_kind,
        subdomain=subdomain,
        installation_id=data.installation_id,
        port=port,
    )
    db.add(project)

    try:
        await db.flush()
        for key, value in data.env_vars.items():
            db.add(EnvironmentVariable(project_id=project.id, key=key, value=value))
        await db.commit()
    except IntegrityError as e:
        await db.rollback()
        raise ProjectConflictError(f"Port or subdomain already taken: {e.orig}")

    logger.info(f"Created project {project.name} ({project.id}) on port {port}")
    await events.publisher.project_event(project.id, "project.created", port=port)
    return project

async def update_project(db: AsyncSession, project_id: UUID, data: ProjectUpdate) -> Project:
    """Update project settings; the port is fixed for a project's lifetime."""
    project = await get_project(db, project_id)
    changes = data.model_dump(exclude_unset=True)

    if "build_command" in changes:
        validate_build_command(changes["build_command"])
    if "subdomain" in changes:
        changes["subdomain"] = validate_subdomain(changes["subdomain"])
        await _ensure_subdomain_free(db, changes["subdomain"], project_id=project.id)

    for field, value in changes.items():
        setattr(project, field, value)

    try:
        await db.commit()
    except IntegrityError as e:
        await db.rollback()
        raise ProjectConflictError(f"Subdomain already taken: {e.orig}")

    await db.refresh(project)
    return project

async def get_env_vars(db: AsyncSession, project_id: UUID) -> Dict[str, str]:
    result = await db.execute(
        select(EnvironmentVariable.key, EnvironmentVariable.value)
        .where(EnvironmentVariable.project_id == project_id)
        .order_by(EnvironmentVariable.key)
    )
    return {key: value for key, value in result.all()}

async def set_env_vars(db: AsyncSession, project_id: UUID, env_vars: Dict[str, str]) -> Dict[str, str]:
    """Replace a project's environment variables."""
    await get_project(db, project_id)

    await db.execute(delete(EnvironmentVariable).where(EnvironmentVariable.project_id == project_id))
    for key, value in env_vars.items():
        db.add(EnvironmentVariable(project_id=project_id, key=key, value=value))
    await db.commit()

    logger.info(f"Set {len(env_vars)} environment variables for project {project_id}")
    return await get_env_vars(db, project_id)

async def _cleanup_engine(project: Project, build_ids: List[str]) -> List[str]:
    """Ask the engine to drop host state. Failures are reported, not raised."""
    payload = {"port": project.port, "subdomain": project.subdomain, "buildIds": build_ids}
    try:
        async with clients.http_client(settings.control_timeout) as client:
            response = await client.post(
                f"{settings.deploy_engine_url}/projects/{project.id}/delete",
                json=payload,
            )
            response.raise_for_status()
            return list(response.json().get("errors", []))
    except httpx.HTTPError as e:
        logger.error(f"Engine cleanup for project {project.id} failed: {e}")
        return [f"engine: {e}"]

async def delete_project(db: AsyncSession, project_id: UUID) -> List[str]:
    """
    Delete a project and everything it owns.
    Returns host cleanup errors; they never block the deletion.
    """
    async with project_leases.hold(project_id):
        project = await get_project(db, project_id)

        result = await db.execute(select(Build.id).where(Build.project_id == project_id))
        build_ids = [str(build_id) for build_id in result.scalars().all()]

        errors = await _cleanup_engine(project, build_ids)
        for error in errors:
            logger.warning(f"Host cleanup for project {project_id}: {error}")

        # Children before parent
        await db.execute(delete(EnvironmentVariable).where(EnvironmentVariable.project_id == project_id))
        await db.execute(delete(Deployment).where(Deployment.project_id == project_id))
        await db.execute(delete(Build).where(Build.project_id == project_id))
        await db.execute(delete(Project).where(Project.id == project_id))
        await db.commit()

    logger.info(f"Deleted project {project_id} ({len(build_ids)} builds)")
    await events.publisher.project_event(project_id, "project.deleted")
    return errors
