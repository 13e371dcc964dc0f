"""
Build executor - turns a build job into an uploaded artifact.
"""

import logging
import shutil
from pathlib import Path
from typing import Optional

from builder.src.config import get_settings
from builder.src.models.job import BuildJob, BuildStatus
from builder.src.services import artifact, git, github
from builder.src.services.commands import run_command
from builder.src.services.log_streamer import LogStreamer
from builder.src.services.status_reporter import update_build_status

logger = logging.getLogger(__name__)
settings = get_settings()

# Checked in order; the first lockfile found picks the package manager
LOCKFILE_INSTALL_COMMANDS = [
    ("bun.lockb", "bun install"),
    ("bun.lock", "bun install"),
    ("pnpm-lock.yaml", "pnpm install --frozen-lockfile"),
    ("yarn.lock", "yarn install --frozen-lockfile"),
    ("package-lock.json", "npm ci"),
]

class BuildError(Exception):
    """Raised for invalid build input."""
    pass

def workspace_for(build_id: str) -> Path:
    return Path(settings.workspace_dir).resolve() / build_id

def resolve_project_dir(workdir: Path, root_directory: Optional[str]) -> Path:
    """The project's subdirectory inside the clone; may not escape it."""
    workdir = workdir.resolve()
    project_dir = (workdir / (root_directory or "./")).resolve()
    if project_dir != workdir and workdir not in project_dir.parents:
        raise BuildError(f"Root directory '{root_directory}' is outside the repository")
    if not project_dir.is_dir():
        raise BuildError(f"Root directory '{root_directory}' does not exist")
    return project_dir

def detect_install_command(project_dir: Path) -> str:
    for lockfile, command in LOCKFILE_INSTALL_COMMANDS:
        if (project_dir / lockfile).exists():
            return command
    return settings.install_command

async def execute_build(job: BuildJob, streamer: LogStreamer) -> bool:
    """
    Execute a build job.
    Returns True if the artifact was uploaded, False otherwise.
    """
    build_id = job.build_id
    workdir = workspace_for(build_id)
    archive = workdir.parent / f"{build_id}.tar.gz"
    artifact_id = None
    succeeded = False

    async def log(line: str):
        await streamer.log(build_id, line)

    logger.info(f"Starting build {build_id} for project {job.project_id}")
    await update_build_status(build_id, BuildStatus.BUILDING)

    try:
        await log(f"Starting build {build_id}")

        token = None
        if job.installation_id:
            await log("Authenticating with GitHub App...")
            token = await github.get_installation_token(job.installation_id)

        await log(f"Cloning {job.source_url} ({job.branch})...")
        await git.clone(job.source_url, workdir, branch=job.branch, token=token)

        project_dir = resolve_project_dir(workdir, job.root_directory)

        install_command = detect_install_command(project_dir)
        await log(f"Installing dependencies ({install_command})...")
        await run_command(install_command, project_dir, build_id, streamer, job.env_vars)

        await log(f"Building project ({job.build_command})...")
        await run_command(job.build_command, project_dir, build_id, streamer, job.env_vars)
        await log("Build completed successfully!")

        await log("Creating artifact package...")
        paths = await artifact.package_output(project_dir, job.runtime_kind, archive)
        await log(f"Packaged {', '.join(paths)}")

        await log("Uploading artifact to deploy engine...")
        artifact_id = await artifact.upload_artifact(build_id, archive)
        await log("Artifact uploaded successfully!")

        succeeded = True
    except Exception as e:
        logger.exception(f"Build {build_id} failed")
        await log(f"Build failed: {e}")
    finally:
        await streamer.ensure_flushed(build_id)
        for path in (workdir, archive):
            try:
                if path.is_dir():
                    shutil.rmtree(path)
                elif path.exists():
                    path.unlink()
            except OSError as e:
                logger.error(f"Failed to clean up {path}: {e}")

    if succeeded:
        await update_build_status(build_id, BuildStatus.SUCCESS, artifact_id=artifact_id)
    else:
        await update_build_status(build_id, BuildStatus.FAILED)

    logger.info(f"Build {build_id} finished: {'success' if succeeded else 'failed'}")
    return succeeded
