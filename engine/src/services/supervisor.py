"""
Process supervisor - cuts a project over to a new build and keeps one
application process per project.

Host state per project lives under <apps_dir>/<project_id>:

    current            symlink to the extracted build being served
    current_build_id   id of that build
    current_runtime    runtime kind it was started with
    server.pid         PID of the detached application process
    server.log         application stdout/stderr
    builds/<build_id>/extracted

The supervisor holds no reference to running children; every activation
rediscovers the previous process through server.pid and the port.
"""

import asyncio
import logging
import os
import shlex
import shutil
import subprocess
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

from engine.src.config import get_settings
from engine.src.services import artifacts, ports, proxy

logger = logging.getLogger(__name__)
settings = get_settings()

# Directory holding the engine package, for spawning the static file server
PACKAGE_ROOT = Path(__file__).resolve().parents[3]

RUNTIME_SERVER = "server"
RUNTIME_STATIC = "static"

class HealthCheckError(Exception):
    """Raised when a freshly started application never becomes healthy."""
    pass

class StartupError(Exception):
    """Raised when the application process cannot be started."""
    pass

@dataclass
class HostState:
    build_id: Optional[str]
    current_target: Optional[Path]
    pid: Optional[int]
    runtime_kind: Optional[str] = None

class ProjectWorkspace:
    """Reads and writes the on-disk handshake for one project."""

    def __init__(self, project_id: str):
        self.project_id = project_id
        self.root = Path(settings.apps_dir) / project_id

    @property
    def current_link(self) -> Path:
        return self.root / "current"

    @property
    def build_id_file(self) -> Path:
        return self.root / "current_build_id"

    @property
    def runtime_file(self) -> Path:
        return self.root / "current_runtime"

    @property
    def pid_file(self) -> Path:
        return self.root / "server.pid"

    @property
    def log_file(self) -> Path:
        return self.root / "server.log"

    def extract_dir(self, build_id: str) -> Path:
        return self.root / "builds" / build_id / "extracted"

    def extracted_marker(self, build_id: str) -> Path:
        return self.root / "builds" / build_id / ".extracted"

    def read_state(self) -> HostState:
        build_id = None
        if self.build_id_file.is_file():
            build_id = self.build_id_file.read_text().strip() or None

        target = None
        if self.current_link.is_symlink():
            target = Path(os.readlink(self.current_link))

        pid = None
        if self.pid_file.is_file():
            try:
                pid = int(self.pid_file.read_text().strip())
            except ValueError:
                logger.warning(f"Ignoring malformed PID file {self.pid_file}")

        runtime_kind = None
        if self.runtime_file.is_file():
            runtime_kind = self.runtime_file.read_text().strip() or None

        return HostState(build_id=build_id, current_target=target, pid=pid, runtime_kind=runtime_kind)

    def _write_atomic(self, path: Path, content: str):
        tmp = path.with_name(path.name + ".tmp")
        tmp.write_text(content)
        os.replace(tmp, path)

    def point_current(self, build_id: str, target: Path, runtime_kind: Optional[str] = None):
        """Repoint `current` without ever removing it: new link, then rename over."""
        self.root.mkdir(parents=True, exist_ok=True)

        tmp_link = self.root / f".current-{build_id}.tmp"
        if tmp_link.is_symlink() or tmp_link.exists():
            tmp_link.unlink()
        os.symlink(target, tmp_link)
        os.replace(tmp_link, self.current_link)

        self._write_atomic(self.build_id_file, build_id)
        if runtime_kind:
            self._write_atomic(self.runtime_file, runtime_kind)
        logger.info(f"[{self.project_id}] current -> {target}")

    def write_pid(self, pid: int):
        self.root.mkdir(parents=True, exist_ok=True)
        self._write_atomic(self.pid_file, str(pid))

    def clear_pid(self):
        self.pid_file.unlink(missing_ok=True)

class ProjectLocks:
    """One asyncio.Lock per project, created on first use."""

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}

    def get(self, project_id: str) -> asyncio.Lock:
        lock = self._locks.get(project_id)
        if lock is None:
            lock = self._locks[project_id] = asyncio.Lock()
        return lock

project_locks = ProjectLocks()

async def stop_project_process(workspace: ProjectWorkspace, port: int):
    """
    Free the project's port: the process from the PID file first, then any
    other listener as a safety net.
    """
    state = workspace.read_state()
    if state.pid is not None:
        if state.pid == os.getpid():
            logger.error(f"[{workspace.project_id}] PID file points at the engine itself, ignoring it")
        else:
            logger.info(f"[{workspace.project_id}] Stopping PID {state.pid} from PID file")
            await ports.terminate_process(state.pid)
    workspace.clear_pid()

    await ports.ensure_port_free(port)

async def prepare_build_dir(workspace: ProjectWorkspace, build_id: str) -> Path:
    """Extract a build once; later activations of the same build reuse it."""
    extract_dir = workspace.extract_dir(build_id)
    marker = workspace.extracted_marker(build_id)

    if marker.is_file() and extract_dir.is_dir():
        logger.info(f"[{workspace.project_id}] Reusing extracted build {build_id}")
        return extract_dir

    if extract_dir.exists():
        shutil.rmtree(extract_dir)
    await artifacts.extract(build_id, extract_dir)
    marker.write_text(build_id)
    return extract_dir

def _has_static_export(extract_dir: Path) -> bool:
    return (extract_dir / "out").is_dir()

def serves_static(extract_dir: Path, runtime_kind: str) -> bool:
    """Static builds, and server builds that exported static output, use the file server."""
    return runtime_kind == RUNTIME_STATIC or _has_static_export(extract_dir)

def build_start_command(extract_dir: Path, port: int, runtime_kind: str) -> List[str]:
    """Command line that serves an extracted build on the given port."""
    if serves_static(extract_dir, runtime_kind):
        static_root = extract_dir / ("out" if _has_static_export(extract_dir) else "dist")
        return [sys.executable, "-m", "engine.src.static_server", str(static_root), str(port)]
    return shlex.split(settings.server_start_command.format(port=port))

async def install_dependencies(extract_dir: Path, env: Dict[str, str]):
    """Install production dependencies unless the artifact already carries them."""
    if not (extract_dir / "package.json").is_file():
        return
    if (extract_dir / "node_modules").is_dir():
        logger.info(f"node_modules present in {extract_dir}, skipping install")
        return

    logger.info(f"Installing dependencies in {extract_dir}")
    proc = await asyncio.create_subprocess_exec(
        *shlex.split(settings.server_install_command),
        cwd=extract_dir,
        env=env,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.STDOUT,
    )
    output, _ = await proc.communicate()
    if proc.returncode != 0:
        tail = output.decode(errors="replace")[-2000:]
        raise StartupError(f"Dependency install failed with code {proc.returncode}: {tail}")

def application_env(
    extract_dir: Path,
    port: int,
    runtime_kind: str,
    env_vars: Optional[Dict[str, str]] = None,
) -> Dict[str, str]:
    """Environment of an application process: host env, project vars and PORT."""
    env = {**os.environ, **(env_vars or {}), "PORT": str(port)}
    if serves_static(extract_dir, runtime_kind):
        env["PYTHONPATH"] = os.pathsep.join(
            p for p in (str(PACKAGE_ROOT), env.get("PYTHONPATH")) if p
        )
    return env

async def start_application(
    workspace: ProjectWorkspace,
    extract_dir: Path,
    port: int,
    runtime_kind: str,
    env_vars: Optional[Dict[str, str]] = None,
) -> int:
    """
    Spawn the application detached from the engine and record its PID.
    Dependencies must already be installed. The child is not awaited.
    """
    env = application_env(extract_dir, port, runtime_kind, env_vars)
    command = build_start_command(extract_dir, port, runtime_kind)

    workspace.root.mkdir(parents=True, exist_ok=True)
    logger.info(f"[{workspace.project_id}] Spawning {command} on port {port}")

    # Popen, not asyncio: an asyncio transport kills its child when collected
    with open(workspace.log_file, "ab") as log:
        try:
            proc = subprocess.Popen(
                command,
                cwd=extract_dir,
                env=env,
                stdin=subprocess.DEVNULL,
                stdout=log,
                stderr=subprocess.STDOUT,
                start_new_session=True,
            )
        except OSError as e:
            raise StartupError(f"Failed to start application: {e}")

    workspace.write_pid(proc.pid)
    logger.info(f"[{workspace.project_id}] PID {proc.pid} written to {workspace.pid_file}")
    return proc.pid

async def wait_until_healthy(port: int):
    """Poll the port until it answers with a non-5xx status."""
    logger.info(f"Waiting for health check on port {port}")
    for _ in range(settings.health_check_retries):
        if await ports.probe_http(port):
            logger.info(f"Health check passed on port {port}")
            return
        await asyncio.sleep(settings.health_check_interval)

    raise HealthCheckError(
        f"Health check failed: application did not answer on port {port} in time"
    )

async def _restore_previous(
    workspace: ProjectWorkspace,
    previous: HostState,
    port: int,
    runtime_kind: str,
    env_vars: Optional[Dict[str, str]],
):
    """Best effort: bring the previously current build back after a failed cutover."""
    if not previous.build_id or not previous.current_target or not previous.current_target.is_dir():
        logger.warning(f"[{workspace.project_id}] No previous build to restore")
        return

    logger.warning(f"[{workspace.project_id}] Restoring previous build {previous.build_id}")
    try:
        await stop_project_process(workspace, port)
        runtime_kind = previous.runtime_kind or runtime_kind
        workspace.point_current(previous.build_id, previous.current_target, runtime_kind)
        await start_application(workspace, previous.current_target, port, runtime_kind, env_vars)
        await wait_until_healthy(port)
    except Exception:
        logger.exception(f"[{workspace.project_id}] Failed to restore build {previous.build_id}")

async def _recover_failed_cutover(
    workspace: ProjectWorkspace,
    previous: HostState,
    build_id: str,
    port: int,
    runtime_kind: str,
    env_vars: Optional[Dict[str, str]],
):
    """Put the host back the way the last successful activation left it."""
    if previous.build_id and previous.build_id != build_id:
        await _restore_previous(workspace, previous, port, runtime_kind, env_vars)
        return

    try:
        await stop_project_process(workspace, port)
    except Exception:
        logger.exception(f"[{workspace.project_id}] Failed to stop build {build_id} after a failed cutover")

    if previous.build_id is None:
        # Nothing was live before; do not leave `current` on a build that never served
        workspace.current_link.unlink(missing_ok=True)
        workspace.build_id_file.unlink(missing_ok=True)
        workspace.runtime_file.unlink(missing_ok=True)

async def activate_deployment(
    project_id: str,
    build_id: str,
    port: int,
    runtime_kind: str,
    env_vars: Optional[Dict[str, str]] = None,
    subdomain: Optional[str] = None,
):
    """
    Cut a project over to a build:
    verify artifact, extract, route, repoint `current`, free the port,
    spawn, health check.
    """
    async with project_locks.get(project_id):
        logger.info(f"Activating {project_id}:{build_id} on port {port} (subdomain: {subdomain})")
        workspace = ProjectWorkspace(project_id)

        if not artifacts.exists(build_id):
            raise artifacts.ArtifactNotFoundError(build_id)

        extract_dir = await prepare_build_dir(workspace, build_id)

        # Everything that can fail without touching the live process runs first
        if not serves_static(extract_dir, runtime_kind):
            await install_dependencies(
                extract_dir, application_env(extract_dir, port, runtime_kind, env_vars)
            )
        if subdomain:
            await proxy.create_config(subdomain, port)

        previous = workspace.read_state()
        workspace.point_current(build_id, extract_dir, runtime_kind)

        try:
            await stop_project_process(workspace, port)
            await start_application(workspace, extract_dir, port, runtime_kind, env_vars)
            await wait_until_healthy(port)
        except Exception as e:
            logger.error(f"[{project_id}] Cutover to build {build_id} failed: {e}")
            await _recover_failed_cutover(workspace, previous, build_id, port, runtime_kind, env_vars)
            raise

        logger.info(f"Activated {project_id}:{build_id} on port {port}")

async def stop_deployment(port: int, project_id: Optional[str] = None):
    """Terminate the process serving a project (or whatever holds the port)."""
    logger.info(f"Stopping deployment on port {port}")
    if project_id:
        async with project_locks.get(project_id):
            await stop_project_process(ProjectWorkspace(project_id), port)
    else:
        await ports.ensure_port_free(port)

async def delete_project(
    project_id: str,
    port: Optional[int] = None,
    subdomain: Optional[str] = None,
    build_ids: Optional[List[str]] = None,
) -> List[str]:
    """
    Remove everything the engine holds for a project. Each step is best
    effort; the returned list names the steps that failed.
    """
    errors = []

    async with project_locks.get(project_id):
        workspace = ProjectWorkspace(project_id)

        if port:
            try:
                await stop_project_process(workspace, port)
            except Exception as e:
                logger.exception(f"[{project_id}] Failed to stop process on port {port}")
                errors.append(f"stop: {e}")

        for build_id in build_ids or []:
            try:
                artifacts.delete(build_id)
            except OSError as e:
                logger.error(f"[{project_id}] Failed to delete artifact {build_id}: {e}")
                errors.append(f"artifact {build_id}: {e}")

        if subdomain:
            try:
                await proxy.remove_config(subdomain)
            except (proxy.ProxyError, OSError) as e:
                logger.error(f"[{project_id}] Failed to remove proxy route {subdomain}: {e}")
                errors.append(f"proxy: {e}")
        else:
            logger.warning(f"[{project_id}] No subdomain given, skipping proxy cleanup")

        try:
            if workspace.root.exists():
                shutil.rmtree(workspace.root)
        except OSError as e:
            logger.error(f"[{project_id}] Failed to remove {workspace.root}: {e}")
            errors.append(f"workspace: {e}")

    logger.info(f"Deleted project {project_id} from host ({len(errors)} cleanup errors)")
    return errors
