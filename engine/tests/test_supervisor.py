"""Tests for the process supervisor."""

import asyncio
import os
import shlex
import sys

import httpx
import pytest

from engine.src.config import get_settings
from engine.src.services import artifacts, ports, supervisor
from engine.src.services.artifacts import ArtifactNotFoundError
from engine.src.services.supervisor import HealthCheckError, ProjectWorkspace, StartupError
from engine.tests.helpers import chunked, make_tarball

settings = get_settings()

SERVE_SCRIPT = """
import http.server
import sys

server = http.server.ThreadingHTTPServer(
    ("127.0.0.1", int(sys.argv[1])), http.server.SimpleHTTPRequestHandler
)
server.serve_forever()
"""

BROKEN_SCRIPT = "raise SystemExit(1)\n"

async def store_build(build_id: str, files: dict):
    await artifacts.save(build_id, chunked(make_tarball(files)))

def site(version: str) -> dict:
    return {"serve.py": SERVE_SCRIPT, "index.html": version}

@pytest.fixture
def python_server(monkeypatch):
    """Server builds start with the serve.py script they ship."""
    monkeypatch.setattr(
        settings, "server_start_command", f"{shlex.quote(sys.executable)} serve.py {{port}}"
    )
    monkeypatch.setattr(settings, "health_check_retries", 40)
    monkeypatch.setattr(settings, "health_check_interval", 0.25)
    monkeypatch.setattr(settings, "kill_grace_seconds", 2.0)

@pytest.fixture
async def project():
    project_id = "proj-1"
    yield project_id
    state = ProjectWorkspace(project_id).read_state()
    if state.pid and ports.is_process_running(state.pid):
        await ports.terminate_process(state.pid, grace=1.0)

async def fetch(port: int) -> str:
    async with httpx.AsyncClient(timeout=5.0) as client:
        response = await client.get(f"http://127.0.0.1:{port}/index.html")
    return response.text

def test_point_current_repoints_symlink(tmp_path):
    workspace = ProjectWorkspace("proj-1")
    first = tmp_path / "first"
    second = tmp_path / "second"
    first.mkdir()
    second.mkdir()

    workspace.point_current("b1", first)
    workspace.point_current("b2", second)

    state = workspace.read_state()
    assert state.build_id == "b2"
    assert state.current_target == second
    assert workspace.current_link.resolve() == second.resolve()
    assert not list(workspace.root.glob(".current-*"))

def test_read_state_ignores_malformed_pid():
    workspace = ProjectWorkspace("proj-1")
    workspace.root.mkdir(parents=True)
    workspace.pid_file.write_text("not-a-pid")

    state = workspace.read_state()
    assert state.pid is None
    assert state.build_id is None

async def test_prepare_build_dir_reuses_extraction():
    await store_build("b1", {"index.html": "v1"})
    workspace = ProjectWorkspace("proj-1")

    extract_dir = await supervisor.prepare_build_dir(workspace, "b1")
    (extract_dir / "runtime.log").write_text("written by the running app")
    again = await supervisor.prepare_build_dir(workspace, "b1")

    assert again == extract_dir
    assert (extract_dir / "runtime.log").exists()

def test_start_command_for_static_build(tmp_path):
    command = supervisor.build_start_command(tmp_path, 3001, "static")
    assert command[1:3] == ["-m", "engine.src.static_server"]
    assert command[3:] == [str(tmp_path / "dist"), "3001"]

def test_start_command_for_exported_server_build(tmp_path):
    (tmp_path / "out").mkdir()
    command = supervisor.build_start_command(tmp_path, 3001, "server")
    assert command[3:] == [str(tmp_path / "out"), "3001"]

def test_start_command_for_server_build(tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "server_start_command", "bun run start -- --port {port}")
    command = supervisor.build_start_command(tmp_path, 3001, "server")
    assert command == ["bun", "run", "start", "--", "--port", "3001"]

async def test_activate_without_artifact():
    with pytest.raises(ArtifactNotFoundError):
        await supervisor.activate_deployment("proj-1", "missing", 3001, "server")

async def test_redeploy_replaces_running_build(python_server, project, free_port):
    await store_build("b1", site("v1"))
    await store_build("b2", site("v2"))

    await supervisor.activate_deployment(project, "b1", free_port, "server")
    first_pid = ProjectWorkspace(project).read_state().pid
    assert await fetch(free_port) == "v1"

    await supervisor.activate_deployment(project, "b2", free_port, "server")
    state = ProjectWorkspace(project).read_state()
    assert await fetch(free_port) == "v2"
    assert state.build_id == "b2"
    assert state.pid != first_pid
    assert not ports.is_process_running(first_pid)

async def test_failed_health_check_restores_previous(python_server, project, free_port, monkeypatch):
    await store_build("b1", site("v1"))
    await store_build("b2", {"serve.py": BROKEN_SCRIPT, "index.html": "v2"})

    await supervisor.activate_deployment(project, "b1", free_port, "server")

    monkeypatch.setattr(settings, "health_check_retries", 8)
    with pytest.raises(HealthCheckError):
        await supervisor.activate_deployment(project, "b2", free_port, "server")

    state = ProjectWorkspace(project).read_state()
    assert state.build_id == "b1"
    assert await fetch(free_port) == "v1"

async def test_failed_install_leaves_previous_running(python_server, project, free_port, monkeypatch):
    await store_build("b1", site("v1"))
    await store_build("b2", {**site("v2"), "package.json": "{}"})
    await supervisor.activate_deployment(project, "b1", free_port, "server")
    live_pid = ProjectWorkspace(project).read_state().pid

    monkeypatch.setattr(settings, "server_install_command", "false")
    with pytest.raises(StartupError, match="Dependency install failed"):
        await supervisor.activate_deployment(project, "b2", free_port, "server")

    state = ProjectWorkspace(project).read_state()
    assert state.build_id == "b1"
    assert state.pid == live_pid
    assert ports.is_process_running(live_pid)
    assert await fetch(free_port) == "v1"

async def test_failed_spawn_restores_previous(python_server, project, free_port, monkeypatch):
    await store_build("b1", site("v1"))
    await store_build("b2", site("v2"))
    await supervisor.activate_deployment(project, "b1", free_port, "server")

    start_application = supervisor.start_application

    async def start_only_old_builds(workspace, extract_dir, *args, **kwargs):
        if "b2" in extract_dir.parts:
            raise StartupError("Failed to start application: exec format error")
        return await start_application(workspace, extract_dir, *args, **kwargs)

    monkeypatch.setattr(supervisor, "start_application", start_only_old_builds)
    with pytest.raises(StartupError):
        await supervisor.activate_deployment(project, "b2", free_port, "server")

    state = ProjectWorkspace(project).read_state()
    assert state.build_id == "b1"
    assert await fetch(free_port) == "v1"

async def test_restore_uses_previous_runtime_kind(python_server, project, free_port, monkeypatch):
    await store_build("b1", site("v1"))
    await store_build("b2", {"dist/index.html": "v2"})
    await supervisor.activate_deployment(project, "b1", free_port, "server")

    wait_until_healthy = supervisor.wait_until_healthy
    calls = []

    async def fail_first(port):
        calls.append(port)
        if len(calls) == 1:
            raise HealthCheckError("Health check failed")
        await wait_until_healthy(port)

    monkeypatch.setattr(supervisor, "wait_until_healthy", fail_first)
    with pytest.raises(HealthCheckError):
        await supervisor.activate_deployment(project, "b2", free_port, "static")

    state = ProjectWorkspace(project).read_state()
    assert state.build_id == "b1"
    assert state.runtime_kind == "server"
    assert await fetch(free_port) == "v1"

async def test_failed_first_activation_clears_current(python_server, project, free_port, monkeypatch):
    await store_build("b1", {"serve.py": BROKEN_SCRIPT, "index.html": "v1"})
    monkeypatch.setattr(settings, "health_check_retries", 4)

    with pytest.raises(HealthCheckError):
        await supervisor.activate_deployment(project, "b1", free_port, "server")

    workspace = ProjectWorkspace(project)
    assert workspace.read_state().build_id is None
    assert not workspace.current_link.is_symlink()

async def test_activations_of_one_project_do_not_interleave(python_server, project, free_port, monkeypatch):
    await store_build("b1", site("v1"))
    await store_build("b2", site("v2"))
    events = []
    prepare_build_dir = supervisor.prepare_build_dir
    wait_until_healthy = supervisor.wait_until_healthy

    async def record_prepare(workspace, build_id):
        events.append(("start", build_id))
        await asyncio.sleep(0.2)
        return await prepare_build_dir(workspace, build_id)

    async def record_healthy(port):
        await wait_until_healthy(port)
        events.append(("healthy", ProjectWorkspace(project).read_state().build_id))

    monkeypatch.setattr(supervisor, "prepare_build_dir", record_prepare)
    monkeypatch.setattr(supervisor, "wait_until_healthy", record_healthy)

    await asyncio.gather(
        supervisor.activate_deployment(project, "b1", free_port, "server"),
        supervisor.activate_deployment(project, "b2", free_port, "server"),
    )

    first, second = events[0][1], events[2][1]
    assert events == [("start", first), ("healthy", first), ("start", second), ("healthy", second)]
    state = ProjectWorkspace(project).read_state()
    assert state.build_id == second
    assert await fetch(free_port) == ("v2" if second == "b2" else "v1")

async def test_stop_deployment(python_server, project, free_port):
    await store_build("b1", site("v1"))
    await supervisor.activate_deployment(project, "b1", free_port, "server")
    pid = ProjectWorkspace(project).read_state().pid

    await supervisor.stop_deployment(free_port, project_id=project)

    assert not ports.is_process_running(pid)
    assert ProjectWorkspace(project).read_state().pid is None
    assert not await ports.probe_http(free_port)

async def test_delete_project(python_server, project, free_port):
    await store_build("b1", site("v1"))
    await supervisor.activate_deployment(project, "b1", free_port, "server", subdomain="shop")

    errors = await supervisor.delete_project(
        project, port=free_port, subdomain="shop", build_ids=["b1"]
    )

    assert errors == []
    assert not artifacts.exists("b1")
    assert not ProjectWorkspace(project).root.exists()
    available, _ = supervisor.proxy.config_paths("shop")
    assert not available.exists()
