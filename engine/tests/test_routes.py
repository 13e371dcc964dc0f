"""Tests for the deploy engine HTTP endpoints."""

import httpx
import pytest

from engine.src.main import app
from engine.src.services import artifacts
from engine.tests.helpers import chunked, make_tarball

@pytest.fixture
async def client():
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c

async def test_health(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"

async def test_upload_artifact(client):
    body = make_tarball({"index.html": "hello"})

    response = await client.post("/artifacts/upload", params={"buildId": "b1"}, content=body)

    assert response.status_code == 200
    assert response.json()["artifact_id"] == "b1"
    assert artifacts.path_for("b1").read_bytes() == body

async def test_upload_requires_build_id(client):
    response = await client.post("/artifacts/upload", content=b"data")
    assert response.status_code == 422

async def test_upload_rejects_empty_body(client):
    response = await client.post("/artifacts/upload", params={"buildId": "b1"}, content=b"")
    assert response.status_code == 400
    assert not artifacts.exists("b1")

async def test_port_check(client, free_port):
    response = await client.post("/ports/check", json={"port": free_port})
    assert response.json() == {"port": free_port, "available": True}

async def test_activate_missing_artifact(client):
    response = await client.post("/activate", json={
        "projectId": "p1",
        "buildId": "missing",
        "port": 3001,
        "runtimeKind": "server",
    })

    assert response.status_code == 404
    body = response.json()
    assert body["success"] is False
    assert body["stage"] == "artifact"

async def test_activate_reserved_subdomain(client):
    await artifacts.save("b1", chunked(make_tarball({"index.html": "hello"})))

    response = await client.post("/activate", json={
        "projectId": "p1",
        "buildId": "b1",
        "port": 3001,
        "runtimeKind": "static",
        "subdomain": "admin",
    })

    assert response.status_code == 400
    assert response.json()["stage"] == "proxy"
    assert "reserved" in response.json()["error"]

async def test_delete_project_without_host_state(client):
    response = await client.post("/projects/p1/delete", json={"buildIds": ["b1"]})
    assert response.json() == {"success": True, "errors": []}
