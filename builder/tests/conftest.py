"""Shared fixtures for the build worker tests."""

from fakeredis import FakeAsyncRedis
import pytest

from builder.src.config import get_settings
from builder.src.models.job import BuildJob
from builder.src.services.queue import JobQueue

settings = get_settings()

class RecordingSender:
    """Collects log chunks instead of posting them."""

    def __init__(self):
        self.sent = []

    async def __call__(self, build_id: str, text: str):
        self.sent.append((build_id, text))

    def text(self, build_id: str) -> str:
        return "".join(t for b, t in self.sent if b == build_id)

@pytest.fixture
async def redis_client():
    client = FakeAsyncRedis(decode_responses=True)
    yield client
    await client.flushall()
    await client.aclose()

@pytest.fixture
def queue(redis_client):
    return JobQueue(client=redis_client, lease_seconds=60)

@pytest.fixture
def sender():
    return RecordingSender()

@pytest.fixture
def make_job():
    def _make(build_id: str = "b1", **overrides) -> BuildJob:
        fields = {
            "build_id": build_id,
            "project_id": "p1",
            "source_url": "https://github.com/acme/shop.git",
            "build_command": "npm run build",
            "root_directory": "./",
            "runtime_kind": "static",
            "env_vars": {"API_URL": "https://api.example.com"},
        }
        fields.update(overrides)
        return BuildJob(**fields)
    return _make
