"""Shared fixtures for the deploy engine tests."""

import socket

import pytest

from engine.src.config import get_settings

settings = get_settings()

@pytest.fixture(autouse=True)
def host_dirs(tmp_path, monkeypatch):
    """Point every host path at a temporary directory."""
    monkeypatch.setattr(settings, "apps_dir", str(tmp_path / "apps"))
    monkeypatch.setattr(settings, "artifacts_dir", str(tmp_path / "apps" / "artifacts"))
    monkeypatch.setattr(settings, "nginx_available_dir", str(tmp_path / "nginx" / "available"))
    monkeypatch.setattr(settings, "nginx_enabled_dir", str(tmp_path / "nginx" / "enabled"))
    monkeypatch.setattr(settings, "proxy_test_command", "true")
    monkeypatch.setattr(settings, "proxy_reload_command", "true")
    monkeypatch.setattr(settings, "proxy_reload_base_delay", 0.0)
    return tmp_path

@pytest.fixture
def free_port():
    with socket.socket() as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]
