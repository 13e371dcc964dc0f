"""Tests for the reverse-proxy configurator."""

import os
from pathlib import Path

import pytest

from engine.src.config import get_settings
from engine.src.services import proxy
from engine.src.services.proxy import ProxyError, SubdomainError, validate_subdomain

settings = get_settings()

def test_validate_normalizes_case_and_whitespace():
    assert validate_subdomain("  My-App ") == "my-app"

@pytest.mark.parametrize("subdomain", ["www", "api", "admin", "dashboard", "staging"])
def test_validate_rejects_reserved(subdomain):
    with pytest.raises(SubdomainError, match="reserved"):
        validate_subdomain(subdomain)

@pytest.mark.parametrize("subdomain", ["", "   ", "my_app", "my.app", "-app", "app-", "a" * 64])
def test_validate_rejects_invalid(subdomain):
    with pytest.raises(SubdomainError):
        validate_subdomain(subdomain)

def test_render_config_routes_subdomain_to_port(monkeypatch):
    monkeypatch.setattr(settings, "base_domain", "apps.test")
    config = proxy.render_config("shop", 3005)

    assert "server_name shop.apps.test;" in config
    assert "proxy_pass http://localhost:3005;" in config
    assert "proxy_set_header Upgrade $http_upgrade;" in config
    assert "proxy_set_header X-Forwarded-Proto $scheme;" in config
    assert "proxy_read_timeout 300;" in config

async def test_create_config_writes_and_enables():
    available, enabled = proxy.config_paths("shop")

    path = await proxy.create_config("Shop", 3005)

    assert path == available
    assert "localhost:3005" in available.read_text()
    assert enabled.is_symlink()
    assert os.readlink(enabled) == str(available)

async def test_create_config_reserved_writes_nothing():
    with pytest.raises(SubdomainError):
        await proxy.create_config("api", 9001)

    available, enabled = proxy.config_paths("api")
    assert not available.exists()
    assert not enabled.exists()

async def test_create_config_rolls_back_on_failed_test(monkeypatch):
    monkeypatch.setattr(settings, "proxy_test_command", "false")

    with pytest.raises(ProxyError, match="test failed"):
        await proxy.create_config("shop", 3005)

    available, enabled = proxy.config_paths("shop")
    assert not available.exists()
    assert not enabled.is_symlink()

async def test_create_config_restores_previous_route(monkeypatch):
    await proxy.create_config("shop", 3005)
    monkeypatch.setattr(settings, "proxy_reload_command", "false")

    with pytest.raises(ProxyError):
        await proxy.create_config("shop", 3006)

    available, enabled = proxy.config_paths("shop")
    assert "localhost:3005" in available.read_text()
    assert enabled.is_symlink()

async def test_reload_retries_then_gives_up(monkeypatch):
    calls = []

    async def fake_run(command):
        calls.append(command)
        if command == settings.proxy_reload_command:
            return 1, "reload failed"
        return 0, ""

    monkeypatch.setattr(proxy, "_run", fake_run)
    monkeypatch.setattr(settings, "proxy_reload_attempts", 3)

    with pytest.raises(ProxyError, match="reload failed"):
        await proxy.reload_proxy()

    assert calls.count(settings.proxy_reload_command) == 3

async def test_remove_config():
    await proxy.create_config("shop", 3005)

    assert await proxy.remove_config("shop") is True
    available, enabled = proxy.config_paths("shop")
    assert not available.exists()
    assert not enabled.is_symlink()

    assert await proxy.remove_config("shop") is False

@pytest.mark.parametrize("subdomain", ["../victim", "api", "my.app"])
async def test_remove_config_leaves_files_outside_valid_names(subdomain):
    outside = Path(settings.nginx_available_dir).parent / "victim.conf"
    outside.parent.mkdir(parents=True, exist_ok=True)
    outside.write_text("server {}")
    reserved, _ = proxy.config_paths("api")
    reserved.parent.mkdir(parents=True, exist_ok=True)
    reserved.write_text("server {}")

    assert await proxy.remove_config(subdomain) is False

    assert outside.exists()
    assert reserved.exists()
