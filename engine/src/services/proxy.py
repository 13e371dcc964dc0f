"""
Reverse-proxy configuration - one nginx server block per subdomain.
"""

import asyncio
import logging
import os
import re
import shlex
from pathlib import Path
from typing import Optional

from engine.src.config import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()

RESERVED_SUBDOMAINS = frozenset([
    "www",
    "api",
    "admin",
    "dashboard",
    "deploy",
    "git",
    "db",
    "mail",
    "staging",
    "dev",
])

SUBDOMAIN_PATTERN = re.compile(r"^[a-z0-9-]+$")

class SubdomainError(Exception):
    """Raised when a subdomain is reserved or malformed."""
    pass

class ProxyError(Exception):
    """Raised when the proxy configuration cannot be applied."""
    pass

def validate_subdomain(subdomain: Optional[str]) -> str:
    """Return the normalized subdomain or raise SubdomainError."""
    if not subdomain or not subdomain.strip():
        raise SubdomainError("Subdomain is required")

    sub = subdomain.strip().lower()

    if sub in RESERVED_SUBDOMAINS:
        raise SubdomainError(f"Subdomain '{sub}' is reserved")
    if len(sub) > 63:
        raise SubdomainError(f"Subdomain '{sub}' is longer than 63 characters")
    if not SUBDOMAIN_PATTERN.match(sub):
        raise SubdomainError(
            f"Subdomain '{sub}' may only contain lowercase letters, digits and hyphens"
        )
    if sub.startswith("-") or sub.endswith("-"):
        raise SubdomainError(f"Subdomain '{sub}' cannot start or end with a hyphen")

    return sub

def render_config(subdomain: str, port: int) -> str:
    """nginx server block routing <subdomain>.<base domain> to a local port."""
    return f"""server {{
    listen 80;
    server_name {subdomain}.{settings.base_domain};

    location / {{
        proxy_pass http://localhost:{port};
        proxy_http_version 1.1;

        proxy_set_header Upgrade $http_upgrade;
        proxy_set_header Connection 'upgrade';
        proxy_set_header Host $host;
        proxy_cache_bypass $http_upgrade;

        proxy_set_header X-Real-IP $remote_addr;
        proxy_set_header X-Forwarded-For $proxy_add_x_forwarded_for;
        proxy_set_header X-Forwarded-Proto $scheme;

        proxy_read_timeout 300;
        proxy_connect_timeout 300;
        proxy_send_timeout 300;
    }}
}}
"""

def config_paths(subdomain: str):
    """Paths of the available config file and its enabled symlink."""
    available = Path(settings.nginx_available_dir) / f"{subdomain}.conf"
    enabled = Path(settings.nginx_enabled_dir) / f"{subdomain}.conf"
    return available, enabled

async def _run(command: str) -> tuple[int, str]:
    proc = await asyncio.create_subprocess_exec(
        *shlex.split(command),
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.STDOUT,
    )
    output, _ = await proc.communicate()
    return proc.returncode, output.decode(errors="replace").strip()

async def reload_proxy():
    """
    Validate the full proxy configuration, then reload it.
    Retried with exponential backoff; raises ProxyError when the budget is spent.
    """
    attempts = settings.proxy_reload_attempts
    last_error = ""

    for attempt in range(1, attempts + 1):
        try:
            code, output = await _run(settings.proxy_test_command)
            if code != 0:
                # Not retried
                raise ProxyError(f"Proxy configuration test failed: {output}")

            code, output = await _run(settings.proxy_reload_command)
            if code == 0:
                logger.info("Proxy configuration reloaded")
                return
            last_error = f"reload exited with code {code}: {output}"
        except OSError as e:
            last_error = str(e)

        logger.warning(f"Proxy reload attempt {attempt}/{attempts} failed: {last_error}")
        if attempt < attempts:
            await asyncio.sleep(settings.proxy_reload_base_delay * 2 ** (attempt - 1))

    raise ProxyError(f"Failed to reload proxy: {last_error}")

def _write_atomic(path: Path, content: str):
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(path.name + ".tmp")
    tmp.write_text(content)
    os.replace(tmp, path)

async def create_config(subdomain: str, port: int) -> Path:
    """
    Route a public subdomain to localhost:port.
    Nothing is written unless the subdomain is valid; a failed reload restores
    the previous files before raising.
    """
    sub = validate_subdomain(subdomain)
    available, enabled = config_paths(sub)
    content = render_config(sub, port)

    previous = available.read_text() if available.is_file() else None
    was_enabled = enabled.is_symlink() or enabled.exists()

    if previous == content and was_enabled:
        logger.info(f"Proxy config for {sub} already up to date")
        return available

    _write_atomic(available, content)
    if not was_enabled:
        enabled.parent.mkdir(parents=True, exist_ok=True)
        os.symlink(available, enabled)

    try:
        await reload_proxy()
    except ProxyError:
        logger.error(f"Rolling back proxy config for {sub}")
        if previous is None:
            available.unlink(missing_ok=True)
        else:
            _write_atomic(available, previous)
        if not was_enabled:
            enabled.unlink(missing_ok=True)
        raise

    logger.info(f"Proxy route {sub}.{settings.base_domain} -> localhost:{port}")
    return available

async def remove_config(subdomain: str) -> bool:
    """
    Remove a subdomain's route. Returns False if there was nothing to remove.
    Reserved or malformed names can never have been written, so nothing is touched.
    """
    try:
        sub = validate_subdomain(subdomain)
    except SubdomainError as e:
        logger.warning(f"Not removing proxy route for {subdomain!r}: {e}")
        return False
    available, enabled = config_paths(sub)

    removed = False
    if enabled.is_symlink() or enabled.exists():
        enabled.unlink()
        removed = True
    if available.exists():
        available.unlink()
        removed = True

    if removed:
        await reload_proxy()
        logger.info(f"Removed proxy route for {sub}")
    return removed
