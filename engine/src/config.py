from pydantic_settings import BaseSettings
from functools import lru_cache

class Settings(BaseSettings):
    engine_host: str = "0.0.0.0"
    engine_port: int = 4002
    log_level: str = "INFO"

    # Host layout
    apps_dir: str = "./apps"
    artifacts_dir: str = "./apps/artifacts"
    extract_timeout: float = 60.0

    # Reverse proxy (nginx)
    base_domain: str = "example.com"
    nginx_available_dir: str = "/etc/nginx/sites-available"
    nginx_enabled_dir: str = "/etc/nginx/sites-enabled"
    proxy_test_command: str = "sudo nginx -t"
    proxy_reload_command: str = "sudo systemctl reload nginx"
    proxy_reload_attempts: int = 3
    proxy_reload_base_delay: float = 0.5

    # Application processes
    server_install_command: str = "bun install --production"
    server_start_command: str = "bun run start -- --port {port}"
    health_check_retries: int = 20
    health_check_interval: float = 0.5
    health_check_timeout: float = 2.0
    kill_grace_seconds: float = 3.0
    port_free_retries: int = 10
    port_free_interval: float = 0.5

    class Config:
        env_file = ".env"

@lru_cache()
def get_settings() -> Settings:
    return Settings()
