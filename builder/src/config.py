from pydantic_settings import BaseSettings
from functools import lru_cache

class Settings(BaseSettings):
    builder_host: str = "0.0.0.0"
    builder_port: int = 4001
    log_level: str = "INFO"

    redis_url: str = "redis://localhost:6379/0"
    control_api_url: str = "http://localhost:4000/api"
    deploy_engine_url: str = "http://localhost:4002"

    # Build workspace
    workspace_dir: str = "./workspace"
    install_command: str = "npm install"
    clone_timeout: float = 300.0
    command_timeout: float = 1800.0  # 30 minutes per install/build step
    upload_timeout: float = 300.0
    request_timeout: float = 10.0
    # A success callback returns only after the control plane has activated the build
    status_timeout: float = 400.0

    # Log shipping
    log_flush_bytes: int = 2048
    log_flush_interval: float = 0.5

    # Queue
    queue_lease_seconds: int = 60
    queue_poll_timeout: int = 5
    stalled_sweep_interval: float = 30.0

    # GitHub App (private repositories)
    github_app_id: str = ""
    github_private_key: str = ""
    github_api_url: str = "https://api.github.com"

    class Config:
        env_file = ".env"

@lru_cache()
def get_settings() -> Settings:
    return Settings()
