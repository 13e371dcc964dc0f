from api.src.models.project import Project, Build, Deployment, EnvironmentVariable
from api.src.models.schemas import (
    ProjectCreate,
    ProjectUpdate,
    ProjectResponse,
    EnvVarsUpdate,
    BuildStatusUpdate,
    LogChunk,
    BuildResponse,
    DeploymentResponse,
)

__all__ = [
    "Project",
    "Build",
    "Deployment",
    "EnvironmentVariable",
    "ProjectCreate",
    "ProjectUpdate",
    "ProjectResponse",
    "EnvVarsUpdate",
    "BuildStatusUpdate",
    "LogChunk",
    "BuildResponse",
    "DeploymentResponse",
]
