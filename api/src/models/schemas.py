from pydantic import BaseModel, Field
from typing import Dict, Literal, Optional
from datetime import datetime
from uuid import UUID

RuntimeKind = Literal["server", "static"]
BuildStatus = Literal["pending", "building", "success", "failed"]

class ProjectBase(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    repo_url: str = Field(min_length=1, max_length=500)
    branch: str = "main"
    root_directory: str = "./"
    build_command: str = Field(min_length=1)
    runtime_kind: RuntimeKind = "server"
    subdomain: Optional[str] = None
    installation_id: Optional[int] = None

class ProjectCreate(ProjectBase):
    env_vars: Dict[str, str] = Field(default_factory=dict)

class ProjectResponse(ProjectBase):
    id: UUID
    port: Optional[int] = None
    created_at: datetime

    class Config:
        from_attributes = True

class EnvVarsUpdate(BaseModel):
    env_vars: Dict[str, str]

class BuildStatusUpdate(BaseModel):
    status: BuildStatus
    artifact_id: Optional[str] = None

class LogChunk(BaseModel):
    logs: str

class BuildResponse(BaseModel):
    id: UUID
    project_id: UUID
    status: str
    artifact_id: Optional[str] = None
    created_at: datetime
    completed_at: Optional[datetime] = None
    deployment_status: Optional[str] = None

    class Config:
        from_attributes = True

class DeploymentResponse(BaseModel):
    id: UUID
    project_id: UUID
    build_id: UUID
    status: str
    error: Optional[str] = None
    activated_at: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True

class ProjectUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    repo_url: Optional[str] = None
    branch: Optional[str] = None
    root_directory: Optional[str] = None
    build_command: Optional[str] = None
    runtime_kind: Optional[RuntimeKind] = None
    subdomain: Optional[str] = None
    installation_id: Optional[int] = None
