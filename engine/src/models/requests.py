from pydantic import BaseModel, Field
from typing import Dict, List, Literal, Optional

RuntimeKind = Literal["server", "static"]

class PortCheckRequest(BaseModel):
    port: int = Field(gt=0, lt=65536)

class ActivateRequest(BaseModel):
    project_id: str = Field(alias="projectId")
    build_id: str = Field(alias="buildId")
    port: int = Field(gt=0, lt=65536)
    runtime_kind: RuntimeKind = Field(alias="runtimeKind")
    subdomain: Optional[str] = None
    env_vars: Dict[str, str] = Field(default_factory=dict, alias="envVars")

    class Config:
        populate_by_name = True

class StopRequest(BaseModel):
    port: int = Field(gt=0, lt=65536)
    project_id: Optional[str] = Field(default=None, alias="projectId")
    build_id: Optional[str] = Field(default=None, alias="buildId")

    class Config:
        populate_by_name = True

class DeleteProjectRequest(BaseModel):
    port: Optional[int] = None
    subdomain: Optional[str] = None
    build_ids: List[str] = Field(default_factory=list, alias="buildIds")

    class Config:
        populate_by_name = True
