"""
Build job models.
"""

from pydantic import BaseModel, Field
from typing import Dict, Literal, Optional
from enum import Enum

class BuildStatus(str, Enum):
    PENDING = "pending"
    BUILDING = "building"
    SUCCESS = "success"
    FAILED = "failed"

RuntimeKind = Literal["server", "static"]

class BuildJob(BaseModel):
    build_id: str
    project_id: str
    source_url: str
    build_command: str
    root_directory: str = "./"
    runtime_kind: RuntimeKind = "server"
    env_vars: Dict[str, str] = Field(default_factory=dict)
    installation_id: Optional[int] = None
    branch: str = "main"

class QueuedJob(BaseModel):
    """A job as held by the queue, with its delivery bookkeeping."""
    entry_id: str
    queued_at: str
    job: BuildJob
    raw: str = Field(default="", exclude=True)
    claim: str = Field(default="", exclude=True)
