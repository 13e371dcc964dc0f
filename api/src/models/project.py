from sqlalchemy import (
    BigInteger,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    text,
)
from sqlalchemy.sql import func
from datetime import datetime, timezone
import uuid

from api.src.db.database import Base

def utcnow() -> datetime:
    return datetime.now(timezone.utc)

class Project(Base):
    __tablename__ = "projects"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    repo_url = Column(String(500), nullable=False)
    branch = Column(String(255), nullable=False, default="main")
    root_directory = Column(String(500), nullable=False, default="./")
    build_command = Column(String(1000), nullable=False)
    runtime_kind = Column(String(20), nullable=False, default="server")
    port = Column(Integer, unique=True)
    subdomain = Column(String(63), unique=True)
    installation_id = Column(BigInteger)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow)

class Build(Base):
    __tablename__ = "builds"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    project_id = Column(Uuid, ForeignKey("projects.id"), nullable=False, index=True)
    status = Column(String(20), nullable=False, default="pending")
    logs = Column(Text, nullable=False, default="")
    artifact_id = Column(String(255))
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())
    completed_at = Column(DateTime(timezone=True))

class Deployment(Base):
    __tablename__ = "deployments"
    __table_args__ = (
        # At most one active deployment per project
        Index(
            "uq_deployments_one_active",
            "project_id",
            unique=True,
            postgresql_where=text("status = 'active'"),
            sqlite_where=text("status = 'active'"),
        ),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    project_id = Column(Uuid, ForeignKey("projects.id"), nullable=False, index=True)
    build_id = Column(Uuid, ForeignKey("builds.id"), nullable=False, unique=True)
    status = Column(String(20), nullable=False, default="activating")
    error = Column(Text)
    activated_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow)

class EnvironmentVariable(Base):
    __tablename__ = "environment_variables"
    __table_args__ = (UniqueConstraint("project_id", "key", name="uq_env_project_key"),)

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    project_id = Column(Uuid, ForeignKey("projects.id"), nullable=False, index=True)
    key = Column(String(255), nullable=False)
    value = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())
