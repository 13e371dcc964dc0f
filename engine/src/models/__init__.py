from engine.src.models.requests import (
    RuntimeKind,
    PortCheckRequest,
    ActivateRequest,
    StopRequest,
    DeleteProjectRequest,
)

__all__ = [
    "RuntimeKind",
    "PortCheckRequest",
    "ActivateRequest",
    "StopRequest",
    "DeleteProjectRequest",
]
