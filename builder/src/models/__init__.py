from builder.src.models.job import (
    BuildStatus,
    RuntimeKind,
    BuildJob,
    QueuedJob,
)

__all__ = [
    "BuildStatus",
    "RuntimeKind",
    "BuildJob",
    "QueuedJob",
]
