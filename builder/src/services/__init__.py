from builder.src.services.queue import JobQueue
from builder.src.services.log_streamer import LogStreamer
from builder.src.services.executor import execute_build, BuildError
from builder.src.services.artifact import NoBuildOutputError, UploadError
from builder.src.services.status_reporter import update_build_status

__all__ = [
    "JobQueue",
    "LogStreamer",
    "execute_build",
    "BuildError",
    "NoBuildOutputError",
    "UploadError",
    "update_build_status",
]
