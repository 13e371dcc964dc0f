from api.src.services import build_service, deployment_service, project_service
from api.src.services.events import publisher
from api.src.services.leases import project_leases
from api.src.services.retry import (
    UpstreamError,
    ClientRequestError,
    RetryExhaustedError,
    request_with_retry,
)

__all__ = [
    "build_service",
    "deployment_service",
    "project_service",
    "publisher",
    "project_leases",
    "UpstreamError",
    "ClientRequestError",
    "RetryExhaustedError",
    "request_with_retry",
]
