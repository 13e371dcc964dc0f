from fastapi import HTTPException

from api.src.services.build_service import BuildNotFoundError, InvalidTransitionError
from api.src.services.deployment_service import (
    ActivationError,
    DeploymentError,
    InvalidBuildError,
    NoActiveDeploymentError,
)
from api.src.services.project_service import (
    PortAllocationError,
    ProjectConflictError,
    ProjectError,
    ProjectNotFoundError,
)

# Most specific first
STATUS_CODES = [
    (ProjectNotFoundError, 404),
    (BuildNotFoundError, 404),
    (NoActiveDeploymentError, 404),
    (ProjectConflictError, 409),
    (InvalidTransitionError, 409),
    (InvalidBuildError, 400),
    (PortAllocationError, 502),
    (ActivationError, 502),
    (ProjectError, 400),
    (DeploymentError, 502),
]

def http_error(error: Exception) -> HTTPException:
    for error_type, status_code in STATUS_CODES:
        if isinstance(error, error_type):
            return HTTPException(status_code=status_code, detail=str(error))
    return HTTPException(status_code=500, detail=str(error))

HANDLED_ERRORS = tuple(error_type for error_type, _ in STATUS_CODES)
