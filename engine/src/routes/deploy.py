"""
Activation, stop and project cleanup endpoints.
"""

import logging

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from engine.src.models.requests import ActivateRequest, StopRequest, DeleteProjectRequest
from engine.src.services import supervisor
from engine.src.services.artifacts import ArtifactNotFoundError
from engine.src.services.ports import SelfTerminationError
from engine.src.services.proxy import ProxyError, SubdomainError

logger = logging.getLogger(__name__)

router = APIRouter(tags=["deploy"])

# Failure stage and HTTP status per error type; 4xx answers are not retried
ACTIVATION_ERRORS = [
    (ArtifactNotFoundError, "artifact", 404),
    (SubdomainError, "proxy", 400),
    (SelfTerminationError, "port", 409),
    (ProxyError, "proxy", 502),
]

def _failure(stage: str, status_code: int, error: Exception) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "stage": stage, "error": str(error)},
    )

@router.post("/activate")
async def activate(body: ActivateRequest):
    try:
        await supervisor.activate_deployment(
            project_id=body.project_id,
            build_id=body.build_id,
            port=body.port,
            runtime_kind=body.runtime_kind,
            env_vars=body.env_vars,
            subdomain=body.subdomain,
        )
    except Exception as e:
        for error_type, stage, status_code in ACTIVATION_ERRORS:
            if isinstance(e, error_type):
                logger.error(f"Activation of {body.build_id} failed at {stage}: {e}")
                return _failure(stage, status_code, e)
        logger.exception(f"Activation of {body.build_id} failed")
        return _failure("process", 500, e)

    return {"success": True}

@router.post("/stop")
async def stop(body: StopRequest):
    try:
        await supervisor.stop_deployment(body.port, project_id=body.project_id)
    except SelfTerminationError as e:
        return _failure("port", 409, e)
    except Exception as e:
        logger.exception(f"Failed to stop deployment on port {body.port}")
        return _failure("port", 500, e)

    return {"success": True}

@router.post("/projects/{project_id}/delete")
async def delete_project(project_id: str, body: DeleteProjectRequest):
    errors = await supervisor.delete_project(
        project_id,
        port=body.port,
        subdomain=body.subdomain,
        build_ids=body.build_ids,
    )
    return {"success": not errors, "errors": errors}
