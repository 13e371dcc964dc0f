from api.src.routes.health import router as health_router
from api.src.routes.projects import router as projects_router
from api.src.routes.builds import router as builds_router
from api.src.routes.deployments import router as deployments_router

__all__ = ["health_router", "projects_router", "builds_router", "deployments_router"]
