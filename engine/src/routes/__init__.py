from engine.src.routes.health import router as health_router
from engine.src.routes.artifacts import router as artifacts_router
from engine.src.routes.deploy import router as deploy_router

__all__ = ["health_router", "artifacts_router", "deploy_router"]
