from builder.src.routes.health import router as health_router
from builder.src.routes.build import router as build_router

__all__ = ["health_router", "build_router"]
