"""API routers."""
from .monitoring import router as monitoring_router
from .ssl import router as ssl_router

__all__ = ["monitoring_router", "ssl_router"]
