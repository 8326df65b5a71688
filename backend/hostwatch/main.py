"""Main FastAPI application for the hosting monitoring engine."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from .config import settings, get_snapshot_dir
from .database import async_session, init_db, close_db
from .routers import monitoring_router, ssl_router
from .services.certbot import certbot_issuer
from .services.registry import monitor_registry
from .services.scheduler import scheduler_service

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan - startup and shutdown."""
    logger.info("Starting Hostwatch monitoring engine")

    # Initialize database
    await init_db()
    logger.info("Database initialized")

    # Bring targets in line with hosting records before the first sweep
    async with async_session() as session:
        result = await monitor_registry.sync_with_hosting(session)
    logger.info(f"Registry synced: {len(result.registered)} enabled, {len(result.disabled)} disabled")

    if not certbot_issuer.is_available():
        logger.warning("certbot not found: certificate issuance and auto-renewal will fail until it is installed")

    scheduler_service.start()

    yield

    # Shutdown
    scheduler_service.stop()
    await close_db()
    logger.info("Shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Hostwatch",
        description="Hosting uptime and TLS certificate monitoring",
        version="1.0.0",
        lifespan=lifespan,
    )

    # CORS middleware for the admin frontend
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # In production, restrict to your domain
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(monitoring_router)
    app.include_router(ssl_router)

    # Failure snapshots are served read-only; the directory is created by init_db
    app.mount(
        "/snapshots",
        StaticFiles(directory=get_snapshot_dir(), check_dir=False),
        name="snapshots",
    )

    # Health check endpoint
    @app.get("/health")
    async def health_check():
        return {
            "status": "healthy",
            "sweep_in_progress": scheduler_service.sweep_in_progress,
        }

    return app


# Create the application instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=settings.web_port)
