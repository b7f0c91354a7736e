"""FastAPI application factory."""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Response, status
from fastapi.middleware.cors import CORSMiddleware
from openai import AsyncOpenAI
from sqlalchemy import text

from flockcount.api.routes import achievements, analyze, counts
from flockcount.core import timezone  # noqa: F401  # sets TZ=UTC
from flockcount.core.config import Settings, configure_logging
from flockcount.core.database import setup_db_session
from flockcount.services.achievements import achievement_service
from flockcount.services.vision.openai_client import OpenAIImageAnalyzer
from flockcount.uow import create_uow_factory

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan context manager.

    Handles startup tasks:
    - Configure logging
    - Initialize database session factory and UoW factory
    - Create the vision analyzer
    - Seed the initial achievement set (no-op when already present)
    """
    settings = Settings()  # type: ignore[call-arg]

    configure_logging(settings)

    session_factory = setup_db_session(settings.database_url, settings.db_pool_size)
    uow_factory = create_uow_factory(session_factory)

    app.state.session_factory = session_factory
    app.state.uow_factory = uow_factory
    app.state.analyzer = OpenAIImageAnalyzer(
        AsyncOpenAI(api_key=settings.openai_api_key, timeout=settings.analyze_timeout_seconds),
        model=settings.vision_model,
    )

    try:
        async with await uow_factory() as uow:
            await achievement_service.initialize_achievements(uow)
    except Exception as e:
        # Database may be down at boot; /api/health reports it and seeding
        # is retried on the next start
        logger.error(
            "startup.achievement_seed_failed",
            error=str(e),
            error_type=type(e).__name__,
        )

    logger.info("application.startup", db_url=settings.database_url.split("@")[-1])

    yield

    logger.info("application.shutdown")


def create_app() -> FastAPI:
    """Create and configure FastAPI application.

    Returns:
        Configured FastAPI application instance
    """
    settings = Settings()  # type: ignore[call-arg]

    app = FastAPI(
        title="FlockCount API",
        description="Chicken counting from photos with offline-first sync",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(analyze.router)
    app.include_router(counts.router)
    app.include_router(achievements.router)

    @app.get("/api/health")
    async def health_check(response: Response):
        """Health check endpoint with database connectivity test.

        Clients distinguish "server down" from "database down" by this body:
        any reply carrying it means the server itself is reachable.

        Returns:
            200: {"status": "healthy", "database": "connected"}
            503: {"status": "unhealthy", "database": "disconnected", "error": "..."}
        """
        try:
            async with app.state.session_factory() as session:
                result = await session.execute(text("SELECT 1"))
                result.scalar()

            logger.debug("health_check.success")
            return {"status": "healthy", "database": "connected"}

        except Exception as e:
            logger.error(
                "health_check.failed",
                error=str(e),
                error_type=type(e).__name__,
            )
            response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
            return {
                "status": "unhealthy",
                "database": "disconnected",
                "error": str(e),
            }

    return app


# Create app instance for uvicorn
app = create_app()
