from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.v1.router import api_router
from app.config import Settings, get_settings
from app.core.database import Database
from app.core.logging import configure_logging
from app.middleware import TelemetryMiddleware
from app.models.ab_test import ABTest, ABTestSession  # noqa: F401
from app.models.growth_metric import GrowthMetric  # noqa: F401
from app.models.organization import OrganizationMember  # noqa: F401

VERSION = "0.1.0"

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    database: Database = app.state.database

    # Startup
    logger.info("startup", app=app.title)
    await database.init()
    logger.info("database_initialized")
    yield
    # Shutdown
    logger.info("shutdown", app=app.title)
    await database.close()


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings.LOG_LEVEL, settings.LOG_FORMAT)

    app = FastAPI(
        title=settings.APP_NAME,
        description="A/B testing for marketing and growth teams",
        version=VERSION,
        docs_url=f"{settings.API_V1_PREFIX}/docs",
        redoc_url=f"{settings.API_V1_PREFIX}/redoc",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.database = Database.from_settings(settings)

    # CORS middleware
    if settings.CORS_ORIGINS:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.CORS_ORIGINS,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    app.add_middleware(TelemetryMiddleware)

    # Include routers
    app.include_router(api_router, prefix=settings.API_V1_PREFIX)

    @app.get("/")
    async def root():
        return {
            "app": settings.APP_NAME,
            "version": VERSION,
            "environment": settings.ENVIRONMENT,
        }

    return app


app = create_app()
