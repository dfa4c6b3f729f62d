"""
FastAPI application factory.

Creates and configures the workbench API application.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from arazzo_workbench import __version__
from arazzo_workbench.api.routes import router
from arazzo_workbench.config import Settings, get_settings
from arazzo_workbench.session.registry import SessionRegistry

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan manager.

    Handles startup and shutdown events.
    """
    settings: Settings = app.state.settings

    logger.info(f"Arazzo Workbench started - Environment: {settings.environment.value}")

    yield

    # Dispose every open session and clear its diagnostics
    app.state.registry.close_all()
    logger.info("Arazzo Workbench shutdown complete")


def create_app(settings: Optional[Settings] = None, registry: Optional[SessionRegistry] = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        settings: Settings to use instead of the cached environment settings
        registry: Session registry to serve; a fresh one is created by default
    """
    settings = settings or get_settings()

    # Configure logging
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    app = FastAPI(
        title=settings.app_name,
        description="Semantic analysis of Arazzo workflow descriptions",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
    )

    # Registry lives on app state so requests share it without globals
    app.state.settings = settings
    app.state.registry = registry or SessionRegistry(settings=settings.analysis)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.is_development else [],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(router)

    @app.get("/", tags=["root"])
    async def root():
        return {
            "name": settings.app_name,
            "version": __version__,
            "status": "running",
        }

    return app
