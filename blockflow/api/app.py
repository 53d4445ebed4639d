"""
FastAPI application factory.

Creates and configures the workflow engine API application.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from blockflow import __version__
from blockflow.api.routes import router
from blockflow.blocks import BlockRegistry, register_builtin_blocks
from blockflow.config import Settings, get_settings
from blockflow.orchestrator.engine import WorkflowOrchestrator

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan manager.

    Handles startup and shutdown events.
    """
    settings = app.state.settings

    # Startup
    logger.info(
        f"Workflow Engine started - Environment: {settings.environment.value}, "
        f"{len(app.state.registry)} block types registered"
    )

    yield

    # Shutdown
    logger.info("Shutting down Workflow Engine...")
    app.state.orchestrator.cancel(reason="server shutdown")
    logger.info("Workflow Engine shutdown complete")


def create_app(
    registry: Optional[BlockRegistry] = None,
    settings: Optional[Settings] = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    The registry defaults to one holding the built-in blocks. Settings,
    registry and orchestrator are attached to ``app.state``.
    """
    settings = settings or get_settings()

    # Configure logging
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    app = FastAPI(
        title=settings.app_name,
        description="DAG workflow orchestration engine",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
    )

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.is_development else [],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    if registry is None:
        registry = register_builtin_blocks(BlockRegistry())

    app.state.settings = settings
    app.state.registry = registry
    app.state.orchestrator = WorkflowOrchestrator(registry, settings)

    # Include routers
    app.include_router(router)

    # Root endpoint
    @app.get("/", tags=["root"])
    async def root():
        return {
            "name": settings.app_name,
            "version": __version__,
            "status": "running",
        }

    return app


# Application instance for uvicorn
app = create_app()
