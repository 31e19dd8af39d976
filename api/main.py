"""
Checkout Provisioning API - Main Application.

FastAPI application with CORS enabled for frontend communication. Services
are built once in the lifespan handler and stored on `app.state.container`.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api import __version__
from api.config import Settings
from api.dependencies import ServiceContainer, build_container

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    container: Optional[ServiceContainer] = getattr(app.state, "container", None)
    owned = container is None
    if container is None:
        settings = Settings.from_env()
        configure_logging(settings.log_level)
        container = build_container(settings)
        app.state.container = container
        logger.info(f"Services started (environment={settings.environment})")

    yield

    if owned:
        container.close()
        logger.info("Services stopped")


def create_app(container: Optional[ServiceContainer] = None) -> FastAPI:
    app = FastAPI(
        title="Checkout Provisioning API",
        description="Payment webhooks, checkout orders and signup claims",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    if container is not None:
        app.state.container = container

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health", tags=["Health"])
    def health_check():
        """
        Health check endpoint.

        Returns the API status and version.
        """
        return {
            "status": "healthy",
            "version": __version__,
            "service": "checkout-provisioning-api"
        }

    @app.get("/", tags=["Root"])
    def root():
        """
        Root endpoint with API information.
        """
        return {
            "message": "Checkout Provisioning API",
            "version": __version__,
            "docs": "/docs",
            "health": "/health"
        }

    from api.routers import checkout, claims, webhooks

    app.include_router(webhooks.router, prefix="/api/v1", tags=["Webhooks"])
    app.include_router(checkout.router, prefix="/api/v1", tags=["Checkout"])
    app.include_router(claims.router, prefix="/api/v1", tags=["Claims"])

    return app


app = create_app()
