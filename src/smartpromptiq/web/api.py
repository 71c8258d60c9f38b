"""FastAPI application factory.

Main entry point for the SmartPromptIQ Web API.
"""

from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from smartpromptiq import __version__
from smartpromptiq.config.app_config import load_app_config
from smartpromptiq.db.database import init_db
from smartpromptiq.web.routes import (
    academy_router,
    auth_router,
    billing_router,
    experiments_router,
    generate_router,
    health_router,
    system_router,
)

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Lifespan context manager for startup/shutdown events."""
    db_path = app.state.db_path or Path(load_app_config().paths["db_path"])
    init_db(db_path)
    config = load_app_config()
    # Refuse to serve without a signing key
    config.auth.get_secret_key()
    logger.info(
        "api_startup",
        db_path=str(db_path),
        default_provider=config.default_provider,
        max_concurrent=config.queue.max_concurrent,
    )
    yield


def create_app(db_path: Path | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        db_path: Database file (defaults to paths.db_path in app config)

    Returns:
        Configured FastAPI app instance
    """
    app = FastAPI(
        title="SmartPromptIQ API",
        description="Prompt generation, Academy and token billing",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    app.state.db_path = db_path

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health_router)
    app.include_router(auth_router)
    app.include_router(academy_router)
    app.include_router(billing_router)
    app.include_router(generate_router)
    app.include_router(experiments_router)
    app.include_router(system_router)

    return app
