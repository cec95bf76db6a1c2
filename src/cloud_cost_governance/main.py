"""Cloud cost governance service entry point."""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI

from cloud_cost_governance.api.router import router
from cloud_cost_governance.database import dispose_database, init_database
from cloud_cost_governance.errors import register_exception_handlers
from cloud_cost_governance.observability import configure_logging
from cloud_cost_governance.settings import Settings

logger = structlog.get_logger(__name__)
settings = Settings()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Manage application startup and shutdown lifecycle."""
    configure_logging(level=settings.log_level, json_output=settings.log_json)
    logger.info(
        "cloud-cost-governance starting",
        service=settings.service_name,
        version=settings.service_version,
        webhook_enabled=settings.webhook_enabled,
    )
    init_database(settings)
    yield
    await dispose_database()
    logger.info("cloud-cost-governance shutting down")


def create_app() -> FastAPI:
    app = FastAPI(
        title="Cloud Cost Governance",
        version=settings.service_version,
        lifespan=lifespan,
    )
    register_exception_handlers(app)

    @app.get("/health", tags=["health"])
    async def health() -> dict[str, str]:
        return {"status": "ok", "service": settings.service_name}

    app.include_router(router, prefix="/api/v1")
    return app


app = create_app()
