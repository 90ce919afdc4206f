"""
ASGI application for the membership portal backend.

Run with:
    uvicorn portal.main:app
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from portal.api.routes import cron, discord_join, health, webhooks_stripe
from portal.platform.errors import AppError, ErrorHandlerMiddleware, app_error_handler
from portal.platform.logging_config import configure_logging

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    from portal.database.session import init_db
    from portal.platform.health import get_health_checker

    configure_logging()
    init_db()
    get_health_checker().log_config_status()
    logger.info("Portal backend started")
    yield


def create_app() -> FastAPI:
    app = FastAPI(title="Membership Portal", lifespan=lifespan)

    app.add_middleware(ErrorHandlerMiddleware)
    app.add_exception_handler(AppError, app_error_handler)

    app.include_router(health.router)
    app.include_router(webhooks_stripe.router)
    app.include_router(cron.router)
    app.include_router(discord_join.router)
    return app


app = create_app()
