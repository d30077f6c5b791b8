"""
LeadGate - payment-gated lead resale over SMS.
Main FastAPI application entry point.
"""
import asyncio
import logging
from contextlib import asynccontextmanager

import sentry_sdk
from fastapi import FastAPI, Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from leadgate.api.router import api_router
from leadgate.config import get_settings
from leadgate.database import dispose_engine
from leadgate.utils.logging import (
    configure_structured_logging,
    generate_correlation_id,
    set_correlation_id,
)
from leadgate.workers.interaction_reaper import run_interaction_reaper

logger = logging.getLogger("leadgate")


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Injects a correlation ID into every request context and response header."""

    async def dispatch(self, request: Request, call_next) -> Response:
        cid = request.headers.get("X-Correlation-ID") or generate_correlation_id()
        set_correlation_id(cid)
        response = await call_next(request)
        response.headers["X-Correlation-ID"] = cid
        return response


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown events."""
    settings = get_settings()
    logger.info("LeadGate starting up (env=%s)", settings.app_env)

    if not settings.admin_jwt_secret:
        logger.warning("ADMIN_JWT_SECRET not set - admin endpoints will return 503")
    if not settings.stripe_webhook_secret:
        logger.warning("STRIPE_WEBHOOK_SECRET not set - every Stripe webhook will be rejected")

    if settings.sentry_dsn:
        try:
            sentry_sdk.init(
                dsn=settings.sentry_dsn,
                traces_sample_rate=0.1,
                environment=settings.app_env,
            )
            logger.info("Sentry initialized")
        except Exception as e:
            logger.warning("Sentry initialization failed: %s", str(e))

    worker_tasks: list[asyncio.Task] = []
    if settings.reaper_enabled:
        worker_tasks.append(asyncio.create_task(run_interaction_reaper()))
        logger.info("Interaction reaper started")
    else:
        logger.info("Interaction reaper disabled (REAPER_ENABLED=false)")

    yield

    # Graceful shutdown - give workers time to finish the current cycle
    logger.info("LeadGate shutting down - stopping %d workers...", len(worker_tasks))
    for task in worker_tasks:
        task.cancel()
    if worker_tasks:
        await asyncio.gather(*worker_tasks, return_exceptions=True)
    await dispose_engine()
    logger.info("LeadGate shutdown complete")


def create_app() -> FastAPI:
    """Application factory."""
    settings = get_settings()

    # Configure structured JSON logging with correlation IDs
    configure_structured_logging(settings.log_level)

    application = FastAPI(
        title="LeadGate",
        description="Payment-gated lead resale over SMS",
        version="1.0.0",
        lifespan=lifespan,
    )

    application.add_middleware(CorrelationIdMiddleware)
    application.include_router(api_router)

    return application


app = create_app()
