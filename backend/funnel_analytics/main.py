"""FastAPI application entrypoint.

Configures logging, Sentry and CORS, includes the analytics routers, and
exposes a healthcheck endpoint.
"""

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

from .deps import get_settings  # noqa: E402
from .routers import event_analytics as event_analytics_router  # noqa: E402
from .routers import funnel_analytics as funnel_analytics_router  # noqa: E402
from .routers import visitors as visitors_router  # noqa: E402
from .telemetry import init_sentry  # noqa: E402
from . import schemas  # noqa: E402

# Import models so Alembic can discover metadata
from . import models  # noqa: F401, E402


def create_app() -> FastAPI:
    settings = get_settings()
    init_sentry(dsn=settings.SENTRY_DSN, environment=settings.ENVIRONMENT)

    app = FastAPI(
        title="Funnel Analytics API",
        description="""
        Read-side analytics over visitor sessions and events collected from
        embeddable web funnels.

        This API provides endpoints for:
        - Traffic sources, UTM and first/last touch attribution
        - Page flow graphs and funnel stage drop-off
        - Session and event trends
        - Device, geography and Web Vitals breakdowns
        - Visitor profiles, lifecycle stages and journeys

        ## Tenant scope

        Requests carry `X-Organization-Id` (and `X-Subaccount-Id` when the
        funnel belongs to a subaccount), set by the upstream gateway after
        authentication.

        ## Units

        Rates are percentage points (0-100), durations are seconds and
        revenue is in raw currency units.
        """,
        version="1.0.0",
    )

    # BACKEND_CORS_ORIGINS is a comma-separated list
    allowed_origins = [o.strip() for o in settings.BACKEND_CORS_ORIGINS.split(",") if o.strip()]
    logger.info(f"[CORS] Allowed origins: {allowed_origins}")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "OPTIONS"],
        allow_headers=["*"],
    )

    app.include_router(funnel_analytics_router.router)
    app.include_router(event_analytics_router.router)
    app.include_router(visitors_router.router)

    @app.get(
        "/health",
        response_model=schemas.HealthResponse,
        tags=["Health"],
        summary="Health check",
        description="""
        Simple health check endpoint to verify the API is running.

        Does not require a tenant scope and can be used for load balancer
        health checks.
        """
    )
    def health():
        return schemas.HealthResponse(status="ok")

    return app


app = create_app()
