"""FastAPI application initialization."""

import os
from contextlib import asynccontextmanager

import logfire
import sentry_sdk
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sentry_sdk.integrations.fastapi import FastApiIntegration

from src.api import changes, cron, health, pages, pipeline, suggestions
from src.api.errors import register_exception_handlers
from src.config import get_settings
from src.db.client import get_supabase_client
from src.logging_config import setup_logfire
from src.middleware.correlation_id import CorrelationIDMiddleware
from src.services.container import build_container

APP_VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: observability, database client and services."""
    settings = get_settings()

    # Initialize Logfire for observability
    setup_logfire(app)

    # Initialize Sentry if DSN is provided
    if settings.sentry_dsn:
        sentry_sdk.init(
            dsn=settings.sentry_dsn,
            traces_sample_rate=settings.sentry_traces_sample_rate,
            send_default_pii=False,
            environment=settings.env,
            integrations=[FastApiIntegration()],
        )

    supabase = get_supabase_client()
    app.state.supabase = supabase
    app.state.container = build_container(settings, supabase)

    # The backup runner re-syncs on every tick; this covers the gap until the first one
    subscribed = await app.state.container.queue.ensure_subscription()

    logfire.info(
        "Application startup complete",
        environment=settings.env,
        queue_subscribed=subscribed,
    )

    yield

    logfire.info("Application shutdown complete")


# Create FastAPI app
app = FastAPI(
    title="PagePulse",
    description="Web page monitoring: scheduled scans, change tracking and outcome correlation",
    version=APP_VERSION,
    lifespan=lifespan,
)

# Correlation ID middleware (must be first for request tracing)
app.add_middleware(CorrelationIDMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

# Register routers
app.include_router(health.router, tags=["health"])
app.include_router(cron.router, prefix="/api/cron", tags=["cron"])
app.include_router(pipeline.router, prefix="/api/pipeline", tags=["pipeline"])
app.include_router(pages.router, prefix="/api/pages", tags=["pages"])
app.include_router(changes.router, prefix="/api/changes", tags=["changes"])
app.include_router(suggestions.router, prefix="/api/suggestions", tags=["suggestions"])


@app.get("/")
def root():
    """Root endpoint."""
    settings = get_settings()
    return {
        "message": "PagePulse API",
        "environment": settings.env,
        "version": APP_VERSION,
    }


if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("PORT", 8000))
    uvicorn.run(
        "src.main:app", host="0.0.0.0", port=port, reload=os.getenv("ENV") == "local"
    )
