"""FastAPI application factory"""

from fastapi import FastAPI
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from starlette.responses import Response

from dues_gateway.api.errors import register_exception_handlers
from dues_gateway.api.middleware import RequestIDMiddleware, MetricsMiddleware
from dues_gateway.api.v1 import chapters, eligibility, jobs, plans, webhooks
from dues_gateway.infrastructure.observability.logging import setup_logging
from dues_gateway.config import settings

# Setup structured logging
setup_logging(settings.log_level)


def create_app() -> FastAPI:
    """Create and configure FastAPI application"""
    app = FastAPI(
        title="Dues Installment Gateway",
        description="Installment plans, auto-charging and processor confirmations for chapter dues",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
    )

    # Add middleware (order matters: last added = first executed)
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(RequestIDMiddleware)

    register_exception_handlers(app)

    # Health check endpoint
    @app.get("/health")
    def health_check():
        return {"status": "ok", "service": settings.service_name}

    # Prometheus metrics endpoint
    @app.get("/metrics")
    def metrics():
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    # Register API routers
    app.include_router(plans.router, prefix="/v1", tags=["installment-plans"])
    app.include_router(eligibility.router, prefix="/v1", tags=["eligibility"])
    app.include_router(chapters.router, prefix="/v1", tags=["chapters"])
    app.include_router(webhooks.router, prefix="/v1", tags=["webhooks"])
    app.include_router(jobs.router, prefix="/v1", tags=["jobs"])

    return app


app = create_app()
