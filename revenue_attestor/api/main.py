"""FastAPI application factory"""

from fastapi import FastAPI
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.responses import Response

from revenue_attestor.api.middleware import MetricsMiddleware, RequestIDMiddleware
from revenue_attestor.api.v1 import attestations, kpis
from revenue_attestor.config import settings
from revenue_attestor.infrastructure.observability.logging import setup_logging

# Setup structured logging
setup_logging(settings.log_level)


def create_app() -> FastAPI:
    """Create and configure FastAPI application"""
    app = FastAPI(
        title="Revenue Attestor",
        description="Commerce KPI aggregation and hashable revenue attestations",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
    )

    # Last added runs first: request IDs exist before metrics are recorded
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(RequestIDMiddleware)

    @app.get("/health")
    def health_check():
        return {"status": "ok", "service": settings.service_name}

    @app.get("/metrics")
    def metrics():
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    app.include_router(kpis.router, prefix="/v1", tags=["kpis"])
    app.include_router(attestations.router, prefix="/v1", tags=["attestations"])

    return app


app = create_app()
