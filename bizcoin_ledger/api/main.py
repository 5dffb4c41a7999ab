"""FastAPI application factory"""

from fastapi import FastAPI
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from starlette.responses import Response

from bizcoin_ledger.api.middleware import RequestIDMiddleware, MetricsMiddleware
from bizcoin_ledger.api.v1 import milestones, store, tokens, wallets
from bizcoin_ledger.infrastructure.observability.logging import setup_logging
from bizcoin_ledger.config import settings

# Setup structured logging
setup_logging(settings.log_level)


def create_app() -> FastAPI:
    """Create and configure FastAPI application"""
    app = FastAPI(
        title="BizCoin Token Ledger",
        description="Classroom token wallets, transaction log and milestone notifications",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
    )

    # Add middleware (order matters: last added = first executed)
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(RequestIDMiddleware)

    @app.get("/health")
    def health_check():
        return {"status": "ok", "service": settings.service_name}

    @app.get("/metrics")
    def metrics():
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    app.include_router(wallets.router, prefix="/v1", tags=["wallets"])
    app.include_router(tokens.router, prefix="/v1", tags=["tokens"])
    app.include_router(milestones.router, prefix="/v1", tags=["milestones"])
    app.include_router(store.router, prefix="/v1", tags=["store"])

    return app


app = create_app()
