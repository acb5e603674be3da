"""FastAPI application factory"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.responses import Response

from ledger_bank_api.api.errors import register_exception_handlers
from ledger_bank_api.api.middleware import (
    MetricsMiddleware,
    RateLimitMiddleware,
    RequestIDMiddleware,
    SecurityHeadersMiddleware,
)
from ledger_bank_api.api.routes import accounts, auth, banks, health, logins, payments, users
from ledger_bank_api.config import settings
from ledger_bank_api.infrastructure.cache import build_cache
from ledger_bank_api.infrastructure.observability.logging import setup_logging
from ledger_bank_api.services.auth import validate_secret

# Setup structured logging
setup_logging(settings.log_level)


def create_app(cache=None) -> FastAPI:
    """Create and configure FastAPI application"""
    validate_secret(settings)

    app = FastAPI(
        title="Ledger Bank API",
        description="Banking backend with an authoritative payment ledger",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
    )
    app.state.cache = cache or build_cache(settings)

    # Add middleware (order matters: last added = first executed)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(RateLimitMiddleware)
    app.add_middleware(RequestIDMiddleware)

    register_exception_handlers(app)

    # Prometheus metrics endpoint
    @app.get("/metrics", include_in_schema=False)
    def metrics():
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    # Register API routers
    app.include_router(health.router, prefix="/api", tags=["health"])
    app.include_router(auth.router, prefix="/api", tags=["auth"])
    app.include_router(users.router, prefix="/api", tags=["users"])
    app.include_router(banks.router, prefix="/api", tags=["banks"])
    app.include_router(logins.router, prefix="/api", tags=["bank-logins"])
    app.include_router(accounts.router, prefix="/api", tags=["accounts"])
    app.include_router(payments.router, prefix="/api", tags=["payments"])

    return app


app = create_app()
