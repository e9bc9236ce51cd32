"""
EmergentOS Sync - Calendar & Gmail Sync API
===========================================
Version: 1.0.0

Layout:
- emergent_sync/core/: settings, clients, auth, errors, retries, logging/Sentry bootstrap
- emergent_sync/middleware/: error mapping, request logging, CORS, rate limits, security headers
- emergent_sync/models/: Pydantic schemas
- emergent_sync/services/: sync pipeline, DLP gate, Dramatiq jobs
- emergent_sync/api/v1/routes/: HTTP endpoints

Sync cycles themselves run in worker.py; this process only queues them,
polls their status and handles single-event writes.
"""
import sys
import logging
import traceback
from contextlib import asynccontextmanager
from fastapi import FastAPI

try:
    from emergent_sync.core.config import settings
    from emergent_sync.core.dependencies import initialize_clients, shutdown_clients
    from emergent_sync.core.observability import configure_logging, init_sentry

    from emergent_sync.middleware.error_handler import ErrorHandlerMiddleware
    from emergent_sync.middleware.logging import RequestLoggingMiddleware
    from emergent_sync.middleware.cors import get_cors_middleware
    from emergent_sync.middleware.rate_limit import limiter
    from emergent_sync.middleware.security_headers import SecurityHeadersMiddleware

    from emergent_sync.api.v1.routes.health import router as health_router, VERSION
    from emergent_sync.api.v1.routes.webhook import router as webhook_router
    from emergent_sync.api.v1.routes.sync import router as sync_router
    from emergent_sync.api.v1.routes.calendar import router as calendar_router

except Exception as e:
    print(f"🚨 FATAL STARTUP ERROR: {e}", file=sys.stderr)
    print(f"Traceback:\n{traceback.format_exc()}", file=sys.stderr)
    sys.exit(1)

from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

configure_logging()
logger = logging.getLogger(__name__)

try:
    from sentry_sdk.integrations.fastapi import FastApiIntegration
    init_sentry(FastApiIntegration())
except ImportError as e:
    logger.warning(f"⚠️  Sentry FastAPI integration unavailable: {e}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting EmergentOS Sync API v{VERSION} ({settings.environment}, port {settings.port})")
    await initialize_clients()
    yield
    logger.info("Shutting down EmergentOS Sync API...")
    await shutdown_clients()


app = FastAPI(
    title="EmergentOS Sync API",
    description="Calendar and Gmail sync with DLP redaction and conflict detection",
    version=VERSION,
    docs_url="/docs" if settings.debug else None,  # no public docs in production
    redoc_url="/redoc" if settings.debug else None,
    lifespan=lifespan
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# Starlette runs the last-added middleware first: the error handler wraps everything
app.add_middleware(SecurityHeadersMiddleware)
cors_middleware, cors_config = get_cors_middleware()
app.add_middleware(cors_middleware, **cors_config)
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(ErrorHandlerMiddleware)

for router in (health_router, webhook_router, sync_router, calendar_router):
    app.include_router(router)

if settings.environment not in ("production", "test"):
    @app.get("/sentry-debug")
    async def trigger_sentry_error():
        """Raise ZeroDivisionError to check Sentry wiring. Not mounted in production."""
        return {"result": 1 / 0}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=settings.port,
        reload=settings.debug,
        log_level="info"
    )
