"""FastAPI application entry point."""
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy import text

from prima.core.config import settings
from prima.core.errors import RateLimited, WebhookError
from prima.core import redis_client
from prima.db.session import engine

logger = logging.getLogger(__name__)

# ============================================================================
# Sentry Integration (optional, for production error tracking)
# ============================================================================

if settings.SENTRY_DSN and settings.ENV != "dev":
    import sentry_sdk
    from sentry_sdk.integrations.fastapi import FastApiIntegration
    from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        environment=settings.ENV,
        integrations=[
            FastApiIntegration(transaction_style="endpoint"),
            SqlalchemyIntegration(),
        ],
        traces_sample_rate=0.1,
        send_default_pii=False,  # Patient phone numbers and messages stay out of Sentry
    )
    logging.info("Sentry initialized for error tracking")

# ============================================================================
# Rate Limiting
# ============================================================================

from slowapi.errors import RateLimitExceeded
from prima.core.rate_limit import limiter


# ============================================================================
# FastAPI App
# ============================================================================

app = FastAPI(
    title="PRIMA WhatsApp Engine",
    description="Inbound WhatsApp webhook processing and patient conversation engine",
    version=settings.VERSION,
    docs_url="/docs" if settings.ENV == "dev" else None,
    redoc_url="/redoc" if settings.ENV == "dev" else None,
)

app.state.limiter = limiter


@app.exception_handler(WebhookError)
async def webhook_error_handler(request: Request, exc: WebhookError):
    # 5xx details are never echoed back to the caller
    detail = exc.detail if exc.status_code < 500 else "Internal error"
    headers = None
    retry_after = getattr(exc, "retry_after", None)
    if retry_after:
        headers = {"Retry-After": str(retry_after)}
    return JSONResponse(
        status_code=exc.status_code,
        content={"ok": False, "error": exc.code, "detail": detail},
        headers=headers,
    )


@app.exception_handler(RateLimitExceeded)
async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded):
    logger.warning(f"IP rate limit exceeded on {request.url.path}")
    error = RateLimited(str(exc.detail), retry_after=exc.limit.limit.get_expiry())
    return await webhook_error_handler(request, error)


# ============================================================================
# Routers
# ============================================================================

from prima.routers import internal, webhooks

app.include_router(webhooks.router, prefix="/webhooks", tags=["webhooks"])

# Internal endpoints (scheduled/cron jobs - protected by INTERNAL_SECRET)
app.include_router(internal.router)


# ============================================================================
# Health Check
# ============================================================================

@app.get("/health")
def health():
    """
    Health check endpoint.

    Verifies database connectivity and reports Redis when configured.
    """
    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))
    redis_ok = redis_client.ping()
    return {
        "status": "ok",
        "env": settings.ENV,
        "version": settings.VERSION,
        "redis": "disabled" if redis_ok is None else ("ok" if redis_ok else "unreachable"),
    }
