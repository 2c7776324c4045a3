"""
PayLink application entry point.
"""

from fastapi import FastAPI, Request, HTTPException, Depends, Header
from contextlib import asynccontextmanager
from paylink.core.config import AppConfig, get_config, load_config
from paylink.database import init_db, close_database, health_check as database_health
from paylink.routes.payments import router as payments_router
from paylink.core.handlers import setup_exception_handlers
from paylink.core.middleware import RequestLoggingMiddleware
from paylink.core.monitoring import setup_monitoring, error_monitor
from paylink.core.limiter import limiter
from slowapi import _rate_limit_exceeded_handler
from slowapi.middleware import SlowAPIMiddleware
from slowapi.errors import RateLimitExceeded
import hmac
import logging

logger = logging.getLogger(__name__)


async def verify_monitoring_access(
    x_monitoring_key: str = Header(None),
    config: AppConfig = Depends(get_config),
):
    """API key check for internal monitoring endpoints. Fails closed."""
    expected_key = config.security.monitoring_api_key

    if not expected_key:
        raise HTTPException(status_code=403, detail="Monitoring access not configured")

    if not x_monitoring_key or not hmac.compare_digest(x_monitoring_key, expected_key):
        raise HTTPException(status_code=403, detail="Invalid monitoring credentials")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle events"""
    try:
        config = load_config()
        app.state.config = config
        setup_monitoring(config.logging.level)
        await init_db(config.database)
        logger.info(f"PayLink started ({config.environment})")
    except Exception as e:
        error_monitor.log_error(e, {"context": "application_startup"})
        logger.error(f"Failed to start PayLink: {str(e)}")
        raise

    yield

    logger.info("PayLink shutting down")
    await close_database()
    summary = error_monitor.get_error_summary()
    logger.info(f"Shutdown - Total errors handled: {summary['total_errors']}")


app = FastAPI(
    title="PayLink",
    description="Signed UPI deep-link payments with tracked transaction lifecycle",
    lifespan=lifespan,
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_middleware(SlowAPIMiddleware)

setup_exception_handlers(app)

app.add_middleware(RequestLoggingMiddleware)

app.include_router(payments_router, prefix="/payments", tags=["payments"])


@app.get("/")
@limiter.limit("30/minute")
async def root(request: Request):
    return {
        "status": "active",
        "service": "PayLink",
        "description": "Payment deep-link service is running",
    }


@app.get("/health")
async def health(request: Request):
    return await database_health()


@app.get("/monitoring/errors", dependencies=[Depends(verify_monitoring_access)])
@limiter.limit("10/minute")
async def get_monitoring_info(request: Request):
    """Internal endpoint for error statistics (authenticated)."""
    return error_monitor.get_error_summary()
