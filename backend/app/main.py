"""
FastAPI application entry point.

Run with:
    uvicorn backend.app.main:app --reload --port 8000

Or from the project root:
    python -m uvicorn backend.app.main:app --reload
"""

from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# ── Core infrastructure ──
from backend.app.core.config import settings
from backend.app.core.logging_config import setup_logging, get_logger
from backend.app.core.errors import register_error_handlers
from backend.app.core.middleware import RequestLoggingMiddleware
from backend.app.core.health import HealthStatus, run_health_check
from backend.app.dependencies import Platform, get_platform, shutdown_platform

# ── API routers ──
from backend.app.api.v1.emergency import router as emergency_router
from backend.app.api.v1.notifications import router as notification_router
from backend.app.api.v1.realtime import router as realtime_router
from backend.app.api.v1.safety import router as safety_router
from backend.app.api.v1.users import router as user_router

# ── Initialise logging ──
setup_logging()
logger = get_logger(__name__)


# ── Application lifespan (startup / shutdown) ──

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the platform on startup, close providers and stores on shutdown."""
    logger.info(
        "Starting %s v%s [%s]",
        settings.APP_NAME, settings.APP_VERSION, settings.ENVIRONMENT,
    )
    await get_platform().startup()
    yield
    await shutdown_platform()
    logger.info("Shutting down %s", settings.APP_NAME)


# ── Create application ──

app = FastAPI(
    title=settings.APP_NAME,
    description=(
        "Tourist safety platform. "
        "Location-based safety scoring from geofences, time of day and "
        "tracking recency, SOS emergency coordination with realtime "
        "dashboard and nearby-tourist broadcasts, and multi-channel "
        "notification fan-out (Expo push, SMTP email, Twilio SMS) with "
        "per-user history and delivery statistics."
    ),
    version=settings.APP_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# ── Middleware stack (order matters — outermost first) ──

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS if not settings.CORS_ALLOW_ALL else ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RequestLoggingMiddleware)

# ── Error handlers ──
register_error_handlers(app)

# ── Routers ──
app.include_router(emergency_router)
app.include_router(notification_router)
app.include_router(safety_router)
app.include_router(user_router)
app.include_router(realtime_router)


# ── Root & health endpoints ──

@app.get("/", tags=["root"])
async def root():
    return {
        "service": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "modules": [
            "safety-score",
            "emergency-coordination",
            "notification-dispatch",
            "notification-history",
            "realtime",
        ],
        "docs": "/docs",
    }


@app.get("/health", tags=["health"])
async def health_check(platform: Platform = Depends(get_platform)):
    """Deep health probe — checks all subsystems."""
    report = await run_health_check(platform)
    return report.to_dict()


@app.get("/health/live", tags=["health"])
async def liveness():
    """Kubernetes liveness probe — is the process alive?"""
    return {"status": "alive"}


@app.get("/health/ready", tags=["health"])
async def readiness(platform: Platform = Depends(get_platform)):
    """Kubernetes readiness probe — can we accept SOS reports?"""
    report = await run_health_check(platform)
    if report.status is HealthStatus.UNHEALTHY:
        return JSONResponse(status_code=503, content=report.to_dict())
    return report.to_dict()
