"""
FastAPI application entry point.

Run with:
    uvicorn backend.app.main:app --reload --port 8000

Or from the project root:
    python -m uvicorn backend.app.main:app --reload

Keep a single worker: realtime presence lives in process memory.
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# ── Core infrastructure ──
from backend.app.core.config import settings
from backend.app.core.database import build_engine, build_session_factory, close_db, init_db
from backend.app.core.errors import register_error_handlers
from backend.app.core.health import HealthStatus, run_health_check
from backend.app.core.logging_config import get_logger, setup_logging
from backend.app.core.middleware import RequestLoggingMiddleware
from backend.app.core.security import make_identity_resolver

# ── Services ──
from backend.app.alerts.channels.email_alert import build_email_sender
from backend.app.alerts.channels.sms_gateway import build_sms_sender
from backend.app.alerts.dispatcher import DeliveryLog, NotificationDispatcher
from backend.app.alerts.lifecycle import AlertLifecycleController
from backend.app.realtime.hub import BroadcastHub

# ── API routers ──
from backend.app.api.v1.alerts import router as alert_router
from backend.app.api.v1.contacts import router as contact_router
from backend.app.api.v1.realtime import router as realtime_router

# ── Initialise logging ──
setup_logging()
logger = get_logger(__name__)


# ── Application lifespan (startup / shutdown) ──

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage startup and shutdown events."""
    logger.info(
        "Starting %s v%s [%s]",
        settings.APP_NAME, settings.APP_VERSION, settings.ENVIRONMENT,
    )
    if not settings.is_production:
        await init_db(app.state.engine)
    yield
    logger.info("Shutting down %s", settings.APP_NAME)
    await app.state.dispatcher.close()
    await close_db(app.state.engine)


# ── Create application ──

def create_app(
    *,
    database_url: Optional[str] = None,
    dispatcher: Optional[NotificationDispatcher] = None,
) -> FastAPI:
    """
    Build the app and wire its services onto ``app.state``.

    ``dispatcher`` defaults to one built from the configured Twilio /
    SendGrid credentials; tests pass their own with fake senders.
    """
    app = FastAPI(
        title=settings.APP_NAME,
        description=(
            "Personal-safety alerting backend. Maintains prioritised "
            "emergency contacts, fans alerts out over SMS and email, "
            "and pushes live alert traffic over WebSockets."
        ),
        version=settings.APP_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # ── Services (constructed once, shared by reference) ──
    engine = build_engine(database_url)
    session_factory = build_session_factory(engine)
    if dispatcher is None:
        dispatcher = NotificationDispatcher(
            sms_sender=build_sms_sender(settings),
            email_sender=build_email_sender(settings),
            delivery_log=DeliveryLog(max_alerts=settings.DELIVERY_LOG_MAX_ALERTS),
        )
    hub = BroadcastHub(make_identity_resolver(session_factory))
    lifecycle = AlertLifecycleController(dispatcher, hub)
    hub.on_acknowledge = lifecycle.make_ack_relay(session_factory)

    app.state.engine = engine
    app.state.session_factory = session_factory
    app.state.dispatcher = dispatcher
    app.state.hub = hub
    app.state.lifecycle = lifecycle

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

    # ── Register routers ──
    app.include_router(contact_router)
    app.include_router(alert_router)
    app.include_router(realtime_router)

    # ── Root & health endpoints ──

    @app.get("/", tags=["root"])
    async def root():
        return {
            "service": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "environment": settings.ENVIRONMENT,
            "modules": ["contacts", "alerts", "notifications", "realtime"],
            "docs": "/docs",
        }

    @app.get("/health", tags=["health"])
    async def health_check(request: Request):
        """Deep health probe — checks all subsystems."""
        state = request.app.state
        report = await run_health_check(state.engine, state.dispatcher, state.hub)
        return report.to_dict()

    @app.get("/health/live", tags=["health"])
    async def liveness():
        """Kubernetes liveness probe — is the process alive?"""
        return {"status": "alive"}

    @app.get("/health/ready", tags=["health"])
    async def readiness(request: Request):
        """Kubernetes readiness probe — can we serve traffic?"""
        state = request.app.state
        report = await run_health_check(state.engine, state.dispatcher, state.hub)
        if report.status is HealthStatus.UNHEALTHY:
            return JSONResponse(status_code=503, content=report.to_dict())
        return report.to_dict()

    return app


app = create_app()
