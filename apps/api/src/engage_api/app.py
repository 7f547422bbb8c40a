from contextlib import asynccontextmanager

from fastapi import FastAPI
from loguru import logger

from engage_api.core.settings import settings
from engage_api.db.session import async_session
from .api.errors import register_exception_handlers
from .api.routes import api_router
from .core.logging import configure_logging
from .observability.tracing import configure_tracing
from .services.notifications import NotificationDispatcher, NotificationService, build_push_backend
from .workers import ExpirySweepWorker


APP_VERSION = "0.1.0"


def _session_factory():
    return async_session()


def _build_dispatcher() -> NotificationDispatcher:
    backend = build_push_backend(settings)
    if backend is None:
        logger.info("LINE push disabled", reason="line_channel_access_token is not set")
        return NotificationDispatcher(None)
    return NotificationDispatcher(NotificationService(async_session, backend, settings=settings))


@asynccontextmanager
async def lifespan(app: FastAPI):
    dispatcher: NotificationDispatcher = app.state.notification_dispatcher
    sweep_worker = ExpirySweepWorker(
        session_factory=_session_factory,
        notifier=dispatcher,
        interval_seconds=settings.expiry_sweep_interval_seconds,
        batch_size=settings.expiry_sweep_batch_size,
    )
    app.state.expiry_sweep_worker = sweep_worker

    sweep_enabled = settings.expiry_sweep_enabled
    if sweep_enabled:
        sweep_worker.start()
        logger.info(
            "Expiry sweep worker enabled",
            interval_seconds=sweep_worker.interval_seconds,
            batch_size=sweep_worker.batch_size,
        )
    else:
        logger.info(
            "Expiry sweep worker disabled",
            reason="expiry_sweep_enabled is false",
        )

    try:
        yield
    finally:
        if sweep_enabled and sweep_worker.is_running:
            await sweep_worker.stop()
        await dispatcher.drain()


def create_app() -> FastAPI:
    """Application factory for the engagement API."""
    configure_logging(
        service_name="engage-api",
        environment=settings.environment,
        version=APP_VERSION,
    )

    app = FastAPI(
        title="Engage API",
        version=APP_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    configure_tracing(
        app,
        service_name="engage-api",
        service_version=APP_VERSION,
        environment=settings.environment,
    )

    app.state.notification_dispatcher = _build_dispatcher()
    register_exception_handlers(app)
    app.include_router(api_router)

    @app.get("/healthz", tags=["Health"])
    async def health_check() -> dict[str, str]:
        return {
            "status": "ok",
            "environment": settings.environment,
            "version": APP_VERSION,
        }

    return app
